"""Flask application factory for the host HTTP bridge.

The billing host (or a thin shim inside it) POSTs its params map to
/module/<action> and gets the module result back as JSON.
"""
from __future__ import annotations
import logging

from flask import Flask

from whmcs_authentik.config import load_settings


def create_app() -> Flask:
    """Create and configure Flask application."""
    cfg = load_settings()
    
    app = Flask(__name__)
    app.config["MODULE_SETTINGS"] = cfg
    
    if not app.debug:
        logging.basicConfig(level=logging.INFO)
    
    from whmcs_authentik.api import health, errors, lifecycle
    
    app.register_blueprint(health.bp)
    app.register_blueprint(lifecycle.bp, url_prefix="/module")
    
    errors.register_error_handlers(app)
    
    if not cfg.bridge_token:
        print("[flask_app] WARNING: BRIDGE_TOKEN not set; /module endpoints will reject every request")
    print("[flask_app] Lifecycle bridge registered at /module")
    
    return app
