"""Health check endpoints."""
from flask import Blueprint

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness check: the bridge can only serve requests with a token configured."""
    cfg = _settings()
    if cfg is None or not cfg.bridge_token:
        return ("not ready: BRIDGE_TOKEN missing", 503, {"Content-Type": "text/plain"})
    return ("ready", 200, {"Content-Type": "text/plain"})


def _settings():
    from flask import current_app
    return current_app.config.get("MODULE_SETTINGS")
