"""Lifecycle endpoints: the host POSTs its params map, gets the result back."""
from __future__ import annotations
import logging

from flask import Blueprint, abort, current_app, jsonify, request

from whmcs_authentik import module
from whmcs_authentik.api.decorators import require_bridge_token

bp = Blueprint("lifecycle", __name__)
logger = logging.getLogger(__name__)


@bp.route("/<action>", methods=["POST"])
@require_bridge_token
def run_action(action: str):
    """Run create / suspend / unsuspend / terminate for one service.
    
    Response body: ``{"result": "success" | "<error>", "username": ...,
    "notifications": [...]}``. Module failures still return HTTP 200; the
    host reads ``result`` exactly as it would from an in-process call.
    """
    if action not in module.ACTIONS:
        abort(404, description=f"Unknown action '{action}'")
    
    params = request.get_json(silent=True)
    if not isinstance(params, dict):
        abort(400, description="Request body must be a JSON object")
    
    response = module.dispatch(action, params, settings=current_app.config["MODULE_SETTINGS"])
    logger.info("Bridge %s for service %s -> %s", action, params.get("serviceid"), response.result)
    return jsonify(response.to_dict()), 200


@bp.route("/test-connection", methods=["POST"])
@require_bridge_token
def run_test_connection():
    """Validate URL, token and group without touching any account."""
    params = request.get_json(silent=True)
    if not isinstance(params, dict):
        abort(400, description="Request body must be a JSON object")
    return jsonify(module.test_connection(params, settings=current_app.config["MODULE_SETTINGS"])), 200
