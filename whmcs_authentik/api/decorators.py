"""Authentication decorators for bridge endpoints."""
from __future__ import annotations
import hmac
import logging
from functools import wraps

from flask import current_app, jsonify, request

logger = logging.getLogger(__name__)


def _unauthorized(detail: str):
    return jsonify({"error": "Unauthorized", "message": detail}), 401


def require_bridge_token(fn):
    """
    Require ``Authorization: Bearer <BRIDGE_TOKEN>`` on the request.
    
    The token is compared in constant time. When no token is configured
    every request is rejected.
    
    Example:
        @bp.route("/<action>", methods=["POST"])
        @require_bridge_token
        def run_action(action):
            ...
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        cfg = current_app.config.get("MODULE_SETTINGS")
        expected = getattr(cfg, "bridge_token", "") or ""
        
        auth_header = request.headers.get("Authorization", "")
        if not auth_header:
            logger.warning("Bridge request missing Authorization header")
            return _unauthorized("Authorization header required. Use 'Authorization: Bearer <token>'")
        
        if not auth_header.startswith("Bearer "):
            logger.warning(f"Bridge request with invalid Authorization format: {auth_header[:10]}")
            return _unauthorized("Invalid Authorization header format. Expected 'Bearer <token>'")
        
        token = auth_header[7:].strip()
        if not token or not expected:
            logger.warning("Bridge request rejected: empty token or BRIDGE_TOKEN not configured")
            return _unauthorized("Invalid bridge token")
        
        if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            logger.warning("Bridge request with invalid token")
            return _unauthorized("Invalid bridge token")
        
        return fn(*args, **kwargs)
    
    return wrapper
