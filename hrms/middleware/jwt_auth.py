"""
JWT Auth Middleware: parses the Bearer token, sets g.jwt_*.

When API_AUTH_ENABLED is true every ``/api/v1/`` request outside
JWT_SKIP_PREFIXES must carry a valid access token, otherwise it is answered
with 401. When auth is disabled (tests, local dev) a token is still parsed
if present, so permission checks can be exercised, but its absence is not
an error.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, jsonify, request

from hrms.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def auth_enabled() -> bool:
    return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() in ("1", "true", "yes")


def _unauthenticated(message: str):
    return jsonify({"success": False, "message": message}), 401


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_user_name = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return None
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return None
        if request.method == "OPTIONS":
            return None

        required = auth_enabled()
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return _unauthenticated("Unauthenticated") if required else None

        try:
            payload = decode_access_token(auth_header[7:])
        except pyjwt.ExpiredSignatureError:
            logger.info("Rejected expired token path=%s", path)
            return _unauthenticated("Token has expired")
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected invalid token path=%s error=%s", path, exc)
            return _unauthenticated("Invalid token")

        g.jwt_user_id = payload.get("sub")
        g.jwt_user_name = payload.get("name")
        g.jwt_roles = payload.get("roles", [])
        return None
