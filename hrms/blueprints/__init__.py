"""
HRMS Funding Allocation Service
Blueprint registry and shared response helpers.

Every JSON body has the shape:
    success: {"success": true,  "message": str, "data": ...}
    error:   {"success": false, "message": str, "errors": {...}?}
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from hrms.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit   max items (default 200, capped at max_limit)
        offset  starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def ok(data=None, message: str = "OK", status: int = 200, **extra):
    body = {"success": True, "message": message, "data": data}
    body.update(extra)
    return jsonify(body), status


def fail(message: str, status: int, errors: dict | None = None):
    body = {"success": False, "message": message}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def register_error_handlers(bp):
    """Attach the domain exception → HTTP status mapping to ``bp``."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return fail(str(error), 404)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return fail(error.message, 422, error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return fail(error.message, 422, {"resource": error.resource})

    @bp.errorhandler(AuthenticationError)
    def _handle_unauthenticated(error: AuthenticationError):
        return fail(error.message, 401)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        return fail(error.message, 403, {"permission": error.permission})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        # 405, 413, 415, 429 keep their own status
        if isinstance(error, HTTPException):
            return fail(error.description or error.name, error.code)
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return fail("Internal server error", 500)

    return bp
