"""
Permission decorator: JWT-aware RBAC for route protection.

Usage:
    @bp.route("/employments", methods=["POST"])
    @require_permission("employment.create")
    def create_employment():
        ...

With auth disabled and no token on the request, the check passes through.
Failures raise AuthenticationError / AuthorizationError, which the
blueprint error handlers turn into 401 / 403 bodies.
"""

import functools
import logging

from flask import g

from hrms.core.exceptions import AuthenticationError, AuthorizationError
from hrms.middleware.jwt_auth import auth_enabled
from hrms.services.permission import has_permission

logger = logging.getLogger(__name__)


def require_permission(codename: str):
    """
    Decorator: require the JWT user's roles to grant ``codename``.

    Args:
        codename: Permission codename, e.g. "employee_funding_allocation.create"
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_id = getattr(g, "jwt_user_id", None)
            if user_id is None:
                if not auth_enabled():
                    return f(*args, **kwargs)
                raise AuthenticationError()

            if not has_permission(getattr(g, "jwt_roles", []), codename):
                logger.warning(
                    "User %s denied: missing permission '%s' on %s",
                    user_id, codename, f.__name__,
                )
                raise AuthorizationError(codename, "This action is unauthorized.")

            return f(*args, **kwargs)
        return decorated
    return decorator
