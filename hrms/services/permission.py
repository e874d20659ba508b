"""
Role → permission matrix.

Permissions are ``<resource>.<action>`` codenames checked by
``hrms.middleware.permission_required``. Roles come from the ``roles`` claim
of the access token; a user holds the union of their roles' permissions.
"""

EMPLOYMENT_PERMISSIONS = {
    "employment.read", "employment.create", "employment.update", "employment.delete",
}
ALLOCATION_PERMISSIONS = {
    "employee_funding_allocation.read",
    "employee_funding_allocation.create",
    "employee_funding_allocation.update",
    "employee_funding_allocation.delete",
}
GRANT_PERMISSIONS = {"grant.read", "grant.create", "grant.update"}
PROBATION_PERMISSIONS = {"probation.read", "probation.update"}

ALL_PERMISSIONS = frozenset(
    EMPLOYMENT_PERMISSIONS | ALLOCATION_PERMISSIONS | GRANT_PERMISSIONS | PROBATION_PERMISSIONS
)

ROLE_PERMISSIONS = {
    "hr_admin": ALL_PERMISSIONS,
    "hr_manager": frozenset(p for p in ALL_PERMISSIONS if not p.endswith(".delete")),
    "hr_viewer": frozenset(p for p in ALL_PERMISSIONS if p.endswith(".read")),
}


def get_permissions(roles) -> set[str]:
    """Union of the permissions granted by ``roles``; unknown roles grant nothing."""
    perms: set[str] = set()
    for role in roles or ():
        perms |= ROLE_PERMISSIONS.get(role, frozenset())
    return perms


def has_permission(roles, codename: str) -> bool:
    return codename in get_permissions(roles)
