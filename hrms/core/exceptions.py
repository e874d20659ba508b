"""
Service-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
translate every failure into the uniform ``{success: false, message, errors}``
body with a consistent HTTP status.

Usage:
    from hrms.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Employment", resource_id=42)
    raise ValidationError("Total effort ...", details={"allocations": "..."})
"""


class NotFoundError(Exception):
    """Raised when a referenced employment, grant, grant item or allocation does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Employment", "GrantItem").
        resource_id: The PK that was looked up.
    """

    status_code = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed JSON but violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names
                 (``allocations.1.grant_item_id``); values are messages.
    """

    status_code = 422

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class CapacityError(ValidationError):
    """Raised when a grant item has no free position slot left.

    Maps to HTTP 422. Carries the numbers needed to tell the caller how many
    slots remain.
    """

    def __init__(
        self,
        grant_item_id: int,
        grant_position: str | None,
        capacity: int,
        active: int,
        requested: int = 1,
    ) -> None:
        self.grant_item_id = grant_item_id
        self.grant_position = grant_position
        self.capacity = capacity
        self.active = active
        self.requested = requested
        self.remaining = max(capacity - active, 0)
        label = grant_position or f"#{grant_item_id}"
        message = (
            f"Grant position '{label}' has reached its maximum capacity of "
            f"{capacity} allocations. Currently allocated: {active}"
        )
        super().__init__(
            message,
            details={
                "grant_item_id": grant_item_id,
                "grant_position_number": capacity,
                "active_allocations": active,
                "requested": requested,
                "remaining_slots": self.remaining,
            },
        )


class ConflictError(Exception):
    """Raised when an operation would stack a second active state on a resource.

    Used when a fresh allocation set is submitted for an employment that
    already has one. Maps to HTTP 422.

    Args:
        resource: Entity name.
        message: Explanation shown to the caller.
    """

    status_code = 422

    def __init__(self, resource: str, message: str) -> None:
        self.resource = resource
        self.message = message
        super().__init__(message)


class AuthenticationError(Exception):
    """Missing, expired or malformed bearer token. Maps to HTTP 401."""

    status_code = 401

    def __init__(self, message: str = "Unauthenticated") -> None:
        self.message = message
        super().__init__(message)


class AuthorizationError(Exception):
    """Authenticated caller lacks the permission bound to the action. Maps to HTTP 403."""

    status_code = 403

    def __init__(self, permission: str, message: str | None = None) -> None:
        self.permission = permission
        self.message = message or "Permission denied"
        super().__init__(f"{self.message}: {permission}")
