"""
Application-wide exception hierarchy.

Services raise these types; blueprints register handlers against them
once (see ``buildtrack.blueprints.register_error_handlers``) and get
consistent HTTP status codes everywhere.

    NotFoundError          → 404
    ValidationError        → 400
    TransitionError        → 400 (status change not allowed from current state)
    ConflictError          → 409
    PermissionDeniedError  → 403
    InvalidTokenError      → 401
    TokenExpiredError      → 410

Usage:
    from buildtrack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Material", resource_id=42)
    raise ValidationError("Name is required", details={"name": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist or is soft-deleted.

    Args:
        resource: Human-readable entity name (e.g. "Project", "Material").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource} not found"
        if resource_id is not None:
            msg = f"{resource} id={resource_id} not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails a business rule in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class TransitionError(ValidationError):
    """Raised when a status change is not allowed from the current state."""

    def __init__(self, resource: str, action: str, current: str, allowed: list[str] | None = None):
        msg = f"Cannot {action} {resource.lower()} with status '{current}'"
        if allowed:
            msg += f" (allowed from: {', '.join(allowed)})"
        super().__init__(msg, details={"status": current, "action": action})
        self.resource = resource
        self.action = action
        self.current_status = current


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class PermissionDeniedError(Exception):
    """Raised by services for record-level authorization failures.

    Route-level role checks are handled by ``require_permission``; this
    covers rules that need the record, e.g. "approved activities can only
    be edited by the owner".
    """


class InvalidTokenError(Exception):
    """Supplier response token is unknown or does not match the order."""


class TokenExpiredError(Exception):
    """Supplier response token has expired or was already used."""
