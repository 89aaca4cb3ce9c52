"""Response envelopes for the BuildTrack API.

Success:  {"success": true,  "data": ..., "message": "...", **extra}
Failure:  {"success": false, "error": "...", "code": "ERR_*", "details": {...}}

``details`` is omitted when empty. Service exceptions are turned into the
failure envelope by ``exception_response``; views only call ``api_error``
directly for checks that live in the route itself.

Usage:
    from buildtrack.utils.errors import E, api_error, api_success

    return api_success(po.to_dict(), "Purchase order created", status=201)
    return api_error(E.FORBIDDEN, "Access to this project is not allowed")
"""

from __future__ import annotations

from flask import jsonify

from buildtrack.core.exceptions import (
    ConflictError,
    InvalidTokenError,
    NotFoundError,
    PermissionDeniedError,
    TokenExpiredError,
    TransitionError,
    ValidationError,
)


class E:
    """Machine-readable error codes."""

    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # 400
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"     # 400
    UNAUTHORIZED = "ERR_UNAUTHORIZED"                 # 401, bad supplier token
    FORBIDDEN = "ERR_FORBIDDEN"                       # 403
    NOT_FOUND = "ERR_NOT_FOUND"                       # 404
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"     # 409
    TOKEN_EXPIRED = "ERR_TOKEN_EXPIRED"               # 410, expired or used token
    DATABASE = "ERR_DATABASE"                         # 500
    INTERNAL = "ERR_INTERNAL"                         # 500


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_INVALID: 400,
    E.INVALID_TRANSITION: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.TOKEN_EXPIRED: 410,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}

# Checked in order; TransitionError must precede its ValidationError base.
_CODE_BY_EXCEPTION: tuple[tuple[type[Exception], str, str], ...] = (
    (NotFoundError, E.NOT_FOUND, "Not found"),
    (TransitionError, E.INVALID_TRANSITION, "Status change not allowed"),
    (ValidationError, E.VALIDATION_INVALID, "Invalid request"),
    (ConflictError, E.CONFLICT_DUPLICATE, "Duplicate entry"),
    (PermissionDeniedError, E.FORBIDDEN, "Permission denied"),
    (InvalidTokenError, E.UNAUTHORIZED, "Invalid response token"),
    (TokenExpiredError, E.TOKEN_EXPIRED, "Response token expired"),
)

SERVICE_EXCEPTIONS = tuple(exc for exc, _, _ in _CODE_BY_EXCEPTION)


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build the failure envelope; the status defaults from ``code``."""
    body: dict = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)


def api_success(data=None, message: str = "OK", *, status: int = 200, **extra):
    """Build the success envelope. Extra keywords land at the top level
    (``total=``, ``pagination=``, ``capital_warning=``, ...)."""
    body: dict = {"success": True, "data": data, "message": message}
    body.update(extra)
    return jsonify(body), status


def exception_response(error: Exception):
    """Map a service-layer exception to its failure envelope."""
    for exc_type, code, fallback in _CODE_BY_EXCEPTION:
        if isinstance(error, exc_type):
            details = getattr(error, "details", None)
            if isinstance(error, ConflictError):
                details = {error.field: error.value}
            return api_error(code, str(error) or fallback, details=details)
    return api_error(E.INTERNAL, "Internal server error")
