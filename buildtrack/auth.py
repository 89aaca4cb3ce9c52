"""
Caller identity for ``/api/v1``.

With ``API_AUTH_ENABLED`` on, callers present a key from ``API_KEYS``
(``"key:role[:user],..."``) in ``X-API-Key`` or ``?api_key=``. With it off
(development, tests) the role comes from ``X-User-Role`` (default owner) and
the user from ``X-User``.

Supplier ``.../respond`` routes skip both; the one-time token in the URL is
checked by the purchase order service. Authorization per route lives in
``buildtrack.middleware.permission_required``.
"""

import logging

from flask import current_app, g, jsonify, request

from buildtrack.services.permission_service import normalize_role

logger = logging.getLogger(__name__)

DEFAULT_DEV_ROLE = "owner"

_OPEN_PATHS = frozenset({"/api/v1/health"})
_TOKEN_ROUTE_SUFFIX = "/respond"
_BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


def parse_api_keys(raw: str) -> dict[str, tuple[str, str]]:
    """``"k1:owner:alice,k2:clerk"`` -> ``{"k1": ("owner", "alice"), "k2": ("clerk", "clerk")}``.

    Entries without a known role are dropped with a warning.
    """
    keys = {}
    for entry in filter(None, (part.strip() for part in (raw or "").split(","))):
        key, _, rest = entry.partition(":")
        raw_role, _, user = rest.partition(":")
        role = normalize_role(raw_role)
        if role is None:
            logger.warning("API key entry dropped: role %r not recognised", raw_role)
            continue
        keys[key.strip()] = (role, user.strip() or role)
    return keys


def _keys_required() -> bool:
    return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in _FALSE_VALUES


def _presented_key() -> str | None:
    return (
        request.headers.get("X-API-Key", "").strip()
        or request.args.get("api_key", "").strip()
        or None
    )


def _deny(message: str, status: int = 401):
    return jsonify({"success": False, "error": message}), status


def _non_json_body():
    # forms cannot send application/json, which also keeps cross-site posts out
    if request.method not in _BODY_METHODS or not request.content_length:
        return None
    if "application/json" in (request.content_type or ""):
        return None
    return _deny("Content-Type must be application/json for state-changing requests", 415)


def _identity_from_headers():
    raw_role = request.headers.get("X-User-Role", "").strip() or DEFAULT_DEV_ROLE
    role = normalize_role(raw_role)
    if role is None:
        return None, f"Unknown role '{raw_role}'"
    return (role, request.headers.get("X-User", "").strip() or f"dev-{role}"), None


def _identity_from_key():
    api_key = _presented_key()
    if api_key is None:
        return None, "Authentication required. Provide X-API-Key header."
    identity = parse_api_keys(current_app.config.get("API_KEYS", "")).get(api_key)
    if identity is None:
        logger.warning("Rejected API key %s...", api_key[:4], extra={"event_type": "auth_failed"})
        return None, "Invalid API key"
    return identity, None


def resolve_identity():
    """Fill ``g.current_user_role`` and ``g.current_user``; a 401 response on failure."""
    identity, problem = _identity_from_key() if _keys_required() else _identity_from_headers()
    if identity is None:
        return _deny(problem)
    g.current_user_role, g.current_user = identity
    return None


def init_auth(app):
    @app.before_request
    def _authenticate():
        path = request.path
        if not path.startswith("/api/v1/") or path in _OPEN_PATHS or request.method == "OPTIONS":
            return None

        rejected = _non_json_body()
        if rejected is not None:
            return rejected

        if path.endswith(_TOKEN_ROUTE_SUFFIX):
            g.current_user_role, g.current_user = "supplier", None
            return None

        return resolve_identity()
