"""
Route guards over the role permission matrix.

``buildtrack.auth`` resolves the caller before any view runs and leaves the
role in ``g.current_user_role``; the guards below only read it.

    @material_bp.route("/materials/<int:material_id>/approve", methods=["POST"])
    @require_permission("approve_material")
    def approve_material(material_id): ...

    @project_bp.route("/projects", methods=["GET"])
    @require_any_permission("view_projects", "view_financing")
    def list_projects(): ...

A denied call answers 403 with the codename(s) it was missing:

    {"success": false, "error": "Permission denied", "required": "approve_material"}
    {"success": false, "error": "Permission denied", "required_any": [...]}
"""

import functools
import logging

from flask import g, jsonify, request

from buildtrack.services.permission_service import has_any_permission, has_permission

logger = logging.getLogger(__name__)


def _guard(allowed, missing: dict):
    """Wrap a view so it runs only when ``allowed(role)`` holds."""
    def decorator(view):
        @functools.wraps(view)
        def wrapper(*args, **kwargs):
            role = getattr(g, "current_user_role", None)
            if allowed(role):
                return view(*args, **kwargs)
            logger.warning(
                "Permission denied for role=%s on %s %s",
                role, request.method, request.path,
                extra={"event_type": "permission_denied"},
            )
            return jsonify({"success": False, "error": "Permission denied", **missing}), 403
        return wrapper
    return decorator


def require_permission(codename: str):
    """Allow the view only for roles granted ``codename``."""
    return _guard(lambda role: has_permission(role, codename), {"required": codename})


def require_any_permission(*codenames: str):
    """Allow the view for roles granted at least one of ``codenames``."""
    names = list(codenames)
    return _guard(lambda role: has_any_permission(role, names), {"required_any": names})
