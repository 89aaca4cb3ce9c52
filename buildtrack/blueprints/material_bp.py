"""
BuildTrack construction management API.
Material Blueprint: material entries, quantity tracking and approvals.

Endpoints:
    GET    /api/v1/materials                        — List (filters, page/limit, sort)
    POST   /api/v1/materials                        — Create
    GET    /api/v1/materials/<id>                   — Detail (+ project, phase, discrepancy)
    PATCH  /api/v1/materials/<id>                   — Update
    DELETE /api/v1/materials/<id>                   — Soft delete (owner)
    POST   /api/v1/materials/<id>/restore           — Restore archived (owner)
    POST   /api/v1/materials/<id>/submit            — Submit for approval
    POST   /api/v1/materials/<id>/approve           — Approve {notes}
    POST   /api/v1/materials/<id>/reject            — Reject {reason}
    GET    /api/v1/materials/<id>/discrepancy       — Current discrepancy metrics
"""

import logging

from flask import Blueprint, request

from buildtrack.blueprints import (
    current_role,
    current_user,
    json_body,
    page_args,
    register_error_handlers,
)
from buildtrack.middleware.permission_required import require_permission
from buildtrack.services import material_service
from buildtrack.utils.errors import api_success

logger = logging.getLogger(__name__)

material_bp = Blueprint("materials", __name__, url_prefix="/api/v1")
register_error_handlers(material_bp)

_LIST_FILTERS = ("project_id", "phase_id", "category", "status", "supplier", "search", "archived")


@material_bp.route("/materials", methods=["GET"])
@require_permission("view_materials")
def list_materials():
    page, limit = page_args()
    filters = {key: request.args.get(key) for key in _LIST_FILTERS if request.args.get(key)}
    items, pagination = material_service.list_materials(
        filters,
        page=page,
        limit=limit,
        sort_by=request.args.get("sort_by", "created_at"),
        sort_order=request.args.get("sort_order", "desc"),
    )
    return api_success(
        {"materials": [m.to_dict() for m in items], "pagination": pagination},
        "Materials retrieved",
    )


@material_bp.route("/materials", methods=["POST"])
@require_permission("create_material")
def create_material():
    material, warnings = material_service.create_material(
        json_body(), actor=current_user(), role=current_role(),
    )
    extra = {}
    if warnings:
        extra["capital_warning"] = warnings[0]
        extra["warnings"] = warnings
    return api_success(material.to_dict(), "Material created", status=201, **extra)


@material_bp.route("/materials/<int:material_id>", methods=["GET"])
@require_permission("view_materials")
def get_material(material_id):
    return api_success(material_service.get_material_detail(material_id), "Material retrieved")


@material_bp.route("/materials/<int:material_id>", methods=["PATCH", "PUT"])
@require_permission("edit_material")
def update_material(material_id):
    material = material_service.update_material(
        material_id, json_body(), actor=current_user(), role=current_role(),
    )
    return api_success(material.to_dict(), "Material updated")


@material_bp.route("/materials/<int:material_id>", methods=["DELETE"])
@require_permission("delete_material")
def delete_material(material_id):
    material_service.delete_material(material_id, role=current_role())
    return api_success({"id": material_id}, "Material archived")


@material_bp.route("/materials/<int:material_id>/restore", methods=["POST"])
@require_permission("delete_material")
def restore_material(material_id):
    material = material_service.restore_material(material_id)
    return api_success(material.to_dict(), "Material restored")


@material_bp.route("/materials/<int:material_id>/submit", methods=["POST"])
@require_permission("submit_material")
def submit_material(material_id):
    material = material_service.submit_material(
        material_id, actor=current_user(), role=current_role(),
    )
    return api_success(material.to_dict(), "Material submitted for approval")


@material_bp.route("/materials/<int:material_id>/approve", methods=["POST"])
@require_permission("approve_material")
def approve_material(material_id):
    material, already_approved, budget_warning = material_service.approve_material(
        material_id, actor=current_user(), role=current_role(),
        notes=json_body().get("notes"),
    )
    message = "Material already approved" if already_approved else "Material approved"
    return api_success(
        material.to_dict(), message,
        already_approved=already_approved, phase_budget_warning=budget_warning,
    )


@material_bp.route("/materials/<int:material_id>/reject", methods=["POST"])
@require_permission("reject_material")
def reject_material(material_id):
    material = material_service.reject_material(
        material_id, actor=current_user(), role=current_role(),
        reason=json_body().get("reason"),
    )
    return api_success(material.to_dict(), "Material rejected")


@material_bp.route("/materials/<int:material_id>/discrepancy", methods=["GET"])
@require_permission("view_materials")
def material_discrepancy(material_id):
    return api_success(
        material_service.material_discrepancy(material_id), "Discrepancy calculated",
    )
