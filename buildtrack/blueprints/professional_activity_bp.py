"""
BuildTrack construction management API.
Professional activity endpoints: site visits, inspections, revisions and
their approval workflow, plus the fees raised by approved activities.

    GET    /api/v1/professional-activities                 — List (filters, from/to, page/limit)
    POST   /api/v1/professional-activities                 — Log an activity
    GET    /api/v1/professional-activities/<id>            — Detail (+ service, library, project, phase, fee)
    PATCH  /api/v1/professional-activities/<id>            — Update
    DELETE /api/v1/professional-activities/<id>            — Soft delete (owner)
    POST   /api/v1/professional-activities/<id>/submit     — Submit for approval
    POST   /api/v1/professional-activities/<id>/approve    — Approve {approval_notes}
    POST   /api/v1/professional-activities/<id>/reject     — Reject {rejection_reason}

    GET    /api/v1/professional-fees                       — List (project_id, professional_service_id, status)
    GET    /api/v1/professional-fees/<id>                  — Detail
    POST   /api/v1/professional-fees/<id>/approve          — Approve {approval_notes}
    POST   /api/v1/professional-fees/<id>/reject           — Reject {rejection_reason}
    POST   /api/v1/professional-fees/<id>/pay              — Mark paid {payment_reference}
"""

from flask import Blueprint, request

from buildtrack.blueprints import (
    current_role,
    current_user,
    json_body,
    page_args,
    register_error_handlers,
)
from buildtrack.middleware.permission_required import require_permission
from buildtrack.services import activity_service, fee_service
from buildtrack.utils.errors import api_success

professional_activity_bp = Blueprint("professional_activities", __name__, url_prefix="/api/v1")
register_error_handlers(professional_activity_bp)

_LIST_FILTERS = (
    "project_id", "professional_service_id", "activity_type", "status", "phase_id", "from", "to",
)


@professional_activity_bp.route("/professional-activities", methods=["GET"])
@require_permission("view_professional_services")
def list_activities():
    page, limit = page_args()
    filters = {key: request.args.get(key) for key in _LIST_FILTERS if request.args.get(key)}
    items, pagination = activity_service.list_activities(filters, page=page, limit=limit)
    return api_success(
        {"activities": [a.to_dict() for a in items], "pagination": pagination},
        "Activities retrieved",
    )


@professional_activity_bp.route("/professional-activities", methods=["POST"])
@require_permission("create_professional_activity")
def create_activity():
    activity = activity_service.create_activity(json_body(), actor=current_user())
    return api_success(activity.to_dict(), "Activity logged", status=201)


@professional_activity_bp.route("/professional-activities/<int:activity_id>", methods=["GET"])
@require_permission("view_professional_services")
def get_activity(activity_id):
    return api_success(activity_service.get_activity_detail(activity_id), "Activity retrieved")


@professional_activity_bp.route(
    "/professional-activities/<int:activity_id>", methods=["PATCH", "PUT"],
)
@require_permission("edit_professional_activity")
def update_activity(activity_id):
    activity = activity_service.update_activity(activity_id, json_body(), role=current_role())
    return api_success(activity.to_dict(), "Activity updated")


@professional_activity_bp.route("/professional-activities/<int:activity_id>", methods=["DELETE"])
@require_permission("delete_professional_activity")
def delete_activity(activity_id):
    activity_service.delete_activity(activity_id)
    return api_success({"id": activity_id}, "Activity deleted")


@professional_activity_bp.route(
    "/professional-activities/<int:activity_id>/submit", methods=["POST"],
)
@require_permission("create_professional_activity")
def submit_activity(activity_id):
    activity = activity_service.submit_activity(
        activity_id, actor=current_user(), role=current_role(),
    )
    return api_success(activity.to_dict(), "Activity submitted for approval")


@professional_activity_bp.route(
    "/professional-activities/<int:activity_id>/approve", methods=["POST"],
)
@require_permission("approve_professional_activity")
def approve_activity(activity_id):
    activity = activity_service.approve_activity(
        activity_id, actor=current_user(), role=current_role(),
        notes=json_body().get("approval_notes"),
    )
    return api_success(activity.to_dict(), "Activity approved")


@professional_activity_bp.route(
    "/professional-activities/<int:activity_id>/reject", methods=["POST"],
)
@require_permission("reject_professional_activity")
def reject_activity(activity_id):
    activity = activity_service.reject_activity(
        activity_id, actor=current_user(), role=current_role(),
        reason=json_body().get("rejection_reason"),
    )
    return api_success(activity.to_dict(), "Activity rejected")


# ── Fees ─────────────────────────────────────────────────────────────────────


@professional_activity_bp.route("/professional-fees", methods=["GET"])
@require_permission("view_professional_fees")
def list_fees():
    page, limit = page_args()
    filters = {
        key: request.args.get(key)
        for key in ("project_id", "professional_service_id", "status")
        if request.args.get(key)
    }
    items, pagination = fee_service.list_fees(filters, page=page, limit=limit)
    return api_success(
        {"fees": [f.to_dict() for f in items], "pagination": pagination}, "Fees retrieved",
    )


@professional_activity_bp.route("/professional-fees/<int:fee_id>", methods=["GET"])
@require_permission("view_professional_fees")
def get_fee(fee_id):
    return api_success(fee_service.get_fee(fee_id).to_dict(), "Fee retrieved")


@professional_activity_bp.route("/professional-fees/<int:fee_id>/approve", methods=["POST"])
@require_permission("approve_professional_fee")
def approve_fee(fee_id):
    fee = fee_service.approve_fee(
        fee_id, actor=current_user(), role=current_role(),
        notes=json_body().get("approval_notes"),
    )
    return api_success(fee.to_dict(), "Fee approved")


@professional_activity_bp.route("/professional-fees/<int:fee_id>/reject", methods=["POST"])
@require_permission("approve_professional_fee")
def reject_fee(fee_id):
    fee = fee_service.reject_fee(
        fee_id, actor=current_user(), role=current_role(),
        reason=json_body().get("rejection_reason"),
    )
    return api_success(fee.to_dict(), "Fee rejected")


@professional_activity_bp.route("/professional-fees/<int:fee_id>/pay", methods=["POST"])
@require_permission("pay_professional_fee")
def pay_fee(fee_id):
    fee = fee_service.pay_fee(
        fee_id, actor=current_user(), payment_reference=json_body().get("payment_reference"),
    )
    return api_success(fee.to_dict(), "Fee paid")
