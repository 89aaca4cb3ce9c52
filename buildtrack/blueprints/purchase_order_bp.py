"""
BuildTrack construction management API.
Purchase Order Blueprint: buyer-side order management.

Endpoints:
    GET    /api/v1/purchase-orders                              — List (project_id, status, supplier)
    POST   /api/v1/purchase-orders                              — Create and send
    GET    /api/v1/purchase-orders/rejection-reasons            — Rejection reason catalogue
    GET    /api/v1/purchase-orders/<id>                         — Detail (+ response history)
    PATCH  /api/v1/purchase-orders/<id>                         — Update (order_sent / order_modified)
    DELETE /api/v1/purchase-orders/<id>                         — Soft delete (owner)
    POST   /api/v1/purchase-orders/<id>/approve-modification    — Accept supplier changes
    POST   /api/v1/purchase-orders/<id>/reject-modification     — Decline supplier changes
    POST   /api/v1/purchase-orders/<id>/retry                   — Re-send a rejected order
    POST   /api/v1/purchase-orders/<id>/mark-ready              — Ready for delivery
    POST   /api/v1/purchase-orders/<id>/confirm-delivery        — Delivered + material created

Supplier token routes live in ``supplier_response_bp``.
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
from buildtrack.middleware.permission_required import require_any_permission, require_permission
from buildtrack.services import purchase_order_service
from buildtrack.services.rejection_reasons import rejection_reason_options
from buildtrack.utils.errors import api_success

logger = logging.getLogger(__name__)

purchase_order_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/v1")
register_error_handlers(purchase_order_bp)


def _flag(value, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "1", "yes")


@purchase_order_bp.route("/purchase-orders", methods=["GET"])
@require_permission("view_purchase_orders")
def list_purchase_orders():
    page, limit = page_args()
    filters = {
        key: request.args.get(key)
        for key in ("project_id", "status", "supplier")
        if request.args.get(key)
    }
    items, pagination = purchase_order_service.list_purchase_orders(
        filters, role=current_role(), user=current_user(), page=page, limit=limit,
    )
    return api_success(
        {"purchase_orders": [po.to_dict() for po in items], "pagination": pagination},
        "Purchase orders retrieved",
    )


@purchase_order_bp.route("/purchase-orders", methods=["POST"])
@require_permission("create_purchase_order")
def create_purchase_order():
    po = purchase_order_service.create_purchase_order(json_body(), actor=current_user())
    return api_success(po.to_dict(include_token=True), "Purchase order sent", status=201)


@purchase_order_bp.route("/purchase-orders/rejection-reasons", methods=["GET"])
@require_permission("view_purchase_orders")
def list_rejection_reasons():
    return api_success(rejection_reason_options(), "Rejection reasons retrieved")


@purchase_order_bp.route("/purchase-orders/<int:po_id>", methods=["GET"])
@require_permission("view_purchase_orders")
def get_purchase_order(po_id):
    data = purchase_order_service.get_purchase_order_detail(
        po_id, role=current_role(), user=current_user(),
    )
    return api_success(data, "Purchase order retrieved")


@purchase_order_bp.route("/purchase-orders/<int:po_id>", methods=["PATCH", "PUT"])
@require_permission("edit_purchase_order")
def update_purchase_order(po_id):
    po = purchase_order_service.update_purchase_order(po_id, json_body())
    return api_success(po.to_dict(include_token=True), "Purchase order updated")


@purchase_order_bp.route("/purchase-orders/<int:po_id>", methods=["DELETE"])
@require_permission("delete_purchase_order")
def delete_purchase_order(po_id):
    purchase_order_service.delete_purchase_order(po_id)
    return api_success({"id": po_id}, "Purchase order deleted")


@purchase_order_bp.route("/purchase-orders/<int:po_id>/approve-modification", methods=["POST"])
@require_permission("approve_purchase_order_modification")
def approve_modification(po_id):
    """Body: {approval_notes, auto_commit}."""
    data = json_body()
    po = purchase_order_service.approve_modification(
        po_id,
        actor=current_user(),
        notes=data.get("approval_notes"),
        auto_commit=_flag(data.get("auto_commit"), False),
    )
    return api_success(po.to_dict(include_token=True), "Modifications approved")


@purchase_order_bp.route("/purchase-orders/<int:po_id>/reject-modification", methods=["POST"])
@require_permission("reject_purchase_order_modification")
def reject_modification(po_id):
    """Body: {rejection_reason, revert_to_original=true}."""
    data = json_body()
    po = purchase_order_service.reject_modification(
        po_id,
        actor=current_user(),
        reason=data.get("rejection_reason"),
        revert_to_original=_flag(data.get("revert_to_original"), True),
    )
    return api_success(po.to_dict(include_token=True), "Modifications rejected")


@purchase_order_bp.route("/purchase-orders/<int:po_id>/retry", methods=["POST"])
@require_permission("retry_purchase_order")
def retry_order(po_id):
    adjustments = json_body().get("adjustments")
    po = purchase_order_service.retry_order(
        po_id, adjustments if isinstance(adjustments, dict) else None, actor=current_user(),
    )
    return api_success(po.to_dict(include_token=True), "Purchase order re-sent")


@purchase_order_bp.route("/purchase-orders/<int:po_id>/mark-ready", methods=["POST"])
@require_any_permission("mark_purchase_order_ready", "confirm_delivery")
def mark_ready(po_id):
    po = purchase_order_service.mark_ready(po_id, actor=current_user(), role=current_role())
    return api_success(po.to_dict(), "Purchase order ready for delivery")


@purchase_order_bp.route("/purchase-orders/<int:po_id>/confirm-delivery", methods=["POST"])
@require_permission("confirm_delivery")
def confirm_delivery(po_id):
    po, material = purchase_order_service.confirm_delivery(
        po_id, json_body(), actor=current_user(),
    )
    return api_success(
        {"purchase_order": po.to_dict(), "material": material.to_dict()},
        "Delivery confirmed",
    )
