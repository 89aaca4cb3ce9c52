"""
BuildTrack construction management API.
Supplier response links.

These routes carry no caller identity: the one-time response token issued
with the order authenticates the supplier. They are rate limited per
remote address (see ``buildtrack.middleware.rate_limiter``).

    GET  /api/v1/purchase-orders/<id>/respond?token=   — Order terms for the supplier
    POST /api/v1/purchase-orders/<id>/respond          — {token, action, ...}
"""

from flask import Blueprint, request

from buildtrack.blueprints import json_body, register_error_handlers
from buildtrack.services import purchase_order_service
from buildtrack.services.rejection_reasons import rejection_reason_options
from buildtrack.utils.errors import api_success

supplier_response_bp = Blueprint("supplier_response", __name__, url_prefix="/api/v1")
register_error_handlers(supplier_response_bp)


@supplier_response_bp.route("/purchase-orders/<int:po_id>/respond", methods=["GET"])
def view_order(po_id):
    data = purchase_order_service.get_order_for_supplier(po_id, request.args.get("token"))
    return api_success(
        {"purchase_order": data, "rejection_reasons": rejection_reason_options()},
        "Purchase order retrieved",
    )


@supplier_response_bp.route("/purchase-orders/<int:po_id>/respond", methods=["POST"])
def respond(po_id):
    """Body: {token, action: accept|reject|modify, supplier_notes,
    rejection_reason, rejection_subcategory, modifications}."""
    data = json_body()
    token = data.get("token") or request.args.get("token")
    po = purchase_order_service.respond_to_order(po_id, token, data)
    return api_success(
        {
            "id": po.id,
            "purchase_order_number": po.purchase_order_number,
            "status": po.status,
            "financial_status": po.financial_status,
            "is_retryable": po.is_retryable,
            "retry_recommendation": po.retry_recommendation,
        },
        f"Response recorded: {data.get('action')}",
    )
