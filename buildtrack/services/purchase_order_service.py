"""
Purchase order service.

Lifecycle:
    create ─▶ order_sent ─(supplier token)─▶ accept / reject / modify
    order_modified ─▶ approve-modification / reject-modification
    order_rejected (retryable) ─▶ retry ─▶ retry_sent
    order_accepted ─▶ mark-ready ─▶ ready_for_delivery ─▶ confirm-delivery ─▶ delivered

Accepting an order commits its value against project capital; confirming
delivery fulfils it and creates a received material.
"""

import logging
import math
import secrets
from datetime import timedelta, timezone

from flask import current_app

from buildtrack.core.exceptions import (
    InvalidTokenError,
    PermissionDeniedError,
    TokenExpiredError,
    ValidationError,
)
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.project import Phase, Project
from buildtrack.models.purchase_order import (
    EDITABLE_STATUSES,
    RESPONDABLE_STATUSES,
    SUPPLIER_ACTIONS,
    PurchaseOrder,
)
from buildtrack.models.soft_delete import iso, utcnow
from buildtrack.services import finance_service, material_service
from buildtrack.services.calculations import calculate_total_cost
from buildtrack.services.project_service import get_phase_for_project, get_project
from buildtrack.services.rejection_reasons import REJECTION_REASONS, assess_retryability
from buildtrack.utils.helpers import clean_str, get_active, parse_number, require_date, parse_id

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_HOURS = 168
MAX_PAGE_SIZE = 100
TOTAL_TOLERANCE = 0.01


# ── Helpers ──────────────────────────────────────────────────────────────────


def _aware(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _issue_token(po: PurchaseOrder) -> None:
    ttl = current_app.config.get("PO_RESPONSE_TOKEN_TTL_HOURS", DEFAULT_TOKEN_TTL_HOURS)
    po.response_token = secrets.token_urlsafe(32)
    po.response_token_expires_at = utcnow() + timedelta(hours=float(ttl))
    po.response_token_used_at = None


def _log_communication(po: PurchaseOrder, kind: str, summary: str, *, by: str | None = None) -> None:
    entry = {"type": kind, "at": utcnow().isoformat(), "by": by or "system", "summary": summary}
    po.communications = list(po.communications or []) + [entry]


def _future_date(value, field):
    parsed = require_date(value, field)
    if parsed <= utcnow().date():
        raise ValidationError(f"{field} must be in the future", details={field: parsed.isoformat()})
    return parsed


def _require_capital(po: PurchaseOrder, amount: float) -> None:
    check = finance_service.validate_capital_availability(po.project_id, amount)
    if not check["is_valid"] and not check["capital_not_set"]:
        raise ValidationError(
            check["message"],
            details={"available": check["available"], "required": check["required"]},
        )


def _commit_order(po: PurchaseOrder) -> None:
    po.status = "order_accepted"
    po.financial_status = "committed"
    po.committed_at = utcnow()


def next_po_number(today=None) -> str:
    """``PO-YYYYMMDD-NNN``; NNN restarts every day. Deleted orders keep their numbers."""
    today = today or utcnow().date()
    prefix = f"PO-{today.strftime('%Y%m%d')}-"
    numbers = [
        row[0] for row in db.session.query(PurchaseOrder.purchase_order_number)
        .filter(PurchaseOrder.purchase_order_number.like(f"{prefix}%"))
        .all()
    ]
    highest = 0
    for number in numbers:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:03d}"


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def list_purchase_orders(filters: dict, *, role: str | None = None, user: str | None = None,
                         page: int = 1, limit: int = 20) -> tuple[list, dict]:
    """List orders. Suppliers only see orders addressed to their email."""
    query = PurchaseOrder.query_active()
    if role == "supplier":
        query = query.filter(PurchaseOrder.supplier_email == (user or ""))
    if filters.get("project_id"):
        query = query.filter(PurchaseOrder.project_id == parse_id(filters["project_id"], "project_id"))
    if filters.get("status"):
        query = query.filter(PurchaseOrder.status == filters["status"])
    if filters.get("supplier"):
        query = query.filter(PurchaseOrder.supplier_name.ilike(f"%{filters['supplier']}%"))

    query = query.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


def get_purchase_order(po_id) -> PurchaseOrder:
    return get_active(PurchaseOrder, po_id, "Purchase order")


def response_history(po: PurchaseOrder) -> list[dict]:
    """Ordered supplier-communication timeline derived from the order's fields."""
    history = [{
        "event": "sent",
        "at": iso(po.created_at),
        "by": po.created_by,
        "details": {"total_cost": po.total_cost, "delivery_date": iso(po.delivery_date)},
    }]
    if po.retry_count:
        history.append({
            "event": "retry",
            "at": iso(po.last_retry_at),
            "details": {"retry_count": po.retry_count},
        })
    if po.supplier_response:
        details = {"notes": po.supplier_notes}
        if po.supplier_response == "reject":
            details.update({
                "rejection_reason": po.rejection_reason,
                "rejection_subcategory": po.rejection_subcategory,
                "is_retryable": po.is_retryable,
            })
        elif po.supplier_response == "modify":
            details["modifications"] = po.supplier_modifications
        history.append({
            "event": f"supplier_{po.supplier_response}",
            "at": iso(po.supplier_response_date),
            "by": po.supplier_name,
            "details": details,
        })
    if po.modification_decided_at:
        history.append({
            "event": "modification_approved" if po.modification_approved else "modification_rejected",
            "at": iso(po.modification_decided_at),
            "by": po.modification_decided_by,
            "details": {"notes": po.modification_notes},
        })
    if po.delivery_confirmed_at:
        history.append({
            "event": "delivered",
            "at": iso(po.delivery_confirmed_at),
            "by": po.delivery_confirmed_by,
            "details": {
                "quantity": po.actual_quantity_delivered,
                "unit_cost": po.actual_unit_cost,
                "material_id": po.linked_material_id,
            },
        })
    return sorted(history, key=lambda item: item["at"] or "")


def get_purchase_order_detail(po_id, *, role: str | None = None, user: str | None = None) -> dict:
    po = get_purchase_order(po_id)
    if role == "supplier" and po.supplier_email != user:
        raise PermissionDeniedError("This purchase order is not addressed to you")
    data = po.to_dict(include_token=role in ("owner", "pm"))
    project = db.session.get(Project, po.project_id)
    data["project"] = project.summary() if project else None
    phase = db.session.get(Phase, po.phase_id)
    data["phase"] = phase.summary() if phase else None
    data["response_history"] = response_history(po)
    data["communications"] = po.communications or []
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Create / update / delete
# ═════════════════════════════════════════════════════════════════════════════


def _validated_total(quantity: float, unit_cost: float, supplied_total) -> float:
    total = calculate_total_cost(quantity, unit_cost)
    if supplied_total not in (None, ""):
        supplied = parse_number(supplied_total, "total_cost", minimum=0)
        if abs(supplied - total) > TOTAL_TOLERANCE:
            raise ValidationError(
                f"total_cost ({supplied:.2f}) does not match quantity x unit cost ({total:.2f})",
                details={"total_cost": supplied, "expected": total},
            )
    return total


def create_purchase_order(data: dict, *, actor: str | None) -> PurchaseOrder:
    """Create and send an order to a supplier.

    Raises:
        NotFoundError: project or phase missing.
        ValidationError: missing fields, non-positive amounts, past delivery
                         date, or a total that does not match.
    """
    for field in ("project_id", "phase_id", "supplier_name", "material_name", "delivery_date"):
        if data.get(field) in (None, ""):
            raise ValidationError(f"{field} is required", details={field: "required"})

    project = get_project(data["project_id"])
    phase = get_phase_for_project(data["phase_id"], project.id)
    quantity = parse_number(
        data.get("quantity_ordered"), "quantity_ordered", required=True, exclusive_minimum=0,
    )
    unit_cost = parse_number(data.get("unit_cost"), "unit_cost", required=True, exclusive_minimum=0)
    delivery_date = _future_date(data["delivery_date"], "delivery_date")
    total = _validated_total(quantity, unit_cost, data.get("total_cost"))

    supplier_email = clean_str(data.get("supplier_email"), 255)
    if supplier_email and "@" not in supplier_email:
        raise ValidationError("supplier_email must be a valid email address")

    po = PurchaseOrder(
        purchase_order_number=next_po_number(),
        project_id=project.id,
        phase_id=phase.id,
        supplier_name=clean_str(data["supplier_name"], 200),
        supplier_email=supplier_email,
        supplier_phone=clean_str(data.get("supplier_phone"), 50),
        material_name=clean_str(data["material_name"], 200),
        description=data.get("description"),
        unit=clean_str(data.get("unit"), 30) or "piece",
        quantity_ordered=quantity,
        unit_cost=unit_cost,
        total_cost=total,
        delivery_date=delivery_date,
        terms=data.get("terms"),
        notes=data.get("notes"),
        status="order_sent",
        financial_status="not_committed",
        retry_count=0,
        needs_reassignment=False,
        communications=[],
        created_by=actor,
    )
    _issue_token(po)
    _log_communication(po, "order_sent", f"Order sent to {po.supplier_name}", by=actor)
    db.session.add(po)
    db.session.flush()
    write_audit(
        entity_type="purchase_order", entity_id=po.id, action="create", project_id=project.id,
        diff={"purchase_order_number": po.purchase_order_number, "total_cost": total},
    )
    db.session.commit()
    logger.info(
        "Purchase order %s sent to %s", po.purchase_order_number, po.supplier_name,
        extra={"project_id": project.id},
    )
    return po


def update_purchase_order(po_id, data: dict) -> PurchaseOrder:
    po = get_purchase_order(po_id)
    if po.status not in EDITABLE_STATUSES:
        raise ValidationError(
            f"Cannot edit purchase order with status '{po.status}'",
            details={"status": po.status},
        )

    for field, max_len in (("supplier_name", 200), ("material_name", 200)):
        if field in data:
            value = clean_str(data.get(field), max_len)
            if not value:
                raise ValidationError(f"{field} cannot be empty")
            setattr(po, field, value)
    for field, max_len in (("supplier_email", 255), ("supplier_phone", 50), ("unit", 30)):
        if field in data:
            setattr(po, field, clean_str(data.get(field), max_len))
    for field in ("description", "terms", "notes"):
        if field in data:
            setattr(po, field, data.get(field))
    if "phase_id" in data:
        po.phase_id = get_phase_for_project(data["phase_id"], po.project_id).id
    if "delivery_date" in data:
        po.delivery_date = _future_date(data["delivery_date"], "delivery_date")
    if "quantity_ordered" in data:
        po.quantity_ordered = parse_number(
            data.get("quantity_ordered"), "quantity_ordered", required=True, exclusive_minimum=0,
        )
    if "unit_cost" in data:
        po.unit_cost = parse_number(
            data.get("unit_cost"), "unit_cost", required=True, exclusive_minimum=0,
        )
    po.total_cost = _validated_total(po.quantity_ordered, po.unit_cost, data.get("total_cost"))

    write_audit(entity_type="purchase_order", entity_id=po.id, action="update",
                project_id=po.project_id, diff={"fields": sorted(data)})
    db.session.commit()
    return po


def delete_purchase_order(po_id) -> PurchaseOrder:
    po = get_purchase_order(po_id)
    if po.financial_status == "committed":
        raise ValidationError(
            "Cannot delete a committed purchase order", details={"status": po.status},
        )
    po.soft_delete()
    write_audit(entity_type="purchase_order", entity_id=po.id, action="delete",
                project_id=po.project_id)
    db.session.commit()
    return po


# ═════════════════════════════════════════════════════════════════════════════
# Supplier response (token authenticated)
# ═════════════════════════════════════════════════════════════════════════════


def _check_token(po: PurchaseOrder, token: str | None) -> None:
    if not token or not po.response_token or not secrets.compare_digest(
        str(token), po.response_token,
    ):
        raise InvalidTokenError("Invalid response token")
    if po.response_token_used_at is not None:
        raise TokenExpiredError("This response link has already been used")
    expires = _aware(po.response_token_expires_at)
    if expires is not None and expires < utcnow():
        raise TokenExpiredError("This response link has expired")


def _parse_modifications(raw) -> dict:
    if not isinstance(raw, dict) or not raw:
        raise ValidationError("modifications are required for action=modify")
    mods = {}
    if raw.get("quantity") not in (None, ""):
        mods["quantity"] = parse_number(raw["quantity"], "modifications.quantity",
                                        exclusive_minimum=0)
    if raw.get("unit_cost") not in (None, ""):
        mods["unit_cost"] = parse_number(raw["unit_cost"], "modifications.unit_cost",
                                         exclusive_minimum=0)
    if raw.get("delivery_date") not in (None, ""):
        mods["delivery_date"] = _future_date(
            raw["delivery_date"], "modifications.delivery_date",
        ).isoformat()
    if not mods:
        raise ValidationError(
            "At least one of quantity, unit_cost or delivery_date must be modified",
        )
    mods["notes"] = raw.get("notes")
    return mods


def get_order_for_supplier(po_id, token: str | None) -> dict:
    """Order terms as shown on the supplier's response link.

    Validates the token without consuming it.
    """
    po = get_purchase_order(po_id)
    _check_token(po, token)
    data = po.to_dict()
    project = db.session.get(Project, po.project_id)
    data["project"] = {"project_name": project.project_name} if project else None
    data["awaiting_response"] = po.status in RESPONDABLE_STATUSES
    data["token_expires_at"] = iso(po.response_token_expires_at)
    return data


def respond_to_order(po_id, token: str | None, data: dict) -> PurchaseOrder:
    """Record a supplier's accept / reject / modify answer.

    Raises:
        InvalidTokenError: token missing or wrong (401).
        TokenExpiredError: token expired or already used (410).
        ValidationError: order not awaiting a response, bad action or payload.
    """
    po = get_purchase_order(po_id)
    _check_token(po, token)
    if po.status not in RESPONDABLE_STATUSES:
        raise ValidationError(
            f"Purchase order is not awaiting a supplier response (status: {po.status})",
        )

    action = data.get("action")
    if action not in SUPPLIER_ACTIONS:
        raise ValidationError(
            f"action must be one of: {', '.join(sorted(SUPPLIER_ACTIONS))}",
            details={"action": action},
        )
    notes = clean_str(data.get("supplier_notes") or data.get("notes"))

    if action == "accept":
        _require_capital(po, po.total_cost)
        _commit_order(po)
        summary = "Supplier accepted the order"
    elif action == "reject":
        reason = data.get("rejection_reason")
        if reason not in REJECTION_REASONS:
            raise ValidationError(
                f"rejection_reason must be one of: {', '.join(REJECTION_REASONS)}",
                details={"rejection_reason": reason},
            )
        if not notes:
            raise ValidationError(
                "supplier_notes are required when rejecting", details={"supplier_notes": "required"},
            )
        assessment = assess_retryability(reason, data.get("rejection_subcategory"))
        po.status = "order_rejected"
        po.rejection_reason = reason
        po.rejection_subcategory = clean_str(data.get("rejection_subcategory"), 100)
        po.is_retryable = assessment["retryable"]
        po.retry_recommendation = assessment["recommendation"]
        po.needs_reassignment = not assessment["retryable"]
        summary = f"Supplier rejected the order ({reason})"
    else:
        po.supplier_modifications = _parse_modifications(
            data.get("modifications") or data.get("supplier_modifications"),
        )
        po.modification_approved = None
        po.modification_decided_at = None
        po.modification_decided_by = None
        po.status = "order_modified"
        summary = "Supplier proposed modifications"

    now = utcnow()
    po.supplier_response = action
    po.supplier_response_date = now
    po.supplier_notes = notes
    po.response_token_used_at = now
    _log_communication(po, f"supplier_{action}", summary, by=po.supplier_name)
    write_audit(
        entity_type="purchase_order", entity_id=po.id, action="purchase_order.respond",
        actor=po.supplier_name, actor_role="supplier", project_id=po.project_id,
        diff={"action": action, "status": po.status},
    )
    db.session.commit()
    logger.info("Supplier %s order %s", action, po.purchase_order_number,
                extra={"project_id": po.project_id})
    return po


# ═════════════════════════════════════════════════════════════════════════════
# Buyer decisions
# ═════════════════════════════════════════════════════════════════════════════


def _pending_modification(po: PurchaseOrder) -> dict:
    if po.status != "order_modified" or not po.supplier_modifications:
        raise ValidationError("Purchase order has no pending supplier modifications")
    if po.modification_approved is not None:
        raise ValidationError("Supplier modifications were already decided")
    return po.supplier_modifications


def approve_modification(po_id, *, actor: str | None, notes: str | None = None,
                         auto_commit: bool = False) -> PurchaseOrder:
    """Accept the supplier's proposed changes.

    With ``auto_commit`` the order is committed straight away; otherwise it
    is re-sent to the supplier with a fresh token for final confirmation.
    """
    po = get_purchase_order(po_id)
    mods = _pending_modification(po)

    quantity = mods.get("quantity") or po.quantity_ordered
    unit_cost = mods.get("unit_cost") or po.unit_cost
    new_total = calculate_total_cost(quantity, unit_cost)
    if auto_commit:
        _require_capital(po, new_total)

    po.quantity_ordered = quantity
    po.unit_cost = unit_cost
    po.total_cost = new_total
    if mods.get("delivery_date"):
        po.delivery_date = require_date(mods["delivery_date"], "delivery_date")
    po.modification_approved = True
    po.modification_decided_at = utcnow()
    po.modification_decided_by = actor
    po.modification_notes = clean_str(notes)

    if auto_commit:
        _commit_order(po)
    else:
        po.status = "order_sent"
        _issue_token(po)
    _log_communication(po, "modification_approved",
                       "Modifications approved" + (" and committed" if auto_commit else ""),
                       by=actor)
    write_audit(
        entity_type="purchase_order", entity_id=po.id, action="purchase_order.approve_modification",
        project_id=po.project_id, diff={"status": po.status, "total_cost": new_total},
    )
    db.session.commit()
    return po


def reject_modification(po_id, *, actor: str | None, reason: str | None,
                        revert_to_original: bool = True) -> PurchaseOrder:
    """Decline the supplier's changes.

    The original terms are re-sent with a fresh token, or the order is
    cancelled when ``revert_to_original`` is false.
    """
    reason = clean_str(reason)
    if not reason:
        raise ValidationError("rejection_reason is required", details={"rejection_reason": "required"})
    po = get_purchase_order(po_id)
    _pending_modification(po)

    po.modification_approved = False
    po.modification_decided_at = utcnow()
    po.modification_decided_by = actor
    po.modification_notes = reason
    po.supplier_modifications = None
    if revert_to_original:
        po.status = "order_sent"
        _issue_token(po)
    else:
        po.status = "cancelled"
        po.response_token_used_at = utcnow()
    _log_communication(po, "modification_rejected", f"Modifications rejected: {reason}", by=actor)
    write_audit(
        entity_type="purchase_order", entity_id=po.id, action="purchase_order.reject_modification",
        project_id=po.project_id, diff={"status": po.status, "reason": reason},
    )
    db.session.commit()
    return po


def retry_order(po_id, adjustments: dict | None, *, actor: str | None) -> PurchaseOrder:
    """Re-send a retryable rejected order, optionally with adjusted terms."""
    po = get_purchase_order(po_id)
    if po.status != "order_rejected":
        raise ValidationError(f"Only rejected orders can be retried (status: {po.status})")
    if not po.is_retryable:
        raise ValidationError(
            "This rejection is not retryable; assign a different supplier",
            details={"rejection_reason": po.rejection_reason},
        )

    adjustments = adjustments or {}
    if adjustments.get("unit_cost") not in (None, ""):
        po.unit_cost = parse_number(adjustments["unit_cost"], "adjustments.unit_cost",
                                    exclusive_minimum=0)
    if adjustments.get("quantity") not in (None, ""):
        po.quantity_ordered = parse_number(adjustments["quantity"], "adjustments.quantity",
                                           exclusive_minimum=0)
    if adjustments.get("delivery_date") not in (None, ""):
        po.delivery_date = _future_date(adjustments["delivery_date"], "adjustments.delivery_date")
    po.total_cost = calculate_total_cost(po.quantity_ordered, po.unit_cost)

    po.retry_count = (po.retry_count or 0) + 1
    po.last_retry_at = utcnow()
    po.status = "retry_sent"
    po.supplier_response = None
    po.needs_reassignment = False
    _issue_token(po)
    _log_communication(po, "retry_sent", f"Order re-sent (attempt {po.retry_count + 1})", by=actor)
    write_audit(
        entity_type="purchase_order", entity_id=po.id, action="purchase_order.retry",
        project_id=po.project_id,
        diff={"retry_count": po.retry_count, "adjustments": adjustments, "total_cost": po.total_cost},
    )
    db.session.commit()
    return po


def mark_ready(po_id, *, actor: str | None, role: str | None) -> PurchaseOrder:
    po = get_purchase_order(po_id)
    if role == "supplier" and po.supplier_email != actor:
        raise PermissionDeniedError("This purchase order is not addressed to you")
    if po.status != "order_accepted":
        raise ValidationError(
            f"Only accepted orders can be marked ready for delivery (status: {po.status})",
        )
    po.status = "ready_for_delivery"
    _log_communication(po, "ready_for_delivery", "Order ready for delivery", by=actor)
    write_audit(entity_type="purchase_order", entity_id=po.id, action="purchase_order.mark_ready",
                project_id=po.project_id, diff={"status": ["order_accepted", po.status]})
    db.session.commit()
    return po


def confirm_delivery(po_id, data: dict, *, actor: str | None) -> tuple[PurchaseOrder, object]:
    """Confirm receipt and create the matching received material.

    Returns:
        (purchase_order, material)
    """
    po = get_purchase_order(po_id)
    if po.status not in ("order_accepted", "ready_for_delivery"):
        raise ValidationError(
            f"Cannot confirm delivery for purchase order with status '{po.status}'",
        )
    if po.linked_material_id is not None:
        raise ValidationError(
            "Delivery already confirmed: a material is linked to this order",
            details={"material_id": po.linked_material_id},
        )
    note_url = clean_str(data.get("delivery_note_file_url"), 500)
    if not note_url:
        raise ValidationError(
            "delivery_note_file_url is required", details={"delivery_note_file_url": "required"},
        )
    quantity = parse_number(data.get("actual_quantity_delivered"), "actual_quantity_delivered",
                            exclusive_minimum=0)
    unit_cost = parse_number(data.get("actual_unit_cost"), "actual_unit_cost", exclusive_minimum=0)
    quantity = quantity if quantity is not None else po.quantity_ordered
    unit_cost = unit_cost if unit_cost is not None else po.unit_cost

    material = material_service.create_material_from_purchase_order(
        po, actor=actor, quantity=quantity, unit_cost=unit_cost,
    )
    previous = po.status
    po.status = "delivered"
    po.financial_status = "fulfilled"
    po.delivery_note_file_url = note_url
    po.actual_quantity_delivered = quantity
    po.actual_unit_cost = unit_cost
    po.delivery_confirmed_by = actor
    po.delivery_confirmed_at = utcnow()
    po.delivery_notes = data.get("notes")
    po.linked_material_id = material.id
    _log_communication(po, "delivered", f"Delivery confirmed ({quantity:g} {po.unit})", by=actor)
    write_audit(
        entity_type="purchase_order", entity_id=po.id, action="purchase_order.confirm_delivery",
        project_id=po.project_id,
        diff={"status": [previous, "delivered"], "material_id": material.id},
    )
    db.session.commit()
    logger.info("Delivery confirmed for %s", po.purchase_order_number,
                extra={"project_id": po.project_id})
    return po, material
