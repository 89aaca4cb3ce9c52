"""
Material service.

Business logic for material entries: creation (retroactive or linked to a
purchase order), quantity tracking, approval workflow and soft delete.

Functions:
    - list_materials:          filter + sort + page
    - get_material_detail:     material with project/phase summaries and latest discrepancy
    - create_material:         validate, compute cost status/totals, pick initial status
    - update_material:         field edits with quantity invariants
    - submit_material / approve_material / reject_material
    - delete_material / restore_material
    - create_material_from_purchase_order: material row for a delivered PO
"""

import logging
import math

from sqlalchemy import or_

from buildtrack.core.exceptions import PermissionDeniedError, ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.material import (
    CLERK_EDITABLE_STATUSES,
    ENTRY_TYPES,
    MATERIAL_STATUSES,
    MATERIAL_TRANSITIONS,
    Material,
)
from buildtrack.models.project import Phase, Project
from buildtrack.models.purchase_order import PurchaseOrder
from buildtrack.models.soft_delete import utcnow
from buildtrack.services import discrepancy_service, finance_service
from buildtrack.services.calculations import (
    calculate_remaining_quantity,
    calculate_total_cost,
    calculate_wastage,
    validate_quantities,
)
from buildtrack.services.lifecycle import append_approval, apply_transition
from buildtrack.services.permission_service import is_manager
from buildtrack.services.project_service import get_phase_for_project, get_project
from buildtrack.utils.helpers import clean_str, get_active, parse_date, parse_number, parse_id

logger = logging.getLogger(__name__)

_SORTABLE = {
    "created_at": Material.created_at,
    "name": Material.name,
    "total_cost": Material.total_cost,
    "status": Material.status,
    "date_purchased": Material.date_purchased,
    "quantity_purchased": Material.quantity_purchased,
}

MAX_PAGE_SIZE = 100

# PO states a new_procurement material may be recorded against.
_PO_RECEIVABLE_STATUSES = {"ready_for_delivery", "delivered"}


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def list_materials(filters: dict, *, page: int = 1, limit: int = 20,
                   sort_by: str = "created_at", sort_order: str = "desc") -> tuple[list, dict]:
    """List materials with filters and page-based pagination.

    Args:
        filters: project_id, phase_id, category, status, supplier, search, archived.
        page: 1-based page number.
        limit: Page size, capped at MAX_PAGE_SIZE.
        sort_by: One of _SORTABLE; unknown values fall back to created_at.
        sort_order: "asc" or "desc".

    Returns:
        (materials, {"page", "limit", "total", "pages"})
    """
    archived = str(filters.get("archived", "")).lower() in ("true", "1", "yes")
    query = Material.query_deleted() if archived else Material.query_active()

    if filters.get("project_id"):
        query = query.filter(Material.project_id == parse_id(filters["project_id"], "project_id"))
    if filters.get("phase_id"):
        query = query.filter(Material.phase_id == parse_id(filters["phase_id"], "phase_id"))
    if filters.get("category"):
        query = query.filter(Material.category == filters["category"])
    if filters.get("status"):
        query = query.filter(Material.status == filters["status"])
    if filters.get("supplier"):
        query = query.filter(Material.supplier_name.ilike(f"%{filters['supplier']}%"))
    if filters.get("search"):
        like = f"%{filters['search'].strip()}%"
        query = query.filter(or_(
            Material.name.ilike(like),
            Material.supplier_name.ilike(like),
            Material.description.ilike(like),
        ))

    column = _SORTABLE.get(sort_by, Material.created_at)
    order = column.asc() if sort_order == "asc" else column.desc()
    query = query.order_by(order, Material.id.desc())

    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }
    return items, pagination


def get_material(material_id) -> Material:
    return get_active(Material, material_id, "Material")


def get_material_detail(material_id) -> dict:
    material = get_material(material_id)
    data = material.to_dict()
    project = db.session.get(Project, material.project_id)
    data["project"] = project.summary() if project else None
    phase = db.session.get(Phase, material.phase_id) if material.phase_id else None
    data["phase"] = phase.summary() if phase else None
    latest = discrepancy_service.latest_discrepancy(material.id)
    data["discrepancy"] = latest.to_dict() if latest else None
    return data


def material_discrepancy(material_id) -> dict:
    """Current discrepancy metrics for a material (not stored)."""
    return discrepancy_service.check_material_discrepancies(get_material(material_id))


# ═════════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════════


def _resolve_cost(entry_type: str, unit_cost, estimated_unit_cost) -> tuple[float | None, str]:
    """Pick the unit cost used for totals and the resulting cost status."""
    if unit_cost is not None:
        return unit_cost, "actual"
    if entry_type == "retroactive_entry" and estimated_unit_cost is not None:
        return estimated_unit_cost, "estimated"
    return None, "missing"


def _capital_warning(project_id: int, amount: float) -> dict | None:
    if amount <= 0:
        return None
    check = finance_service.validate_capital_availability(project_id, amount)
    if check["is_valid"] or check["capital_not_set"]:
        return None
    return {
        "type": "insufficient_capital",
        "message": check["message"],
        "available": check["available"],
        "required": check["required"],
    }


def _phase_budget_warning(phase_id: int | None, amount: float) -> dict | None:
    if not phase_id or amount <= 0:
        return None
    phase = db.session.get(Phase, phase_id)
    if phase is None or phase.deleted_at is not None:
        return None
    summary = finance_service.phase_financial_summary(phase)
    if amount <= summary["remaining"]:
        return None
    return {
        "type": "phase_budget_exceeded",
        "message": (
            f"Exceeds phase budget. Phase budget: {summary['budget']:,.2f}, "
            f"Available: {summary['remaining']:,.2f}, Required: {amount:,.2f}"
        ),
        "budget": summary["budget"],
        "available": summary["remaining"],
        "required": amount,
    }


def create_material(data: dict, *, actor: str | None, role: str | None) -> tuple[Material, list]:
    """Create a material entry.

    Retroactive entries record stock already bought: they are delivered in
    full on creation. Entries made by owner/pm are auto-approved and marked
    received; other roles' entries go to ``submitted`` for review.
    New procurement entries start as ``draft`` and must reference a purchase
    order that is ready for delivery.

    Returns:
        (material, warnings) where warnings may contain a capital warning.

    Raises:
        NotFoundError: project, phase or purchase order not found.
        ValidationError: any field rule failure.
    """
    if data.get("project_id") in (None, ""):
        raise ValidationError("project_id is required", details={"project_id": "required"})
    project = get_project(data["project_id"])

    phase_id = None
    if data.get("phase_id") not in (None, ""):
        phase_id = get_phase_for_project(data["phase_id"], project.id).id

    entry_type = data.get("entry_type") or "retroactive_entry"
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(
            f"entry_type must be one of: {', '.join(sorted(ENTRY_TYPES))}",
            details={"entry_type": entry_type},
        )

    name = clean_str(data.get("name") or data.get("material_name"), 200)
    if not name:
        raise ValidationError("Material name is required", details={"name": "required"})

    quantity = parse_number(
        data.get("quantity", data.get("quantity_purchased")), "quantity",
        required=True, exclusive_minimum=0,
    )
    unit_cost = parse_number(data.get("unit_cost"), "unit_cost", minimum=0)
    estimated_unit_cost = parse_number(
        data.get("estimated_unit_cost"), "estimated_unit_cost", minimum=0,
    )

    purchase_order_id = None
    if entry_type == "new_procurement":
        if data.get("purchase_order_id") in (None, ""):
            raise ValidationError(
                "purchase_order_id is required for new procurement entries",
                details={"purchase_order_id": "required"},
            )
        po = get_active(PurchaseOrder, data["purchase_order_id"], "Purchase order")
        if po.project_id != project.id:
            raise ValidationError("Purchase order does not belong to this project")
        if po.status not in _PO_RECEIVABLE_STATUSES:
            raise ValidationError(
                f"Purchase order must be ready for delivery (current status: {po.status})",
            )
        if unit_cost is None or unit_cost <= 0:
            raise ValidationError(
                "unit_cost must be greater than 0 for new procurement entries",
                details={"unit_cost": "required"},
            )
        purchase_order_id = po.id

    effective_cost, cost_status = _resolve_cost(entry_type, unit_cost, estimated_unit_cost)
    total_cost = calculate_total_cost(quantity, effective_cost)

    material = Material(
        project_id=project.id,
        phase_id=phase_id,
        purchase_order_id=purchase_order_id,
        name=name,
        description=data.get("description"),
        category=clean_str(data.get("category"), 100),
        unit=clean_str(data.get("unit"), 30) or "piece",
        supplier_name=clean_str(data.get("supplier_name") or data.get("supplier"), 200) or "Unknown",
        payment_method=clean_str(data.get("payment_method"), 30) or "CASH",
        receipt_url=clean_str(data.get("receipt_url"), 500),
        entry_type=entry_type,
        quantity_purchased=quantity,
        quantity_delivered=quantity if entry_type == "retroactive_entry" else 0,
        quantity_used=0,
        quantity_remaining=quantity,
        wastage=0,
        unit_cost=effective_cost,
        estimated_unit_cost=estimated_unit_cost,
        total_cost=total_cost,
        cost_status=cost_status,
        date_purchased=parse_date(data.get("date_purchased")) or utcnow().date(),
        submitted_by=actor,
        approval_chain=[],
    )

    if entry_type == "new_procurement":
        material.status = "draft"
    elif is_manager(role):
        material.status = "received"
        material.approved_by = actor
        material.approved_at = utcnow()
        append_approval(material, status="approved", approver=actor, role=role,
                        notes="Auto-approved for retroactive entry")
    else:
        material.status = "submitted"

    warnings = []
    warning = _capital_warning(project.id, total_cost)
    if warning:
        warnings.append(warning)

    db.session.add(material)
    db.session.flush()
    write_audit(
        entity_type="material", entity_id=material.id, action="create",
        project_id=project.id,
        diff={"status": material.status, "total_cost": total_cost, "entry_type": entry_type},
    )
    db.session.commit()
    logger.info(
        "Material created: %s (%s)", material.name, material.status,
        extra={"project_id": project.id},
    )
    return material, warnings


# ═════════════════════════════════════════════════════════════════════════════
# Update
# ═════════════════════════════════════════════════════════════════════════════

_TEXT_FIELDS = {
    "description": None, "category": 100, "unit": 30,
    "supplier_name": 200, "payment_method": 30, "receipt_url": 500,
}


def update_material(material_id, data: dict, *, actor: str | None, role: str | None) -> Material:
    """Apply a partial update, enforcing quantity invariants.

    Non-manager roles may only edit materials in draft, pending_approval or
    rejected state.

    Raises:
        ValidationError: status not editable, invalid quantities or fields.
    """
    material = get_material(material_id)
    if not is_manager(role) and material.status not in CLERK_EDITABLE_STATUSES:
        raise ValidationError(
            f"Cannot edit material with status '{material.status}'. "
            "Only draft, pending approval or rejected materials can be edited.",
        )

    changes = {}

    if "name" in data:
        name = clean_str(data.get("name"), 200)
        if not name:
            raise ValidationError("Material name cannot be empty")
        material.name = name
    for field, max_len in _TEXT_FIELDS.items():
        if field in data:
            setattr(material, field, clean_str(data.get(field), max_len))
    if "date_purchased" in data:
        material.date_purchased = parse_date(data.get("date_purchased"))

    if "phase_id" in data:
        if data["phase_id"] in (None, ""):
            material.phase_id = None
        else:
            material.phase_id = get_phase_for_project(data["phase_id"], material.project_id).id

    if "status" in data:
        status = data["status"]
        if status not in MATERIAL_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(MATERIAL_STATUSES))}",
            )
        changes["status"] = (material.status, status)
        material.status = status

    # ── Quantities ──
    purchased = material.quantity_purchased
    delivered = material.quantity_delivered
    used = material.quantity_used
    quantity_changed = False

    if "quantity_purchased" in data or "quantity" in data:
        purchased = parse_number(
            data.get("quantity_purchased", data.get("quantity")), "quantity_purchased",
            required=True, exclusive_minimum=0,
        )
        quantity_changed = True
    if "quantity_delivered" in data:
        delivered = parse_number(data.get("quantity_delivered"), "quantity_delivered", required=True)
        quantity_changed = True
    if "quantity_used" in data:
        used = parse_number(data.get("quantity_used"), "quantity_used", required=True)
        quantity_changed = True

    errors = validate_quantities(purchased, delivered, used)
    if errors:
        raise ValidationError(errors[0], details={
            "quantity_purchased": purchased,
            "quantity_delivered": delivered,
            "quantity_used": used,
        })

    if quantity_changed:
        changes["quantities"] = (
            [material.quantity_purchased, material.quantity_delivered, material.quantity_used],
            [purchased, delivered, used],
        )
        material.quantity_purchased = purchased
        material.quantity_delivered = delivered
        material.quantity_used = used
        material.quantity_remaining = calculate_remaining_quantity(purchased, delivered, used)
        material.wastage = calculate_wastage(purchased, delivered, used)

    # ── Cost ──
    cost_changed = False
    if "unit_cost" in data:
        unit_cost = parse_number(data.get("unit_cost"), "unit_cost", minimum=0)
        material.unit_cost = unit_cost
        material.cost_status = "actual" if unit_cost is not None else "missing"
        cost_changed = True
    if cost_changed or quantity_changed:
        new_total = calculate_total_cost(material.quantity_purchased, material.unit_cost)
        if new_total != material.total_cost:
            changes["total_cost"] = (material.total_cost, new_total)
        material.total_cost = new_total

    if quantity_changed:
        discrepancy_service.record_discrepancy(material)

    write_audit(entity_type="material", entity_id=material.id, action="update",
                project_id=material.project_id, actor=actor, actor_role=role, diff=changes)
    db.session.commit()
    return material


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════


def submit_material(material_id, *, actor: str | None, role: str | None) -> Material:
    material = get_material(material_id)
    previous = apply_transition(material, "submit", MATERIAL_TRANSITIONS, resource="Material")
    material.submitted_by = actor
    append_approval(material, status="submitted", approver=actor, role=role)
    write_audit(entity_type="material", entity_id=material.id, action="material.submit",
                project_id=material.project_id, diff={"status": [previous, material.status]})
    db.session.commit()
    return material


def approve_material(material_id, *, actor: str | None, role: str | None,
                     notes: str | None = None) -> tuple[Material, bool, dict | None]:
    """Approve a submitted/pending/rejected material.

    Approving an already approved or received material is a no-op.

    Only owner and pm approve, so a phase budget overrun does not block;
    it comes back as a warning.

    Returns:
        (material, already_approved, phase_budget_warning or None)

    Raises:
        TransitionError: material is in a non-approvable state.
        ValidationError: insufficient capital.
    """
    material = get_material(material_id)
    if material.status in ("approved", "received"):
        return material, True, None

    amount = material.total_cost or 0
    if amount > 0:
        capital = finance_service.validate_capital_availability(material.project_id, amount)
        if not capital["is_valid"] and not capital["capital_not_set"]:
            raise ValidationError(
                f"Cannot approve material: {capital['message']}",
                details={"available": capital["available"], "required": capital["required"]},
            )

    budget_warning = _phase_budget_warning(material.phase_id, amount)

    previous = apply_transition(material, "approve", MATERIAL_TRANSITIONS, resource="Material")
    material.approved_by = actor
    material.approved_at = utcnow()
    append_approval(material, status="approved", approver=actor, role=role, notes=notes)
    write_audit(
        entity_type="material", entity_id=material.id, action="material.approve",
        project_id=material.project_id,
        diff={"status": [previous, "approved"], "notes": notes},
    )
    db.session.commit()
    logger.info("Material %s approved by %s", material.id, actor,
                extra={"project_id": material.project_id})
    return material, False, budget_warning


def reject_material(material_id, *, actor: str | None, role: str | None, reason: str) -> Material:
    reason = clean_str(reason)
    if not reason:
        raise ValidationError("Rejection reason is required", details={"reason": "required"})
    material = get_material(material_id)
    previous = apply_transition(material, "reject", MATERIAL_TRANSITIONS, resource="Material")
    append_approval(material, status="rejected", approver=actor, role=role, notes=reason)
    write_audit(
        entity_type="material", entity_id=material.id, action="material.reject",
        project_id=material.project_id,
        diff={"status": [previous, "rejected"], "reason": reason},
    )
    db.session.commit()
    return material


def delete_material(material_id, *, role: str | None) -> Material:
    if role != "owner":
        raise PermissionDeniedError("Only the owner can delete materials")
    material = get_material(material_id)
    material.soft_delete()
    write_audit(entity_type="material", entity_id=material.id, action="delete",
                project_id=material.project_id)
    db.session.commit()
    return material


def restore_material(material_id) -> Material:
    material = db.session.get(Material, int(material_id))
    if material is None or material.deleted_at is None:
        raise ValidationError("Material is not archived")
    material.restore()
    write_audit(entity_type="material", entity_id=material.id, action="material.restore",
                project_id=material.project_id)
    db.session.commit()
    return material


# ═════════════════════════════════════════════════════════════════════════════
# Purchase order hand-off
# ═════════════════════════════════════════════════════════════════════════════


def create_material_from_purchase_order(po: PurchaseOrder, *, actor: str | None,
                                        quantity: float | None = None,
                                        unit_cost: float | None = None) -> Material:
    """Create a received material for a delivered purchase order.

    Flushes only; the purchase-order service commits.
    """
    quantity = quantity if quantity is not None else po.quantity_ordered
    unit_cost = unit_cost if unit_cost is not None else po.unit_cost
    material = Material(
        project_id=po.project_id,
        phase_id=po.phase_id,
        purchase_order_id=po.id,
        name=po.material_name,
        description=po.description,
        unit=po.unit or "piece",
        supplier_name=po.supplier_name,
        payment_method="PURCHASE_ORDER",
        entry_type="new_procurement",
        status="received",
        quantity_purchased=quantity,
        quantity_delivered=quantity,
        quantity_used=0,
        quantity_remaining=quantity,
        wastage=0,
        unit_cost=unit_cost,
        total_cost=calculate_total_cost(quantity, unit_cost),
        cost_status="actual",
        date_purchased=utcnow().date(),
        submitted_by=actor,
        approved_by=actor,
        approved_at=utcnow(),
        approval_chain=[],
    )
    append_approval(material, status="approved", approver=actor,
                    notes=f"Created from purchase order {po.purchase_order_number}")
    db.session.add(material)
    db.session.flush()
    write_audit(
        entity_type="material", entity_id=material.id, action="create",
        project_id=po.project_id, diff={"purchase_order": po.purchase_order_number},
    )
    return material
