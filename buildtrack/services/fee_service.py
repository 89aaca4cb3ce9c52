"""
Professional fee service.

Fees are raised in PENDING by ``activity_service.approve_activity``. From
there they are approved, rejected, and once approved, paid. The owning
assignment's money counters follow each move:

    raised      total_fees += amount, fees_pending += amount
    approve     fees_pending -= amount
    reject      fees_pending -= amount, total_fees -= amount
    pay         fees_paid += amount
    archive     (activity deleted while the fee is still open) as reject
"""

import logging
import math

from buildtrack.core.exceptions import ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.professional import (
    FEE_STATUSES,
    FEE_TRANSITIONS,
    ProfessionalFee,
    ProfessionalService,
)
from buildtrack.models.soft_delete import utcnow
from buildtrack.services.lifecycle import append_approval, apply_transition
from buildtrack.utils.helpers import clean_str, get_active, parse_id

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _adjust(service: ProfessionalService | None, **deltas: float) -> None:
    if service is None:
        return
    for field, delta in deltas.items():
        setattr(service, field, max(0.0, round((getattr(service, field) or 0) + delta, 2)))


def _service_for(fee: ProfessionalFee) -> ProfessionalService | None:
    return db.session.get(ProfessionalService, fee.professional_service_id)


def list_fees(filters: dict, *, page: int = 1, limit: int = 20) -> tuple[list, dict]:
    query = ProfessionalFee.query_active()
    for field in ("project_id", "professional_service_id"):
        if filters.get(field):
            query = query.filter(getattr(ProfessionalFee, field) == parse_id(filters[field], field))
    status = filters.get("status")
    if status:
        if status not in FEE_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(FEE_STATUSES))}", details={"status": status},
            )
        query = query.filter(ProfessionalFee.status == status)

    query = query.order_by(ProfessionalFee.created_at.desc(), ProfessionalFee.id.desc())
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


def get_fee(fee_id) -> ProfessionalFee:
    return get_active(ProfessionalFee, fee_id, "Professional fee")


def raise_fee(service: ProfessionalService, *, project_id: int, amount: float,
              description: str) -> ProfessionalFee:
    """Create a PENDING fee for ``service``; flushes, the caller commits."""
    fee = ProfessionalFee(
        professional_service_id=service.id,
        project_id=project_id,
        amount=amount,
        description=description,
        status="PENDING",
        approval_chain=[],
    )
    db.session.add(fee)
    db.session.flush()
    _adjust(service, total_fees=amount, fees_pending=amount)
    write_audit(entity_type="professional_fee", entity_id=fee.id, action="create",
                project_id=project_id, diff={"amount": amount, "status": "PENDING"})
    return fee


def approve_fee(fee_id, *, actor: str | None, role: str | None,
                notes: str | None = None) -> ProfessionalFee:
    fee = get_fee(fee_id)
    previous = apply_transition(fee, "approve", FEE_TRANSITIONS, resource="Professional fee")
    fee.approved_by = actor
    fee.approved_at = utcnow()
    append_approval(fee, status="approved", approver=actor, role=role, notes=clean_str(notes))
    _adjust(_service_for(fee), fees_pending=-fee.amount)
    write_audit(entity_type="professional_fee", entity_id=fee.id,
                action="professional_fee.approve", project_id=fee.project_id,
                diff={"status": [previous, fee.status]})
    db.session.commit()
    logger.info("Professional fee %s approved (%.2f)", fee.id, fee.amount,
                extra={"project_id": fee.project_id})
    return fee


def reject_fee(fee_id, *, actor: str | None, role: str | None,
               reason: str | None) -> ProfessionalFee:
    reason = clean_str(reason, 500)
    if not reason:
        raise ValidationError(
            "rejection_reason is required", details={"rejection_reason": "required"},
        )
    fee = get_fee(fee_id)
    previous = apply_transition(fee, "reject", FEE_TRANSITIONS, resource="Professional fee")
    fee.rejection_reason = reason
    append_approval(fee, status="rejected", approver=actor, role=role, notes=reason)
    _adjust(_service_for(fee), fees_pending=-fee.amount, total_fees=-fee.amount)
    write_audit(entity_type="professional_fee", entity_id=fee.id,
                action="professional_fee.reject", project_id=fee.project_id,
                diff={"status": [previous, fee.status], "reason": reason})
    db.session.commit()
    return fee


def pay_fee(fee_id, *, actor: str | None, payment_reference: str | None = None) -> ProfessionalFee:
    fee = get_fee(fee_id)
    previous = apply_transition(fee, "pay", FEE_TRANSITIONS, resource="Professional fee")
    fee.paid_by = actor
    fee.paid_at = utcnow()
    fee.payment_reference = clean_str(payment_reference, 100)
    _adjust(_service_for(fee), fees_paid=fee.amount)
    write_audit(entity_type="professional_fee", entity_id=fee.id,
                action="professional_fee.pay", project_id=fee.project_id,
                diff={"status": [previous, fee.status], "payment_reference": fee.payment_reference})
    db.session.commit()
    logger.info("Professional fee %s paid (%.2f)", fee.id, fee.amount,
                extra={"project_id": fee.project_id})
    return fee


def archive_fee(fee: ProfessionalFee) -> None:
    """Close an open fee whose activity is going away; the caller commits."""
    previous = apply_transition(fee, "archive", FEE_TRANSITIONS, resource="Professional fee")
    if previous == "PENDING":
        _adjust(_service_for(fee), fees_pending=-fee.amount, total_fees=-fee.amount)
    write_audit(entity_type="professional_fee", entity_id=fee.id,
                action="professional_fee.archive", project_id=fee.project_id,
                diff={"status": [previous, fee.status]})
