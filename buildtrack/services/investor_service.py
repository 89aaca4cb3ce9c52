"""
Investor service: capital providers and their per-project allocations.
"""

import logging

from sqlalchemy import or_

from buildtrack.core.exceptions import ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.finance import INVESTMENT_TYPES, INVESTOR_STATUSES, Investor
from buildtrack.models.project import Project
from buildtrack.services.project_service import get_project
from buildtrack.utils.helpers import clean_str, get_active, parse_number

logger = logging.getLogger(__name__)


def list_investors(*, investment_type: str | None = None, status: str | None = None,
                   search: str | None = None):
    query = Investor.query_active()
    if investment_type:
        query = query.filter(Investor.investment_type == investment_type)
    if status:
        query = query.filter(Investor.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Investor.name.ilike(like), Investor.email.ilike(like)))
    return query.order_by(Investor.name)


def get_investor(investor_id) -> Investor:
    return get_active(Investor, investor_id, "Investor")


def _validate_allocations(raw, total_invested: float) -> list[dict]:
    """Check allocations reference live projects, once each, within the invested total."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("project_allocations must be a list")
    allocations, seen = [], set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict) or entry.get("project_id") in (None, ""):
            raise ValidationError(f"Allocation {index + 1}: project_id is required")
        project = get_project(entry["project_id"])
        if project.id in seen:
            raise ValidationError(f"Allocation {index + 1}: project {project.id} is listed twice")
        seen.add(project.id)
        amount = parse_number(
            entry.get("amount"), f"project_allocations[{index}].amount",
            required=True, exclusive_minimum=0,
        )
        allocations.append({"project_id": project.id, "amount": amount})

    allocated = sum(a["amount"] for a in allocations)
    if allocated > total_invested + 0.01:
        raise ValidationError(
            f"Allocated amount ({allocated:,.2f}) exceeds total invested ({total_invested:,.2f})",
            details={"allocated": allocated, "total_invested": total_invested},
        )
    return allocations


def create_investor(data: dict) -> Investor:
    name = clean_str(data.get("name"), 200)
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    investment_type = data.get("investment_type")
    if investment_type not in INVESTMENT_TYPES:
        raise ValidationError(
            "Invalid investment type. Must be EQUITY, LOAN, or MIXED",
            details={"investment_type": investment_type},
        )
    total = parse_number(
        data.get("total_invested"), "total_invested", required=True, exclusive_minimum=0,
    )
    status = data.get("status") or "ACTIVE"
    if status not in INVESTOR_STATUSES:
        raise ValidationError("status must be ACTIVE or INACTIVE")

    investor = Investor(
        name=name,
        email=clean_str(data.get("email"), 255),
        investment_type=investment_type,
        total_invested=total,
        status=status,
        project_allocations=_validate_allocations(data.get("project_allocations"), total),
        user_name=clean_str(data.get("user_name"), 150),
    )
    db.session.add(investor)
    db.session.flush()
    write_audit(entity_type="investor", entity_id=investor.id, action="create",
                diff={"total_invested": total, "investment_type": investment_type})
    db.session.commit()
    logger.info("Investor created: %s (%s %.2f)", name, investment_type, total)
    return investor


def update_investor(investor_id, data: dict) -> Investor:
    investor = get_investor(investor_id)
    changes = {}
    if "name" in data:
        name = clean_str(data.get("name"), 200)
        if not name:
            raise ValidationError("name cannot be empty")
        investor.name = name
    for field, max_len in (("email", 255), ("user_name", 150)):
        if field in data:
            setattr(investor, field, clean_str(data.get(field), max_len))
    if "investment_type" in data:
        if data["investment_type"] not in INVESTMENT_TYPES:
            raise ValidationError("Invalid investment type. Must be EQUITY, LOAN, or MIXED")
        investor.investment_type = data["investment_type"]
    if "status" in data:
        if data["status"] not in INVESTOR_STATUSES:
            raise ValidationError("status must be ACTIVE or INACTIVE")
        changes["status"] = [investor.status, data["status"]]
        investor.status = data["status"]
    if "total_invested" in data:
        total = parse_number(
            data.get("total_invested"), "total_invested", required=True, exclusive_minimum=0,
        )
        changes["total_invested"] = [investor.total_invested, total]
        investor.total_invested = total
    if "project_allocations" in data:
        investor.project_allocations = _validate_allocations(
            data.get("project_allocations"), investor.total_invested,
        )
    else:
        allocated = sum(float(e.get("amount") or 0) for e in investor.project_allocations or [])
        if allocated > investor.total_invested + 0.01:
            raise ValidationError(
                f"Allocated amount ({allocated:,.2f}) exceeds total invested "
                f"({investor.total_invested:,.2f})",
            )

    write_audit(entity_type="investor", entity_id=investor.id, action="update", diff=changes)
    db.session.commit()
    return investor


def delete_investor(investor_id) -> Investor:
    investor = get_investor(investor_id)
    investor.soft_delete()
    investor.status = "INACTIVE"
    write_audit(entity_type="investor", entity_id=investor.id, action="delete")
    db.session.commit()
    return investor


def allocation_summary(investor_id) -> dict:
    """Allocations with project names, plus allocated/unallocated totals."""
    investor = get_investor(investor_id)
    rows = []
    for entry in investor.project_allocations or []:
        project = db.session.get(Project, int(entry["project_id"]))
        if project is None or project.deleted_at is not None:
            continue
        rows.append({
            "project_id": project.id,
            "project_code": project.project_code,
            "project_name": project.project_name,
            "amount": float(entry.get("amount") or 0),
        })
    allocated = round(sum(float(e.get("amount") or 0) for e in investor.project_allocations or []), 2)
    return {
        "allocations": rows,
        "total_invested": investor.total_invested,
        "total_allocated": allocated,
        "unallocated": max(0.0, round(investor.total_invested - allocated, 2)),
    }
