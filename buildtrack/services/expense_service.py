"""
Expense service: ad-hoc project expenses and pre-construction (initial) expenses.

Expense lifecycle:
    PENDING ─▶ APPROVED ─▶ PAID
       └────▶ REJECTED ─▶ APPROVED
"""

import logging

from buildtrack.core.exceptions import ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.finance import (
    EXPENSE_CATEGORIES,
    EXPENSE_STATUSES,
    INITIAL_EXPENSE_CATEGORIES,
    Expense,
    InitialExpense,
)
from buildtrack.services import finance_service
from buildtrack.services.lifecycle import append_approval, apply_transition
from buildtrack.services.project_service import get_phase_for_project, get_project
from buildtrack.utils.helpers import clean_str, get_active, parse_date, parse_number, parse_id

logger = logging.getLogger(__name__)

EXPENSE_TRANSITIONS = {
    "approve": {"from": ["PENDING", "REJECTED"], "to": "APPROVED"},
    "reject": {"from": ["PENDING"], "to": "REJECTED"},
    "pay": {"from": ["APPROVED"], "to": "PAID"},
}


# ═════════════════════════════════════════════════════════════════════════════
# Expenses
# ═════════════════════════════════════════════════════════════════════════════


def list_expenses(filters: dict):
    query = Expense.query_active()
    if filters.get("project_id"):
        query = query.filter(Expense.project_id == parse_id(filters["project_id"], "project_id"))
    if filters.get("phase_id"):
        query = query.filter(Expense.phase_id == parse_id(filters["phase_id"], "phase_id"))
    if filters.get("status"):
        query = query.filter(Expense.status == filters["status"])
    if filters.get("category"):
        query = query.filter(Expense.category == filters["category"])
    return query.order_by(Expense.expense_date.desc(), Expense.id.desc())


def get_expense(expense_id) -> Expense:
    return get_active(Expense, expense_id, "Expense")


def create_expense(data: dict, *, actor: str | None) -> Expense:
    if data.get("project_id") in (None, ""):
        raise ValidationError("project_id is required", details={"project_id": "required"})
    project = get_project(data["project_id"])
    phase_id = None
    if data.get("phase_id") not in (None, ""):
        phase_id = get_phase_for_project(data["phase_id"], project.id).id

    amount = parse_number(data.get("amount"), "amount", required=True, exclusive_minimum=0)
    category = data.get("category") or "other"
    if category not in EXPENSE_CATEGORIES:
        raise ValidationError(
            f"category must be one of: {', '.join(sorted(EXPENSE_CATEGORIES))}",
            details={"category": category},
        )

    expense = Expense(
        project_id=project.id,
        phase_id=phase_id,
        amount=amount,
        category=category,
        description=clean_str(data.get("description"), 500),
        vendor=clean_str(data.get("vendor"), 200),
        expense_date=parse_date(data.get("expense_date")),
        status="PENDING",
        approval_chain=[],
        created_by=actor,
    )
    db.session.add(expense)
    db.session.flush()
    write_audit(entity_type="expense", entity_id=expense.id, action="create",
                project_id=project.id, diff={"amount": amount, "category": category})
    db.session.commit()
    return expense


def approve_expense(expense_id, *, actor: str | None, role: str | None,
                    notes: str | None = None) -> Expense:
    """Approve an expense if the project has capital for it."""
    expense = get_expense(expense_id)
    check = finance_service.validate_capital_availability(expense.project_id, expense.amount)
    if not check["is_valid"] and not check["capital_not_set"]:
        raise ValidationError(
            f"Cannot approve expense: {check['message']}",
            details={"available": check["available"], "required": check["required"]},
        )
    previous = apply_transition(expense, "approve", EXPENSE_TRANSITIONS, resource="Expense")
    append_approval(expense, status="approved", approver=actor, role=role, notes=notes)
    write_audit(entity_type="expense", entity_id=expense.id, action="expense.approve",
                project_id=expense.project_id, diff={"status": [previous, expense.status]})
    db.session.commit()
    logger.info("Expense %s approved (%.2f)", expense.id, expense.amount,
                extra={"project_id": expense.project_id})
    return expense


def reject_expense(expense_id, *, actor: str | None, role: str | None, reason: str | None) -> Expense:
    reason = clean_str(reason)
    if not reason:
        raise ValidationError("Rejection reason is required", details={"reason": "required"})
    expense = get_expense(expense_id)
    previous = apply_transition(expense, "reject", EXPENSE_TRANSITIONS, resource="Expense")
    append_approval(expense, status="rejected", approver=actor, role=role, notes=reason)
    write_audit(entity_type="expense", entity_id=expense.id, action="expense.reject",
                project_id=expense.project_id,
                diff={"status": [previous, expense.status], "reason": reason})
    db.session.commit()
    return expense


def mark_expense_paid(expense_id, *, actor: str | None, role: str | None) -> Expense:
    expense = get_expense(expense_id)
    previous = apply_transition(expense, "pay", EXPENSE_TRANSITIONS, resource="Expense")
    append_approval(expense, status="paid", approver=actor, role=role)
    write_audit(entity_type="expense", entity_id=expense.id, action="expense.pay",
                project_id=expense.project_id, diff={"status": [previous, expense.status]})
    db.session.commit()
    return expense


def delete_expense(expense_id) -> Expense:
    expense = get_expense(expense_id)
    expense.soft_delete()
    write_audit(entity_type="expense", entity_id=expense.id, action="delete",
                project_id=expense.project_id)
    db.session.commit()
    return expense


# ═════════════════════════════════════════════════════════════════════════════
# Initial expenses
# ═════════════════════════════════════════════════════════════════════════════


def list_initial_expenses(project_id=None):
    query = InitialExpense.query_active()
    if project_id:
        query = query.filter(InitialExpense.project_id == int(project_id))
    return query.order_by(InitialExpense.created_at.desc(), InitialExpense.id.desc())


def create_initial_expense(data: dict, *, actor: str | None) -> InitialExpense:
    if data.get("project_id") in (None, ""):
        raise ValidationError("project_id is required", details={"project_id": "required"})
    project = get_project(data["project_id"])
    item_name = clean_str(data.get("item_name"), 200)
    if not item_name:
        raise ValidationError("item_name is required", details={"item_name": "required"})
    category = data.get("category") or "other"
    if category not in INITIAL_EXPENSE_CATEGORIES:
        raise ValidationError(
            f"category must be one of: {', '.join(sorted(INITIAL_EXPENSE_CATEGORIES))}",
        )
    status = data.get("status") or "PENDING"
    if status not in EXPENSE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(EXPENSE_STATUSES))}")

    item = InitialExpense(
        project_id=project.id,
        item_name=item_name,
        category=category,
        amount=parse_number(data.get("amount"), "amount", required=True, exclusive_minimum=0),
        status=status,
        date_paid=parse_date(data.get("date_paid")),
        created_by=actor,
    )
    db.session.add(item)
    db.session.flush()
    write_audit(entity_type="initial_expense", entity_id=item.id, action="create",
                project_id=project.id, diff={"amount": item.amount, "status": status})
    db.session.commit()
    return item


def update_initial_expense(item_id, data: dict) -> InitialExpense:
    item = get_active(InitialExpense, item_id, "Initial expense")
    if "item_name" in data:
        name = clean_str(data.get("item_name"), 200)
        if not name:
            raise ValidationError("item_name cannot be empty")
        item.item_name = name
    if "category" in data:
        if data["category"] not in INITIAL_EXPENSE_CATEGORIES:
            raise ValidationError(
                f"category must be one of: {', '.join(sorted(INITIAL_EXPENSE_CATEGORIES))}",
            )
        item.category = data["category"]
    if "amount" in data:
        item.amount = parse_number(data.get("amount"), "amount", required=True, exclusive_minimum=0)
    if "status" in data:
        if data["status"] not in EXPENSE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(EXPENSE_STATUSES))}")
        item.status = data["status"]
    if "date_paid" in data:
        item.date_paid = parse_date(data.get("date_paid"))
    write_audit(entity_type="initial_expense", entity_id=item.id, action="update",
                project_id=item.project_id, diff={"fields": sorted(data)})
    db.session.commit()
    return item


def delete_initial_expense(item_id) -> InitialExpense:
    item = get_active(InitialExpense, item_id, "Initial expense")
    item.soft_delete()
    write_audit(entity_type="initial_expense", entity_id=item.id, action="delete",
                project_id=item.project_id)
    db.session.commit()
    return item
