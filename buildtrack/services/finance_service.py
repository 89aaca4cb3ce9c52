"""
Project finance aggregation.

Every figure is re-summed from source records on demand; the
``project_finances`` table only caches the last result for reporting.

Functions:
    - investor_totals:               invested / loans / equity (portfolio or per project)
    - calculate_total_used:          spent money breakdown (expenses, materials, initial)
    - calculate_committed_cost:      accepted POs + remaining professional contracts
    - calculate_estimated_cost:      materials still waiting for a decision
    - calculate_materials_breakdown: budget vs actual vs committed for materials
    - validate_capital_availability: can the project afford ``amount``?
    - phase_financial_summary:       budget/actual/committed/remaining for a phase
    - get_project_finances:          full payload for GET /project-finances
"""

import logging

from sqlalchemy import func

from buildtrack.core.exceptions import NotFoundError, PermissionDeniedError
from buildtrack.models import db
from buildtrack.models.finance import (
    EXPENSE_SPENT_STATUSES,
    Expense,
    InitialExpense,
    Investor,
    ProjectFinance,
)
from buildtrack.models.material import (
    MATERIAL_APPROVED_STATUSES,
    MATERIAL_PENDING_STATUSES,
    Material,
)
from buildtrack.models.professional import ProfessionalService
from buildtrack.models.project import Phase, Project
from buildtrack.models.purchase_order import COMMITTED_STATUSES, PurchaseOrder
from buildtrack.models.soft_delete import utcnow
from buildtrack.services.calculations import percentage
from buildtrack.utils.helpers import get_active

logger = logging.getLogger(__name__)

# Materials whose cost counts as spent. "missing" cost rows are excluded.
_COUNTED_COST_STATUSES = ("actual", "estimated")

INITIAL_EXPENSE_SPENT_STATUSES = ("APPROVED", "PAID")


def sum_column(column, *criteria) -> float:
    value = db.session.query(func.coalesce(func.sum(column), 0.0)).filter(*criteria).scalar()
    return round(float(value or 0), 2)


# ── Capital side ─────────────────────────────────────────────────────────────


def investor_totals(project_id: int | None = None) -> dict:
    """Sum active investor capital.

    Portfolio level uses each investor's ``total_invested``; project level
    uses the amount allocated to that project. MIXED investments split 50/50
    between loans and equity.
    """
    totals = {"count": 0, "total_invested": 0.0, "total_loans": 0.0, "total_equity": 0.0}
    for investor in Investor.query_active().filter_by(status="ACTIVE").all():
        amount = (
            investor.allocation_for(project_id) if project_id is not None
            else float(investor.total_invested or 0)
        )
        if amount <= 0:
            continue
        totals["count"] += 1
        totals["total_invested"] += amount
        if investor.investment_type == "LOAN":
            totals["total_loans"] += amount
        elif investor.investment_type == "EQUITY":
            totals["total_equity"] += amount
        else:
            totals["total_loans"] += amount / 2
            totals["total_equity"] += amount / 2
    for key in ("total_invested", "total_loans", "total_equity"):
        totals[key] = round(totals[key], 2)
    return totals


# ── Spend side ───────────────────────────────────────────────────────────────


def calculate_total_used(project_id: int | None = None) -> dict:
    """Approved spending broken down by source."""
    expense_criteria = [Expense.deleted_at.is_(None), Expense.status.in_(EXPENSE_SPENT_STATUSES)]
    material_criteria = [
        Material.deleted_at.is_(None),
        Material.status.in_(MATERIAL_APPROVED_STATUSES),
        Material.cost_status.in_(_COUNTED_COST_STATUSES),
    ]
    initial_criteria = [
        InitialExpense.deleted_at.is_(None),
        InitialExpense.status.in_(INITIAL_EXPENSE_SPENT_STATUSES),
    ]
    if project_id is not None:
        expense_criteria.append(Expense.project_id == project_id)
        material_criteria.append(Material.project_id == project_id)
        initial_criteria.append(InitialExpense.project_id == project_id)

    expenses = sum_column(Expense.amount, *expense_criteria)
    materials = sum_column(Material.total_cost, *material_criteria)
    initial = sum_column(InitialExpense.amount, *initial_criteria)
    return {
        "expenses": expenses,
        "materials": materials,
        "initial_expenses": initial,
        "total": round(expenses + materials + initial, 2),
    }


def calculate_committed_cost(project_id: int) -> float:
    """Accepted purchase orders plus remaining active professional contracts."""
    po_committed = sum_column(
        PurchaseOrder.total_cost,
        PurchaseOrder.project_id == project_id,
        PurchaseOrder.deleted_at.is_(None),
        PurchaseOrder.status.in_(COMMITTED_STATUSES),
    )
    services = (
        ProfessionalService.query_active()
        .filter_by(project_id=project_id, status="active")
        .all()
    )
    professional_committed = sum(s.remaining_commitment for s in services)
    return round(po_committed + professional_committed, 2)


def calculate_estimated_cost(project_id: int) -> float:
    """Value of materials still in draft/submitted/pending_approval."""
    return sum_column(
        Material.total_cost,
        Material.project_id == project_id,
        Material.deleted_at.is_(None),
        Material.status.in_(MATERIAL_PENDING_STATUSES),
    )


def calculate_materials_breakdown(project_id: int) -> dict:
    project = db.session.get(Project, project_id)
    budget = float(((project.budget if project else None) or {}).get("materials") or 0)
    actual = sum_column(
        Material.total_cost,
        Material.project_id == project_id,
        Material.deleted_at.is_(None),
        Material.status.in_(MATERIAL_APPROVED_STATUSES),
        Material.cost_status.in_(_COUNTED_COST_STATUSES),
    )
    committed = calculate_committed_cost(project_id)
    estimated = calculate_estimated_cost(project_id)
    return {
        "budget": budget,
        "actual": actual,
        "committed": committed,
        "estimated": estimated,
        "remaining": max(0.0, round(budget - actual - committed, 2)),
        "variance": round(actual - budget, 2),
    }


def calculate_project_totals(project_id: int | None = None) -> dict:
    """Capital, usage and balance figures for a project or the whole portfolio."""
    investors = investor_totals(project_id)
    used = calculate_total_used(project_id)
    invested = investors["total_invested"]
    loans = investors["total_loans"]
    equity = investors["total_equity"]
    total_used = used["total"]

    loan_share = loans / invested if invested > 0 else 0
    equity_share = equity / invested if invested > 0 else 0
    return {
        "total_invested": invested,
        "total_loans": loans,
        "total_equity": equity,
        "total_used": total_used,
        "capital_balance": round(invested - total_used, 2),
        "loan_balance": round(loans - total_used * loan_share, 2),
        "equity_balance": round(equity - total_used * equity_share, 2),
        "breakdown": used,
        "investors": investors,
    }


def validate_capital_availability(project_id: int, amount: float) -> dict:
    """Check whether ``amount`` fits in the project's uncommitted capital.

    A project with no capital recorded (``capital_not_set``) is reported as
    invalid, but callers treat that as "not enforced" rather than a block.
    """
    totals = calculate_project_totals(project_id)
    committed = calculate_committed_cost(project_id)
    invested = totals["total_invested"]
    used = totals["total_used"]
    available = max(0.0, round(invested - used - committed, 2))
    amount = float(amount or 0)
    is_valid = available >= amount
    if is_valid:
        message = f"Sufficient capital. Available: {available:,.2f}"
    else:
        message = (
            f"Insufficient capital. Available: {available:,.2f}, "
            f"Required: {amount:,.2f}, Shortfall: {amount - available:,.2f}"
        )
    return {
        "is_valid": is_valid,
        "capital_not_set": invested == 0,
        "available": available,
        "required": amount,
        "total_invested": invested,
        "total_used": used,
        "committed_cost": committed,
        "remaining": round(available - amount, 2),
        "message": message,
    }


def phase_financial_summary(phase: Phase) -> dict:
    """Budget, actual, committed and remaining figures for a single phase."""
    actual_materials = sum_column(
        Material.total_cost,
        Material.phase_id == phase.id,
        Material.deleted_at.is_(None),
        Material.status.in_(MATERIAL_APPROVED_STATUSES),
    )
    actual_expenses = sum_column(
        Expense.amount,
        Expense.phase_id == phase.id,
        Expense.deleted_at.is_(None),
        Expense.status.in_(EXPENSE_SPENT_STATUSES),
    )
    committed_pos = sum_column(
        PurchaseOrder.total_cost,
        PurchaseOrder.phase_id == phase.id,
        PurchaseOrder.deleted_at.is_(None),
        PurchaseOrder.status.in_(COMMITTED_STATUSES),
    )
    committed_services = sum(
        s.remaining_commitment
        for s in ProfessionalService.query_active().filter_by(phase_id=phase.id, status="active")
    )
    budget = phase.budget_total
    actual = round(actual_materials + actual_expenses, 2)
    committed = round(committed_pos + committed_services, 2)
    return {
        "budget": budget,
        "actual": actual,
        "actual_materials": actual_materials,
        "actual_expenses": actual_expenses,
        "committed": committed,
        "remaining": max(0.0, round(budget - actual - committed, 2)),
        "utilization": percentage(actual, budget),
    }


# ── Access control for investors ─────────────────────────────────────────────


def investor_for_user(user_name: str | None) -> Investor | None:
    if not user_name:
        return None
    return (
        Investor.query_active()
        .filter_by(user_name=user_name, status="ACTIVE")
        .first()
    )


def allowed_project_ids_for_investor(user_name: str | None) -> set[int]:
    """Projects an investor-role user may see: the ones it has allocations on."""
    investor = investor_for_user(user_name)
    if investor is None:
        raise NotFoundError("Investor record")
    return investor.allocated_project_ids()


def check_investor_access(project_id: int | None, *, role: str | None, user: str | None) -> None:
    """Raise PermissionDeniedError when an investor asks for a project outside its allocations."""
    if role != "investor":
        return
    if project_id is None or project_id not in allowed_project_ids_for_investor(user):
        raise PermissionDeniedError("Access denied. You do not have access to this project.")


# ── Endpoint payload ─────────────────────────────────────────────────────────


def _upsert_snapshot(project_id: int, payload: dict) -> None:
    row = ProjectFinance.query.filter_by(project_id=project_id).first()
    if row is None:
        row = ProjectFinance(project_id=project_id)
        db.session.add(row)
    for key in (
        "total_invested", "total_loans", "total_equity", "total_used",
        "committed_cost", "estimated_cost", "capital_balance", "available_capital",
        "loan_balance", "equity_balance",
    ):
        setattr(row, key, payload[key])
    row.last_calculated_at = utcnow()


def get_project_finances(project_id: int | None, *, role: str | None, user: str | None) -> dict:
    """Build the GET /project-finances payload.

    Args:
        project_id: Project scope, or None for the portfolio view.
        role: Caller role; investors are restricted to their allocations.
        user: Caller login name (used to find the investor record).

    Raises:
        NotFoundError: project missing/deleted, or no investor record for an investor.
        PermissionDeniedError: investor asking for a project it is not allocated to.
    """
    check_investor_access(project_id, role=role, user=user)

    if project_id is not None:
        get_active(Project, project_id, "Project")

    totals = calculate_project_totals(project_id)
    payload = {
        "project_id": project_id,
        "total_invested": totals["total_invested"],
        "total_loans": totals["total_loans"],
        "total_equity": totals["total_equity"],
        "total_used": totals["total_used"],
        "capital_balance": totals["capital_balance"],
        "loan_balance": totals["loan_balance"],
        "equity_balance": totals["equity_balance"],
        "breakdown": totals["breakdown"],
        "investors": totals["investors"],
    }

    if project_id is not None:
        committed = calculate_committed_cost(project_id)
        payload["committed_cost"] = committed
        payload["estimated_cost"] = calculate_estimated_cost(project_id)
        payload["available_capital"] = round(
            totals["total_invested"] - totals["total_used"] - committed, 2,
        )
        payload["materials_breakdown"] = calculate_materials_breakdown(project_id)
        _upsert_snapshot(project_id, payload)
        db.session.commit()
        logger.info("Project finances recalculated", extra={"project_id": project_id})

    return payload
