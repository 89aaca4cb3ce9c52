"""
Dashboard aggregation.

Functions:
    - project_health:        score, status, alerts and capital position of one project
    - portfolio_dashboard:   owner view across all active projects
    - project_summary:       headline numbers for a single project
"""

import logging
from datetime import timedelta

from sqlalchemy import func

from buildtrack.models import db
from buildtrack.models.audit import AuditLog
from buildtrack.models.finance import EXPENSE_SPENT_STATUSES, Expense
from buildtrack.models.material import MATERIAL_APPROVED_STATUSES, Material
from buildtrack.models.project import Phase, Project
from buildtrack.models.purchase_order import PurchaseOrder
from buildtrack.models.soft_delete import utcnow
from buildtrack.services import discrepancy_service, finance_service
from buildtrack.services.calculations import percentage
from buildtrack.services.finance_service import sum_column
from buildtrack.services.project_service import get_project

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}

_PENDING_MATERIAL_STATUSES = ("submitted", "pending_approval")


def health_status(score: int) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "poor"


def health_score(budget_utilization: float, capital_utilization: float, pending: int) -> int:
    """Start at 100 and deduct for overspend, thin capital and approval backlog."""
    score = 100
    if budget_utilization > 100:
        score -= 30
    elif budget_utilization > 80:
        score -= 15
    if capital_utilization > 90:
        score -= 20
    elif capital_utilization > 75:
        score -= 10
    if pending > 10:
        score -= 10
    return max(0, score)


def capital_status(invested: float, spent: float, capital_utilization: float) -> str:
    if invested <= 0:
        return "insufficient"
    if invested - spent < 0:
        return "negative"
    if capital_utilization > 80:
        return "low"
    return "sufficient"


def _pending_approvals(project_id: int) -> int:
    materials = (
        Material.query_active()
        .filter(Material.project_id == project_id, Material.status.in_(_PENDING_MATERIAL_STATUSES))
        .count()
    )
    expenses = (
        Expense.query_active()
        .filter(Expense.project_id == project_id, Expense.status == "PENDING")
        .count()
    )
    return materials + expenses


def _spent(project_id: int) -> float:
    materials = sum_column(
        Material.total_cost,
        Material.project_id == project_id,
        Material.deleted_at.is_(None),
        Material.status.in_(MATERIAL_APPROVED_STATUSES),
    )
    expenses = sum_column(
        Expense.amount,
        Expense.project_id == project_id,
        Expense.deleted_at.is_(None),
        Expense.status.in_(EXPENSE_SPENT_STATUSES),
    )
    return round(materials + expenses, 2)


def _completion(project_id: int) -> float:
    value = (
        db.session.query(func.avg(Phase.completion_percentage))
        .filter(Phase.project_id == project_id, Phase.deleted_at.is_(None))
        .scalar()
    )
    return round(float(value or 0), 1)


def project_health(project: Project) -> dict:
    budget = project.budget_total
    spent = _spent(project.id)
    invested = finance_service.investor_totals(project.id)["total_invested"]
    pending = _pending_approvals(project.id)

    budget_utilization = percentage(spent, budget)
    capital_utilization = percentage(spent, invested)
    score = health_score(budget_utilization, capital_utilization, pending)
    cap_status = capital_status(invested, spent, capital_utilization)

    alerts = []
    if budget_utilization > 100:
        alerts.append({
            "type": "budget_overrun", "priority": "critical",
            "message": f"Spending is at {budget_utilization:g}% of budget",
        })
    if cap_status in ("low", "negative"):
        alerts.append({
            "type": "capital_low", "priority": "high",
            "message": f"Capital is {cap_status} ({capital_utilization:g}% used)",
        })
    if pending > 5:
        alerts.append({
            "type": "pending_approvals", "priority": "medium",
            "message": f"{pending} items are waiting for approval",
        })

    return {
        **project.summary(),
        "status": project.status,
        "budget": budget,
        "spent": spent,
        "invested": invested,
        "budget_utilization": budget_utilization,
        "capital_utilization": capital_utilization,
        "capital_status": cap_status,
        "pending_approvals": pending,
        "completion": _completion(project.id),
        "health_score": score,
        "health_status": health_status(score),
        "alerts": alerts,
    }


def portfolio_dashboard() -> dict:
    """Per-project health plus portfolio totals, action items and recent activity."""
    projects = Project.query_active().order_by(Project.project_code).all()
    rows = [project_health(p) for p in projects]

    action_items = []
    for row in rows:
        for alert in row["alerts"]:
            action_items.append({
                **alert,
                "project_id": row["id"],
                "project_code": row["project_code"],
            })

    discrepancies = discrepancy_service.project_discrepancy_summary()
    if discrepancies["CRITICAL"]:
        action_items.append({
            "type": "critical_wastage",
            "priority": "critical",
            "message": f"{discrepancies['CRITICAL']} material(s) with critical discrepancies",
            "project_id": None,
            "project_code": None,
        })
    action_items.sort(key=lambda item: PRIORITY_ORDER.get(item["priority"], len(PRIORITY_ORDER)))

    since = utcnow() - timedelta(days=30)
    monthly_spending = sum_column(
        Material.total_cost,
        Material.deleted_at.is_(None),
        Material.status.in_(MATERIAL_APPROVED_STATUSES),
        Material.approved_at >= since,
    )

    status_breakdown: dict[str, int] = {}
    for project in projects:
        status_breakdown[project.status] = status_breakdown.get(project.status, 0) + 1

    recent = AuditLog.query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(10).all()

    summary = {
        "total_projects": len(rows),
        "active_projects": status_breakdown.get("active", 0),
        "total_budget": round(sum(r["budget"] for r in rows), 2),
        "total_spent": round(sum(r["spent"] for r in rows), 2),
        "total_invested": finance_service.investor_totals()["total_invested"],
        "average_health": round(sum(r["health_score"] for r in rows) / len(rows), 1) if rows else 0,
        "critical_issues": sum(1 for r in rows if r["health_status"] == "poor"),
        "monthly_spending": monthly_spending,
        "status_breakdown": status_breakdown,
    }
    return {
        "summary": summary,
        "projects": rows,
        "action_items": action_items,
        "discrepancies": discrepancies,
        "recent_activity": [log.to_dict() for log in recent],
    }


def project_summary(project_id) -> dict:
    """Materials, purchase orders, phases and finance headline for one project."""
    project = get_project(project_id)

    materials_by_status = {}
    rows = (
        db.session.query(Material.status, func.count(Material.id), func.coalesce(func.sum(Material.total_cost), 0.0))
        .filter(Material.project_id == project.id, Material.deleted_at.is_(None))
        .group_by(Material.status)
        .all()
    )
    for status, count, total in rows:
        materials_by_status[status] = {"count": count, "total_cost": round(float(total), 2)}

    po_rows = (
        db.session.query(PurchaseOrder.status, func.count(PurchaseOrder.id))
        .filter(PurchaseOrder.project_id == project.id, PurchaseOrder.deleted_at.is_(None))
        .group_by(PurchaseOrder.status)
        .all()
    )
    purchase_orders_by_status = {status: count for status, count in po_rows}

    phases = []
    for phase in Phase.query_active().filter_by(project_id=project.id).order_by(Phase.sequence):
        phases.append({
            **phase.summary(),
            "status": phase.status,
            "completion_percentage": phase.completion_percentage,
            "financials": finance_service.phase_financial_summary(phase),
        })

    totals = finance_service.calculate_project_totals(project.id)
    committed = finance_service.calculate_committed_cost(project.id)
    return {
        "project": project.to_dict(),
        "health": project_health(project),
        "materials_by_status": materials_by_status,
        "purchase_orders_by_status": purchase_orders_by_status,
        "phases": phases,
        "finances": {
            "total_invested": totals["total_invested"],
            "total_used": totals["total_used"],
            "committed_cost": committed,
            "available_capital": round(totals["total_invested"] - totals["total_used"] - committed, 2),
            "capital_balance": totals["capital_balance"],
        },
        "discrepancies": discrepancy_service.project_discrepancy_summary(project.id),
    }
