"""
BuildTrack construction management API.
Finance Blueprint: project finances, investors, expenses and initial
(pre-construction) expenses.

Endpoints:
    GET    /api/v1/project-finances?project_id=         — Totals, balances, breakdowns

    Investors:
        GET    /api/v1/investors                         — List
        POST   /api/v1/investors                         — Create
        GET    /api/v1/investors/<id>                    — Detail
        PATCH  /api/v1/investors/<id>                    — Update
        DELETE /api/v1/investors/<id>                    — Soft delete
        GET    /api/v1/investors/<id>/allocations        — Allocation summary

    Expenses:
        GET    /api/v1/expenses                          — List
        POST   /api/v1/expenses                          — Create
        GET    /api/v1/expenses/<id>                     — Detail
        DELETE /api/v1/expenses/<id>                     — Soft delete (owner)
        POST   /api/v1/expenses/<id>/approve             — Approve (capital checked)
        POST   /api/v1/expenses/<id>/reject              — Reject {reason}
        POST   /api/v1/expenses/<id>/pay                 — Mark paid

    Initial expenses:
        GET    /api/v1/initial-expenses?project_id=      — List
        POST   /api/v1/initial-expenses                  — Create
        PATCH  /api/v1/initial-expenses/<id>             — Update
        DELETE /api/v1/initial-expenses/<id>             — Soft delete
"""

import logging

from flask import Blueprint, request

from buildtrack.blueprints import (
    current_role,
    current_user,
    json_body,
    paginate_query,
    register_error_handlers,
)
from buildtrack.middleware.permission_required import require_permission
from buildtrack.services import expense_service, finance_service, investor_service
from buildtrack.utils.errors import api_success

logger = logging.getLogger(__name__)

finance_bp = Blueprint("finance", __name__, url_prefix="/api/v1")
register_error_handlers(finance_bp)


# ═════════════════════════════════════════════════════════════════════════════
#  PROJECT FINANCES
# ═════════════════════════════════════════════════════════════════════════════


@finance_bp.route("/project-finances", methods=["GET"])
@require_permission("view_financing")
def get_project_finances():
    data = finance_service.get_project_finances(
        request.args.get("project_id", type=int),
        role=current_role(),
        user=current_user(),
    )
    return api_success(data, "Project finances calculated")


# ═════════════════════════════════════════════════════════════════════════════
#  INVESTORS
# ═════════════════════════════════════════════════════════════════════════════


@finance_bp.route("/investors", methods=["GET"])
@require_permission("view_investors")
def list_investors():
    query = investor_service.list_investors(
        investment_type=request.args.get("investment_type"),
        status=request.args.get("status"),
        search=request.args.get("search"),
    )
    items, total = paginate_query(query)
    return api_success([i.to_dict() for i in items], "Investors retrieved", total=total)


@finance_bp.route("/investors", methods=["POST"])
@require_permission("manage_investors")
def create_investor():
    investor = investor_service.create_investor(json_body())
    return api_success(investor.to_dict(), "Investor created", status=201)


@finance_bp.route("/investors/<int:investor_id>", methods=["GET"])
@require_permission("view_investors")
def get_investor(investor_id):
    return api_success(investor_service.get_investor(investor_id).to_dict(), "Investor retrieved")


@finance_bp.route("/investors/<int:investor_id>", methods=["PATCH", "PUT"])
@require_permission("manage_investors")
def update_investor(investor_id):
    investor = investor_service.update_investor(investor_id, json_body())
    return api_success(investor.to_dict(), "Investor updated")


@finance_bp.route("/investors/<int:investor_id>", methods=["DELETE"])
@require_permission("manage_investors")
def delete_investor(investor_id):
    investor_service.delete_investor(investor_id)
    return api_success({"id": investor_id}, "Investor deleted")


@finance_bp.route("/investors/<int:investor_id>/allocations", methods=["GET"])
@require_permission("view_investors")
def investor_allocations(investor_id):
    return api_success(
        investor_service.allocation_summary(investor_id), "Investor allocations retrieved",
    )


# ═════════════════════════════════════════════════════════════════════════════
#  EXPENSES
# ═════════════════════════════════════════════════════════════════════════════


@finance_bp.route("/expenses", methods=["GET"])
@require_permission("view_expenses")
def list_expenses():
    filters = {
        key: request.args.get(key)
        for key in ("project_id", "phase_id", "status", "category")
        if request.args.get(key)
    }
    items, total = paginate_query(expense_service.list_expenses(filters))
    return api_success([e.to_dict() for e in items], "Expenses retrieved", total=total)


@finance_bp.route("/expenses", methods=["POST"])
@require_permission("create_expense")
def create_expense():
    expense = expense_service.create_expense(json_body(), actor=current_user())
    return api_success(expense.to_dict(), "Expense recorded", status=201)


@finance_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_permission("view_expenses")
def get_expense(expense_id):
    return api_success(expense_service.get_expense(expense_id).to_dict(), "Expense retrieved")


@finance_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_permission("delete_expense")
def delete_expense(expense_id):
    expense_service.delete_expense(expense_id)
    return api_success({"id": expense_id}, "Expense deleted")


@finance_bp.route("/expenses/<int:expense_id>/approve", methods=["POST"])
@require_permission("approve_expense")
def approve_expense(expense_id):
    expense = expense_service.approve_expense(
        expense_id, actor=current_user(), role=current_role(), notes=json_body().get("notes"),
    )
    return api_success(expense.to_dict(), "Expense approved")


@finance_bp.route("/expenses/<int:expense_id>/reject", methods=["POST"])
@require_permission("approve_expense")
def reject_expense(expense_id):
    expense = expense_service.reject_expense(
        expense_id, actor=current_user(), role=current_role(), reason=json_body().get("reason"),
    )
    return api_success(expense.to_dict(), "Expense rejected")


@finance_bp.route("/expenses/<int:expense_id>/pay", methods=["POST"])
@require_permission("approve_expense")
def pay_expense(expense_id):
    expense = expense_service.mark_expense_paid(
        expense_id, actor=current_user(), role=current_role(),
    )
    return api_success(expense.to_dict(), "Expense marked as paid")


# ═════════════════════════════════════════════════════════════════════════════
#  INITIAL EXPENSES
# ═════════════════════════════════════════════════════════════════════════════


@finance_bp.route("/initial-expenses", methods=["GET"])
@require_permission("view_expenses")
def list_initial_expenses():
    query = expense_service.list_initial_expenses(request.args.get("project_id", type=int))
    items, total = paginate_query(query)
    return api_success([e.to_dict() for e in items], "Initial expenses retrieved", total=total)


@finance_bp.route("/initial-expenses", methods=["POST"])
@require_permission("manage_initial_expenses")
def create_initial_expense():
    item = expense_service.create_initial_expense(json_body(), actor=current_user())
    return api_success(item.to_dict(), "Initial expense recorded", status=201)


@finance_bp.route("/initial-expenses/<int:item_id>", methods=["PATCH", "PUT"])
@require_permission("manage_initial_expenses")
def update_initial_expense(item_id):
    item = expense_service.update_initial_expense(item_id, json_body())
    return api_success(item.to_dict(), "Initial expense updated")


@finance_bp.route("/initial-expenses/<int:item_id>", methods=["DELETE"])
@require_permission("manage_initial_expenses")
def delete_initial_expense(item_id):
    expense_service.delete_initial_expense(item_id)
    return api_success({"id": item_id}, "Initial expense deleted")
