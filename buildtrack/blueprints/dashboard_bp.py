"""
Dashboard Blueprint

Portfolio health for owners and per-project summaries.
"""

from flask import Blueprint

from buildtrack.blueprints import current_role, current_user, register_error_handlers
from buildtrack.middleware.permission_required import require_permission
from buildtrack.services import dashboard_service as svc
from buildtrack.services.finance_service import check_investor_access
from buildtrack.utils.errors import api_success

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/v1/dashboard")
register_error_handlers(dashboard_bp)


@dashboard_bp.route("/portfolio", methods=["GET"])
@require_permission("view_portfolio_dashboard")
def portfolio():
    """Per-project health, action items and recent activity."""
    return api_success(svc.portfolio_dashboard(), "Portfolio dashboard")


@dashboard_bp.route("/projects/<int:project_id>/summary", methods=["GET"])
@require_permission("view_dashboard")
def project_summary(project_id):
    """Materials, orders, phases and finance headline for one project."""
    check_investor_access(project_id, role=current_role(), user=current_user())
    return api_success(svc.project_summary(project_id), "Project summary")
