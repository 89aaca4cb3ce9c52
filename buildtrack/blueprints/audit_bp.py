"""
Read-only audit trail.

    GET  /api/v1/audit-logs              newest first, filterable, paginated
    GET  /api/v1/audit-logs/<log_id>
"""

from flask import Blueprint, request

from buildtrack.blueprints import register_error_handlers
from buildtrack.middleware.permission_required import require_permission
from buildtrack.models import db
from buildtrack.models.audit import AuditLog
from buildtrack.utils.errors import E, api_error, api_success

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1")
register_error_handlers(audit_bp)

MAX_PER_PAGE = 200

# query arg -> column criterion
_EXACT_FILTERS = {
    "entity_type": lambda v: AuditLog.entity_type == v,
    "entity_id": lambda v: AuditLog.entity_id == v,
    "actor": lambda v: AuditLog.actor == v,
    "action": lambda v: AuditLog.action.startswith(v),
}


def _filtered_logs(args):
    query = AuditLog.query
    project_id = args.get("project_id", type=int)
    if project_id is not None:
        query = query.filter(AuditLog.project_id == project_id)
    for arg, criterion in _EXACT_FILTERS.items():
        value = args.get(arg)
        if value:
            query = query.filter(criterion(value))
    return query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())


@audit_bp.route("/audit-logs", methods=["GET"])
@require_permission("view_audit_logs")
def list_audit_logs():
    """``?project_id= &entity_type= &entity_id= &action=<prefix> &actor= &page= &per_page=``"""
    page = max(1, request.args.get("page", 1, type=int))
    per_page = max(1, min(MAX_PER_PAGE, request.args.get("per_page", 50, type=int)))
    result = _filtered_logs(request.args).paginate(page=page, per_page=per_page, error_out=False)

    return api_success(
        [entry.to_dict() for entry in result.items],
        "Audit logs retrieved",
        pagination={
            "page": result.page,
            "per_page": result.per_page,
            "total": result.total,
            "pages": result.pages,
        },
    )


@audit_bp.route("/audit-logs/<int:log_id>", methods=["GET"])
@require_permission("view_audit_logs")
def get_audit_log(log_id):
    entry = db.session.get(AuditLog, log_id)
    if entry is None:
        return api_error(E.NOT_FOUND, "Audit log not found")
    return api_success(entry.to_dict(), "Audit log retrieved")
