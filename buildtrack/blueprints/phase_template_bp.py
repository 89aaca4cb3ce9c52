"""
BuildTrack construction management API.
Phase template endpoints.

    GET    /api/v1/phase-templates              — List (template_type, search)
    POST   /api/v1/phase-templates              — Create
    GET    /api/v1/phase-templates/<id>         — Detail
    PATCH  /api/v1/phase-templates/<id>         — Update
    DELETE /api/v1/phase-templates/<id>         — Soft delete
    POST   /api/v1/phase-templates/<id>/apply   — Create phases on a project
"""

from flask import Blueprint, request

from buildtrack.blueprints import current_user, json_body, paginate_query, register_error_handlers
from buildtrack.middleware.permission_required import require_permission
from buildtrack.services import phase_template_service
from buildtrack.utils.errors import api_success

phase_template_bp = Blueprint("phase_templates", __name__, url_prefix="/api/v1")
register_error_handlers(phase_template_bp)


@phase_template_bp.route("/phase-templates", methods=["GET"])
@require_permission("view_phase_templates")
def list_templates():
    query = phase_template_service.list_templates(
        template_type=request.args.get("template_type"),
        search=request.args.get("search"),
    )
    items, total = paginate_query(query)
    return api_success([t.to_dict() for t in items], "Phase templates retrieved", total=total)


@phase_template_bp.route("/phase-templates", methods=["POST"])
@require_permission("manage_phase_templates")
def create_template():
    template = phase_template_service.create_template(json_body(), actor=current_user())
    return api_success(template.to_dict(), "Phase template created", status=201)


@phase_template_bp.route("/phase-templates/<int:template_id>", methods=["GET"])
@require_permission("view_phase_templates")
def get_template(template_id):
    template = phase_template_service.get_template(template_id)
    return api_success(template.to_dict(), "Phase template retrieved")


@phase_template_bp.route("/phase-templates/<int:template_id>", methods=["PATCH", "PUT"])
@require_permission("manage_phase_templates")
def update_template(template_id):
    template = phase_template_service.update_template(template_id, json_body())
    return api_success(template.to_dict(), "Phase template updated")


@phase_template_bp.route("/phase-templates/<int:template_id>", methods=["DELETE"])
@require_permission("delete_phase_template")
def delete_template(template_id):
    phase_template_service.delete_template(template_id)
    return api_success({"id": template_id}, "Phase template deleted")


@phase_template_bp.route("/phase-templates/<int:template_id>/apply", methods=["POST"])
@require_permission("apply_phase_template")
def apply_template(template_id):
    """Body: {project_id}. Phases whose code already exists on the project are skipped."""
    result = phase_template_service.apply_template(template_id, json_body().get("project_id"))
    return api_success(
        {
            "phases": [p.to_dict() for p in result["phases"]],
            "phases_count": result["phases_count"],
            "skipped": result["skipped"],
        },
        f"Template applied: {result['phases_count']} phases created",
        status=201,
    )
