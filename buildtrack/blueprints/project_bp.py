"""
BuildTrack construction management API.
Project Blueprint: CRUD API for projects and their phases.

Endpoints:
    Projects:
        GET    /api/v1/projects                 — List (status, search, limit/offset)
        POST   /api/v1/projects                 — Create (+ default phases)
        GET    /api/v1/projects/<id>            — Detail (+ phases)
        PATCH  /api/v1/projects/<id>            — Update
        DELETE /api/v1/projects/<id>            — Soft delete

    Phases:
        GET    /api/v1/phases?project_id=       — List, ordered by sequence
        POST   /api/v1/phases                   — Create
        GET    /api/v1/phases/<id>              — Detail (+ financial summary)
        PATCH  /api/v1/phases/<id>              — Update
        DELETE /api/v1/phases/<id>              — Soft delete
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
from buildtrack.middleware.permission_required import require_any_permission, require_permission
from buildtrack.services import finance_service, project_service
from buildtrack.utils.errors import E, api_error, api_success

logger = logging.getLogger(__name__)

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1")
register_error_handlers(project_bp)


def _investor_scope() -> set[int] | None:
    """Project ids an investor may see; None for every other role."""
    if current_role() != "investor":
        return None
    return finance_service.allowed_project_ids_for_investor(current_user())


# ═════════════════════════════════════════════════════════════════════════════
#  PROJECTS
# ═════════════════════════════════════════════════════════════════════════════


@project_bp.route("/projects", methods=["GET"])
@require_any_permission("view_projects", "view_financing")
def list_projects():
    query = project_service.list_projects(
        status=request.args.get("status"),
        search=request.args.get("search"),
        allowed_project_ids=_investor_scope(),
    )
    items, total = paginate_query(query)
    return api_success([p.to_dict() for p in items], "Projects retrieved", total=total)


@project_bp.route("/projects", methods=["POST"])
@require_permission("create_project")
def create_project():
    project = project_service.create_project(json_body(), actor=current_user())
    return api_success(project.to_dict(include_phases=True), "Project created", status=201)


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
@require_any_permission("view_projects", "view_financing")
def get_project(project_id):
    scope = _investor_scope()
    if scope is not None and project_id not in scope:
        return api_error(E.FORBIDDEN, "Access to this project is not allowed")
    project = project_service.get_project(project_id)
    return api_success(project.to_dict(include_phases=True), "Project retrieved")


@project_bp.route("/projects/<int:project_id>", methods=["PATCH", "PUT"])
@require_permission("edit_project")
def update_project(project_id):
    project = project_service.update_project(project_id, json_body())
    return api_success(project.to_dict(), "Project updated")


@project_bp.route("/projects/<int:project_id>", methods=["DELETE"])
@require_permission("delete_project")
def delete_project(project_id):
    project_service.delete_project(project_id)
    return api_success({"id": project_id}, "Project deleted")


# ═════════════════════════════════════════════════════════════════════════════
#  PHASES
# ═════════════════════════════════════════════════════════════════════════════


@project_bp.route("/phases", methods=["GET"])
@require_permission("view_projects")
def list_phases():
    query = project_service.list_phases(
        project_id=request.args.get("project_id", type=int),
        status=request.args.get("status"),
    )
    items, total = paginate_query(query)
    return api_success([p.to_dict() for p in items], "Phases retrieved", total=total)


@project_bp.route("/phases", methods=["POST"])
@require_permission("manage_phases")
def create_phase():
    phase = project_service.create_phase(json_body())
    return api_success(phase.to_dict(), "Phase created", status=201)


@project_bp.route("/phases/<int:phase_id>", methods=["GET"])
@require_permission("view_projects")
def get_phase(phase_id):
    phase = project_service.get_phase(phase_id)
    data = phase.to_dict()
    data["financial_summary"] = finance_service.phase_financial_summary(phase)
    return api_success(data, "Phase retrieved")


@project_bp.route("/phases/<int:phase_id>", methods=["PATCH", "PUT"])
@require_permission("manage_phases")
def update_phase(phase_id):
    phase = project_service.update_phase(phase_id, json_body())
    return api_success(phase.to_dict(), "Phase updated")


@project_bp.route("/phases/<int:phase_id>", methods=["DELETE"])
@require_permission("delete_phase")
def delete_phase(phase_id):
    project_service.delete_phase(phase_id)
    return api_success({"id": phase_id}, "Phase deleted")
