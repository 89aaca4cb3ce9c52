"""
BuildTrack construction management API.
Professional services: reusable library of architects/engineers and their
project assignments.

Endpoints:
    Library:
        GET    /api/v1/professional-services-library          — List (type, search, active_only)
        POST   /api/v1/professional-services-library          — Create
        GET    /api/v1/professional-services-library/<id>     — Detail
        PATCH  /api/v1/professional-services-library/<id>     — Update
        DELETE /api/v1/professional-services-library/<id>     — Soft delete (owner)

    Assignments:
        GET    /api/v1/professional-services                  — List (project_id, phase_id, type, status)
        POST   /api/v1/professional-services                  — Assign to project
        GET    /api/v1/professional-services/<id>             — Detail
        PATCH  /api/v1/professional-services/<id>             — Update
        DELETE /api/v1/professional-services/<id>             — Soft delete (owner)
"""

from flask import Blueprint, request

from buildtrack.blueprints import json_body, paginate_query, register_error_handlers
from buildtrack.middleware.permission_required import require_permission
from buildtrack.services import professional_service
from buildtrack.utils.errors import api_success

professional_service_bp = Blueprint("professional_services", __name__, url_prefix="/api/v1")
register_error_handlers(professional_service_bp)


# ── Library ──────────────────────────────────────────────────────────────────


@professional_service_bp.route("/professional-services-library", methods=["GET"])
@require_permission("view_professional_services")
def list_library():
    query = professional_service.list_library(
        type_=request.args.get("type"),
        search=request.args.get("search"),
        active_only=request.args.get("active_only", "").lower() in ("true", "1"),
    )
    items, total = paginate_query(query)
    return api_success([e.to_dict() for e in items], "Professionals retrieved", total=total)


@professional_service_bp.route("/professional-services-library", methods=["POST"])
@require_permission("manage_professional_services")
def create_library_entry():
    entry = professional_service.create_library_entry(json_body())
    return api_success(entry.to_dict(), "Professional added to library", status=201)


@professional_service_bp.route("/professional-services-library/<int:library_id>", methods=["GET"])
@require_permission("view_professional_services")
def get_library_entry(library_id):
    entry = professional_service.get_library_entry(library_id)
    return api_success(entry.to_dict(), "Professional retrieved")


@professional_service_bp.route(
    "/professional-services-library/<int:library_id>", methods=["PATCH", "PUT"],
)
@require_permission("manage_professional_services")
def update_library_entry(library_id):
    entry = professional_service.update_library_entry(library_id, json_body())
    return api_success(entry.to_dict(), "Professional updated")


@professional_service_bp.route(
    "/professional-services-library/<int:library_id>", methods=["DELETE"],
)
@require_permission("delete_professional_services")
def delete_library_entry(library_id):
    professional_service.delete_library_entry(library_id)
    return api_success({"id": library_id}, "Professional deleted")


# ── Assignments ──────────────────────────────────────────────────────────────


@professional_service_bp.route("/professional-services", methods=["GET"])
@require_permission("view_professional_services")
def list_assignments():
    filters = {
        key: request.args.get(key)
        for key in ("project_id", "phase_id", "type", "status")
        if request.args.get(key)
    }
    items, total = paginate_query(professional_service.list_assignments(filters))
    return api_success(
        [professional_service.assignment_with_relations(s) for s in items],
        "Professional services retrieved",
        total=total,
    )


@professional_service_bp.route("/professional-services", methods=["POST"])
@require_permission("manage_professional_services")
def create_assignment():
    service = professional_service.create_assignment(json_body())
    return api_success(
        professional_service.assignment_with_relations(service),
        "Professional assigned to project",
        status=201,
    )


@professional_service_bp.route("/professional-services/<int:service_id>", methods=["GET"])
@require_permission("view_professional_services")
def get_assignment(service_id):
    return api_success(
        professional_service.get_assignment_detail(service_id), "Professional service retrieved",
    )


@professional_service_bp.route(
    "/professional-services/<int:service_id>", methods=["PATCH", "PUT"],
)
@require_permission("manage_professional_services")
def update_assignment(service_id):
    service = professional_service.update_assignment(service_id, json_body())
    return api_success(
        professional_service.assignment_with_relations(service), "Professional service updated",
    )


@professional_service_bp.route("/professional-services/<int:service_id>", methods=["DELETE"])
@require_permission("delete_professional_services")
def delete_assignment(service_id):
    professional_service.delete_assignment(service_id)
    return api_success({"id": service_id}, "Professional service deleted")
