"""
Project and phase CRUD service.

Functions:
    - list_projects / get_project / create_project / update_project / delete_project
    - list_phases / get_phase / create_phase / update_phase / delete_phase
    - create_default_phases: seed the four standard phases on a new project
    - phase_budget_from_percentage: split a project budget share into categories
"""

from __future__ import annotations

import logging

from sqlalchemy import or_

from buildtrack.core.exceptions import ConflictError, ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.material import Material
from buildtrack.models.phase_template import DEFAULT_BUDGET_ALLOCATION
from buildtrack.models.project import (
    BUDGET_CATEGORIES,
    DEFAULT_PHASES,
    PHASE_STATUSES,
    PHASE_TYPES,
    PROJECT_STATUSES,
    Phase,
    Project,
    empty_budget_allocation,
)
from buildtrack.models.soft_delete import utcnow
from buildtrack.utils.helpers import clean_str, get_active, parse_date, parse_number, parse_sequence

logger = logging.getLogger(__name__)

_PROJECT_BUDGET_KEYS = ("total", "materials", "labour", "contingency")


def _clean_budget(raw, keys) -> dict:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("budget must be an object", details={"budget": "invalid"})
    budget = {}
    for key in keys:
        if key in raw:
            budget[key] = parse_number(raw.get(key), f"budget.{key}", minimum=0) or 0.0
    return budget


# ═════════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════════


def list_projects(*, status: str | None = None, search: str | None = None,
                  allowed_project_ids: set[int] | None = None):
    """Return a query of active projects, newest first."""
    query = Project.query_active()
    if status:
        query = query.filter(Project.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            Project.project_name.ilike(like),
            Project.project_code.ilike(like),
            Project.location.ilike(like),
        ))
    if allowed_project_ids is not None:
        query = query.filter(Project.id.in_(sorted(allowed_project_ids)))
    return query.order_by(Project.created_at.desc(), Project.id.desc())


def get_project(project_id: int) -> Project:
    return get_active(Project, project_id, "Project")


def create_project(data: dict, *, actor: str | None = None) -> Project:
    """Create a project and, unless ``auto_create_phases`` is false, its default phases.

    Raises:
        ValidationError: missing code/name, bad status or budget.
        ConflictError: project_code already used.
    """
    code = (clean_str(data.get("project_code"), 50) or "").upper()
    name = clean_str(data.get("project_name"), 200)
    if not code:
        raise ValidationError("project_code is required", details={"project_code": "required"})
    if not name:
        raise ValidationError("project_name is required", details={"project_name": "required"})

    status = data.get("status") or "planning"
    if status not in PROJECT_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(sorted(PROJECT_STATUSES))}",
            details={"status": status},
        )
    if Project.query.filter_by(project_code=code).first():
        raise ConflictError("Project", "project_code", code)

    project = Project(
        project_code=code,
        project_name=name,
        description=data.get("description"),
        location=clean_str(data.get("location"), 255),
        client=clean_str(data.get("client"), 200),
        status=status,
        start_date=parse_date(data.get("start_date")),
        end_date=parse_date(data.get("end_date")),
        budget=_clean_budget(data.get("budget"), _PROJECT_BUDGET_KEYS),
        created_by=actor,
    )
    db.session.add(project)
    db.session.flush()

    if data.get("auto_create_phases", True) not in (False, "false", 0):
        create_default_phases(project)

    write_audit(entity_type="project", entity_id=project.id, action="create",
                project_id=project.id, diff={"project_code": code})
    db.session.commit()
    logger.info("Project created", extra={"project_id": project.id})
    return project


def update_project(project_id: int, data: dict) -> Project:
    project = get_project(project_id)
    changes = {}

    if "project_name" in data:
        name = clean_str(data.get("project_name"), 200)
        if not name:
            raise ValidationError("project_name cannot be empty")
        changes["project_name"] = (project.project_name, name)
        project.project_name = name
    if "status" in data:
        if data["status"] not in PROJECT_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(sorted(PROJECT_STATUSES))}",
            )
        changes["status"] = (project.status, data["status"])
        project.status = data["status"]
    for field in ("description", "location", "client"):
        if field in data:
            setattr(project, field, data.get(field))
    for field in ("start_date", "end_date"):
        if field in data:
            setattr(project, field, parse_date(data.get(field)))
    if "budget" in data:
        budget = dict(project.budget or {})
        budget.update(_clean_budget(data.get("budget"), _PROJECT_BUDGET_KEYS))
        changes["budget"] = (project.budget, budget)
        project.budget = budget

    write_audit(entity_type="project", entity_id=project.id, action="update",
                project_id=project.id, diff=changes)
    db.session.commit()
    return project


def delete_project(project_id: int) -> Project:
    project = get_project(project_id)
    project.soft_delete()
    write_audit(entity_type="project", entity_id=project.id, action="delete",
                project_id=project.id)
    db.session.commit()
    logger.info("Project soft-deleted", extra={"project_id": project.id})
    return project


# ═════════════════════════════════════════════════════════════════════════════
# Phases
# ═════════════════════════════════════════════════════════════════════════════


def phase_budget_from_percentage(project: Project, percentage: float,
                                 allocation: dict | None = None) -> dict:
    """Phase budget = project total × percentage, split by category shares."""
    allocation = allocation or DEFAULT_BUDGET_ALLOCATION
    total = round(project.budget_total * float(percentage or 0) / 100, 2)
    budget = {"total": total}
    for category in BUDGET_CATEGORIES:
        budget[category] = round(total * float(allocation.get(category) or 0) / 100, 2)
    return budget


def create_default_phases(project: Project) -> list[Phase]:
    phases = []
    for default in DEFAULT_PHASES:
        phase = Phase(
            project_id=project.id,
            phase_name=default["phase_name"],
            phase_code=default["phase_code"],
            phase_type=default["phase_type"],
            sequence=default["sequence"],
            description=default["description"],
            budget_allocation=phase_budget_from_percentage(project, default["budget_percentage"]),
        )
        db.session.add(phase)
        phases.append(phase)
    db.session.flush()
    return phases


def next_phase_code(project_id: int) -> str:
    count = Phase.query.filter_by(project_id=project_id).count()
    return f"PHASE-{count + 1:02d}"


def list_phases(project_id: int | None = None, status: str | None = None):
    query = Phase.query_active()
    if project_id is not None:
        query = query.filter(Phase.project_id == project_id)
    if status:
        query = query.filter(Phase.status == status)
    return query.order_by(Phase.project_id, Phase.sequence, Phase.id)


def get_phase(phase_id: int) -> Phase:
    return get_active(Phase, phase_id, "Phase")


def get_phase_for_project(phase_id, project_id: int) -> Phase:
    """Return the phase, requiring it to belong to ``project_id``."""
    phase = get_phase(phase_id)
    if phase.project_id != project_id:
        raise ValidationError(
            "Phase does not belong to this project", details={"phase_id": phase_id},
        )
    return phase


def _clean_allocation(raw) -> dict:
    allocation = empty_budget_allocation()
    if raw is None:
        return allocation
    if not isinstance(raw, dict):
        raise ValidationError("budget_allocation must be an object")
    for key in ("total",) + BUDGET_CATEGORIES:
        if key in raw:
            allocation[key] = parse_number(raw.get(key), f"budget_allocation.{key}", minimum=0) or 0.0
    return allocation


def _clean_depends_on(raw, project_id: int, phase_id: int | None = None) -> list[int]:
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ValidationError("depends_on must be a list of phase ids")
    try:
        ids = [int(x) for x in raw]
    except (TypeError, ValueError):
        raise ValidationError("depends_on must be a list of phase ids")
    if len(set(ids)) != len(ids):
        raise ValidationError("depends_on must not contain duplicates")
    if phase_id is not None and phase_id in ids:
        raise ValidationError("A phase cannot depend on itself")
    for dep_id in ids:
        get_phase_for_project(dep_id, project_id)
    return ids


def _validate_completion(value) -> float:
    pct = parse_number(value, "completion_percentage", minimum=0) or 0.0
    if pct > 100:
        raise ValidationError("completion_percentage must be between 0 and 100")
    return pct


def create_phase(data: dict) -> Phase:
    project = get_project(data.get("project_id"))
    name = clean_str(data.get("phase_name"), 200)
    if not name:
        raise ValidationError("phase_name is required", details={"phase_name": "required"})

    phase_type = data.get("phase_type") or "construction"
    if phase_type not in PHASE_TYPES:
        raise ValidationError(f"phase_type must be one of: {', '.join(sorted(PHASE_TYPES))}")
    sequence = parse_sequence(
        data.get("sequence"),
        default=Phase.query_active().filter_by(project_id=project.id).count() + 1,
    )

    phase = Phase(
        project_id=project.id,
        phase_name=name,
        phase_code=clean_str(data.get("phase_code"), 30) or next_phase_code(project.id),
        phase_type=phase_type,
        sequence=sequence,
        description=data.get("description"),
        status="not_started",
        completion_percentage=_validate_completion(data.get("completion_percentage", 0)),
        start_date=parse_date(data.get("start_date")),
        planned_end_date=parse_date(data.get("planned_end_date")),
        budget_allocation=_clean_allocation(data.get("budget_allocation")),
        depends_on=_clean_depends_on(data.get("depends_on"), project.id),
    )
    db.session.add(phase)
    db.session.flush()
    write_audit(entity_type="phase", entity_id=phase.id, action="create", project_id=project.id)
    db.session.commit()
    return phase


def update_phase(phase_id: int, data: dict) -> Phase:
    phase = get_phase(phase_id)
    changes = {}

    if "phase_name" in data:
        name = clean_str(data.get("phase_name"), 200)
        if not name:
            raise ValidationError("phase_name cannot be empty")
        phase.phase_name = name
    if "phase_type" in data:
        if data["phase_type"] not in PHASE_TYPES:
            raise ValidationError(f"phase_type must be one of: {', '.join(sorted(PHASE_TYPES))}")
        phase.phase_type = data["phase_type"]
    if "sequence" in data:
        phase.sequence = parse_sequence(data.get("sequence"))
    if "description" in data:
        phase.description = data.get("description")
    if "completion_percentage" in data:
        phase.completion_percentage = _validate_completion(data.get("completion_percentage"))
    if "budget_allocation" in data:
        changes["budget_allocation"] = (phase.budget_allocation, data.get("budget_allocation"))
        phase.budget_allocation = _clean_allocation(data.get("budget_allocation"))
    if "depends_on" in data:
        phase.depends_on = _clean_depends_on(data.get("depends_on"), phase.project_id, phase.id)
    for field in ("start_date", "planned_end_date", "actual_end_date"):
        if field in data:
            setattr(phase, field, parse_date(data.get(field)))
    if "status" in data:
        status = data["status"]
        if status not in PHASE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(sorted(PHASE_STATUSES))}")
        changes["status"] = (phase.status, status)
        phase.status = status
        if status == "completed":
            phase.completion_percentage = 100
            phase.actual_end_date = phase.actual_end_date or utcnow().date()
        elif status == "in_progress" and phase.start_date is None:
            phase.start_date = utcnow().date()

    write_audit(entity_type="phase", entity_id=phase.id, action="update",
                project_id=phase.project_id, diff=changes)
    db.session.commit()
    return phase


def delete_phase(phase_id: int) -> Phase:
    phase = get_phase(phase_id)
    in_use = Material.query_active().filter_by(phase_id=phase.id).count()
    if in_use:
        raise ValidationError(
            f"Phase has {in_use} active material(s); move or delete them first",
            details={"materials": in_use},
        )
    phase.soft_delete()
    write_audit(entity_type="phase", entity_id=phase.id, action="delete",
                project_id=phase.project_id)
    db.session.commit()
    return phase
