"""
Professional services: the reusable library and project assignments.

Functions:
    - list_library / get_library_entry / create_library_entry / update_library_entry / delete_library_entry
    - list_assignments / get_assignment / get_assignment_detail
    - create_assignment:  assign a library professional to a project
    - update_assignment / delete_assignment
"""

import logging

from sqlalchemy import or_

from buildtrack.core.exceptions import ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.professional import (
    CONTRACT_TYPES,
    PAYMENT_SCHEDULES,
    PROFESSIONAL_TYPES,
    SERVICE_STATUSES,
    VISIT_FREQUENCIES,
    ProfessionalLibrary,
    ProfessionalService,
)
from buildtrack.models.project import Phase, Project
from buildtrack.models.soft_delete import utcnow
from buildtrack.services.project_service import get_phase_for_project, get_project
from buildtrack.utils.helpers import clean_str, get_active, parse_date, parse_number, require_date, parse_id

logger = logging.getLogger(__name__)

_CODE_PREFIX = {"architect": "ARCH", "engineer": "ENG"}


def _check_choice(value, choices, field):
    if value is not None and value not in choices:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(choices))}",
            details={field: value},
        )
    return value


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ("true", "1", "yes")


# ═════════════════════════════════════════════════════════════════════════════
# Library
# ═════════════════════════════════════════════════════════════════════════════


def list_library(*, type_: str | None = None, search: str | None = None,
                 active_only: bool = False):
    query = ProfessionalLibrary.query_active()
    if type_:
        query = query.filter(ProfessionalLibrary.type == type_)
    if active_only:
        query = query.filter(ProfessionalLibrary.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            ProfessionalLibrary.name.ilike(like),
            ProfessionalLibrary.company_name.ilike(like),
            ProfessionalLibrary.specialization.ilike(like),
        ))
    return query.order_by(ProfessionalLibrary.name)


def get_library_entry(library_id) -> ProfessionalLibrary:
    return get_active(ProfessionalLibrary, library_id, "Professional")


def _apply_library_fields(entry: ProfessionalLibrary, data: dict) -> None:
    if "company_name" in data:
        entry.company_name = clean_str(data.get("company_name"), 200)
    if "email" in data:
        email = clean_str(data.get("email"), 255)
        if email and "@" not in email:
            raise ValidationError("email must be a valid email address", details={"email": email})
        entry.email = email
    for field, max_len in (("phone", 50), ("specialization", 200), ("registration_number", 100)):
        if field in data:
            setattr(entry, field, clean_str(data.get(field), max_len))
    if "default_contract_type" in data:
        entry.default_contract_type = _check_choice(
            clean_str(data.get("default_contract_type")), CONTRACT_TYPES, "default_contract_type",
        )
    if "default_hourly_rate" in data:
        entry.default_hourly_rate = parse_number(
            data.get("default_hourly_rate"), "default_hourly_rate", minimum=0,
        )
    if "is_active" in data:
        entry.is_active = _as_bool(data.get("is_active"))


def create_library_entry(data: dict) -> ProfessionalLibrary:
    name = clean_str(data.get("name"), 200)
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    type_ = data.get("type")
    if type_ not in PROFESSIONAL_TYPES:
        raise ValidationError("type must be architect or engineer", details={"type": type_})

    entry = ProfessionalLibrary(name=name, type=type_, is_active=True)
    _apply_library_fields(entry, data)
    db.session.add(entry)
    db.session.flush()
    write_audit(entity_type="professional_library", entity_id=entry.id, action="create")
    db.session.commit()
    logger.info("Professional added to library: %s (%s)", name, type_)
    return entry


def update_library_entry(library_id, data: dict) -> ProfessionalLibrary:
    entry = get_library_entry(library_id)
    if "name" in data:
        name = clean_str(data.get("name"), 200)
        if not name:
            raise ValidationError("name cannot be empty")
        entry.name = name
    if "type" in data:
        if data["type"] not in PROFESSIONAL_TYPES:
            raise ValidationError("type must be architect or engineer")
        entry.type = data["type"]
    _apply_library_fields(entry, data)
    write_audit(entity_type="professional_library", entity_id=entry.id, action="update")
    db.session.commit()
    return entry


def delete_library_entry(library_id) -> ProfessionalLibrary:
    entry = get_library_entry(library_id)
    entry.soft_delete()
    entry.is_active = False
    write_audit(entity_type="professional_library", entity_id=entry.id, action="delete")
    db.session.commit()
    return entry


# ═════════════════════════════════════════════════════════════════════════════
# Assignments
# ═════════════════════════════════════════════════════════════════════════════


def list_assignments(filters: dict):
    query = ProfessionalService.query_active()
    if filters.get("project_id"):
        query = query.filter(ProfessionalService.project_id == parse_id(filters["project_id"], "project_id"))
    if filters.get("phase_id"):
        query = query.filter(ProfessionalService.phase_id == parse_id(filters["phase_id"], "phase_id"))
    if filters.get("type"):
        query = query.filter(ProfessionalService.type == filters["type"])
    if filters.get("status"):
        query = query.filter(ProfessionalService.status == filters["status"])
    return query.order_by(ProfessionalService.created_at.desc(), ProfessionalService.id.desc())


def get_assignment(service_id) -> ProfessionalService:
    return get_active(ProfessionalService, service_id, "Professional service")


def assignment_with_relations(service: ProfessionalService) -> dict:
    """Assignment dict with library, project and phase summaries resolved."""
    data = service.to_dict()
    data["library"] = service.library.summary() if service.library else None
    project = db.session.get(Project, service.project_id)
    data["project"] = project.summary() if project else None
    phase = db.session.get(Phase, service.phase_id) if service.phase_id else None
    data["phase"] = phase.summary() if phase else None
    data["remaining_commitment"] = round(service.remaining_commitment, 2)
    return data


def get_assignment_detail(service_id) -> dict:
    return assignment_with_relations(get_assignment(service_id))


def next_professional_code(project: Project, type_: str) -> str:
    """``ARCH-<project code[:8]>-NNN`` / ``ENG-...``, numbered per project and type."""
    prefix = f"{_CODE_PREFIX[type_]}-{project.project_code[:8]}-"
    codes = [
        row[0] for row in db.session.query(ProfessionalService.professional_code)
        .filter(ProfessionalService.professional_code.like(f"{prefix}%"))
        .all()
    ]
    highest = 0
    for code in codes:
        suffix = code[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:03d}"


def create_assignment(data: dict) -> ProfessionalService:
    """Assign a library professional to a project.

    Raises:
        NotFoundError: library entry, project or phase missing.
        ValidationError: inactive library entry, duplicate active assignment,
                         bad enum values or contract value.
    """
    if data.get("library_id") in (None, ""):
        raise ValidationError("library_id is required", details={"library_id": "required"})
    if data.get("project_id") in (None, ""):
        raise ValidationError("project_id is required", details={"project_id": "required"})

    library = get_library_entry(data["library_id"])
    if not library.is_active:
        raise ValidationError("Professional is not active in the library")
    project = get_project(data["project_id"])

    duplicate = (
        ProfessionalService.query_active()
        .filter_by(library_id=library.id, project_id=project.id, status="active")
        .first()
    )
    if duplicate is not None:
        raise ValidationError(
            "This professional is already assigned to the project",
            details={"professional_code": duplicate.professional_code},
        )

    phase_id = None
    if data.get("phase_id") not in (None, ""):
        phase_id = get_phase_for_project(data["phase_id"], project.id).id

    contract_type = _check_choice(
        data.get("contract_type") or library.default_contract_type or "full_service",
        CONTRACT_TYPES, "contract_type",
    )
    payment_schedule = _check_choice(
        data.get("payment_schedule") or "lump_sum", PAYMENT_SCHEDULES, "payment_schedule",
    )
    visit_frequency = _check_choice(
        clean_str(data.get("visit_frequency")), VISIT_FREQUENCIES, "visit_frequency",
    )
    contract_value = parse_number(
        data.get("contract_value"), "contract_value", required=True, exclusive_minimum=0,
    )
    start = (
        require_date(data["contract_start_date"], "contract_start_date")
        if data.get("contract_start_date") else utcnow().date()
    )
    end = parse_date(data.get("contract_end_date"))
    if end is not None and end < start:
        raise ValidationError("contract_end_date cannot be before contract_start_date")

    service = ProfessionalService(
        library_id=library.id,
        project_id=project.id,
        phase_id=phase_id,
        professional_code=next_professional_code(project, library.type),
        type=library.type,
        service_category=clean_str(data.get("service_category"), 100),
        scope_of_work=data.get("scope_of_work"),
        contract_type=contract_type,
        contract_value=contract_value,
        payment_schedule=payment_schedule,
        visit_frequency=visit_frequency,
        contract_start_date=start,
        contract_end_date=end,
        contract_document_url=clean_str(data.get("contract_document_url"), 500),
        status="active",
        total_fees=0,
        fees_paid=0,
        fees_pending=0,
        total_activities=0,
        total_site_visits=0,
        total_inspections=0,
        revisions_made=0,
        issues_identified=0,
        documents_uploaded=0,
    )
    db.session.add(service)
    db.session.flush()
    write_audit(
        entity_type="professional_service", entity_id=service.id, action="create",
        project_id=project.id,
        diff={"professional_code": service.professional_code, "contract_value": contract_value},
    )
    db.session.commit()
    logger.info(
        "Professional %s assigned as %s", library.name, service.professional_code,
        extra={"project_id": project.id},
    )
    return service


def update_assignment(service_id, data: dict) -> ProfessionalService:
    service = get_assignment(service_id)
    changes = {}

    if "phase_id" in data:
        service.phase_id = (
            None if data["phase_id"] in (None, "")
            else get_phase_for_project(data["phase_id"], service.project_id).id
        )
    if "contract_type" in data:
        service.contract_type = _check_choice(data["contract_type"], CONTRACT_TYPES, "contract_type")
    if "payment_schedule" in data:
        service.payment_schedule = _check_choice(
            data["payment_schedule"], PAYMENT_SCHEDULES, "payment_schedule",
        )
    if "visit_frequency" in data:
        service.visit_frequency = _check_choice(
            clean_str(data.get("visit_frequency")), VISIT_FREQUENCIES, "visit_frequency",
        )
    if "contract_value" in data:
        value = parse_number(
            data.get("contract_value"), "contract_value", required=True, exclusive_minimum=0,
        )
        changes["contract_value"] = [service.contract_value, value]
        service.contract_value = value
    if "status" in data:
        status = _check_choice(data.get("status"), SERVICE_STATUSES, "status")
        changes["status"] = [service.status, status]
        service.status = status
    if "contract_start_date" in data:
        service.contract_start_date = require_date(data["contract_start_date"], "contract_start_date")
    if "contract_end_date" in data:
        service.contract_end_date = parse_date(data.get("contract_end_date"))
    if (service.contract_end_date is not None
            and service.contract_end_date < service.contract_start_date):
        raise ValidationError("contract_end_date cannot be before contract_start_date")
    for field, max_len in (("service_category", 100), ("contract_document_url", 500)):
        if field in data:
            setattr(service, field, clean_str(data.get(field), max_len))
    if "scope_of_work" in data:
        service.scope_of_work = data.get("scope_of_work")

    write_audit(entity_type="professional_service", entity_id=service.id, action="update",
                project_id=service.project_id, diff=changes)
    db.session.commit()
    return service


def delete_assignment(service_id) -> ProfessionalService:
    service = get_assignment(service_id)
    if service.status == "active":
        raise ValidationError(
            "Cannot delete an active assignment. Terminate or complete it first.",
            details={"status": service.status},
        )
    service.soft_delete()
    write_audit(entity_type="professional_service", entity_id=service.id, action="delete",
                project_id=service.project_id)
    db.session.commit()
    return service
