"""
Professional activity service.

Activities are logged against an active professional assignment. Creating
or deleting one keeps the assignment's counters in step; approving one
with ``fees_charged`` raises a pending professional fee.
"""

import logging
import math

from buildtrack.core.exceptions import PermissionDeniedError, ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.professional import (
    ACTIVITY_TRANSITIONS,
    ACTIVITY_TYPES,
    COMPLIANCE_STATUSES,
    INSPECTION_TYPES,
    ISSUE_SEVERITIES,
    LOCKED_FEE_STATUSES,
    MATERIAL_TEST_RESULTS,
    MATERIAL_TEST_TYPES,
    VISIT_PURPOSES,
    ProfessionalActivity,
    ProfessionalFee,
    ProfessionalLibrary,
    ProfessionalService,
)
from buildtrack.models.project import Phase, Project
from buildtrack.models.soft_delete import utcnow
from buildtrack.services import fee_service
from buildtrack.services.lifecycle import append_approval, apply_transition
from buildtrack.services.project_service import get_phase_for_project
from buildtrack.utils.helpers import clean_str, get_active, parse_date, parse_number, require_date, parse_id

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

# activity_type -> assignment counter bumped for it (besides total_activities)
_TYPE_COUNTERS = {
    "site_visit": "total_site_visits",
    "client_meeting": "total_site_visits",
    "inspection": "total_inspections",
    "quality_check": "total_inspections",
    "design_revision": "revisions_made",
}


def _choice(value, choices, field):
    value = clean_str(value)
    if value is not None and value not in choices:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(choices))}", details={field: value},
        )
    return value


def _validate_issues(raw) -> list[dict]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("issues_found must be a list")
    issues = []
    for index, issue in enumerate(raw):
        if not isinstance(issue, dict) or not clean_str(issue.get("description")):
            raise ValidationError(f"Issue {index + 1}: description is required")
        if issue.get("severity") not in ISSUE_SEVERITIES:
            raise ValidationError(
                f"Issue {index + 1}: severity must be one of: {', '.join(sorted(ISSUE_SEVERITIES))}",
            )
        issues.append({
            "description": clean_str(issue["description"]),
            "severity": issue["severity"],
            "resolved": bool(issue.get("resolved", False)),
        })
    return issues


def _validate_material_tests(raw) -> list[dict]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("material_tests must be a list")
    tests = []
    for index, test in enumerate(raw):
        if not isinstance(test, dict) or not clean_str(test.get("material_name")):
            raise ValidationError(f"Material test {index + 1}: material_name is required")
        if test.get("test_type") not in MATERIAL_TEST_TYPES:
            raise ValidationError(
                f"Material test {index + 1}: test_type must be one of: "
                f"{', '.join(sorted(MATERIAL_TEST_TYPES))}",
            )
        if test.get("test_result") not in MATERIAL_TEST_RESULTS:
            raise ValidationError(
                f"Material test {index + 1}: test_result must be one of: "
                f"{', '.join(sorted(MATERIAL_TEST_RESULTS))}",
            )
        tests.append({
            "material_name": clean_str(test["material_name"]),
            "test_type": test["test_type"],
            "test_result": test["test_result"],
            "notes": test.get("notes"),
        })
    return tests


def _validate_documents(raw) -> list:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("documents must be a list")
    return list(raw)


def _apply_fields(activity: ProfessionalActivity, data: dict, *, creating: bool) -> None:
    """Validate and copy the editable activity fields present in ``data``."""
    if creating or "activity_type" in data:
        activity_type = data.get("activity_type")
        if activity_type not in ACTIVITY_TYPES:
            raise ValidationError(
                f"activity_type must be one of: {', '.join(sorted(ACTIVITY_TYPES))}",
                details={"activity_type": activity_type},
            )
        activity.activity_type = activity_type
    if creating or "activity_date" in data:
        if data.get("activity_date") in (None, ""):
            raise ValidationError("activity_date is required", details={"activity_date": "required"})
        activity.activity_date = require_date(data["activity_date"], "activity_date")

    if "visit_purpose" in data:
        activity.visit_purpose = _choice(data["visit_purpose"], VISIT_PURPOSES, "visit_purpose")
    if "inspection_type" in data:
        activity.inspection_type = _choice(
            data["inspection_type"], INSPECTION_TYPES, "inspection_type",
        )
    if "compliance_status" in data:
        activity.compliance_status = _choice(
            data["compliance_status"], COMPLIANCE_STATUSES, "compliance_status",
        )
    if "visit_duration" in data:
        activity.visit_duration = parse_number(data.get("visit_duration"), "visit_duration", minimum=0)
    for field in ("notes", "observations", "recommendations"):
        if field in data:
            setattr(activity, field, data.get(field))

    if creating or "issues_found" in data:
        activity.issues_found = _validate_issues(data.get("issues_found"))
    if creating or "material_tests" in data:
        activity.material_tests = _validate_material_tests(data.get("material_tests"))
    if creating or "documents" in data:
        activity.documents = _validate_documents(data.get("documents"))

    if creating or "fees_charged" in data:
        activity.fees_charged = parse_number(
            data.get("fees_charged"), "fees_charged", minimum=0,
        ) or 0.0
    if creating or "expenses_incurred" in data:
        activity.expenses_incurred = parse_number(
            data.get("expenses_incurred"), "expenses_incurred", minimum=0,
        ) or 0.0


def _counter_deltas(activity: ProfessionalActivity) -> dict[str, int]:
    deltas = {"total_activities": 1}
    counter = _TYPE_COUNTERS.get(activity.activity_type)
    if counter:
        deltas[counter] = deltas.get(counter, 0) + 1
    if activity.issues_found:
        deltas["issues_identified"] = len(activity.issues_found)
    if activity.documents:
        deltas["documents_uploaded"] = len(activity.documents)
    return deltas


def _bump_counters(service: ProfessionalService, activity: ProfessionalActivity, sign: int) -> None:
    for field, amount in _counter_deltas(activity).items():
        value = (getattr(service, field) or 0) + sign * amount
        setattr(service, field, max(0, value))


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def list_activities(filters: dict, *, page: int = 1, limit: int = 20) -> tuple[list, dict]:
    query = ProfessionalActivity.query_active()
    for field in ("project_id", "professional_service_id", "phase_id"):
        if filters.get(field):
            query = query.filter(getattr(ProfessionalActivity, field) == parse_id(filters[field], field))
    if filters.get("activity_type"):
        query = query.filter(ProfessionalActivity.activity_type == filters["activity_type"])
    if filters.get("status"):
        query = query.filter(ProfessionalActivity.status == filters["status"])
    date_from = parse_date(filters.get("from"))
    date_to = parse_date(filters.get("to"))
    if date_from:
        query = query.filter(ProfessionalActivity.activity_date >= date_from)
    if date_to:
        query = query.filter(ProfessionalActivity.activity_date <= date_to)

    query = query.order_by(ProfessionalActivity.activity_date.desc(), ProfessionalActivity.id.desc())
    page = max(1, page)
    limit = min(max(1, limit), MAX_PAGE_SIZE)
    total = query.count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return items, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }


def get_activity(activity_id) -> ProfessionalActivity:
    return get_active(ProfessionalActivity, activity_id, "Professional activity")


def get_activity_detail(activity_id) -> dict:
    activity = get_activity(activity_id)
    data = activity.to_dict()
    service = db.session.get(ProfessionalService, activity.professional_service_id)
    data["professional_service"] = service.summary() if service else None
    library = db.session.get(ProfessionalLibrary, activity.library_id) if activity.library_id else None
    data["library"] = library.summary() if library else None
    project = db.session.get(Project, activity.project_id)
    data["project"] = project.summary() if project else None
    phase = db.session.get(Phase, activity.phase_id) if activity.phase_id else None
    data["phase"] = phase.summary() if phase else None
    fee = db.session.get(ProfessionalFee, activity.fee_id) if activity.fee_id else None
    data["fee"] = fee.to_dict() if fee else None
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Mutations
# ═════════════════════════════════════════════════════════════════════════════


def create_activity(data: dict, *, actor: str | None) -> ProfessionalActivity:
    """Log an activity against an active assignment.

    ``submit=true`` in the payload creates it straight in pending_approval.
    """
    if data.get("professional_service_id") in (None, ""):
        raise ValidationError(
            "professional_service_id is required", details={"professional_service_id": "required"},
        )
    service = get_active(ProfessionalService, data["professional_service_id"], "Professional service")
    if service.status != "active":
        raise ValidationError(
            f"Professional service is not active (status: {service.status})",
        )

    phase_id = service.phase_id
    if data.get("phase_id") not in (None, ""):
        phase_id = get_phase_for_project(data["phase_id"], service.project_id).id

    activity = ProfessionalActivity(
        professional_service_id=service.id,
        library_id=service.library_id,
        project_id=service.project_id,
        phase_id=phase_id,
        created_by=actor,
        approval_chain=[],
    )
    _apply_fields(activity, data, creating=True)
    submit = data.get("submit") in (True, "true", "1", 1)
    activity.status = "pending_approval" if submit else "draft"

    db.session.add(activity)
    _bump_counters(service, activity, +1)
    db.session.flush()
    write_audit(
        entity_type="professional_activity", entity_id=activity.id, action="create",
        project_id=service.project_id,
        diff={"activity_type": activity.activity_type, "status": activity.status},
    )
    db.session.commit()
    logger.info(
        "Activity %s logged for %s", activity.activity_type, service.professional_code,
        extra={"project_id": service.project_id},
    )
    return activity


def update_activity(activity_id, data: dict, *, role: str | None) -> ProfessionalActivity:
    """Edit an activity. Approved activities are editable by the owner only."""
    activity = get_activity(activity_id)
    if activity.status == "approved" and role != "owner":
        raise PermissionDeniedError("Approved activities can only be edited by the owner")

    service = db.session.get(ProfessionalService, activity.professional_service_id)
    if service is not None:
        _bump_counters(service, activity, -1)
    if "phase_id" in data:
        activity.phase_id = (
            None if data["phase_id"] in (None, "")
            else get_phase_for_project(data["phase_id"], activity.project_id).id
        )
    _apply_fields(activity, data, creating=False)
    if service is not None:
        _bump_counters(service, activity, +1)

    write_audit(entity_type="professional_activity", entity_id=activity.id, action="update",
                project_id=activity.project_id, diff={"fields": sorted(data)})
    db.session.commit()
    return activity


def delete_activity(activity_id) -> ProfessionalActivity:
    activity = get_activity(activity_id)
    if activity.fee_id:
        fee = db.session.get(ProfessionalFee, activity.fee_id)
        if fee is not None and fee.status in LOCKED_FEE_STATUSES:
            raise ValidationError(
                f"Cannot delete activity: linked fee is {fee.status}",
                details={"fee_id": fee.id, "fee_status": fee.status},
            )
        if fee is not None and fee.status != "ARCHIVED":
            fee_service.archive_fee(fee)

    service = db.session.get(ProfessionalService, activity.professional_service_id)
    if service is not None:
        _bump_counters(service, activity, -1)
    activity.soft_delete()
    write_audit(entity_type="professional_activity", entity_id=activity.id, action="delete",
                project_id=activity.project_id)
    db.session.commit()
    return activity


def submit_activity(activity_id, *, actor: str | None, role: str | None) -> ProfessionalActivity:
    activity = get_activity(activity_id)
    previous = apply_transition(activity, "submit", ACTIVITY_TRANSITIONS, resource="Activity")
    append_approval(activity, status="submitted", approver=actor, role=role)
    write_audit(entity_type="professional_activity", entity_id=activity.id,
                action="professional_activity.submit", project_id=activity.project_id,
                diff={"status": [previous, activity.status]})
    db.session.commit()
    return activity


def approve_activity(activity_id, *, actor: str | None, role: str | None,
                     notes: str | None = None) -> ProfessionalActivity:
    """Approve an activity; charged fees become a PENDING professional fee."""
    activity = get_activity(activity_id)
    previous = apply_transition(activity, "approve", ACTIVITY_TRANSITIONS, resource="Activity")
    activity.approved_by = actor
    activity.approved_at = utcnow()
    activity.approval_notes = notes
    append_approval(activity, status="approved", approver=actor, role=role, notes=notes)

    fee = None
    service = db.session.get(ProfessionalService, activity.professional_service_id)
    if (activity.fees_charged or 0) > 0 and activity.fee_id is None and service is not None:
        fee = fee_service.raise_fee(
            service,
            project_id=activity.project_id,
            amount=activity.fees_charged,
            description=f"{activity.activity_type} on {activity.activity_date.isoformat()}",
        )
        activity.fee_id = fee.id

    write_audit(
        entity_type="professional_activity", entity_id=activity.id,
        action="professional_activity.approve", project_id=activity.project_id,
        diff={"status": [previous, "approved"], "fee_id": fee.id if fee else None},
    )
    db.session.commit()
    return activity


def reject_activity(activity_id, *, actor: str | None, role: str | None,
                    reason: str | None) -> ProfessionalActivity:
    reason = clean_str(reason)
    if not reason:
        raise ValidationError(
            "rejection_reason is required", details={"rejection_reason": "required"},
        )
    activity = get_activity(activity_id)
    previous = apply_transition(activity, "reject", ACTIVITY_TRANSITIONS, resource="Activity")
    activity.rejection_reason = reason
    append_approval(activity, status="rejected", approver=actor, role=role, notes=reason)
    write_audit(
        entity_type="professional_activity", entity_id=activity.id,
        action="professional_activity.reject", project_id=activity.project_id,
        diff={"status": [previous, "rejected"], "reason": reason},
    )
    db.session.commit()
    return activity
