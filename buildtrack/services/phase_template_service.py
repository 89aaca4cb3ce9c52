"""
Phase template service.

Functions:
    - list_templates / get_template / create_template / update_template / delete_template
    - apply_template:          create the template's phases on a project
    - seed_default_templates:  insert the standard residential template once
"""

import logging

from sqlalchemy import or_

from buildtrack.core.exceptions import ValidationError
from buildtrack.models import db
from buildtrack.models.audit import write_audit
from buildtrack.models.phase_template import (
    DEFAULT_BUDGET_ALLOCATION,
    TEMPLATE_TYPES,
    PhaseTemplate,
)
from buildtrack.models.project import BUDGET_CATEGORIES, DEFAULT_PHASES, PHASE_TYPES, Phase
from buildtrack.models.soft_delete import utcnow
from buildtrack.services.project_service import get_project, phase_budget_from_percentage
from buildtrack.utils.helpers import clean_str, get_active, parse_number, parse_sequence

logger = logging.getLogger(__name__)


def _normalize_phases(raw) -> list[dict]:
    """Validate template phase definitions and fill defaults."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError("At least one phase is required", details={"phases": "required"})

    phases = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ValidationError(f"Phase {index + 1} must be an object")
        name = clean_str(item.get("phase_name"), 200)
        if not name:
            raise ValidationError(f"Phase {index + 1}: phase_name is required")
        phase_type = item.get("phase_type") or "construction"
        if phase_type not in PHASE_TYPES:
            raise ValidationError(
                f"Phase {index + 1}: phase_type must be one of: {', '.join(sorted(PHASE_TYPES))}",
            )
        pct = parse_number(
            item.get("default_budget_percentage", 0),
            f"phases[{index}].default_budget_percentage", minimum=0,
        ) or 0.0
        if pct > 100:
            raise ValidationError(
                f"Phase {index + 1}: default_budget_percentage must be between 0 and 100",
            )
        phases.append({
            "phase_name": name,
            "phase_code": clean_str(item.get("phase_code"), 30) or f"PHASE-{index + 1:02d}",
            "phase_type": phase_type,
            "sequence": parse_sequence(item.get("sequence"), f"phases[{index}].sequence", default=index),
            "description": item.get("description") or "",
            "default_budget_percentage": pct,
            "default_work_items": list(item.get("default_work_items") or []),
            "default_milestones": list(item.get("default_milestones") or []),
        })

    total_pct = sum(p["default_budget_percentage"] for p in phases)
    if total_pct > 100:
        raise ValidationError(
            f"Phase budget percentages add up to {total_pct:g}%, which is more than 100%",
        )
    return phases


def _normalize_allocation(raw) -> dict:
    if raw is None:
        return dict(DEFAULT_BUDGET_ALLOCATION)
    if not isinstance(raw, dict):
        raise ValidationError("default_budget_allocation must be an object")
    allocation = {}
    for category in BUDGET_CATEGORIES:
        value = raw.get(category, DEFAULT_BUDGET_ALLOCATION[category])
        allocation[category] = parse_number(
            value, f"default_budget_allocation.{category}", minimum=0,
        ) or 0.0
    return allocation


def list_templates(*, template_type: str | None = None, search: str | None = None):
    query = PhaseTemplate.query_active()
    if template_type:
        query = query.filter(PhaseTemplate.template_type == template_type)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(
            PhaseTemplate.template_name.ilike(like),
            PhaseTemplate.description.ilike(like),
        ))
    return query.order_by(PhaseTemplate.usage_count.desc(), PhaseTemplate.template_name)


def get_template(template_id: int) -> PhaseTemplate:
    return get_active(PhaseTemplate, template_id, "Phase template")


def create_template(data: dict, *, actor: str | None = None) -> PhaseTemplate:
    name = clean_str(data.get("template_name"), 200)
    if not name:
        raise ValidationError("template_name is required", details={"template_name": "required"})
    template_type = data.get("template_type")
    if template_type not in TEMPLATE_TYPES:
        raise ValidationError(
            f"template_type must be one of: {', '.join(sorted(TEMPLATE_TYPES))}",
            details={"template_type": template_type},
        )

    template = PhaseTemplate(
        template_name=name,
        template_type=template_type,
        description=data.get("description"),
        phases=_normalize_phases(data.get("phases")),
        default_budget_allocation=_normalize_allocation(data.get("default_budget_allocation")),
        created_by=actor,
    )
    db.session.add(template)
    db.session.flush()
    write_audit(entity_type="phase_template", entity_id=template.id, action="create")
    db.session.commit()
    logger.info("Phase template created: %s (%d phases)", name, len(template.phases))
    return template


def update_template(template_id: int, data: dict) -> PhaseTemplate:
    template = get_template(template_id)
    if "template_name" in data:
        name = clean_str(data.get("template_name"), 200)
        if not name:
            raise ValidationError("template_name cannot be empty")
        template.template_name = name
    if "template_type" in data:
        if data["template_type"] not in TEMPLATE_TYPES:
            raise ValidationError(
                f"template_type must be one of: {', '.join(sorted(TEMPLATE_TYPES))}",
            )
        template.template_type = data["template_type"]
    if "description" in data:
        template.description = data.get("description")
    if "phases" in data:
        template.phases = _normalize_phases(data.get("phases"))
    if "default_budget_allocation" in data:
        template.default_budget_allocation = _normalize_allocation(
            data.get("default_budget_allocation"),
        )
    write_audit(entity_type="phase_template", entity_id=template.id, action="update")
    db.session.commit()
    return template


def delete_template(template_id: int) -> PhaseTemplate:
    template = get_template(template_id)
    template.soft_delete()
    write_audit(entity_type="phase_template", entity_id=template.id, action="delete")
    db.session.commit()
    return template


def apply_template(template_id: int, project_id) -> dict:
    """Create the template's phases on a project.

    Phases whose ``phase_code`` already exists on the project are skipped.

    Returns:
        {"phases": [Phase, ...], "phases_count": int, "skipped": [code, ...]}
    """
    template = get_template(template_id)
    if project_id in (None, ""):
        raise ValidationError("project_id is required", details={"project_id": "required"})
    project = get_project(project_id)

    existing_codes = {
        p.phase_code for p in Phase.query_active().filter_by(project_id=project.id)
    }
    allocation = template.default_budget_allocation or DEFAULT_BUDGET_ALLOCATION

    created, skipped = [], []
    for template_phase in sorted(template.phases or [], key=lambda p: p.get("sequence", 0)):
        if template_phase["phase_code"] in existing_codes:
            skipped.append(template_phase["phase_code"])
            continue
        phase = Phase(
            project_id=project.id,
            phase_name=template_phase["phase_name"],
            phase_code=template_phase["phase_code"],
            phase_type=template_phase.get("phase_type") or "construction",
            sequence=template_phase.get("sequence", 0),
            description=template_phase.get("description"),
            budget_allocation=phase_budget_from_percentage(
                project, template_phase.get("default_budget_percentage", 0), allocation,
            ),
            applied_template_id=template.id,
        )
        db.session.add(phase)
        created.append(phase)

    template.usage_count = (template.usage_count or 0) + 1
    template.last_used_at = utcnow()
    db.session.flush()
    write_audit(
        entity_type="phase_template", entity_id=template.id, action="phase_template.apply",
        project_id=project.id,
        diff={"phases_created": len(created), "skipped": skipped},
    )
    db.session.commit()
    logger.info(
        "Applied phase template %s: %d phases created, %d skipped",
        template.id, len(created), len(skipped), extra={"project_id": project.id},
    )
    return {"phases": created, "phases_count": len(created), "skipped": skipped}


def seed_default_templates() -> int:
    """Insert the standard residential template if no template of that name exists."""
    name = "Standard Residential Build"
    if PhaseTemplate.query_active().filter_by(template_name=name).first():
        return 0
    template = PhaseTemplate(
        template_name=name,
        template_type="residential",
        description="Four-phase residential construction sequence",
        phases=[
            {
                "phase_name": p["phase_name"],
                "phase_code": p["phase_code"],
                "phase_type": p["phase_type"],
                "sequence": p["sequence"],
                "description": p["description"],
                "default_budget_percentage": p["budget_percentage"],
                "default_work_items": [],
                "default_milestones": [],
            }
            for p in DEFAULT_PHASES
        ],
        default_budget_allocation=dict(DEFAULT_BUDGET_ALLOCATION),
        created_by="system",
    )
    db.session.add(template)
    return 1
