"""
Status transition helpers shared by materials and professional activities.

Transition tables live next to their models, e.g.:

    MATERIAL_TRANSITIONS = {
        "approve": {"from": ["submitted", "pending_approval", "rejected"], "to": "approved"},
        ...
    }

Usage:
    from buildtrack.services.lifecycle import apply_transition, append_approval

    apply_transition(material, "reject", MATERIAL_TRANSITIONS, resource="Material")
    append_approval(material, status="rejected", notes=reason)
"""

from buildtrack.core.exceptions import TransitionError
from buildtrack.models.soft_delete import utcnow


def validate_transition(current_status: str, action: str, transitions: dict) -> dict:
    """
    Validate whether ``action`` is allowed from ``current_status``.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = transitions.get(action)
    if not rule:
        return {"valid": False, "from": current_status, "to": None,
                "reason": f"Unknown action: {action}"}

    if current_status not in rule["from"]:
        return {"valid": False, "from": current_status, "to": rule["to"],
                "reason": f"Cannot '{action}' from status '{current_status}'"}

    return {"valid": True, "from": current_status, "to": rule["to"], "reason": None}


def apply_transition(entity, action: str, transitions: dict, *, resource: str) -> str:
    """Move ``entity.status`` along ``transitions[action]`` or raise TransitionError.

    Returns:
        The previous status.
    """
    result = validate_transition(entity.status, action, transitions)
    if not result["valid"]:
        raise TransitionError(
            resource, action, entity.status, allowed=(transitions.get(action) or {}).get("from"),
        )
    previous = entity.status
    entity.status = result["to"]
    return previous


def append_approval(entity, *, status: str, approver: str | None, role: str | None = None,
                    notes: str | None = None) -> dict:
    """Append one decision to ``entity.approval_chain``.

    The list is reassigned (not mutated in place) so SQLAlchemy notices
    the JSON column changed.
    """
    entry = {
        "approver_name": approver or "system",
        "approver_role": role,
        "status": status,
        "notes": notes,
        "decided_at": utcnow().isoformat(),
    }
    entity.approval_chain = list(entity.approval_chain or []) + [entry]
    return entry
