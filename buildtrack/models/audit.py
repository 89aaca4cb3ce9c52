"""
Audit trail.

Every mutating service call appends one ``AuditLog`` row in the same
transaction as the change itself. Rows are never updated or deleted; the
audit blueprint only reads them.

Action names:
    create / update / delete              plain CRUD
    <entity>.<verb>                       workflow steps, e.g. material.approve,
                                          purchase_order.respond, expense.pay
"""

import json

from buildtrack.models import db
from buildtrack.models.soft_delete import iso, utcnow

AUDIT_ENTITY_TYPES = frozenset({
    "project", "phase", "phase_template", "material",
    "professional_library", "professional_service", "professional_activity", "professional_fee",
    "purchase_order", "investor", "expense", "initial_expense",
})


class AuditLog(db.Model):
    """One row per recorded action, with the changed fields in ``diff``."""

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_project_ts", "project_id", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, nullable=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)
    actor = db.Column(db.String(150), nullable=False, default="system")
    actor_role = db.Column(db.String(30), nullable=True)
    diff = db.Column(db.JSON, nullable=False, default=dict)
    timestamp = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_role": self.actor_role,
            "diff": self.diff or {},
            "timestamp": iso(self.timestamp),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} {self.entity_type}/{self.entity_id}>"


def _jsonable(diff: dict | None) -> dict:
    # (old, new) tuples become lists; dates and decimals become strings
    return json.loads(json.dumps(diff or {}, default=str))


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str | None = None,
    actor_role: str | None = None,
    project_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Add an audit row and flush it; the caller owns the commit.

    Inside a request the actor and role default to the caller resolved by
    ``buildtrack.auth``. Outside one (CLI, tests) the actor is ``system``.
    """
    if entity_type not in AUDIT_ENTITY_TYPES:
        raise ValueError(f"Unknown audit entity type: {entity_type}")

    if actor is None or actor_role is None:
        from flask import g, has_request_context
        if has_request_context():
            actor = actor or getattr(g, "current_user", None)
            actor_role = actor_role or getattr(g, "current_user_role", None)

    log = AuditLog(
        project_id=project_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor or "system",
        actor_role=actor_role,
        diff=_jsonable(diff),
    )
    db.session.add(log)
    db.session.flush()
    return log
