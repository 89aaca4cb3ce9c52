"""Reusable phase templates that can be applied to a project."""

from buildtrack.models import db
from buildtrack.models.soft_delete import SoftDeleteMixin, TimestampMixin, iso

TEMPLATE_TYPES = {"residential", "commercial", "infrastructure", "custom"}

DEFAULT_BUDGET_ALLOCATION = {
    "materials": 40,
    "labour": 30,
    "equipment": 10,
    "subcontractors": 15,
    "contingency": 5,
}


class PhaseTemplate(SoftDeleteMixin, TimestampMixin, db.Model):
    """
    Named list of phase definitions.

    ``phases`` holds one dict per phase:
        {phase_name, phase_code, phase_type, sequence, description,
         default_budget_percentage, default_work_items, default_milestones}
    """

    __tablename__ = "phase_templates"

    id = db.Column(db.Integer, primary_key=True)
    template_name = db.Column(db.String(200), nullable=False)
    template_type = db.Column(
        db.String(30), nullable=False, default="custom",
        comment="residential | commercial | infrastructure | custom",
    )
    description = db.Column(db.Text, nullable=True)
    phases = db.Column(db.JSON, nullable=False, default=list)
    default_budget_allocation = db.Column(
        db.JSON, nullable=False, default=lambda: dict(DEFAULT_BUDGET_ALLOCATION),
    )
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "template_name": self.template_name,
            "template_type": self.template_type,
            "description": self.description,
            "phases": self.phases or [],
            "default_budget_allocation": self.default_budget_allocation or {},
            "usage_count": self.usage_count,
            "last_used_at": iso(self.last_used_at),
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<PhaseTemplate {self.id}: {self.template_name}>"
