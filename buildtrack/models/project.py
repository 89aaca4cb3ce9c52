"""Project and Phase domain models.

A Project is a single construction site; Phases split its work and budget
into sequenced stages (substructure, superstructure, finishing, ...).
"""

from buildtrack.models import db
from buildtrack.models.soft_delete import SoftDeleteMixin, TimestampMixin, iso

# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = {"planning", "active", "paused", "completed", "archived"}

PHASE_STATUSES = {"not_started", "in_progress", "completed", "on_hold", "cancelled"}

PHASE_TYPES = {"pre_construction", "construction", "finishing", "final"}

BUDGET_CATEGORIES = ("materials", "labour", "equipment", "subcontractors", "contingency")

# Auto-created for every new project unless the caller opts out.
DEFAULT_PHASES = [
    {
        "phase_name": "Basement/Substructure",
        "phase_code": "PHASE-01",
        "phase_type": "construction",
        "sequence": 1,
        "description": "Excavation, foundation and basement works",
        "budget_percentage": 15,
    },
    {
        "phase_name": "Superstructure",
        "phase_code": "PHASE-02",
        "phase_type": "construction",
        "sequence": 2,
        "description": "Columns, slabs, walls and roof structure",
        "budget_percentage": 45,
    },
    {
        "phase_name": "Finishing Works",
        "phase_code": "PHASE-03",
        "phase_type": "finishing",
        "sequence": 3,
        "description": "Plastering, tiling, painting and joinery",
        "budget_percentage": 30,
    },
    {
        "phase_name": "Final Systems",
        "phase_code": "PHASE-04",
        "phase_type": "final",
        "sequence": 4,
        "description": "Electrical, plumbing and mechanical commissioning",
        "budget_percentage": 10,
    },
]


def empty_budget_allocation() -> dict:
    allocation = {"total": 0.0}
    allocation.update({k: 0.0 for k in BUDGET_CATEGORIES})
    return allocation


class Project(SoftDeleteMixin, TimestampMixin, db.Model):
    """A construction project: the scope for phases, materials and finances."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    project_code = db.Column(db.String(50), nullable=False, unique=True)
    project_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    location = db.Column(db.String(255), nullable=True)
    client = db.Column(db.String(200), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="planning",
        comment="planning | active | paused | completed | archived",
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    budget = db.Column(
        db.JSON, nullable=False, default=dict,
        comment="{total, materials, labour, contingency}",
    )
    created_by = db.Column(db.String(150), nullable=True)

    phases = db.relationship(
        "Phase", backref="project", lazy="dynamic", order_by="Phase.sequence",
    )

    @property
    def budget_total(self) -> float:
        return float((self.budget or {}).get("total") or 0)

    def to_dict(self, include_phases=False):
        d = {
            "id": self.id,
            "project_code": self.project_code,
            "project_name": self.project_name,
            "description": self.description,
            "location": self.location,
            "client": self.client,
            "status": self.status,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "budget": self.budget or {},
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "deleted_at": iso(self.deleted_at),
        }
        if include_phases:
            d["phases"] = [
                p.to_dict() for p in self.phases.filter(Phase.deleted_at.is_(None))
            ]
        return d

    def summary(self):
        return {
            "id": self.id,
            "project_code": self.project_code,
            "project_name": self.project_name,
        }

    def __repr__(self):
        return f"<Project {self.id}: {self.project_code}>"


class Phase(SoftDeleteMixin, TimestampMixin, db.Model):
    """A sequenced stage of a project with its own budget allocation."""

    __tablename__ = "phases"
    __table_args__ = (
        db.Index("idx_phase_project_sequence", "project_id", "sequence"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_name = db.Column(db.String(200), nullable=False)
    phase_code = db.Column(db.String(30), nullable=False)
    phase_type = db.Column(db.String(30), nullable=False, default="construction")
    sequence = db.Column(db.Integer, nullable=False, default=0)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="not_started",
        comment="not_started | in_progress | completed | on_hold | cancelled",
    )
    completion_percentage = db.Column(db.Float, nullable=False, default=0)
    start_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)
    budget_allocation = db.Column(db.JSON, nullable=False, default=empty_budget_allocation)
    depends_on = db.Column(db.JSON, nullable=False, default=list, comment="[phase_id, ...]")
    applied_template_id = db.Column(
        db.Integer, db.ForeignKey("phase_templates.id", ondelete="SET NULL"), nullable=True,
    )

    @property
    def budget_total(self) -> float:
        return float((self.budget_allocation or {}).get("total") or 0)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "phase_name": self.phase_name,
            "phase_code": self.phase_code,
            "phase_type": self.phase_type,
            "sequence": self.sequence,
            "description": self.description,
            "status": self.status,
            "completion_percentage": self.completion_percentage,
            "start_date": iso(self.start_date),
            "planned_end_date": iso(self.planned_end_date),
            "actual_end_date": iso(self.actual_end_date),
            "budget_allocation": self.budget_allocation or empty_budget_allocation(),
            "depends_on": self.depends_on or [],
            "applied_template_id": self.applied_template_id,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def summary(self):
        return {"id": self.id, "phase_name": self.phase_name, "phase_code": self.phase_code}

    def __repr__(self):
        return f"<Phase {self.id}: {self.phase_code}>"
