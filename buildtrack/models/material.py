"""
Material domain model.

Models:
    - Material: a purchased/delivered/used item on a project.
    - Discrepancy: stored result of a quantity discrepancy check.

Lifecycle: draft → submitted → approved → received, with reject
from any pending state and resubmission from rejected.
"""

from buildtrack.models import db
from buildtrack.models.soft_delete import SoftDeleteMixin, TimestampMixin, iso

# ── Constants ────────────────────────────────────────────────────────────────

MATERIAL_STATUSES = {
    "draft", "submitted", "pending_approval", "approved",
    "rejected", "received", "archived",
}

# Statuses that count as spent money in finance aggregation.
MATERIAL_APPROVED_STATUSES = ("approved", "received")

# Statuses still waiting on a decision.
MATERIAL_PENDING_STATUSES = ("draft", "submitted", "pending_approval")

ENTRY_TYPES = {"retroactive_entry", "new_procurement"}

COST_STATUSES = {"actual", "estimated", "missing"}

MATERIAL_TRANSITIONS = {
    "submit": {"from": ["draft", "rejected"], "to": "submitted"},
    "approve": {"from": ["submitted", "pending_approval", "rejected"], "to": "approved"},
    "reject": {"from": ["draft", "submitted", "pending_approval"], "to": "rejected"},
    "receive": {"from": ["approved"], "to": "received"},
}

# Non-owner/pm roles may only edit materials in these states.
CLERK_EDITABLE_STATUSES = {"draft", "pending_approval", "rejected"}

SEVERITIES = ("NONE", "LOW", "MEDIUM", "HIGH", "CRITICAL")


class Material(SoftDeleteMixin, TimestampMixin, db.Model):
    """A material line: what was bought, what arrived, what was used."""

    __tablename__ = "materials"
    __table_args__ = (
        db.Index("idx_material_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    purchase_order_id = db.Column(
        db.Integer, db.ForeignKey("purchase_orders.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(100), nullable=True, index=True)
    unit = db.Column(db.String(30), nullable=False, default="piece")
    supplier_name = db.Column(db.String(200), nullable=False, default="Unknown")
    payment_method = db.Column(db.String(30), nullable=False, default="CASH")
    receipt_url = db.Column(db.String(500), nullable=True)

    entry_type = db.Column(
        db.String(30), nullable=False, default="retroactive_entry",
        comment="retroactive_entry | new_procurement",
    )
    status = db.Column(db.String(20), nullable=False, default="draft", index=True)

    quantity_purchased = db.Column(db.Float, nullable=False, default=0)
    quantity_delivered = db.Column(db.Float, nullable=False, default=0)
    quantity_used = db.Column(db.Float, nullable=False, default=0)
    quantity_remaining = db.Column(db.Float, nullable=False, default=0)
    wastage = db.Column(db.Float, nullable=False, default=0, comment="percentage 0..100")

    unit_cost = db.Column(db.Float, nullable=True)
    estimated_unit_cost = db.Column(db.Float, nullable=True)
    total_cost = db.Column(db.Float, nullable=False, default=0)
    cost_status = db.Column(
        db.String(20), nullable=False, default="actual",
        comment="actual | estimated | missing",
    )

    date_purchased = db.Column(db.Date, nullable=True)
    approval_chain = db.Column(db.JSON, nullable=False, default=list)
    submitted_by = db.Column(db.String(150), nullable=True)
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "purchase_order_id": self.purchase_order_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "unit": self.unit,
            "supplier_name": self.supplier_name,
            "payment_method": self.payment_method,
            "receipt_url": self.receipt_url,
            "entry_type": self.entry_type,
            "status": self.status,
            "quantity_purchased": self.quantity_purchased,
            "quantity_delivered": self.quantity_delivered,
            "quantity_used": self.quantity_used,
            "quantity_remaining": self.quantity_remaining,
            "wastage": self.wastage,
            "unit_cost": self.unit_cost,
            "estimated_unit_cost": self.estimated_unit_cost,
            "total_cost": self.total_cost,
            "cost_status": self.cost_status,
            "date_purchased": iso(self.date_purchased),
            "approval_chain": self.approval_chain or [],
            "submitted_by": self.submitted_by,
            "approved_by": self.approved_by,
            "approved_at": iso(self.approved_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "deleted_at": iso(self.deleted_at),
        }

    def __repr__(self):
        return f"<Material {self.id}: {self.name} ({self.status})>"


class Discrepancy(SoftDeleteMixin, TimestampMixin, db.Model):
    """Snapshot of a discrepancy check that raised at least one alert."""

    __tablename__ = "discrepancies"

    id = db.Column(db.Integer, primary_key=True)
    material_id = db.Column(
        db.Integer, db.ForeignKey("materials.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    severity = db.Column(db.String(10), nullable=False, comment="LOW | MEDIUM | HIGH | CRITICAL")
    alerts = db.Column(db.JSON, nullable=False, default=dict)
    metrics = db.Column(db.JSON, nullable=False, default=dict)
    discrepancy_cost = db.Column(db.Float, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="open", comment="open | resolved")

    def to_dict(self):
        return {
            "id": self.id,
            "material_id": self.material_id,
            "project_id": self.project_id,
            "severity": self.severity,
            "alerts": self.alerts or {},
            "metrics": self.metrics or {},
            "discrepancy_cost": self.discrepancy_cost,
            "status": self.status,
            "created_at": iso(self.created_at),
        }
