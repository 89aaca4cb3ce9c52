"""
Purchase order domain model.

Supplier communication flow:
    order_sent ─┬─ accept ──▶ order_accepted ─▶ ready_for_delivery ─▶ delivered
                ├─ reject ──▶ order_rejected ─(retry)─▶ retry_sent
                └─ modify ──▶ order_modified ─(approve/reject modification)─▶ ...

Suppliers respond with a one-time response token instead of an account login.
"""

from buildtrack.models import db
from buildtrack.models.soft_delete import SoftDeleteMixin, TimestampMixin, iso

PO_STATUSES = {
    "order_sent", "order_accepted", "order_rejected", "order_modified",
    "retry_sent", "ready_for_delivery", "delivered", "cancelled",
}

FINANCIAL_STATUSES = {"not_committed", "committed", "fulfilled"}

# States in which a supplier may answer the order.
RESPONDABLE_STATUSES = {"order_sent", "order_modified", "retry_sent"}

# States in which the order value counts as committed project spend.
COMMITTED_STATUSES = ("order_accepted", "ready_for_delivery")

EDITABLE_STATUSES = {"order_sent", "order_modified"}

SUPPLIER_ACTIONS = {"accept", "reject", "modify"}


class PurchaseOrder(SoftDeleteMixin, TimestampMixin, db.Model):
    """Order sent to a supplier for one material line."""

    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("idx_po_project_status", "project_id", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_number = db.Column(db.String(30), nullable=False, unique=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="RESTRICT"), nullable=False,
    )
    supplier_name = db.Column(db.String(200), nullable=False)
    supplier_email = db.Column(db.String(255), nullable=True, index=True)
    supplier_phone = db.Column(db.String(50), nullable=True)

    material_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit = db.Column(db.String(30), nullable=False, default="piece")
    quantity_ordered = db.Column(db.Float, nullable=False)
    unit_cost = db.Column(db.Float, nullable=False)
    total_cost = db.Column(db.Float, nullable=False)
    delivery_date = db.Column(db.Date, nullable=False)
    terms = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(30), nullable=False, default="order_sent", index=True)
    financial_status = db.Column(db.String(20), nullable=False, default="not_committed")
    committed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # One-time supplier response token
    response_token = db.Column(db.String(64), nullable=True, unique=True)
    response_token_expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    response_token_used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Supplier response
    supplier_response = db.Column(db.String(20), nullable=True, comment="accept | reject | modify")
    supplier_response_date = db.Column(db.DateTime(timezone=True), nullable=True)
    supplier_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.String(30), nullable=True)
    rejection_subcategory = db.Column(db.String(100), nullable=True)
    is_retryable = db.Column(db.Boolean, nullable=True)
    retry_recommendation = db.Column(db.Text, nullable=True)
    needs_reassignment = db.Column(db.Boolean, nullable=False, default=False)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    last_retry_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Supplier modifications
    supplier_modifications = db.Column(db.JSON, nullable=True)
    modification_approved = db.Column(db.Boolean, nullable=True)
    modification_decided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    modification_decided_by = db.Column(db.String(150), nullable=True)
    modification_notes = db.Column(db.Text, nullable=True)

    # Delivery
    delivery_note_file_url = db.Column(db.String(500), nullable=True)
    actual_quantity_delivered = db.Column(db.Float, nullable=True)
    actual_unit_cost = db.Column(db.Float, nullable=True)
    delivery_confirmed_by = db.Column(db.String(150), nullable=True)
    delivery_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivery_notes = db.Column(db.Text, nullable=True)
    linked_material_id = db.Column(db.Integer, nullable=True)

    communications = db.Column(
        db.JSON, nullable=False, default=list,
        comment="append-only [{type, at, by, summary}]",
    )
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self, include_token=False):
        d = {
            "id": self.id,
            "purchase_order_number": self.purchase_order_number,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "supplier_name": self.supplier_name,
            "supplier_email": self.supplier_email,
            "supplier_phone": self.supplier_phone,
            "material_name": self.material_name,
            "description": self.description,
            "unit": self.unit,
            "quantity_ordered": self.quantity_ordered,
            "unit_cost": self.unit_cost,
            "total_cost": self.total_cost,
            "delivery_date": iso(self.delivery_date),
            "terms": self.terms,
            "notes": self.notes,
            "status": self.status,
            "financial_status": self.financial_status,
            "committed_at": iso(self.committed_at),
            "response_token_expires_at": iso(self.response_token_expires_at),
            "supplier_response": self.supplier_response,
            "supplier_response_date": iso(self.supplier_response_date),
            "supplier_notes": self.supplier_notes,
            "rejection_reason": self.rejection_reason,
            "rejection_subcategory": self.rejection_subcategory,
            "is_retryable": self.is_retryable,
            "retry_recommendation": self.retry_recommendation,
            "needs_reassignment": self.needs_reassignment,
            "retry_count": self.retry_count,
            "supplier_modifications": self.supplier_modifications,
            "modification_approved": self.modification_approved,
            "modification_decided_at": iso(self.modification_decided_at),
            "modification_notes": self.modification_notes,
            "delivery_note_file_url": self.delivery_note_file_url,
            "actual_quantity_delivered": self.actual_quantity_delivered,
            "actual_unit_cost": self.actual_unit_cost,
            "delivery_confirmed_by": self.delivery_confirmed_by,
            "delivery_confirmed_at": iso(self.delivery_confirmed_at),
            "linked_material_id": self.linked_material_id,
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_token:
            d["response_token"] = self.response_token
        return d

    def __repr__(self):
        return f"<PurchaseOrder {self.purchase_order_number} ({self.status})>"
