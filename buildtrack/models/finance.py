"""
Finance domain model.

Models:
    - Investor: capital provider with per-project allocations.
    - Expense: ad-hoc project spending (transport, permits, fuel, ...).
    - InitialExpense: pre-construction spending (land, approvals, design).
    - ProjectFinance: cached snapshot of the last finance recalculation.
"""

from buildtrack.models import db
from buildtrack.models.soft_delete import SoftDeleteMixin, TimestampMixin, iso

INVESTMENT_TYPES = {"LOAN", "EQUITY", "MIXED"}

INVESTOR_STATUSES = {"ACTIVE", "INACTIVE"}

EXPENSE_STATUSES = {"PENDING", "APPROVED", "REJECTED", "PAID"}

# Expense states that count as spent money.
EXPENSE_SPENT_STATUSES = ("APPROVED", "PAID")

EXPENSE_CATEGORIES = {
    "transport", "equipment_rental", "permits", "utilities", "fuel",
    "security", "site_office", "professional_fees", "other",
}

INITIAL_EXPENSE_CATEGORIES = {
    "land", "approvals", "legal", "design", "survey", "site_preparation", "other",
}


class Investor(SoftDeleteMixin, TimestampMixin, db.Model):
    """
    Capital provider.

    ``project_allocations`` is a list of ``{"project_id": int, "amount": float}``.
    Portfolio totals use ``total_invested``; project totals use the allocation.
    """

    __tablename__ = "investors"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    investment_type = db.Column(db.String(10), nullable=False, default="EQUITY")
    total_invested = db.Column(db.Float, nullable=False, default=0)
    status = db.Column(db.String(10), nullable=False, default="ACTIVE")
    project_allocations = db.Column(db.JSON, nullable=False, default=list)
    user_name = db.Column(
        db.String(150), nullable=True, index=True,
        comment="login name of the investor-role user this record belongs to",
    )

    def allocation_for(self, project_id: int) -> float:
        for entry in self.project_allocations or []:
            if int(entry.get("project_id") or 0) == int(project_id):
                return float(entry.get("amount") or 0)
        return 0.0

    def allocated_project_ids(self) -> set[int]:
        return {
            int(e["project_id"]) for e in (self.project_allocations or []) if e.get("project_id")
        }

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "investment_type": self.investment_type,
            "total_invested": self.total_invested,
            "status": self.status,
            "project_allocations": self.project_allocations or [],
            "user_name": self.user_name,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class Expense(SoftDeleteMixin, TimestampMixin, db.Model):
    """Ad-hoc project expense with a PENDING → APPROVED/REJECTED → PAID lifecycle."""

    __tablename__ = "expenses"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_id = db.Column(db.Integer, db.ForeignKey("phases.id", ondelete="SET NULL"), nullable=True)
    amount = db.Column(db.Float, nullable=False)
    category = db.Column(db.String(50), nullable=False, default="other")
    description = db.Column(db.String(500), nullable=True)
    vendor = db.Column(db.String(200), nullable=True)
    expense_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(10), nullable=False, default="PENDING")
    approval_chain = db.Column(db.JSON, nullable=False, default=list)
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "amount": self.amount,
            "category": self.category,
            "description": self.description,
            "vendor": self.vendor,
            "expense_date": iso(self.expense_date),
            "status": self.status,
            "approval_chain": self.approval_chain or [],
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }


class InitialExpense(SoftDeleteMixin, TimestampMixin, db.Model):
    """Pre-construction spending recorded before phases start."""

    __tablename__ = "initial_expenses"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    item_name = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(50), nullable=False, default="other")
    amount = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(10), nullable=False, default="PENDING")
    date_paid = db.Column(db.Date, nullable=True)
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "item_name": self.item_name,
            "category": self.category,
            "amount": self.amount,
            "status": self.status,
            "date_paid": iso(self.date_paid),
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
        }


class ProjectFinance(TimestampMixin, db.Model):
    """One row per project, upserted on every finance recalculation."""

    __tablename__ = "project_finances"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    total_invested = db.Column(db.Float, nullable=False, default=0)
    total_loans = db.Column(db.Float, nullable=False, default=0)
    total_equity = db.Column(db.Float, nullable=False, default=0)
    total_used = db.Column(db.Float, nullable=False, default=0)
    committed_cost = db.Column(db.Float, nullable=False, default=0)
    estimated_cost = db.Column(db.Float, nullable=False, default=0)
    capital_balance = db.Column(db.Float, nullable=False, default=0)
    available_capital = db.Column(db.Float, nullable=False, default=0)
    loan_balance = db.Column(db.Float, nullable=False, default=0)
    equity_balance = db.Column(db.Float, nullable=False, default=0)
    last_calculated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "project_id": self.project_id,
            "total_invested": self.total_invested,
            "total_loans": self.total_loans,
            "total_equity": self.total_equity,
            "total_used": self.total_used,
            "committed_cost": self.committed_cost,
            "estimated_cost": self.estimated_cost,
            "capital_balance": self.capital_balance,
            "available_capital": self.available_capital,
            "loan_balance": self.loan_balance,
            "equity_balance": self.equity_balance,
            "last_calculated_at": iso(self.last_calculated_at),
        }
