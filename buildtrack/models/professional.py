"""
Professional services domain model.

Models:
    - ProfessionalLibrary: reusable architect/engineer records.
    - ProfessionalService: assignment of a library entry to a project.
    - ProfessionalActivity: site visit, inspection, revision, ... logged
      against an assignment.
    - ProfessionalFee: fee raised from an approved activity.
"""

from buildtrack.models import db
from buildtrack.models.soft_delete import SoftDeleteMixin, TimestampMixin, iso

# ── Constants ────────────────────────────────────────────────────────────────

PROFESSIONAL_TYPES = {"architect", "engineer"}

CONTRACT_TYPES = {
    "full_service", "design_only", "supervision_only", "inspection_only",
    "hourly", "per_visit", "lump_sum",
}

PAYMENT_SCHEDULES = {"lump_sum", "milestone", "monthly", "per_visit", "hourly"}

VISIT_FREQUENCIES = {"weekly", "biweekly", "monthly", "as_needed", "milestone_based"}

SERVICE_STATUSES = {"active", "completed", "terminated", "on_hold"}

ACTIVITY_TYPES = {
    "site_visit", "design_revision", "inspection", "client_meeting",
    "quality_check", "document_upload", "approval", "other",
}

VISIT_PURPOSES = {
    "routine_inspection", "milestone_review", "issue_resolution",
    "client_meeting", "quality_check", "other",
}

INSPECTION_TYPES = {
    "foundation", "structural", "electrical", "plumbing", "finishing", "final", "other",
}

COMPLIANCE_STATUSES = {"compliant", "non_compliant", "partial", "pending"}

ISSUE_SEVERITIES = {"critical", "major", "minor"}

MATERIAL_TEST_TYPES = {"strength", "quality", "specification", "compliance"}

MATERIAL_TEST_RESULTS = {"pass", "fail", "conditional"}

ACTIVITY_STATUSES = {"draft", "pending_approval", "approved", "rejected"}

ACTIVITY_TRANSITIONS = {
    "submit": {"from": ["draft", "rejected"], "to": "pending_approval"},
    "approve": {"from": ["draft", "pending_approval"], "to": "approved"},
    "reject": {"from": ["draft", "pending_approval"], "to": "rejected"},
}

FEE_STATUSES = {"PENDING", "APPROVED", "PAID", "REJECTED", "ARCHIVED"}

FEE_TRANSITIONS = {
    "approve": {"from": ["PENDING"], "to": "APPROVED"},
    "reject": {"from": ["PENDING"], "to": "REJECTED"},
    "pay": {"from": ["APPROVED"], "to": "PAID"},
    "archive": {"from": ["PENDING", "REJECTED"], "to": "ARCHIVED"},
}

# Fee states that lock the originating activity against deletion.
LOCKED_FEE_STATUSES = {"APPROVED", "PAID"}


class ProfessionalLibrary(SoftDeleteMixin, TimestampMixin, db.Model):
    """A professional that can be assigned to many projects."""

    __tablename__ = "professional_library"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    type = db.Column(db.String(20), nullable=False, comment="architect | engineer")
    company_name = db.Column(db.String(200), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(50), nullable=True)
    specialization = db.Column(db.String(200), nullable=True)
    registration_number = db.Column(db.String(100), nullable=True)
    default_contract_type = db.Column(db.String(30), nullable=True)
    default_hourly_rate = db.Column(db.Float, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "company_name": self.company_name,
            "email": self.email,
            "phone": self.phone,
            "specialization": self.specialization,
            "registration_number": self.registration_number,
            "default_contract_type": self.default_contract_type,
            "default_hourly_rate": self.default_hourly_rate,
            "is_active": self.is_active,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "company_name": self.company_name,
        }


class ProfessionalService(SoftDeleteMixin, TimestampMixin, db.Model):
    """Assignment of a library professional to a project (and optional phase)."""

    __tablename__ = "professional_services"

    id = db.Column(db.Integer, primary_key=True)
    library_id = db.Column(
        db.Integer, db.ForeignKey("professional_library.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("phases.id", ondelete="SET NULL"), nullable=True,
    )
    professional_code = db.Column(db.String(40), nullable=False, unique=True)
    type = db.Column(db.String(20), nullable=False)
    service_category = db.Column(db.String(100), nullable=True)
    scope_of_work = db.Column(db.Text, nullable=True)

    contract_type = db.Column(db.String(30), nullable=False, default="full_service")
    contract_value = db.Column(db.Float, nullable=False, default=0)
    payment_schedule = db.Column(db.String(30), nullable=False, default="lump_sum")
    visit_frequency = db.Column(db.String(30), nullable=True)
    contract_start_date = db.Column(db.Date, nullable=False)
    contract_end_date = db.Column(db.Date, nullable=True)
    contract_document_url = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")

    total_fees = db.Column(db.Float, nullable=False, default=0)
    fees_paid = db.Column(db.Float, nullable=False, default=0)
    fees_pending = db.Column(db.Float, nullable=False, default=0)

    # Activity counters maintained by activity create/delete.
    total_activities = db.Column(db.Integer, nullable=False, default=0)
    total_site_visits = db.Column(db.Integer, nullable=False, default=0)
    total_inspections = db.Column(db.Integer, nullable=False, default=0)
    revisions_made = db.Column(db.Integer, nullable=False, default=0)
    issues_identified = db.Column(db.Integer, nullable=False, default=0)
    documents_uploaded = db.Column(db.Integer, nullable=False, default=0)

    library = db.relationship("ProfessionalLibrary")

    @property
    def remaining_commitment(self) -> float:
        return max(0.0, (self.contract_value or 0) - (self.total_fees or 0))

    def to_dict(self):
        return {
            "id": self.id,
            "library_id": self.library_id,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "professional_code": self.professional_code,
            "type": self.type,
            "service_category": self.service_category,
            "scope_of_work": self.scope_of_work,
            "contract_type": self.contract_type,
            "contract_value": self.contract_value,
            "payment_schedule": self.payment_schedule,
            "visit_frequency": self.visit_frequency,
            "contract_start_date": iso(self.contract_start_date),
            "contract_end_date": iso(self.contract_end_date),
            "contract_document_url": self.contract_document_url,
            "status": self.status,
            "total_fees": self.total_fees,
            "fees_paid": self.fees_paid,
            "fees_pending": self.fees_pending,
            "total_activities": self.total_activities,
            "total_site_visits": self.total_site_visits,
            "total_inspections": self.total_inspections,
            "revisions_made": self.revisions_made,
            "issues_identified": self.issues_identified,
            "documents_uploaded": self.documents_uploaded,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def summary(self):
        return {
            "id": self.id,
            "professional_code": self.professional_code,
            "type": self.type,
            "status": self.status,
        }


class ProfessionalActivity(SoftDeleteMixin, TimestampMixin, db.Model):
    """One logged activity by an assigned professional."""

    __tablename__ = "professional_activities"

    id = db.Column(db.Integer, primary_key=True)
    professional_service_id = db.Column(
        db.Integer, db.ForeignKey("professional_services.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    library_id = db.Column(db.Integer, db.ForeignKey("professional_library.id"), nullable=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_id = db.Column(db.Integer, db.ForeignKey("phases.id", ondelete="SET NULL"), nullable=True)
    fee_id = db.Column(
        db.Integer, db.ForeignKey("professional_fees.id", ondelete="SET NULL"), nullable=True,
    )

    activity_type = db.Column(db.String(30), nullable=False)
    activity_date = db.Column(db.Date, nullable=False)
    visit_purpose = db.Column(db.String(30), nullable=True)
    visit_duration = db.Column(db.Float, nullable=True, comment="hours")
    inspection_type = db.Column(db.String(30), nullable=True)
    compliance_status = db.Column(db.String(20), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    observations = db.Column(db.Text, nullable=True)
    recommendations = db.Column(db.Text, nullable=True)

    issues_found = db.Column(db.JSON, nullable=False, default=list)
    material_tests = db.Column(db.JSON, nullable=False, default=list)
    documents = db.Column(db.JSON, nullable=False, default=list)

    fees_charged = db.Column(db.Float, nullable=False, default=0)
    expenses_incurred = db.Column(db.Float, nullable=False, default=0)

    status = db.Column(db.String(20), nullable=False, default="draft")
    approval_chain = db.Column(db.JSON, nullable=False, default=list)
    approval_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.String(150), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "professional_service_id": self.professional_service_id,
            "library_id": self.library_id,
            "project_id": self.project_id,
            "phase_id": self.phase_id,
            "fee_id": self.fee_id,
            "activity_type": self.activity_type,
            "activity_date": iso(self.activity_date),
            "visit_purpose": self.visit_purpose,
            "visit_duration": self.visit_duration,
            "inspection_type": self.inspection_type,
            "compliance_status": self.compliance_status,
            "notes": self.notes,
            "observations": self.observations,
            "recommendations": self.recommendations,
            "issues_found": self.issues_found or [],
            "material_tests": self.material_tests or [],
            "documents": self.documents or [],
            "fees_charged": self.fees_charged,
            "expenses_incurred": self.expenses_incurred,
            "status": self.status,
            "approval_chain": self.approval_chain or [],
            "approval_notes": self.approval_notes,
            "rejection_reason": self.rejection_reason,
            "approved_by": self.approved_by,
            "approved_at": iso(self.approved_at),
            "created_by": self.created_by,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class ProfessionalFee(SoftDeleteMixin, TimestampMixin, db.Model):
    """Fee owed to a professional, raised when an activity is approved."""

    __tablename__ = "professional_fees"

    id = db.Column(db.Integer, primary_key=True)
    professional_service_id = db.Column(
        db.Integer, db.ForeignKey("professional_services.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    amount = db.Column(db.Float, nullable=False)
    description = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="PENDING")
    approval_chain = db.Column(db.JSON, nullable=False, default=list)
    rejection_reason = db.Column(db.String(500), nullable=True)
    approved_by = db.Column(db.String(150), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_by = db.Column(db.String(150), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_reference = db.Column(db.String(100), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "professional_service_id": self.professional_service_id,
            "project_id": self.project_id,
            "amount": self.amount,
            "description": self.description,
            "status": self.status,
            "approval_chain": self.approval_chain or [],
            "rejection_reason": self.rejection_reason,
            "approved_by": self.approved_by,
            "approved_at": iso(self.approved_at),
            "paid_by": self.paid_by,
            "paid_at": iso(self.paid_at),
            "payment_reference": self.payment_reference,
            "created_at": iso(self.created_at),
        }
