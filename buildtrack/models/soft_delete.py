"""
Column mixins shared by the BuildTrack models, plus time helpers.

Deleting a project, phase, material, order, assignment, activity, investor
or expense only stamps ``deleted_at``; reads go through ``query_active()``
and the archived material listing through ``query_deleted()``.
"""

from datetime import datetime, timezone

from buildtrack.models import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(value):
    """ISO string for a date/datetime column value, None stays None."""
    return value.isoformat() if value else None


class TimestampMixin:
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow,
    )


class SoftDeleteMixin:
    """``deleted_at`` marker with archive / restore helpers."""

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    def soft_delete(self) -> None:
        self.deleted_at = utcnow()

    def restore(self) -> None:
        self.deleted_at = None

    @classmethod
    def query_active(cls):
        return cls.query.filter(cls.deleted_at.is_(None))

    @classmethod
    def query_deleted(cls):
        return cls.query.filter(cls.deleted_at.is_not(None))
