"""
Sync models: the per-project platform connection and the push audit trail.

PlatformConnection stores the access token Fernet-encrypted; it is decrypted
only transiently when the gateway needs it and never serialised.

SyncAuditEntry is append-only: one row per push invocation, whatever the
outcome, so partial failures can be diagnosed without re-running the push.
"""

import uuid
from datetime import datetime, timezone

from funnel_vault.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class PlatformConnection(db.Model):
    """External location a project pushes to."""

    __tablename__ = "platform_connections"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    location_id = db.Column(db.String(100), nullable=False)
    base_url = db.Column(db.String(500), nullable=True, comment="Overrides PLATFORM_API_BASE_URL")
    encrypted_token = db.Column(db.Text, nullable=False, comment="Fernet-encrypted access token")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        """Serialise without the token."""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "location_id": self.location_id,
            "base_url": self.base_url,
            "is_active": self.is_active,
            "has_token": bool(self.encrypted_token),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SyncAuditEntry(db.Model):
    """One push attempt of one section."""

    __tablename__ = "sync_audit_entries"
    __table_args__ = (
        db.Index("ix_sync_audit_project_created", "project_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(db.String(36), nullable=False, index=True)
    section_id = db.Column(db.String(50), nullable=False)
    pushed_count = db.Column(db.Integer, nullable=False, default=0)
    updated_count = db.Column(db.Integer, nullable=False, default=0)
    skipped_count = db.Column(db.Integer, nullable=False, default=0)
    failed_count = db.Column(db.Integer, nullable=False, default=0)
    success = db.Column(db.Boolean, nullable=False, default=False)
    cancelled = db.Column(db.Boolean, nullable=False, default=False)
    error = db.Column(db.Text, nullable=True)
    errors = db.Column(db.JSON, nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    triggered_by = db.Column(db.String(30), nullable=False, default="manual")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "section_id": self.section_id,
            "pushed_count": self.pushed_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "success": self.success,
            "cancelled": self.cancelled,
            "error": self.error,
            "errors": self.errors or [],
            "duration_ms": self.duration_ms,
            "triggered_by": self.triggered_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
