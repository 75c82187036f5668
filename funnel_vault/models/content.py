"""
Content vault models: projects, granular fields and section documents.

Two representations of the same content are stored side by side:

  ContentField     one row per (project, section, field_id) and version.
                   Only the ``is_current`` row is live; edits supersede the
                   previous row instead of deleting it.
  SectionDocument  one current row per (project, section) holding the full
                   nested snapshot, its approval status and a version counter.

``funnel_vault.services.reconciler`` is the only writer that keeps the two in
step.  Status transitions on SectionDocument are owned by
``funnel_vault.services.approval_service``.
"""

import uuid
from datetime import datetime, timezone

from funnel_vault.models import db
from funnel_vault.models.types import JSONContent, JSONValue

__all__ = [
    "DOCUMENT_STATUSES",
    "FIELD_TYPES",
    "SECTION_TRANSITIONS",
    "ContentField",
    "Project",
    "SectionDocument",
]


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


DOCUMENT_STATUSES = ("generating", "generated", "approved")

FIELD_TYPES = ("text", "textarea", "array", "object")

# action → allowed source statuses / target status
SECTION_TRANSITIONS = {
    "approve": {"from": ["generated"], "to": "approved"},
    "reject": {"from": ["approved"], "to": "generated"},
    "regenerate": {"from": ["generated", "approved"], "to": "generating"},
    "complete_regeneration": {"from": ["generating"], "to": "generated"},
}


class Project(db.Model):
    """A business owner's funnel: the unit every section belongs to."""

    __tablename__ = "projects"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False, default="")
    owner_id = db.Column(db.String(100), nullable=True, index=True)

    # Project-level unlock flags, set by an explicit review signal.
    phase1_approved = db.Column(db.Boolean, nullable=False, default=False)
    phase2_unlocked = db.Column(db.Boolean, nullable=False, default=False)
    vault_generated = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "phase1_approved": self.phase1_approved,
            "phase2_unlocked": self.phase2_unlocked,
            "vault_generated": self.vault_generated,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ContentField(db.Model):
    """One addressable value inside a section, individually versioned."""

    __tablename__ = "content_fields"
    __table_args__ = (
        db.Index("ix_content_fields_lookup", "project_id", "section_id", "is_current"),
        db.Index(
            "uq_content_fields_current",
            "project_id", "section_id", "field_id",
            unique=True,
            postgresql_where=db.text("is_current IS TRUE"),
            sqlite_where=db.text("is_current = 1"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    section_id = db.Column(db.String(50), nullable=False)
    field_id = db.Column(db.String(100), nullable=False)
    field_label = db.Column(db.String(200), nullable=False, default="")
    field_type = db.Column(
        db.String(20), nullable=False, default="text",
        comment="text | textarea | array | object",
    )
    value = db.Column(JSONValue, nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_custom = db.Column(db.Boolean, nullable=False, default=False)
    is_current = db.Column(db.Boolean, nullable=False, default=True)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "section_id": self.section_id,
            "field_id": self.field_id,
            "field_label": self.field_label,
            "field_type": self.field_type,
            "value": self.value,
            "display_order": self.display_order,
            "is_custom": self.is_custom,
            "is_current": self.is_current,
            "version": self.version,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SectionDocument(db.Model):
    """Full nested snapshot of one section plus its approval status."""

    __tablename__ = "section_documents"
    __table_args__ = (
        db.Index("ix_section_documents_lookup", "project_id", "section_id", "is_current"),
        db.Index("ix_section_documents_status", "project_id", "status"),
        db.Index(
            "uq_section_documents_current",
            "project_id", "section_id",
            unique=True,
            postgresql_where=db.text("is_current IS TRUE"),
            sqlite_where=db.text("is_current = 1"),
        ),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36), db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    section_id = db.Column(db.String(50), nullable=False)
    section_title = db.Column(db.String(200), nullable=False, default="")
    content = db.Column(JSONContent, nullable=False, default=dict)
    status = db.Column(
        db.String(20), nullable=False, default="generated",
        comment="generating | generated | approved",
    )
    # Stored for display only; phase membership is always derived from the
    # static phase table.
    phase = db.Column(db.Integer, nullable=False, default=1)
    version = db.Column(db.Integer, nullable=False, default=1)
    schema_version = db.Column(db.Integer, nullable=False, default=1)
    is_current = db.Column(db.Boolean, nullable=False, default=True)
    generating_since = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def to_dict(self, include_content=True):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "section_id": self.section_id,
            "section_title": self.section_title,
            "status": self.status,
            "phase": self.phase,
            "version": self.version,
            "schema_version": self.schema_version,
            "is_current": self.is_current,
            "generating_since": self.generating_since.isoformat() if self.generating_since else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_content:
            d["content"] = self.content
        return d
