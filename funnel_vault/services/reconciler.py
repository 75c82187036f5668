"""
Vault reconciliation — keeps SectionDocument and ContentField in step.

  reconcile_from_fields    fold every current field of a section into the
                           section's nested snapshot
  reconcile_from_section   flatten a freshly generated snapshot into fields

Both operations re-derive their output from the full current state rather
than applying deltas, so either can be re-run safely after a partial failure.
Store errors come back as ``{"success": False, "error": ...}``.
"""

from __future__ import annotations

import copy
import logging
import re

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from funnel_vault.models import db
from funnel_vault.models.content import ContentField, SectionDocument
from funnel_vault.services.field_population import populate_fields
from funnel_vault.services.sections import (
    FIELD_PATHS,
    SECTION_TITLES,
    SECTION_WRAPPERS,
    phase_of,
    pick_path,
    set_path,
)

logger = logging.getLogger(__name__)

_VALUE_SUFFIX = re.compile(r"\(Value:\s*(.*?)\)$", re.IGNORECASE)


# ═════════════════════════════════════════════════════════════════════════════
# Folding helpers
# ═════════════════════════════════════════════════════════════════════════════


def normalize_deliverables(value):
    """Turn ``"Title: description (Value: X)"`` strings into records.

    Lists whose first item is already a record are returned unchanged.
    """
    if not isinstance(value, list):
        return value
    if value and isinstance(value[0], dict):
        return value

    normalized = []
    for item in value:
        if not isinstance(item, str):
            normalized.append(item)
            continue
        head, _, rest = item.partition(":")
        title = head.strip() or item.strip()
        description = rest.strip()
        value_text = ""
        match = _VALUE_SUFFIX.search(description)
        if match:
            value_text = match.group(1).strip()
            description = description.replace(match.group(0), "").strip()
        normalized.append({"title": title, "description": description, "value": value_text})
    return normalized


def apply_field(content: dict, section_id: str, field_id: str, value) -> dict:
    """Write one field value into ``content`` (in place) and return it."""
    if section_id == "leadMagnet" and field_id == "coreDeliverables":
        value = normalize_deliverables(value)

    candidates = FIELD_PATHS.get(section_id, {}).get(field_id)
    if candidates:
        set_path(content, pick_path(content, candidates), value)
        return content

    wrapper_key = SECTION_WRAPPERS.get(section_id)
    if wrapper_key:
        if not isinstance(content.get(wrapper_key), dict):
            content[wrapper_key] = {}
        content[wrapper_key][field_id] = value
        return content

    content[field_id] = value
    return content


def _current_document(project_id: str, section_id: str) -> SectionDocument | None:
    stmt = select(SectionDocument).where(
        SectionDocument.project_id == project_id,
        SectionDocument.section_id == section_id,
        SectionDocument.is_current.is_(True),
    )
    return db.session.execute(stmt).scalars().first()


# ═════════════════════════════════════════════════════════════════════════════
# Fields → document
# ═════════════════════════════════════════════════════════════════════════════


def reconcile_from_fields(project_id: str | None, section_id: str | None) -> dict:
    """Fold the current fields of a section into its document.

    Existing document: content replaced, version incremented.  No document:
    a new one is inserted with status ``generated`` and the section's phase.
    Field rows are only read, never written.

    Returns:
        {"success": True, "action": "updated" | "inserted", "section_id", "version"}
        {"success": True, "skipped": True, "reason"} when there are no fields
        {"success": False, "error"} on missing arguments or store errors
    """
    if not project_id or not section_id:
        return {"success": False, "error": "Missing project_id or section_id"}

    try:
        stmt = (
            select(ContentField)
            .where(
                ContentField.project_id == project_id,
                ContentField.section_id == section_id,
                ContentField.is_current.is_(True),
            )
            .order_by(ContentField.display_order, ContentField.field_id)
        )
        fields = db.session.execute(stmt).scalars().all()
        if not fields:
            return {"success": True, "skipped": True, "reason": "No fields to reconcile"}

        existing = _current_document(project_id, section_id)
        # The column type already decoded legacy string content.
        updated = copy.deepcopy(existing.content) if existing is not None else {}

        for field in fields:
            apply_field(updated, section_id, field.field_id, field.value)

        if existing is not None:
            existing.content = updated
            existing.version = (existing.version or 1) + 1
            action = "updated"
            version = existing.version
        else:
            db.session.add(SectionDocument(
                project_id=project_id,
                section_id=section_id,
                section_title=SECTION_TITLES.get(section_id, section_id),
                content=updated,
                status="generated",
                phase=phase_of(section_id),
                version=1,
                is_current=True,
            ))
            action = "inserted"
            version = 1
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("reconcile_from_fields failed project=%s section=%s: %s",
                     project_id, section_id, exc)
        return {"success": False, "error": str(exc)}

    logger.info(
        "Reconciled fields → document project=%s section=%s action=%s fields=%d",
        project_id, section_id, action, len(fields),
        extra={"project_id": project_id, "section_id": section_id},
    )
    return {"success": True, "action": action, "section_id": section_id, "version": version}


# ═════════════════════════════════════════════════════════════════════════════
# Document → fields
# ═════════════════════════════════════════════════════════════════════════════


def reconcile_from_section(project_id: str | None, section_id: str | None, content) -> dict:
    """Populate fields from a snapshot, overwriting current values."""
    if not project_id or not section_id or not content:
        return {"success": False, "error": "Missing project_id, section_id, or content"}

    result = populate_fields(project_id, section_id, content, force_overwrite=True)
    if not result.get("success"):
        return {"success": False, "error": result.get("error") or "Failed to populate fields",
                "details": result}
    return {"success": True, "action": "fields_populated", "details": result}
