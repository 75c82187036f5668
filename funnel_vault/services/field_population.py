"""
Field population — flattens a section document into ContentField rows.

Extraction rules per section:
  - sections with a candidate-path table (idealClient, message, story, offer,
    leadMagnet, colors) read each field from the first candidate path that is
    present, so writing the fields back lands on the same paths;
  - wrapper sections (facebookAds, emails, sms, appointmentReminders) expose
    every child of the wrapper record as one field;
  - every other section exposes its top-level keys.

Manually edited fields (version > 1) survive a re-population unless the
caller forces an overwrite.  Each field write runs in its own savepoint so a
single failure does not discard the others.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from funnel_vault.models import db
from funnel_vault.models.content import ContentField
from funnel_vault.services.sections import FIELD_PATHS, SECTION_WRAPPERS, get_path, has_path

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def humanize_field_id(field_id: str) -> str:
    """``tier1RecommendedPrice`` → ``Tier1 Recommended Price``."""
    spaced = _CAMEL_BOUNDARY.sub(" ", field_id).replace("_", " ")
    return " ".join(w[:1].upper() + w[1:] for w in spaced.split())


def infer_field_type(value) -> str:
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    if isinstance(value, str) and (len(value) > 120 or "\n" in value):
        return "textarea"
    return "text"


def extract_fields(section_id: str, content: dict) -> dict:
    """Return ``{field_id: value}`` for one section snapshot, in display order."""
    if not isinstance(content, dict):
        return {}

    paths = FIELD_PATHS.get(section_id)
    if paths:
        extracted = {}
        for field_id, candidates in paths.items():
            path = next((p for p in candidates if has_path(content, p)), None)
            if path is None:
                continue
            value = get_path(content, path)
            if value is None:
                continue
            extracted[field_id] = value
        return extracted

    wrapper_key = SECTION_WRAPPERS.get(section_id)
    source = content
    if wrapper_key and isinstance(content.get(wrapper_key), dict):
        source = content[wrapper_key]
    return {k: v for k, v in source.items() if v is not None}


def _current_fields(project_id: str, section_id: str) -> list[ContentField]:
    stmt = select(ContentField).where(
        ContentField.project_id == project_id,
        ContentField.section_id == section_id,
        ContentField.is_current.is_(True),
    )
    return db.session.execute(stmt).scalars().all()


def populate_fields(
    project_id: str,
    section_id: str,
    content: dict,
    force_overwrite: bool = False,
) -> dict:
    """(Re)write the current ContentField rows of a section from its snapshot.

    Args:
        project_id: Owning project.
        section_id: Section whose snapshot is flattened.
        content: Nested section snapshot.
        force_overwrite: Replace manually edited fields too.

    Returns:
        {"success", "inserted", "preserved", "failed", "errors": [{field_id, error}]}
        ``success`` is False only when nothing could be written at all.
    """
    extracted = extract_fields(section_id, content)
    if not extracted:
        logger.warning("No fields extracted for section=%s project=%s", section_id, project_id)
        return {"success": False, "error": f"No fields extracted for {section_id}",
                "inserted": 0, "preserved": 0, "failed": 0, "errors": []}

    try:
        current = {f.field_id: f for f in _current_fields(project_id, section_id)}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Field read failed section=%s project=%s: %s", section_id, project_id, exc)
        return {"success": False, "error": str(exc),
                "inserted": 0, "preserved": 0, "failed": 0, "errors": []}

    inserted: list[str] = []
    preserved: list[str] = []
    errors: list[dict] = []

    for order, (field_id, value) in enumerate(extracted.items()):
        existing = current.pop(field_id, None)
        if existing is not None and existing.version > 1 and not force_overwrite:
            preserved.append(field_id)
            continue
        try:
            with db.session.begin_nested():
                if existing is not None:
                    existing.is_current = False
                    db.session.flush()
                db.session.add(ContentField(
                    project_id=project_id,
                    section_id=section_id,
                    field_id=field_id,
                    field_label=existing.field_label if existing is not None else humanize_field_id(field_id),
                    field_type=infer_field_type(value),
                    value=value,
                    display_order=order,
                    is_custom=existing.is_custom if existing is not None else False,
                    is_current=True,
                    version=1,
                ))
            inserted.append(field_id)
        except SQLAlchemyError as exc:
            logger.warning("Field write failed field=%s section=%s: %s", field_id, section_id, exc)
            errors.append({"field_id": field_id, "error": str(exc)})

    # Generated fields that the new snapshot no longer carries.  Custom and
    # edited fields stay unless overwriting.
    for field_id, stale in current.items():
        if stale.is_custom or (stale.version > 1 and not force_overwrite):
            continue
        stale.is_current = False

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Field population commit failed section=%s project=%s: %s",
                     section_id, project_id, exc)
        return {"success": False, "error": str(exc),
                "inserted": 0, "preserved": 0, "failed": len(extracted), "errors": errors}

    logger.info(
        "Populated fields section=%s project=%s inserted=%d preserved=%d failed=%d",
        section_id, project_id, len(inserted), len(preserved), len(errors),
        extra={"project_id": project_id, "section_id": section_id},
    )
    return {
        "success": bool(inserted or preserved) or not errors,
        "inserted": len(inserted),
        "preserved": len(preserved),
        "failed": len(errors),
        "inserted_fields": inserted,
        "preserved_fields": preserved,
        "errors": errors,
    }
