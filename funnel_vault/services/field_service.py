"""
Field editing — the user-facing side of the field store.

Every edit supersedes the current row (``is_current`` flipped, a new row with
``version + 1`` inserted) and then folds the section back into its document so
the two representations never drift.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from funnel_vault.core.exceptions import ConflictError, NotFoundError, ValidationError
from funnel_vault.models import db
from funnel_vault.models.content import FIELD_TYPES, ContentField
from funnel_vault.services.field_population import humanize_field_id, infer_field_type
from funnel_vault.services.reconciler import reconcile_from_fields
from funnel_vault.services.sections import check_dependency_impact, is_known_section

logger = logging.getLogger(__name__)


def _require_section(section_id: str) -> None:
    if not is_known_section(section_id):
        raise ValidationError(f"Unknown section: {section_id}", details={"section_id": section_id})


def _current_field(project_id: str, section_id: str, field_id: str) -> ContentField | None:
    stmt = select(ContentField).where(
        ContentField.project_id == project_id,
        ContentField.section_id == section_id,
        ContentField.field_id == field_id,
        ContentField.is_current.is_(True),
    )
    return db.session.execute(stmt).scalars().first()


def list_fields(project_id: str, section_id: str) -> list[dict]:
    """Current fields of a section, in display order."""
    _require_section(section_id)
    stmt = (
        select(ContentField)
        .where(
            ContentField.project_id == project_id,
            ContentField.section_id == section_id,
            ContentField.is_current.is_(True),
        )
        .order_by(ContentField.display_order, ContentField.field_id)
    )
    return [f.to_dict() for f in db.session.execute(stmt).scalars().all()]


def update_field(project_id: str, section_id: str, field_id: str, value) -> dict:
    """Supersede one field with a new value and re-fold the section.

    Returns:
        {"field": <new row>, "reconcile": <reconcile result>, "impact": <dependency info | None>}

    Raises:
        NotFoundError: No current field with this id.
    """
    _require_section(section_id)
    current = _current_field(project_id, section_id, field_id)
    if current is None:
        raise NotFoundError(resource="Field", resource_id=f"{section_id}.{field_id}")

    current.is_current = False
    db.session.flush()
    new_row = ContentField(
        project_id=project_id,
        section_id=section_id,
        field_id=field_id,
        field_label=current.field_label,
        field_type=current.field_type,
        value=value,
        display_order=current.display_order,
        is_custom=current.is_custom,
        is_current=True,
        version=(current.version or 1) + 1,
    )
    db.session.add(new_row)
    db.session.commit()

    logger.info(
        "Field updated project=%s section=%s field=%s version=%d",
        project_id, section_id, field_id, new_row.version,
        extra={"project_id": project_id, "section_id": section_id},
    )

    reconcile = reconcile_from_fields(project_id, section_id)
    if not reconcile.get("success"):
        logger.warning("Reconcile after field edit failed project=%s section=%s: %s",
                       project_id, section_id, reconcile.get("error"))

    return {
        "field": new_row.to_dict(),
        "reconcile": reconcile,
        "impact": check_dependency_impact(section_id, field_id),
    }


def add_custom_field(project_id: str, section_id: str, data: dict) -> dict:
    """Add a user-defined field to a section and re-fold the section.

    Raises:
        ValidationError: Missing/invalid field_id or field_type.
        ConflictError: A current field already uses the id.
    """
    _require_section(section_id)
    field_id = (data.get("field_id") or "").strip()
    if not field_id:
        raise ValidationError("field_id is required")
    if _current_field(project_id, section_id, field_id) is not None:
        raise ConflictError(resource="Field", field="field_id", value=field_id)

    value = data.get("value", "")
    field_type = data.get("field_type") or infer_field_type(value)
    if field_type not in FIELD_TYPES:
        raise ValidationError(f"field_type must be one of {', '.join(FIELD_TYPES)}")

    max_order = db.session.execute(
        select(func.max(ContentField.display_order)).where(
            ContentField.project_id == project_id,
            ContentField.section_id == section_id,
            ContentField.is_current.is_(True),
        )
    ).scalar()

    row = ContentField(
        project_id=project_id,
        section_id=section_id,
        field_id=field_id,
        field_label=data.get("field_label") or humanize_field_id(field_id),
        field_type=field_type,
        value=value,
        display_order=(max_order if max_order is not None else -1) + 1,
        is_custom=True,
        is_current=True,
        version=1,
    )
    db.session.add(row)
    db.session.commit()
    logger.info("Custom field added project=%s section=%s field=%s", project_id, section_id, field_id)

    reconcile = reconcile_from_fields(project_id, section_id)
    return {"field": row.to_dict(), "reconcile": reconcile}
