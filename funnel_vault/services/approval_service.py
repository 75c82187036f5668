"""
Section approval state machine.

States of the current SectionDocument row:

    generating ──► generated ──► approved
        ▲              │  ▲          │
        └──────────────┘  └──────────┘
          regenerate         reject

``generating`` is owned by the regeneration that set it.  No bulk operation
may move a section out of ``generating``: the excluded set is read before
writing, and every bulk UPDATE also carries ``status != 'generating'`` so a
regeneration that starts between the read and the write is still respected.
A held section lock counts as ``generating``.

Phase completion is always derived from the static phase table, never from
the stored ``phase`` column.

Usage:
    from funnel_vault.services.approval_service import get_approvals, set_approvals

    set_approvals(project_id, {"phase1": ["idealClient", "offer"]})
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from funnel_vault.core.exceptions import NotFoundError, TransitionError
from funnel_vault.models import db
from funnel_vault.models.content import SECTION_TRANSITIONS, Project, SectionDocument
from funnel_vault.services import section_lock
from funnel_vault.services.field_population import populate_fields
from funnel_vault.services.reconciler import reconcile_from_fields
from funnel_vault.services.sections import (
    ALL_SECTIONS,
    CURRENT_SCHEMA_VERSION,
    PHASES,
    SECTION_TITLES,
    get_dependent_sections,
    phase_of,
    upgrade_document,
)

logger = logging.getLogger(__name__)

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

DEFAULT_STALE_AFTER_SECONDS = 900


def is_valid_project_id(project_id) -> bool:
    return isinstance(project_id, str) and bool(_UUID_RE.match(project_id))


def _utcnow():
    return datetime.now(timezone.utc)


def _empty_approvals() -> dict:
    result = {"success": True, "funnel_approved": False}
    for phase in PHASES:
        result[f"phase{phase}"] = []
        result[f"phase{phase}_complete"] = False
    return result


def _current_document(project_id: str, section_id: str) -> SectionDocument | None:
    stmt = select(SectionDocument).where(
        SectionDocument.project_id == project_id,
        SectionDocument.section_id == section_id,
        SectionDocument.is_current.is_(True),
    )
    return db.session.execute(stmt).scalars().first()


def _sections_with_status(project_id: str, status: str) -> set[str]:
    stmt = select(SectionDocument.section_id).where(
        SectionDocument.project_id == project_id,
        SectionDocument.status == status,
        SectionDocument.is_current.is_(True),
    )
    return set(db.session.execute(stmt).scalars().all())


def _protected_sections(project_id: str, candidates) -> set[str]:
    """Sections a bulk operation must not touch right now."""
    return _sections_with_status(project_id, "generating") | section_lock.locked_sections(project_id, candidates)


def _flatten_requested(approved_by_phase) -> list[str]:
    """Ordered, de-duplicated union of the per-phase approval lists."""
    if not approved_by_phase:
        return []
    seen = []
    for ids in approved_by_phase.values():
        for sid in ids or []:
            if sid not in seen:
                seen.append(sid)
    return seen


# ═════════════════════════════════════════════════════════════════════════════
# Bulk approvals
# ═════════════════════════════════════════════════════════════════════════════


def get_approvals(project_id) -> dict:
    """Approved sections partitioned by phase, with derived completion flags.

    Malformed project ids yield an empty successful result.
    """
    if not is_valid_project_id(project_id):
        logger.info("get_approvals: invalid project id %r", project_id)
        return _empty_approvals()

    try:
        approved = _sections_with_status(project_id, "approved")
        project = db.session.get(Project, project_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("get_approvals failed project=%s: %s", project_id, exc)
        return {"success": False, "error": str(exc)}

    result = {"success": True, "funnel_approved": bool(project and project.phase2_unlocked)}
    for phase, section_ids in PHASES.items():
        ids = [sid for sid in section_ids if sid in approved]
        result[f"phase{phase}"] = ids
        result[f"phase{phase}_complete"] = len(ids) >= len(section_ids)
    return result


def set_approvals(
    project_id,
    approved_by_phase: dict | None,
    reset_sections: list[str] | None = None,
    funnel_approved: bool | None = None,
) -> dict:
    """Bulk-set section approval for a project.

    Args:
        project_id: Project UUID.  Malformed ids are a no-op success.
        approved_by_phase: ``{"phase1": [...], "phase2": [...], ...}``.  Every
            section not listed is set back to ``generated``.
        reset_sections: When given, only these sections are reset to
            ``generated`` and ``approved_by_phase`` is ignored.
        funnel_approved: Explicit review signal; updates the project's
            ``phase2_unlocked`` (and ``vault_generated`` when True).

    Returns:
        {"success", "approved", "unapproved", "protected", "placeholders"}
        or {"success", "reset", "protected"} for the targeted reset.
    """
    if not is_valid_project_id(project_id):
        logger.info("set_approvals: invalid project id %r", project_id)
        return {"success": True, "approved": [], "unapproved": [], "protected": [], "placeholders": []}

    try:
        project = db.session.get(Project, project_id)
        if project is None:
            return {"success": True, "skipped": True, "reason": "Project not found",
                    "approved": [], "unapproved": [], "protected": [], "placeholders": []}

        if reset_sections is not None:
            result = _reset_sections(project_id, list(reset_sections))
        else:
            result = _apply_approvals(project_id, _flatten_requested(approved_by_phase))

        if funnel_approved is not None:
            project.phase2_unlocked = bool(funnel_approved)
            if funnel_approved:
                project.vault_generated = True

        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("set_approvals failed project=%s: %s", project_id, exc)
        return {"success": False, "error": str(exc)}

    if result.get("protected"):
        logger.info(
            "Approvals skipped generating sections project=%s sections=%s",
            project_id, result["protected"],
            extra={"project_id": project_id},
        )
    return result


def _reset_sections(project_id: str, section_ids: list[str]) -> dict:
    protected = _protected_sections(project_id, section_ids)
    targets = [sid for sid in section_ids if sid not in protected]
    if targets:
        db.session.execute(
            update(SectionDocument)
            .where(
                SectionDocument.project_id == project_id,
                SectionDocument.is_current.is_(True),
                SectionDocument.section_id.in_(targets),
                SectionDocument.status != "generating",
            )
            .values(status="generated")
            .execution_options(synchronize_session=False)
        )
    logger.info("Targeted approval reset project=%s sections=%s", project_id, targets)
    return {
        "success": True,
        "reset": targets,
        "protected": [sid for sid in section_ids if sid in protected],
    }


def _current_section_ids(project_id: str) -> set[str]:
    return set(db.session.execute(
        select(SectionDocument.section_id).where(
            SectionDocument.project_id == project_id,
            SectionDocument.is_current.is_(True),
        )
    ).scalars().all())


def _apply_approvals(project_id: str, all_approved: list[str]) -> dict:
    existing = _current_section_ids(project_id)

    # Manually curated sections have no snapshot yet; phase completion
    # needs a row to count.
    placeholders = [sid for sid in all_approved if sid not in existing]
    for sid in placeholders:
        db.session.add(SectionDocument(
            project_id=project_id,
            section_id=sid,
            section_title=SECTION_TITLES.get(sid, sid),
            content={},
            status="approved",
            phase=phase_of(sid),
            version=1,
            schema_version=CURRENT_SCHEMA_VERSION,
            is_current=True,
        ))
    db.session.flush()

    universe = list(ALL_SECTIONS) + [sid for sid in all_approved if sid not in ALL_SECTIONS]
    protected = _protected_sections(project_id, universe)
    requested = set(all_approved)
    approve_ids = [sid for sid in all_approved if sid not in protected]
    unapprove_ids = [sid for sid in ALL_SECTIONS if sid not in requested and sid not in protected]

    for ids, status in ((approve_ids, "approved"), (unapprove_ids, "generated")):
        if not ids:
            continue
        db.session.execute(
            update(SectionDocument)
            .where(
                SectionDocument.project_id == project_id,
                SectionDocument.is_current.is_(True),
                SectionDocument.section_id.in_(ids),
                SectionDocument.status != "generating",
            )
            .values(status=status)
            .execution_options(synchronize_session=False)
        )

    logger.info(
        "Approvals set project=%s approved=%d unapproved=%d protected=%d placeholders=%d",
        project_id, len(approve_ids), len(unapprove_ids), len(protected), len(placeholders),
        extra={"project_id": project_id},
    )
    return {
        "success": True,
        "approved": approve_ids,
        "unapproved": unapprove_ids,
        "protected": sorted(protected),
        "placeholders": placeholders,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Single-section transitions
# ═════════════════════════════════════════════════════════════════════════════


def _swap_status(doc: SectionDocument, action: str, **values) -> None:
    """Compare-and-swap the status of ``doc`` on (status, version).

    Raises:
        TransitionError: The transition is not allowed from the current
            status, or the row changed underneath us.
    """
    transition = SECTION_TRANSITIONS[action]
    if doc.status not in transition["from"]:
        raise TransitionError(doc.section_id, action, doc.status)

    res = db.session.execute(
        update(SectionDocument)
        .where(
            SectionDocument.id == doc.id,
            SectionDocument.status == doc.status,
            SectionDocument.version == doc.version,
        )
        .values(status=transition["to"], **values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.session.rollback()
        raise TransitionError(doc.section_id, action, doc.status, "section changed concurrently")
    db.session.expire(doc)


def _require_document(project_id: str, section_id: str) -> SectionDocument:
    doc = _current_document(project_id, section_id)
    if doc is None:
        raise NotFoundError(resource="Section", resource_id=section_id)
    return doc


def approve_section(project_id: str, section_id: str) -> dict:
    """generated → approved for one section."""
    doc = _require_document(project_id, section_id)
    if section_lock.is_locked(project_id, section_id):
        raise TransitionError(section_id, "approve", doc.status, "regeneration in progress")
    _swap_status(doc, "approve")
    db.session.commit()
    logger.info("Section approved project=%s section=%s", project_id, section_id,
                extra={"project_id": project_id, "section_id": section_id})
    return doc.to_dict(include_content=False)


def reject_section(project_id: str, section_id: str) -> dict:
    """approved → generated for one section."""
    doc = _require_document(project_id, section_id)
    _swap_status(doc, "reject")
    db.session.commit()
    logger.info("Section rejected project=%s section=%s", project_id, section_id,
                extra={"project_id": project_id, "section_id": section_id})
    return doc.to_dict(include_content=False)


def begin_regeneration(project_id: str, section_id: str, cascade: bool = False) -> dict:
    """Move a section (and optionally its dependents) into ``generating``.

    Each section gets a short-lived lock; the returned tokens must be passed
    to :func:`complete_regeneration`.  Dependents that are missing, already
    generating or locked are reported under ``skipped``.

    Raises:
        NotFoundError: The requested section has no current document.
        TransitionError: The requested section cannot start regenerating.
    """
    root = _require_document(project_id, section_id)
    if root.status not in SECTION_TRANSITIONS["regenerate"]["from"]:
        raise TransitionError(section_id, "regenerate", root.status)

    targets = [section_id]
    if cascade:
        targets += [sid for sid in get_dependent_sections(section_id) if sid != section_id]

    started: dict[str, str] = {}
    skipped: list[dict] = []
    for sid in targets:
        doc = root if sid == section_id else _current_document(project_id, sid)
        if doc is None:
            skipped.append({"section_id": sid, "reason": "no document"})
            continue
        token = section_lock.acquire(project_id, sid)
        if token is None:
            if sid == section_id:
                raise TransitionError(sid, "regenerate", doc.status, "regeneration in progress")
            skipped.append({"section_id": sid, "reason": "locked"})
            continue
        try:
            _swap_status(doc, "regenerate", generating_since=_utcnow())
            db.session.commit()
        except TransitionError as exc:
            section_lock.release(project_id, sid, token)
            if sid == section_id:
                raise
            skipped.append({"section_id": sid, "reason": str(exc)})
            continue
        started[sid] = token

    logger.info(
        "Regeneration started project=%s sections=%s skipped=%d",
        project_id, list(started), len(skipped),
        extra={"project_id": project_id, "section_id": section_id},
    )
    return {"success": True, "regenerating": list(started), "lock_tokens": started, "skipped": skipped}


def complete_regeneration(
    project_id: str,
    section_id: str,
    content: dict,
    lock_token: str | None = None,
    schema_version: int = CURRENT_SCHEMA_VERSION,
) -> dict:
    """Write regenerated content and move the section back to ``generated``.

    ``content`` is taken to be in ``schema_version``; generator output is
    already current, so only older snapshots pass through the upgraders.

    Manually edited fields survive: fields are re-populated without forcing,
    then folded back into the document so both stores agree.

    Raises:
        NotFoundError, TransitionError
    """
    doc = _require_document(project_id, section_id)
    upgraded, schema_version = upgrade_document(section_id, content, schema_version)
    try:
        _swap_status(
            doc, "complete_regeneration",
            content=upgraded,
            version=doc.version + 1,
            schema_version=schema_version,
            generating_since=None,
        )
        db.session.commit()
    finally:
        section_lock.release(project_id, section_id, lock_token)

    fields = populate_fields(project_id, section_id, upgraded, force_overwrite=False)
    reconcile = reconcile_from_fields(project_id, section_id)

    logger.info(
        "Regeneration completed project=%s section=%s fields_inserted=%s preserved=%s",
        project_id, section_id, fields.get("inserted"), fields.get("preserved"),
        extra={"project_id": project_id, "section_id": section_id},
    )
    doc = _current_document(project_id, section_id)
    return {"success": True, "section": doc.to_dict(), "fields": fields, "reconcile": reconcile}


# ═════════════════════════════════════════════════════════════════════════════
# Stale regeneration report
# ═════════════════════════════════════════════════════════════════════════════


def list_stale_generating(project_id: str, older_than_seconds: int | None = None) -> list[dict]:
    """Sections stuck in ``generating`` longer than the threshold.

    Report only: recovery is an explicit operator decision.  Rows without a
    ``generating_since`` stamp are always reported.
    """
    if older_than_seconds is None:
        older_than_seconds = (
            current_app.config.get("GENERATING_STALE_AFTER_SECONDS", DEFAULT_STALE_AFTER_SECONDS)
            if has_app_context() else DEFAULT_STALE_AFTER_SECONDS
        )
    now = _utcnow()
    cutoff = now - timedelta(seconds=older_than_seconds)

    stmt = select(SectionDocument).where(
        SectionDocument.project_id == project_id,
        SectionDocument.status == "generating",
        SectionDocument.is_current.is_(True),
    )
    stale = []
    for doc in db.session.execute(stmt).scalars().all():
        since = doc.generating_since
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        if since is not None and since > cutoff:
            continue
        stale.append({
            "section_id": doc.section_id,
            "generating_since": since.isoformat() if since else None,
            "age_seconds": int((now - since).total_seconds()) if since else None,
            "locked": section_lock.is_locked(project_id, doc.section_id),
        })
    return stale
