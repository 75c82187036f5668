"""
Sync service — pushes an approved section's fields to the external platform.

  - Connection management (Fernet-encrypted access token)
  - Update-only push of one section through the key matcher
  - Push audit log retrieval

All outbound HTTP: delegated to
`funnel_vault.integrations.platform_gateway.platform_gateway`.
Direct `requests` usage is FORBIDDEN in this module.

A push never creates external records: keys the directory does not know
are counted as skipped.  Every invocation writes exactly one
SyncAuditEntry, including refused, failed and cancelled runs.
"""

from __future__ import annotations

import logging
import time

from flask import current_app, has_app_context
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from funnel_vault.core.exceptions import NotFoundError, ValidationError
from funnel_vault.integrations.platform_gateway import platform_gateway
from funnel_vault.models import db
from funnel_vault.models.content import ContentField, Project, SectionDocument
from funnel_vault.models.sync import PlatformConnection, SyncAuditEntry
from funnel_vault.services.key_matcher import KeyMatcher
from funnel_vault.services.push_mappers import build_push_values
from funnel_vault.services.sections import AUXILIARY_SECTIONS, is_known_section
from funnel_vault.utils.crypto import InvalidToken, decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_DELAY_SECONDS = 0.12


# ═════════════════════════════════════════════════════════════════════════════
# Internal helpers
# ═════════════════════════════════════════════════════════════════════════════


def _setting(key, default):
    if has_app_context():
        value = current_app.config.get(key)
        if value is not None:
            return value
    return default


def _get_connection(project_id: str) -> PlatformConnection | None:
    stmt = select(PlatformConnection).where(PlatformConnection.project_id == project_id)
    return db.session.execute(stmt).scalar_one_or_none()


def _get_connection_with_token(project_id: str) -> PlatformConnection | None:
    """Return the connection with `_plaintext_token` attached transiently.

    The token is decrypted for the gateway only; it is never persisted or
    serialised.

    Raises:
        RuntimeError: If ENCRYPTION_KEY is not set.
        cryptography.fernet.InvalidToken: If the stored token cannot be decrypted.
    """
    connection = _get_connection(project_id)
    if not connection:
        return None
    connection._plaintext_token = decrypt_secret(connection.encrypted_token)
    return connection


def _approved_field_values(project_id: str, section_id: str) -> dict:
    stmt = (
        select(ContentField)
        .where(
            ContentField.project_id == project_id,
            ContentField.section_id == section_id,
            ContentField.is_current.is_(True),
        )
        .order_by(ContentField.display_order, ContentField.field_id)
    )
    return {f.field_id: f.value for f in db.session.execute(stmt).scalars()}


def _write_audit_entry(
    *,
    project_id: str,
    section_id: str,
    summary: dict,
    triggered_by: str,
    duration_ms: int,
) -> SyncAuditEntry:
    """Create and commit one SyncAuditEntry from a push summary.

    A failure to write the audit row is logged and rolled back; it never
    hides the push outcome from the caller.
    """
    entry = SyncAuditEntry(
        project_id=project_id,
        section_id=section_id,
        pushed_count=summary.get("pushed", 0),
        updated_count=summary.get("updated", 0),
        skipped_count=summary.get("skipped", 0),
        failed_count=summary.get("failed", 0),
        success=summary.get("success", False),
        cancelled=summary.get("cancelled", False),
        error=summary.get("error"),
        errors=summary.get("errors") or [],
        duration_ms=duration_ms,
        triggered_by=triggered_by,
    )
    try:
        db.session.add(entry)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to write sync audit entry project=%s section=%s", project_id, section_id)
    return entry


# ═════════════════════════════════════════════════════════════════════════════
# Connection management
# ═════════════════════════════════════════════════════════════════════════════


def save_connection(project_id: str, data: dict) -> dict:
    """Create or replace the platform connection of a project.

    The `access_token` in `data` is encrypted before storage.  When absent on
    update, the existing encrypted token is kept.

    Args:
        project_id: Owning project.
        data: {
            location_id: str (required),
            access_token: str (required for create; optional for update),
            base_url: str (optional),
            is_active: bool (optional),
        }

    Returns:
        Serialised PlatformConnection dict (without the token).

    Raises:
        NotFoundError: If the project does not exist.
        ValidationError: If required fields are missing for a new connection.
        RuntimeError: If ENCRYPTION_KEY is not set.
    """
    if not db.session.get(Project, project_id):
        raise NotFoundError(resource="Project", resource_id=project_id)

    connection = _get_connection(project_id)
    is_create = connection is None

    if is_create:
        missing = [f for f in ("location_id", "access_token") if not data.get(f)]
        if missing:
            raise ValidationError(
                f"Missing required fields for new connection: {missing}",
                details={f: "required" for f in missing},
            )
        connection = PlatformConnection(project_id=project_id)
        db.session.add(connection)

    connection.location_id = data.get("location_id") or connection.location_id
    connection.base_url = data.get("base_url", connection.base_url)
    if data.get("is_active") is not None:
        connection.is_active = bool(data["is_active"])

    if data.get("access_token"):
        connection.encrypted_token = encrypt_secret(data["access_token"])

    db.session.commit()
    if not is_create:
        platform_gateway.reset_circuit(connection.location_id)
    logger.info("PlatformConnection %s for project=%s", "created" if is_create else "updated", project_id)
    return connection.to_dict()


def get_connection(project_id: str) -> dict | None:
    """Serialised connection without the token; None when not configured."""
    connection = _get_connection(project_id)
    return connection.to_dict() if connection else None


# ═════════════════════════════════════════════════════════════════════════════
# Push
# ═════════════════════════════════════════════════════════════════════════════


def push_section(
    project_id: str,
    section_id: str,
    *,
    triggered_by: str = "manual",
    cancel_event=None,
    deadline_seconds: float | None = None,
) -> dict:
    """Push one approved section to the project's platform location.

    Flow:
      1. The section's current document must be approved (auxiliary
         sections such as colors only need a current document).
      2. Fetch the record directory once and index it in a KeyMatcher.
      3. Map the section's current fields to ``{external_key: value}``.
      4. For each key: unmatched → skipped; matched → one PUT carrying the
         directory's own record name.  A fixed delay separates calls.
      5. Stop early when `cancel_event` is set or the deadline elapses.

    Args:
        project_id: Project UUID.
        section_id: Section to push.
        triggered_by: Audit label ('manual' | 'scheduled' | ...).
        cancel_event: Optional object with ``is_set()`` (threading.Event).
        deadline_seconds: Wall-clock budget for the run; falls back to
            SYNC_DEADLINE_SECONDS.  None/0 means unbounded.

    Returns:
        {success, pushed, updated, skipped, failed, errors[{key, error}],
         cancelled, remaining, skipped_keys, audit_id} or
        {success: False, blocked: True, error, audit_id} when the run was
        refused before contacting the platform.

    Raises:
        ValidationError: For an unknown section id.
    """
    if not is_known_section(section_id):
        raise ValidationError(f"Unknown section: {section_id}", details={"section_id": section_id})

    started = time.perf_counter()

    def _elapsed_ms():
        return int((time.perf_counter() - started) * 1000)

    def _refuse(error):
        summary = {"success": False, "error": error}
        entry = _write_audit_entry(
            project_id=project_id, section_id=section_id, summary=summary,
            triggered_by=triggered_by, duration_ms=_elapsed_ms(),
        )
        logger.info("Push refused project=%s section=%s: %s", project_id, section_id, error,
                    extra={"project_id": project_id, "section_id": section_id})
        return {"success": False, "blocked": True, "error": error, "audit_id": entry.id}

    stmt = select(SectionDocument).where(
        SectionDocument.project_id == project_id,
        SectionDocument.section_id == section_id,
        SectionDocument.is_current.is_(True),
    )
    doc = db.session.execute(stmt).scalar_one_or_none()
    if doc is None:
        return _refuse(f"Section '{section_id}' has no content")
    if section_id not in AUXILIARY_SECTIONS and doc.status != "approved":
        return _refuse(f"Section '{section_id}' is not approved (status: {doc.status})")

    try:
        connection = _get_connection_with_token(project_id)
    except (RuntimeError, InvalidToken):
        logger.exception("Token decryption failed project=%s", project_id)
        return _refuse("Platform token could not be decrypted")
    if connection is None or not connection.is_active:
        return _refuse("No active platform connection for this project")

    if deadline_seconds is None:
        deadline_seconds = _setting("SYNC_DEADLINE_SECONDS", None)
    deadline = started + deadline_seconds if deadline_seconds else None
    delay = float(_setting("SYNC_REQUEST_DELAY_SECONDS", DEFAULT_REQUEST_DELAY_SECONDS))

    listing = platform_gateway.list_records(connection)
    if not listing.ok:
        summary = {
            "success": False, "pushed": 0, "updated": 0, "skipped": 0, "failed": 0,
            "errors": [], "error": f"Directory fetch failed: {listing.error}",
        }
        entry = _write_audit_entry(
            project_id=project_id, section_id=section_id, summary=summary,
            triggered_by=triggered_by, duration_ms=_elapsed_ms(),
        )
        logger.warning(
            "Push aborted project=%s section=%s: %s", project_id, section_id, listing.error,
            extra={"project_id": project_id, "section_id": section_id},
        )
        return {"success": False, "error": summary["error"], "audit_id": entry.id}

    matcher = KeyMatcher(listing.data["records"])
    values = build_push_values(section_id, _approved_field_values(project_id, section_id))

    pushed = updated = skipped = failed = 0
    errors: list[dict] = []
    skipped_keys: list[str] = []
    cancelled = False
    remaining = 0
    calls = 0

    items = list(values.items())
    for index, (key, value) in enumerate(items):
        if (cancel_event is not None and cancel_event.is_set()) or (
            deadline is not None and time.perf_counter() >= deadline
        ):
            cancelled = True
            remaining = len(items) - index
            break

        record, level = matcher.resolve(key)
        if record is None:
            skipped += 1
            skipped_keys.append(key)
            continue

        if calls and delay:
            time.sleep(delay)
        calls += 1

        result = platform_gateway.update_record(connection, record["id"], record["name"], str(value))
        if result.ok:
            pushed += 1
            updated += 1
            logger.debug("Pushed key=%s → %s (%s match)", key, record["name"], level)
        else:
            failed += 1
            errors.append({"key": key, "error": result.error})

    summary = {
        "success": failed == 0,
        "pushed": pushed,
        "updated": updated,
        "skipped": skipped,
        "failed": failed,
        "errors": errors,
        "cancelled": cancelled,
        "remaining": remaining,
    }
    if cancelled:
        summary["error"] = f"Push cancelled with {remaining} key(s) not sent"

    entry = _write_audit_entry(
        project_id=project_id, section_id=section_id, summary=summary,
        triggered_by=triggered_by, duration_ms=_elapsed_ms(),
    )
    logger.info(
        "Push project=%s section=%s pushed=%d skipped=%d failed=%d cancelled=%s",
        project_id, section_id, pushed, skipped, failed, cancelled,
        extra={"project_id": project_id, "section_id": section_id},
    )
    summary["skipped_keys"] = skipped_keys
    summary["audit_id"] = entry.id
    return summary


# ═════════════════════════════════════════════════════════════════════════════
# Audit log retrieval
# ═════════════════════════════════════════════════════════════════════════════


def get_push_logs(project_id: str, limit: int = 20) -> list[dict]:
    """Return recent push audit entries for a project, newest first.

    Args:
        project_id: Project scope.
        limit: Max records to return (default 20, capped at 200).
    """
    limit = max(1, min(limit, 200))
    stmt = (
        select(SyncAuditEntry)
        .where(SyncAuditEntry.project_id == project_id)
        .order_by(SyncAuditEntry.created_at.desc())
        .limit(limit)
    )
    return [r.to_dict() for r in db.session.execute(stmt).scalars().all()]
