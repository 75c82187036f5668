"""
Content generation collaborator.

Section content is produced by an external generator (an LLM pipeline in
production).  This module defines the interface the regeneration flow talks
to, plus a deterministic local stub for development and tests.

Usage:
    from funnel_vault.ai.generation import regenerate

    result = regenerate(project_id, "offer", inputs={"businessName": "Acme"})
"""

import hashlib
import json
import logging
from abc import ABC, abstractmethod

from funnel_vault.core.exceptions import NotFoundError, TransitionError
from funnel_vault.services import approval_service, field_service
from funnel_vault.services.sections import (
    FIELD_PATHS,
    SECTION_DEPENDENCIES,
    SECTION_TITLES,
    SECTION_WRAPPERS,
    resolve_placeholders,
    set_path,
)

logger = logging.getLogger(__name__)


# ── Generator Abstract Base ───────────────────────────────────────────────────

class ContentGenerator(ABC):
    """Abstract interface for section content generators."""

    @abstractmethod
    def generate(self, project_id: str, section_id: str, inputs: dict) -> dict:
        """
        Produce a fresh content snapshot for one section.

        Args:
            project_id: Project the section belongs to.
            section_id: Section to generate.
            inputs: Free-form answers/context used by the generator.

        Returns:
            Nested content dict in the current document schema.
        """
        ...


class LocalStubGenerator(ContentGenerator):
    """
    Local stub that returns deterministic snapshots for dev/testing.
    No API key required.
    """

    def generate(self, project_id: str, section_id: str, inputs: dict) -> dict:
        seed = hashlib.sha256(
            json.dumps([section_id, inputs or {}], sort_keys=True, default=str).encode("utf-8")
        ).hexdigest()[:8]
        title = SECTION_TITLES.get(section_id, section_id)

        paths = FIELD_PATHS.get(section_id)
        if paths:
            content = {}
            for field_id, candidates in paths.items():
                set_path(content, candidates[0], f"{title} {field_id} draft {seed}")
            return content

        wrapper = SECTION_WRAPPERS.get(section_id)
        body = {
            f"item{i}": f"{title} item {i} draft {seed}" for i in range(1, 4)
        }
        return {wrapper: body} if wrapper else body


def get_generator() -> ContentGenerator:
    return LocalStubGenerator()


def upstream_values(project_id: str) -> dict:
    """Current values of the fields other sections reuse, keyed ``section.field``."""
    values = {}
    for key in SECTION_DEPENDENCIES:
        section_id, field_id = key.split(".", 1)
        for field in field_service.list_fields(project_id, section_id):
            if field["field_id"] == field_id:
                values[key] = field["value"]
    return values


def regenerate(
    project_id: str,
    section_id: str,
    inputs: dict | None = None,
    cascade: bool = False,
    generator: ContentGenerator | None = None,
) -> dict:
    """Run a full regeneration: mark generating, generate, write back.

    A section whose generator call fails stays ``generating`` with its lock
    until the lock TTL expires; it is then visible through
    ``list_stale_generating``.

    Raises:
        NotFoundError, TransitionError: From ``begin_regeneration`` for the
            requested section.
    """
    generator = generator or get_generator()
    started = approval_service.begin_regeneration(project_id, section_id, cascade=cascade)

    completed, failed = [], []
    sources = upstream_values(project_id)
    for sid, token in started["lock_tokens"].items():
        try:
            content = resolve_placeholders(generator.generate(project_id, sid, inputs or {}), sources)
            approval_service.complete_regeneration(project_id, sid, content, lock_token=token)
            completed.append(sid)
        except (NotFoundError, TransitionError) as exc:
            logger.warning("Regeneration write-back failed project=%s section=%s: %s", project_id, sid, exc)
            failed.append({"section_id": sid, "error": str(exc)})
        except Exception as exc:
            logger.exception("Generator failed project=%s section=%s", project_id, sid)
            failed.append({"section_id": sid, "error": str(exc)})

    return {
        "success": not failed,
        "completed": completed,
        "failed": failed,
        "skipped": started["skipped"],
    }
