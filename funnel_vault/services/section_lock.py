"""
Short-lived (project, section) locks.

Held by a regeneration from the moment it flips a section to ``generating``
until it writes the new content.  Bulk approval treats a locked section the
same as a ``generating`` one.  Locks expire on their own after
SECTION_LOCK_TTL_SECONDS, so a crashed worker never holds one forever.

Uses Redis (``SET NX EX``) when REDIS_URL is configured and falls back to an
in-process dict for development/testing.
"""

import logging
import os
import threading
import time
import uuid

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TTL = 300

# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (token, expire_ts)
_memory_guard = threading.Lock()


class _MemoryBackend:
    """Dict-backed lock store for dev/testing."""

    def set(self, key, value, ex=None, nx=False):
        with _memory_guard:
            entry = _memory_store.get(key)
            if entry is not None and entry[1] and time.time() > entry[1]:
                entry = None
            if nx and entry is not None:
                return None
            _memory_store[key] = (value, time.time() + ex if ex else None)
            return True

    def get(self, key):
        with _memory_guard:
            entry = _memory_store.get(key)
            if entry is None:
                return None
            value, expires = entry
            if expires and time.time() > expires:
                _memory_store.pop(key, None)
                return None
            return value

    def release(self, key, token):
        with _memory_guard:
            entry = _memory_store.get(key)
            if entry is None or (token is not None and entry[0] != token):
                return 0
            _memory_store.pop(key, None)
            return 1

    def flushdb(self):
        with _memory_guard:
            _memory_store.clear()

    def ping(self):
        return True


# Deletes the key only when it still holds the caller's token.
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


# ── Singleton backend ────────────────────────────────────────────────────

_backend = None


def _get_backend():
    """Lazy-initialise Redis or fall back to in-memory."""
    global _backend
    if _backend is not None:
        return _backend

    redis_url = os.getenv("REDIS_URL")
    if redis_url and not redis_url.startswith("memory://"):
        try:
            import redis as _redis
            _backend = _redis.from_url(redis_url, decode_responses=True)
            _backend.ping()
            logger.info("Section locks: using Redis at %s", redis_url.split("@")[-1])
        except Exception as exc:
            logger.warning("Redis unavailable (%s) — falling back to in-process locks", exc)
            _backend = _MemoryBackend()
    else:
        _backend = _MemoryBackend()
    return _backend


def _lock_ttl():
    if has_app_context():
        return int(current_app.config.get("SECTION_LOCK_TTL_SECONDS", DEFAULT_LOCK_TTL))
    return DEFAULT_LOCK_TTL


def _lock_key(project_id, section_id):
    return f"section-lock:{project_id}:{section_id}"


# ── Public API ───────────────────────────────────────────────────────────


def acquire(project_id, section_id, ttl=None):
    """Take the lock.  Returns a release token, or None if already held."""
    token = uuid.uuid4().hex
    ok = _get_backend().set(_lock_key(project_id, section_id), token, ex=ttl or _lock_ttl(), nx=True)
    if not ok:
        logger.info("Section lock busy project=%s section=%s", project_id, section_id)
        return None
    return token


def release(project_id, section_id, token=None):
    """Drop the lock.  With a token, only the holder's lock is removed."""
    be = _get_backend()
    key = _lock_key(project_id, section_id)
    if isinstance(be, _MemoryBackend):
        return bool(be.release(key, token))
    if token is None:
        return bool(be.delete(key))
    return bool(be.eval(_RELEASE_SCRIPT, 1, key, token))


def is_locked(project_id, section_id):
    return _get_backend().get(_lock_key(project_id, section_id)) is not None


def locked_sections(project_id, section_ids):
    """Subset of ``section_ids`` currently locked for this project."""
    return {sid for sid in section_ids if is_locked(project_id, sid)}


def clear_all():
    """Drop every lock (testing only)."""
    _get_backend().flushdb()


def health_check():
    try:
        be = _get_backend()
        be.ping()
        return {"status": "ok", "backend": "memory" if isinstance(be, _MemoryBackend) else "redis"}
    except Exception as exc:
        return {"status": "error", "detail": str(exc)}
