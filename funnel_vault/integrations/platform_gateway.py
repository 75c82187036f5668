"""
Content platform gateway — all outbound HTTP to the external key/value
directory ("custom values" of a location) goes through this class.
Direct ``requests`` calls in services or blueprints are not allowed.

  - Bearer token taken from the connection (decrypted by the caller and set
    transiently as ``connection._plaintext_token``, never persisted)
  - ``Version`` header on every call
  - Retry: max 2 extra attempts on 5xx / 429 / network errors, backoff 1 s → 2 s
  - Circuit breaker: ≥5 failures in 60 s → 30 s pause per location
  - Always returns a GatewayResult; never raises

Testability: pass a mock ``session`` to PlatformGateway() in tests instead of
letting it create a real requests.Session internally.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any

import requests
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://services.leadconnectorhq.com"
DEFAULT_API_VERSION = "2021-07-28"

# ── Circuit breaker constants ──────────────────────────────────────────────
_CB_FAILURE_THRESHOLD = 5          # failures within window before opening
_CB_WINDOW_SECONDS = 60            # failure counting window (seconds)
_CB_OPEN_DURATION_SECONDS = 30     # how long circuit stays open

# ── Retry constants ────────────────────────────────────────────────────────
_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 2]    # sleep[0] after 1st fail, sleep[1] after 2nd

# ── Timeouts / paging ──────────────────────────────────────────────────────
_LIST_TIMEOUT = 15
_WRITE_TIMEOUT = 10
PAGE_SIZE = 100
MAX_PAGES = 5


class GatewayResult:
    """Structured return value from PlatformGateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body (dict or list), else None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency in milliseconds.
        payload_hash:   SHA-256 of the serialised request payload (hex).
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: dict | list | None,
        error: str | None,
        duration_ms: int,
        payload_hash: str | None = None,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.payload_hash = payload_hash

    def __repr__(self):
        return f"<GatewayResult ok={self.ok} status={self.status_code} error={self.error!r}>"


def _retryable(status_code: int) -> bool:
    return status_code >= 500 or status_code == 429


class PlatformGateway:
    """Content platform REST gateway.

    Instantiate once at module level (module-level singleton pattern).

    Usage:
        from funnel_vault.integrations.platform_gateway import platform_gateway
        result = platform_gateway.list_records(connection)
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        base_url: str | None = None,
        api_version: str | None = None,
    ) -> None:
        self._session: requests.Session | None = session
        self._base_url = base_url
        self._api_version = api_version

        # Circuit breaker: location_id → {"failures": [datetime, ...], "open_until": datetime|None}
        self._cb_state: dict[str, dict] = {}

    # ── HTTP session / settings ──────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _setting(self, explicit, key, default):
        if explicit:
            return explicit
        if has_app_context():
            return current_app.config.get(key) or default
        return default

    def _base(self, connection: Any) -> str:
        base = getattr(connection, "base_url", None) or self._setting(
            self._base_url, "PLATFORM_API_BASE_URL", DEFAULT_BASE_URL
        )
        return base.rstrip("/")

    def _headers(self, connection: Any) -> dict:
        return {
            "Authorization": f"Bearer {connection._plaintext_token}",
            "Version": self._setting(self._api_version, "PLATFORM_API_VERSION", DEFAULT_API_VERSION),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # ── Circuit breaker ───────────────────────────────────────────────────────

    def _ensure_cb_entry(self, location_id: str) -> dict:
        if location_id not in self._cb_state:
            self._cb_state[location_id] = {"failures": [], "open_until": None}
        return self._cb_state[location_id]

    def _circuit_closed(self, location_id: str) -> bool:
        """Return True if the circuit allows calls; False if open (paused)."""
        state = self._ensure_cb_entry(location_id)
        now = datetime.now(timezone.utc)

        if state["open_until"] and now < state["open_until"]:
            logger.warning("Circuit open for location=%s until %s", location_id, state["open_until"])
            return False

        window_start = now - timedelta(seconds=_CB_WINDOW_SECONDS)
        state["failures"] = [f for f in state["failures"] if f >= window_start]

        if len(state["failures"]) >= _CB_FAILURE_THRESHOLD:
            state["open_until"] = now + timedelta(seconds=_CB_OPEN_DURATION_SECONDS)
            logger.error(
                "Circuit opened for location=%s: %d failures in %ds window",
                location_id, len(state["failures"]), _CB_WINDOW_SECONDS,
            )
            return False

        return True

    def _record_failure(self, location_id: str) -> None:
        self._ensure_cb_entry(location_id)["failures"].append(datetime.now(timezone.utc))

    def _record_success(self, location_id: str) -> None:
        """On success, reset failure history and close the circuit."""
        state = self._ensure_cb_entry(location_id)
        state["failures"].clear()
        state["open_until"] = None

    def reset_circuit(self, location_id: str | None = None) -> None:
        if location_id is None:
            self._cb_state.clear()
        else:
            self._cb_state.pop(location_id, None)

    # ── Core request dispatcher ───────────────────────────────────────────────

    def _compute_payload_hash(self, payload: dict | list | None) -> str | None:
        if payload is None:
            return None
        raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        return hashlib.sha256(raw).hexdigest()

    def request(
        self,
        method: str,
        url: str,
        *,
        connection: Any,
        json_body: dict | list | None = None,
        params: dict | None = None,
        timeout: int = _WRITE_TIMEOUT,
    ) -> GatewayResult:
        """Execute an authenticated request with retries.

          1. Circuit breaker check: reject immediately if the location is paused.
          2. Execute request; on 2xx → success result.
          3. On 5xx / 429 / network error: record failure, back off, retry up
             to _RETRY_MAX times.
          4. Any other non-2xx is returned at once (retrying cannot help).

        Returns:
            GatewayResult — always returns (never raises). Callers check .ok.
        """
        location_id = connection.location_id
        if not self._circuit_closed(location_id):
            return GatewayResult(
                ok=False, status_code=None, data=None,
                error="Circuit breaker is open — platform calls temporarily suspended",
                duration_ms=0,
            )

        payload_hash = self._compute_payload_hash(json_body)
        headers = self._headers(connection)
        last_error = "Unknown error"
        last_status: int | None = None
        started = time.perf_counter()

        for attempt in range(_RETRY_MAX + 1):
            try:
                kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout}
                if json_body is not None:
                    kwargs["json"] = json_body
                if params:
                    kwargs["params"] = params

                t0 = time.perf_counter()
                resp = self.session.request(method, url, **kwargs)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if resp.ok:
                    content_type = (resp.headers or {}).get("content-type", "")
                    if "text/html" in content_type:
                        # Error pages are sometimes served with 200.
                        self._record_failure(location_id)
                        return GatewayResult(
                            ok=False, status_code=resp.status_code, data=None,
                            error="Platform returned HTML instead of JSON",
                            duration_ms=duration_ms, payload_hash=payload_hash,
                        )
                    self._record_success(location_id)
                    try:
                        data = resp.json() if resp.content else {}
                    except ValueError:
                        data = {}
                    return GatewayResult(
                        ok=True, status_code=resp.status_code, data=data, error=None,
                        duration_ms=duration_ms, payload_hash=payload_hash,
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                if not _retryable(resp.status_code):
                    logger.warning("Platform request rejected status=%d url=%s", resp.status_code, url)
                    return GatewayResult(
                        ok=False, status_code=resp.status_code, data=None, error=last_error,
                        duration_ms=duration_ms, payload_hash=payload_hash,
                    )
                self._record_failure(location_id)
                logger.warning(
                    "Platform request failed attempt=%d/%d status=%d url=%s location=%s",
                    attempt + 1, _RETRY_MAX + 1, resp.status_code, url, location_id,
                )

            except requests.Timeout:
                last_error = f"Request timed out after {timeout}s"
                self._record_failure(location_id)
                logger.warning(
                    "Platform request timed out attempt=%d/%d url=%s location=%s",
                    attempt + 1, _RETRY_MAX + 1, url, location_id,
                )

            except requests.RequestException as exc:
                last_error = str(exc)[:500]
                self._record_failure(location_id)
                logger.warning(
                    "Platform network error attempt=%d/%d url=%s location=%s error=%s",
                    attempt + 1, _RETRY_MAX + 1, url, location_id, last_error,
                )

            if attempt < _RETRY_MAX:
                sleep_s = _RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)]
                logger.info("Retrying platform request in %ss (attempt %d)", sleep_s, attempt + 2)
                time.sleep(sleep_s)

        return GatewayResult(
            ok=False, status_code=last_status, data=None, error=last_error,
            duration_ms=int((time.perf_counter() - started) * 1000),
            payload_hash=payload_hash,
        )

    # ── Directory operations ──────────────────────────────────────────────────

    def list_records(self, connection: Any, max_pages: int = MAX_PAGES) -> GatewayResult:
        """Fetch the full record directory of a location.

        Paginates with ``skip``/``limit`` until a short page or ``max_pages``.

        Returns:
            GatewayResult.data = {"records": [{id, name, value}, ...], "pages": int}
            Any failing page fails the whole listing.
        """
        url = f"{self._base(connection)}/locations/{connection.location_id}/customValues"
        records: list[dict] = []
        total_ms = 0
        pages = 0

        for page in range(max_pages):
            result = self.request(
                "GET", url, connection=connection,
                params={"skip": page * PAGE_SIZE, "limit": PAGE_SIZE},
                timeout=_LIST_TIMEOUT,
            )
            total_ms += result.duration_ms
            if not result.ok:
                logger.warning("Directory fetch failed on page %d location=%s: %s",
                               page + 1, connection.location_id, result.error)
                result.duration_ms = total_ms
                return result

            batch = (result.data or {}).get("customValues") or []
            records.extend(batch)
            pages += 1
            if len(batch) < PAGE_SIZE:
                break

        logger.info("Fetched %d directory records in %d page(s) location=%s",
                    len(records), pages, connection.location_id)
        return GatewayResult(
            ok=True, status_code=200, data={"records": records, "pages": pages},
            error=None, duration_ms=total_ms,
        )

    def update_record(self, connection: Any, record_id: str, name: str, value: str) -> GatewayResult:
        """PUT a new value.  ``name`` must be the record's current display name."""
        url = f"{self._base(connection)}/locations/{connection.location_id}/customValues/{record_id}"
        return self.request(
            "PUT", url, connection=connection,
            json_body={"name": name, "value": value},
        )

    def create_record(self, connection: Any, name: str, value: str) -> GatewayResult:
        """POST a new record.  Not used by the sync pusher, which only updates."""
        url = f"{self._base(connection)}/locations/{connection.location_id}/customValues"
        return self.request(
            "POST", url, connection=connection,
            json_body={"name": name, "value": value},
        )


# Module-level singleton: import this instance in services.
# In tests, patch its methods via:
#   from funnel_vault.integrations import platform_gateway as gw_module
#   patch.object(gw_module.platform_gateway, "list_records", ...)
platform_gateway = PlatformGateway()
