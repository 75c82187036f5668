"""Unit tests for funnel_vault.services.sync_service.

Test strategy
-------------
All outbound HTTP is mocked via patch.object on the module-level
`platform_gateway` singleton so no real platform location is needed.
ENCRYPTION_KEY is set once per session by conftest.

Coverage
--------
    - connection storage: token encrypted, never serialised
    - push preconditions: approval gate, active connection, readable token
    - unmatched keys are skipped with zero writes
    - PUT carries the directory's record name
    - fixed delay between PUTs and the deadline cutoff
    - audit entry for every invocation, including refusals, directory
      failure and cancellation
    - push log retrieval and cap
"""

import threading
from unittest.mock import call, patch

import pytest
from cryptography.fernet import Fernet
from flask import current_app
from sqlalchemy import select

import funnel_vault.integrations.platform_gateway as gw_module
import funnel_vault.services.sync_service as sync_svc
from funnel_vault.core.exceptions import NotFoundError, ValidationError
from funnel_vault.integrations.platform_gateway import GatewayResult
from funnel_vault.models import db
from funnel_vault.models.content import ContentField, SectionDocument
from funnel_vault.models.sync import PlatformConnection, SyncAuditEntry
from funnel_vault.utils.crypto import decrypt_secret


# ── Helper factories ─────────────────────────────────────────────────────────


def _ok_result(**kwargs) -> GatewayResult:
    defaults = dict(ok=True, status_code=200, data={}, error=None, duration_ms=5)
    defaults.update(kwargs)
    return GatewayResult(**defaults)


def _directory(*names):
    records = [{"id": f"rec-{i}", "name": name, "value": ""} for i, name in enumerate(names)]
    return _ok_result(data={"records": records, "pages": 1})


def _connect(project_id, token="secret-token"):
    return sync_svc.save_connection(project_id, {"location_id": "loc-1", "access_token": token})


def _approved_section(project_id, section_id, fields, status="approved"):
    db.session.add(SectionDocument(
        project_id=project_id, section_id=section_id, section_title=section_id,
        content={}, status=status, version=1, is_current=True,
    ))
    for order, (field_id, value) in enumerate(fields.items()):
        db.session.add(ContentField(
            project_id=project_id, section_id=section_id, field_id=field_id,
            field_label=field_id, value=value, display_order=order, is_current=True,
        ))
    db.session.commit()


def _audit_rows(project_id):
    return db.session.execute(
        select(SyncAuditEntry).where(SyncAuditEntry.project_id == project_id)
    ).scalars().all()


# ── Connection ───────────────────────────────────────────────────────────────


class TestConnection:

    def test_token_is_encrypted_and_never_returned(self, project):
        result = _connect(project.id, token="plain-token")

        assert "access_token" not in result
        assert "encrypted_token" not in result
        assert result["has_token"] is True
        row = db.session.execute(select(PlatformConnection)).scalar_one()
        assert row.encrypted_token != "plain-token"
        assert decrypt_secret(row.encrypted_token) == "plain-token"

    def test_create_requires_location_and_token(self, project):
        with pytest.raises(ValidationError):
            sync_svc.save_connection(project.id, {"location_id": "loc-1"})

    def test_update_keeps_token_when_omitted(self, project):
        _connect(project.id, token="first")
        sync_svc.save_connection(project.id, {"base_url": "https://eu.example.test"})

        row = db.session.execute(select(PlatformConnection)).scalar_one()
        assert decrypt_secret(row.encrypted_token) == "first"
        assert row.base_url == "https://eu.example.test"
        assert row.location_id == "loc-1"

    def test_unknown_project_raises(self):
        with pytest.raises(NotFoundError):
            _connect("00000000-0000-4000-8000-000000000000")

    def test_get_connection_none_when_missing(self, project):
        assert sync_svc.get_connection(project.id) is None


# ── Push preconditions ───────────────────────────────────────────────────────


class TestPushPreconditions:

    def test_unknown_section_raises(self, project):
        with pytest.raises(ValidationError):
            sync_svc.push_section(project.id, "nope")

    def test_unapproved_section_is_refused_and_audited(self, project):
        _connect(project.id)
        _approved_section(project.id, "message", {"oneLineMessage": "I help"}, status="generated")

        with patch.object(gw_module.platform_gateway, "list_records") as mock_list:
            result = sync_svc.push_section(project.id, "message")

        assert result["success"] is False
        assert result["blocked"] is True
        assert "not approved" in result["error"]
        mock_list.assert_not_called()
        (entry,) = _audit_rows(project.id)
        assert entry.id == result["audit_id"]
        assert entry.success is False

    def test_missing_connection_is_refused(self, project):
        _approved_section(project.id, "message", {"oneLineMessage": "I help"})

        result = sync_svc.push_section(project.id, "message")

        assert result["success"] is False
        assert "connection" in result["error"]

    def test_undecryptable_token_is_refused_and_audited(self, project, monkeypatch):
        _connect(project.id)
        _approved_section(project.id, "message", {"oneLineMessage": "I help"})
        monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())

        with patch.object(gw_module.platform_gateway, "list_records") as mock_list:
            result = sync_svc.push_section(project.id, "message")

        mock_list.assert_not_called()
        assert result["success"] is False
        assert result["blocked"] is True
        assert "decrypted" in result["error"]
        (entry,) = _audit_rows(project.id)
        assert entry.id == result["audit_id"]

    def test_colors_need_no_approval(self, project):
        _connect(project.id)
        _approved_section(project.id, "colors", {"colorPalette": {"primary": "#112233"}}, status="generated")

        with patch.object(gw_module.platform_gateway, "list_records",
                          return_value=_directory("02_optin_cta_background_colour")), \
             patch.object(gw_module.platform_gateway, "update_record",
                          return_value=_ok_result()) as mock_put:
            result = sync_svc.push_section(project.id, "colors")

        assert result["success"] is True
        assert result["pushed"] == 1
        assert result["skipped"] == 11
        assert mock_put.call_args.args[3] == "#112233"


# ── Push run ─────────────────────────────────────────────────────────────────


class TestPushRun:

    def test_unmatched_key_is_skipped_with_zero_writes(self, project):
        _connect(project.id)
        _approved_section(project.id, "message", {"oneLineMessage": "I help coaches"})

        with patch.object(gw_module.platform_gateway, "list_records",
                          return_value=_directory("offer_name")), \
             patch.object(gw_module.platform_gateway, "update_record") as mock_put:
            result = sync_svc.push_section(project.id, "message")

        mock_put.assert_not_called()
        assert result["success"] is True
        assert result["pushed"] == 0
        assert result["skipped"] == 1
        assert result["skipped_keys"] == ["brand_tagline"]

    def test_put_uses_directory_record_name(self, project):
        _connect(project.id)
        _approved_section(project.id, "message", {"oneLineMessage": "I help coaches"})

        with patch.object(gw_module.platform_gateway, "list_records",
                          return_value=_directory("Brand Tagline")), \
             patch.object(gw_module.platform_gateway, "update_record",
                          return_value=_ok_result()) as mock_put:
            result = sync_svc.push_section(project.id, "message")

        connection, record_id, name, value = mock_put.call_args.args
        assert connection._plaintext_token == "secret-token"
        assert record_id == "rec-0"
        assert name == "Brand Tagline"
        assert value == "I help coaches"
        assert result["pushed"] == 1
        assert result["updated"] == 1

    def test_failed_write_is_reported_and_audited(self, project):
        _connect(project.id)
        _approved_section(project.id, "offer", {"offerName": "Fit", "tier1Promise": "Lose 10lbs"})

        with patch.object(gw_module.platform_gateway, "list_records",
                          return_value=_directory("offer_name", "offer_description")), \
             patch.object(gw_module.platform_gateway, "update_record",
                          side_effect=[_ok_result(), _ok_result(ok=False, status_code=422, error="HTTP 422")]):
            result = sync_svc.push_section(project.id, "offer")

        assert result["success"] is False
        assert result["pushed"] == 1
        assert result["failed"] == 1
        assert result["errors"] == [{"key": "offer_description", "error": "HTTP 422"}]

        (entry,) = _audit_rows(project.id)
        assert entry.id == result["audit_id"]
        assert entry.failed_count == 1
        assert entry.pushed_count == 1
        assert entry.success is False

    def test_directory_failure_writes_audit_and_stops(self, project):
        _connect(project.id)
        _approved_section(project.id, "message", {"oneLineMessage": "I help"})

        with patch.object(gw_module.platform_gateway, "list_records",
                          return_value=_ok_result(ok=False, status_code=401, error="HTTP 401")), \
             patch.object(gw_module.platform_gateway, "update_record") as mock_put:
            result = sync_svc.push_section(project.id, "message")

        mock_put.assert_not_called()
        assert result["success"] is False
        assert "Directory fetch failed" in result["error"]
        (entry,) = _audit_rows(project.id)
        assert entry.id == result["audit_id"]
        assert "HTTP 401" in entry.error

    def test_cancellation_stops_between_keys(self, project):
        _connect(project.id)
        _approved_section(project.id, "sms", {"sms1": "one", "sms2": "two", "sms3": "three"})
        cancel = threading.Event()

        def _put(*_args):
            cancel.set()
            return _ok_result()

        with patch.object(gw_module.platform_gateway, "list_records",
                          return_value=_directory("optin_sms_1", "optin_sms_2", "optin_sms_3")), \
             patch.object(gw_module.platform_gateway, "update_record", side_effect=_put) as mock_put:
            result = sync_svc.push_section(project.id, "sms", cancel_event=cancel)

        assert mock_put.call_count == 1
        assert result["cancelled"] is True
        assert result["remaining"] == 2
        assert result["pushed"] == 1
        assert "cancelled" in result["error"]
        (entry,) = _audit_rows(project.id)
        assert entry.cancelled is True

    def test_fixed_delay_separates_puts(self, project, monkeypatch):
        monkeypatch.setitem(current_app.config, "SYNC_REQUEST_DELAY_SECONDS", 0.5)
        _connect(project.id)
        _approved_section(project.id, "sms", {"sms1": "one", "sms2": "two", "sms3": "three"})

        with patch.object(gw_module.platform_gateway, "list_records",
                          return_value=_directory("optin_sms_1", "optin_sms_2", "optin_sms_3")), \
             patch.object(gw_module.platform_gateway, "update_record", return_value=_ok_result()), \
             patch("funnel_vault.services.sync_service.time.sleep") as mock_sleep:
            result = sync_svc.push_section(project.id, "sms")

        assert result["pushed"] == 3
        assert mock_sleep.call_args_list == [call(0.5), call(0.5)]

    def test_deadline_stops_between_keys(self, project):
        _connect(project.id)
        _approved_section(project.id, "sms", {"sms1": "one", "sms2": "two", "sms3": "three"})
        clock = {"now": 100.0}

        def _put(*_args):
            clock["now"] += 10
            return _ok_result()

        with patch.object(gw_module.platform_gateway, "list_records",
                          return_value=_directory("optin_sms_1", "optin_sms_2", "optin_sms_3")), \
             patch.object(gw_module.platform_gateway, "update_record", side_effect=_put) as mock_put, \
             patch("funnel_vault.services.sync_service.time.perf_counter", side_effect=lambda: clock["now"]):
            result = sync_svc.push_section(project.id, "sms", deadline_seconds=5)

        assert mock_put.call_count == 1
        assert result["cancelled"] is True
        assert result["remaining"] == 2
        assert result["pushed"] == 1
        (entry,) = _audit_rows(project.id)
        assert entry.cancelled is True

    def test_inactive_connection_is_refused(self, project):
        sync_svc.save_connection(project.id, {"location_id": "loc-1", "access_token": "t", "is_active": False})
        _approved_section(project.id, "message", {"oneLineMessage": "I help"})

        assert sync_svc.push_section(project.id, "message")["success"] is False


# ── Push logs ────────────────────────────────────────────────────────────────


class TestPushLogs:

    def test_logs_are_scoped_and_capped(self, project):
        for _ in range(3):
            sync_svc._write_audit_entry(
                project_id=project.id, section_id="message",
                summary={"success": True, "pushed": 1}, triggered_by="manual", duration_ms=1,
            )
        sync_svc._write_audit_entry(
            project_id="other", section_id="message",
            summary={"success": True}, triggered_by="manual", duration_ms=1,
        )

        assert len(sync_svc.get_push_logs(project.id)) == 3
        assert len(sync_svc.get_push_logs(project.id, limit=2)) == 2
        assert len(sync_svc.get_push_logs(project.id, limit=0)) == 1
