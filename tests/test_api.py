"""HTTP-level tests for the Funnel Vault blueprints.

Covers routing, request validation and the mapping of domain errors to the
standard ``{"error", "code"}`` body.  Service behaviour is tested in the
per-service modules.
"""

import json
import logging
from unittest.mock import patch

from flask import g

import funnel_vault.integrations.platform_gateway as gw_module
from funnel_vault.integrations.platform_gateway import GatewayResult
from funnel_vault.middleware.logging_config import JSONFormatter, RequestContextFilter
from funnel_vault.models import db
from funnel_vault.models.content import ContentField, SectionDocument


def _doc(project_id, section_id, status="generated", content=None):
    db.session.add(SectionDocument(
        project_id=project_id, section_id=section_id, section_title=section_id,
        content=content or {}, status=status, version=1, is_current=True,
    ))
    db.session.commit()


def _field(project_id, section_id, field_id, value):
    db.session.add(ContentField(
        project_id=project_id, section_id=section_id, field_id=field_id,
        field_label=field_id, value=value, is_current=True, version=1,
    ))
    db.session.commit()


# ── Projects & health ────────────────────────────────────────────────────────


class TestProjectsAndHealth:

    def test_create_and_get_project(self, client):
        res = client.post("/api/v1/projects", json={"name": "Spring Launch", "owner_id": "u1"})
        assert res.status_code == 201
        pid = res.get_json()["id"]

        res = client.get(f"/api/v1/projects/{pid}")
        assert res.status_code == 200
        assert res.get_json()["name"] == "Spring Launch"

    def test_create_project_requires_name(self, client):
        res = client.post("/api/v1/projects", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_unknown_project_is_404(self, client):
        res = client.get("/api/v1/projects/missing")
        assert res.status_code == 404

    def test_health_endpoints(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200
        body = client.get("/api/v1/health/live").get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["section_lock"]["backend"] == "memory"

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc"})
        assert res.headers["X-Request-ID"] == "abc"

    def test_service_log_lines_carry_the_request_id(self, app):
        record = logging.LogRecord("funnel_vault.services.x", logging.INFO, __file__, 1, "pushed", None, None)
        record.section_id = "offer"

        with app.test_request_context("/api/v1/projects"):
            g.request_id = "req-42"
            assert RequestContextFilter().filter(record) is True

        entry = json.loads(JSONFormatter().format(record))
        assert entry["request_id"] == "req-42"
        assert entry["section_id"] == "offer"
        assert entry["message"] == "pushed"

    def test_non_json_body_is_rejected(self, client):
        res = client.post("/api/v1/projects", data="name=x", content_type="text/plain")
        assert res.status_code == 415

    def test_unknown_route_returns_json_404(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Not found"


# ── Sections, fields, reconcile ──────────────────────────────────────────────


class TestContentRoutes:

    def test_field_edit_round_trip(self, client, project):
        _field(project.id, "bio", "shortBio", "Coach")

        res = client.put(f"/api/v1/projects/{project.id}/sections/bio/fields/shortBio", json={"value": "Author"})
        assert res.status_code == 200
        assert res.get_json()["field"]["version"] == 2

        res = client.get(f"/api/v1/projects/{project.id}/sections/bio")
        assert res.get_json()["content"] == {"shortBio": "Author"}

    def test_field_edit_requires_value(self, client, project):
        res = client.put(f"/api/v1/projects/{project.id}/sections/bio/fields/shortBio", json={})
        assert res.status_code == 400

    def test_missing_field_is_404(self, client, project):
        res = client.put(f"/api/v1/projects/{project.id}/sections/bio/fields/nope", json={"value": "x"})
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_duplicate_custom_field_is_409(self, client, project):
        url = f"/api/v1/projects/{project.id}/sections/bio/fields"
        assert client.post(url, json={"field_id": "podcast", "value": "Grow"}).status_code == 201
        res = client.post(url, json={"field_id": "podcast"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_list_fields(self, client, project):
        _field(project.id, "bio", "shortBio", "Coach")
        body = client.get(f"/api/v1/projects/{project.id}/sections/bio/fields").get_json()
        assert body["total"] == 1

    def test_unknown_section_is_422(self, client, project):
        res = client.get(f"/api/v1/projects/{project.id}/sections/nope/fields")
        assert res.status_code == 422

    def test_reconcile_from_section(self, client, project):
        res = client.post(
            f"/api/v1/projects/{project.id}/sections/bio/reconcile",
            json={"direction": "from_section", "content": {"shortBio": "Coach"}},
        )
        assert res.status_code == 200
        assert res.get_json()["action"] == "fields_populated"

    def test_reconcile_rejects_bad_direction(self, client, project):
        res = client.post(f"/api/v1/projects/{project.id}/sections/bio/reconcile", json={"direction": "sideways"})
        assert res.status_code == 400


# ── Approvals ────────────────────────────────────────────────────────────────


class TestApprovalRoutes:

    def test_bulk_set_and_get(self, client, project):
        _doc(project.id, "offer")
        url = f"/api/v1/projects/{project.id}/approvals"

        res = client.post(url, json={"approvals": {"phase1": ["offer"]}})
        assert res.status_code == 200

        body = client.get(url).get_json()
        assert body["phase1"] == ["offer"]
        assert body["phase1_complete"] is False

    def test_bulk_set_validates_shape(self, client, project):
        url = f"/api/v1/projects/{project.id}/approvals"
        assert client.post(url, json={"approvals": ["offer"]}).status_code == 400
        assert client.post(url, json={}).status_code == 400

    def test_invalid_transition_is_409(self, client, project):
        _doc(project.id, "offer", status="approved")
        res = client.post(f"/api/v1/projects/{project.id}/sections/offer/approve")
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["status"] == "approved"

    def test_approve_then_reject(self, client, project):
        _doc(project.id, "offer")
        res = client.post(f"/api/v1/projects/{project.id}/sections/offer/approve")
        assert res.get_json()["status"] == "approved"
        res = client.post(f"/api/v1/projects/{project.id}/sections/offer/reject")
        assert res.get_json()["status"] == "generated"

    def test_regenerate_uses_stub_generator(self, client, project):
        _doc(project.id, "bio", status="approved", content={"shortBio": "old"})

        res = client.post(f"/api/v1/projects/{project.id}/sections/bio/regenerate", json={})

        assert res.status_code == 200
        assert res.get_json()["completed"] == ["bio"]
        section = client.get(f"/api/v1/projects/{project.id}/sections/bio").get_json()
        assert section["status"] == "generated"
        assert section["version"] > 1

    def test_stale_report(self, client, project):
        _doc(project.id, "offer", status="generating")
        body = client.get(f"/api/v1/projects/{project.id}/generating/stale?older_than=60").get_json()
        assert body["total"] == 1


# ── Sync ─────────────────────────────────────────────────────────────────────


class TestSyncRoutes:

    def _connect(self, client, project):
        return client.put(
            f"/api/v1/projects/{project.id}/platform-connection",
            json={"location_id": "loc-1", "access_token": "s3cr3t-token-xyz"},
        )

    def test_connection_routes_hide_token(self, client, project):
        assert client.get(f"/api/v1/projects/{project.id}/platform-connection").status_code == 404

        res = self._connect(client, project)
        assert res.status_code == 200
        assert "s3cr3t-token-xyz" not in res.get_data(as_text=True)

        body = client.get(f"/api/v1/projects/{project.id}/platform-connection").get_json()
        assert body["location_id"] == "loc-1"
        assert body["has_token"] is True
        assert "s3cr3t-token-xyz" not in str(body)

    def test_connection_create_requires_token(self, client, project):
        res = client.put(f"/api/v1/projects/{project.id}/platform-connection", json={"location_id": "x"})
        assert res.status_code == 422

    def test_push_not_approved_is_409(self, client, project):
        self._connect(client, project)
        _doc(project.id, "message")
        res = client.post(f"/api/v1/projects/{project.id}/sections/message/push", json={})
        assert res.status_code == 409

    def test_push_directory_failure_is_502(self, client, project):
        self._connect(client, project)
        _doc(project.id, "message", status="approved")
        failed = GatewayResult(ok=False, status_code=500, data=None, error="HTTP 500", duration_ms=1)

        with patch.object(gw_module.platform_gateway, "list_records", return_value=failed):
            res = client.post(f"/api/v1/projects/{project.id}/sections/message/push", json={})

        assert res.status_code == 502
        assert res.get_json()["details"]["audit_id"]

    def test_push_success_and_logs(self, client, project):
        self._connect(client, project)
        _doc(project.id, "message", status="approved")
        _field(project.id, "message", "oneLineMessage", "I help")
        listing = GatewayResult(ok=True, status_code=200, duration_ms=1, error=None,
                                data={"records": [{"id": "r1", "name": "brand_tagline"}], "pages": 1})
        ok = GatewayResult(ok=True, status_code=200, data={}, error=None, duration_ms=1)

        with patch.object(gw_module.platform_gateway, "list_records", return_value=listing), \
             patch.object(gw_module.platform_gateway, "update_record", return_value=ok):
            res = client.post(f"/api/v1/projects/{project.id}/sections/message/push", json={})

        assert res.status_code == 200
        assert res.get_json()["pushed"] == 1
        logs = client.get(f"/api/v1/projects/{project.id}/push-logs").get_json()
        assert logs["total"] == 1
        assert logs["items"][0]["pushed_count"] == 1

    def test_push_rejects_non_numeric_deadline(self, client, project):
        res = client.post(f"/api/v1/projects/{project.id}/sections/message/push",
                          json={"deadline_seconds": "soon"})
        assert res.status_code == 400
