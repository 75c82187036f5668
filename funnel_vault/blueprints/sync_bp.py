"""
Sync blueprint — platform connection, section push and push audit log.

Routes:
  GET    /projects/<pid>/platform-connection               – connection (no token)
  PUT    /projects/<pid>/platform-connection               – create / update connection
  POST   /projects/<pid>/sections/<sid>/push               – push an approved section
  GET    /projects/<pid>/push-logs                         – push audit entries

All outbound HTTP happens in the service layer through the platform gateway.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import funnel_vault.services.sync_service as sync_svc
from funnel_vault.core.exceptions import NotFoundError, ValidationError
from funnel_vault.utils.errors import E, api_error, error_from_exception

logger = logging.getLogger(__name__)

sync_bp = Blueprint("sync_bp", __name__, url_prefix="/api/v1")


@sync_bp.errorhandler(NotFoundError)
@sync_bp.errorhandler(ValidationError)
def _handle_domain_error(error):
    return error_from_exception(error)


@sync_bp.route("/projects/<project_id>/platform-connection", methods=["GET"])
def get_connection(project_id):
    conn = sync_svc.get_connection(project_id)
    if not conn:
        return api_error(E.NOT_FOUND, "No platform connection configured for this project")
    return jsonify(conn), 200


@sync_bp.route("/projects/<project_id>/platform-connection", methods=["PUT"])
def save_connection(project_id):
    """Create or update the project's platform connection.

    Body: { location_id, access_token, base_url?, is_active? }
    Omit access_token on update to keep the stored one.

    Security: access_token is encrypted before storage and never returned.
    """
    data = request.get_json(silent=True) or {}
    if "base_url" in data and data["base_url"] and len(data["base_url"]) > 500:
        return api_error(E.VALIDATION_INVALID, "base_url must be ≤ 500 characters", status=400)
    try:
        conn = sync_svc.save_connection(project_id, data)
    except RuntimeError as exc:
        logger.error("Cannot save platform connection project=%s: %s", project_id, exc)
        return api_error(E.INTERNAL, str(exc))
    return jsonify(conn), 200


@sync_bp.route("/projects/<project_id>/sections/<section_id>/push", methods=["POST"])
def push_section(project_id, section_id):
    """Push one approved section.

    Body: { deadline_seconds? }
    Returns:
        200: push summary (check ``failed`` / ``cancelled``)
        409: section not approved or no connection
        502: directory fetch failed
    """
    data = request.get_json(silent=True) or {}
    deadline = data.get("deadline_seconds")
    if deadline is not None and not isinstance(deadline, (int, float)):
        return api_error(E.VALIDATION_INVALID, "deadline_seconds must be a number", status=400)

    result = sync_svc.push_section(project_id, section_id, deadline_seconds=deadline)
    if result.get("success") or "pushed" in result:
        return jsonify(result), 200
    details = {"audit_id": result.get("audit_id")}
    if result.get("blocked"):
        return api_error(E.CONFLICT_STATE, result["error"], details=details)
    return api_error(E.UPSTREAM, result["error"], details=details)


@sync_bp.route("/projects/<project_id>/push-logs", methods=["GET"])
def get_push_logs(project_id):
    limit = request.args.get("limit", 20, type=int)
    logs = sync_svc.get_push_logs(project_id, limit=limit)
    return jsonify({"items": logs, "total": len(logs)})
