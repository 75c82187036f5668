"""
Approval blueprint — bulk approvals and single-section transitions.

Routes:
  GET    /projects/<pid>/approvals                         – approved sections by phase
  POST   /projects/<pid>/approvals                         – bulk set / targeted reset
  POST   /projects/<pid>/sections/<sid>/approve            – generated → approved
  POST   /projects/<pid>/sections/<sid>/reject             – approved → generated
  POST   /projects/<pid>/sections/<sid>/regenerate         – regenerate (optionally cascading)
  GET    /projects/<pid>/generating/stale                  – sections stuck in generating
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import funnel_vault.services.approval_service as approval_svc
from funnel_vault.ai.generation import regenerate
from funnel_vault.core.exceptions import NotFoundError, TransitionError, ValidationError
from funnel_vault.services.sections import is_known_section
from funnel_vault.utils.errors import E, api_error, error_from_exception

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval_bp", __name__, url_prefix="/api/v1")


@approval_bp.errorhandler(NotFoundError)
@approval_bp.errorhandler(TransitionError)
@approval_bp.errorhandler(ValidationError)
def _handle_domain_error(error):
    return error_from_exception(error)


def _require_section(section_id):
    if not is_known_section(section_id):
        raise ValidationError(f"Unknown section: {section_id}", details={"section_id": section_id})


# ═════════════════════════════════════════════════════════════════════════════
# Bulk approvals
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/projects/<project_id>/approvals", methods=["GET"])
def get_approvals(project_id):
    result = approval_svc.get_approvals(project_id)
    return jsonify(result), 200 if result.get("success") else 500


@approval_bp.route("/projects/<project_id>/approvals", methods=["POST"])
def set_approvals(project_id):
    """Bulk-set approvals.

    Body:
        { approvals: {phase1: [...], phase2: [...], phase3: [...]},
          reset_sections?: [...], funnel_approved?: bool }
    """
    data = request.get_json(silent=True) or {}
    approvals = data.get("approvals")
    reset_sections = data.get("reset_sections")
    if approvals is not None and not isinstance(approvals, dict):
        return api_error(E.VALIDATION_INVALID, "approvals must be an object keyed by phase", status=400)
    if reset_sections is not None and not isinstance(reset_sections, list):
        return api_error(E.VALIDATION_INVALID, "reset_sections must be an array", status=400)
    if approvals is None and reset_sections is None and "funnel_approved" not in data:
        return api_error(E.VALIDATION_REQUIRED, "approvals, reset_sections or funnel_approved is required")

    result = approval_svc.set_approvals(
        project_id,
        approvals or {},
        reset_sections=reset_sections,
        funnel_approved=data.get("funnel_approved"),
    )
    return jsonify(result), 200 if result.get("success") else 500


# ═════════════════════════════════════════════════════════════════════════════
# Single-section transitions
# ═════════════════════════════════════════════════════════════════════════════


@approval_bp.route("/projects/<project_id>/sections/<section_id>/approve", methods=["POST"])
def approve_section(project_id, section_id):
    _require_section(section_id)
    return jsonify(approval_svc.approve_section(project_id, section_id))


@approval_bp.route("/projects/<project_id>/sections/<section_id>/reject", methods=["POST"])
def reject_section(project_id, section_id):
    _require_section(section_id)
    return jsonify(approval_svc.reject_section(project_id, section_id))


@approval_bp.route("/projects/<project_id>/sections/<section_id>/regenerate", methods=["POST"])
def regenerate_section(project_id, section_id):
    """Regenerate a section, optionally cascading to its dependents.

    Body: { cascade?: bool, inputs?: {…} }
    Returns 200 when every started section was written back, else 207.
    """
    _require_section(section_id)
    data = request.get_json(silent=True) or {}
    result = regenerate(
        project_id,
        section_id,
        inputs=data.get("inputs") or {},
        cascade=bool(data.get("cascade", False)),
    )
    return jsonify(result), 200 if result["success"] else 207


@approval_bp.route("/projects/<project_id>/generating/stale", methods=["GET"])
def stale_generating(project_id):
    older_than = request.args.get("older_than", type=int)
    items = approval_svc.list_stale_generating(project_id, older_than_seconds=older_than)
    return jsonify({"items": items, "total": len(items)})
