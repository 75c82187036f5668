"""
Content blueprint — projects, section documents, fields and reconciliation.

Routes:
  POST   /projects                                         – create project
  GET    /projects/<pid>                                   – project detail
  GET    /projects/<pid>/sections/<sid>                    – current section document
  GET    /projects/<pid>/sections/<sid>/fields             – current fields
  POST   /projects/<pid>/sections/<sid>/fields             – add custom field
  PUT    /projects/<pid>/sections/<sid>/fields/<fid>       – edit field value
  POST   /projects/<pid>/sections/<sid>/reconcile          – fields ⇄ document

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy import select

import funnel_vault.services.field_service as field_svc
from funnel_vault.core.exceptions import ConflictError, NotFoundError, ValidationError
from funnel_vault.models import db
from funnel_vault.models.content import Project, SectionDocument
from funnel_vault.services.reconciler import reconcile_from_fields, reconcile_from_section
from funnel_vault.services.sections import is_known_section
from funnel_vault.utils.errors import E, api_error, error_from_exception
from funnel_vault.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

content_bp = Blueprint("content_bp", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@content_bp.errorhandler(NotFoundError)
@content_bp.errorhandler(ValidationError)
@content_bp.errorhandler(ConflictError)
def _handle_domain_error(error):
    return error_from_exception(error)


# ═════════════════════════════════════════════════════════════════════════════
# Projects
# ═════════════════════════════════════════════════════════════════════════════


@content_bp.route("/projects", methods=["POST"])
def create_project():
    """Create a project.

    Body: { name, owner_id? }
    """
    data = request.get_json(silent=True) or {}
    name = (data.get("name") or "").strip()
    if not name:
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    if len(name) > 200:
        return api_error(E.VALIDATION_INVALID, "name must be ≤ 200 characters", status=400)

    project = Project(name=name, owner_id=data.get("owner_id"))
    db.session.add(project)
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Project created id=%s", project.id)
    return jsonify(project.to_dict()), 201


@content_bp.route("/projects/<project_id>", methods=["GET"])
def get_project(project_id):
    project, err = get_or_404(Project, project_id)
    if err:
        return err
    return jsonify(project.to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# Sections & fields
# ═════════════════════════════════════════════════════════════════════════════


@content_bp.route("/projects/<project_id>/sections/<section_id>", methods=["GET"])
def get_section(project_id, section_id):
    """Current document of a section, content included."""
    if not is_known_section(section_id):
        return api_error(E.VALIDATION_INVALID, f"Unknown section: {section_id}")
    doc = db.session.execute(
        select(SectionDocument).where(
            SectionDocument.project_id == project_id,
            SectionDocument.section_id == section_id,
            SectionDocument.is_current.is_(True),
        )
    ).scalar_one_or_none()
    if doc is None:
        return api_error(E.NOT_FOUND, "Section not found")
    return jsonify(doc.to_dict())


@content_bp.route("/projects/<project_id>/sections/<section_id>/fields", methods=["GET"])
def list_fields(project_id, section_id):
    fields = field_svc.list_fields(project_id, section_id)
    return jsonify({"items": fields, "total": len(fields)})


@content_bp.route("/projects/<project_id>/sections/<section_id>/fields", methods=["POST"])
def add_custom_field(project_id, section_id):
    """Add a user-defined field.

    Body: { field_id, value?, field_label?, field_type? }
    """
    data = request.get_json(silent=True) or {}
    result = field_svc.add_custom_field(project_id, section_id, data)
    return jsonify(result), 201


@content_bp.route("/projects/<project_id>/sections/<section_id>/fields/<field_id>", methods=["PUT"])
def update_field(project_id, section_id, field_id):
    """Edit one field; the section document is re-folded afterwards.

    Body: { value }
    """
    data = request.get_json(silent=True) or {}
    if "value" not in data:
        return api_error(E.VALIDATION_REQUIRED, "value is required")
    result = field_svc.update_field(project_id, section_id, field_id, data["value"])
    return jsonify(result)


@content_bp.route("/projects/<project_id>/sections/<section_id>/reconcile", methods=["POST"])
def reconcile(project_id, section_id):
    """Reconcile the two stores of a section.

    Body:
        { direction: "from_fields" }                 – fold fields into the document
        { direction: "from_section", content: {…} }  – overwrite fields from a snapshot
    """
    if not is_known_section(section_id):
        return api_error(E.VALIDATION_INVALID, f"Unknown section: {section_id}")
    _, err = get_or_404(Project, project_id)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    direction = data.get("direction", "from_fields")

    if direction == "from_fields":
        result = reconcile_from_fields(project_id, section_id)
    elif direction == "from_section":
        content = data.get("content")
        if not isinstance(content, dict) or not content:
            return api_error(E.VALIDATION_REQUIRED, "content must be a non-empty object")
        result = reconcile_from_section(project_id, section_id, content)
    else:
        return api_error(E.VALIDATION_INVALID, "direction must be 'from_fields' or 'from_section'", status=400)

    status_code = 200 if result.get("success") else 500
    return jsonify(result), status_code
