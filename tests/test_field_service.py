"""Unit tests for funnel_vault.services.field_service."""

import pytest
from sqlalchemy import select

from funnel_vault.core.exceptions import ConflictError, NotFoundError, ValidationError
from funnel_vault.models import db
from funnel_vault.models.content import ContentField, SectionDocument
from funnel_vault.services import field_service
from funnel_vault.services.field_population import humanize_field_id, infer_field_type


def _seed(project_id, section_id, field_id, value, order=0):
    db.session.add(ContentField(
        project_id=project_id, section_id=section_id, field_id=field_id,
        field_label=humanize_field_id(field_id), value=value,
        display_order=order, is_current=True, version=1,
    ))
    db.session.commit()


def _document_content(project_id, section_id):
    db.session.expire_all()
    return db.session.execute(
        select(SectionDocument.content).where(
            SectionDocument.project_id == project_id,
            SectionDocument.section_id == section_id,
            SectionDocument.is_current.is_(True),
        )
    ).scalar_one()


class TestUpdateField:

    def test_edit_supersedes_and_refolds(self, project):
        _seed(project.id, "offer", "offerName", "Old Name")

        result = field_service.update_field(project.id, "offer", "offerName", "Fit in 30")

        assert result["field"]["version"] == 2
        assert result["field"]["value"] == "Fit in 30"
        assert result["reconcile"]["success"] is True
        assert _document_content(project.id, "offer")["offerName"] == "Fit in 30"

        rows = db.session.execute(
            select(ContentField).where(ContentField.field_id == "offerName").order_by(ContentField.version)
        ).scalars().all()
        assert [(r.version, r.is_current) for r in rows] == [(1, False), (2, True)]

    def test_edit_reports_dependency_impact(self, project):
        _seed(project.id, "offer", "offerName", "Old Name")

        impact = field_service.update_field(project.id, "offer", "offerName", "New")["impact"]

        assert impact["field_path"] == "offer.offerName"
        assert "setterScript" in impact["affected_sections"]

    def test_field_without_dependents_has_no_impact(self, project):
        _seed(project.id, "bio", "shortBio", "x")
        assert field_service.update_field(project.id, "bio", "shortBio", "y")["impact"] is None

    def test_missing_field_raises(self, project):
        with pytest.raises(NotFoundError):
            field_service.update_field(project.id, "bio", "shortBio", "x")

    def test_unknown_section_raises(self, project):
        with pytest.raises(ValidationError):
            field_service.update_field(project.id, "nope", "x", "y")


class TestCustomFields:

    def test_custom_field_is_appended_and_folded(self, project):
        _seed(project.id, "bio", "shortBio", "Coach", order=4)

        result = field_service.add_custom_field(project.id, "bio", {"field_id": "podcastName", "value": "Grow"})

        field = result["field"]
        assert field["is_custom"] is True
        assert field["display_order"] == 5
        assert field["field_label"] == "Podcast Name"
        assert _document_content(project.id, "bio") == {"shortBio": "Coach", "podcastName": "Grow"}

    def test_duplicate_id_conflicts(self, project):
        _seed(project.id, "bio", "shortBio", "Coach")
        with pytest.raises(ConflictError):
            field_service.add_custom_field(project.id, "bio", {"field_id": "shortBio"})

    def test_invalid_type_rejected(self, project):
        with pytest.raises(ValidationError):
            field_service.add_custom_field(project.id, "bio", {"field_id": "x", "field_type": "blob"})

    def test_field_id_required(self, project):
        with pytest.raises(ValidationError):
            field_service.add_custom_field(project.id, "bio", {"value": "x"})


class TestListFields:

    def test_lists_current_fields_in_display_order(self, project):
        _seed(project.id, "message", "topOutcomes", ["a", "b"], order=1)
        _seed(project.id, "message", "oneLineMessage", "I help", order=0)

        items = field_service.list_fields(project.id, "message")

        assert [f["field_id"] for f in items] == ["oneLineMessage", "topOutcomes"]
        assert items[1]["value"] == ["a", "b"]


class TestHelpers:

    def test_humanize_field_id(self):
        assert humanize_field_id("tier1RecommendedPrice") == "Tier1 Recommended Price"
        assert humanize_field_id("short_bio") == "Short Bio"

    def test_infer_field_type(self):
        assert infer_field_type(["a"]) == "array"
        assert infer_field_type({"a": 1}) == "object"
        assert infer_field_type("line\nbreak") == "textarea"
        assert infer_field_type("short") == "text"
