"""Unit tests for funnel_vault.services.push_mappers."""

import json

from funnel_vault.services.push_mappers import (
    build_push_values,
    contrasting_text,
    is_light,
    map_colors,
    to_text,
)


class TestToText:

    def test_string_list_is_joined_by_newlines(self):
        assert to_text(["a", "b"]) == "a\nb"

    def test_structured_values_are_json(self):
        assert json.loads(to_text({"a": 1})) == {"a": 1}
        assert json.loads(to_text([{"a": 1}])) == [{"a": 1}]

    def test_none_and_scalars(self):
        assert to_text(None) == ""
        assert to_text(3) == "3"


class TestSectionMappers:

    def test_sms_slots_map_to_template_keys(self):
        fields = {"sms1": "Hi!", "sms8b": {"message": "Afternoon"}, "sms7b": "no slot", "sms2": "  "}

        values = build_push_values("sms", fields)

        assert values == {"optin_sms_1": "Hi!", "optin_sms_8_afternoon": "Afternoon"}

    def test_sms_accepts_wrapped_sequence(self):
        values = build_push_values("sms", {"smsSequence": {"sms15c": "Evening"}})
        assert values == {"optin_sms_15_evening": "Evening"}

    def test_emails_split_into_subject_preheader_body(self):
        fields = {
            "email1": {"subject": "Welcome", "preview": "Start here", "body": "Hello"},
            "email8a": {"subject": "Day 8", "preheader": "Almost", "body": "Text"},
            "email2": "not a record",
        }

        values = build_push_values("emails", fields)

        assert values == {
            "Optin_Email_Subject 1": "Welcome",
            "Optin_Email_Preheader 1": "Start here",
            "Optin_Email_Body 1": "Hello",
            "Optin_Email_Subject 8": "Day 8",
            "Optin_Email_Preheader 8": "Almost",
            "Optin_Email_Body 8": "Text",
        }

    def test_message_and_offer(self):
        assert build_push_values("message", {"oneLineMessage": "I help", "topOutcomes": ["x"]}) == {
            "brand_tagline": "I help",
        }
        assert build_push_values("offer", {"offerName": "Fit", "tier1Promise": "Lose 10lbs"}) == {
            "offer_name": "Fit",
            "offer_description": "Lose 10lbs",
        }

    def test_unmapped_section_pushes_field_ids(self):
        values = build_push_values("bio", {"shortBio": "Coach", "longBio": "", "credentials": ["A", "B"]})
        assert values == {"shortBio": "Coach", "credentials": "A\nB"}


class TestColors:

    def test_light_and_dark_detection(self):
        assert is_light("#FFFFFF") is True
        assert is_light("#000") is False
        assert contrasting_text("#111111") == "#FFFFFF"
        assert contrasting_text("#FFEE00") == "#000000"
        assert contrasting_text("red") == "#000000"

    def test_palette_maps_to_page_keys(self):
        palette = {"colorPalette": {
            "primary": {"hex": "#1E3A8A"},
            "accent": "#FDE68A",
            "text": "#EEEEEE",
            "heading": "#0F172A",
            "background": "#FAFAFA",
        }}

        values = map_colors(palette)

        assert len(values) == 12
        assert values["02_optin_cta_background_colour"] == "#1E3A8A"
        assert values["02_optin_cta_text_colour"] == "#FFFFFF"
        # Light body text is darkened for white pages.
        assert values["02_optin_subhealine_text_colour"] == "#1F2937"
        assert values["02_vsl_hero_headline_text_colour"] == "#0F172A"
        assert values["02_vsl_acknowledge_pill_bg_colour"] == "#FDE68A"
        assert values["02_vsl_acknowledge_pill_text_colour"] == "#000000"
        assert values["02_header_background_color"] == "#FAFAFA"

    def test_empty_palette_uses_defaults(self):
        values = map_colors({})
        assert values["02_optin_cta_background_colour"] == "#000000"
        assert values["02_optin_cta_text_colour"] == "#FFFFFF"
        assert values["02_vsl_process_bullet_border_colour"] == "#6B7280"
