"""Unit tests for funnel_vault.services.key_matcher.

Coverage
--------
    - cascade order: exact → lower → normalized → prefixed → display
    - an exact hit beats a normalized hit from another record
    - display spelling with and without page prefixes
    - no match, empty key, incomplete records
"""

from funnel_vault.services.key_matcher import KeyMatcher, normalize_key, to_display_format


def _rec(rid, name, value=""):
    return {"id": rid, "name": name, "value": value}


class TestHelpers:

    def test_normalize_folds_separators_and_case(self):
        assert normalize_key("  03 - VSL__Bio  ") == "03_vsl_bio"

    def test_display_format_applies_platform_spelling(self):
        assert to_display_format("03_vsl_hero_subheadline_text") == "03 VSL hero Sub-Headline Text"

    def test_display_format_cta_and_faq(self):
        assert to_display_format("02_optin_cta_text") == "02 Optin CTA Text"
        assert to_display_format("03_faq_question_1") == "03 FAQ Question 1"


class TestResolveCascade:

    def test_exact(self):
        m = KeyMatcher([_rec("1", "03_vsl_bio_image")])
        record, level = m.resolve("03_vsl_bio_image")
        assert record["id"] == "1"
        assert level == "exact"

    def test_case_insensitive(self):
        m = KeyMatcher([_rec("1", "03_VSL_Bio_Image")])
        assert m.resolve("03_vsl_bio_image")[1] == "lower"

    def test_normalized(self):
        m = KeyMatcher([_rec("1", "03 VSL Bio Image")])
        record, level = m.resolve("03_vsl_bio_image")
        assert record["name"] == "03 VSL Bio Image"
        assert level == "normalized"

    def test_exact_hit_beats_normalized_from_other_record(self):
        """A separator-variant registered first cannot steal an exact match."""
        m = KeyMatcher([_rec("a", "03 vsl bio image"), _rec("b", "03_vsl_bio_image")])
        record, level = m.resolve("03_vsl_bio_image")
        assert record["id"] == "b"
        assert level == "exact"

    def test_first_record_keeps_normalized_slot(self):
        m = KeyMatcher([_rec("a", "03 VSL Bio Image"), _rec("b", "03-vsl-bio-image")])
        assert m.find("03_vsl_bio_image")["id"] == "a"

    def test_prefix_swap(self):
        m = KeyMatcher([_rec("1", "02_optin_headline_text")])
        record, level = m.resolve("03_optin_headline_text")
        assert record["id"] == "1"
        assert level == "prefixed"

    def test_prefix_added_to_bare_key(self):
        m = KeyMatcher([_rec("1", "03_vsl_headline_text")])
        assert m.resolve("vsl_headline_text") == (m.find("03_vsl_headline_text"), "prefixed")

    def test_display_spelling(self):
        m = KeyMatcher([_rec("1", "03 VSL hero Sub-Headline Text")])
        record, level = m.resolve("03_vsl_hero_subheadline_text")
        assert record["id"] == "1"
        assert level == "display"

    def test_display_spelling_with_other_prefix(self):
        m = KeyMatcher([_rec("1", "02 VSL hero Sub-Headline Text")])
        record, level = m.resolve("03_vsl_hero_subheadline_text")
        assert record["id"] == "1"
        assert level == "display"

    def test_no_match(self):
        m = KeyMatcher([_rec("1", "something_else")])
        assert m.resolve("03_vsl_bio_image") == (None, None)
        assert m.find("03_vsl_bio_image") is None

    def test_empty_key(self):
        assert KeyMatcher([_rec("1", "x")]).resolve("") == (None, None)


class TestIndex:

    def test_records_without_id_or_name_are_ignored(self):
        m = KeyMatcher([_rec("1", "a"), {"id": "2"}, {"name": "c"}, _rec("", "d")])
        assert len(m) == 1

    def test_empty_directory(self):
        m = KeyMatcher(None)
        assert len(m) == 0
        assert m.find("anything") is None

    def test_entry_carries_current_value(self):
        m = KeyMatcher([_rec("1", "brand_tagline", "old tagline")])
        assert m.find("brand_tagline")["value"] == "old tagline"
