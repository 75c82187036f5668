"""
Key matcher — resolves a local logical key to an external directory record.

The external platform names the same value inconsistently across template
generations ("03_vsl_bio_image", "03 VSL Bio Image", "03 VSL bio Image",
"Sub-Headline" vs "subheadline").  The directory is indexed once per sync run
into three tiers, and a lookup walks a fixed cascade, each level tried only
when the previous one failed:

  1. exact        the record name as-is
  2. lower        case-insensitive
  3. normalized   whitespace, dash and underscore runs folded to "_", lowercase
  4. prefixed     page prefixes (``03_`` then ``02_``) swapped or added
  5. display      the platform's display spelling ("Sub-Headline", "VSL", "CTA",
                  "FAQ", "Optin", lowercase "hero"), with and without prefixes

Because tiers are separate dicts, an exact hit for a key always wins over a
normalized hit produced by a different record.  Within a tier the first
record registered keeps the slot.
"""

from __future__ import annotations

import re

_FOLD = re.compile(r"[\s\-_]+")
_PAGE_PREFIX = re.compile(r"^0[23][\s_]+")
_WORD_START = re.compile(r"\b\w")

MATCH_LEVELS = ("exact", "lower", "normalized", "prefixed", "display")

# Order matters: later substitutions see the output of earlier ones.
_DISPLAY_RULES = (
    (re.compile(r"subheadline", re.I), "Sub-Headline"),
    (re.compile(r"subtext", re.I), "Sub-Text"),
    (re.compile(r"opt in", re.I), "Optin"),
    (re.compile(r"\bvsl\b", re.I), "VSL"),
    (re.compile(r"\bcta\b", re.I), "CTA"),
    (re.compile(r"\bfaq\b", re.I), "FAQ"),
    (re.compile(r"\bAbove\b"), "above"),
    (re.compile(r"\bHero\b"), "hero"),
)


def normalize_key(name: str) -> str:
    """Fold whitespace/dash/underscore runs to ``_`` and lowercase."""
    return _FOLD.sub("_", name.strip()).lower()


def to_display_format(key: str) -> str:
    """``03_vsl_hero_subheadline_text`` → ``03 VSL hero Sub-Headline Text``."""
    text = key.replace("__", " - ").replace("_", " ")
    text = _WORD_START.sub(lambda m: m.group(0).upper(), text)
    for pattern, repl in _DISPLAY_RULES:
        text = pattern.sub(repl, text)
    return text


def _prefix_variants(key: str) -> list[str]:
    """Prefix-swapped forms of ``key``, most specific first."""
    bare = _PAGE_PREFIX.sub("", key)
    variants = [f"03_{bare}", f"02_{bare}", bare]
    return [v for v in variants if normalize_key(v) != normalize_key(key)]


class KeyMatcher:
    """Index of external records, built once per sync run.

    Args:
        records: Iterable of ``{"id", "name", ...}`` dicts as returned by the
            directory listing.  Records without an id or name are ignored.
    """

    def __init__(self, records):
        self._exact: dict[str, dict] = {}
        self._lower: dict[str, dict] = {}
        self._normalized: dict[str, dict] = {}
        self.size = 0
        for record in records or []:
            name = record.get("name")
            if not name or not record.get("id"):
                continue
            entry = {"id": record["id"], "name": name, "value": record.get("value")}
            self._exact.setdefault(name, entry)
            self._lower.setdefault(name.lower(), entry)
            self._normalized.setdefault(normalize_key(name), entry)
            self.size += 1

    def _lookup_any(self, candidate: str) -> dict | None:
        return (
            self._exact.get(candidate)
            or self._lower.get(candidate.lower())
            or self._normalized.get(normalize_key(candidate))
        )

    def resolve(self, key: str) -> tuple[dict | None, str | None]:
        """Return ``(record, level)``; ``(None, None)`` when nothing matches."""
        if not key:
            return None, None

        hit = self._exact.get(key)
        if hit:
            return hit, "exact"
        hit = self._lower.get(key.lower())
        if hit:
            return hit, "lower"
        hit = self._normalized.get(normalize_key(key))
        if hit:
            return hit, "normalized"

        for variant in _prefix_variants(key):
            hit = self._normalized.get(normalize_key(variant))
            if hit:
                return hit, "prefixed"

        display = to_display_format(key)
        hit = self._lookup_any(display)
        if hit:
            return hit, "display"
        bare_display = to_display_format(_PAGE_PREFIX.sub("", key))
        for prefix in ("03 ", "02 "):
            hit = self._lookup_any(prefix + bare_display)
            if hit:
                return hit, "display"

        return None, None

    def find(self, key: str) -> dict | None:
        """Best-matching record for ``key``, or None."""
        return self.resolve(key)[0]

    def __len__(self):
        return self.size
