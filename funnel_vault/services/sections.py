"""
Section catalog: the static tables every vault service reads.

  PHASES              ordered phase → section ids (authoritative membership)
  SECTION_WRAPPERS    sections whose fields live under one wrapper key
  FIELD_PATHS         per-section candidate destination paths for each field
  SECTION_DEPENDENCIES   field → sections that reuse its value
  upgrade_document    one deterministic upgrader per schema version step

The candidate-path table exists because earlier generations nested the same
logical field differently (``tier1Promise`` at the top level, or
``signatureOffer.thePromise``).  Documents carry a ``schema_version`` so old
rows can be upgraded once instead of being probed forever.
"""

import copy
import re

# ═════════════════════════════════════════════════════════════════════════════
# Phases
# ═════════════════════════════════════════════════════════════════════════════

PHASES = {
    1: ("idealClient", "message", "story", "offer"),
    2: (
        "leadMagnet", "vsl", "bio", "facebookAds", "emails", "sms",
        "appointmentReminders", "media", "funnelCopy",
    ),
    3: ("setterScript", "salesScripts"),
}

SECTION_PHASE = {sid: phase for phase, sids in PHASES.items() for sid in sids}

ALL_SECTIONS = tuple(sid for sids in PHASES.values() for sid in sids)

# Sections that can be edited and synced but carry no approval gate.
AUXILIARY_SECTIONS = ("colors",)

SECTION_TITLES = {
    "idealClient": "Ideal Client",
    "message": "Message",
    "story": "Story",
    "offer": "Offer",
    "leadMagnet": "Lead Magnet",
    "vsl": "VSL Script",
    "bio": "Bio",
    "facebookAds": "Facebook Ads",
    "emails": "Email Sequence",
    "sms": "SMS Sequence",
    "appointmentReminders": "Appointment Reminders",
    "media": "Media",
    "funnelCopy": "Funnel Copy",
    "setterScript": "Setter Script",
    "salesScripts": "Sales Scripts",
    "colors": "Brand Colors",
}


def phase_of(section_id):
    """Return the phase a section belongs to, or 1 for unknown sections."""
    return SECTION_PHASE.get(section_id, 1)


def is_known_section(section_id):
    return section_id in SECTION_PHASE or section_id in AUXILIARY_SECTIONS


# ═════════════════════════════════════════════════════════════════════════════
# Field placement
# ═════════════════════════════════════════════════════════════════════════════

SECTION_WRAPPERS = {
    "facebookAds": "facebookAds",
    "emails": "emailSequence",
    "sms": "smsSequence",
    "appointmentReminders": "appointmentReminders",
}

FIELD_PATHS = {
    "idealClient": {
        "bestIdealClient": [["idealClientSnapshot", "bestIdealClient"]],
        "top3Challenges": [
            ["idealClientSnapshot", "topChallenges"],
            ["idealClientSnapshot", "top3Challenges"],
        ],
        "whatTheyWant": [
            ["idealClientSnapshot", "whatTheyWant"],
            ["idealClientSnapshot", "top3Desires"],
        ],
        "whatMakesThemPay": [
            ["idealClientSnapshot", "whatMakesThemPay"],
            ["idealClientSnapshot", "topTriggers"],
        ],
        "howToTalkToThem": [
            ["idealClientSnapshot", "howToTalkToThem"],
            ["idealClientSnapshot", "wordsTheyUse"],
        ],
    },
    "message": {
        "oneLineMessage": [
            ["oneLineMessage"],
            ["signatureMessage", "oneLiner"],
            ["signatureMessage", "oneLineMessage"],
        ],
        "spokenIntroduction": [
            ["spokenIntroduction"],
            ["signatureMessage", "spokenVersion"],
            ["signatureMessage", "spokenIntroduction"],
        ],
        "powerPositioningLines": [
            ["powerPositioningLines"],
            ["signatureMessage", "powerPositioningLines"],
        ],
        "topOutcomes": [
            ["topOutcomes"],
            ["signatureMessage", "topThreeOutcomes"],
            ["signatureMessage", "topOutcomes"],
        ],
    },
    "story": {
        "bigIdea": [["bigIdea"], ["signatureStory", "bigIdea"], ["signatureStory", "coreConcept"]],
        "networkingStory": [["networkingStory"], ["signatureStory", "networkingStory"]],
        "stageStory": [["stageStory"], ["signatureStory", "stageStory"], ["signatureStory", "fullStory"]],
        "oneLinerStory": [["oneLinerStory"], ["signatureStory", "oneLinerStory"]],
        "socialPostVersion": [["socialPostVersion"], ["signatureStory", "socialPostVersion"]],
        "pullQuotes": [["pullQuotes"], ["signatureStory", "pullQuotes"]],
        "emailStory": [["emailStory"], ["signatureStory", "emailStory"]],
    },
    "offer": {
        "offerMode": [["offerMode"], ["signatureOffer", "offerMode"]],
        "offerName": [["offerName"], ["signatureOffer", "offerName"]],
        "sevenStepBlueprint": [["sevenStepBlueprint"], ["signatureOffer", "sevenStepBlueprint"]],
        "tier1WhoItsFor": [
            ["tier1WhoItsFor"], ["signatureOffer", "tier1WhoItsFor"], ["signatureOffer", "whoItsFor"],
        ],
        "tier1Promise": [
            ["tier1Promise"], ["signatureOffer", "tier1Promise"], ["signatureOffer", "thePromise"],
        ],
        "tier1Timeframe": [["tier1Timeframe"], ["signatureOffer", "tier1Timeframe"]],
        "tier1Deliverables": [
            ["tier1Deliverables"], ["signatureOffer", "tier1Deliverables"], ["signatureOffer", "whatTheyGet"],
        ],
        "tier1RecommendedPrice": [
            ["tier1RecommendedPrice"],
            ["signatureOffer", "tier1RecommendedPrice"],
            ["signatureOffer", "recommendedPrice"],
        ],
        "tier2WhoItsFor": [["tier2WhoItsFor"], ["signatureOffer", "tier2WhoItsFor"]],
        "tier2Promise": [["tier2Promise"], ["signatureOffer", "tier2Promise"]],
        "tier2Timeframe": [["tier2Timeframe"], ["signatureOffer", "tier2Timeframe"]],
        "tier2Deliverables": [["tier2Deliverables"], ["signatureOffer", "tier2Deliverables"]],
        "tier2RecommendedPrice": [["tier2RecommendedPrice"], ["signatureOffer", "tier2RecommendedPrice"]],
        "offerPromise": [["offerPromise"], ["signatureOffer", "offerPromise"]],
    },
    "leadMagnet": {
        "mainTitle": [
            ["leadMagnet", "concept", "title"],
            ["leadMagnet", "titleAndHook", "mainTitle"],
            ["leadMagnet", "mainTitle"],
        ],
        "subtitle": [
            ["leadMagnet", "concept", "subtitle"],
            ["leadMagnet", "titleAndHook", "subtitle"],
            ["leadMagnet", "subtitle"],
        ],
        "coreDeliverables": [["leadMagnet", "coreDeliverables"]],
        "optInHeadline": [
            ["leadMagnet", "landingPageCopy", "headline"],
            ["leadMagnet", "leadMagnetCopy", "headline"],
        ],
        "bullets": [
            ["leadMagnet", "landingPageCopy", "bulletPoints"],
            ["leadMagnet", "leadMagnetCopy", "bulletPoints"],
        ],
        "ctaButtonText": [
            ["leadMagnet", "landingPageCopy", "ctaButton"],
            ["leadMagnet", "leadMagnetCopy", "ctaButton"],
        ],
    },
    "colors": {
        "colorPalette": [["colorPalette"]],
    },
}


def has_path(tree, path):
    current = tree
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return False
        current = current[key]
    return True


def get_path(tree, path, default=None):
    current = tree
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


def set_path(tree, path, value):
    """Assign ``value`` at ``path``, replacing non-record intermediates with ``{}``."""
    current = tree
    for key in path[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]
    current[path[-1]] = value


def pick_path(tree, candidates):
    """First candidate already present in ``tree``, else the first candidate."""
    for path in candidates:
        if has_path(tree, path):
            return path
    return candidates[0]


# ═════════════════════════════════════════════════════════════════════════════
# Dependencies between sections
# ═════════════════════════════════════════════════════════════════════════════

SECTION_DEPENDENCIES = {
    "offer.offerName": {
        "used_in": ["setterScript", "salesScripts", "emails", "vsl"],
        "placeholder": re.compile(r"\{offer_name\}|your program|the program|our program", re.I),
    },
    "leadMagnet.mainTitle": {
        "used_in": ["facebookAds", "emails", "sms", "funnelCopy"],
        "placeholder": re.compile(r"\{lead_magnet\}|free gift|your free guide|the free guide", re.I),
    },
    "message.oneLineMessage": {
        "used_in": ["bio", "funnelCopy"],
        "placeholder": re.compile(r"\{one_liner\}", re.I),
    },
}


def get_dependent_sections(section_id, field_id=None):
    """Sections that reuse values from ``section_id`` (optionally one field)."""
    if field_id is not None:
        dep = SECTION_DEPENDENCIES.get(f"{section_id}.{field_id}")
        return list(dep["used_in"]) if dep else []
    seen = []
    prefix = f"{section_id}."
    for key, dep in SECTION_DEPENDENCIES.items():
        if key.startswith(prefix):
            for sid in dep["used_in"]:
                if sid not in seen:
                    seen.append(sid)
    return seen


def check_dependency_impact(section_id, field_id):
    """Describe which sections an edit to one field may invalidate, or None."""
    affected = get_dependent_sections(section_id, field_id)
    if not affected:
        return None
    return {
        "field_path": f"{section_id}.{field_id}",
        "affected_sections": affected,
        "message": (
            f'Updating "{field_id}" may affect {len(affected)} other sections: '
            + ", ".join(affected)
        ),
    }


def resolve_placeholders(content, source_values):
    """Replace dependency placeholders in a section tree.

    ``source_values`` maps ``"section.field"`` to the upstream string value.
    Only string leaves are rewritten; keys are left alone.
    """
    replacements = []
    for key, dep in SECTION_DEPENDENCIES.items():
        value = source_values.get(key)
        if isinstance(value, str) and value:
            replacements.append((dep["placeholder"], value))
    if not replacements:
        return content

    def _walk(node):
        if isinstance(node, dict):
            return {k: _walk(v) for k, v in node.items()}
        if isinstance(node, list):
            return [_walk(v) for v in node]
        if isinstance(node, str):
            for pattern, value in replacements:
                node = pattern.sub(lambda _m, v=value: v, node)
            return node
        return node

    return _walk(content)


# ═════════════════════════════════════════════════════════════════════════════
# Schema versions
# ═════════════════════════════════════════════════════════════════════════════

CURRENT_SCHEMA_VERSION = 3

# Wrapper key used by the earliest generations → canonical wrapper key.
_LEGACY_WRAPPERS = {
    "message": ("message", "signatureMessage"),
    "story": ("story", "signatureStory"),
    "offer": ("offer", "signatureOffer"),
    "idealClient": ("idealClient", "idealClientSnapshot"),
}

_IDEAL_CLIENT_KEYS = {
    "bestIdealClient", "topChallenges", "top3Challenges", "whatTheyWant",
    "top3Desires", "whatMakesThemPay", "topTriggers", "howToTalkToThem", "wordsTheyUse",
}


def _upgrade_v1_to_v2(section_id, content):
    """Rename section-named wrappers and lift a flat ideal-client snapshot."""
    legacy = _LEGACY_WRAPPERS.get(section_id)
    if legacy:
        old_key, new_key = legacy
        if isinstance(content.get(old_key), dict) and new_key not in content:
            content[new_key] = content.pop(old_key)
    if section_id == "idealClient" and "idealClientSnapshot" not in content:
        flat = {k: content.pop(k) for k in list(content) if k in _IDEAL_CLIENT_KEYS}
        if flat:
            content["idealClientSnapshot"] = flat
    return content


def _upgrade_v2_to_v3(section_id, content):
    """Flatten the legacy ``ads`` array into the per-ad facebookAds fields."""
    if section_id != "facebookAds":
        return content
    wrapper = content.get("facebookAds") if isinstance(content.get("facebookAds"), dict) else content
    ads = wrapper.get("ads")
    if not isinstance(ads, list) or not ads:
        return content
    flat = {}
    for prefix, ad in zip(("shortAd1", "shortAd2", "longAd"), ads):
        if not isinstance(ad, dict):
            continue
        flat[f"{prefix}Headline"] = ad.get("headline", "")
        flat[f"{prefix}PrimaryText"] = ad.get("primaryText", "")
        flat[f"{prefix}CTA"] = ad.get("callToActionButton") or ad.get("cta", "")
    wrapper.pop("ads")
    wrapper.update(flat)
    if wrapper is content:
        return {"facebookAds": content}
    return content


_UPGRADERS = {
    1: _upgrade_v1_to_v2,
    2: _upgrade_v2_to_v3,
}


def upgrade_document(section_id, content, from_version):
    """Apply every upgrader from ``from_version`` to the current version.

    Returns ``(content, version)``.  The input tree is never mutated.
    """
    version = from_version or 1
    upgraded = copy.deepcopy(content) if isinstance(content, dict) else {}
    while version < CURRENT_SCHEMA_VERSION:
        upgraded = _UPGRADERS[version](section_id, upgraded)
        version += 1
    return upgraded, version
