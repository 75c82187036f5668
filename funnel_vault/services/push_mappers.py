"""
Section → external key mapping for the sync pusher.

Each mapper takes the approved field values of one section as
``{field_id: value}`` and returns ``{external_key: string_value}``.
Sections without a dedicated mapper push each field under its own id.
Empty values are never pushed.
"""

import json

# Local SMS slot → template key.  sms7b has no slot of its own.
SMS_KEY_MAP = {
    "sms1": "optin_sms_1",
    "sms2": "optin_sms_2",
    "sms3": "optin_sms_3",
    "sms4": "optin_sms_4",
    "sms5": "optin_sms_5",
    "sms6": "optin_sms_6",
    "sms7a": "optin_sms_7",
    "sms8a": "optin_sms_8_morning",
    "sms8b": "optin_sms_8_afternoon",
    "sms8c": "optin_sms_8_evening",
    "sms9": "optin_sms_9",
    "sms10": "optin_sms_10",
    "sms11": "optin_sms_11",
    "sms12": "optin_sms_12",
    "sms13": "optin_sms_13",
    "sms14": "optin_sms_14",
    "sms15a": "optin_sms_15_morning",
    "sms15b": "optin_sms_15_afternoon",
    "sms15c": "optin_sms_15_evening",
}

# Local email slot → template slot number.
EMAIL_SLOT_MAP = {
    "email1": 1, "email2": 2, "email3": 3, "email4": 4, "email5": 5,
    "email6": 6, "email7": 7, "email8a": 8, "email9": 9, "email10": 10,
    "email11": 11, "email12": 12, "email13": 13, "email14": 14, "email15a": 15,
}


def to_text(value):
    """Render a field value as the string the platform stores."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return "\n".join(value)
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _unwrap(fields, wrapper_key):
    nested = fields.get(wrapper_key)
    return nested if isinstance(nested, dict) else fields


def map_sms(fields):
    seq = _unwrap(fields, "smsSequence")
    out = {}
    for local_key, external_key in SMS_KEY_MAP.items():
        item = seq.get(local_key)
        if isinstance(item, dict):
            item = item.get("message") or item.get("body") or item.get("text") or ""
        text = to_text(item).strip()
        if text:
            out[external_key] = text
    return out


def map_emails(fields):
    seq = _unwrap(fields, "emailSequence")
    out = {}
    for local_key, slot in EMAIL_SLOT_MAP.items():
        email = seq.get(local_key)
        if not isinstance(email, dict):
            continue
        parts = (
            (f"Optin_Email_Subject {slot}", email.get("subject")),
            (f"Optin_Email_Preheader {slot}", email.get("preview") or email.get("preheader")),
            (f"Optin_Email_Body {slot}", email.get("body")),
        )
        for key, value in parts:
            if value:
                out[key] = to_text(value)
    return out


def map_message(fields):
    out = {}
    if fields.get("oneLineMessage"):
        out["brand_tagline"] = to_text(fields["oneLineMessage"])
    return out


def map_offer(fields):
    out = {}
    if fields.get("offerName"):
        out["offer_name"] = to_text(fields["offerName"])
    if fields.get("tier1Promise"):
        out["offer_description"] = to_text(fields["tier1Promise"])
    return out


# ── Colors ─────────────────────────────────────────────────────────────────


def _luminance(hex_color):
    h = hex_color.lstrip("#")
    if len(h) == 3:
        h = "".join(c * 2 for c in h)
    try:
        rgb = [int(h[i:i + 2], 16) / 255 for i in (0, 2, 4)]
    except ValueError:
        return 1.0
    lin = [c / 12.92 if c <= 0.03928 else ((c + 0.055) / 1.055) ** 2.4 for c in rgb]
    return 0.2126 * lin[0] + 0.7152 * lin[1] + 0.0722 * lin[2]


def is_light(hex_color):
    if not isinstance(hex_color, str) or not hex_color.startswith("#"):
        return True
    return _luminance(hex_color) > 0.5


def contrasting_text(background):
    if not isinstance(background, str) or not background.startswith("#"):
        return "#000000"
    return "#000000" if is_light(background) else "#FFFFFF"


def map_colors(fields):
    palette = fields.get("colorPalette") if isinstance(fields.get("colorPalette"), dict) else fields

    def pick(*names, default):
        for name in names:
            value = palette.get(name)
            if isinstance(value, dict):
                value = value.get("hex")
            if isinstance(value, str) and value.startswith("#"):
                return value
        return default

    primary = pick("primary", "primaryColor", default="#000000")
    secondary = pick("secondary", "secondaryColor", default="#6B7280")
    accent = pick("accent", "tertiary", "accentColor", default=secondary)
    text = pick("text", "textColor", default="#1F2937")
    heading = pick("heading", "headingColor", default="#000000")
    cta = pick("cta", "ctaColor", default=primary)

    # Pages render on white, so light text/heading colors are darkened.
    text_on_white = "#1F2937" if is_light(text) else text
    heading_on_white = "#000000" if is_light(heading) else heading
    cta_text = contrasting_text(cta)

    return {
        "02_header_background_color": pick("background", default="#FFFFFF"),
        "02_optin_healine_text_colour": heading_on_white,
        "02_optin_subhealine_text_colour": text_on_white,
        "02_optin_cta_background_colour": cta,
        "02_optin_cta_text_colour": cta_text,
        "02_vsl_hero_headline_text_colour": heading_on_white,
        "02_vsl_hero_sub_headline_text_colour": text_on_white,
        "02_vsl_cta_background_colour": cta,
        "02_vsl_cta_text_colour": cta_text,
        "02_vsl_acknowledge_pill_bg_colour": accent,
        "02_vsl_acknowledge_pill_text_colour": contrasting_text(accent),
        "02_vsl_process_bullet_border_colour": accent,
    }


def map_fields_by_id(fields):
    out = {}
    for field_id, value in fields.items():
        text = to_text(value)
        if text.strip():
            out[field_id] = text
    return out


SECTION_MAPPERS = {
    "sms": map_sms,
    "emails": map_emails,
    "message": map_message,
    "offer": map_offer,
    "colors": map_colors,
}


def build_push_values(section_id, fields):
    """``{external_key: value}`` for one section's approved fields."""
    mapper = SECTION_MAPPERS.get(section_id, map_fields_by_id)
    return mapper(fields)
