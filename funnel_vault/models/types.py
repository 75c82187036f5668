"""
Canonical encode/decode boundary for nested content.

Section documents and field values are JSON trees (dict / list / str / int /
float / bool / None).  Older rows were sometimes written double-serialized,
i.e. the JSON column holds a *string* that itself contains JSON.  The column
types below are the only place that knows about that: services always receive
a decoded tree and never call ``json.loads`` themselves.

Parse failures are recovered here (ParseFailure never propagates): an
unparsable document string decodes to ``{}`` and a warning is logged.
"""

import json
import logging

from sqlalchemy.types import JSON, TypeDecorator

logger = logging.getLogger(__name__)


def decode_tree(raw):
    """Decode a possibly string-encoded JSON tree.

    Returns the decoded value, or ``raw`` unchanged when it is not a string or
    does not look like JSON.  Raises ``ValueError`` on a malformed JSON string
    so callers can choose their own fallback.
    """
    if not isinstance(raw, str):
        return raw
    trimmed = raw.strip()
    if not trimmed.startswith(("{", "[", '"')):
        return raw
    return json.loads(trimmed)


class JSONContent(TypeDecorator):
    """Nested section content.  Always yields a dict on read."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return {}
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return {}
        if isinstance(value, str):
            try:
                value = decode_tree(value)
                # double-serialized twice over
                if isinstance(value, str):
                    value = decode_tree(value)
            except ValueError:
                logger.warning("Unparsable section content string (%d chars), using empty record", len(value))
                return {}
        if not isinstance(value, dict):
            logger.warning("Section content is %s, not a record; using empty record", type(value).__name__)
            return {}
        return value


class JSONValue(TypeDecorator):
    """Field value: scalar, ordered list or nested record."""

    impl = JSON
    cache_ok = True

    def process_result_value(self, value, dialect):
        # Array/object values written by older code hold a JSON string.  Only
        # strings shaped like a container are decoded; anything that fails to
        # parse is plain text and comes back as stored.
        if not isinstance(value, str):
            return value
        trimmed = value.strip()
        if not trimmed.startswith(("{", "[")):
            return value
        try:
            return decode_tree(trimmed)
        except ValueError:
            return value
