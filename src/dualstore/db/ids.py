"""Entity identifier helpers.

An entity id is either a relational UUID or a legacy record identifier
(``rec`` followed by 14 alphanumerics). Callers must accept both.
"""

from __future__ import annotations

import re

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-8][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
LEGACY_RECORD_ID_RE = re.compile(r"^rec[A-Za-z0-9]{14}$")


def is_uuid(value: str) -> bool:
    return bool(UUID_RE.match(value))


def is_legacy_record_id(value: str) -> bool:
    return bool(LEGACY_RECORD_ID_RE.match(value))


def is_entity_id(value: str) -> bool:
    """Return True if ``value`` is either identifier form."""
    return is_uuid(value) or is_legacy_record_id(value)
