"""Backend-mode selection and boolean feature flags.

Each migrated entity has its own ``DATA_BACKEND_*`` key deciding which store
is authoritative. Unknown or missing values always resolve to
``BackendMode.LEGACY_ONLY`` so a typo can never switch traffic to the new
store.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from enum import Enum

TRUTHY_VALUES = frozenset({"true", "1", "yes"})


class BackendMode(str, Enum):
    """Which store is authoritative for an entity."""

    LEGACY_ONLY = "legacy_only"  # read and write the legacy store only
    SHADOW_READ = "shadow_read"  # write legacy, verify against relational
    PRIMARY = "primary"  # write relational, propagate to legacy via outbox


_MODE_ALIASES: dict[str, BackendMode] = {
    "legacy_only": BackendMode.LEGACY_ONLY,
    "airtable_only": BackendMode.LEGACY_ONLY,
    "shadow_read": BackendMode.SHADOW_READ,
    "postgres_shadow_read": BackendMode.SHADOW_READ,
    "primary": BackendMode.PRIMARY,
    "postgres_primary": BackendMode.PRIMARY,
}


def parse_mode(raw: str | None) -> BackendMode:
    """Parse a raw configuration value, defaulting to the safest mode."""
    if raw is None:
        return BackendMode.LEGACY_ONLY
    return _MODE_ALIASES.get(raw.strip().lower(), BackendMode.LEGACY_ONLY)


class BackendModeSelector:
    """Resolve backend modes and feature flags from an environment-like mapping."""

    def __init__(self, source: Mapping[str, str] | None = None) -> None:
        self._source = source if source is not None else os.environ

    def mode(self, flag_name: str) -> BackendMode:
        """Return the backend mode configured under ``flag_name``."""
        return parse_mode(self._source.get(flag_name))

    def is_primary(self, flag_name: str) -> bool:
        return self.mode(flag_name) is BackendMode.PRIMARY

    def is_shadow_read(self, flag_name: str) -> bool:
        return self.mode(flag_name) is BackendMode.SHADOW_READ

    def flag(self, flag_name: str, default: bool = False) -> bool:
        """Read a boolean flag; only ``true``, ``1`` and ``yes`` are truthy."""
        raw = self._source.get(flag_name)
        if raw is None:
            return default
        return raw.strip() in TRUTHY_VALUES


def get_backend_mode_selector() -> BackendModeSelector:
    """Return a selector bound to the live process environment."""
    return BackendModeSelector()
