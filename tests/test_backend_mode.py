"""Tests for backend-mode parsing, feature flags and identifier forms."""

import pytest

from dualstore.core.backend_mode import BackendMode, BackendModeSelector, parse_mode
from dualstore.db.ids import is_entity_id, is_legacy_record_id, is_uuid


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("legacy_only", BackendMode.LEGACY_ONLY),
        ("airtable_only", BackendMode.LEGACY_ONLY),
        ("shadow_read", BackendMode.SHADOW_READ),
        ("postgres_shadow_read", BackendMode.SHADOW_READ),
        ("primary", BackendMode.PRIMARY),
        (" POSTGRES_PRIMARY ", BackendMode.PRIMARY),
        ("postgres_primray", BackendMode.LEGACY_ONLY),
        ("", BackendMode.LEGACY_ONLY),
        (None, BackendMode.LEGACY_ONLY),
    ],
)
def test_parse_mode(raw, expected) -> None:
    assert parse_mode(raw) is expected


def test_selector_reads_per_entity_modes() -> None:
    selector = BackendModeSelector({"DATA_BACKEND_HABIT_USAGE": "postgres_primary"})
    assert selector.is_primary("DATA_BACKEND_HABIT_USAGE")
    assert selector.mode("DATA_BACKEND_OVERTUIGING_USAGE") is BackendMode.LEGACY_ONLY
    assert not selector.is_shadow_read("DATA_BACKEND_HABIT_USAGE")


@pytest.mark.parametrize(("raw", "expected"), [("true", True), ("1", True), ("yes", True),
                                               ("TRUE", False), ("on", False), ("0", False)])
def test_flag_truthy_values(raw, expected) -> None:
    assert BackendModeSelector({"FLAG": raw}).flag("FLAG") is expected


def test_flag_default_applies_only_when_missing() -> None:
    selector = BackendModeSelector({"SET": "false"})
    assert selector.flag("MISSING", default=True) is True
    assert selector.flag("SET", default=True) is False


def test_entity_id_forms() -> None:
    assert is_uuid("3f1c2a9e-8b7d-4c6e-9f0a-1b2c3d4e5f60")
    assert is_legacy_record_id("recAbCdEfGh123456")
    assert not is_legacy_record_id("recTooShort")
    assert not is_legacy_record_id("usrAbCdEfGh123456")
    assert is_entity_id("recAbCdEfGh123456")
    assert not is_entity_id("user-1")
