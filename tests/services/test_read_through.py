"""Tests for user read-through repair."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from dualstore.core.backend_mode import BackendModeSelector
from dualstore.core.container import Container
from dualstore.db.session import Database
from dualstore.models import SyncOutbox, UserStatus
from dualstore.services.legacy import LegacyRecord, LegacyTable
from dualstore.services.legacy_writers import UserFields
from dualstore.services.read_through import (
    READTHROUGH_FLAG,
    UserReadThrough,
    profile_from_record,
)

from tests.fakes import FakeLegacyStore, legacy_id

LEGACY_USER = {
    UserFields.EMAIL: "ann@example.com",
    UserFields.NAME: "Ann",
    UserFields.LANGUAGE_CODE: "en",
    UserFields.ROLE: "Gebruiker",
}


@pytest.fixture()
def seeded(legacy: FakeLegacyStore) -> FakeLegacyStore:
    legacy.seed(LegacyTable.USERS, legacy_id(1), LEGACY_USER)
    return legacy


@pytest.mark.asyncio
async def test_miss_is_repaired_then_served_relationally(
    container: Container, seeded: FakeLegacyStore, database: Database
) -> None:
    read_through = container.read_through

    first = await read_through.get_by_id(legacy_id(1))
    second = await read_through.get_by_id(legacy_id(1))

    assert first is not None
    assert first.email == "ann@example.com"
    assert first.language_code == "en"
    assert second == first
    assert seeded.calls["get_record"] == 1

    with database.transaction() as db:
        [marker] = db.scalars(select(SyncOutbox)).all()
    assert marker.entity_type == "user"
    assert marker.payload == {"userId": first.id, "legacyId": legacy_id(1)}


@pytest.mark.asyncio
async def test_lookup_by_email_queries_legacy_once(
    container: Container, seeded: FakeLegacyStore
) -> None:
    read_through = container.read_through

    first = await read_through.get_by_email("ANN@example.com")
    second = await read_through.get_by_email("ann@example.com")

    assert first is not None and second is not None
    assert second.id == first.id
    assert seeded.calls["list_records"] == 1


@pytest.mark.asyncio
async def test_lookup_by_email_ignores_legacy_casing(
    container: Container, legacy: FakeLegacyStore
) -> None:
    legacy.seed(
        LegacyTable.USERS, legacy_id(1), {**LEGACY_USER, UserFields.EMAIL: "Ann@Example.com"}
    )

    user = await container.read_through.get_by_email(" ann@example.com")

    assert user is not None
    assert user.email == "ann@example.com"


@pytest.mark.asyncio
async def test_legacy_miss_returns_none(container: Container, legacy: FakeLegacyStore) -> None:
    assert await container.read_through.get_by_id(legacy_id(9)) is None
    assert await container.read_through.get_by_email("nobody@example.com") is None


@pytest.mark.asyncio
async def test_relational_ids_never_fall_back(
    container: Container, legacy: FakeLegacyStore
) -> None:
    assert await container.read_through.get_by_id("3f1c2a9e-8b7d-4c6e-9f0a-1b2c3d4e5f60") is None
    assert legacy.calls["get_record"] == 0


@pytest.mark.asyncio
async def test_disabled_flag_skips_legacy(
    container: Container, seeded: FakeLegacyStore, flags: dict[str, str]
) -> None:
    flags[READTHROUGH_FLAG] = "false"

    assert await container.read_through.get_by_id(legacy_id(1)) is None
    assert seeded.calls["get_record"] == 0


@pytest.mark.asyncio
async def test_without_relational_store_returns_none(seeded: FakeLegacyStore) -> None:
    read_through = UserReadThrough(None, seeded, BackendModeSelector({}))

    assert await read_through.get_by_id(legacy_id(1)) is None
    assert seeded.calls["get_record"] == 0


def test_profile_requires_email() -> None:
    assert profile_from_record(LegacyRecord(id=legacy_id(1), fields={UserFields.NAME: "x"})) is None


def test_profile_maps_disabled_status() -> None:
    record = LegacyRecord(
        id=legacy_id(1),
        fields={UserFields.EMAIL: "a@b.be", UserFields.STATUS: "Geen toegang"},
    )
    profile = profile_from_record(record)
    assert profile is not None
    assert profile.status == UserStatus.DISABLED
    assert profile.legacy_id == legacy_id(1)
