"""Tests for backend-mode routing of usage writes."""

from __future__ import annotations

import logging
from datetime import date

import pytest

from dualstore.core.backend_mode import BackendModeSelector
from dualstore.core.container import Container
from dualstore.db.session import Database
from dualstore.errors import DuplicateCompletionError
from dualstore.services.legacy import LegacyTable
from dualstore.services.legacy_writers import UsageFields
from dualstore.services.usage import (
    HABIT_USAGE_BACKEND,
    OVERTUIGING_USAGE_BACKEND,
    PERSONAL_GOAL_USAGE_BACKEND,
    UsageService,
)

from tests.conftest import make_user
from tests.fakes import FakeLegacyStore, legacy_id

DAY = date(2025, 6, 15)


@pytest.mark.asyncio
async def test_legacy_only_finds_before_creating(
    container: Container, legacy: FakeLegacyStore
) -> None:
    usage = container.usage

    first = await usage.record_habit_usage(legacy_id(1), "recMETHOD00000001", DAY)
    second = await usage.record_habit_usage(legacy_id(1), "recMETHOD00000001", DAY)

    assert first.created is True
    assert second == first.__class__(first.id, created=False)
    assert len(legacy.records(LegacyTable.HABIT_USAGE)) == 1
    assert await usage.list_habit_method_ids(legacy_id(1), DAY) == ["recMETHOD00000001"]


@pytest.mark.asyncio
async def test_primary_writes_relationally(
    container: Container, legacy: FakeLegacyStore, flags: dict[str, str], database: Database
) -> None:
    flags[HABIT_USAGE_BACKEND] = "postgres_primary"
    user_id = make_user(database)

    first = await container.usage.record_habit_usage(user_id, "method-1", DAY)
    second = await container.usage.record_habit_usage(user_id, "method-1", DAY)

    assert first.created is True
    assert second.created is False
    assert second.id == first.id
    assert sum(legacy.calls.values()) == 0
    assert await container.usage.list_habit_method_ids(user_id, DAY) == ["method-1"]


@pytest.mark.asyncio
async def test_primary_personal_goal_usage(
    container: Container, legacy: FakeLegacyStore, flags: dict[str, str], database: Database
) -> None:
    flags[PERSONAL_GOAL_USAGE_BACKEND] = "primary"
    user_id = make_user(database)

    result = await container.usage.record_personal_goal_usage(user_id, "goal-1", DAY)

    assert result.created is True
    assert legacy.records(LegacyTable.PERSONAL_GOAL_USAGE) == []


@pytest.mark.asyncio
async def test_primary_without_relational_store_falls_back(legacy: FakeLegacyStore) -> None:
    usage = UsageService(BackendModeSelector({HABIT_USAGE_BACKEND: "primary"}), legacy)

    result = await usage.record_habit_usage(legacy_id(1), "recMETHOD00000001", DAY)

    assert result.created is True
    assert legacy.calls["create_record"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["legacy_only", "primary"])
async def test_belief_completion_is_once_only(
    container: Container, flags: dict[str, str], mode: str
) -> None:
    flags[OVERTUIGING_USAGE_BACKEND] = mode

    await container.usage.complete_overtuiging("user-1", "belief-1", DAY, program_id="prog-1")
    with pytest.raises(DuplicateCompletionError):
        await container.usage.complete_overtuiging("user-1", "belief-1", date(2025, 6, 16))


@pytest.mark.asyncio
async def test_shadow_read_logs_divergence(
    container: Container,
    legacy: FakeLegacyStore,
    flags: dict[str, str],
    caplog: pytest.LogCaptureFixture,
) -> None:
    flags[HABIT_USAGE_BACKEND] = "shadow_read"
    legacy.seed(
        LegacyTable.HABIT_USAGE,
        legacy_id(9),
        {
            UsageFields.USER: [legacy_id(1)],
            UsageFields.METHOD: ["recMETHOD00000001"],
            UsageFields.DATE: DAY.isoformat(),
        },
    )

    with caplog.at_level(logging.WARNING, logger="dualstore.services.usage"):
        method_ids = await container.usage.list_habit_method_ids(legacy_id(1), DAY)

    assert method_ids == ["recMETHOD00000001"]
    assert "shadow read mismatch" in caplog.text


@pytest.mark.asyncio
async def test_shadow_read_writes_go_to_legacy(
    container: Container, legacy: FakeLegacyStore, flags: dict[str, str]
) -> None:
    flags[HABIT_USAGE_BACKEND] = "shadow_read"

    await container.usage.record_habit_usage(legacy_id(1), "recMETHOD00000001", DAY)

    assert legacy.calls["create_record"] == 1
