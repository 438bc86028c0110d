"""Tests for the background sync worker."""

from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from dualstore.core.container import RelationalComponents
from dualstore.errors import LegacyStoreDisabledError, LegacyStoreUnavailableError
from dualstore.models import OutboxStatus, SyncOutbox
from dualstore.services.full_sync import LegacyFullSync
from dualstore.services.legacy import LegacyTable
from dualstore.services.legacy_writers import UserFields
from dualstore.services.outbox import DrainResult, EntityType, EventType, OutboxEvent
from dualstore.services.sync_worker import SyncWorker, WorkerOptions

from tests.fakes import FakeLegacyStore, legacy_id, unavailable


def enqueue_goal(relational: RelationalComponents, entity_id: str = "goal-1") -> None:
    relational.outbox.enqueue(
        OutboxEvent(
            event_type=EventType.UPSERT,
            entity_type=EntityType.PERSONAL_GOAL,
            entity_id=entity_id,
            payload={"userId": legacy_id(1), "name": "Run"},
        )
    )


@pytest.fixture()
def worker(relational: RelationalComponents) -> SyncWorker:
    return SyncWorker(
        relational.outbox,
        relational.worker.writer,
        options=WorkerOptions(batch_size=5, poll_interval_seconds=0.1),
    )


@pytest.mark.asyncio
async def test_run_once_drains_the_outbox(
    relational: RelationalComponents, legacy: FakeLegacyStore
) -> None:
    enqueue_goal(relational)

    result = await relational.worker.run_once()

    assert result == DrainResult(claimed=1, delivered=1, retried=0, dead_lettered=0)
    assert len(legacy.records(LegacyTable.PERSONAL_GOALS)) == 1


@pytest.mark.asyncio
async def test_loop_stops_when_legacy_store_is_disabled(worker: SyncWorker, mocker) -> None:
    run_once = mocker.patch.object(
        worker, "run_once", side_effect=LegacyStoreDisabledError("no credentials")
    )

    await asyncio.wait_for(worker._run(), timeout=1)

    run_once.assert_awaited_once()


@pytest.mark.asyncio
async def test_loop_survives_legacy_outage(worker: SyncWorker, mocker) -> None:
    calls = 0

    async def flaky() -> DrainResult:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise LegacyStoreUnavailableError("down")
        worker._stopping.set()
        return DrainResult()

    mocker.patch.object(worker, "run_once", side_effect=flaky)

    await asyncio.wait_for(worker._run(), timeout=2)

    assert calls == 2


@pytest.mark.asyncio
async def test_start_and_stop(
    worker: SyncWorker, relational: RelationalComponents, legacy: FakeLegacyStore
) -> None:
    enqueue_goal(relational)

    await worker.start()
    for _ in range(50):
        if legacy.records(LegacyTable.PERSONAL_GOALS):
            break
        await asyncio.sleep(0.02)
    await worker.stop()

    assert len(legacy.records(LegacyTable.PERSONAL_GOALS)) == 1
    with relational.database.transaction() as db:
        assert db.scalars(select(SyncOutbox.status)).all() == [OutboxStatus.DONE]


def polling_worker(relational: RelationalComponents, legacy: FakeLegacyStore, **options):
    return SyncWorker(
        relational.outbox,
        relational.worker.writer,
        full_sync=LegacyFullSync(relational.database, legacy, relational.users, relational.id_map),
        options=WorkerOptions(batch_size=5, **options),
    )


@pytest.mark.asyncio
async def test_user_poll_runs_on_its_cadence(
    relational: RelationalComponents, legacy: FakeLegacyStore
) -> None:
    legacy.seed(LegacyTable.USERS, legacy_id(1), {UserFields.EMAIL: "ann@example.com"})
    worker = polling_worker(relational, legacy, user_poll_enabled=True, user_poll_seconds=60)

    await worker.run_once()
    await worker.run_once()

    assert relational.users.find_by_id(legacy_id(1)).email == "ann@example.com"
    assert legacy.calls["list_records"] == 1


@pytest.mark.asyncio
async def test_full_poll_reads_every_table(
    relational: RelationalComponents, legacy: FakeLegacyStore
) -> None:
    worker = polling_worker(relational, legacy, full_poll_enabled=True, full_poll_seconds=0)

    await worker.run_once()
    await worker.run_once()

    assert legacy.calls["list_records"] == 16


@pytest.mark.asyncio
async def test_polls_are_off_unless_enabled(
    relational: RelationalComponents, legacy: FakeLegacyStore
) -> None:
    await polling_worker(relational, legacy).run_once()

    assert legacy.calls["list_records"] == 0


@pytest.mark.asyncio
async def test_failed_poll_does_not_fail_the_cycle(
    relational: RelationalComponents, legacy: FakeLegacyStore
) -> None:
    legacy.fail_with = unavailable()
    worker = polling_worker(relational, legacy, user_poll_enabled=True)

    result = await worker.run_once()

    assert result == DrainResult()
    assert legacy.calls["list_records"] == 1
