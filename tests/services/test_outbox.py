"""Tests for the transactional outbox and its drain state machine."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from dualstore.db.session import Database
from dualstore.db.time import as_utc
from dualstore.errors import LegacyStoreDisabledError, LegacyStoreError
from dualstore.models import OutboxStatus, SyncDeadLetter, SyncOutbox
from dualstore.services.id_map import IdMap
from dualstore.services.legacy import LegacyTable
from dualstore.services.legacy_writers import LegacyWriter, UsageFields
from dualstore.services.outbox import (
    EntityType,
    EventType,
    Outbox,
    OutboxEvent,
    compute_backoff_seconds,
    derive_idempotency_key,
)

from tests.fakes import FakeLegacyStore, ManualClock, legacy_id, unavailable

START = datetime(2025, 6, 15, 8, 0, tzinfo=UTC)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture()
def outbox(database: Database, clock: ManualClock) -> Outbox:
    return Outbox(database, max_retries=3, retry_base_seconds=5, retry_max_seconds=3600, clock=clock)


@pytest.fixture()
def writer(database: Database, legacy: FakeLegacyStore) -> LegacyWriter:
    return LegacyWriter(legacy, IdMap(database))


def habit_event(method: str = "recMETHOD00000001", **overrides) -> OutboxEvent:
    fields = {
        "event_type": EventType.UPSERT,
        "entity_type": EntityType.HABIT_USAGE,
        "entity_id": "habit-1",
        "payload": {"userId": legacy_id(1), "methodId": method, "date": "2025-06-15"},
    }
    fields.update(overrides)
    return OutboxEvent(**fields)


def all_rows(database: Database) -> list[SyncOutbox]:
    with database.transaction() as db:
        return list(db.scalars(select(SyncOutbox).order_by(SyncOutbox.id)).all())


def test_duplicate_enqueue_is_a_noop(outbox: Outbox, database: Database) -> None:
    outbox.enqueue(habit_event())
    outbox.enqueue(habit_event())

    rows = all_rows(database)
    assert len(rows) == 1
    assert rows[0].status == OutboxStatus.PENDING
    assert rows[0].attempt_count == 0


def test_different_payload_is_a_new_event(outbox: Outbox, database: Database) -> None:
    outbox.enqueue(habit_event())
    outbox.enqueue(habit_event(method="recMETHOD00000002"))

    assert len(all_rows(database)) == 2


def test_idempotency_key_ignores_payload_key_order() -> None:
    first = derive_idempotency_key("upsert", "habit_usage", "h1", {"a": 1, "b": 2})
    second = derive_idempotency_key("upsert", "habit_usage", "h1", {"b": 2, "a": 1})
    assert first == second
    assert first != derive_idempotency_key("delete", "habit_usage", "h1", {"a": 1, "b": 2})


def test_enqueue_joins_caller_transaction(outbox: Outbox, database: Database) -> None:
    with pytest.raises(RuntimeError):
        with database.transaction() as db:
            outbox.enqueue(habit_event(), session=db)
            raise RuntimeError("roll back")

    assert all_rows(database) == []


def test_claim_is_at_most_once(outbox: Outbox) -> None:
    outbox.enqueue(habit_event())

    first = outbox.claim_batch(10)
    second = outbox.claim_batch(10)

    assert len(first) == 1
    assert first[0].attempt_count == 1
    assert second == []


def test_claim_orders_by_priority(outbox: Outbox) -> None:
    outbox.enqueue(habit_event(entity_id="late", priority=100))
    outbox.enqueue(habit_event(entity_id="urgent", priority=10))

    claimed = outbox.claim_batch(10)

    assert [event.entity_id for event in claimed] == ["urgent", "late"]


def test_claim_skips_events_not_yet_due(outbox: Outbox, clock: ManualClock) -> None:
    outbox.enqueue(habit_event())
    event = outbox.claim_batch(1)[0]
    outbox.mark_retry(event, "boom")

    assert outbox.claim_batch(10) == []
    clock.advance(seconds=5)
    assert len(outbox.claim_batch(10)) == 1


@pytest.mark.asyncio
async def test_successful_delivery_marks_done_and_maps_id(
    outbox: Outbox, writer: LegacyWriter, legacy: FakeLegacyStore, database: Database
) -> None:
    outbox.enqueue(habit_event())

    result = await outbox.process_batch(writer, 10)

    assert (result.claimed, result.delivered) == (1, 1)
    [created] = legacy.records(LegacyTable.HABIT_USAGE)
    assert created.fields[UsageFields.USER] == [legacy_id(1)]
    assert IdMap(database).find_legacy_id("habit_usage", "habit-1") == created.id
    [row] = all_rows(database)
    assert row.status == OutboxStatus.DONE
    assert row.processed_at is not None


@pytest.mark.asyncio
async def test_transient_failure_retries_with_exponential_backoff(
    outbox: Outbox, writer: LegacyWriter, legacy: FakeLegacyStore, database: Database,
    clock: ManualClock,
) -> None:
    legacy.fail_with = unavailable()
    outbox.enqueue(habit_event())

    result = await outbox.process_batch(writer, 10)
    [row] = all_rows(database)
    assert result.retried == 1
    assert row.status == OutboxStatus.PENDING
    assert row.attempt_count == 1
    assert as_utc(row.next_attempt_at) == START + timedelta(seconds=5)

    clock.advance(seconds=5)
    await outbox.process_batch(writer, 10)
    [row] = all_rows(database)
    assert row.attempt_count == 2
    assert as_utc(row.next_attempt_at) == clock.now + timedelta(seconds=10)
    assert "legacy store down" in row.last_error


@pytest.mark.asyncio
async def test_exhausted_retries_move_to_dead_letter(
    outbox: Outbox, writer: LegacyWriter, legacy: FakeLegacyStore, database: Database,
    clock: ManualClock,
) -> None:
    legacy.fail_with = unavailable()
    outbox.enqueue(habit_event())

    for _ in range(3):
        await outbox.process_batch(writer, 10)
        clock.advance(hours=1)

    [row] = all_rows(database)
    assert row.status == OutboxStatus.DEAD_LETTER
    assert row.attempt_count == 3
    with database.transaction() as db:
        [dead] = db.scalars(select(SyncDeadLetter)).all()
    assert dead.outbox_id == row.id
    assert dead.attempt_count == 3
    assert dead.entity_type == "habit_usage"

    # Terminal: never claimed again.
    result = await outbox.process_batch(writer, 10)
    assert result.claimed == 0


@pytest.mark.asyncio
async def test_rejected_request_dead_letters_immediately(
    outbox: Outbox, writer: LegacyWriter, legacy: FakeLegacyStore, database: Database
) -> None:
    legacy.fail_with = LegacyStoreError("Unknown field name", status_code=422)
    outbox.enqueue(habit_event())

    result = await outbox.process_batch(writer, 10)

    assert result.dead_lettered == 1
    [row] = all_rows(database)
    assert row.status == OutboxStatus.DEAD_LETTER
    assert row.attempt_count == 1


@pytest.mark.asyncio
async def test_missing_reference_is_retried(
    outbox: Outbox, writer: LegacyWriter, database: Database
) -> None:
    outbox.enqueue(
        habit_event(payload={"userId": "not-synced-yet", "methodId": "m", "date": "2025-06-15"})
    )

    result = await outbox.process_batch(writer, 10)

    assert result.retried == 1
    [row] = all_rows(database)
    assert "mapping missing" in row.last_error


def test_stale_claims_are_released(outbox: Outbox, clock: ManualClock, database: Database) -> None:
    outbox.enqueue(habit_event())
    outbox.claim_batch(1)

    assert outbox.release_stale_claims(timedelta(minutes=5)) == 0
    clock.advance(minutes=6)
    assert outbox.release_stale_claims(timedelta(minutes=5)) == 1

    [row] = all_rows(database)
    assert row.status == OutboxStatus.PENDING
    assert row.attempt_count == 1


@pytest.mark.parametrize(
    ("attempt", "expected"), [(0, 5), (1, 5), (2, 10), (3, 20), (5, 80), (30, 3600)]
)
def test_compute_backoff_seconds(attempt: int, expected: int) -> None:
    assert compute_backoff_seconds(attempt, 5, 3600) == expected


@pytest.mark.asyncio
async def test_disabled_legacy_store_stops_the_drain(
    outbox: Outbox, writer: LegacyWriter, legacy: FakeLegacyStore, database: Database
) -> None:
    legacy.fail_with = LegacyStoreDisabledError("Legacy store credentials are not configured")
    outbox.enqueue(habit_event())

    with pytest.raises(LegacyStoreDisabledError):
        await outbox.process_batch(writer, 10)

    [row] = all_rows(database)
    assert row.status == OutboxStatus.PENDING
    with database.transaction() as db:
        assert db.scalars(select(SyncDeadLetter)).all() == []


@pytest.mark.asyncio
async def test_disabled_legacy_store_releases_the_whole_batch(
    outbox: Outbox, writer: LegacyWriter, legacy: FakeLegacyStore, database: Database
) -> None:
    legacy.fail_with = LegacyStoreDisabledError("Legacy store credentials are not configured")
    for entity_id in ("h1", "h2", "h3"):
        outbox.enqueue(habit_event(entity_id=entity_id))

    with pytest.raises(LegacyStoreDisabledError):
        await outbox.process_batch(writer, 10)

    rows = all_rows(database)
    assert [(r.entity_id, r.status, r.attempt_count) for r in rows] == [
        ("h1", OutboxStatus.PENDING, 0),
        ("h2", OutboxStatus.PENDING, 0),
        ("h3", OutboxStatus.PENDING, 0),
    ]
    assert len(outbox.claim_batch(10)) == 3


@pytest.mark.asyncio
async def test_processed_events_keep_their_outcome_when_drain_stops(
    outbox: Outbox, writer: LegacyWriter, legacy: FakeLegacyStore, database: Database, mocker
) -> None:
    for entity_id in ("h1", "h2", "h3"):
        outbox.enqueue(habit_event(entity_id=entity_id))
    real_write = writer.write

    async def write(event):
        if event.entity_id == "h2":
            raise LegacyStoreDisabledError("Legacy store credentials are not configured")
        await real_write(event)

    mocker.patch.object(writer, "write", side_effect=write)

    with pytest.raises(LegacyStoreDisabledError):
        await outbox.process_batch(writer, 10)

    statuses = {r.entity_id: (r.status, r.attempt_count) for r in all_rows(database)}
    assert statuses == {
        "h1": (OutboxStatus.DONE, 1),
        "h2": (OutboxStatus.PENDING, 0),
        "h3": (OutboxStatus.PENDING, 0),
    }
