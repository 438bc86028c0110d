"""Tests for dead-letter replay."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest
from sqlalchemy import select

from dualstore.db.session import Database
from dualstore.models import OutboxStatus, SyncDeadLetter, SyncOutbox
from dualstore.models.outbox import REPLAY_PRIORITY
from dualstore.services.dead_letter import DeadLetterService, replay_idempotency_key
from dualstore.services.outbox import EntityType, EventType, Outbox, OutboxEvent

from tests.fakes import ManualClock

START = datetime(2025, 6, 15, 8, 0, tzinfo=UTC)


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture()
def outbox(database: Database, clock: ManualClock) -> Outbox:
    return Outbox(database, max_retries=1, clock=clock)


@pytest.fixture()
def service(database: Database, outbox: Outbox, clock: ManualClock) -> DeadLetterService:
    return DeadLetterService(database, outbox, clock=clock)


@pytest.fixture()
def dead_letter_id(outbox: Outbox) -> int:
    outbox.enqueue(
        OutboxEvent(
            event_type=EventType.UPSERT,
            entity_type=EntityType.PERSONAL_GOAL,
            entity_id="goal-1",
            payload={"name": "Run"},
        )
    )
    event = outbox.claim_batch(1)[0]
    outbox.record_failure(event, RuntimeError("legacy rejected"))
    return _only_dead_letter_id(outbox.database)


def _only_dead_letter_id(database: Database) -> int:
    with database.transaction() as db:
        return db.scalars(select(SyncDeadLetter.id)).one()


def _outbox_rows(database: Database) -> list[SyncOutbox]:
    with database.transaction() as db:
        return list(db.scalars(select(SyncOutbox).order_by(SyncOutbox.id)).all())


def test_replay_unknown_id_returns_false(service: DeadLetterService, database: Database) -> None:
    assert service.replay(999) is False
    assert _outbox_rows(database) == []


def test_replay_creates_fresh_urgent_event(
    service: DeadLetterService, dead_letter_id: int, database: Database
) -> None:
    assert service.replay(dead_letter_id) is True

    original, replayed = _outbox_rows(database)
    assert original.status == OutboxStatus.DEAD_LETTER
    assert replayed.status == OutboxStatus.PENDING
    assert replayed.attempt_count == 0
    assert replayed.priority == REPLAY_PRIORITY
    assert replayed.payload == {"name": "Run"}
    assert replayed.idempotency_key != original.idempotency_key
    assert replayed.idempotency_key.startswith(f"replay:{dead_letter_id}:")


def test_each_replay_gets_a_new_key(
    service: DeadLetterService, dead_letter_id: int, database: Database
) -> None:
    service.replay(dead_letter_id)
    service.replay(dead_letter_id)

    rows = _outbox_rows(database)
    assert len(rows) == 3
    assert len({row.idempotency_key for row in rows}) == 3

    [record] = service.list_dead_letters()
    assert record.replay_count == 2


def test_replay_key_includes_sequence() -> None:
    first = replay_idempotency_key(7, START, 1)
    second = replay_idempotency_key(7, START, 2)
    assert first != second
    assert first.startswith("replay:7:")
