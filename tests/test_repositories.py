"""Tests for the relational repositories and the outbox events they produce."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select

from dualstore.core.container import RelationalComponents
from dualstore.db.session import Database
from dualstore.errors import DuplicateCompletionError
from dualstore.models import HabitUsage, SubscriptionStatus, SyncOutbox, UserStatus
from dualstore.repositories.user_repo import LegacyUserProfile

from tests.conftest import make_user
from tests.fakes import legacy_id


def outbox_events(database: Database) -> list[tuple[str, str]]:
    with database.transaction() as db:
        rows = db.scalars(select(SyncOutbox).order_by(SyncOutbox.id)).all()
        return [(row.event_type, row.entity_type) for row in rows]


# ID map


def test_id_map_upsert_overwrites_legacy_id(relational: RelationalComponents) -> None:
    id_map = relational.id_map
    id_map.upsert("program", "prog-1", legacy_id(1))
    id_map.upsert("program", "prog-1", legacy_id(2))

    assert id_map.find_legacy_id("program", "prog-1") == legacy_id(2)
    assert id_map.find_relational_id("program", legacy_id(2)) == "prog-1"
    assert id_map.find_relational_id("program", legacy_id(1)) is None
    assert id_map.find_legacy_id("habit_usage", "prog-1") is None


# Users


def test_upsert_from_legacy_maps_and_finds_by_both_ids(relational: RelationalComponents) -> None:
    users = relational.users
    record = users.upsert_from_legacy(
        LegacyUserProfile(legacy_id=legacy_id(1), email="Ann@Example.com", name="Ann")
    )

    assert record.email == "ann@example.com"
    assert users.find_by_id(record.id) == record
    assert users.find_by_id(legacy_id(1)) == record
    assert users.find_by_email("ANN@example.com").id == record.id
    assert relational.id_map.find_legacy_id("user", record.id) == legacy_id(1)


def test_upsert_from_legacy_is_last_write_wins(relational: RelationalComponents) -> None:
    users = relational.users
    first = users.upsert_from_legacy(
        LegacyUserProfile(legacy_id=legacy_id(1), email="ann@example.com", name="Ann")
    )
    second = users.upsert_from_legacy(
        LegacyUserProfile(legacy_id=legacy_id(1), email="ann@example.com", name="Annie")
    )

    assert second.id == first.id
    assert users.find_by_id(first.id).name == "Annie"


def test_mark_deleted_only_changes_once(relational: RelationalComponents) -> None:
    users = relational.users
    record = users.upsert_from_legacy(
        LegacyUserProfile(legacy_id=legacy_id(1), email="ann@example.com")
    )

    assert users.mark_deleted(legacy_id(1)) is True
    assert users.mark_deleted(legacy_id(1)) is False
    assert users.find_by_id(record.id).status == UserStatus.DELETED
    assert users.mark_deleted("unknown-user") is False


def test_register_activity_updates_streak_and_enqueues(
    relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    users = relational.users

    users.register_activity(user_id, date(2025, 6, 14))
    state = users.register_activity(user_id, date(2025, 6, 15))
    again = users.register_activity(user_id, date(2025, 6, 15))

    assert (state.current_streak, state.longest_streak) == (2, 2)
    assert again == state
    record = users.find_by_id(user_id)
    assert record.last_active_date == date(2025, 6, 15)
    # Same-day re-entry writes nothing new.
    assert outbox_events(database) == [("upsert", "user"), ("upsert", "user")]


def test_register_activity_without_user_is_a_noop(
    relational: RelationalComponents, database: Database
) -> None:
    assert relational.users.register_activity("ghost", date(2025, 6, 15)) is None
    assert outbox_events(database) == []


# Habit usage


def test_habit_usage_repeat_is_idempotent(
    relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    habits = relational.habits

    first = habits.record(user_id, "method-1", date(2025, 6, 15))
    second = habits.record(user_id, "method-1", date(2025, 6, 15))

    assert second.id == first.id
    with database.transaction() as db:
        assert len(db.scalars(select(HabitUsage)).all()) == 1
    assert habits.list_method_ids_for_date(user_id, date(2025, 6, 15)) == ["method-1"]
    assert relational.users.find_by_id(user_id).current_streak == 1


def test_habit_usage_commits_row_streak_and_event_together(
    relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)

    relational.habits.record(user_id, "method-1", date(2025, 6, 15))

    assert outbox_events(database) == [("upsert", "user"), ("upsert", "habit_usage")]


def test_habit_usage_failure_before_event_rolls_back_the_row(
    relational: RelationalComponents, database: Database, mocker
) -> None:
    user_id = make_user(database)
    mocker.patch.object(relational.outbox, "enqueue", side_effect=RuntimeError("disk full"))

    with pytest.raises(RuntimeError):
        relational.habits.record(user_id, "method-1", date(2025, 6, 15))

    with database.transaction() as db:
        assert db.scalars(select(HabitUsage)).all() == []
        assert db.scalars(select(SyncOutbox)).all() == []
    assert relational.users.find_by_id(user_id).current_streak == 0


def test_habit_usage_in_failed_caller_transaction_leaves_nothing(
    relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)

    with pytest.raises(RuntimeError):
        with database.transaction() as db:
            relational.habits.record(user_id, "method-1", date(2025, 6, 15), session=db)
            raise RuntimeError("request aborted")

    with database.transaction() as db:
        assert db.scalars(select(HabitUsage)).all() == []
    assert outbox_events(database) == []


def test_habit_usage_delete_enqueues_delete(
    relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    habits = relational.habits
    habits.record(user_id, "method-1", date(2025, 6, 15))

    assert habits.delete(user_id, "method-1", date(2025, 6, 15)) is True
    assert habits.delete(user_id, "method-1", date(2025, 6, 15)) is False
    assert outbox_events(database)[-1] == ("delete", "habit_usage")


# Personal goal usage


def test_personal_goal_usage_is_unique_per_day(
    relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    goals = relational.personal_goals

    goals.record(user_id, "goal-1", date(2025, 6, 15))
    goals.record(user_id, "goal-1", date(2025, 6, 15))
    goals.record(user_id, "goal-1", date(2025, 6, 16))

    assert goals.counts_for_user_date(user_id, date(2025, 6, 15)) == {"goal-1": 1}
    assert goals.find(user_id, "goal-1", date(2025, 6, 16)) is not None
    assert relational.users.find_by_id(user_id).current_streak == 2


# Belief usage


def test_belief_completion_is_once_only(
    relational: RelationalComponents, database: Database
) -> None:
    beliefs = relational.beliefs

    created = beliefs.create("user-1", "belief-1", date(2025, 6, 15), program_id="prog-1")
    with pytest.raises(DuplicateCompletionError) as excinfo:
        beliefs.create("user-1", "belief-1", date(2025, 6, 16))

    assert excinfo.value.subject_id == "belief-1"
    assert beliefs.find("user-1", "belief-1").id == created.id
    assert beliefs.list_completed("user-1") == {"belief-1"}
    assert beliefs.list_completed_for_program("user-1", "prog-1") == {"belief-1"}
    assert outbox_events(database) == [("upsert", "overtuiging_usage")]


# Push subscriptions


def test_push_subscription_lifecycle(relational: RelationalComponents) -> None:
    subscriptions = relational.subscriptions
    created = subscriptions.upsert("user-1", "https://push.example/a", "key", "auth")
    assert created.status == SubscriptionStatus.ACTIVE

    assert subscriptions.revoke("user-1", "https://push.example/a") is True
    assert subscriptions.revoke("user-1", "https://push.example/a") is False
    assert subscriptions.list_active("user-1") == []

    subscriptions.mark_error(created.id, "timeout")
    refreshed = subscriptions.upsert(
        "user-1", "https://push.example/a", "key2", "auth2", user_agent="Firefox"
    )
    assert refreshed.id == created.id
    assert refreshed.status == SubscriptionStatus.ACTIVE
    assert refreshed.last_error is None
    assert refreshed.p256dh == "key2"

    subscriptions.mark_expired(created.id, "410 Gone")
    expired = subscriptions.find_by_endpoint("https://push.example/a")
    assert expired.status == SubscriptionStatus.EXPIRED
    assert expired.last_error == "410 Gone"


def test_mark_success_clears_error(relational: RelationalComponents) -> None:
    subscriptions = relational.subscriptions
    created = subscriptions.upsert("user-1", "https://push.example/b", "key", "auth")
    subscriptions.mark_error(created.id, "timeout")

    subscriptions.mark_success(created.id)

    [active] = subscriptions.list_active("user-1")
    assert active.last_error is None
    assert active.last_success_at is not None
