"""Tests for reminder planning and reconciliation."""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from sqlalchemy import delete

from dualstore.core.container import RelationalComponents
from dualstore.db.session import Database
from dualstore.models import JobStatus, MethodUsage, ProgramSchedule
from dualstore.notifications.planner import NotificationPlanner, upcoming_dates_for_schedule
from dualstore.notifications.types import JobMode, ReminderMode
from dualstore.repositories.notification_preference_repo import PreferenceUpdate

from tests.conftest import make_personal_goal, make_program, make_user
from tests.fakes import ManualClock

BRUSSELS = "Europe/Brussels"


@pytest.fixture()
def clock() -> ManualClock:
    # Friday before the spring DST switch in Brussels.
    return ManualClock(datetime(2025, 3, 28, 8, 0, tzinfo=UTC))


@pytest.fixture()
def planner(
    database: Database, relational: RelationalComponents, clock: ManualClock
) -> NotificationPlanner:
    return NotificationPlanner(
        database,
        relational.preferences,
        relational.jobs,
        relational.programs,
        default_timezone=BRUSSELS,
        lookahead_days=14,
        clock=clock,
    )


def jobs_by_key(relational: RelationalComponents, user_id: str) -> dict[str, object]:
    return {job.dedupe_key: job for job in relational.jobs.list_for_user(user_id)}


def test_session_reminders_follow_local_time_across_dst(
    planner: NotificationPlanner, relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    _, (before_switch, after_switch) = make_program(
        database, user_id, [(date(2025, 3, 29), ["m1"]), (date(2025, 3, 31), ["m1"])]
    )

    result = planner.plan_for_user(user_id)

    assert result is not None
    assert result.generated == 4
    assert result.reminder_mode is ReminderMode.BOTH
    jobs = jobs_by_key(relational, user_id)
    first = jobs[f"session:{before_switch}:user:{user_id}:lead:60"]
    second = jobs[f"session:{after_switch}:user:{user_id}:lead:60"]
    assert first.fire_at == datetime(2025, 3, 29, 17, 0, tzinfo=UTC)
    assert second.fire_at == datetime(2025, 3, 31, 16, 0, tzinfo=UTC)
    assert first.status == JobStatus.PENDING
    assert first.payload["programScheduleId"] == before_switch
    assert first.payload["title"] == "Tijd voor je activiteit"

    daily = jobs[f"daily:user:{user_id}:date:2025-03-29:lead:60"]
    assert daily.mode == JobMode.DAILY_SUMMARY.value
    assert daily.payload["sessionCount"] == 1


def test_second_run_produces_the_same_jobs(
    planner: NotificationPlanner, relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    make_program(database, user_id, [(date(2025, 3, 29), ["m1"])])

    planner.plan_for_user(user_id)
    first = {key: job.id for key, job in jobs_by_key(relational, user_id).items()}
    planner.plan_for_user(user_id)
    second = jobs_by_key(relational, user_id)

    assert {key: job.id for key, job in second.items()} == first
    assert all(job.status == JobStatus.PENDING for job in second.values())


def test_sent_jobs_are_not_reset_by_replanning(
    planner: NotificationPlanner, relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    _, (schedule_id,) = make_program(database, user_id, [(date(2025, 3, 29), ["m1"])])
    planner.plan_for_user(user_id)
    key = f"session:{schedule_id}:user:{user_id}:lead:60"
    relational.jobs.mark_sent(jobs_by_key(relational, user_id)[key].id)

    planner.plan_for_user(user_id)

    assert jobs_by_key(relational, user_id)[key].status == JobStatus.SENT


def test_reminder_inside_quiet_hours_is_skipped(
    planner: NotificationPlanner, relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    make_program(database, user_id, [(date(2025, 3, 29), ["m1"])])
    relational.preferences.upsert(
        user_id, PreferenceUpdate(preferred_time_local="07:30", reminder_mode="session")
    )

    planner.plan_for_user(user_id)

    [job] = relational.jobs.list_for_user(user_id)
    assert job.status == JobStatus.SKIPPED_QUIET_HOURS
    assert job.mode == JobMode.SESSION.value


def test_removed_session_cancels_its_reminders(
    planner: NotificationPlanner, relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    _, (kept, removed) = make_program(
        database, user_id, [(date(2025, 3, 29), ["m1"]), (date(2025, 3, 30), ["m1"])]
    )
    planner.plan_for_user(user_id)

    with database.transaction() as db:
        db.execute(delete(ProgramSchedule).where(ProgramSchedule.id == removed))
    planner.plan_for_user(user_id)

    jobs = jobs_by_key(relational, user_id)
    assert jobs[f"session:{removed}:user:{user_id}:lead:60"].status == JobStatus.CANCELLED
    assert jobs[f"daily:user:{user_id}:date:2025-03-30:lead:60"].status == JobStatus.CANCELLED
    assert jobs[f"session:{kept}:user:{user_id}:lead:60"].status == JobStatus.PENDING


def test_completed_session_cancels_its_reminders(
    planner: NotificationPlanner, relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    _, (schedule_id,) = make_program(database, user_id, [(date(2025, 3, 29), ["m1"])])
    planner.plan_for_user(user_id)

    with database.transaction() as db:
        db.add(
            MethodUsage(
                user_id=user_id,
                method_id="m1",
                program_schedule_id=schedule_id,
                usage_date=date(2025, 3, 28),
            )
        )
    result = planner.plan_for_user(user_id)

    assert result.generated == 0
    statuses = {job.status for job in relational.jobs.list_for_user(user_id)}
    assert statuses == {JobStatus.CANCELLED}


def test_disabled_preferences_cancel_everything(
    planner: NotificationPlanner, relational: RelationalComponents, database: Database
) -> None:
    user_id = make_user(database)
    make_program(database, user_id, [(date(2025, 3, 29), ["m1"])])
    planner.plan_for_user(user_id)

    relational.preferences.upsert(user_id, PreferenceUpdate(enabled=False))
    result = planner.plan_for_user(user_id)

    assert result.generated == 0
    assert {job.status for job in relational.jobs.list_for_user(user_id)} == {JobStatus.CANCELLED}


def test_unknown_user_is_not_planned(planner: NotificationPlanner) -> None:
    assert planner.plan_for_user("ghost") is None


def test_personal_goal_reminders_on_scheduled_weekdays(
    planner: NotificationPlanner,
    relational: RelationalComponents,
    database: Database,
    clock: ManualClock,
) -> None:
    clock.now = datetime(2025, 6, 16, 8, 0, tzinfo=UTC)  # Monday
    user_id = make_user(database, language_code="en")
    goal_id = make_personal_goal(database, user_id, "Walk", ["Maandag", "Woensdag"])
    # Goal reminders are planned whatever the reminder mode.
    relational.preferences.upsert(user_id, PreferenceUpdate(reminder_mode="session"))

    result = planner.plan_for_user(user_id)

    assert result.generated == 4
    jobs = relational.jobs.list_for_user(user_id)
    assert [job.reminder_date for job in jobs] == [
        date(2025, 6, 16),
        date(2025, 6, 18),
        date(2025, 6, 23),
        date(2025, 6, 25),
    ]
    assert jobs[0].dedupe_key == f"pgoal:{goal_id}:user:{user_id}:date:2025-06-16:lead:60"
    assert jobs[0].personal_goal_id == goal_id
    assert jobs[0].payload["personalGoalName"] == "Walk"


def test_plan_for_all_users(
    planner: NotificationPlanner, relational: RelationalComponents, database: Database
) -> None:
    with_program = make_user(database, "a@example.com")
    make_program(database, with_program, [(date(2025, 3, 29), ["m1"])])
    opted_in = make_user(database, "b@example.com")
    relational.preferences.upsert(opted_in, PreferenceUpdate(enabled=True))
    make_user(database, "c@example.com")

    assert planner.plan_for_all_users() == 2
    assert len(relational.jobs.list_for_user(with_program)) == 2


def test_upcoming_dates_for_schedule() -> None:
    monday = date(2025, 6, 16)
    assert upcoming_dates_for_schedule(["Zondag"], monday, 7) == [date(2025, 6, 22)]
    assert upcoming_dates_for_schedule([], monday, 7) == []
    assert len(upcoming_dates_for_schedule(["Maandag"], monday, 14)) == 2
