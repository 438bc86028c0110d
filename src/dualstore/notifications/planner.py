"""Reminder planning.

For each user the planner derives the full set of reminders that should
exist (open program sessions, per-day summaries and personal-goal days
within the look-ahead window), upserts them by dedupe key and cancels
every other open job of that user. Running it twice without input changes
produces the same job set.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from dualstore.db.session import Database
from dualstore.db.time import utcnow
from dualstore.models import JobStatus
from dualstore.notifications.messages import (
    daily_summary_text,
    language_for,
    personal_goal_text,
    session_text,
)
from dualstore.notifications.time import (
    add_minutes,
    date_in_zone,
    is_time_inside_quiet_hours,
    resolve_timezone,
    time_in_zone,
    zoned_to_utc,
)
from dualstore.notifications.types import (
    JobCandidate,
    JobMode,
    NotificationPayload,
    NotificationPreferences,
    ReminderMode,
)
from dualstore.repositories.notification_job_repo import NotificationJobRepository
from dualstore.repositories.notification_preference_repo import NotificationPreferenceRepository
from dualstore.repositories.program_repo import ProgramRepository, ScheduledSession

logger = logging.getLogger(__name__)

# Index matches ``date.isoweekday() % 7`` (Sunday first).
DUTCH_WEEKDAYS = ("Zondag", "Maandag", "Dinsdag", "Woensdag", "Donderdag", "Vrijdag", "Zaterdag")


@dataclass(frozen=True)
class PlannerResult:
    user_id: str
    generated: int
    reminder_mode: ReminderMode


def upcoming_dates_for_schedule(
    schedule_days: tuple[str, ...] | list[str], today: date, lookahead_days: int
) -> list[date]:
    """Dates in ``[today, today + lookahead_days)`` whose Dutch weekday is scheduled."""
    wanted = set(schedule_days)
    dates = []
    for offset in range(lookahead_days):
        day = today + timedelta(days=offset)
        if DUTCH_WEEKDAYS[day.isoweekday() % 7] in wanted:
            dates.append(day)
    return dates


def build_job_candidate(
    preferences: NotificationPreferences,
    *,
    timezone: str,
    mode: JobMode,
    reminder_date: date,
    payload: NotificationPayload,
    dedupe_key: str,
    program_id: str | None = None,
    program_schedule_id: str | None = None,
    personal_goal_id: str | None = None,
) -> JobCandidate:
    """Compute ``fire_at`` and the initial status for one reminder."""
    base = zoned_to_utc(reminder_date, preferences.preferred_time_local, timezone)
    fire_at = add_minutes(base, -preferences.lead_minutes)
    quiet = is_time_inside_quiet_hours(
        time_in_zone(fire_at, timezone),
        preferences.quiet_hours_start,
        preferences.quiet_hours_end,
    )
    return JobCandidate(
        user_id=preferences.user_id,
        mode=mode,
        reminder_date=reminder_date,
        fire_at=fire_at,
        payload=payload.to_document(),
        dedupe_key=dedupe_key,
        status=JobStatus.SKIPPED_QUIET_HOURS if quiet else JobStatus.PENDING,
        program_id=program_id,
        program_schedule_id=program_schedule_id,
        personal_goal_id=personal_goal_id,
    )


class NotificationPlanner:
    def __init__(
        self,
        database: Database,
        preferences: NotificationPreferenceRepository,
        jobs: NotificationJobRepository,
        programs: ProgramRepository,
        *,
        default_timezone: str,
        lookahead_days: int = 14,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.preferences = preferences
        self.jobs = jobs
        self.programs = programs
        self.default_timezone = default_timezone
        self.lookahead_days = lookahead_days
        self._clock = clock

    def plan_for_user(self, user_id: str) -> PlannerResult | None:
        """Reconcile one user's jobs. Returns None for an unknown user."""
        with self.database.transaction() as db:
            preferences = self.preferences.get(user_id, session=db)
            if preferences is None:
                return None

            if not preferences.enabled:
                cancelled = self.jobs.cancel_for_user(user_id, session=db)
                logger.debug("Reminders disabled for %s, cancelled %d jobs", user_id, cancelled)
                return PlannerResult(user_id, 0, preferences.reminder_mode)

            language = language_for(self.preferences.get_language_code(user_id, session=db))
            timezone = resolve_timezone(preferences.timezone, self.default_timezone)
            today = date_in_zone(self._clock(), timezone)

            sessions = [
                item
                for item in self.programs.list_sessions(user_id, today, session=db)
                if item.is_open
            ]
            goals = self.programs.list_scheduled_goals(user_id, session=db)

            candidates = self._session_jobs(preferences, timezone, language, sessions)
            candidates += self._daily_jobs(preferences, timezone, language, sessions)
            for goal in goals:
                for day in upcoming_dates_for_schedule(goal.schedule_days, today, self.lookahead_days):
                    title, body = personal_goal_text(language, goal.name)
                    candidates.append(
                        build_job_candidate(
                            preferences,
                            timezone=timezone,
                            mode=JobMode.PERSONAL_GOAL,
                            reminder_date=day,
                            payload=NotificationPayload(
                                title=title,
                                body=body,
                                mode=JobMode.PERSONAL_GOAL,
                                reminder_date=day.isoformat(),
                                personal_goal_id=goal.id,
                                personal_goal_name=goal.name,
                            ),
                            dedupe_key=(
                                f"pgoal:{goal.id}:user:{user_id}:date:{day.isoformat()}"
                                f":lead:{preferences.lead_minutes}"
                            ),
                            personal_goal_id=goal.id,
                        )
                    )

            self.jobs.upsert_jobs(candidates, session=db)
            self.jobs.cancel_not_in_set(
                user_id, [candidate.dedupe_key for candidate in candidates], session=db
            )

        return PlannerResult(user_id, len(candidates), preferences.reminder_mode)

    def _session_jobs(
        self,
        preferences: NotificationPreferences,
        timezone: str,
        language: str,
        sessions: list[ScheduledSession],
    ) -> list[JobCandidate]:
        if not preferences.wants(JobMode.SESSION):
            return []
        candidates = []
        for item in sessions:
            title, body = session_text(language, item.session_date)
            candidates.append(
                build_job_candidate(
                    preferences,
                    timezone=timezone,
                    mode=JobMode.SESSION,
                    reminder_date=item.session_date,
                    payload=NotificationPayload(
                        title=title,
                        body=body,
                        mode=JobMode.SESSION,
                        reminder_date=item.session_date.isoformat(),
                        program_id=item.program_id,
                        program_schedule_id=item.program_schedule_id,
                    ),
                    dedupe_key=(
                        f"session:{item.program_schedule_id}:user:{preferences.user_id}"
                        f":lead:{preferences.lead_minutes}"
                    ),
                    program_id=item.program_id,
                    program_schedule_id=item.program_schedule_id,
                )
            )
        return candidates

    def _daily_jobs(
        self,
        preferences: NotificationPreferences,
        timezone: str,
        language: str,
        sessions: list[ScheduledSession],
    ) -> list[JobCandidate]:
        if not preferences.wants(JobMode.DAILY_SUMMARY):
            return []
        counts = Counter(item.session_date for item in sessions)
        candidates = []
        for day in sorted(counts):
            title, body = daily_summary_text(language, counts[day])
            candidates.append(
                build_job_candidate(
                    preferences,
                    timezone=timezone,
                    mode=JobMode.DAILY_SUMMARY,
                    reminder_date=day,
                    payload=NotificationPayload(
                        title=title,
                        body=body,
                        mode=JobMode.DAILY_SUMMARY,
                        reminder_date=day.isoformat(),
                        session_count=counts[day],
                    ),
                    dedupe_key=(
                        f"daily:user:{preferences.user_id}:date:{day.isoformat()}"
                        f":lead:{preferences.lead_minutes}"
                    ),
                )
            )
        return candidates

    def plan_for_all_users(self) -> int:
        """Reconcile every user eligible for reminders; one failing user does not stop the run."""
        processed = 0
        for user_id in self.preferences.list_users_for_planning():
            try:
                self.plan_for_user(user_id)
            except Exception:
                logger.exception("Reminder planning failed for user %s", user_id)
                continue
            processed += 1
        return processed
