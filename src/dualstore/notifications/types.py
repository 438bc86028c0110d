"""Value types shared by the planner, the job repository and delivery."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ReminderMode(str, Enum):
    """Which reminders a user asked for."""

    SESSION = "session"
    DAILY_SUMMARY = "daily_summary"
    BOTH = "both"


class JobMode(str, Enum):
    """Kind of a single planned reminder."""

    SESSION = "session"
    DAILY_SUMMARY = "daily_summary"
    PERSONAL_GOAL = "personal_goal"


DEFAULT_LEAD_MINUTES = 60
DEFAULT_PREFERRED_TIME = "19:00"
DEFAULT_QUIET_HOURS_START = "22:00"
DEFAULT_QUIET_HOURS_END = "07:00"


@dataclass(frozen=True)
class NotificationPreferences:
    user_id: str
    enabled: bool
    reminder_mode: ReminderMode
    lead_minutes: int
    preferred_time_local: str
    timezone: str
    quiet_hours_start: str
    quiet_hours_end: str

    def wants(self, mode: JobMode) -> bool:
        if mode is JobMode.PERSONAL_GOAL:
            return True
        return self.reminder_mode is ReminderMode.BOTH or self.reminder_mode.value == mode.value


class NotificationPayload(BaseModel):
    """Push message body delivered to the browser."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    body: str
    target_url: str = Field(default="/", alias="targetUrl")
    mode: JobMode
    reminder_date: str = Field(alias="reminderDate")
    program_id: str | None = Field(default=None, alias="programId")
    program_schedule_id: str | None = Field(default=None, alias="programScheduleId")
    session_count: int | None = Field(default=None, alias="sessionCount")
    personal_goal_id: str | None = Field(default=None, alias="personalGoalId")
    personal_goal_name: str | None = Field(default=None, alias="personalGoalName")

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class JobCandidate:
    """A reminder the planner wants to exist."""

    user_id: str
    mode: JobMode
    reminder_date: date
    fire_at: datetime
    payload: dict[str, Any]
    dedupe_key: str
    status: str
    program_id: str | None = None
    program_schedule_id: str | None = None
    personal_goal_id: str | None = None
