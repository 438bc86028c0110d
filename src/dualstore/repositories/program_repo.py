"""Read-side queries over programs and personal goals for reminder planning."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dualstore.db.session import Database
from dualstore.models import MethodUsage, PersonalGoal, Program, ProgramSchedule
from dualstore.models.program import PERSONAL_GOAL_ACTIVE_STATUS, PROGRAM_SCHEDULABLE_STATUSES

__all__ = ["ScheduledGoal", "ScheduledSession", "ProgramRepository"]


@dataclass(frozen=True)
class ScheduledSession:
    program_id: str
    program_schedule_id: str
    session_date: date
    planned_methods: int
    completed_methods: int

    @property
    def is_open(self) -> bool:
        return self.planned_methods > 0 and self.completed_methods < self.planned_methods


@dataclass(frozen=True)
class ScheduledGoal:
    id: str
    name: str
    schedule_days: tuple[str, ...]


class ProgramRepository:
    def __init__(self, database: Database) -> None:
        self.database = database

    def list_sessions(
        self, user_id: str, from_date: date, session: Session | None = None
    ) -> list[ScheduledSession]:
        """Dated sessions of the user's active or planned programs from ``from_date`` on."""
        with self.database.scope(session) as db:
            completed = (
                select(
                    MethodUsage.program_schedule_id.label("schedule_id"),
                    func.count(MethodUsage.id).label("completed"),
                )
                .where(MethodUsage.program_schedule_id.is_not(None))
                .group_by(MethodUsage.program_schedule_id)
                .subquery()
            )
            rows = db.execute(
                select(ProgramSchedule, func.coalesce(completed.c.completed, 0))
                .join(Program, Program.id == ProgramSchedule.program_id)
                .outerjoin(completed, completed.c.schedule_id == ProgramSchedule.id)
                .where(
                    Program.user_id == user_id,
                    Program.status.in_(PROGRAM_SCHEDULABLE_STATUSES),
                    ProgramSchedule.session_date.is_not(None),
                    ProgramSchedule.session_date >= from_date,
                )
                .order_by(ProgramSchedule.session_date, ProgramSchedule.id)
            ).all()

            return [
                ScheduledSession(
                    program_id=schedule.program_id,
                    program_schedule_id=schedule.id,
                    session_date=schedule.session_date,
                    planned_methods=len(schedule.method_ids or []),
                    completed_methods=int(done),
                )
                for schedule, done in rows
            ]

    def list_scheduled_goals(
        self, user_id: str, session: Session | None = None
    ) -> list[ScheduledGoal]:
        """Active personal goals with at least one scheduled weekday."""
        with self.database.scope(session) as db:
            rows = db.scalars(
                select(PersonalGoal)
                .where(
                    PersonalGoal.user_id == user_id,
                    PersonalGoal.status == PERSONAL_GOAL_ACTIVE_STATUS,
                )
                .order_by(PersonalGoal.id)
            ).all()
            return [
                ScheduledGoal(id=row.id, name=row.name, schedule_days=tuple(row.schedule_days))
                for row in rows
                if row.schedule_days
            ]
