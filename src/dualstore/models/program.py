# src/dualstore/models/program.py
"""Program, schedule and personal-goal rows read by the notification planner."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dualstore.db.session import Base
from dualstore.db.time import utcnow
from dualstore.db.types import JSONDocument

# Status values as written by the legacy store.
PROGRAM_SCHEDULABLE_STATUSES = ("Actief", "Gepland")
PERSONAL_GOAL_ACTIVE_STATUS = "Actief"


def _new_id() -> str:
    return str(uuid.uuid4())


class Program(Base):
    __tablename__ = "programs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="Actief")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class ProgramSchedule(Base):
    """One planned session of a program on a calendar day."""

    __tablename__ = "program_schedule"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    program_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    method_ids: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class PersonalGoal(Base):
    __tablename__ = "personal_goals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=PERSONAL_GOAL_ACTIVE_STATUS
    )
    # Dutch weekday names, e.g. ["Maandag", "Woensdag"].
    schedule_days: Mapped[list[str]] = mapped_column(JSONDocument, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
