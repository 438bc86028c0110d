# src/dualstore/models/usage.py
"""Usage fact tables, one per usage kind, each unique on its natural key."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dualstore.db.session import Base
from dualstore.db.time import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class HabitUsage(Base):
    """A habit method practised by a user on a calendar day."""

    __tablename__ = "habit_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "method_id", "usage_date", name="uq_habit_usage_natural"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    method_id: Mapped[str] = mapped_column(String(64), nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class PersonalGoalUsage(Base):
    """A personal goal worked on by a user on a calendar day."""

    __tablename__ = "personal_goal_usage"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "personal_goal_id", "usage_date", name="uq_personal_goal_usage_natural"
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    personal_goal_id: Mapped[str] = mapped_column(String(64), nullable=False)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class OvertuigingUsage(Base):
    """A belief ("overtuiging") marked as completed. Once per user, ever."""

    __tablename__ = "overtuiging_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "overtuiging_id", name="uq_overtuiging_usage_natural"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    overtuiging_id: Mapped[str] = mapped_column(String(64), nullable=False)
    program_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class MethodUsage(Base):
    """A method completed as part of a scheduled program session."""

    __tablename__ = "method_usage"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    method_id: Mapped[str] = mapped_column(String(64), nullable=False)
    program_schedule_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True
    )
    usage_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
