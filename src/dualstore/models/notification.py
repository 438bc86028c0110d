# src/dualstore/models/notification.py
"""Notification preferences, planned jobs and delivery attempts."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import BigInteger, Boolean, Date, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from dualstore.db.session import Base
from dualstore.db.time import utcnow
from dualstore.db.types import BigIntPK, JSONDocument


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    DEAD_LETTER = "dead_letter"
    CANCELLED = "cancelled"
    SKIPPED_QUIET_HOURS = "skipped_quiet_hours"


# Jobs in these states may still be replaced or cancelled by the planner.
OPEN_JOB_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.SKIPPED_QUIET_HOURS)


class NotificationPreference(Base):
    """Per-user reminder settings. Missing columns fall back to defaults on read."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    reminder_mode: Mapped[str | None] = mapped_column(String(16), nullable=True)
    lead_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    preferred_time_local: Mapped[str | None] = mapped_column(String(8), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quiet_hours_start: Mapped[str | None] = mapped_column(String(8), nullable=True)
    quiet_hours_end: Mapped[str | None] = mapped_column(String(8), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class NotificationJob(Base):
    """One planned reminder. ``dedupe_key`` identifies the same reminder across planner runs."""

    __tablename__ = "notification_jobs"
    __table_args__ = (Index("ix_notification_jobs_due", "status", "next_attempt_at", "fire_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    program_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    program_schedule_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    personal_goal_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reminder_date: Mapped[date] = mapped_column(Date, nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    fire_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False, default=dict)
    dedupe_key: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    status: Mapped[str] = mapped_column(String(24), nullable=False, default=JobStatus.PENDING)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class NotificationDeliveryLog(Base):
    __tablename__ = "notification_delivery_log"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    subscription_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
