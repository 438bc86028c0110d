"""initial sync schema

Revision ID: 5b1e2c7d9a40
Revises:
Create Date: 2026-10-19 09:12:44.318207

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "5b1e2c7d9a40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create the outbox, mapping, mirrored entity and notification tables."""
    op.create_table(
        "sync_outbox",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("event_type", sa.String(length=16), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("payload", JSON_DOCUMENT, nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index(
        "ix_sync_outbox_due",
        "sync_outbox",
        ["status", "next_attempt_at", "priority", "created_at"],
    )

    op.create_table(
        "sync_dead_letter",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("outbox_id", sa.BigInteger(), nullable=True),
        sa.Column("event_type", sa.String(length=16), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("payload", JSON_DOCUMENT, nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("replay_count", sa.Integer(), nullable=False),
        sa.Column("replayed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sync_dead_letter_outbox_id", "sync_dead_letter", ["outbox_id"])

    op.create_table(
        "legacy_id_map",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("relational_id", sa.String(length=64), nullable=False),
        sa.Column("legacy_id", sa.String(length=32), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("entity_type", "relational_id", name="uq_legacy_id_map_relational"),
    )
    op.create_index("ix_legacy_id_map_legacy", "legacy_id_map", ["entity_type", "legacy_id"])

    op.create_table(
        "sync_inbox_events",
        sa.Column("event_id", sa.String(length=128), nullable=False),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("role", sa.String(length=64), nullable=True),
        sa.Column("language_code", sa.String(length=16), nullable=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("current_streak", sa.Integer(), nullable=False),
        sa.Column("longest_streak", sa.Integer(), nullable=False),
        sa.Column("last_active_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "habit_usage",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("method_id", sa.String(length=64), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id", "method_id", "usage_date", name="uq_habit_usage_natural"
        ),
    )
    op.create_index("ix_habit_usage_user_id", "habit_usage", ["user_id"])

    op.create_table(
        "personal_goal_usage",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("personal_goal_id", sa.String(length=64), nullable=False),
        sa.Column("usage_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "user_id",
            "personal_goal_id",
            "usage_date",
            name="uq_personal_goal_usage_natural",
        ),
    )
    op.create_index("ix_personal_goal_usage_user_id", "personal_goal_usage", ["user_id"])

    op.create_table(
        "overtuiging_usage",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("overtuiging_id", sa.String(length=64), nullable=False),
        sa.Column("program_id", sa.String(length=64), nullable=True),
        sa.Column("usage_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "overtuiging_id", name="uq_overtuiging_usage_natural"),
    )
    op.create_index("ix_overtuiging_usage_user_id", "overtuiging_usage", ["user_id"])

    op.create_table(
        "method_usage",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("method_id", sa.String(length=64), nullable=False),
        sa.Column("program_schedule_id", sa.String(length=64), nullable=True),
        sa.Column("usage_date", sa.Date(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_method_usage_user_id", "method_usage", ["user_id"])
    op.create_index(
        "ix_method_usage_program_schedule_id", "method_usage", ["program_schedule_id"]
    )

    op.create_table(
        "programs",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_programs_user_id", "programs", ["user_id"])

    op.create_table(
        "program_schedule",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("program_id", sa.String(length=36), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=True),
        sa.Column("method_ids", JSON_DOCUMENT, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["program_id"], ["programs.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_program_schedule_program_id", "program_schedule", ["program_id"])

    op.create_table(
        "personal_goals",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("schedule_days", JSON_DOCUMENT, nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_personal_goals_user_id", "personal_goals", ["user_id"])

    op.create_table(
        "push_subscriptions",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("p256dh", sa.Text(), nullable=False),
        sa.Column("auth", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_success_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("endpoint"),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])

    op.create_table(
        "notification_preferences",
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=True),
        sa.Column("reminder_mode", sa.String(length=16), nullable=True),
        sa.Column("lead_minutes", sa.Integer(), nullable=True),
        sa.Column("preferred_time_local", sa.String(length=8), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=True),
        sa.Column("quiet_hours_start", sa.String(length=8), nullable=True),
        sa.Column("quiet_hours_end", sa.String(length=8), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("user_id"),
    )

    op.create_table(
        "notification_jobs",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("program_id", sa.String(length=64), nullable=True),
        sa.Column("program_schedule_id", sa.String(length=64), nullable=True),
        sa.Column("personal_goal_id", sa.String(length=64), nullable=True),
        sa.Column("reminder_date", sa.Date(), nullable=False),
        sa.Column("mode", sa.String(length=16), nullable=False),
        sa.Column("fire_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", JSON_DOCUMENT, nullable=False),
        sa.Column("dedupe_key", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=24), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedupe_key"),
    )
    op.create_index("ix_notification_jobs_user_id", "notification_jobs", ["user_id"])
    op.create_index(
        "ix_notification_jobs_due",
        "notification_jobs",
        ["status", "next_attempt_at", "fire_at"],
    )

    op.create_table(
        "notification_delivery_log",
        sa.Column("id", BIGINT_PK, autoincrement=True, nullable=False),
        sa.Column("job_id", sa.BigInteger(), nullable=False),
        sa.Column("subscription_id", sa.BigInteger(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_notification_delivery_log_job_id", "notification_delivery_log", ["job_id"]
    )


def downgrade() -> None:
    """Drop every table created by this revision."""
    op.drop_index("ix_notification_delivery_log_job_id", table_name="notification_delivery_log")
    op.drop_table("notification_delivery_log")
    op.drop_index("ix_notification_jobs_due", table_name="notification_jobs")
    op.drop_index("ix_notification_jobs_user_id", table_name="notification_jobs")
    op.drop_table("notification_jobs")
    op.drop_table("notification_preferences")
    op.drop_index("ix_push_subscriptions_user_id", table_name="push_subscriptions")
    op.drop_table("push_subscriptions")
    op.drop_index("ix_personal_goals_user_id", table_name="personal_goals")
    op.drop_table("personal_goals")
    op.drop_index("ix_program_schedule_program_id", table_name="program_schedule")
    op.drop_table("program_schedule")
    op.drop_index("ix_programs_user_id", table_name="programs")
    op.drop_table("programs")
    op.drop_index("ix_method_usage_program_schedule_id", table_name="method_usage")
    op.drop_index("ix_method_usage_user_id", table_name="method_usage")
    op.drop_table("method_usage")
    op.drop_index("ix_overtuiging_usage_user_id", table_name="overtuiging_usage")
    op.drop_table("overtuiging_usage")
    op.drop_index("ix_personal_goal_usage_user_id", table_name="personal_goal_usage")
    op.drop_table("personal_goal_usage")
    op.drop_index("ix_habit_usage_user_id", table_name="habit_usage")
    op.drop_table("habit_usage")
    op.drop_table("users")
    op.drop_table("sync_inbox_events")
    op.drop_index("ix_legacy_id_map_legacy", table_name="legacy_id_map")
    op.drop_table("legacy_id_map")
    op.drop_index("ix_sync_dead_letter_outbox_id", table_name="sync_dead_letter")
    op.drop_table("sync_dead_letter")
    op.drop_index("ix_sync_outbox_due", table_name="sync_outbox")
    op.drop_table("sync_outbox")
