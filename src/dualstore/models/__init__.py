# src/dualstore/models/__init__.py
"""SQLAlchemy models for the dual-store sync engine."""

from .id_map import LegacyIdMap
from .inbox import SyncInboxEvent
from .notification import (
    JobStatus,
    NotificationDeliveryLog,
    NotificationJob,
    NotificationPreference,
)
from .outbox import OutboxStatus, SyncDeadLetter, SyncOutbox
from .program import PersonalGoal, Program, ProgramSchedule
from .push_subscription import PushSubscription, SubscriptionStatus
from .usage import HabitUsage, MethodUsage, OvertuigingUsage, PersonalGoalUsage
from .user import User, UserStatus

__all__ = [
    "LegacyIdMap",
    "SyncInboxEvent",
    "JobStatus", "NotificationDeliveryLog", "NotificationJob", "NotificationPreference",
    "OutboxStatus", "SyncDeadLetter", "SyncOutbox",
    "PersonalGoal", "Program", "ProgramSchedule",
    "PushSubscription", "SubscriptionStatus",
    "HabitUsage", "MethodUsage", "OvertuigingUsage", "PersonalGoalUsage",
    "User", "UserStatus",
]
