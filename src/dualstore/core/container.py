"""Composition root.

Builds every component of the sync engine once per process from settings.
When ``DATABASE_URL`` is absent the relational-side components are None and
callers degrade (read-through returns nothing, health reports
``unavailable``, writes stay on the legacy store).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from dualstore.core.backend_mode import BackendModeSelector, get_backend_mode_selector
from dualstore.core.settings import Settings, settings
from dualstore.db.session import Database
from dualstore.notifications.delivery import NotificationDelivery
from dualstore.notifications.planner import NotificationPlanner
from dualstore.notifications.push import PushTransport
from dualstore.repositories.habit_usage_repo import HabitUsageRepository
from dualstore.repositories.notification_job_repo import NotificationJobRepository
from dualstore.repositories.notification_preference_repo import NotificationPreferenceRepository
from dualstore.repositories.overtuiging_usage_repo import OvertuigingUsageRepository
from dualstore.repositories.personal_goal_usage_repo import PersonalGoalUsageRepository
from dualstore.repositories.program_repo import ProgramRepository
from dualstore.repositories.push_subscription_repo import PushSubscriptionRepository
from dualstore.repositories.user_repo import UserRepository
from dualstore.services.dead_letter import DeadLetterService
from dualstore.services.full_sync import LegacyFullSync
from dualstore.services.health import HealthService
from dualstore.services.id_map import IdMap
from dualstore.services.inbound import InboundUserSync
from dualstore.services.legacy import LegacyApiClient, LegacyStore, load_legacy_config
from dualstore.services.legacy_writers import LegacyWriter
from dualstore.services.outbox import Outbox
from dualstore.services.read_through import UserReadThrough
from dualstore.services.sync_worker import SyncWorker, WorkerOptions
from dualstore.services.usage import UsageService

logger = logging.getLogger(__name__)

PUSH_NOTIFICATIONS_FLAG = "PUSH_NOTIFICATIONS_ENABLED"
USER_POLL_FLAG = "USER_FAST_LANE_ENABLED"
FULL_POLL_FLAG = "FULL_LEGACY_POLL_SYNC_ENABLED"


@dataclass
class RelationalComponents:
    database: Database
    id_map: IdMap
    outbox: Outbox
    users: UserRepository
    habits: HabitUsageRepository
    personal_goals: PersonalGoalUsageRepository
    beliefs: OvertuigingUsageRepository
    subscriptions: PushSubscriptionRepository
    preferences: NotificationPreferenceRepository
    jobs: NotificationJobRepository
    programs: ProgramRepository
    dead_letters: DeadLetterService
    inbound: InboundUserSync
    full_sync: LegacyFullSync
    planner: NotificationPlanner
    delivery: NotificationDelivery
    worker: SyncWorker


@dataclass
class Container:
    settings: Settings
    selector: BackendModeSelector
    legacy: LegacyStore
    health: HealthService
    read_through: UserReadThrough
    usage: UsageService
    relational: RelationalComponents | None = None

    @property
    def database(self) -> Database | None:
        return self.relational.database if self.relational else None

    async def close(self) -> None:
        if isinstance(self.legacy, LegacyApiClient):
            await self.legacy.close()
        if self.relational is not None:
            self.relational.database.dispose()


def build_relational(
    database: Database,
    legacy: LegacyStore,
    selector: BackendModeSelector,
    config: Settings,
    push_transport: PushTransport | None = None,
) -> RelationalComponents:
    id_map = IdMap(database)
    outbox = Outbox.from_settings(database, config)
    users = UserRepository(database, id_map, outbox)
    preferences = NotificationPreferenceRepository(database, config.notification_default_timezone)
    jobs = NotificationJobRepository(database)
    programs = ProgramRepository(database)
    subscriptions = PushSubscriptionRepository(database)

    if not selector.flag(PUSH_NOTIFICATIONS_FLAG, default=True):
        push_transport = None

    planner = NotificationPlanner(
        database,
        preferences,
        jobs,
        programs,
        default_timezone=config.notification_default_timezone,
        lookahead_days=config.notification_lookahead_days,
    )
    delivery = NotificationDelivery(
        jobs,
        subscriptions,
        preferences,
        push_transport,
        max_retries=config.notification_max_retries,
        retry_base_seconds=config.notification_retry_base_seconds,
        retry_max_seconds=config.sync_retry_max_seconds,
    )
    full_sync = LegacyFullSync(database, legacy, users, id_map)
    worker = SyncWorker(
        outbox,
        LegacyWriter(legacy, id_map),
        planner=planner,
        delivery=delivery,
        full_sync=full_sync,
        options=replace(
            WorkerOptions.from_settings(config),
            user_poll_enabled=selector.flag(USER_POLL_FLAG, default=True),
            full_poll_enabled=selector.flag(FULL_POLL_FLAG, default=True),
        ),
    )
    return RelationalComponents(
        database=database,
        id_map=id_map,
        outbox=outbox,
        users=users,
        habits=HabitUsageRepository(database, outbox, users),
        personal_goals=PersonalGoalUsageRepository(database, outbox, users),
        beliefs=OvertuigingUsageRepository(database, outbox),
        subscriptions=subscriptions,
        preferences=preferences,
        jobs=jobs,
        programs=programs,
        dead_letters=DeadLetterService(database, outbox),
        inbound=InboundUserSync(database, users, legacy),
        full_sync=full_sync,
        planner=planner,
        delivery=delivery,
        worker=worker,
    )


def build_container(
    config: Settings = settings,
    *,
    database: Database | None = None,
    legacy: LegacyStore | None = None,
    selector: BackendModeSelector | None = None,
    push_transport: PushTransport | None = None,
) -> Container:
    """Wire the process's components. Explicit arguments override settings."""
    selector = selector or get_backend_mode_selector()
    legacy = legacy or LegacyApiClient(load_legacy_config(config))
    if database is None and config.database_configured:
        database = Database.from_settings(config)

    relational = None
    if database is not None:
        relational = build_relational(database, legacy, selector, config, push_transport)
    else:
        logger.info("DATABASE_URL not set; relational components disabled")

    return Container(
        settings=config,
        selector=selector,
        legacy=legacy,
        health=HealthService(database),
        read_through=UserReadThrough(relational.users if relational else None, legacy, selector),
        usage=UsageService(
            selector,
            legacy,
            habits=relational.habits if relational else None,
            personal_goals=relational.personal_goals if relational else None,
            beliefs=relational.beliefs if relational else None,
        ),
        relational=relational,
    )
