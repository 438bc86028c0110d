"""Background drain of the outbox and the notification queue.

This module provides the SyncWorker class that periodically:

- Delivers pending outbox events to the legacy store
- Releases claims left behind by crashed workers
- Re-plans notification jobs on a slower cadence
- Sends due push notifications
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import exc as sa_exc

from dualstore.core.settings import Settings, settings
from dualstore.errors import LegacyStoreDisabledError, LegacyStoreError, StoreUnavailableError
from dualstore.notifications.delivery import NotificationDelivery
from dualstore.notifications.planner import NotificationPlanner
from dualstore.services.full_sync import LegacyFullSync
from dualstore.services.legacy_writers import LegacyWriter
from dualstore.services.outbox import DrainResult, Outbox

logger = logging.getLogger(__name__)

# Upper bound on the pause after a failed cycle.
MAX_ERROR_BACKOFF_SECONDS = 30.0


@dataclass(frozen=True)
class WorkerOptions:
    batch_size: int = 20
    notification_batch_size: int = 20
    poll_interval_seconds: float = 2.0
    reconcile_seconds: float = 120.0
    claim_timeout_seconds: float = 300.0
    user_poll_enabled: bool = False
    user_poll_seconds: float = 60.0
    full_poll_enabled: bool = False
    full_poll_seconds: float = 120.0

    @classmethod
    def from_settings(cls, config: Settings = settings) -> WorkerOptions:
        return cls(
            user_poll_seconds=config.sync_user_poll_seconds,
            full_poll_seconds=config.sync_full_poll_seconds,
            batch_size=config.sync_batch_size,
            notification_batch_size=config.notification_batch_size,
            poll_interval_seconds=config.sync_poll_interval_seconds,
            reconcile_seconds=config.notification_reconcile_seconds,
            claim_timeout_seconds=config.sync_claim_timeout_seconds,
        )


class SyncWorker:
    """Periodically drains the outbox into the legacy store.

    Notification planning and delivery ride along when a planner or a
    delivery component is supplied. With a full-sync component the worker
    also pulls legacy users (and, less often, every mirrored table) on the
    poll cadences in ``WorkerOptions``.
    """

    def __init__(
        self,
        outbox: Outbox,
        writer: LegacyWriter,
        *,
        planner: NotificationPlanner | None = None,
        delivery: NotificationDelivery | None = None,
        full_sync: LegacyFullSync | None = None,
        options: WorkerOptions | None = None,
    ) -> None:
        self.outbox = outbox
        self.writer = writer
        self.planner = planner
        self.delivery = delivery
        self.full_sync = full_sync
        self.options = options or WorkerOptions()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._last_reconcile: float | None = None
        self._last_user_poll: float | None = None
        self._last_full_poll: float | None = None

    async def start(self) -> None:
        """Start the background loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background loop after the current cycle."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def wait(self) -> None:
        """Block until the background loop ends, whether stopped or exited on its own."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def run_once(self) -> DrainResult:
        """Run one cycle: release stale claims, drain, poll the legacy store, plan, deliver."""
        claim_timeout = timedelta(seconds=self.options.claim_timeout_seconds)
        self.outbox.release_stale_claims(claim_timeout)
        result = await self.outbox.process_batch(self.writer, self.options.batch_size)
        await self._poll_legacy()

        if self.planner is not None and _due(self._last_reconcile, self.options.reconcile_seconds):
            planned = await asyncio.to_thread(self.planner.plan_for_all_users)
            self._last_reconcile = time.monotonic()
            logger.info("Reconciled notification jobs for %d user(s)", planned)

        if self.delivery is not None and self.delivery.enabled:
            self.delivery.jobs.release_stale_claims(claim_timeout)
            delivered = await self.delivery.process_batch(self.options.notification_batch_size)
            if delivered.claimed:
                logger.info(
                    "Notification batch: claimed=%d sent=%d retried=%d dead_lettered=%d skipped=%d",
                    delivered.claimed,
                    delivered.sent,
                    delivered.retried,
                    delivered.dead_lettered,
                    delivered.skipped,
                )
        return result

    async def _poll_legacy(self) -> None:
        """Pull legacy changes that no webhook delivered. Failures wait for the next cadence."""
        full_sync = self.full_sync
        if full_sync is None:
            return
        options = self.options
        try:
            if options.user_poll_enabled and _due(self._last_user_poll, options.user_poll_seconds):
                self._last_user_poll = time.monotonic()
                synced = await full_sync.sync_users()
                logger.info("User fallback poll synced %d record(s)", synced)

            if options.full_poll_enabled and _due(self._last_full_poll, options.full_poll_seconds):
                self._last_full_poll = time.monotonic()
                await full_sync.run()
        except LegacyStoreDisabledError:
            raise
        except (LegacyStoreError, StoreUnavailableError) as e:
            logger.warning("Legacy poll sync failed: %s", e)

    async def _run(self) -> None:
        interval = max(0.1, float(self.options.poll_interval_seconds))
        error_backoff = min(interval * 4, MAX_ERROR_BACKOFF_SECONDS)

        while not self._stopping.is_set():
            try:
                result = await self.run_once()
            except LegacyStoreDisabledError:
                logger.warning("SyncWorker stopping: legacy store credentials are not configured")
                return
            except (StoreUnavailableError, sa_exc.OperationalError, sa_exc.InterfaceError) as e:
                logger.warning("SyncWorker could not reach the relational store: %s", e)
                await self._sleep(error_backoff)
                continue
            except LegacyStoreError as e:
                logger.warning("SyncWorker encountered LegacyStoreError: %s", e)
                await self._sleep(error_backoff)
                continue
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error("SyncWorker encountered data processing error: %s", e, exc_info=True)
                await self._sleep(error_backoff)
                continue

            # A full batch means more work is probably waiting.
            if result.claimed < self.options.batch_size:
                await self._sleep(interval)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            pass


def _due(last_run: float | None, every_seconds: float) -> bool:
    if last_run is None:
        return True
    return time.monotonic() - last_run >= every_seconds
