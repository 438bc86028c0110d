"""Copy every mirrored legacy table into the relational store, then re-plan reminders.

Usage:
  dualstore-backfill
  dualstore-backfill --skip-notifications
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dualstore.core.container import Container, build_container
from dualstore.core.settings import settings

logger = logging.getLogger("dualstore.backfill")


async def _run(container: Container, plan_notifications: bool = True) -> int:
    if container.relational is None:
        logger.error("DATABASE_URL is required for backfill")
        return 1

    relational = container.relational
    try:
        logger.info("Backfill starting")
        counts = await relational.full_sync.run()
        logger.info("Users: %d", counts.users)
        logger.info("Personal goals: %d", counts.personal_goals)
        logger.info("Programs: %d", counts.programs)
        logger.info("Program schedules: %d", counts.schedules)
        logger.info("Method usage: %d", counts.method_usage)
        logger.info("Habit usage: %d", counts.habit_usage)
        logger.info("Personal goal usage: %d", counts.personal_goal_usage)
        logger.info("Overtuiging usage: %d", counts.overtuiging_usage)
        logger.info("Skipped records: %d", counts.skipped)

        if plan_notifications:
            planned = await asyncio.to_thread(relational.planner.plan_for_all_users)
            logger.info("Notification planning users: %d", planned)
        logger.info("Backfill completed")
        return 0
    finally:
        await container.close()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Backfill the relational store from the legacy store"
    )
    parser.add_argument(
        "--skip-notifications",
        action="store_true",
        help="Do not re-plan notification jobs after the copy.",
    )
    parser.add_argument(
        "--log-level",
        default="DEBUG" if settings.debug else "INFO",
        help="Root log level (default: INFO, or DEBUG when DEBUG=true).",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(_run(build_container(), not args.skip_notifications)))


if __name__ == "__main__":
    main()
