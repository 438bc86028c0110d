"""Run the outbox drain and notification worker as a standalone process.

Usage:
  dualstore-worker            # loop until SIGINT/SIGTERM
  dualstore-worker --once     # drain a single batch and exit
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from dualstore.core.container import Container, build_container
from dualstore.core.settings import settings

logger = logging.getLogger("dualstore.worker")


async def _run(container: Container, once: bool) -> int:
    if container.relational is None:
        logger.error("DATABASE_URL is not configured; nothing to drain")
        return 1

    worker = container.relational.worker
    try:
        if once:
            result = await worker.run_once()
            logger.info(
                "Drained outbox batch: claimed=%d delivered=%d retried=%d dead_lettered=%d",
                result.claimed,
                result.delivered,
                result.retried,
                result.dead_lettered,
            )
            return 0

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, stop.set)

        await worker.start()
        logger.info("Sync worker running; press Ctrl+C to stop")
        stopped = asyncio.create_task(stop.wait())
        finished = asyncio.create_task(worker.wait())
        await asyncio.wait({stopped, finished}, return_when=asyncio.FIRST_COMPLETED)
        stopped.cancel()
        finished.cancel()
        await worker.stop()
        if not stop.is_set():
            logger.error("Sync worker exited on its own; shutting down")
            return 1
        return 0
    finally:
        await container.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Drain the sync outbox into the legacy store")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process a single batch and exit instead of polling.",
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
    sys.exit(asyncio.run(_run(build_container(), args.once)))


if __name__ == "__main__":
    main()
