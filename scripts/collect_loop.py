from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from coupling_monitor.config import Settings
from coupling_monitor.pipeline import build_pipeline
from coupling_monitor.scheduler import Scheduler
from coupling_monitor.storage import build_store

logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Continuous collection loop for weighted dependency graphs.")
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between runs (default: TICK_INTERVAL_SECONDS, 60s).",
    )
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    store = build_store(settings)
    scheduler = Scheduler(
        build_pipeline(settings, store),
        interval_seconds=args.interval or settings.tick_interval_seconds,
        shutdown_timeout_seconds=settings.shutdown_timeout_seconds,
    )

    done = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, done.set)

    scheduler.start()
    logger.info("Collection loop started. Running every %s seconds...", scheduler.interval_seconds)

    await done.wait()
    logger.info("Received interruption signal, stopping collection loop...")
    await scheduler.stop()
    store.close()
    logger.info("Exiting...")


if __name__ == "__main__":
    asyncio.run(main())
