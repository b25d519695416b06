"""
Luzzia price ingestion process
==============================

Configures logging, starts the scheduler with every ingestion job and
waits for SIGINT / SIGTERM to shut down cleanly.

Run with ``python -m luzzia`` or the ``luzzia`` console script.
"""

import asyncio
import logging
import signal

from luzzia import __version__
from luzzia.core.config import settings
from luzzia.core.exceptions import InfluxDBConnectionError
from luzzia.core.logging_config import setup_logging
from luzzia.dependencies import cleanup_dependencies, get_influxdb, init_scheduler

logger = logging.getLogger(__name__)


async def run() -> None:
    logger.info(f"🚀 Starting Luzzia price ingestion v{__version__} ({settings!r})")

    try:
        health = get_influxdb().health_check()
        logger.info(f"✅ InfluxDB: {health['status']} ({health['url']})")
    except InfluxDBConnectionError as e:
        # Jobs retry on their own schedule; a store outage at boot is not fatal
        logger.warning(f"⚠️ InfluxDB not reachable at startup: {e}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    scheduler = await init_scheduler()
    for job in scheduler.get_job_status()["jobs"]:
        logger.info(f"   ⏰ {job['id']}: next run {job['next_run']}")

    try:
        await stop_event.wait()
    finally:
        logger.info("🛑 Shutting down")
        await cleanup_dependencies()


def main() -> None:
    setup_logging()
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
