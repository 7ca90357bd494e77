"""
Standalone Scheduler Entry Point

Run with: python -m worker.run_scheduler

For deployments where API replicas set SCHEDULER_ENABLED=false and one or
more dedicated processes drive auction start/end. Running several is safe:
every transition is a compare-and-swap.
"""
import asyncio
import logging
import signal

from bidcart.core.config import get_settings
from bidcart.core.logging_config import setup_logging
from bidcart.infrastructure.database import init_db
from bidcart.infrastructure.pubsub import get_pubsub_manager
from bidcart.services import get_auction_scheduler

logger = logging.getLogger(__name__)


async def main():
    settings = get_settings()
    setup_logging()
    init_db()

    if settings.PUBSUB_BACKEND != "redis":
        logger.warning(
            "⚠️  PUBSUB_BACKEND is 'local': transition events from this process "
            "will not reach viewers connected to API replicas"
        )

    pubsub = get_pubsub_manager()
    await pubsub.connect()

    scheduler = get_auction_scheduler()
    stop_event = asyncio.Event()

    # Handle graceful shutdown (Ctrl+C, SIGTERM)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    await scheduler.start()
    logger.info(f"🎯 Scheduler worker running (interval: {scheduler.interval}s)")

    try:
        await stop_event.wait()
    finally:
        logger.info("⚠️  Shutdown signal received...")
        await scheduler.stop()
        await pubsub.flush()
        await pubsub.disconnect()

        stats = scheduler.stats()
        logger.info(
            f"🛑 Scheduler worker stopped: {stats['sweep_count']} sweeps, "
            f"{stats['total_started']} started, {stats['total_ended']} ended, "
            f"{stats['total_failed']} failed"
        )


if __name__ == "__main__":
    asyncio.run(main())
