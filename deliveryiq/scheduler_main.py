"""
Scheduler Entry Point — runs in a separate container.

Usage:
    python -m deliveryiq.scheduler_main

This does NOT run a web server. It runs one outcome sync and curve
recompute pass, then the APScheduler loop that repeats it.
"""

import asyncio
import signal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from deliveryiq.config import settings
from deliveryiq.log_config import configure_logging
from deliveryiq.services.scheduler import DeliveryIQScheduler

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the scheduler."""
    configure_logging()
    logger.info("scheduler_starting", version=settings.app_version)

    url = settings.async_database_url
    engine_kwargs: dict = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        engine_kwargs.update(pool_size=5, max_overflow=5)
    engine = create_async_engine(url, **engine_kwargs)
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    scheduler = DeliveryIQScheduler(session_factory=session_factory)

    logger.info("running_initial_cycle")
    await scheduler.run_cycle()

    scheduler.start()

    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")

    await stop_event.wait()

    scheduler.stop()
    await engine.dispose()
    logger.info("scheduler_shutdown_complete")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
