"""APScheduler integration for the nightly restart."""
from __future__ import annotations

import logging
import os
import signal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .settings import settings
from .timeutil import LONDON

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone=LONDON)


async def midnight_shutdown() -> None:
    """Stop the server so the supervisor restarts it with a fresh log file."""
    logger.info("Local midnight reached; requesting server shutdown")
    os.kill(os.getpid(), signal.SIGTERM)


def start_scheduler() -> None:
    """Configure and start the scheduler if enabled."""
    if not settings.shutdown_at_midnight:
        logger.info("Midnight shutdown disabled via configuration")
        return
    scheduler.add_job(
        midnight_shutdown,
        trigger=CronTrigger(hour=0, minute=0, timezone=LONDON),
        name="midnight_shutdown",
        misfire_grace_time=None,
    )
    scheduler.start()
    if scheduler.running:
        logger.info("Scheduler started; server stops at 00:00 %s", LONDON.key)
    else:
        logger.warning("Scheduler failed to start")


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler shut down")


__all__ = ["midnight_shutdown", "scheduler", "shutdown_scheduler", "start_scheduler"]
