"""
Background Scheduler Service

Manages scheduled background tasks using APScheduler:
- Lifecycle sweep (conclude and archive votes past their deadline)
- Archive cleanup (purge archives past their retention period)

This runs in-process with the worker started by main.py.
"""

import logging
from datetime import timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from core.config import settings
from repositories.provider import get_vote_store
from services.archival_scheduler import CleanupResult, SweepResult, archive_cleanup_task, lifecycle_sweep_task

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: AsyncIOScheduler | None = None


async def lifecycle_sweep_job() -> None:
    """
    Background job to conclude due votes.

    Failures are logged here; a broken tick must not take the scheduler down.
    """
    try:
        result = await lifecycle_sweep_task(get_vote_store())
        if result.concluded or result.failed:
            logger.info(
                f"Lifecycle sweep completed: "
                f"concluded={result.concluded}, "
                f"skipped={result.skipped}, "
                f"failed={result.failed}"
            )
    except Exception as e:
        logger.error(f"Lifecycle sweep job failed: {e}", exc_info=True)


async def archive_cleanup_job() -> None:
    """Background job to purge expired archives."""
    try:
        result = await archive_cleanup_task(get_vote_store())
        if result.deleted or result.failed:
            logger.info(
                f"Archive cleanup completed: deleted={result.deleted}, failed={result.failed}"
            )
    except Exception as e:
        logger.error(f"Archive cleanup job failed: {e}", exc_info=True)


def get_scheduler() -> AsyncIOScheduler:
    """Get the global scheduler instance."""
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=timezone.utc)
    return _scheduler


async def start_scheduler() -> None:
    """Start the background scheduler with all jobs."""
    scheduler = get_scheduler()

    if scheduler.running:
        logger.info("Scheduler already running")
        return

    logger.info("Configuring background scheduler...")

    scheduler.add_job(
        lifecycle_sweep_job,
        trigger=IntervalTrigger(seconds=settings.LIFECYCLE_SWEEP_INTERVAL_SECONDS),
        id="lifecycle_sweep",
        name="Lifecycle Sweep",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Added lifecycle sweep job (every {settings.LIFECYCLE_SWEEP_INTERVAL_SECONDS}s)"
    )

    scheduler.add_job(
        archive_cleanup_job,
        trigger=IntervalTrigger(seconds=settings.ARCHIVE_CLEANUP_INTERVAL_SECONDS),
        id="archive_cleanup",
        name="Archive Cleanup",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Added archive cleanup job (every {settings.ARCHIVE_CLEANUP_INTERVAL_SECONDS}s)"
    )

    scheduler.start()
    logger.info("Background scheduler started")

    # Catch up on votes that ended while no worker was running
    if settings.RUN_SWEEP_ON_STARTUP:
        logger.info("Running initial lifecycle sweep...")
        await lifecycle_sweep_job()
        await archive_cleanup_job()


async def stop_scheduler() -> None:
    """Stop the background scheduler gracefully."""
    global _scheduler

    if _scheduler and _scheduler.running:
        logger.info("Stopping background scheduler...")
        _scheduler.shutdown(wait=True)
        logger.info("Background scheduler stopped")

    _scheduler = None


async def trigger_lifecycle_sweep() -> SweepResult:
    """
    Manually trigger a lifecycle sweep.

    Useful for testing or manual intervention.
    """
    return await lifecycle_sweep_task(get_vote_store())


async def trigger_archive_cleanup() -> CleanupResult:
    """Manually trigger an archive cleanup pass."""
    return await archive_cleanup_task(get_vote_store())
