"""
Worker lifecycle event handlers.

Manages startup and shutdown of logging, the database connection pool, the
vote store and the background scheduler.
"""

from typing import Awaitable, Callable

import structlog

from core.config import settings
from core.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def create_start_handler() -> Callable[[], Awaitable[None]]:
    """Create startup event handler."""

    async def start_worker() -> None:
        setup_logging()
        logger.info(f"Starting {settings.APP_NAME} worker...", store=settings.STORE_BACKEND)

        if settings.STORE_BACKEND == "postgres":
            from db.session import init_db

            await init_db()
            logger.info("Database initialized")

        from repositories.provider import get_vote_store
        from services.background_scheduler import start_scheduler

        get_vote_store()
        await start_scheduler()

        logger.info(f"{settings.APP_NAME} worker started successfully")

    return start_worker


def create_stop_handler() -> Callable[[], Awaitable[None]]:
    """Create shutdown event handler."""

    async def stop_worker() -> None:
        logger.info(f"Shutting down {settings.APP_NAME} worker...")

        try:
            from services.background_scheduler import stop_scheduler

            await stop_scheduler()
        except Exception as e:
            logger.warning(f"Background scheduler cleanup failed: {e}")

        if settings.STORE_BACKEND == "postgres":
            from db.session import close_db

            await close_db()

        from repositories.provider import reset_vote_store

        reset_vote_store()
        logger.info(f"{settings.APP_NAME} worker shutdown complete")

    return stop_worker
