"""
Archival Scheduler Service

Runs the two periodic maintenance passes over the vote store:
- Lifecycle sweep: concludes and archives every active vote past its deadline
- Archive cleanup: purges archived votes whose retention period has ended

Both passes are externally triggered (see services.background_scheduler) and
idempotent. Each vote or archive entry is handled in its own transaction, so
one failure never rolls back or aborts the others, and rows locked by another
worker are skipped instead of waited on. Several schedulers may run at once.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

import structlog

from core.clock import Clock, SystemClock
from core.exceptions import TransientStoreError
from repositories.provider import VoteStoreProtocol
from services.lifecycle import LifecycleStateMachine

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    """Outcome of one lifecycle sweep."""

    concluded: int = 0
    skipped: int = 0
    failed: int = 0
    vote_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CleanupResult:
    """Outcome of one archive cleanup pass."""

    deleted: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class ArchivalScheduler:
    """
    Concludes due votes and expires old archives.

    Features:
    - Per-vote transactions: a failed vote is logged and the sweep moves on
    - Skip-locked: votes held by another worker are left to that worker
    - Transient store errors are skipped and retried on the next tick
    """

    def __init__(
        self,
        store: VoteStoreProtocol,
        clock: Optional[Clock] = None,
        lifecycle: Optional[LifecycleStateMachine] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.lifecycle = lifecycle or LifecycleStateMachine()

    async def run_lifecycle_sweep(self) -> SweepResult:
        """Conclude every active vote whose deadline has passed."""
        now = self.clock.now()
        result = SweepResult()

        async with self.store.transaction() as tx:
            due_ids = await tx.list_due_vote_ids(now)

        if not due_ids:
            return result

        logger.info("Running lifecycle sweep", due=len(due_ids))

        for vote_id in due_ids:
            try:
                async with self.store.transaction() as tx:
                    archived = await self.lifecycle.conclude(tx, vote_id, now)
            except TransientStoreError as e:
                logger.warning("Vote conclusion deferred", vote_id=vote_id, error=str(e))
                result.skipped += 1
                continue
            except Exception:
                logger.exception("Failed to conclude vote", vote_id=vote_id)
                result.failed += 1
                continue

            if archived is None:
                result.skipped += 1
            else:
                result.concluded += 1
                result.vote_ids.append(vote_id)

        logger.info("Lifecycle sweep completed", **result.to_dict())
        return result

    async def run_archive_cleanup(self) -> CleanupResult:
        """Delete every archived vote whose retention period has ended."""
        now = self.clock.now()
        result = CleanupResult()

        async with self.store.transaction() as tx:
            expired_ids = await tx.list_expired_archive_ids(now)

        for vote_id in expired_ids:
            try:
                async with self.store.transaction() as tx:
                    deleted = await tx.delete_archive(vote_id, now)
            except TransientStoreError as e:
                logger.warning("Archive deletion deferred", vote_id=vote_id, error=str(e))
                continue
            except Exception:
                logger.exception("Failed to delete archived vote", vote_id=vote_id)
                result.failed += 1
                continue

            if deleted:
                result.deleted += 1

        if result.deleted or result.failed:
            logger.info("Archive cleanup completed", **result.to_dict())
        return result


async def lifecycle_sweep_task(store: VoteStoreProtocol) -> SweepResult:
    """
    Background task to run one lifecycle sweep.

    This should be called by a scheduler at a fixed interval.
    """
    scheduler = ArchivalScheduler(store)
    return await scheduler.run_lifecycle_sweep()


async def archive_cleanup_task(store: VoteStoreProtocol) -> CleanupResult:
    """Background task to run one archive cleanup pass."""
    scheduler = ArchivalScheduler(store)
    return await scheduler.run_archive_cleanup()
