"""
Vote lifecycle: Active -> Concluded.

There is exactly one transition and it is terminal. Concluding a vote tallies
its ballots once, marks it concluded, copies it with its ballots and frozen
results into the archive and removes the active rows. All of it happens in the
caller's transaction, so a failure at any step leaves the vote active and
untouched.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from core.config import settings
from core.exceptions import VoteClosedError
from models.vote import VoteState
from repositories.provider import VoteTransactionProtocol
from schemas.vote import ArchivedVoteRecord, VoteRecord
from services.tally import TallyEngine

logger = structlog.get_logger(__name__)


class LifecycleStateMachine:
    """Guards mutations on votes and performs the conclude transition."""

    def __init__(
        self,
        engine: Optional[TallyEngine] = None,
        retention_days: Optional[int] = None,
    ):
        self.engine = engine or TallyEngine()
        self.retention = timedelta(
            days=retention_days if retention_days is not None else settings.ARCHIVE_RETENTION_DAYS
        )

    @staticmethod
    def is_due(vote: VoteRecord, now: datetime) -> bool:
        return vote.state == VoteState.ACTIVE and now >= vote.voting_ends_at

    @staticmethod
    def ensure_accepts_ballots(vote: VoteRecord, now: datetime) -> None:
        """Raise VoteClosedError unless the vote is active and before its deadline."""
        if not vote.is_open(now):
            raise VoteClosedError(vote.id)

    async def conclude(
        self,
        tx: VoteTransactionProtocol,
        vote_id: str,
        now: datetime,
    ) -> Optional[ArchivedVoteRecord]:
        """
        Conclude one vote inside ``tx``.

        Returns the archive record, or None when the vote is locked by another
        worker, already concluded, gone, or not yet due. Never waits on a lock.
        """
        if not await tx.try_acquire_exclusive(vote_id):
            logger.debug("Vote locked or no longer active, skipping", vote_id=vote_id)
            return None

        vote = await tx.get_vote(vote_id)
        if vote is None or not self.is_due(vote, now):
            return None

        ballots = await tx.list_ballots(vote_id)
        result = self.engine.tally(vote.options, [b.scores for b in ballots])

        await tx.mark_concluded(vote_id, now)

        archived = ArchivedVoteRecord(
            id=vote.id,
            user_fingerprint=vote.user_fingerprint,
            title=vote.title,
            description=vote.description,
            options=list(vote.options),
            duration_hours=vote.duration_hours,
            duration_minutes=vote.duration_minutes,
            created_at=vote.created_at,
            voting_ends_at=vote.voting_ends_at,
            archived_at=now,
            archive_expires_at=now + self.retention,
            final_stats=result.statistics,
            winner=result.winner,
            head_to_head=result.runoff,
        )
        await tx.insert_archive(archived, ballots)
        await tx.delete_vote(vote_id)

        logger.info(
            "Vote concluded",
            vote_id=vote_id,
            ballots=len(ballots),
            winner=result.winner,
            decided_by=result.runoff.decided_by.value if result.runoff else None,
        )
        return archived
