"""
PostgreSQL vote store.

Each store transaction wraps one AsyncSession transaction. Row locks use
PostgreSQL's native FOR UPDATE SKIP LOCKED / FOR SHARE NOWAIT, creation is
serialized per user with a transaction-scoped advisory lock, and the
one-ballot-per-voter rule is the unique constraint on active_ballots.
"""

from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import and_, delete, func, select, text, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import DuplicateBallotError, TransientStoreError, VoteClosedError
from models.archive import ArchivedBallot, ArchivedVote
from models.vote import Ballot, Vote, VoteState
from schemas.statistics import RunoffResult, VoteStatistics
from schemas.vote import ArchivedVoteRecord, BallotRecord, VoteRecord

logger = structlog.get_logger(__name__)

UNIQUE_VOTER_CONSTRAINT = "uq_active_ballots_voter"

# lock_not_available, serialization_failure, deadlock_detected, query_canceled
TRANSIENT_SQLSTATES = frozenset({"55P03", "40001", "40P01", "57014"})


def is_transient_error(error: DBAPIError) -> bool:
    """Lock contention, timeouts and dropped connections can be retried."""
    if isinstance(error, OperationalError) or error.connection_invalidated:
        return True
    sqlstate = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    return sqlstate in TRANSIENT_SQLSTATES


def _to_archived_record(row: ArchivedVote) -> ArchivedVoteRecord:
    return ArchivedVoteRecord(
        id=str(row.id),
        user_fingerprint=row.user_fingerprint,
        title=row.title,
        description=row.description,
        options=list(row.options),
        duration_hours=row.duration_hours,
        duration_minutes=row.duration_minutes,
        created_at=row.created_at,
        voting_ends_at=row.voting_ends_at,
        archived_at=row.archived_at,
        archive_expires_at=row.archive_expires_at,
        final_stats=VoteStatistics.model_validate(row.final_stats),
        winner=row.winner,
        head_to_head=RunoffResult.model_validate(row.head_to_head) if row.head_to_head else None,
    )


class VoteRepository:
    """Vote, ballot and archive operations bound to one database transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================================================
    # Active votes
    # ========================================================================

    async def get_vote(self, vote_id: str, lock: bool = False) -> Optional[VoteRecord]:
        """
        Get an active vote.

        With ``lock`` the row is share-locked without waiting, so a vote that
        is being concluded right now raises TransientStoreError instead.
        """
        query = select(Vote).where(Vote.id == vote_id)
        if lock:
            query = query.with_for_update(read=True, nowait=True)
        result = await self.db.execute(query)
        vote = result.scalar_one_or_none()
        return VoteRecord.model_validate(vote) if vote else None

    async def list_active_votes(self) -> list[VoteRecord]:
        result = await self.db.execute(
            select(Vote)
            .where(Vote.state == VoteState.ACTIVE.value)
            .order_by(Vote.created_at.desc())
        )
        return [VoteRecord.model_validate(v) for v in result.scalars().all()]

    async def list_ballots(self, vote_id: str) -> list[BallotRecord]:
        result = await self.db.execute(
            select(Ballot).where(Ballot.vote_id == vote_id).order_by(Ballot.id)
        )
        return [BallotRecord.model_validate(b) for b in result.scalars().all()]

    async def count_active_votes(self, user_fingerprint: str) -> int:
        """Number of active votes created by a user."""
        result = await self.db.execute(
            select(func.count(Vote.id)).where(
                and_(
                    Vote.user_fingerprint == user_fingerprint,
                    Vote.state == VoteState.ACTIVE.value,
                )
            )
        )
        return result.scalar() or 0

    async def lock_fingerprint(self, user_fingerprint: str) -> None:
        """Serialize vote creation per user until the transaction ends."""
        await self.db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"vote-create:{user_fingerprint}"},
        )

    async def insert_vote(self, vote: VoteRecord) -> VoteRecord:
        row = Vote(
            id=vote.id,
            user_fingerprint=vote.user_fingerprint,
            title=vote.title,
            description=vote.description,
            options=list(vote.options),
            state=vote.state.value,
            duration_hours=vote.duration_hours,
            duration_minutes=vote.duration_minutes,
            created_at=vote.created_at,
            voting_ends_at=vote.voting_ends_at,
            archived_at=vote.archived_at,
        )
        self.db.add(row)
        await self.db.flush()
        return vote

    async def insert_ballot(
        self,
        vote_id: str,
        user_fingerprint: str,
        scores: list[int],
        cast_at: datetime,
    ) -> BallotRecord:
        """Insert a ballot; a second ballot from the same voter is rejected."""
        ballot = Ballot(
            vote_id=vote_id,
            user_fingerprint=user_fingerprint,
            scores=list(scores),
            cast_at=cast_at,
        )
        self.db.add(ballot)
        try:
            await self.db.flush()
        except IntegrityError as e:
            if UNIQUE_VOTER_CONSTRAINT in str(e.orig):
                raise DuplicateBallotError(vote_id) from e
            raise
        return BallotRecord.model_validate(ballot)

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def list_due_vote_ids(self, now: datetime) -> list[str]:
        """Active votes whose deadline has passed, oldest deadline first."""
        result = await self.db.execute(
            select(Vote.id)
            .where(
                and_(
                    Vote.state == VoteState.ACTIVE.value,
                    Vote.voting_ends_at <= now,
                )
            )
            .order_by(Vote.voting_ends_at.asc())
        )
        return [str(vote_id) for vote_id in result.scalars().all()]

    async def try_acquire_exclusive(self, vote_id: str) -> bool:
        """Lock an active vote row, or return False at once if someone else holds it."""
        result = await self.db.execute(
            select(Vote.id)
            .where(
                and_(
                    Vote.id == vote_id,
                    Vote.state == VoteState.ACTIVE.value,
                )
            )
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none() is not None

    async def mark_concluded(self, vote_id: str, archived_at: datetime) -> None:
        result = await self.db.execute(
            update(Vote)
            .where(
                and_(
                    Vote.id == vote_id,
                    Vote.state == VoteState.ACTIVE.value,
                )
            )
            .values(state=VoteState.CONCLUDED.value, archived_at=archived_at)
        )
        if result.rowcount != 1:
            raise VoteClosedError(vote_id)

    async def insert_archive(
        self,
        archived: ArchivedVoteRecord,
        ballots: Sequence[BallotRecord],
    ) -> None:
        """Copy a concluded vote and its ballots into the archive tables."""
        self.db.add(
            ArchivedVote(
                id=archived.id,
                user_fingerprint=archived.user_fingerprint,
                title=archived.title,
                description=archived.description,
                options=list(archived.options),
                duration_hours=archived.duration_hours,
                duration_minutes=archived.duration_minutes,
                created_at=archived.created_at,
                voting_ends_at=archived.voting_ends_at,
                archived_at=archived.archived_at,
                archive_expires_at=archived.archive_expires_at,
                final_stats=archived.final_stats.model_dump(mode="json"),
                winner=archived.winner,
                head_to_head=(
                    archived.head_to_head.model_dump(mode="json")
                    if archived.head_to_head
                    else None
                ),
            )
        )
        await self.db.flush()

        self.db.add_all(
            ArchivedBallot(
                id=ballot.id,
                vote_id=archived.id,
                user_fingerprint=ballot.user_fingerprint,
                scores=list(ballot.scores),
                cast_at=ballot.cast_at,
            )
            for ballot in ballots
        )
        await self.db.flush()

    async def delete_vote(self, vote_id: str) -> None:
        """Delete an active vote, ballots first."""
        await self.db.execute(delete(Ballot).where(Ballot.vote_id == vote_id))
        await self.db.execute(delete(Vote).where(Vote.id == vote_id))

    # ========================================================================
    # Archive
    # ========================================================================

    async def get_archived_vote(self, vote_id: str) -> Optional[ArchivedVoteRecord]:
        result = await self.db.execute(select(ArchivedVote).where(ArchivedVote.id == vote_id))
        row = result.scalar_one_or_none()
        return _to_archived_record(row) if row else None

    async def list_archived_votes(self) -> list[ArchivedVoteRecord]:
        result = await self.db.execute(
            select(ArchivedVote).order_by(ArchivedVote.archived_at.desc())
        )
        return [_to_archived_record(row) for row in result.scalars().all()]

    async def list_archived_ballots(self, vote_id: str) -> list[BallotRecord]:
        result = await self.db.execute(
            select(ArchivedBallot)
            .where(ArchivedBallot.vote_id == vote_id)
            .order_by(ArchivedBallot.id)
        )
        return [BallotRecord.model_validate(b) for b in result.scalars().all()]

    async def list_expired_archive_ids(self, now: datetime) -> list[str]:
        result = await self.db.execute(
            select(ArchivedVote.id).where(ArchivedVote.archive_expires_at <= now)
        )
        return [str(vote_id) for vote_id in result.scalars().all()]

    async def delete_archive(self, vote_id: str, now: datetime) -> bool:
        """
        Delete an expired archive entry, ballots first.

        Returns False if the entry is gone, not yet expired, or being deleted
        by another worker.
        """
        result = await self.db.execute(
            select(ArchivedVote.id)
            .where(
                and_(
                    ArchivedVote.id == vote_id,
                    ArchivedVote.archive_expires_at <= now,
                )
            )
            .with_for_update(skip_locked=True)
        )
        if result.scalar_one_or_none() is None:
            return False

        await self.db.execute(delete(ArchivedBallot).where(ArchivedBallot.vote_id == vote_id))
        await self.db.execute(delete(ArchivedVote).where(ArchivedVote.id == vote_id))
        return True


class SqlAlchemyVoteStore:
    """Vote store backed by PostgreSQL."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        lock_timeout_ms: int = 0,
    ):
        self.session_maker = session_maker
        self.lock_timeout_ms = lock_timeout_ms

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[VoteRepository, None]:
        """
        Open a transaction; commit on success, roll back on any exception.

        Retryable database failures are raised as TransientStoreError.
        """
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    if self.lock_timeout_ms:
                        await session.execute(
                            text(f"SET LOCAL lock_timeout = '{int(self.lock_timeout_ms)}ms'")
                        )
                    yield VoteRepository(session)
        except DBAPIError as e:
            if is_transient_error(e):
                logger.warning("Transient store error", error=str(e.orig))
                raise TransientStoreError(str(e.orig)) from e
            raise
