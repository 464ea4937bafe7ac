"""
Vote Service

The operations exposed to callers (an HTTP layer, a CLI, tests):
- Create a vote, subject to validation and the per-user active vote limit
- Cast a ballot, at most one per user per vote
- Live statistics for active votes, frozen results for archived ones
- Vote lookup and listing
"""

from datetime import timedelta
from typing import Optional
from uuid import UUID, uuid4

import structlog

from core.clock import Clock, SystemClock
from core.exceptions import DuplicateBallotError, VoteClosedError, VoteNotFoundError
from models.vote import VoteState
from repositories.provider import VoteStoreProtocol, VoteTransactionProtocol
from schemas.statistics import TallyResult
from schemas.vote import (
    ArchivedVoteRecord,
    BallotRecord,
    VoteCreate,
    VoteRecord,
    VoteSummary,
)
from services.lifecycle import LifecycleStateMachine
from services.tally import TallyEngine
from services.validation import check_ballot_scores, check_fingerprint, check_vote_request
from services.vote_limiter import VoteLimiter

logger = structlog.get_logger(__name__)


def _normalize_vote_id(vote_id: str) -> str:
    """Canonical string form of a vote id; anything that is not a UUID is unknown."""
    try:
        return str(UUID(str(vote_id)))
    except ValueError as e:
        raise VoteNotFoundError(str(vote_id)) from e


class VoteService:
    """Vote creation, balloting and results."""

    def __init__(
        self,
        store: VoteStoreProtocol,
        clock: Optional[Clock] = None,
        engine: Optional[TallyEngine] = None,
        limiter: Optional[VoteLimiter] = None,
        lifecycle: Optional[LifecycleStateMachine] = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.engine = engine or TallyEngine()
        self.limiter = limiter or VoteLimiter()
        self.lifecycle = lifecycle or LifecycleStateMachine(self.engine)

    # ========================================================================
    # Mutations
    # ========================================================================

    async def create_vote(self, request: VoteCreate, user_fingerprint: str) -> VoteRecord:
        """
        Create an active vote.

        Raises:
            ValidationError: a field is out of bounds (nothing is written)
            LimitExceededError: the user already has the maximum active votes
        """
        check_fingerprint(user_fingerprint)
        check_vote_request(request)

        async with self.store.transaction() as tx:
            await self.limiter.ensure_capacity(tx, user_fingerprint)

            now = self.clock.now()
            vote = VoteRecord(
                id=str(uuid4()),
                user_fingerprint=user_fingerprint,
                title=request.title.strip(),
                description=request.description,
                options=list(request.options),
                state=VoteState.ACTIVE,
                duration_hours=request.duration_hours,
                duration_minutes=request.duration_minutes,
                created_at=now,
                voting_ends_at=now
                + timedelta(hours=request.duration_hours, minutes=request.duration_minutes),
            )
            await tx.insert_vote(vote)

        logger.info(
            "Vote created",
            vote_id=vote.id,
            options=len(vote.options),
            voting_ends_at=vote.voting_ends_at.isoformat(),
        )
        return vote

    async def cast_ballot(
        self,
        vote_id: str,
        user_fingerprint: str,
        scores: list[int],
    ) -> BallotRecord:
        """
        Cast one ballot.

        Raises:
            ValidationError: bad scores or fingerprint
            VoteNotFoundError: unknown vote
            VoteClosedError: vote past its deadline or already archived
            DuplicateBallotError: the user already voted on this vote
            TransientStoreError: the vote is being concluded right now
        """
        vote_id = _normalize_vote_id(vote_id)
        check_fingerprint(user_fingerprint)
        check_ballot_scores(scores)

        async with self.store.transaction() as tx:
            vote = await tx.get_vote(vote_id, lock=True)
            if vote is None:
                await self._raise_missing(tx, vote_id)

            now = self.clock.now()
            self.lifecycle.ensure_accepts_ballots(vote, now)
            check_ballot_scores(scores, len(vote.options))

            try:
                ballot = await tx.insert_ballot(vote_id, user_fingerprint, list(scores), now)
            except DuplicateBallotError:
                logger.info("Duplicate ballot rejected", vote_id=vote_id)
                raise

        logger.info("Ballot cast", vote_id=vote_id, ballot_id=ballot.id)
        return ballot

    # ========================================================================
    # Queries
    # ========================================================================

    async def compute_live_stats(self, vote_id: str) -> TallyResult:
        """
        Tally the current ballots of an active vote.

        Raises VoteClosedError for archived votes; use get_results for those.
        """
        vote_id = _normalize_vote_id(vote_id)
        async with self.store.transaction() as tx:
            vote = await tx.get_vote(vote_id)
            if vote is None:
                await self._raise_missing(tx, vote_id)
            ballots = await tx.list_ballots(vote_id)

        return self.engine.tally(vote.options, [b.scores for b in ballots])

    async def get_results(self, vote_id: str) -> TallyResult:
        """Live tally for an active vote, frozen final tally for an archived one."""
        vote_id = _normalize_vote_id(vote_id)
        async with self.store.transaction() as tx:
            vote = await tx.get_vote(vote_id)
            if vote is None:
                archived = await tx.get_archived_vote(vote_id)
                if archived is None:
                    raise VoteNotFoundError(vote_id)
                return archived.to_tally()
            ballots = await tx.list_ballots(vote_id)

        return self.engine.tally(vote.options, [b.scores for b in ballots])

    async def get_vote(self, vote_id: str) -> VoteRecord | ArchivedVoteRecord:
        vote_id = _normalize_vote_id(vote_id)
        async with self.store.transaction() as tx:
            vote = await tx.get_vote(vote_id)
            if vote is not None:
                return vote
            archived = await tx.get_archived_vote(vote_id)
            if archived is not None:
                return archived
        raise VoteNotFoundError(vote_id)

    async def list_votes(self) -> list[VoteSummary]:
        """Active votes first, then archived ones; latest deadline first within each."""
        async with self.store.transaction() as tx:
            active = await tx.list_active_votes()
            archived = await tx.list_archived_votes()

        summaries = [
            VoteSummary(
                id=v.id,
                title=v.title,
                description=v.description,
                options=v.options,
                state=v.state,
                voting_ends_at=v.voting_ends_at,
            )
            for v in active
        ] + [
            VoteSummary(
                id=a.id,
                title=a.title,
                description=a.description,
                options=a.options,
                state=VoteState.CONCLUDED,
                voting_ends_at=a.voting_ends_at,
                winner=a.winner,
            )
            for a in archived
        ]
        summaries.sort(key=lambda s: s.voting_ends_at, reverse=True)
        summaries.sort(key=lambda s: s.state != VoteState.ACTIVE)
        return summaries

    @staticmethod
    async def _raise_missing(tx: VoteTransactionProtocol, vote_id: str) -> None:
        """A vote that is no longer active is either archived (closed) or unknown."""
        if await tx.get_archived_vote(vote_id) is not None:
            raise VoteClosedError(vote_id)
        raise VoteNotFoundError(vote_id)
