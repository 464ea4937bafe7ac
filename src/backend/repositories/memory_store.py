"""
In-process vote store.

For single-node deployments and tests. It honors the same contract as the
PostgreSQL store:

- writes made in a transaction are undone if the transaction raises
- ``try_acquire_exclusive`` uses a row-owner table keyed by vote id and never
  waits; the lock is released when the owning transaction ends
- vote creation is serialized per fingerprint with an asyncio.Lock whose wait
  is bounded by the configured lock timeout; a lock lives only while some
  transaction holds or awaits it
- the (vote_id, user_fingerprint) pair is unique among active ballots
"""

import asyncio
import itertools
import weakref
from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog

from core.exceptions import DuplicateBallotError, TransientStoreError, VoteClosedError
from models.vote import VoteState
from schemas.vote import ArchivedVoteRecord, BallotRecord, VoteRecord

logger = structlog.get_logger(__name__)


class InMemoryTransaction:
    """Operations bound to one in-process transaction."""

    def __init__(self, store: "InMemoryVoteStore"):
        self.store = store
        self._undo: list[Callable[[], None]] = []
        self._row_locks: set[str] = set()
        self._held_fingerprints: list[asyncio.Lock] = []

    # ========================================================================
    # Transaction bookkeeping
    # ========================================================================

    def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()

    def release(self) -> None:
        for key in self._row_locks:
            self.store._row_owners.pop(key, None)
        self._row_locks.clear()
        for lock in self._held_fingerprints:
            lock.release()
        self._held_fingerprints.clear()

    def _try_lock_row(self, key: str) -> bool:
        owner = self.store._row_owners.get(key)
        if owner is not None and owner is not self:
            return False
        self.store._row_owners[key] = self
        self._row_locks.add(key)
        return True

    def _put(self, table: dict, key, value) -> None:
        missing = key not in table
        previous = table.get(key)
        table[key] = value
        if missing:
            self._undo.append(lambda: table.pop(key, None))
        else:
            self._undo.append(lambda: table.__setitem__(key, previous))

    def _pop(self, table: dict, key) -> None:
        if key in table:
            previous = table.pop(key)
            self._undo.append(lambda: table.__setitem__(key, previous))

    # ========================================================================
    # Active votes
    # ========================================================================

    async def get_vote(self, vote_id: str, lock: bool = False) -> Optional[VoteRecord]:
        vote = self.store.votes.get(vote_id)
        if vote is None:
            return None
        if lock and self.store._row_owners.get(f"vote:{vote_id}") not in (None, self):
            raise TransientStoreError(f"Vote {vote_id} is locked")
        return vote.model_copy(deep=True)

    async def list_active_votes(self) -> list[VoteRecord]:
        votes = [
            v.model_copy(deep=True)
            for v in self.store.votes.values()
            if v.state == VoteState.ACTIVE
        ]
        return sorted(votes, key=lambda v: v.created_at, reverse=True)

    async def list_ballots(self, vote_id: str) -> list[BallotRecord]:
        ballots = self.store.ballots.get(vote_id, {})
        return [b.model_copy(deep=True) for b in sorted(ballots.values(), key=lambda b: b.id)]

    async def count_active_votes(self, user_fingerprint: str) -> int:
        return sum(
            1
            for v in self.store.votes.values()
            if v.user_fingerprint == user_fingerprint and v.state == VoteState.ACTIVE
        )

    async def lock_fingerprint(self, user_fingerprint: str) -> None:
        lock = self.store._fingerprint_locks.setdefault(user_fingerprint, asyncio.Lock())
        if lock in self._held_fingerprints:
            return
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.store.lock_timeout)
        except asyncio.TimeoutError as e:
            logger.warning("Creation lock wait timed out", user_fingerprint=user_fingerprint)
            raise TransientStoreError(
                f"Timed out waiting for creation lock of {user_fingerprint}"
            ) from e
        self._held_fingerprints.append(lock)

    async def insert_vote(self, vote: VoteRecord) -> VoteRecord:
        self._put(self.store.votes, vote.id, vote.model_copy(deep=True))
        return vote

    async def insert_ballot(
        self,
        vote_id: str,
        user_fingerprint: str,
        scores: list[int],
        cast_at: datetime,
    ) -> BallotRecord:
        if vote_id not in self.store.votes:
            raise VoteClosedError(vote_id)
        ballots = self.store.ballots.setdefault(vote_id, {})
        if user_fingerprint in ballots:
            raise DuplicateBallotError(vote_id)
        ballot = BallotRecord(
            id=next(self.store._ballot_ids),
            vote_id=vote_id,
            user_fingerprint=user_fingerprint,
            scores=list(scores),
            cast_at=cast_at,
        )
        self._put(ballots, user_fingerprint, ballot)
        return ballot

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def list_due_vote_ids(self, now: datetime) -> list[str]:
        due = [
            v
            for v in self.store.votes.values()
            if v.state == VoteState.ACTIVE and v.voting_ends_at <= now
        ]
        return [v.id for v in sorted(due, key=lambda v: v.voting_ends_at)]

    async def try_acquire_exclusive(self, vote_id: str) -> bool:
        vote = self.store.votes.get(vote_id)
        if vote is None or vote.state != VoteState.ACTIVE:
            return False
        return self._try_lock_row(f"vote:{vote_id}")

    async def mark_concluded(self, vote_id: str, archived_at: datetime) -> None:
        vote = self.store.votes.get(vote_id)
        if vote is None or vote.state != VoteState.ACTIVE:
            raise VoteClosedError(vote_id)
        concluded = vote.model_copy(
            update={"state": VoteState.CONCLUDED, "archived_at": archived_at}
        )
        self._put(self.store.votes, vote_id, concluded)

    async def insert_archive(
        self,
        archived: ArchivedVoteRecord,
        ballots: Sequence[BallotRecord],
    ) -> None:
        self._put(self.store.archived_votes, archived.id, archived.model_copy(deep=True))
        self._put(
            self.store.archived_ballots,
            archived.id,
            [b.model_copy(deep=True) for b in ballots],
        )

    async def delete_vote(self, vote_id: str) -> None:
        self._pop(self.store.ballots, vote_id)
        self._pop(self.store.votes, vote_id)

    # ========================================================================
    # Archive
    # ========================================================================

    async def get_archived_vote(self, vote_id: str) -> Optional[ArchivedVoteRecord]:
        archived = self.store.archived_votes.get(vote_id)
        return archived.model_copy(deep=True) if archived else None

    async def list_archived_votes(self) -> list[ArchivedVoteRecord]:
        archived = sorted(
            self.store.archived_votes.values(),
            key=lambda a: a.archived_at,
            reverse=True,
        )
        return [a.model_copy(deep=True) for a in archived]

    async def list_archived_ballots(self, vote_id: str) -> list[BallotRecord]:
        return [b.model_copy(deep=True) for b in self.store.archived_ballots.get(vote_id, [])]

    async def list_expired_archive_ids(self, now: datetime) -> list[str]:
        return [
            a.id for a in self.store.archived_votes.values() if a.archive_expires_at <= now
        ]

    async def delete_archive(self, vote_id: str, now: datetime) -> bool:
        archived = self.store.archived_votes.get(vote_id)
        if archived is None or archived.archive_expires_at > now:
            return False
        if not self._try_lock_row(f"archive:{vote_id}"):
            return False
        self._pop(self.store.archived_ballots, vote_id)
        self._pop(self.store.archived_votes, vote_id)
        return True


class InMemoryVoteStore:
    """Vote store kept in process memory."""

    def __init__(self, lock_timeout_ms: int = 5000):
        self.lock_timeout = lock_timeout_ms / 1000 if lock_timeout_ms else None
        self.votes: dict[str, VoteRecord] = {}
        # vote_id -> user_fingerprint -> ballot
        self.ballots: dict[str, dict[str, BallotRecord]] = {}
        self.archived_votes: dict[str, ArchivedVoteRecord] = {}
        self.archived_ballots: dict[str, list[BallotRecord]] = {}
        self._row_owners: dict[str, InMemoryTransaction] = {}
        self._fingerprint_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._ballot_ids = itertools.count(1)

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[InMemoryTransaction, None]:
        tx = InMemoryTransaction(self)
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        finally:
            tx.release()
