"""
Vote store provider.

Defines the transactional store interface the services depend on and
selects the implementation from configuration.

Usage:
    from repositories.provider import get_vote_store

    store = get_vote_store()
    async with store.transaction() as tx:
        vote = await tx.get_vote(vote_id)
"""

from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Optional, Protocol, Sequence, runtime_checkable

import structlog

from core.config import settings
from schemas.vote import ArchivedVoteRecord, BallotRecord, VoteRecord

logger = structlog.get_logger(__name__)


# =============================================================================
# Store Protocols (Interfaces)
# =============================================================================


@runtime_checkable
class VoteTransactionProtocol(Protocol):
    """
    Operations available inside one store transaction.

    Everything done through a transaction commits together or not at all.
    Locks taken through it are released when the transaction ends.
    """

    # Active votes
    async def get_vote(self, vote_id: str, lock: bool = False) -> Optional[VoteRecord]: ...
    async def list_active_votes(self) -> list[VoteRecord]: ...
    async def list_ballots(self, vote_id: str) -> list[BallotRecord]: ...
    async def count_active_votes(self, user_fingerprint: str) -> int: ...
    async def lock_fingerprint(self, user_fingerprint: str) -> None: ...
    async def insert_vote(self, vote: VoteRecord) -> VoteRecord: ...
    async def insert_ballot(
        self, vote_id: str, user_fingerprint: str, scores: list[int], cast_at: datetime
    ) -> BallotRecord: ...

    # Lifecycle
    async def list_due_vote_ids(self, now: datetime) -> list[str]: ...
    async def try_acquire_exclusive(self, vote_id: str) -> bool: ...
    async def mark_concluded(self, vote_id: str, archived_at: datetime) -> None: ...
    async def insert_archive(
        self, archived: ArchivedVoteRecord, ballots: Sequence[BallotRecord]
    ) -> None: ...
    async def delete_vote(self, vote_id: str) -> None: ...

    # Archive
    async def get_archived_vote(self, vote_id: str) -> Optional[ArchivedVoteRecord]: ...
    async def list_archived_votes(self) -> list[ArchivedVoteRecord]: ...
    async def list_archived_ballots(self, vote_id: str) -> list[BallotRecord]: ...
    async def list_expired_archive_ids(self, now: datetime) -> list[str]: ...
    async def delete_archive(self, vote_id: str, now: datetime) -> bool: ...


@runtime_checkable
class VoteStoreProtocol(Protocol):
    """A transactional store for votes, ballots and archives."""

    def transaction(self) -> AbstractAsyncContextManager[VoteTransactionProtocol]: ...


# =============================================================================
# Store Factory
# =============================================================================

_store: Optional[VoteStoreProtocol] = None


def get_vote_store() -> VoteStoreProtocol:
    """
    Get the configured vote store.

    PostgreSQL is used for deployments; the in-process store serves
    single-node setups and local development.
    """
    global _store
    if _store is None:
        if settings.STORE_BACKEND == "memory":
            from repositories.memory_store import InMemoryVoteStore

            _store = InMemoryVoteStore(lock_timeout_ms=settings.STORE_LOCK_TIMEOUT_MS)
        else:
            from db.session import get_session_maker
            from repositories.vote_repository import SqlAlchemyVoteStore

            _store = SqlAlchemyVoteStore(
                get_session_maker(),
                lock_timeout_ms=settings.STORE_LOCK_TIMEOUT_MS,
            )
        logger.info("Vote store initialized", backend=settings.STORE_BACKEND)
    return _store


def reset_vote_store() -> None:
    """Forget the cached store (used on shutdown and in tests)."""
    global _store
    _store = None
