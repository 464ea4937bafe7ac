"""Vote store implementations and the provider that selects one."""

from repositories.memory_store import InMemoryVoteStore
from repositories.provider import (
    VoteStoreProtocol,
    VoteTransactionProtocol,
    get_vote_store,
    reset_vote_store,
)
from repositories.vote_repository import SqlAlchemyVoteStore, VoteRepository

__all__ = [
    "InMemoryVoteStore",
    "SqlAlchemyVoteStore",
    "VoteRepository",
    "VoteStoreProtocol",
    "VoteTransactionProtocol",
    "get_vote_store",
    "reset_vote_store",
]
