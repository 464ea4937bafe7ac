"""Database models module."""

from models.archive import ArchivedBallot, ArchivedVote
from models.vote import Ballot, Vote, VoteState

__all__ = [
    "Vote",
    "Ballot",
    "VoteState",
    "ArchivedVote",
    "ArchivedBallot",
]
