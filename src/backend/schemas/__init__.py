"""Pydantic schemas for vote records and tally results."""

from schemas.statistics import (
    HeadToHeadMatchup,
    OptionStats,
    RunoffResult,
    TallyResult,
    TieBreak,
    VoteStatistics,
)
from schemas.vote import (
    ArchivedVoteRecord,
    BallotRecord,
    VoteCreate,
    VoteRecord,
    VoteSummary,
)

__all__ = [
    "ArchivedVoteRecord",
    "BallotRecord",
    "HeadToHeadMatchup",
    "OptionStats",
    "RunoffResult",
    "TallyResult",
    "TieBreak",
    "VoteCreate",
    "VoteRecord",
    "VoteStatistics",
    "VoteSummary",
]
