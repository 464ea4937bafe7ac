"""
Tally result schemas.

These are returned by live result queries and frozen as JSON into the archive
when a vote concludes.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TieBreak(str, Enum):
    """Rule that settled the runoff."""

    HEAD_TO_HEAD = "head_to_head"
    TOTAL_SCORE = "total_score"
    FIVE_STAR_COUNT = "five_star_count"
    OPTION_ORDER = "option_order"


class OptionStats(BaseModel):
    """Aggregate scores for a single option."""

    option: str
    position: int = Field(..., description="Index of the option in the vote's option list")
    total_score: int
    average_score: float
    frequency: dict[int, int] = Field(
        ..., description="Score value (0-5) -> number of ballots giving that score"
    )
    total_votes: int

    @property
    def five_star_count(self) -> int:
        return self.frequency.get(5, 0)


class VoteStatistics(BaseModel):
    """Aggregate statistics for all options of a vote."""

    total_ballots: int
    option_scores: list[OptionStats]
    ranking: list[str] = Field(
        default_factory=list, description="Options by total score, highest first"
    )

    def for_option(self, option: str) -> OptionStats:
        for stats in self.option_scores:
            if stats.option == option:
                return stats
        raise KeyError(option)


class HeadToHeadMatchup(BaseModel):
    """Pairwise preference counts between two finalists."""

    option_a: str
    option_b: str
    votes_a: int
    votes_b: int
    no_preference: int


class RunoffResult(BaseModel):
    """Outcome of the automatic runoff between finalists."""

    winner: str
    finalists: list[str]
    matchups: list[HeadToHeadMatchup]
    decided_by: TieBreak

    @property
    def head_to_head(self) -> Optional[HeadToHeadMatchup]:
        """The matchup between the two leading finalists."""
        return self.matchups[0] if self.matchups else None


class TallyResult(BaseModel):
    """Statistics plus the STAR winner, if one can be determined."""

    statistics: VoteStatistics
    winner: Optional[str] = None
    runoff: Optional[RunoffResult] = None
