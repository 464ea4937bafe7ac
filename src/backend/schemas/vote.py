"""
Vote-related Pydantic schemas.

Stores return these records instead of ORM objects, so services work the
same against PostgreSQL and the in-process store.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from models.vote import VoteState
from schemas.statistics import RunoffResult, TallyResult, VoteStatistics


class VoteCreate(BaseModel):
    """Request to create a vote. Bounds are checked by services.validation."""

    title: str
    description: Optional[str] = None
    options: list[str]
    duration_hours: int = 0
    duration_minutes: int = 0


class VoteRecord(BaseModel):
    """An active (or concluding) vote."""

    id: str
    user_fingerprint: str
    title: str
    description: Optional[str] = None
    options: list[str]
    state: VoteState = VoteState.ACTIVE
    duration_hours: int
    duration_minutes: int
    created_at: datetime
    voting_ends_at: datetime
    archived_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    def is_open(self, now: datetime) -> bool:
        """Whether the vote still accepts ballots at ``now``."""
        return self.state == VoteState.ACTIVE and now < self.voting_ends_at


class BallotRecord(BaseModel):
    """A cast ballot, active or archived."""

    id: int
    vote_id: str
    user_fingerprint: str
    scores: list[int]
    cast_at: datetime

    model_config = {"from_attributes": True}


class ArchivedVoteRecord(BaseModel):
    """A concluded vote with its frozen final tally."""

    id: str
    user_fingerprint: str
    title: str
    description: Optional[str] = None
    options: list[str]
    duration_hours: int
    duration_minutes: int
    created_at: datetime
    voting_ends_at: datetime
    archived_at: datetime
    archive_expires_at: datetime
    final_stats: VoteStatistics
    winner: Optional[str] = Field(None, description="None when no winner was determinable")
    head_to_head: Optional[RunoffResult] = None

    state: VoteState = VoteState.CONCLUDED

    def to_tally(self) -> TallyResult:
        return TallyResult(
            statistics=self.final_stats,
            winner=self.winner,
            runoff=self.head_to_head,
        )


class VoteSummary(BaseModel):
    """Listing entry for active and archived votes."""

    id: str
    title: str
    description: Optional[str] = None
    options: list[str]
    state: VoteState
    voting_ends_at: datetime
    winner: Optional[str] = None
