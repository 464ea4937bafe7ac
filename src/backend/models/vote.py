"""
Active vote and ballot models for PostgreSQL storage.

Rows in these tables are mutable until the vote's deadline. Once concluded,
a vote and its ballots are copied into the archive tables and deleted here.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.config import VOTE_DURATION_CEILING_MINUTES
from db.base import Base


class VoteState(str, Enum):
    """Vote lifecycle state."""

    ACTIVE = "active"  # Accepting ballots until voting_ends_at
    CONCLUDED = "concluded"  # Tallied and archived, never reopened


class Vote(Base):
    """
    A STAR vote accepting ballots.

    Options are ordered; ballots reference them by position.
    """

    __tablename__ = "active_votes"

    __table_args__ = (
        CheckConstraint("length(trim(title)) > 0", name="title_not_blank"),
        CheckConstraint("voting_ends_at > created_at", name="ends_after_created"),
        CheckConstraint(
            "duration_hours >= 0"
            " AND duration_minutes BETWEEN 0 AND 59"
            " AND (duration_hours > 0 OR duration_minutes > 0)"
            f" AND (duration_hours * 60 + duration_minutes) <= {VOTE_DURATION_CEILING_MINUTES}",
            name="valid_duration",
        ),
        CheckConstraint(
            "array_length(options, 1) BETWEEN 2 AND 20"
            " AND array_position(options, NULL) IS NULL",
            name="valid_options",
        ),
        # archived_at is set exactly when the vote is concluded
        CheckConstraint(
            "(state = 'active' AND archived_at IS NULL)"
            " OR (state = 'concluded' AND archived_at IS NOT NULL)",
            name="valid_state_transitions",
        ),
        # Scheduler query: active votes past their deadline
        Index("ix_active_votes_state_voting_ends_at", "state", "voting_ends_at"),
        # Limiter query: active votes per creator
        Index("ix_active_votes_fingerprint_state", "user_fingerprint", "state"),
    )

    id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    user_fingerprint: Mapped[str] = mapped_column(String(255))

    title: Mapped[str] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    options: Mapped[list[str]] = mapped_column(ARRAY(Text))

    state: Mapped[str] = mapped_column(
        String(20),
        default=VoteState.ACTIVE.value,
    )

    duration_hours: Mapped[int] = mapped_column(Integer)
    duration_minutes: Mapped[int] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    voting_ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    ballots = relationship("Ballot", back_populates="vote")

    def __repr__(self) -> str:
        return f"<Vote(id={self.id}, state={self.state}, ends={self.voting_ends_at})>"


class Ballot(Base):
    """
    One voter's scores for a vote, aligned with the vote's options.

    A voter can cast at most one ballot per vote.
    """

    __tablename__ = "active_ballots"

    __table_args__ = (
        UniqueConstraint("vote_id", "user_fingerprint", name="uq_active_ballots_voter"),
        CheckConstraint(
            "array_length(scores, 1) > 0"
            " AND 0 <= ALL(scores) AND 5 >= ALL(scores)",
            name="valid_scores",
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    # Deletion is explicit (ballots first), there is no ON DELETE CASCADE
    vote_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("active_votes.id"),
        index=True,
    )
    user_fingerprint: Mapped[str] = mapped_column(String(255), index=True)
    scores: Mapped[list[int]] = mapped_column(ARRAY(Integer))

    cast_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    vote = relationship("Vote", back_populates="ballots")
