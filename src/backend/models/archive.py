"""
Archive models for concluded votes.

Archive rows are independent copies: they hold no reference back to the
active tables, carry the statistics frozen at conclusion time, and are purged
once archive_expires_at has passed.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base


class ArchivedVote(Base):
    """Immutable copy of a concluded vote with its final tally."""

    __tablename__ = "archived_votes"

    __table_args__ = (
        Index("ix_archived_votes_archive_expires_at", "archive_expires_at"),
        Index("ix_archived_votes_archived_at", "archived_at"),
    )

    id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)

    user_fingerprint: Mapped[str] = mapped_column(String(255), index=True)
    title: Mapped[str] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    options: Mapped[list[str]] = mapped_column(ARRAY(Text))

    duration_hours: Mapped[int] = mapped_column(Integer)
    duration_minutes: Mapped[int] = mapped_column(Integer)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    voting_ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    archive_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # Frozen tally: VoteStatistics / RunoffResult as JSON
    final_stats: Mapped[dict] = mapped_column(JSONB)
    # NULL when no winner was determinable (no ballots)
    winner: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    head_to_head: Mapped[Optional[dict]] = mapped_column(JSONB, nullable=True)


class ArchivedBallot(Base):
    """Immutable copy of a ballot; keeps the id it had while active."""

    __tablename__ = "archived_ballots"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)

    vote_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("archived_votes.id"),
        index=True,
    )
    user_fingerprint: Mapped[str] = mapped_column(String(255), index=True)
    scores: Mapped[list[int]] = mapped_column(ARRAY(Integer))
    cast_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
