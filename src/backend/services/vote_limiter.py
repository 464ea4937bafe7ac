"""
Per-user cap on simultaneously active votes.

The check runs inside the transaction that inserts the new vote. The user's
creation lock is taken first and held until that transaction ends, so two
concurrent creations by the same user cannot both see a count below the cap.
"""

import structlog

from core.config import settings
from core.exceptions import LimitExceededError
from repositories.provider import VoteTransactionProtocol

logger = structlog.get_logger(__name__)


class VoteLimiter:
    """Rejects vote creation once a user holds the maximum number of active votes."""

    def __init__(self, max_active_votes: int | None = None):
        self.max_active_votes = (
            max_active_votes
            if max_active_votes is not None
            else settings.MAX_ACTIVE_VOTES_PER_USER
        )

    async def ensure_capacity(self, tx: VoteTransactionProtocol, user_fingerprint: str) -> int:
        """
        Raise LimitExceededError if the user may not create another vote.

        Returns the user's current number of active votes.
        """
        await tx.lock_fingerprint(user_fingerprint)
        active = await tx.count_active_votes(user_fingerprint)
        if active >= self.max_active_votes:
            logger.info(
                "Active vote limit reached",
                user_fingerprint=user_fingerprint,
                active_votes=active,
                limit=self.max_active_votes,
            )
            raise LimitExceededError(user_fingerprint, self.max_active_votes)
        return active
