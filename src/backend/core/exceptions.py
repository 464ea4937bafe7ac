"""
Domain exceptions for vote creation, balloting and the vote lifecycle.

Every error is local to the operation that raised it; none of them leaves a
partially applied write behind.
"""


class StarVoteError(Exception):
    """Base exception for vote operations."""

    pass


class ValidationError(StarVoteError):
    """Input rejected before any mutation."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class LimitExceededError(StarVoteError):
    """The user already holds the maximum number of active votes."""

    def __init__(self, user_fingerprint: str, limit: int):
        self.user_fingerprint = user_fingerprint
        self.limit = limit
        super().__init__(f"Maximum active vote limit ({limit}) reached")


class DuplicateBallotError(StarVoteError):
    """A ballot already exists for this (vote, voter) pair."""

    def __init__(self, vote_id: str):
        self.vote_id = vote_id
        super().__init__("You have already voted")


class VoteClosedError(StarVoteError):
    """Mutation attempted on a vote that has ended or been concluded."""

    def __init__(self, vote_id: str):
        self.vote_id = vote_id
        super().__init__(f"Vote {vote_id} has ended")


class VoteNotFoundError(StarVoteError):
    """Unknown vote id."""

    def __init__(self, vote_id: str):
        self.vote_id = vote_id
        super().__init__(f"Vote {vote_id} not found")


class TransientStoreError(StarVoteError):
    """Lock contention, lock timeout or lost connection. Safe to retry."""

    pass
