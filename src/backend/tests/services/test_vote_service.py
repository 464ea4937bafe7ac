"""
Tests for Vote Service.

Covers vote creation, ballot casting (including concurrent duplicates),
live statistics, results and listing against the in-process store.
"""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from core.exceptions import (
    DuplicateBallotError,
    TransientStoreError,
    ValidationError,
    VoteClosedError,
    VoteNotFoundError,
)
from models.vote import VoteState


@pytest.mark.unit
class TestCreateVote:
    """Test create_vote."""

    async def test_creates_active_vote(self, vote_service, vote_request, clock, store) -> None:
        """Test creating an active vote."""
        vote = await vote_service.create_vote(vote_request, "fp-1")

        assert vote.state == VoteState.ACTIVE
        assert vote.created_at == clock.now()
        assert vote.voting_ends_at == clock.now() + timedelta(hours=1)
        assert vote.archived_at is None
        assert vote.options == ["A", "B", "C"]
        assert vote.id in store.votes

    async def test_duration_in_minutes(self, vote_service, vote_request, clock) -> None:
        """Test the deadline for a minutes-only duration."""
        vote_request.duration_hours = 2
        vote_request.duration_minutes = 15

        vote = await vote_service.create_vote(vote_request, "fp-1")

        assert vote.voting_ends_at - vote.created_at == timedelta(hours=2, minutes=15)

    async def test_invalid_request_writes_nothing(self, vote_service, vote_request, store) -> None:
        """Test that an invalid request writes nothing."""
        vote_request.options = ["Only one"]

        with pytest.raises(ValidationError) as exc_info:
            await vote_service.create_vote(vote_request, "fp-1")

        assert exc_info.value.field == "options"
        assert store.votes == {}

    async def test_invalid_fingerprint(self, vote_service, vote_request) -> None:
        """Test that a bad fingerprint is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            await vote_service.create_vote(vote_request, "")

        assert exc_info.value.field == "user_fingerprint"


@pytest.mark.unit
class TestCastBallot:
    """Test cast_ballot."""

    async def test_cast_ballot(self, vote_service, vote_request, store) -> None:
        """Test casting a ballot."""
        vote = await vote_service.create_vote(vote_request, "creator")

        ballot = await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0])

        assert ballot.vote_id == vote.id
        assert ballot.scores == [5, 3, 0]
        assert store.ballots[vote.id]["voter-1"] == ballot

    async def test_duplicate_ballot_rejected(self, vote_service, vote_request, store) -> None:
        """Test that a second ballot by the same voter is rejected."""
        vote = await vote_service.create_vote(vote_request, "creator")
        await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0])

        with pytest.raises(DuplicateBallotError) as exc_info:
            await vote_service.cast_ballot(vote.id, "voter-1", [0, 0, 5])

        assert str(exc_info.value) == "You have already voted"
        # The first ballot is not overwritten
        assert store.ballots[vote.id]["voter-1"].scores == [5, 3, 0]

    async def test_concurrent_duplicate_ballots(
        self, vote_service, vote_request, store, yield_after
    ) -> None:
        """Test that of two interleaved ballots by one voter exactly one is stored."""
        vote = await vote_service.create_vote(vote_request, "creator")
        # Both casts read the open vote before either inserts
        yield_after("get_vote")

        results = await asyncio.gather(
            vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0]),
            vote_service.cast_ballot(vote.id, "voter-1", [1, 2, 3]),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], DuplicateBallotError)
        assert store.ballots[vote.id]["voter-1"].scores == successes[0].scores

    async def test_score_count_must_match_options(self, vote_service, vote_request) -> None:
        """Test that a ballot must score every option."""
        vote = await vote_service.create_vote(vote_request, "creator")

        with pytest.raises(ValidationError) as exc_info:
            await vote_service.cast_ballot(vote.id, "voter-1", [5, 3])

        assert exc_info.value.field == "scores"

    async def test_out_of_range_score(self, vote_service, vote_request) -> None:
        """Test that a score above 5 is rejected."""
        vote = await vote_service.create_vote(vote_request, "creator")

        with pytest.raises(ValidationError):
            await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 6])

    async def test_unknown_vote(self, vote_service) -> None:
        """Test casting on an unknown vote."""
        with pytest.raises(VoteNotFoundError):
            await vote_service.cast_ballot(str(uuid4()), "voter-1", [5, 3, 0])

    async def test_malformed_vote_id(self, vote_service) -> None:
        """Test that a malformed id is treated as unknown."""
        with pytest.raises(VoteNotFoundError):
            await vote_service.cast_ballot("not-a-uuid", "voter-1", [5, 3, 0])

    async def test_past_deadline_before_sweep(self, vote_service, vote_request, clock) -> None:
        """Test that ballots are refused once the deadline passes."""
        vote = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)

        with pytest.raises(VoteClosedError):
            await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0])

    async def test_concluded_vote(
        self, vote_service, vote_request, clock, archival_scheduler
    ) -> None:
        """Test that ballots are refused on a concluded vote."""
        vote = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=2)
        await archival_scheduler.run_lifecycle_sweep()

        with pytest.raises(VoteClosedError):
            await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0])

    async def test_vote_being_concluded(self, vote_service, vote_request, store) -> None:
        """Test that a ballot during conclusion is a transient error."""
        vote = await vote_service.create_vote(vote_request, "creator")

        async with store.transaction() as tx:
            assert await tx.try_acquire_exclusive(vote.id)
            with pytest.raises(TransientStoreError):
                await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0])


@pytest.mark.unit
class TestResults:
    """Test live statistics, results, lookup and listing."""

    async def test_live_stats(self, vote_service, vote_request) -> None:
        """Test live statistics of an active vote."""
        vote = await vote_service.create_vote(vote_request, "creator")
        await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0])
        await vote_service.cast_ballot(vote.id, "voter-2", [4, 5, 1])

        result = await vote_service.compute_live_stats(vote.id)

        assert result.statistics.total_ballots == 2
        assert result.winner == "A"

    async def test_live_stats_without_ballots(self, vote_service, vote_request) -> None:
        """Test live statistics before any ballot."""
        vote = await vote_service.create_vote(vote_request, "creator")

        result = await vote_service.compute_live_stats(vote.id)

        assert result.statistics.total_ballots == 0
        assert result.winner is None

    async def test_live_stats_of_archived_vote(
        self, vote_service, vote_request, clock, archival_scheduler
    ) -> None:
        """Test live statistics after archiving."""
        vote = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()

        with pytest.raises(VoteClosedError):
            await vote_service.compute_live_stats(vote.id)

    async def test_results_of_archived_vote_are_frozen(
        self, vote_service, vote_request, clock, archival_scheduler
    ) -> None:
        """Test that archived results do not change."""
        vote = await vote_service.create_vote(vote_request, "creator")
        await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0])
        await vote_service.cast_ballot(vote.id, "voter-2", [4, 5, 1])
        live = await vote_service.get_results(vote.id)

        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()
        final = await vote_service.get_results(vote.id)

        assert final == live
        assert final.winner == "A"

    async def test_results_of_unknown_vote(self, vote_service) -> None:
        """Test results of an unknown vote."""
        with pytest.raises(VoteNotFoundError):
            await vote_service.get_results(str(uuid4()))

    async def test_get_vote(self, vote_service, vote_request, clock, archival_scheduler) -> None:
        """Test looking up active and archived votes."""
        vote = await vote_service.create_vote(vote_request, "creator")
        assert (await vote_service.get_vote(vote.id)).state == VoteState.ACTIVE

        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()

        archived = await vote_service.get_vote(vote.id)
        assert archived.state == VoteState.CONCLUDED
        assert archived.archived_at == clock.now()

        with pytest.raises(VoteNotFoundError):
            await vote_service.get_vote(str(uuid4()))

    async def test_list_votes_active_first(
        self, vote_service, vote_request, clock, archival_scheduler
    ) -> None:
        """Test that listing puts active votes first."""
        finished = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()

        vote_request.duration_hours = 2
        later = await vote_service.create_vote(vote_request, "creator")
        vote_request.duration_hours = 5
        latest = await vote_service.create_vote(vote_request, "creator")

        summaries = await vote_service.list_votes()

        assert [s.id for s in summaries] == [latest.id, later.id, finished.id]
        assert summaries[-1].state == VoteState.CONCLUDED
        assert summaries[-1].winner is None
