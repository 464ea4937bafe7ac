"""
Tests for Archival Scheduler Service.

Tests the lifecycle sweep and archive cleanup including:
- Concluding due votes and leaving open ones alone
- Idempotence across repeated sweeps
- Skipping votes locked by another worker
- Per-vote failure isolation
- Concurrent schedulers
- Archive expiry
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from core.exceptions import TransientStoreError


async def _create_votes(vote_service, vote_request, count: int) -> list:
    return [await vote_service.create_vote(vote_request, f"creator-{i}") for i in range(count)]


@pytest.mark.unit
class TestLifecycleSweep:
    """Test run_lifecycle_sweep."""

    async def test_concludes_due_votes_only(
        self, archival_scheduler, vote_service, vote_request, store, clock
    ) -> None:
        """Test that only votes past their deadline are concluded."""
        due = await vote_service.create_vote(vote_request, "creator")
        vote_request.duration_hours = 3
        still_open = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)

        result = await archival_scheduler.run_lifecycle_sweep()

        assert result.concluded == 1
        assert result.vote_ids == [due.id]
        assert due.id in store.archived_votes
        assert still_open.id in store.votes

    async def test_nothing_due(self, archival_scheduler, vote_service, vote_request) -> None:
        """Test a sweep with no due votes."""
        await vote_service.create_vote(vote_request, "creator")

        result = await archival_scheduler.run_lifecycle_sweep()

        assert result.to_dict() == {"concluded": 0, "skipped": 0, "failed": 0, "vote_ids": []}

    async def test_sweep_is_idempotent(
        self, archival_scheduler, vote_service, vote_request, store, clock
    ) -> None:
        """Test that a second sweep changes nothing."""
        vote = await vote_service.create_vote(vote_request, "creator")
        await vote_service.cast_ballot(vote.id, "voter-1", [5, 3, 0])
        clock.advance(hours=1)

        first = await archival_scheduler.run_lifecycle_sweep()
        archived = store.archived_votes[vote.id]
        second = await archival_scheduler.run_lifecycle_sweep()

        assert first.concluded == 1
        assert second.concluded == 0
        assert second.failed == 0
        assert len(store.archived_votes) == 1
        assert store.archived_votes[vote.id] == archived
        assert len(store.archived_ballots[vote.id]) == 1

    async def test_locked_vote_is_skipped(
        self, archival_scheduler, vote_service, vote_request, store, clock
    ) -> None:
        """Test that a vote held by another worker is skipped."""
        locked, free = await _create_votes(vote_service, vote_request, 2)
        clock.advance(hours=1)

        async with store.transaction() as other_worker:
            assert await other_worker.try_acquire_exclusive(locked.id)
            result = await archival_scheduler.run_lifecycle_sweep()

        assert result.concluded == 1
        assert result.skipped == 1
        assert result.vote_ids == [free.id]
        assert locked.id in store.votes

        # Picked up on the next tick once the lock is gone
        result = await archival_scheduler.run_lifecycle_sweep()
        assert result.vote_ids == [locked.id]

    async def test_failure_is_isolated_per_vote(
        self, archival_scheduler, vote_service, vote_request, store, clock
    ) -> None:
        """Test that one failing vote does not stop the sweep."""
        votes = await _create_votes(vote_service, vote_request, 3)
        clock.advance(hours=1)
        broken_id = votes[1].id

        original_conclude = archival_scheduler.lifecycle.conclude

        async def conclude(tx, vote_id, now):
            if vote_id == broken_id:
                raise RuntimeError("tally exploded")
            return await original_conclude(tx, vote_id, now)

        with patch.object(archival_scheduler.lifecycle, "conclude", side_effect=conclude):
            result = await archival_scheduler.run_lifecycle_sweep()

        assert result.concluded == 2
        assert result.failed == 1
        assert broken_id not in result.vote_ids
        assert broken_id in store.votes
        assert broken_id not in store.archived_votes

    async def test_transient_error_is_skipped(
        self, archival_scheduler, vote_service, vote_request, store, clock
    ) -> None:
        """Test that transient store errors defer the vote."""
        vote = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)

        with patch.object(
            archival_scheduler.lifecycle,
            "conclude",
            AsyncMock(side_effect=TransientStoreError("lock timeout")),
        ):
            result = await archival_scheduler.run_lifecycle_sweep()

        assert result.skipped == 1
        assert result.failed == 0
        assert vote.id in store.votes

    async def test_concurrent_schedulers_conclude_each_vote_once(
        self, vote_service, vote_request, store, clock, yield_after
    ) -> None:
        """Test that interleaved sweeps split the due votes without double-concluding."""
        from services.archival_scheduler import ArchivalScheduler

        votes = await _create_votes(vote_service, vote_request, 5)
        clock.advance(hours=1)
        yield_after("list_due_vote_ids")
        yield_after("try_acquire_exclusive")

        first, second = await asyncio.gather(
            ArchivalScheduler(store, clock=clock).run_lifecycle_sweep(),
            ArchivalScheduler(store, clock=clock).run_lifecycle_sweep(),
        )

        assert first.concluded + second.concluded == 5
        assert first.skipped + second.skipped == 5
        assert first.failed == second.failed == 0
        assert sorted(first.vote_ids + second.vote_ids) == sorted(v.id for v in votes)
        assert len(store.archived_votes) == 5
        assert store.votes == {}


@pytest.mark.unit
class TestArchiveCleanup:
    """Test run_archive_cleanup."""

    async def test_expired_archive_deleted_future_retained(
        self, archival_scheduler, vote_service, vote_request, store, clock
    ) -> None:
        """Test that only expired archives are deleted."""
        old = await vote_service.create_vote(vote_request, "creator")
        await vote_service.cast_ballot(old.id, "voter-1", [5, 3, 0])
        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()

        clock.advance(days=10)
        recent = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()

        clock.advance(days=20)
        result = await archival_scheduler.run_archive_cleanup()

        assert result.deleted == 1
        assert old.id not in store.archived_votes
        assert old.id not in store.archived_ballots
        assert recent.id in store.archived_votes

    async def test_expiry_boundary(
        self, archival_scheduler, vote_service, vote_request, store, clock
    ) -> None:
        """Test deletion exactly at the expiry instant."""
        vote = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()

        clock.advance(timedelta(days=30) - timedelta(seconds=1))
        assert (await archival_scheduler.run_archive_cleanup()).deleted == 0

        clock.advance(seconds=1)
        assert (await archival_scheduler.run_archive_cleanup()).deleted == 1
        assert vote.id not in store.archived_votes

    async def test_cleanup_is_idempotent(
        self, archival_scheduler, vote_service, vote_request, clock
    ) -> None:
        """Test that a second cleanup deletes nothing."""
        await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()
        clock.advance(days=31)

        assert (await archival_scheduler.run_archive_cleanup()).deleted == 1
        assert (await archival_scheduler.run_archive_cleanup()).to_dict() == {
            "deleted": 0,
            "failed": 0,
        }

    async def test_archive_locked_elsewhere_is_skipped(
        self, archival_scheduler, vote_service, vote_request, store, clock
    ) -> None:
        """Test that an archive held by another worker is skipped."""
        vote = await vote_service.create_vote(vote_request, "creator")
        clock.advance(hours=1)
        await archival_scheduler.run_lifecycle_sweep()
        now = clock.advance(days=31)

        async with store.transaction() as other_worker:
            assert await other_worker.delete_archive(vote.id, now)
            result = await archival_scheduler.run_archive_cleanup()

        assert result.deleted == 0
        assert vote.id not in store.archived_votes


@pytest.mark.unit
class TestTaskFunctions:
    """Test the module-level task wrappers."""

    async def test_lifecycle_sweep_task(self, vote_service, vote_request, store) -> None:
        """Test the module-level sweep task against the wall clock."""
        from services.archival_scheduler import lifecycle_sweep_task

        await vote_service.create_vote(vote_request, "creator")

        result = await lifecycle_sweep_task(store)

        # Uses the wall clock, so a vote created at a fixed past time is due
        assert result.concluded == 1
