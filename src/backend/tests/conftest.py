"""
Pytest fixtures for StarVote backend tests.
"""

import asyncio
import os
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment variables before importing app modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("POSTGRES_PASSWORD", "test-password")
os.environ.setdefault("POSTGRES_HOST", "localhost")
os.environ.setdefault("POSTGRES_DB", "starvote_test")
os.environ.setdefault("RUN_SWEEP_ON_STARTUP", "false")

START_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    """A clock pinned to a fixed start time."""
    from core.clock import FrozenClock

    return FrozenClock(START_TIME)


@pytest.fixture
def store():
    """Empty in-process vote store."""
    from repositories.memory_store import InMemoryVoteStore

    return InMemoryVoteStore(lock_timeout_ms=1000)


@pytest.fixture
def vote_service(store, clock):
    """Vote service over the in-process store."""
    from services.vote_service import VoteService

    return VoteService(store, clock=clock)


@pytest.fixture
def archival_scheduler(store, clock):
    """Archival scheduler sharing the store and clock of vote_service."""
    from services.archival_scheduler import ArchivalScheduler

    return ArchivalScheduler(store, clock=clock)


@pytest.fixture
def vote_request() -> Any:
    """A valid three-option vote lasting one hour."""
    from schemas.vote import VoteCreate

    return VoteCreate(
        title="Best lunch spot",
        description="Pick where we go on Friday",
        options=["A", "B", "C"],
        duration_hours=1,
        duration_minutes=0,
    )


@pytest.fixture
def mock_db_session() -> AsyncMock:
    """Create mock database session."""
    session = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    return session


@pytest.fixture
def yield_after(monkeypatch):
    """
    Make an in-process store operation hand control back to the event loop
    once it has run, so gathered callers genuinely interleave.
    """
    from repositories.memory_store import InMemoryTransaction

    def _patch(name: str) -> None:
        original = getattr(InMemoryTransaction, name)

        async def interleaved(self, *args, **kwargs):
            result = await original(self, *args, **kwargs)
            await asyncio.sleep(0)
            return result

        monkeypatch.setattr(InMemoryTransaction, name, interleaved)

    return _patch
