"""
StarVote Backend Worker

Runs the vote lifecycle scheduler: concludes votes as their deadlines pass
and purges expired archives. Voting operations themselves are exposed by
services.vote_service to whichever front end embeds this package.
"""

import asyncio
import signal

import structlog

from core.events import create_start_handler, create_stop_handler

logger = structlog.get_logger(__name__)


async def run_worker(stop_event: asyncio.Event | None = None) -> None:
    """Start the worker and keep it running until ``stop_event`` is set."""
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform or outside the main thread
            pass

    await create_start_handler()()
    try:
        await stop_event.wait()
    finally:
        await create_stop_handler()()


def main() -> None:
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
