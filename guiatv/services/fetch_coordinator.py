"""
Run Coordination

Prevents overlapping ingest runs inside one process. The coordinator is
created alongside the pipeline and passed in; it is not a module global.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any


logger = logging.getLogger(__name__)


def _skipped_response() -> dict[str, str]:
    return {
        "status": "skipped",
        "message": "EPG ingest operation already in progress",
    }


class FetchCoordinator:
    """
    Coordinates ingest runs to prevent concurrent executions.

    Uses an internal asyncio.Lock so only one run downloads, parses and
    writes at a time. Runs in other processes are not covered.
    """

    def __init__(self) -> None:
        self._fetch_lock = asyncio.Lock()

    async def execute(
        self,
        fetch_func: Callable[[], Awaitable[Any]],
        *,
        on_skip: Callable[[], Any] = _skipped_response,
    ) -> Any:
        """
        Execute a run with concurrency protection.

        Args:
            fetch_func: Async function performing the run
            on_skip: Builds the value returned when a run is already in progress

        Returns:
            Result from fetch_func, or on_skip() if another run holds the lock

        Raises:
            Any exception raised by fetch_func
        """
        if self._fetch_lock.locked():
            logger.warning("EPG ingest already in progress, skipping this request")
            return on_skip()

        async with self._fetch_lock:
            return await fetch_func()

    def is_fetching(self) -> bool:
        """True while a run is in progress."""
        return self._fetch_lock.locked()
