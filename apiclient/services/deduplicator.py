"""
RequestDeduplicator - Prevents duplicate concurrent requests.

When multiple callers request the same resource simultaneously,
only one actual request is made and the result is shared.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Deduplicates concurrent async requests.

    The lookup and the task creation happen in one synchronous block, so two
    callers arriving in the same loop iteration can never both start a request.

    Usage:
        dedup = RequestDeduplicator()

        token = await dedup.dedupe("csrf-token", fetch_token)
    """

    def __init__(self, debug: bool = False):
        self._in_flight: dict[str, asyncio.Task[Any]] = {}
        self._debug = debug
        self._fetches = 0
        self._shared = 0

    async def dedupe(
        self,
        key: str,
        request_fn: Callable[[], Awaitable[T]],
    ) -> T:
        """
        Execute request with deduplication.

        If a request with the same key is already in flight,
        wait for and return its result instead of making a new request.
        A waiter being cancelled does not cancel the shared request.
        """
        task = self._in_flight.get(key)
        if task is not None:
            self._shared += 1
            self._log(f"DEDUPE: Waiting for in-flight request: {key[:50]}")
        else:
            self._fetches += 1
            self._log(f"NEW: Starting request: {key[:50]}")
            task = asyncio.ensure_future(request_fn())
            self._in_flight[key] = task
            task.add_done_callback(lambda _t, k=key: self._cleanup(k, _t))

        return await asyncio.shield(task)

    def _cleanup(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        self._log(f"DONE: Request completed: {key[:50]}")

    async def cancel_all(self) -> int:
        """Cancel all in-flight requests."""
        count = len(self._in_flight)
        for task in self._in_flight.values():
            task.cancel()
        self._in_flight.clear()
        if count:
            self._log(f"CANCEL_ALL: {count} requests cancelled")
        return count

    def get_stats(self) -> dict[str, int]:
        return {
            "fetches": self._fetches,
            "shared": self._shared,
            "in_flight": len(self._in_flight),
        }

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")
