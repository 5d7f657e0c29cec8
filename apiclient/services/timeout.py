"""
TimeoutGuard - Bounds every network call with a cancellation window.

Two profiles:
- default: ordinary API calls
- long_running: uploads and other large payloads
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from apiclient.services.errors import NetworkError, RequestTimeoutError

T = TypeVar("T")

DEFAULT_TIMEOUT = 30.0
LONG_RUNNING_TIMEOUT = 120.0


class TimeoutGuard:
    """
    Runs a call under a timeout; on expiry the call is cancelled.

    No retry happens here.

    Usage:
        guard = TimeoutGuard()
        response = await guard.run("/api/v1/items", lambda: http.get(url))
    """

    def __init__(
        self,
        default_timeout: float = DEFAULT_TIMEOUT,
        long_running_timeout: float = LONG_RUNNING_TIMEOUT,
    ):
        self.default_timeout = default_timeout
        self.long_running_timeout = long_running_timeout

    def resolve(self, timeout: float | None = None, long_running: bool = False) -> float:
        """Pick the effective timeout for a call."""
        if timeout is not None:
            return timeout
        return self.long_running_timeout if long_running else self.default_timeout

    async def run(
        self,
        path: str,
        call: Callable[[], Awaitable[T]],
        timeout: float | None = None,
        long_running: bool = False,
    ) -> T:
        """
        Execute ``call`` bounded by the resolved timeout.

        Raises:
            RequestTimeoutError: If the window elapses (the call is cancelled)
            NetworkError: For transport failures
        """
        limit = self.resolve(timeout, long_running)

        try:
            return await asyncio.wait_for(call(), timeout=limit)

        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning(f"Request to {path} timed out after {limit}s")
            raise RequestTimeoutError(path, limit) from e

        except httpx.RequestError as e:
            raise NetworkError(f"Network error for '{path}': {e}", path=path) from e
