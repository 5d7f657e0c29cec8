"""
RefreshCoordinator - Single-flight session refresh with queued replay.

Every caller that observes a 401 is queued. The first one starts the one and
only refresh; when it finishes the whole queue is drained:

- refresh succeeded: each queued call is replayed (one extra wait-and-replay
  if the replay still sees a 401 while cookies propagate)
- refresh failed: each queued call is settled with its own original response

At most one refresh is outstanding at any time.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

import httpx
from loguru import logger

from apiclient.services.circuit_breaker import CircuitBreaker
from apiclient.services.events import SessionEvents
from apiclient.services.token_store import TokenStore

Replay = Callable[[], Awaitable[httpx.Response]]


@runtime_checkable
class SessionRefresher(Protocol):
    """Restores a session from its refresh credential."""

    async def refresh_session(self) -> bool:
        """Return True if the session is valid again."""
        ...


@dataclass
class QueuedCall:
    """A caller suspended until the current refresh completes."""

    future: "asyncio.Future[httpx.Response]"
    replay: Replay
    original: httpx.Response

    def settle(self, response: httpx.Response) -> None:
        # A cancelled caller has already been settled
        if not self.future.done():
            self.future.set_result(response)

    def fail(self, exc: Exception) -> None:
        if not self.future.done():
            self.future.set_exception(exc)

    def cancel(self) -> None:
        if not self.future.done():
            self.future.cancel()


class RefreshCoordinator:
    """
    Owns the in-flight refresh handle and the queue of waiting callers.

    Usage:
        coordinator = RefreshCoordinator(auth_service, breaker, token_store, events)

        if response.status_code == 401:
            response = await coordinator.request_refresh(response, replay)
    """

    def __init__(
        self,
        refresher: SessionRefresher | None,
        breaker: CircuitBreaker,
        token_store: TokenStore,
        events: SessionEvents,
        propagation_delay: float = 0.5,
        debug: bool = False,
    ):
        self.refresher = refresher
        self._breaker = breaker
        self._token_store = token_store
        self._events = events
        self._propagation_delay = propagation_delay
        self._debug = debug

        self._in_flight: asyncio.Task[None] | None = None
        self._queue: list[QueuedCall] = []
        self._replays: set[asyncio.Task[None]] = set()
        self.refresh_count = 0

    @property
    def is_refreshing(self) -> bool:
        return self._in_flight is not None

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    async def request_refresh(
        self,
        original: httpx.Response,
        replay: Replay,
    ) -> httpx.Response:
        """
        Wait for a session refresh and return the replayed (or original) response.

        Args:
            original: The 401 response the caller received
            replay: Re-issues the caller's request with fresh headers

        Returns:
            The replayed response on refresh success, else ``original``
        """
        if self._breaker.is_open():
            logger.warning(
                f"Auth circuit open, not refreshing "
                f"({self._breaker.failure_count} consecutive failures)"
            )
            self._signal_session_expired()
            return original

        loop = asyncio.get_running_loop()
        call = QueuedCall(future=loop.create_future(), replay=replay, original=original)

        # Enqueue, check and start without yielding to the loop
        self._queue.append(call)
        if self._in_flight is None:
            self.refresh_count += 1
            self._in_flight = loop.create_task(self._run_refresh())
            self._log(f"START: refresh #{self.refresh_count}")
        else:
            self._log(f"QUEUE: {len(self._queue)} callers waiting on refresh")

        return await call.future

    async def _run_refresh(self) -> None:
        refreshed = False
        try:
            if self.refresher is None:
                logger.warning("No session refresher attached, cannot recover from 401")
            else:
                refreshed = bool(await self.refresher.refresh_session())
        except asyncio.CancelledError:
            # cancel_all may already have drained and started over
            if self._in_flight is asyncio.current_task():
                for call in self._take_queue():
                    call.cancel()
            raise
        except Exception as e:
            logger.warning(f"Session refresh failed during 401 recovery: {e}")

        queued = self._take_queue()

        if refreshed:
            self._breaker.reset()
            self._log(f"SUCCESS: replaying {len(queued)} queued calls")
            for call in queued:
                task = asyncio.ensure_future(self._replay(call))
                self._replays.add(task)
                task.add_done_callback(self._replays.discard)
            return

        failures = self._breaker.increment()
        logger.warning(
            f"Session refresh did not restore the session "
            f"(failure {failures}), settling {len(queued)} queued calls"
        )
        for call in queued:
            call.settle(call.original)
        self._signal_session_expired()

    def _take_queue(self) -> list[QueuedCall]:
        """Swap out the queue and clear the handle in one step."""
        queued = self._queue
        self._queue = []
        self._in_flight = None
        return queued

    async def _replay(self, call: QueuedCall) -> None:
        if call.future.done():
            return
        try:
            response = await call.replay()
            if response.status_code == 401:
                # Cookie may not have propagated yet
                self._log("REPLAY: still 401, waiting for cookie propagation")
                await asyncio.sleep(self._propagation_delay)
                if call.future.done():
                    return
                response = await call.replay()
        except asyncio.CancelledError:
            call.cancel()
            raise
        except Exception as e:
            call.fail(e)
            return
        call.settle(response)

    def _signal_session_expired(self) -> None:
        if self._token_store.in_grace_period():
            logger.debug("401 within auth grace period, not signalling session expiry")
            return
        self._events.emit_session_expired()

    async def cancel_all(self) -> int:
        """Cancel the in-flight refresh and pending replays (used on close)."""
        count = 0
        refresh_task = self._in_flight
        # The refresh task may not have started yet, so drain here
        for call in self._take_queue():
            call.cancel()
        if refresh_task is not None:
            refresh_task.cancel()
            count += 1
        for task in list(self._replays):
            task.cancel()
            count += 1
        return count

    def get_status(self) -> dict[str, Any]:
        return {
            "refreshing": self.is_refreshing,
            "queued": self.queue_length,
            "refresh_count": self.refresh_count,
            "pending_replays": len(self._replays),
        }

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[RefreshCoordinator] {message}")
