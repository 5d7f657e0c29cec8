"""
SessionEvents - Out-of-band "session expired" signal.

Listeners are typically the application shell, which redirects to login.
Emission is fire-and-forget: it never blocks or fails the call that triggered it.
"""

import asyncio
import inspect
from typing import Any, Callable

from loguru import logger

SESSION_EXPIRED = "session-expired"

Listener = Callable[[str], Any]


class SessionEvents:
    """
    Tiny pub/sub for session lifecycle events.

    Usage:
        events = SessionEvents(is_on_login_view=lambda: router.path == "/login")
        unsubscribe = events.subscribe(lambda event: router.push("/login"))
    """

    def __init__(self, is_on_login_view: Callable[[], bool] | None = None):
        self._listeners: list[Listener] = []
        self._is_on_login_view = is_on_login_view
        self._tasks: set[asyncio.Task[Any]] = set()
        self.emitted = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def on_login_view(self) -> bool:
        return bool(self._is_on_login_view and self._is_on_login_view())

    def emit_session_expired(self) -> bool:
        """
        Signal session expiry to every listener.

        Returns False when suppressed because the user is already on the login view.
        """
        if self.on_login_view():
            logger.debug("Session expired while on login view, not signalling")
            return False

        self.emitted += 1
        logger.info("Session expired, notifying listeners")
        for listener in list(self._listeners):
            self._dispatch(listener, SESSION_EXPIRED)
        return True

    def _dispatch(self, listener: Listener, event: str) -> None:
        try:
            result = listener(event)
        except Exception as e:
            logger.opt(exception=e).error(f"Session event listener failed: {e}")
            return

        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_listener_done)

    def _on_listener_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            exc = task.exception()
            logger.opt(exception=exc).error(f"Session event listener failed: {exc}")
