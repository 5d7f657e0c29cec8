"""
TokenStore - Anti-forgery token and post-login grace marker.

The CSRF token lives in a cookie set by the server (double-submit pattern).
The grace marker lives in memory and is mirrored to session storage, so it
survives the in-memory copy being lost.
"""

from datetime import datetime, timedelta
from typing import Callable

import httpx
from loguru import logger

from apiclient.services.storage import ScopedStorage

AUTH_GRACE_KEY = "auth_grace_until"


class TokenStore:
    """
    Reads the anti-forgery cookie and tracks the authentication grace period.

    Usage:
        store = TokenStore(http_client.cookies, storage.scope("tab-1"))

        token = store.get_csrf_token()
        store.mark_authentication_complete()
        if store.in_grace_period():
            ...
    """

    def __init__(
        self,
        cookies: httpx.Cookies,
        storage: ScopedStorage,
        csrf_cookie_name: str = "csrf_token",
        grace_period: timedelta = timedelta(seconds=5),
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._cookies = cookies
        self._storage = storage
        self._csrf_cookie_name = csrf_cookie_name
        self._grace_period = grace_period
        self._clock = clock
        self._grace_until: datetime | None = None

    def get_csrf_token(self) -> str | None:
        """Current anti-forgery token from its cookie, if any."""
        for cookie in self._cookies.jar:
            if cookie.name == self._csrf_cookie_name and cookie.value:
                return cookie.value
        return None

    def set_csrf_token(self, token: str) -> None:
        """Store a token the server returned without depositing its cookie."""
        if self.get_csrf_token() == token:
            return
        self._cookies.delete(self._csrf_cookie_name)
        self._cookies.set(self._csrf_cookie_name, token)

    def mark_authentication_complete(self) -> datetime:
        """Start the grace window after a login or registration."""
        self._grace_until = self._clock() + self._grace_period
        self._storage.set_item(AUTH_GRACE_KEY, self._grace_until.isoformat())
        logger.debug(f"Auth grace period active until {self._grace_until.isoformat()}")
        return self._grace_until

    def in_grace_period(self) -> bool:
        """True while 401s should be treated as cookie propagation noise."""
        now = self._clock()
        if self._grace_until is not None and now < self._grace_until:
            return True

        stored = self._storage.get_item(AUTH_GRACE_KEY)
        if stored is None:
            return False

        try:
            stored_until = datetime.fromisoformat(stored)
        except ValueError:
            self._storage.remove_item(AUTH_GRACE_KEY)
            return False

        if now < stored_until:
            # Restore the in-memory copy
            self._grace_until = stored_until
            return True

        self._storage.remove_item(AUTH_GRACE_KEY)
        return False

    def clear_grace(self) -> None:
        self._grace_until = None
        self._storage.remove_item(AUTH_GRACE_KEY)
