"""
HeaderComposer - Per-request headers: trace id and anti-forgery token.
"""

import uuid
from typing import Awaitable, Callable

from apiclient.services.token_store import TokenStore

REQUEST_ID_HEADER = "X-Request-ID"
CSRF_HEADER = "X-CSRF-Token"

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def generate_request_id() -> str:
    """Random trace identifier for one call."""
    return str(uuid.uuid4())


def is_state_changing(method: str | None) -> bool:
    """Anything other than a pure read needs CSRF protection."""
    return (method or "GET").upper() not in SAFE_METHODS


class HeaderComposer:
    """
    Builds the header set for a single call. Stateless between calls.

    Usage:
        composer = HeaderComposer(token_store, fetch_csrf_token)
        headers = await composer.compose("POST", {"Accept": "application/json"})
    """

    def __init__(
        self,
        token_store: TokenStore,
        fetch_csrf_token: Callable[[], Awaitable[str | None]],
    ):
        self._token_store = token_store
        self._fetch_csrf_token = fetch_csrf_token

    async def compose(
        self,
        method: str,
        extra: dict[str, str] | None = None,
    ) -> dict[str, str]:
        headers = {REQUEST_ID_HEADER: generate_request_id()}

        if is_state_changing(method):
            token = self._token_store.get_csrf_token()
            if not token:
                token = await self._fetch_csrf_token()
            if token:
                headers[CSRF_HEADER] = token

        # Caller headers win
        if extra:
            headers.update(extra)
        return headers
