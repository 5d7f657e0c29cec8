"""
Pytest Configuration and Shared Fixtures
"""

import asyncio
import inspect
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx
import pytest

from apiclient.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from apiclient.services.client import RequestPipeline
from apiclient.services.events import SessionEvents
from apiclient.services.storage import SessionStorage
from apiclient.services.token_store import TokenStore
from apiclient.settings import Settings

BASE_URL = "http://api.example.com"


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ============================================================================
# Fake API server
# ============================================================================


Handler = Callable[[httpx.Request], Any]


def envelope(data: Any = None, message: str = "ok") -> dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def error_body(error: str, message: str, code: int) -> dict[str, Any]:
    return {"error": error, "message": message, "code": code}


class FakeServer:
    """Routes requests by (method, path) and records every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], Handler] = {}

    def route(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, path)] = handler

    def count(self, method: str, path: str) -> int:
        return sum(
            1 for r in self.requests if r.method == method and r.url.path == path
        )

    def last(self, method: str, path: str) -> httpx.Request:
        matches = [
            r for r in self.requests if r.method == method and r.url.path == path
        ]
        return matches[-1]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json=error_body("NOT_FOUND", "Not found", 404))
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result


class SessionServer(FakeServer):
    """
    Fake API with cookie-session semantics.

    - GET  /api/v1/csrf-token  issues a token and sets the cookie
    - POST /api/auth/refresh   restores the session when refresh_ok is True
    - everything under /api/v1/items requires a valid session, and a CSRF
      token on state-changing methods
    """

    def __init__(self, csrf_token: str = "csrf-1"):
        super().__init__()
        self.csrf_token = csrf_token
        self.session_valid = True
        self.refresh_ok = True
        self.refresh_delay = 0.0

        self.route("GET", "/api/v1/csrf-token", self._csrf)
        self.route("POST", "/api/auth/refresh", self._refresh)
        self.route("GET", "/api/v1/items", self._items)
        self.route("POST", "/api/v1/items", self._items)

    def _csrf(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"csrf_token": self.csrf_token},
            headers={"Set-Cookie": f"csrf_token={self.csrf_token}; Path=/"},
        )

    async def _refresh(self, request: httpx.Request) -> httpx.Response:
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_ok:
            self.session_valid = True
            return httpx.Response(200, json=envelope({"refreshed": True}))
        return httpx.Response(401, json=error_body("UNAUTHORIZED", "Refresh expired", 401))

    def _items(self, request: httpx.Request) -> httpx.Response:
        if not self.session_valid:
            return httpx.Response(401, json=error_body("UNAUTHORIZED", "Session expired", 401))
        if request.method != "GET" and request.headers.get("X-CSRF-Token") != self.csrf_token:
            return httpx.Response(403, json=error_body("CSRF_ERROR", "CSRF token mismatch", 403))
        return httpx.Response(200, json=envelope([{"id": 1}]))


# ============================================================================
# Refresher
# ============================================================================


class FakeRefresher:
    """SessionRefresher double with an optional gate."""

    def __init__(self, result: bool = True, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def refresh_session(self) -> bool:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.result


# ============================================================================
# Factories
# ============================================================================


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "api_base_url": BASE_URL,
        "propagation_delay": 0.01,
        "request_timeout": 5.0,
        "upload_timeout": 10.0,
    }
    values.update(overrides)
    return Settings(**values)


def make_pipeline(
    server: FakeServer,
    refresher: Any = None,
    clock: Callable[[], datetime] = datetime.now,
    events: SessionEvents | None = None,
    storage: SessionStorage | None = None,
    **overrides: Any,
) -> RequestPipeline:
    settings = make_settings(**overrides)
    http_client = httpx.AsyncClient(
        base_url=settings.api_base_url,
        transport=httpx.MockTransport(server),
    )
    return RequestPipeline(
        settings,
        http_client=http_client,
        storage=storage,
        refresher=refresher,
        events=events,
        clock=clock,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return SessionStorage()


@pytest.fixture
def scoped(storage):
    return storage.scope("tab-1")


@pytest.fixture
def token_store(scoped, clock):
    return TokenStore(httpx.Cookies(), scoped, clock=clock)


@pytest.fixture
def breaker(scoped, clock):
    return CircuitBreaker(
        scoped,
        CircuitBreakerConfig(failure_threshold=3, reset_timeout=timedelta(seconds=10)),
        clock=clock,
    )


@pytest.fixture
def events():
    return SessionEvents()


@pytest.fixture
def session_server():
    return SessionServer()
