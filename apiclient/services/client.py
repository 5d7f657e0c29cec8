"""
RequestPipeline - Authenticated async HTTP client with resilience patterns.

Combines:
- HeaderComposer for trace ids and anti-forgery tokens
- TimeoutGuard for bounded, cancellable calls
- RefreshCoordinator + CircuitBreaker for session-expiry recovery
- RequestDeduplicator for concurrent anti-forgery token fetches
- Response normalization into payloads or ApiError
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable

import httpx
from loguru import logger
from pydantic import ValidationError

from apiclient.models import CsrfTokenResponse
from apiclient.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from apiclient.services.deduplicator import RequestDeduplicator
from apiclient.services.errors import ErrorCode, ServiceError
from apiclient.services.events import SessionEvents
from apiclient.services.headers import (
    REQUEST_ID_HEADER,
    HeaderComposer,
    generate_request_id,
    is_state_changing,
)
from apiclient.services.normalizer import normalize_response
from apiclient.services.refresh import RefreshCoordinator, SessionRefresher
from apiclient.services.storage import SessionStorage
from apiclient.services.timeout import TimeoutGuard
from apiclient.services.token_store import TokenStore
from apiclient.settings import Settings, global_settings

CSRF_DEDUP_KEY = "csrf-token"


@dataclass
class RequestOptions:
    """Description of one call. Reused verbatim for retries and replays."""

    method: str = "GET"
    params: dict[str, Any] | None = None
    json: Any = None
    content: bytes | str | None = None
    data: dict[str, Any] | None = None
    files: Any = None
    headers: dict[str, str] | None = None
    timeout: float | None = None
    long_running: bool = False


class RequestPipeline:
    """
    Public entry point for authenticated API calls.

    Holds no coordination state of its own; the breaker record, grace marker
    and refresh queue live in the components it composes.

    Usage:
        async with RequestPipeline(settings) as pipeline:
            pipeline.attach_refresher(auth_service)

            # Raw response (401 recovery and CSRF retry applied)
            response = await pipeline.execute("/api/v1/items")

            # Decoded payload or ApiError
            items = await pipeline.get("/items", params={"limit": 20})
            created = await pipeline.post("/items", {"name": "x"})
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        storage: SessionStorage | None = None,
        refresher: SessionRefresher | None = None,
        events: SessionEvents | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or global_settings
        debug = self.settings.debug

        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            base_url=self.settings.api_base_url,
            timeout=None,  # bounded by TimeoutGuard
            follow_redirects=True,
        )

        self.storage = storage or SessionStorage(debug=debug)
        scoped = self.storage.scope(self.settings.session_scope)

        self.token_store = TokenStore(
            self._http_client.cookies,
            scoped,
            csrf_cookie_name=self.settings.csrf_cookie_name,
            grace_period=timedelta(seconds=self.settings.auth_grace_seconds),
            clock=clock,
        )
        self.breaker = CircuitBreaker(
            scoped,
            CircuitBreakerConfig(
                failure_threshold=self.settings.circuit_failure_threshold,
                reset_timeout=timedelta(seconds=self.settings.circuit_reset_seconds),
            ),
            clock=clock,
        )
        self.events = events or SessionEvents()
        self.coordinator = RefreshCoordinator(
            refresher,
            self.breaker,
            self.token_store,
            self.events,
            propagation_delay=self.settings.propagation_delay,
            debug=debug,
        )
        self.timeout_guard = TimeoutGuard(
            default_timeout=self.settings.request_timeout,
            long_running_timeout=self.settings.upload_timeout,
        )
        self._deduplicator = RequestDeduplicator(debug=debug)
        self.header_composer = HeaderComposer(self.token_store, self.fetch_csrf_token)

    @property
    def http_client(self) -> httpx.AsyncClient:
        return self._http_client

    def attach_refresher(self, refresher: SessionRefresher) -> None:
        """Inject the session refresher (breaks the client <-> auth cycle)."""
        self.coordinator.refresher = refresher

    def mark_authentication_complete(self) -> None:
        """Call after a successful login or registration."""
        self.token_store.mark_authentication_complete()
        self.breaker.reset()

    # Core pipeline

    async def execute(
        self,
        path: str,
        options: RequestOptions | None = None,
    ) -> httpx.Response:
        """
        Execute a call with CSRF retry and session-expiry recovery.

        Returns the final raw response; 4xx/5xx are not raised here.

        Raises:
            RequestTimeoutError: If the call exceeds its timeout
            NetworkError: For transport failures
        """
        options = options or RequestOptions()
        response = await self._send_with_csrf_retry(path, options)

        if response.status_code == 401 and not self._is_auth_path(path):
            logger.info(f"401 from {path}, awaiting session refresh")
            return await self.coordinator.request_refresh(
                response,
                lambda: self._send(path, options),
            )

        if response.status_code == 429:
            logger.warning(
                f"Rate limited on {path} "
                f"(Retry-After: {response.headers.get('Retry-After', 'n/a')})"
            )

        return response

    async def api_fetch(
        self,
        path: str,
        options: RequestOptions | None = None,
    ) -> httpx.Response:
        """
        Execute a call with CSRF retry only.

        Used for auth endpoints and by the session refresher, which must not
        re-enter 401 recovery.
        """
        return await self._send_with_csrf_retry(path, options or RequestOptions())

    async def request(self, path: str, options: RequestOptions | None = None) -> Any:
        """Execute and decode. Raises ApiError for non-success responses."""
        return normalize_response(await self.execute(path, options))

    async def _send(self, path: str, options: RequestOptions) -> httpx.Response:
        """One attempt: fresh headers, bounded by the timeout guard."""
        headers = await self.header_composer.compose(options.method, options.headers)

        async def call() -> httpx.Response:
            return await self._http_client.request(
                options.method.upper(),
                path,
                params=options.params,
                json=options.json,
                content=options.content,
                data=options.data,
                files=options.files,
                headers=headers,
            )

        return await self.timeout_guard.run(
            path, call, timeout=options.timeout, long_running=options.long_running
        )

    async def _send_with_csrf_retry(
        self,
        path: str,
        options: RequestOptions,
    ) -> httpx.Response:
        response = await self._send(path, options)

        if (
            response.status_code == 403
            and is_state_changing(options.method)
            and self._is_csrf_failure(response)
        ):
            logger.info(f"CSRF token rejected on {path}, refreshing and retrying once")
            await self.fetch_csrf_token(force=True)
            response = await self._send(path, options)

        return response

    @staticmethod
    def _is_csrf_failure(response: httpx.Response) -> bool:
        try:
            body = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get("error") == ErrorCode.CSRF_ERROR.value

    def _is_auth_path(self, path: str) -> bool:
        return any(marker in path for marker in self.settings.auth_exempt_paths)

    # Anti-forgery token

    async def fetch_csrf_token(self, force: bool = False) -> str | None:
        """
        Get a CSRF token, fetching one from the server if needed.

        Concurrent fetches share one request. Falls back to whatever the
        cookie holds if the endpoint fails.
        """
        if not force:
            token = self.token_store.get_csrf_token()
            if token:
                return token
        return await self._deduplicator.dedupe(CSRF_DEDUP_KEY, self._request_csrf_token)

    async def _request_csrf_token(self) -> str | None:
        path = self.settings.csrf_token_path

        try:
            response = await self.timeout_guard.run(
                path,
                lambda: self._http_client.get(
                    path, headers={REQUEST_ID_HEADER: generate_request_id()}
                ),
            )
            if response.is_success:
                token = CsrfTokenResponse.model_validate_json(response.content).csrf_token
                self.token_store.set_csrf_token(token)
                return token
            logger.warning(f"CSRF token endpoint returned HTTP {response.status_code}")

        except (ServiceError, ValidationError) as e:
            logger.warning(f"Could not fetch CSRF token: {e}")

        return self.token_store.get_csrf_token()

    # Convenience API (paths relative to api_prefix)

    def _api_path(self, path: str) -> str:
        return f"{self.settings.api_prefix}{path}"

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request(
            self._api_path(path), RequestOptions(method="GET", params=params)
        )

    async def post(self, path: str, body: Any = None) -> Any:
        return await self.request(
            self._api_path(path), RequestOptions(method="POST", json=body)
        )

    async def put(self, path: str, body: Any = None) -> Any:
        return await self.request(
            self._api_path(path), RequestOptions(method="PUT", json=body)
        )

    async def patch(self, path: str, body: Any = None) -> Any:
        return await self.request(
            self._api_path(path), RequestOptions(method="PATCH", json=body)
        )

    async def delete(self, path: str) -> Any:
        return await self.request(self._api_path(path), RequestOptions(method="DELETE"))

    async def upload(
        self,
        path: str,
        files: dict[str, Any],
        data: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> Any:
        """Multipart upload under the long-running timeout profile."""
        base = options or RequestOptions()
        return await self.request(
            self._api_path(path),
            replace(base, method="POST", files=files, data=data, long_running=True),
        )

    # Lifecycle

    async def close(self) -> None:
        """Cancel background work and close the HTTP client."""
        await self.coordinator.cancel_all()
        await self._deduplicator.cancel_all()
        if self._owns_http_client:
            await self._http_client.aclose()
        logger.debug("RequestPipeline closed")

    async def __aenter__(self) -> "RequestPipeline":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # Health and status methods

    def get_health_status(self) -> dict[str, Any]:
        return {
            "circuit_breaker": self.breaker.get_status(),
            "refresh": self.coordinator.get_status(),
            "csrf_fetches": self._deduplicator.get_stats(),
            "in_grace_period": self.token_store.in_grace_period(),
            "csrf_token_present": self.token_store.get_csrf_token() is not None,
        }
