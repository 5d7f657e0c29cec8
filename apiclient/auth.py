"""
Authentication service and session heartbeat.

AuthService is the SessionRefresher the pipeline uses for 401 recovery. Every
auth endpoint goes through ``api_fetch`` so a failing refresh never re-enters
the pipeline's 401 handling.
"""

import asyncio
from typing import Any

from loguru import logger

from apiclient.services.client import RequestOptions, RequestPipeline
from apiclient.services.errors import ServiceError
from apiclient.services.events import SessionEvents
from apiclient.services.normalizer import normalize_response, parse_error_response
from apiclient.services.storage import SessionStorage
from apiclient.settings import Settings, global_settings


class AuthService:
    """
    Login, registration and session refresh against cookie-based auth.

    Usage:
        pipeline = RequestPipeline(settings)
        auth = AuthService(pipeline)  # attaches itself as the refresher

        user = await auth.login("me@example.com", "secret")
    """

    def __init__(self, pipeline: RequestPipeline, attach: bool = True):
        self.pipeline = pipeline
        self.settings = pipeline.settings
        if attach:
            pipeline.attach_refresher(self)

    async def login(self, email: str, password: str) -> Any:
        """Authenticate and start the post-login grace period."""
        response = await self.pipeline.api_fetch(
            self.settings.auth_login_path,
            RequestOptions(method="POST", json={"email": email, "password": password}),
        )
        if not response.is_success:
            raise parse_error_response(response, "Login failed")

        payload = normalize_response(response)
        self.pipeline.mark_authentication_complete()
        logger.info(f"Logged in as {email}")
        return payload

    async def register(self, user_data: dict[str, Any]) -> Any:
        response = await self.pipeline.api_fetch(
            self.settings.auth_register_path,
            RequestOptions(method="POST", json=user_data),
        )
        if not response.is_success:
            raise parse_error_response(response, "Registration failed")

        payload = normalize_response(response)
        self.pipeline.mark_authentication_complete()
        logger.info("Registration complete")
        return payload

    async def refresh_session(self) -> bool:
        """Exchange the refresh cookie for a new session. True on success."""
        try:
            response = await self.pipeline.api_fetch(
                self.settings.auth_refresh_path,
                RequestOptions(method="POST"),
            )
        except ServiceError as e:
            logger.warning(f"Session refresh request failed: {e}")
            return False

        if response.is_success:
            logger.debug("Session refreshed")
            return True

        logger.info(f"Session refresh rejected with HTTP {response.status_code}")
        return False

    async def validate_session(self) -> bool:
        """Check the session without triggering refresh or replay."""
        try:
            response = await self.pipeline.api_fetch(self.settings.auth_me_path)
        except ServiceError as e:
            logger.warning(f"Session validation request failed: {e}")
            # Transport trouble says nothing about the session itself
            return True
        return response.status_code != 401

    async def get_current_user(self) -> Any:
        """Current user through the full pipeline (401 recovery applies)."""
        return await self.pipeline.request(self.settings.auth_me_path)

    async def logout(self) -> None:
        try:
            await self.pipeline.api_fetch(
                self.settings.auth_logout_path, RequestOptions(method="POST")
            )
        finally:
            self.pipeline.token_store.clear_grace()
            self.pipeline.breaker.reset()
            logger.info("Logged out")


class SessionHeartbeat:
    """
    Periodically validates the session; signals expiry once and stops.

    Usage:
        heartbeat = SessionHeartbeat(auth, pipeline.events, interval=300)
        heartbeat.start()
        ...
        await heartbeat.stop()
    """

    def __init__(
        self,
        auth: AuthService,
        events: SessionEvents,
        interval: float | None = None,
    ):
        self._auth = auth
        self._events = events
        self.interval = interval or auth.settings.heartbeat_interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._run())
        logger.debug(f"Session heartbeat started (every {self.interval}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.debug("Session heartbeat stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not await self._auth.validate_session():
                logger.warning("Session heartbeat found an expired session")
                self._events.emit_session_expired()
                return


def create_client(
    settings: Settings | None = None,
    storage: SessionStorage | None = None,
    events: SessionEvents | None = None,
) -> tuple[RequestPipeline, AuthService]:
    """Build a pipeline with an AuthService attached as its refresher."""
    pipeline = RequestPipeline(settings or global_settings, storage=storage, events=events)
    return pipeline, AuthService(pipeline)
