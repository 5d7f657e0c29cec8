"""
Request pipeline exceptions.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Error codes produced or recognised by the client."""

    CSRF_ERROR = "CSRF_ERROR"
    RATE_LIMITED = "RATE_LIMITED"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class ServiceError(Exception):
    """Base exception for request pipeline errors."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(message)


class RequestTimeoutError(ServiceError):
    """Request exceeded its timeout and was cancelled."""

    def __init__(self, path: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to '{path}' timed out after {timeout}s",
            path=path,
        )


class NetworkError(ServiceError):
    """Transport-level failure (connection refused, DNS, reset)."""

    pass


class ApiError(ServiceError):
    """
    Non-success response from the API.

    Callers branch on ``code`` (and ``http_status``); ``message`` is for humans.
    Attributes are read-only once constructed.
    """

    def __init__(
        self,
        message: str,
        code: str,
        http_status: int,
        request_id: str | None = None,
        retry_after_seconds: int | None = None,
        path: str | None = None,
    ):
        self._code = code.value if isinstance(code, ErrorCode) else code
        self._http_status = http_status
        self._request_id = request_id
        self._retry_after_seconds = retry_after_seconds
        super().__init__(message, path=path)

    @property
    def message(self) -> str:
        return str(self)

    @property
    def code(self) -> str:
        return self._code

    @property
    def http_status(self) -> int:
        return self._http_status

    @property
    def request_id(self) -> str | None:
        return self._request_id

    @property
    def retry_after_seconds(self) -> int | None:
        return self._retry_after_seconds

    @property
    def category(self) -> str:
        """Coarse classification: auth, validation, rate_limit, server, unknown."""
        status = self._http_status
        if status in (401, 403):
            return "auth"
        if status == 429:
            return "rate_limit"
        if status >= 500:
            return "server"
        if 400 <= status < 500:
            return "validation"
        return "unknown"

    @property
    def retryable(self) -> bool:
        return self.category in ("rate_limit", "server", "unknown")

    def __repr__(self) -> str:
        return (
            f"ApiError(code={self._code!r}, http_status={self._http_status}, "
            f"message={str(self)!r}, request_id={self._request_id!r})"
        )
