"""
Request pipeline infrastructure - resilience patterns for authenticated API calls.

Provides:
- TimeoutGuard: Bounded, cancellable network calls
- HeaderComposer / TokenStore: Trace ids, CSRF tokens, post-login grace
- CircuitBreaker: Stops session-refresh storms
- RefreshCoordinator: Single-flight session refresh with queued replay
- RequestDeduplicator: Prevents duplicate concurrent requests
- RequestPipeline: Unified client combining all patterns
"""

from apiclient.services.errors import (
    ServiceError,
    ApiError,
    ErrorCode,
    NetworkError,
    RequestTimeoutError,
)
from apiclient.services.storage import SessionStorage, ScopedStorage
from apiclient.services.timeout import TimeoutGuard
from apiclient.services.token_store import TokenStore
from apiclient.services.headers import HeaderComposer
from apiclient.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from apiclient.services.deduplicator import RequestDeduplicator
from apiclient.services.events import SessionEvents
from apiclient.services.refresh import QueuedCall, RefreshCoordinator, SessionRefresher
from apiclient.services.normalizer import normalize_response, parse_error_response
from apiclient.services.client import RequestOptions, RequestPipeline

__all__ = [
    # Errors
    "ServiceError",
    "ApiError",
    "ErrorCode",
    "NetworkError",
    "RequestTimeoutError",
    # Storage
    "SessionStorage",
    "ScopedStorage",
    # Components
    "TimeoutGuard",
    "TokenStore",
    "HeaderComposer",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "RequestDeduplicator",
    "SessionEvents",
    "QueuedCall",
    "RefreshCoordinator",
    "SessionRefresher",
    # Normalization
    "normalize_response",
    "parse_error_response",
    # Client
    "RequestOptions",
    "RequestPipeline",
]
