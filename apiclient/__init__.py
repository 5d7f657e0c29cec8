from apiclient.auth import AuthService, SessionHeartbeat, create_client
from apiclient.services import (
    ApiError,
    RequestOptions,
    RequestPipeline,
    RequestTimeoutError,
    ServiceError,
)

__all__ = [
    "AuthService",
    "SessionHeartbeat",
    "create_client",
    "ApiError",
    "RequestOptions",
    "RequestPipeline",
    "RequestTimeoutError",
    "ServiceError",
]
