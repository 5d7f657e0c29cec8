"""
Wire envelopes and persisted records.
"""

from datetime import datetime
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ValidationError, field_validator

T = TypeVar("T")


class SuccessEnvelope(BaseModel, Generic[T]):
    """Success response: {success: true, message, data?}."""

    success: Literal[True]
    message: str | None = ""
    data: T | None = None


class ErrorEnvelope(BaseModel):
    """Error response: {error, message, code, request_id?}."""

    error: str | None = None
    message: str | None = None
    code: int | None = None
    request_id: str | None = None
    retry_after: int | None = None

    @field_validator("*", mode="wrap")
    @classmethod
    def _drop_invalid(cls, value: Any, handler: Any) -> Any:
        # An off-type field must not discard the rest of the body
        try:
            return handler(value)
        except ValidationError:
            return None


class CsrfTokenResponse(BaseModel):
    csrf_token: str


class CircuitBreakerRecord(BaseModel):
    """Persisted authentication failure counter."""

    failure_count: int = 0
    reset_at: datetime | None = None
