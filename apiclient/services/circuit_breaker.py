"""
CircuitBreaker - Stops session-refresh storms when the session cannot be restored.

States:
- CLOSED: failure_count < failure_threshold, refresh attempts allowed
- OPEN: failure_count >= failure_threshold, refresh attempts blocked

Transitions:
- CLOSED → OPEN: increment() reaches failure_threshold
- OPEN → CLOSED: reset_at has passed (checked lazily on next read), or reset()

The record lives in session storage so it survives the breaker object being
rebuilt within the same scope.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from loguru import logger
from pydantic import ValidationError

from apiclient.models import CircuitBreakerRecord
from apiclient.services.storage import ScopedStorage

CIRCUIT_BREAKER_KEY = "auth_circuit_breaker"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"  # Refresh allowed
    OPEN = "OPEN"  # Refresh blocked


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 3  # Consecutive auth failures before opening
    reset_timeout: timedelta = timedelta(seconds=10)  # Time before auto-reset


class CircuitBreaker:
    """
    Counts consecutive failed session refreshes.

    Every operation is a synchronous read-modify-write on the stored record.

    Usage:
        cb = CircuitBreaker(storage.scope("tab-1"))

        if cb.is_open():
            return original_response

        if await refresher.refresh_session():
            cb.reset()
        else:
            cb.increment()
    """

    def __init__(
        self,
        storage: ScopedStorage,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config or CircuitBreakerConfig()
        self._storage = storage
        self._clock = clock

    def _read(self) -> CircuitBreakerRecord | None:
        raw = self._storage.get_item(CIRCUIT_BREAKER_KEY)
        if raw is None:
            return None

        try:
            record = CircuitBreakerRecord.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable circuit breaker record")
            self._storage.remove_item(CIRCUIT_BREAKER_KEY)
            return None

        if record.reset_at is not None and self._clock() >= record.reset_at:
            # Lazy expiry
            self._storage.remove_item(CIRCUIT_BREAKER_KEY)
            return None
        return record

    def _write(self, record: CircuitBreakerRecord) -> None:
        self._storage.set_item(CIRCUIT_BREAKER_KEY, record.model_dump_json())

    @property
    def failure_count(self) -> int:
        record = self._read()
        return record.failure_count if record else 0

    @property
    def state(self) -> CircuitState:
        return CircuitState.OPEN if self.is_open() else CircuitState.CLOSED

    def is_open(self) -> bool:
        record = self._read()
        if record is None:
            return False
        return record.failure_count >= self.config.failure_threshold

    def increment(self) -> int:
        """Record a refresh attempt that did not restore the session."""
        record = self._read() or CircuitBreakerRecord()
        record.failure_count += 1
        record.reset_at = self._clock() + self.config.reset_timeout
        self._write(record)

        if record.failure_count == self.config.failure_threshold:
            logger.warning(
                f"Auth circuit breaker OPENED after {record.failure_count} failures, "
                f"resets at {record.reset_at.isoformat()}"
            )
        return record.failure_count

    def reset(self) -> None:
        """Clear the record after a successful refresh or login."""
        if self._storage.remove_item(CIRCUIT_BREAKER_KEY):
            logger.info("Auth circuit breaker reset")

    def get_time_until_reset(self) -> float | None:
        """Seconds until the record expires, if one exists."""
        record = self._read()
        if record is None or record.reset_at is None:
            return None
        return max(0.0, (record.reset_at - self._clock()).total_seconds())

    def get_status(self) -> dict[str, Any]:
        record = self._read()
        return {
            "state": (
                CircuitState.OPEN.value
                if record and record.failure_count >= self.config.failure_threshold
                else CircuitState.CLOSED.value
            ),
            "failure_count": record.failure_count if record else 0,
            "reset_at": (
                record.reset_at.isoformat() if record and record.reset_at else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }
