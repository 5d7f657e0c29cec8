from datetime import timedelta

import pytest

from apiclient.services.circuit_breaker import (
    CIRCUIT_BREAKER_KEY,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)


class TestCircuitBreakerState:
    def test_initial_state_is_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_open() is False
        assert breaker.failure_count == 0

    def test_stays_closed_below_threshold(self, breaker):
        breaker.increment()
        breaker.increment()

        assert breaker.failure_count == 2
        assert breaker.is_open() is False

    def test_opens_at_threshold(self, breaker):
        for _ in range(3):
            breaker.increment()

        assert breaker.is_open() is True
        assert breaker.state == CircuitState.OPEN

    def test_auto_resets_after_window(self, breaker, clock, scoped):
        for _ in range(3):
            breaker.increment()

        clock.advance(9.9)
        assert breaker.is_open() is True

        clock.advance(0.1)
        assert breaker.is_open() is False
        assert breaker.failure_count == 0
        assert scoped.get_item(CIRCUIT_BREAKER_KEY) is None

    def test_increment_extends_window(self, breaker, clock):
        breaker.increment()
        clock.advance(8)
        breaker.increment()
        clock.advance(8)

        # First failure would have expired, but the window moved
        assert breaker.failure_count == 2

    def test_reset_clears_record(self, breaker, scoped):
        for _ in range(3):
            breaker.increment()

        breaker.reset()

        assert breaker.is_open() is False
        assert breaker.failure_count == 0
        assert scoped.get_item(CIRCUIT_BREAKER_KEY) is None


class TestCircuitBreakerStorage:
    def test_record_survives_new_instance(self, breaker, scoped, clock):
        for _ in range(3):
            breaker.increment()

        rebuilt = CircuitBreaker(scoped, CircuitBreakerConfig(), clock=clock)

        assert rebuilt.is_open() is True

    def test_scopes_are_isolated(self, breaker, storage, clock):
        for _ in range(3):
            breaker.increment()

        other_tab = CircuitBreaker(storage.scope("tab-2"), clock=clock)

        assert other_tab.is_open() is False

    def test_unreadable_record_is_discarded(self, breaker, scoped):
        scoped.set_item(CIRCUIT_BREAKER_KEY, "not json")

        assert breaker.is_open() is False
        assert scoped.get_item(CIRCUIT_BREAKER_KEY) is None

    def test_custom_threshold(self, scoped, clock):
        cb = CircuitBreaker(
            scoped,
            CircuitBreakerConfig(failure_threshold=1, reset_timeout=timedelta(seconds=1)),
            clock=clock,
        )
        cb.increment()

        assert cb.is_open() is True


class TestCircuitBreakerStatus:
    def test_status_reports_time_until_reset(self, breaker, clock):
        for _ in range(3):
            breaker.increment()
        clock.advance(4)

        status = breaker.get_status()

        assert status["state"] == "OPEN"
        assert status["failure_count"] == 3
        assert status["time_until_reset"] == pytest.approx(6.0)

    def test_status_when_closed(self, breaker):
        status = breaker.get_status()

        assert status == {
            "state": "CLOSED",
            "failure_count": 0,
            "reset_at": None,
            "time_until_reset": None,
        }
