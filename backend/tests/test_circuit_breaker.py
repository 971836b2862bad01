"""Test circuit breaker implementation."""

import asyncio

import pytest
from backend.venue_engine.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
)
from backend.venue_engine.errors import ProviderError


class CircuitTestFailure(RuntimeError):
    """Custom error for circuit breaker tests."""


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def _succeed():
    return "success"


async def _fail():
    raise CircuitTestFailure("Test failure")


def call(breaker, func):
    return asyncio.run(breaker.call(func))


def trip(breaker, times):
    for _ in range(times):
        with pytest.raises(CircuitTestFailure):
            call(breaker, _fail)


class TestCircuitBreaker:
    """Test the circuit breaker pattern implementation."""

    def test_circuit_starts_closed(self):
        breaker = CircuitBreaker("test", failure_threshold=3, cooldown_seconds=1)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.is_closed()
        assert not breaker.is_open()

    def test_successful_calls_pass_through(self):
        breaker = CircuitBreaker("test", failure_threshold=3)

        assert call(breaker, _succeed) == "success"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.successful_calls == 1
        assert breaker.stats.failed_calls == 0

    def test_circuit_opens_after_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=3, cooldown_seconds=10)

        trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

        trip(breaker, 1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.stats.consecutive_failures == 3

    def test_success_resets_consecutive_failures(self):
        breaker = CircuitBreaker("test", failure_threshold=3)
        trip(breaker, 2)
        call(breaker, _succeed)
        trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED

    def test_open_circuit_rejects_without_calling(self):
        breaker = CircuitBreaker("google_places", failure_threshold=1, cooldown_seconds=10)
        trip(breaker, 1)

        calls = []

        async def tracked():
            calls.append(1)
            return "success"

        with pytest.raises(CircuitOpenError) as exc_info:
            call(breaker, tracked)

        assert calls == []
        assert isinstance(exc_info.value, ProviderError)
        assert exc_info.value.provider == "google_places"
        assert breaker.stats.rejected_calls == 1

    def test_transitions_to_half_open_after_cooldown(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=30, clock=clock)
        trip(breaker, 1)

        clock.advance(29)
        assert breaker.state == CircuitState.OPEN
        clock.advance(1)
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_closes_on_success(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=1, cooldown_seconds=5, clock=clock)
        trip(breaker, 1)
        clock.advance(5)

        assert call(breaker, _succeed) == "success"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.consecutive_failures == 0

    def test_half_open_needs_success_threshold(self):
        clock = FakeClock()
        breaker = CircuitBreaker(
            "test", failure_threshold=1, cooldown_seconds=5, success_threshold=2, clock=clock
        )
        trip(breaker, 1)
        clock.advance(5)

        call(breaker, _succeed)
        assert breaker.state == CircuitState.HALF_OPEN
        call(breaker, _succeed)
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_reopens_on_failure(self):
        clock = FakeClock()
        breaker = CircuitBreaker("test", failure_threshold=2, cooldown_seconds=5, clock=clock)
        trip(breaker, 2)
        clock.advance(5)
        assert breaker.state == CircuitState.HALF_OPEN

        trip(breaker, 1)
        assert breaker.state == CircuitState.OPEN
        assert breaker.stats.circuit_opened_count == 2

    def test_manual_reset(self):
        breaker = CircuitBreaker("test", failure_threshold=1)
        trip(breaker, 1)
        assert breaker.state == CircuitState.OPEN

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats.consecutive_failures == 0
        assert call(breaker, _succeed) == "success"

    def test_disabled_circuit_breaker(self):
        breaker = CircuitBreaker("test", failure_threshold=1, enabled=False)
        trip(breaker, 5)

        assert breaker.state == CircuitState.CLOSED
        # Stats should not be updated when disabled
        assert breaker.stats.failed_calls == 0

    def test_circuit_breaker_stats(self):
        breaker = CircuitBreaker("test", failure_threshold=2)
        for _ in range(3):
            call(breaker, _succeed)
        trip(breaker, 1)

        stats = breaker.stats
        assert stats.total_calls == 4
        assert stats.successful_calls == 3
        assert stats.failed_calls == 1
        assert stats.consecutive_failures == 1

    def test_snapshot(self):
        breaker = CircuitBreaker("test", failure_threshold=1)
        trip(breaker, 1)
        snapshot = breaker.snapshot()
        assert snapshot["state"] == "open"
        assert snapshot["consecutive_failures"] == 1
        assert snapshot["opened_count"] == 1

    def test_uses_default_thresholds(self):
        breaker = CircuitBreaker("test")

        assert breaker.failure_threshold == 3
        assert breaker.cooldown_seconds == 300.0
        assert breaker.enabled is True
