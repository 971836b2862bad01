"""Circuit breaker guarding each venue provider against cascading failures."""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import TypeVar

from .errors import ProviderError
from .metrics import circuit_breaker_rejected_total, circuit_breaker_state

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"  # requests allowed
    OPEN = "open"  # requests rejected
    HALF_OPEN = "half_open"  # one probe allowed


_STATE_GAUGE = {CircuitState.CLOSED: 0, CircuitState.OPEN: 1, CircuitState.HALF_OPEN: 2}


@dataclass
class CircuitBreakerStats:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    rejected_calls: int = 0
    last_failure_time: float | None = None
    last_success_time: float | None = None
    consecutive_failures: int = 0
    circuit_opened_count: int = 0


class CircuitOpenError(ProviderError):
    """Raised instead of calling a provider whose circuit is open."""

    def __init__(self, name: str, cooldown_seconds: float):
        super().__init__(name, "circuit open")
        self.cooldown_seconds = cooldown_seconds


class CircuitBreaker:
    """
    Circuit breaker for one upstream dependency.

    - CLOSED: calls pass through; consecutive failures are counted
    - OPEN: after ``failure_threshold`` failures calls are rejected outright
    - HALF_OPEN: once the cooldown elapses, probes are let through and
      ``success_threshold`` successes close the circuit again
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        cooldown_seconds: float = 300.0,
        success_threshold: int = 1,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.cooldown_seconds = cooldown_seconds
        self.success_threshold = max(1, success_threshold)
        self.enabled = enabled
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._stats = CircuitBreakerStats()
        self._lock = Lock()
        self._last_state_change = clock()
        self._half_open_successes = 0
        circuit_breaker_state.labels(circuit_name=name).set(0)

    @property
    def state(self) -> CircuitState:
        """Current state, moving OPEN to HALF_OPEN once the cooldown has passed."""
        with self._lock:
            if (
                self._state == CircuitState.OPEN
                and self._clock() - self._last_state_change >= self.cooldown_seconds
            ):
                self._transition_to(CircuitState.HALF_OPEN)
            return self._state

    @property
    def stats(self) -> CircuitBreakerStats:
        return self._stats

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._last_state_change = self._clock()
        circuit_breaker_state.labels(circuit_name=self.name).set(_STATE_GAUGE[new_state])

        if new_state == CircuitState.OPEN:
            self._stats.circuit_opened_count += 1
            logger.warning(
                "Circuit breaker '%s' opened after %d consecutive failures",
                self.name,
                self._stats.consecutive_failures,
            )
        elif new_state == CircuitState.CLOSED:
            self._stats.consecutive_failures = 0
            self._half_open_successes = 0
            if old_state == CircuitState.HALF_OPEN:
                logger.info("Circuit breaker '%s' closed after successful recovery", self.name)
        else:
            self._half_open_successes = 0
            logger.info("Circuit breaker '%s' entering half-open state", self.name)

    def allow(self) -> bool:
        if not self.enabled:
            return True
        return self.state != CircuitState.OPEN

    def _reject(self) -> CircuitOpenError:
        with self._lock:
            self._stats.rejected_calls += 1
        circuit_breaker_rejected_total.labels(circuit_name=self.name).inc()
        return CircuitOpenError(self.name, self.cooldown_seconds)

    async def call(self, func: Callable[[], Awaitable[T]]) -> T:
        """
        Await ``func`` through the breaker.

        Raises:
            CircuitOpenError: the circuit is open and ``func`` was not called
            Original exception: ``func`` failed; the failure is recorded
        """
        if not self.enabled:
            return await func()
        if not self.allow():
            raise self._reject()
        try:
            result = await func()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def record_success(self) -> None:
        with self._lock:
            self._stats.total_calls += 1
            self._stats.successful_calls += 1
            self._stats.last_success_time = self._clock()
            self._stats.consecutive_failures = 0
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_successes += 1
                if self._half_open_successes >= self.success_threshold:
                    self._transition_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._stats.total_calls += 1
            self._stats.failed_calls += 1
            self._stats.last_failure_time = self._clock()
            self._stats.consecutive_failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._transition_to(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._stats.consecutive_failures >= self.failure_threshold
            ):
                self._transition_to(CircuitState.OPEN)

    def reset(self) -> None:
        with self._lock:
            self._transition_to(CircuitState.CLOSED)
            logger.info("Circuit breaker '%s' manually reset", self.name)

    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    def snapshot(self) -> dict[str, object]:
        state = self.state
        return {
            "state": state.value,
            "consecutive_failures": self._stats.consecutive_failures,
            "rejected_calls": self._stats.rejected_calls,
            "opened_count": self._stats.circuit_opened_count,
        }


__all__ = ["CircuitBreaker", "CircuitBreakerStats", "CircuitOpenError", "CircuitState"]
