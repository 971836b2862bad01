"""Retry-with-backoff for flaky upstream calls, built on tenacity."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Generic, Literal, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
)
from tenacity.wait import wait_base

from .errors import Cancelled, ProviderError, ProviderValidationError, RetryExhausted
from .settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
Backoff = Literal["linear", "exponential"]


def _status_is_retryable(status: int) -> bool:
    return status == 429 or status >= 500


def is_retryable(exc: BaseException) -> bool:
    """Network errors, timeouts, 5xx and 429 are transient. Everything else is not."""
    if isinstance(exc, (Cancelled, asyncio.CancelledError, ProviderValidationError)):
        return False
    if isinstance(exc, ProviderError):
        if exc.status_code is None:
            return True
        return _status_is_retryable(exc.status_code)
    if isinstance(exc, httpx.HTTPStatusError):
        return _status_is_retryable(exc.response.status_code)
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    return isinstance(exc, (TimeoutError, ConnectionError))


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    backoff: Backoff = "exponential"
    retry_predicate: Callable[[BaseException], bool] = field(default=is_retryable)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0:
            raise ValueError("base_delay must be >= 0")
        if self.backoff not in ("linear", "exponential"):
            raise ValueError(f"unknown backoff: {self.backoff!r}")

    @classmethod
    def from_settings(cls) -> RetryPolicy:
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            backoff=settings.RETRY_BACKOFF,
        )

    def wait_strategy(self) -> wait_base:
        if self.backoff == "linear":
            # base * attempt
            return wait_incrementing(start=self.base_delay, increment=self.base_delay)
        # base * 2^(attempt - 1)
        return wait_exponential(multiplier=self.base_delay, exp_base=2, min=0)

    def delay_for(self, attempt: int) -> float:
        """Delay slept after the ``attempt``-th failure (1-based)."""
        if self.backoff == "linear":
            return self.base_delay * attempt
        return self.base_delay * (2 ** (attempt - 1))


@dataclass(frozen=True, slots=True)
class RetryResult(Generic[T]):
    value: T
    retry_count: int


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Attempt %d failed (%s); retrying in %.2fs",
        retry_state.attempt_number,
        exc,
        delay,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult[T]:
    """
    Run ``operation`` until it succeeds or the policy gives up.

    Errors rejected by ``policy.retry_predicate`` propagate unchanged on the
    attempt that raised them. When every permitted attempt fails with a
    retryable error, ``RetryExhausted`` is raised with the last error chained
    as its cause.
    """
    policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=policy.wait_strategy(),
        retry=retry_if_exception(policy.retry_predicate),
        before_sleep=_log_before_sleep,
        sleep=sleep,
        reraise=False,
    )
    try:
        async for attempt in retrying:
            with attempt:
                value = await operation()
                retries = attempt.retry_state.attempt_number - 1
                if retries:
                    logger.info("Operation succeeded after %d retries", retries)
                return RetryResult(value=value, retry_count=retries)
    except RetryError as exc:
        last_attempt = exc.last_attempt
        last_error = last_attempt.exception()
        raise RetryExhausted(last_error, last_attempt.attempt_number) from last_error
    raise AssertionError("unreachable: tenacity stopped without an outcome")


__all__ = ["RetryPolicy", "RetryResult", "is_retryable", "with_retry"]
