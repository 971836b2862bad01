"""Error taxonomy for venue search and compatibility scoring."""

from __future__ import annotations

from dataclasses import dataclass


class VenueEngineError(Exception):
    """Base class for all errors raised by the venue engine."""


class ProviderError(VenueEngineError):
    """A single provider failed. Non-fatal to the overall search."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status_code = status_code


class ProviderTimeout(ProviderError):
    def __init__(self, provider: str, timeout_seconds: float):
        super().__init__(provider, f"timed out after {timeout_seconds:.1f}s")
        self.timeout_seconds = timeout_seconds


class ProviderValidationError(ProviderError):
    """Bad request or unparseable payload. Never retried."""


class AllProvidersUnavailable(VenueEngineError):
    def __init__(self, errors: dict[str, ProviderError]):
        names = ", ".join(sorted(errors)) or "none enabled"
        super().__init__(f"All venue providers unavailable ({names})")
        self.errors = errors


class Cancelled(VenueEngineError):
    """The caller cancelled the operation before it completed."""


class ScoringUnavailable(VenueEngineError):
    """The AI scoring path failed. Internal only; triggers the rule-based fallback."""


class InsufficientPreferences(VenueEngineError, ValueError):
    """Neither profile carries any preference signal and the AI scorer is unavailable."""


class RetryExhausted(VenueEngineError):
    def __init__(self, last_error: BaseException, attempts: int):
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


@dataclass(frozen=True, slots=True)
class InsufficientResults:
    """Soft warning: fewer venues than ``minimum`` were found."""

    found: int
    minimum: int

    @property
    def code(self) -> str:
        return "insufficient_results"

    def __str__(self) -> str:
        return f"Only {self.found} venues found (minimum {self.minimum})"


__all__ = [
    "AllProvidersUnavailable",
    "Cancelled",
    "InsufficientPreferences",
    "InsufficientResults",
    "ProviderError",
    "ProviderTimeout",
    "ProviderValidationError",
    "RetryExhausted",
    "ScoringUnavailable",
    "VenueEngineError",
]
