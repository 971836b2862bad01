"""
Multi-provider venue search.

One search run: consult the result cache, fan out to the enabled providers
(each bounded by its own timeout, retried on transient errors and guarded by
a circuit breaker), resolve duplicates, rank, write back to the cache and
optionally enrich the ranked list with routes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .cache import ResultCache, make_search_key
from .cancellation import CancellationToken, run_cancellable
from .circuit_breaker import CircuitBreaker
from .enrichment import BatchEnricher
from .errors import (
    AllProvidersUnavailable,
    Cancelled,
    InsufficientResults,
    ProviderError,
    ProviderTimeout,
    RetryExhausted,
)
from .metrics import record_provider_call, search_requests_total
from .models import MergedVenue, PreferenceProfile, ProviderVenue, RankedVenue, SearchQuery
from .providers.base import Provider
from .ranking import RankingContext, VenueRanker
from .resolver import EntityResolver
from .retry import RetryPolicy, with_retry
from .settings import settings

logger = logging.getLogger(__name__)

PARALLEL = "parallel"
PRIMARY_FIRST = "primary-first"

# Legacy strategy names that also pick the primary provider
STRATEGY_ALIASES: dict[str, tuple[str, str | None]] = {
    "parallel": (PARALLEL, None),
    "primary-first": (PRIMARY_FIRST, None),
    "google-first": (PRIMARY_FIRST, "google_places"),
    "foursquare-first": (PRIMARY_FIRST, "foursquare"),
}


def normalize_strategy(strategy: str, default_primary: str) -> tuple[str, str]:
    try:
        mode, primary = STRATEGY_ALIASES[strategy.strip().lower()]
    except KeyError as exc:
        raise ValueError(f"unknown search strategy: {strategy!r}") from exc
    return mode, primary or default_primary


@dataclass(slots=True)
class SearchOutcome:
    venues: list[RankedVenue]
    cache_key: str
    cache_hit: bool = False
    providers_succeeded: list[str] = field(default_factory=list)
    errors: dict[str, ProviderError] = field(default_factory=dict)
    provider_results: dict[str, list[ProviderVenue]] = field(default_factory=dict)
    warnings: list[InsufficientResults] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.errors)

    @property
    def providers_failed(self) -> dict[str, str]:
        return {name: error.message for name, error in sorted(self.errors.items())}

    def to_dict(self) -> dict[str, Any]:
        return {
            "venues": [venue.to_dict() for venue in self.venues],
            "cache_key": self.cache_key,
            "cache_hit": self.cache_hit,
            "degraded": self.degraded,
            "providers_succeeded": list(self.providers_succeeded),
            "providers_failed": self.providers_failed,
            "warnings": [{"code": w.code, "message": str(w)} for w in self.warnings],
        }


class ProviderSearchOrchestrator:
    def __init__(
        self,
        providers: Sequence[Provider],
        *,
        cache: ResultCache,
        resolver: EntityResolver | None = None,
        ranker: VenueRanker | None = None,
        enricher: BatchEnricher | None = None,
        strategy: str | None = None,
        primary_provider: str | None = None,
        provider_timeout: float | None = None,
        max_venues_per_source: int | None = None,
        require_at_least_one_source: bool | None = None,
        min_venues_for_success: int | None = None,
        retry_policy: RetryPolicy | None = None,
        breakers: dict[str, CircuitBreaker] | None = None,
    ) -> None:
        names = [provider.name for provider in providers]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate provider names: {names}")
        self.providers = {provider.name: provider for provider in providers}
        self.cache = cache
        self.resolver = resolver or EntityResolver(provider_order=names)
        self.ranker = ranker or VenueRanker()
        self.enricher = enricher
        self.strategy = strategy or settings.SEARCH_STRATEGY
        self.primary_provider = primary_provider or settings.PRIMARY_PROVIDER
        self.provider_timeout = provider_timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.max_venues_per_source = max_venues_per_source or settings.MAX_VENUES_PER_SOURCE
        self.require_at_least_one_source = (
            require_at_least_one_source
            if require_at_least_one_source is not None
            else settings.REQUIRE_AT_LEAST_ONE_SOURCE
        )
        self.min_venues_for_success = (
            min_venues_for_success
            if min_venues_for_success is not None
            else settings.MIN_VENUES_FOR_SUCCESS
        )
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.breakers = breakers if breakers is not None else {
            name: CircuitBreaker(
                f"provider:{name}",
                failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
                cooldown_seconds=settings.CIRCUIT_COOLDOWN_SECONDS,
                enabled=settings.CIRCUIT_BREAKER_ENABLED,
            )
            for name in names
        }

    # ------------------------------------------------------------------ #
    # provider calls
    # ------------------------------------------------------------------ #

    async def _call_provider(
        self, provider: Provider, query: SearchQuery
    ) -> list[ProviderVenue] | ProviderError:
        """
        One provider's venues, or the error it failed with. Never raises ProviderError.

        ``provider_timeout`` bounds the whole call, retries and backoff included.
        """

        async def attempt() -> list[ProviderVenue]:
            return await provider.search(query, limit=self.max_venues_per_source)

        async def guarded() -> list[ProviderVenue]:
            try:
                result = await asyncio.wait_for(
                    with_retry(attempt, self.retry_policy), timeout=self.provider_timeout
                )
            except asyncio.TimeoutError as exc:
                raise ProviderTimeout(provider.name, self.provider_timeout) from exc
            return result.value

        started = time.perf_counter()
        breaker = self.breakers.get(provider.name)
        try:
            venues = await (breaker.call(guarded) if breaker else guarded())
        except RetryExhausted as exc:
            error = exc.last_error
            if not isinstance(error, ProviderError):
                error = ProviderError(provider.name, str(error))
        except ProviderError as exc:
            error = exc
        except (Cancelled, asyncio.CancelledError):
            raise
        except Exception as exc:
            logger.exception("Provider %s raised unexpectedly", provider.name)
            error = ProviderError(provider.name, f"unexpected error: {exc}")
        else:
            record_provider_call(provider.name, "ok", time.perf_counter() - started)
            return list(venues)[: self.max_venues_per_source]

        outcome = "timeout" if isinstance(error, ProviderTimeout) else "error"
        record_provider_call(provider.name, outcome, time.perf_counter() - started)
        logger.warning("Provider %s failed: %s", provider.name, error.message)
        return error

    async def _query(
        self, providers: Sequence[Provider], query: SearchQuery
    ) -> dict[str, list[ProviderVenue] | ProviderError]:
        results = await asyncio.gather(*(self._call_provider(p, query) for p in providers))
        return {provider.name: result for provider, result in zip(providers, results)}

    async def _fetch(
        self, query: SearchQuery, enabled: list[Provider], strategy: str
    ) -> dict[str, list[ProviderVenue] | ProviderError]:
        mode, primary_name = normalize_strategy(strategy, self.primary_provider)
        primary = next((p for p in enabled if p.name == primary_name), None)
        if mode == PARALLEL or primary is None or len(enabled) == 1:
            return await self._query(enabled, query)

        results = await self._query([primary], query)
        primary_result = results[primary.name]
        if (
            not isinstance(primary_result, ProviderError)
            and len(primary_result) >= self.min_venues_for_success
        ):
            return results
        logger.info(
            "Primary provider %s insufficient (%s); querying secondaries",
            primary.name,
            primary_result.message
            if isinstance(primary_result, ProviderError)
            else f"{len(primary_result)} venues",
        )
        secondaries = [p for p in enabled if p.name != primary.name]
        results.update(await self._query(secondaries, query))
        return results

    # ------------------------------------------------------------------ #
    # search
    # ------------------------------------------------------------------ #

    def _enabled(self, enabled_providers: Collection[str] | None) -> list[Provider]:
        if enabled_providers is None:
            return list(self.providers.values())
        unknown = set(enabled_providers) - set(self.providers)
        if unknown:
            raise ValueError(f"unknown providers: {sorted(unknown)}")
        return [p for name, p in self.providers.items() if name in enabled_providers]

    def _rank(
        self,
        venues: Sequence[MergedVenue],
        query: SearchQuery,
        profile: PreferenceProfile | None,
        partner: PreferenceProfile | None,
        now: datetime | None,
    ) -> list[RankedVenue]:
        user = profile or PreferenceProfile(
            user_id="",
            cuisines=query.cuisines,
            vibes=query.vibes,
            price_tiers=query.price_tiers,
        )
        context = RankingContext(now=now, origin=query.origin)
        return self.ranker.rank(venues, user, partner, context)

    async def search(
        self,
        query: SearchQuery,
        profile: PreferenceProfile | None = None,
        partner: PreferenceProfile | None = None,
        *,
        enabled_providers: Collection[str] | None = None,
        strategy: str | None = None,
        now: datetime | None = None,
        cancel_token: CancellationToken | None = None,
        enrich: bool = False,
    ) -> SearchOutcome:
        """
        Run one search.

        Raises:
            AllProvidersUnavailable: every queried provider failed and at
                least one source is required
            Cancelled: ``cancel_token`` fired before results were cached
        """
        if cancel_token is not None and cancel_token.cancelled:
            search_requests_total.labels(result="cancelled").inc()
            raise Cancelled("search cancelled before start")

        key = make_search_key(query)
        cached = self.cache.get(key)
        if cached is not None:
            search_requests_total.labels(result="cache_hit").inc()
            outcome = SearchOutcome(
                venues=self._rank(cached, query, profile, partner, now),
                cache_key=key,
                cache_hit=True,
            )
            return await self._finish(outcome, query, cancel_token, enrich)

        enabled = self._enabled(enabled_providers)
        try:
            results = await run_cancellable(
                self._fetch(query, enabled, strategy or self.strategy), cancel_token
            )
        except Cancelled:
            search_requests_total.labels(result="cancelled").inc()
            logger.info("Search %s cancelled while providers were in flight", key)
            raise

        errors = {name: r for name, r in results.items() if isinstance(r, ProviderError)}
        succeeded = {name: r for name, r in results.items() if not isinstance(r, ProviderError)}
        if not succeeded and self.require_at_least_one_source:
            search_requests_total.labels(result="unavailable").inc()
            raise AllProvidersUnavailable(errors)

        # provider registration order keeps merging deterministic
        combined = [v for name in self.providers if name in succeeded for v in succeeded[name]]
        merged = self.resolver.resolve(combined)
        ranked = self._rank(merged, query, profile, partner, now)
        if cancel_token is not None and cancel_token.cancelled:
            search_requests_total.labels(result="cancelled").inc()
            raise Cancelled("search cancelled before results were cached")
        if ranked:
            self.cache.put(key, [item.venue for item in ranked])

        outcome = SearchOutcome(
            venues=ranked,
            cache_key=key,
            providers_succeeded=[name for name in self.providers if name in succeeded],
            errors=errors,
            provider_results=succeeded,
        )
        if len(merged) < self.min_venues_for_success:
            outcome.warnings.append(InsufficientResults(len(merged), self.min_venues_for_success))
        search_requests_total.labels(result="degraded" if errors else "ok").inc()
        logger.info(
            "Search %s: %d venues from %s (failed: %s)",
            key,
            len(ranked),
            outcome.providers_succeeded,
            sorted(errors),
        )
        return await self._finish(outcome, query, cancel_token, enrich)

    async def _finish(
        self,
        outcome: SearchOutcome,
        query: SearchQuery,
        cancel_token: CancellationToken | None,
        enrich: bool,
    ) -> SearchOutcome:
        if not enrich or self.enricher is None or not outcome.venues:
            return outcome
        enrichment = await self.enricher.enrich_batch(
            outcome.venues, query.origin, cancel_token=cancel_token
        )
        for item in outcome.venues:
            item.enrichment = enrichment.get(item.venue_id)
        return outcome


__all__ = [
    "PARALLEL",
    "PRIMARY_FIRST",
    "ProviderSearchOrchestrator",
    "SearchOutcome",
    "normalize_strategy",
]
