from __future__ import annotations

import asyncio
import logging
import time
from typing import Literal

import httpx

from .cache import TTLCache
from .errors import ProviderError, ProviderValidationError
from .metrics import record_provider_call
from .models import Coordinate, EnrichmentResult, RouteInfo
from .retry import RetryPolicy, with_retry
from .settings import settings

logger = logging.getLogger(__name__)

Profile = Literal["driving", "walking", "cycling"]

OSRM_PROFILES: dict[str, str] = {"driving": "car", "walking": "foot", "cycling": "bike"}


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.1f} km"


def format_duration(seconds: float) -> str:
    minutes = round(seconds / 60)
    if minutes < 60:
        return f"{minutes} min"
    hours, remaining = divmod(minutes, 60)
    return f"{hours} hr {remaining} min" if remaining else f"{hours} hr"


def route_cache_key(origin: Coordinate, dest: Coordinate, profile: str) -> str:
    return (
        f"{origin.lat:.4f},{origin.lng:.4f}-{dest.lat:.4f},{dest.lng:.4f}-{profile}"
    )


class OSRMRouter:
    """Route distance/ETA lookups against an OSRM server, cached per rounded endpoint pair."""

    name = "osrm"

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        cache: TTLCache[RouteInfo] | None = None,
        retry_policy: RetryPolicy | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = (base_url or settings.OSRM_BASE_URL).rstrip("/")
        self._timeout = timeout or settings.OSRM_TIMEOUT_SECONDS
        self._cache = cache if cache is not None else TTLCache(settings.ROUTE_CACHE_TTL_SECONDS)
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._client = client
        self._owns_client = client is None
        self._client_lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def _fetch(self, origin: Coordinate, dest: Coordinate, profile: str) -> RouteInfo | None:
        client = await self._get_client()
        url = (
            f"{self._base_url}/{OSRM_PROFILES[profile]}/"
            f"{origin.lng},{origin.lat};{dest.lng},{dest.lat}"
        )
        try:
            response = await client.get(url, params={"overview": "false"})
        except httpx.TimeoutException as exc:
            raise ProviderError(self.name, f"route request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"route request failed: {exc}") from exc
        if response.status_code >= 400:
            error_cls = ProviderError
            if response.status_code < 500 and response.status_code != 429:
                error_cls = ProviderValidationError
            raise error_cls(
                self.name, f"HTTP {response.status_code}", status_code=response.status_code
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderValidationError(self.name, "invalid JSON payload") from exc
        routes = data.get("routes") or []
        if data.get("code") != "Ok" or not routes:
            logger.info("OSRM found no %s route: %s", profile, data.get("code"))
            return None
        best = routes[0]
        distance = float(best.get("distance", 0.0))
        duration = float(best.get("duration", 0.0))
        return RouteInfo(
            distance_m=round(distance, 1),
            duration_s=round(duration, 1),
            distance_text=format_distance(distance),
            duration_text=format_duration(duration),
        )

    async def route(
        self, origin: Coordinate, dest: Coordinate, profile: Profile = "driving"
    ) -> RouteInfo | None:
        if profile not in OSRM_PROFILES:
            raise ValueError(f"unknown routing profile: {profile!r}")
        key = route_cache_key(origin, dest, profile)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        started = time.perf_counter()
        try:
            result = await with_retry(
                lambda: self._fetch(origin, dest, profile), self._retry_policy
            )
        except Exception:
            record_provider_call(self.name, "error", time.perf_counter() - started)
            raise
        record_provider_call(self.name, "ok", time.perf_counter() - started)
        if result.value is not None:
            self._cache.set(key, result.value)
        return result.value

    async def route_both(self, origin: Coordinate, dest: Coordinate) -> EnrichmentResult:
        """Driving and walking routes fetched concurrently; fails only if both fail."""
        driving, walking = await asyncio.gather(
            self.route(origin, dest, "driving"),
            self.route(origin, dest, "walking"),
            return_exceptions=True,
        )
        if isinstance(driving, BaseException) and isinstance(walking, BaseException):
            raise driving
        return EnrichmentResult(
            driving=None if isinstance(driving, BaseException) else driving,
            walking=None if isinstance(walking, BaseException) else walking,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


__all__ = ["OSRMRouter", "format_distance", "format_duration", "route_cache_key"]
