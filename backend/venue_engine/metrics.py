"""Prometheus metrics for monitoring and observability."""

from __future__ import annotations

import re
import time
from collections.abc import Callable
from functools import lru_cache

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# ==============================================================================
# APPLICATION INFO
# ==============================================================================

app_info = Info("venue_engine", "Venue engine API information")
app_info.info({"version": "0.3.0", "service": "venue-engine-api"})

# ==============================================================================
# HTTP METRICS
# ==============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method", "endpoint"],
)

# ==============================================================================
# PROVIDER METRICS
# ==============================================================================

provider_requests_total = Counter(
    "venue_provider_requests_total",
    "Venue provider calls by outcome",
    ["provider", "outcome"],
)

provider_request_duration_seconds = Histogram(
    "venue_provider_request_duration_seconds",
    "Venue provider call latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)

provider_estimated_cost_usd_total = Counter(
    "venue_provider_estimated_cost_usd_total",
    "Estimated upstream API spend in USD",
    ["provider"],
)

# Estimated cost per upstream call in USD
API_COSTS: dict[str, float] = {
    "google_places": 0.017,
    "foursquare": 0.0,
    "osrm": 0.0,
    "analyze_compatibility": 0.01,
}

search_requests_total = Counter(
    "venue_search_requests_total",
    "Venue searches by result",
    ["result"],
)

# ==============================================================================
# CIRCUIT BREAKER METRICS
# ==============================================================================

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["circuit_name"],
)

circuit_breaker_rejected_total = Counter(
    "circuit_breaker_rejected_total",
    "Total circuit breaker rejected calls",
    ["circuit_name"],
)

# ==============================================================================
# CACHE METRICS
# ==============================================================================

cache_hits_total = Counter("cache_hits_total", "Total cache hits", ["cache_name"])
cache_misses_total = Counter("cache_misses_total", "Total cache misses", ["cache_name"])
cache_size = Gauge("cache_size", "Current cache size (number of entries)", ["cache_name"])
cache_evictions_total = Counter("cache_evictions_total", "Total cache evictions", ["cache_name"])
cache_expirations_total = Counter(
    "cache_expirations_total", "Total cache expirations", ["cache_name"]
)

# ==============================================================================
# SCORING / ENRICHMENT METRICS
# ==============================================================================

scoring_requests_total = Counter(
    "compatibility_scoring_total",
    "Compatibility scores computed, by path (ai or rules)",
    ["path"],
)

enrichment_results_total = Counter(
    "venue_enrichment_results_total",
    "Per-venue enrichment results",
    ["outcome"],
)

# ==============================================================================
# HELPER FUNCTIONS
# ==============================================================================


def record_provider_call(provider: str, outcome: str, duration_seconds: float) -> None:
    provider_requests_total.labels(provider=provider, outcome=outcome).inc()
    provider_request_duration_seconds.labels(provider=provider).observe(duration_seconds)
    cost = API_COSTS.get(provider, 0.0)
    if cost:
        provider_estimated_cost_usd_total.labels(provider=provider).inc(cost)


def track_cache_metrics(cache_name: str, stats: dict) -> None:
    """Update cache metrics from stats dict."""
    previous = track_cache_metrics._previous.setdefault(
        cache_name,
        {"hits": 0, "misses": 0, "evictions": 0, "expirations": 0},
    )
    cache_size.labels(cache_name=cache_name).set(stats.get("size", 0))
    for key, counter in (
        ("hits", cache_hits_total),
        ("misses", cache_misses_total),
        ("evictions", cache_evictions_total),
        ("expirations", cache_expirations_total),
    ):
        current = int(stats.get(key, 0) or 0)
        delta = max(0, current - previous[key])
        if delta:
            counter.labels(cache_name=cache_name).inc(delta)
        previous[key] = current


track_cache_metrics._previous = {}  # type: ignore[attr-defined]


@lru_cache(maxsize=2048)
def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path to reduce cardinality.

    Examples:
        /v1/venues/123 -> /v1/venues/{id}
        /v1/users/abc-def -> /v1/users/{id}
    """
    path = re.sub(
        r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
        "/{id}",
        path,
        flags=re.IGNORECASE,
    )
    path = re.sub(r"/\d+(?=/|$)", "/{id}", path)
    path = re.sub(r"/[a-zA-Z0-9_-]{20,}", "/{id}", path)
    return path


# ==============================================================================
# PROMETHEUS MIDDLEWARE
# ==============================================================================


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to track HTTP request metrics."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        endpoint = normalize_endpoint(request.url.path)
        http_requests_in_progress.labels(method=method, endpoint=endpoint).inc()
        start_time = time.time()
        status = "500"
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            duration = time.time() - start_time
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(duration)
            http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
            http_requests_in_progress.labels(method=method, endpoint=endpoint).dec()


def get_metrics() -> Response:
    """Generate Prometheus metrics response."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "API_COSTS",
    "PrometheusMiddleware",
    "circuit_breaker_rejected_total",
    "circuit_breaker_state",
    "enrichment_results_total",
    "get_metrics",
    "normalize_endpoint",
    "record_provider_call",
    "scoring_requests_total",
    "search_requests_total",
    "track_cache_metrics",
]
