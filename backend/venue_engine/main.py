from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import sentry_sdk
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration

from .ai_client import CompatibilityAIClient
from .cache import ResultCache
from .enrichment import BatchEnricher
from .errors import AllProvidersUnavailable, Cancelled, InsufficientPreferences
from .logging_config import SERVICE_VERSION, configure_structlog, get_logger
from .metrics import PrometheusMiddleware, get_metrics
from .models import Coordinate
from .orchestrator import ProviderSearchOrchestrator
from .providers import FoursquareProvider, GooglePlacesProvider, Provider, StaticProvider
from .resolver import EntityResolver
from .routing import OSRMRouter
from .schemas import (
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    CompatibilityRequest,
    CompatibilityResponse,
    VenueSearchRequest,
    VenueSearchResponse,
)
from .scoring import CompatibilityScorer, InMemoryPreferenceStore, PreferenceStore
from .settings import settings
from .similarity import location_prefix
from .utils import add_request_id_tracing

# Configure structured logging before anything logs
configure_structlog(json_logs=not settings.DEBUG)

if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        release=settings.SENTRY_RELEASE or f"venue-engine@{SERVICE_VERSION}",
        integrations=[FastApiIntegration()],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
    )

logger = get_logger(__name__)

API_PREFIX = "/v1"


@dataclass
class Services:
    """Process-wide collaborators, created once and shared by every request."""

    orchestrator: ProviderSearchOrchestrator
    scorer: CompatibilityScorer
    preference_store: PreferenceStore
    closers: list = field(default_factory=list)

    @property
    def cache(self) -> ResultCache:
        return self.orchestrator.cache

    async def aclose(self) -> None:
        for close in self.closers:
            await close()


def build_providers() -> list[Provider]:
    providers: list[Provider] = []
    if settings.USE_GOOGLE_PLACES:
        providers.append(GooglePlacesProvider())
    if settings.USE_FOURSQUARE:
        providers.append(FoursquareProvider())
    if settings.STATIC_VENUES_PATH:
        providers.append(StaticProvider.from_json("static", settings.STATIC_VENUES_PATH))
    return providers


def build_services(providers: list[Provider] | None = None) -> Services:
    providers = build_providers() if providers is None else providers
    cache = ResultCache(
        ttl_seconds=settings.SEARCH_CACHE_TTL_SECONDS,
        max_entries=settings.SEARCH_CACHE_MAX_ENTRIES,
        headroom=settings.SEARCH_CACHE_HEADROOM,
    )
    router = OSRMRouter()
    orchestrator = ProviderSearchOrchestrator(
        providers,
        cache=cache,
        resolver=EntityResolver(provider_order=[p.name for p in providers]),
        enricher=BatchEnricher(router.route_both),
    )
    ai_client = CompatibilityAIClient() if settings.ai_configured else None
    scorer = CompatibilityScorer(ai_client, ai_timeout=settings.AI_TIMEOUT_SECONDS)
    closers = [p.aclose for p in providers] + [router.aclose]
    if ai_client is not None:
        closers.append(ai_client.aclose)
    return Services(
        orchestrator=orchestrator,
        scorer=scorer,
        preference_store=InMemoryPreferenceStore(),
        closers=closers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await app.state.services.aclose()


app = FastAPI(
    title="Venue Engine API",
    version=SERVICE_VERSION,
    description="Multi-provider venue search with compatibility-aware ranking",
    lifespan=lifespan,
)
add_request_id_tracing(app)
app.add_middleware(PrometheusMiddleware)
app.state.services = build_services()


def get_services(request: Request) -> Services:
    return request.app.state.services


@app.exception_handler(AllProvidersUnavailable)
async def all_providers_unavailable_handler(request: Request, exc: AllProvidersUnavailable):
    logger.error("all_providers_unavailable", providers=sorted(exc.errors))
    return JSONResponse(
        status_code=503,
        content={
            "detail": "All venue providers are unavailable",
            "providers_failed": {name: err.message for name, err in sorted(exc.errors.items())},
        },
    )


@app.exception_handler(Cancelled)
async def cancelled_handler(request: Request, exc: Cancelled):
    return JSONResponse(status_code=499, content={"detail": str(exc) or "Request cancelled"})


@app.exception_handler(InsufficientPreferences)
async def insufficient_preferences_handler(request: Request, exc: InsufficientPreferences):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.get("/health")
async def health():
    services = app.state.services
    return {
        "status": "ok",
        "service": "venue-engine",
        "version": SERVICE_VERSION,
        "providers": list(services.orchestrator.providers),
        "ai_scoring": settings.ai_configured,
    }


@app.get("/metrics")
def metrics():
    """Expose Prometheus metrics."""
    return get_metrics()


@app.post(f"{API_PREFIX}/venues/search", response_model=VenueSearchResponse)
async def search_venues(payload: VenueSearchRequest, request: Request):
    services = get_services(request)
    try:
        outcome = await services.orchestrator.search(
            payload.to_query(),
            payload.user.to_profile() if payload.user else None,
            payload.partner.to_profile() if payload.partner else None,
            enabled_providers=payload.providers,
            strategy=payload.strategy,
            now=payload.now,
            enrich=payload.enrich,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info(
        "venue_search",
        cache_hit=outcome.cache_hit,
        venues=len(outcome.venues),
        degraded=outcome.degraded,
    )
    return outcome.to_dict()


@app.post(f"{API_PREFIX}/compatibility", response_model=CompatibilityResponse)
async def compatibility(payload: CompatibilityRequest, request: Request):
    services = get_services(request)
    if payload.user_a is not None and payload.user_b is not None:
        score = await services.scorer.score(
            payload.user_a.to_profile(), payload.user_b.to_profile()
        )
    elif payload.user_a_id and payload.user_b_id:
        score = await services.scorer.score_users(
            services.preference_store, payload.user_a_id, payload.user_b_id
        )
    else:
        raise HTTPException(
            status_code=400, detail="Provide user_a and user_b, or user_a_id and user_b_id"
        )
    return score.to_dict()


@app.get(f"{API_PREFIX}/cache/stats")
def cache_stats(request: Request):
    services = get_services(request)
    return {
        "search_results": services.cache.stats(),
        "circuit_breakers": {
            name: breaker.snapshot()
            for name, breaker in sorted(services.orchestrator.breakers.items())
        },
    }


@app.post(f"{API_PREFIX}/cache/invalidate", response_model=CacheInvalidateResponse)
def cache_invalidate(payload: CacheInvalidateRequest, request: Request):
    services = get_services(request)
    coordinate = Coordinate(payload.latitude, payload.longitude)
    removed = services.cache.invalidate(coordinate)
    return {"removed": removed, "prefix": location_prefix(coordinate)}
