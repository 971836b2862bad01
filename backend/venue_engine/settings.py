from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

REPO_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE = REPO_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE), env_file_encoding="utf-8", extra="ignore"
    )

    DEBUG: bool = False

    # Provider toggles
    USE_GOOGLE_PLACES: bool = True
    USE_FOURSQUARE: bool = True
    GOOGLE_PLACES_API_KEY: str | None = None
    GOOGLE_PLACES_BASE_URL: str = "https://places.googleapis.com/v1"
    FOURSQUARE_API_KEY: str | None = None
    FOURSQUARE_BASE_URL: str = "https://api.foursquare.com/v3"
    # JSON list of venues served by a static provider (development)
    STATIC_VENUES_PATH: str | None = None

    # Search strategy: 'parallel' | 'primary-first' (google-first / foursquare-first accepted)
    SEARCH_STRATEGY: str = "parallel"
    PRIMARY_PROVIDER: str = "google_places"

    # Data merging
    MERGE_VENUE_DATA: bool = True
    MAX_VENUES_PER_SOURCE: int = 20
    MAX_TOTAL_VENUES: int = 30

    # Deduplication
    DEDUPLICATION_THRESHOLD_M: float = 50.0
    NAME_SIMILARITY_THRESHOLD: float = 0.8
    # Optional cap on the max pairwise distance inside one merge group
    MAX_CLUSTER_DIAMETER_M: float | None = None

    # Result cache
    SEARCH_CACHE_TTL_SECONDS: int = 30 * 60
    SEARCH_CACHE_MAX_ENTRIES: int = 50
    SEARCH_CACHE_HEADROOM: int = 10

    # Timeouts and fallback behaviour
    PROVIDER_TIMEOUT_SECONDS: float = 10.0
    REQUIRE_AT_LEAST_ONE_SOURCE: bool = True
    MIN_VENUES_FOR_SUCCESS: int = 3

    # Retry
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 1.0
    RETRY_BACKOFF: Literal["linear", "exponential"] = "exponential"

    # Circuit breaker (per provider)
    CIRCUIT_BREAKER_ENABLED: bool = True
    CIRCUIT_FAILURE_THRESHOLD: int = 3
    CIRCUIT_COOLDOWN_SECONDS: float = 300.0

    # Enrichment / routing
    ENRICHMENT_CONCURRENCY: int = 5
    OSRM_BASE_URL: str = "https://router.project-osrm.org/route/v1"
    OSRM_TIMEOUT_SECONDS: float = 6.0
    ROUTE_CACHE_TTL_SECONDS: int = 30 * 60

    # AI compatibility scorer
    AI_SCORING_ENABLED: bool = False
    AI_API_KEY: str | None = None
    AI_API_BASE: str = "https://api.openai.com/v1"
    AI_MODEL: str = "gpt-4o-mini"
    AI_TIMEOUT_SECONDS: float = 15.0
    AI_CONNECT_TIMEOUT_SECONDS: float = 5.0
    AI_TEMPERATURE: float = 0.2

    # Contextual ranking adjustments, "name=value" pairs
    CONTEXT_WEIGHTS: str = (
        "rating_baseline=3.5,rating_scale=0.1,rating_cap=0.15,open_now=0.05,"
        "closed=0.05,dinner=0.1,lunch=0.05,winter_indoor=0.05,too_far=0.05"
    )

    # Observability
    SENTRY_DSN: str | None = None
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_RELEASE: str | None = None
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2

    @property
    def ai_configured(self) -> bool:
        return self.AI_SCORING_ENABLED and bool((self.AI_API_KEY or "").strip())

    @property
    def parsed_context_weights(self) -> ContextWeights:
        return ContextWeights.from_string(self.CONTEXT_WEIGHTS)


@dataclass(slots=True)
class ContextWeights:
    rating_baseline: float = 3.5
    rating_scale: float = 0.1
    rating_cap: float = 0.15
    open_now: float = 0.05
    closed: float = 0.05
    dinner: float = 0.1
    lunch: float = 0.05
    winter_indoor: float = 0.05
    too_far: float = 0.05

    @classmethod
    def from_string(cls, payload: str | None) -> ContextWeights:
        base = cls()
        if not payload:
            return base
        mapping: dict[str, float] = {}
        for part in payload.split(","):
            if "=" not in part:
                continue
            key, value = part.split("=", 1)
            key = key.strip().lower()
            try:
                mapping[key] = float(value.strip())
            except ValueError:
                continue
        return cls(
            rating_baseline=mapping.get("rating_baseline", base.rating_baseline),
            rating_scale=mapping.get("rating_scale", base.rating_scale),
            rating_cap=mapping.get("rating_cap", base.rating_cap),
            open_now=mapping.get("open_now", base.open_now),
            closed=mapping.get("closed", base.closed),
            dinner=mapping.get("dinner", base.dinner),
            lunch=mapping.get("lunch", base.lunch),
            winter_indoor=mapping.get("winter_indoor", base.winter_indoor),
            too_far=mapping.get("too_far", base.too_far),
        )


settings = Settings()
