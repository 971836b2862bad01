from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from .models import Coordinate, PreferenceProfile, SearchQuery


class PreferencesIn(BaseModel):
    user_id: str = ""
    cuisines: list[str] = Field(default_factory=list)
    vibes: list[str] = Field(default_factory=list)
    price_tiers: list[str] = Field(default_factory=list)
    preferred_times: list[str] = Field(default_factory=list)
    activities: list[str] = Field(default_factory=list)
    dietary_restrictions: list[str] = Field(default_factory=list)
    max_distance_km: float | None = Field(default=None, gt=0)

    def to_profile(self) -> PreferenceProfile:
        return PreferenceProfile(
            user_id=self.user_id,
            cuisines=self.cuisines,
            vibes=self.vibes,
            price_tiers=self.price_tiers,
            preferred_times=self.preferred_times,
            activities=self.activities,
            dietary_restrictions=self.dietary_restrictions,
            max_distance_km=self.max_distance_km,
        )


class VenueSearchRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_m: int = Field(default=5000, gt=0, le=50_000)
    cuisines: list[str] = Field(default_factory=list)
    vibes: list[str] = Field(default_factory=list)
    price_tiers: list[str] = Field(default_factory=list)
    strategy: Literal["parallel", "primary-first", "google-first", "foursquare-first"] | None = None
    providers: list[str] | None = None
    user: PreferencesIn | None = None
    partner: PreferencesIn | None = None
    enrich: bool = False
    now: datetime | None = None

    def to_query(self) -> SearchQuery:
        return SearchQuery(
            origin=Coordinate(self.latitude, self.longitude),
            radius_m=self.radius_m,
            cuisines=frozenset(self.cuisines),
            vibes=frozenset(self.vibes),
            price_tiers=frozenset(self.price_tiers),
        )


class VenueSearchResponse(BaseModel):
    venues: list[dict[str, Any]]
    cache_key: str
    cache_hit: bool
    degraded: bool
    providers_succeeded: list[str]
    providers_failed: dict[str, str] = Field(default_factory=dict)
    warnings: list[dict[str, str]] = Field(default_factory=list)


class CompatibilityRequest(BaseModel):
    """Either two inline profiles or two user ids resolved through the preference store."""

    user_a: PreferencesIn | None = None
    user_b: PreferencesIn | None = None
    user_a_id: str | None = None
    user_b_id: str | None = None


class CompatibilityFactorsOut(BaseModel):
    shared_cuisines: list[str]
    shared_vibes: list[str]
    shared_price_ranges: list[str]
    shared_times: list[str]
    shared_activities: list[str]
    shared_dietary: list[str]
    reasoning: str


class CompatibilityResponse(BaseModel):
    overall_score: float = Field(ge=0, le=1)
    cuisine_score: float = Field(ge=0, le=1)
    vibe_score: float = Field(ge=0, le=1)
    price_score: float = Field(ge=0, le=1)
    timing_score: float = Field(ge=0, le=1)
    activity_score: float = Field(ge=0, le=1)
    compatibility_factors: CompatibilityFactorsOut
    confidence: float = Field(ge=0, le=1)
    source: Literal["ai", "rules"]


class CacheInvalidateRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class CacheInvalidateResponse(BaseModel):
    removed: int
    prefix: str
