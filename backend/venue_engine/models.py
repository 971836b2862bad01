"""Domain types shared by the search, resolution, ranking and scoring modules."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

PRICE_LABELS = {1: "$", 2: "$$", 3: "$$$", 4: "$$$$"}


def price_label(tier: int | None) -> str | None:
    if tier is None:
        return None
    return PRICE_LABELS.get(tier)


def price_tier_from_label(label: str | None) -> int | None:
    if not label:
        return None
    text = label.strip()
    if text and set(text) == {"$"}:
        return min(4, len(text))
    return None


def _frozen(values: Iterable[str] | None) -> frozenset[str]:
    if not values:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    return frozenset(str(v).strip() for v in values if v is not None and str(v).strip())


@dataclass(frozen=True, slots=True)
class Coordinate:
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"longitude out of range: {self.lng}")


@dataclass(frozen=True, slots=True)
class SearchQuery:
    origin: Coordinate
    radius_m: int = 5000
    cuisines: frozenset[str] = frozenset()
    vibes: frozenset[str] = frozenset()
    price_tiers: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if self.radius_m <= 0:
            raise ValueError("radius_m must be positive")
        object.__setattr__(self, "cuisines", _frozen(self.cuisines))
        object.__setattr__(self, "vibes", _frozen(self.vibes))
        object.__setattr__(self, "price_tiers", _frozen(self.price_tiers))


@dataclass(frozen=True, slots=True)
class Photo:
    url: str
    source: str
    width: int | None = None
    height: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "source": self.source, "width": self.width, "height": self.height}


@dataclass(frozen=True, slots=True)
class ProviderVenue:
    """One provider's view of a place."""

    provider: str
    provider_id: str
    name: str
    location: Coordinate
    address: str | None = None
    price_tier: int | None = None
    rating: float | None = None
    review_count: int | None = None
    cuisine_type: str | None = None
    tags: frozenset[str] = frozenset()
    photos: tuple[Photo, ...] = ()
    open_now: bool | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", _frozen(self.tags))
        object.__setattr__(self, "photos", tuple(self.photos))

    @property
    def key(self) -> str:
        return f"{self.provider}:{self.provider_id}"


@dataclass(frozen=True, slots=True)
class MergedVenue:
    """Canonical record for one physical place, built from one or more ProviderVenues."""

    venue_id: str
    name: str
    location: Coordinate
    address: str | None = None
    price_tier: int | None = None
    rating: float | None = None
    review_count: int | None = None
    cuisine_type: str | None = None
    tags: frozenset[str] = frozenset()
    photos: tuple[Photo, ...] = ()
    open_now: bool | None = None
    # provider -> provider venue ids; debugging only, never identity
    sources: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def price_range(self) -> str | None:
        return price_label(self.price_tier)

    def to_dict(self) -> dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "name": self.name,
            "latitude": self.location.lat,
            "longitude": self.location.lng,
            "address": self.address,
            "price_tier": self.price_tier,
            "price_range": self.price_range,
            "rating": self.rating,
            "review_count": self.review_count,
            "cuisine_type": self.cuisine_type,
            "tags": sorted(self.tags),
            "photos": [photo.to_dict() for photo in self.photos],
            "open_now": self.open_now,
            "sources": {name: list(ids) for name, ids in sorted(self.sources.items())},
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> MergedVenue:
        """Rebuild a venue from ``to_dict`` output. Raises TypeError on malformed input."""
        for name, expected in (("sources", dict), ("photos", list), ("tags", list)):
            value = payload.get(name)
            if value is not None and not isinstance(value, expected):
                raise TypeError(f"{name} must be a {expected.__name__}")
        return cls(
            venue_id=str(payload["venue_id"]),
            name=str(payload["name"]),
            location=Coordinate(float(payload["latitude"]), float(payload["longitude"])),
            address=payload.get("address"),
            price_tier=payload.get("price_tier"),
            rating=payload.get("rating"),
            review_count=payload.get("review_count"),
            cuisine_type=payload.get("cuisine_type"),
            tags=frozenset(payload.get("tags") or ()),
            photos=tuple(
                Photo(
                    url=str(item["url"]),
                    source=str(item["source"]),
                    width=item.get("width"),
                    height=item.get("height"),
                )
                for item in payload.get("photos") or ()
            ),
            open_now=payload.get("open_now"),
            sources={
                str(name): tuple(str(i) for i in ids)
                for name, ids in (payload.get("sources") or {}).items()
            },
        )


@dataclass(frozen=True, slots=True)
class PreferenceProfile:
    """A user's stated preferences, supplied by the external preference store."""

    user_id: str
    cuisines: frozenset[str] = frozenset()
    vibes: frozenset[str] = frozenset()
    price_tiers: frozenset[str] = frozenset()
    preferred_times: frozenset[str] = frozenset()
    activities: frozenset[str] = frozenset()
    dietary_restrictions: frozenset[str] = frozenset()
    max_distance_km: float | None = None

    def __post_init__(self) -> None:
        for name in (
            "cuisines",
            "vibes",
            "price_tiers",
            "preferred_times",
            "activities",
            "dietary_restrictions",
        ):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> PreferenceProfile:
        """Build a profile from a preference-store row (``preferred_*`` column names)."""
        return cls(
            user_id=str(payload.get("user_id") or ""),
            cuisines=payload.get("preferred_cuisines") or payload.get("cuisines") or (),
            vibes=payload.get("preferred_vibes") or payload.get("vibes") or (),
            price_tiers=payload.get("preferred_price_range") or payload.get("price_tiers") or (),
            preferred_times=payload.get("preferred_times") or (),
            activities=payload.get("preferred_activities") or payload.get("activities") or (),
            dietary_restrictions=payload.get("dietary_restrictions") or (),
            max_distance_km=payload.get("max_distance"),
        )

    def preference_sets(self) -> dict[str, frozenset[str]]:
        return {
            "cuisines": self.cuisines,
            "vibes": self.vibes,
            "price_tiers": self.price_tiers,
            "preferred_times": self.preferred_times,
        }

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.cuisines,
                self.vibes,
                self.price_tiers,
                self.preferred_times,
                self.activities,
                self.dietary_restrictions,
            )
        )


@dataclass(frozen=True, slots=True)
class CompatibilityFactors:
    shared_cuisines: tuple[str, ...] = ()
    shared_vibes: tuple[str, ...] = ()
    shared_price_ranges: tuple[str, ...] = ()
    shared_times: tuple[str, ...] = ()
    shared_activities: tuple[str, ...] = ()
    shared_dietary: tuple[str, ...] = ()
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "shared_cuisines": list(self.shared_cuisines),
            "shared_vibes": list(self.shared_vibes),
            "shared_price_ranges": list(self.shared_price_ranges),
            "shared_times": list(self.shared_times),
            "shared_activities": list(self.shared_activities),
            "shared_dietary": list(self.shared_dietary),
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True, slots=True)
class CompatibilityScore:
    overall_score: float
    cuisine_score: float
    vibe_score: float
    price_score: float
    timing_score: float
    activity_score: float
    compatibility_factors: CompatibilityFactors
    confidence: float
    source: str = "rules"

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "cuisine_score": self.cuisine_score,
            "vibe_score": self.vibe_score,
            "price_score": self.price_score,
            "timing_score": self.timing_score,
            "activity_score": self.activity_score,
            "compatibility_factors": self.compatibility_factors.to_dict(),
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass(frozen=True, slots=True)
class RouteInfo:
    distance_m: float
    duration_s: float
    distance_text: str
    duration_text: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
            "distance_text": self.distance_text,
            "duration_text": self.duration_text,
        }


@dataclass(frozen=True, slots=True)
class EnrichmentResult:
    driving: RouteInfo | None = None
    walking: RouteInfo | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "driving": self.driving.to_dict() if self.driving else None,
            "walking": self.walking.to_dict() if self.walking else None,
        }


@dataclass(slots=True)
class RankedVenue:
    venue: MergedVenue
    ai_score: float
    contextual_score: float
    base_score: float
    match_factors: dict[str, Any] = field(default_factory=dict)
    reasoning: str = ""
    enrichment: EnrichmentResult | None = None

    @property
    def venue_id(self) -> str:
        return self.venue.venue_id

    def to_dict(self) -> dict[str, Any]:
        payload = self.venue.to_dict()
        payload.update(
            {
                "ai_score": self.ai_score,
                "contextual_score": self.contextual_score,
                "match_factors": self.match_factors,
                "reasoning": self.reasoning,
                "enrichment": self.enrichment.to_dict() if self.enrichment else None,
            }
        )
        return payload


__all__ = [
    "CompatibilityFactors",
    "CompatibilityScore",
    "Coordinate",
    "EnrichmentResult",
    "MergedVenue",
    "PRICE_LABELS",
    "Photo",
    "PreferenceProfile",
    "ProviderVenue",
    "RankedVenue",
    "RouteInfo",
    "SearchQuery",
    "price_label",
    "price_tier_from_label",
]
