from __future__ import annotations

import logging
from typing import Any

import httpx

from ..models import Photo, ProviderVenue, SearchQuery
from ..settings import settings
from .base import HTTPProvider, coordinate_or_none

logger = logging.getLogger(__name__)

FIELD_MASK = ",".join(
    (
        "places.id",
        "places.displayName",
        "places.types",
        "places.rating",
        "places.userRatingCount",
        "places.priceLevel",
        "places.location",
        "places.formattedAddress",
        "places.photos",
        "places.currentOpeningHours",
    )
)

# searchNearby accepts at most this many includedTypes
MAX_INCLUDED_TYPES = 10

CUISINE_TYPES: dict[str, tuple[str, ...]] = {
    "italian": ("italian_restaurant",),
    "japanese": ("japanese_restaurant", "sushi_restaurant"),
    "mexican": ("mexican_restaurant",),
    "french": ("french_restaurant",),
    "indian": ("indian_restaurant",),
    "mediterranean": ("mediterranean_restaurant", "greek_restaurant"),
    "american": ("american_restaurant", "hamburger_restaurant"),
    "thai": ("thai_restaurant",),
    "chinese": ("chinese_restaurant",),
    "korean": ("korean_restaurant",),
}

VIBE_TYPES: dict[str, tuple[str, ...]] = {
    "romantic": ("fine_dining_restaurant", "wine_bar"),
    "casual": ("restaurant", "cafe"),
    "outdoor": ("restaurant", "bar"),
    "nightlife": ("bar", "night_club", "cocktail_lounge"),
    "cultural": ("restaurant", "cafe"),
    "adventurous": ("restaurant", "bar"),
}

TYPE_CUISINES: dict[str, str] = {
    place_type: cuisine.title()
    for cuisine, place_types in CUISINE_TYPES.items()
    for place_type in place_types
}

PRICE_LEVELS: dict[str, int] = {
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}

TYPE_TAGS: dict[str, str] = {
    "fine_dining_restaurant": "fine dining",
    "wine_bar": "wine",
    "bar": "bar",
    "cafe": "cafe",
    "night_club": "nightlife",
    "cocktail_lounge": "cocktails",
}


def included_types(query: SearchQuery) -> list[str]:
    types: list[str] = []
    for cuisine in sorted(query.cuisines):
        types.extend(CUISINE_TYPES.get(cuisine.lower(), ("restaurant",)))
    for vibe in sorted(query.vibes):
        types.extend(VIBE_TYPES.get(vibe.lower(), ("restaurant",)))
    unique = list(dict.fromkeys(types)) or ["restaurant"]
    return unique[:MAX_INCLUDED_TYPES]


def _cuisine_from_types(types: list[str]) -> str | None:
    for place_type in types:
        if place_type in TYPE_CUISINES:
            return TYPE_CUISINES[place_type]
    return None


def _tags(place: dict[str, Any], types: list[str]) -> set[str]:
    tags = {TYPE_TAGS[t] for t in types if t in TYPE_TAGS}
    rating = place.get("rating")
    if isinstance(rating, (int, float)) and rating >= 4.5:
        tags.add("highly rated")
    if "restaurant" in types or any(t.endswith("_restaurant") for t in types):
        tags.add("indoor")
    return tags


def _photos(place: dict[str, Any], base_url: str) -> tuple[Photo, ...]:
    photos = []
    for item in place.get("photos") or []:
        name = item.get("name")
        if not name:
            continue
        photos.append(
            Photo(
                # Callers sign media URLs with their own key
                url=f"{base_url}/{name}/media?maxWidthPx=400&maxHeightPx=300",
                source="google_places",
                width=item.get("widthPx"),
                height=item.get("heightPx"),
            )
        )
    return tuple(photos)


def normalize_place(place: dict[str, Any], base_url: str) -> ProviderVenue | None:
    """Convert one searchNearby place into a ProviderVenue; None when unusable."""
    place_id = place.get("id")
    location = place.get("location") or {}
    coordinate = coordinate_or_none(location.get("latitude"), location.get("longitude"))
    if not place_id or coordinate is None:
        logger.debug("Skipping Google place without id or location: %r", place_id)
        return None
    types = [str(t) for t in place.get("types") or []]
    hours = place.get("currentOpeningHours") or {}
    rating = place.get("rating")
    review_count = place.get("userRatingCount")
    return ProviderVenue(
        provider="google_places",
        provider_id=str(place_id),
        name=((place.get("displayName") or {}).get("text") or "").strip(),
        location=coordinate,
        address=place.get("formattedAddress"),
        price_tier=PRICE_LEVELS.get(place.get("priceLevel") or ""),
        rating=rating if isinstance(rating, (int, float)) else None,
        review_count=review_count if isinstance(review_count, int) else None,
        cuisine_type=_cuisine_from_types(types),
        tags=_tags(place, types),
        photos=_photos(place, base_url),
        open_now=hours.get("openNow"),
    )


class GooglePlacesProvider(HTTPProvider):
    name = "google_places"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key if api_key is not None else settings.GOOGLE_PLACES_API_KEY,
            base_url=base_url or settings.GOOGLE_PLACES_BASE_URL,
            timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS,
            client=client,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self._api_key or "",
            "X-Goog-FieldMask": FIELD_MASK,
        }

    async def search(self, query: SearchQuery, *, limit: int = 20) -> list[ProviderVenue]:
        body = {
            "includedTypes": included_types(query),
            "maxResultCount": max(1, min(limit, 20)),
            "locationRestriction": {
                "circle": {
                    "center": {"latitude": query.origin.lat, "longitude": query.origin.lng},
                    "radius": float(query.radius_m),
                }
            },
        }
        payload = await self._request("POST", "/places:searchNearby", json=body)
        venues = []
        for place in payload.get("places") or []:
            if not isinstance(place, dict):
                continue
            venue = normalize_place(place, self._base_url)
            if venue is not None:
                venues.append(venue)
        logger.info("Google Places returned %d venues", len(venues))
        return venues[:limit]


__all__ = ["GooglePlacesProvider", "included_types", "normalize_place"]
