from __future__ import annotations

import logging
from typing import Any

import httpx

from ..models import Photo, ProviderVenue, SearchQuery
from ..settings import settings
from .base import HTTPProvider, coordinate_or_none

logger = logging.getLogger(__name__)

SEARCH_FIELDS = "fsq_id,name,location,geocodes,categories,rating,price,photos,hours,stats"

CUISINE_CATEGORIES: dict[str, str] = {
    "italian": "13236",
    "pizza": "13064",
    "asian": "13072",
    "chinese": "13099",
    "japanese": "13263",
    "thai": "13352",
    "mexican": "13303",
    "american": "13031",
    "cafe": "13035",
    "coffee": "13034",
    "bakery": "13002",
    "bar": "13003",
    "french": "13148",
    "indian": "13199",
    "mediterranean": "13304",
    "seafood": "13338",
    "steakhouse": "13346",
    "vegetarian": "13377",
    "burger": "13028",
}

# Foursquare rates on a 0-10 scale
RATING_SCALE = 2.0


def category_ids(query: SearchQuery) -> str:
    ids = {CUISINE_CATEGORIES[c.lower()] for c in query.cuisines if c.lower() in CUISINE_CATEGORIES}
    return ",".join(sorted(ids))


def _address(location: dict[str, Any]) -> str | None:
    formatted = location.get("formatted_address")
    if formatted:
        return formatted
    parts = [location.get("address"), location.get("locality")]
    joined = ", ".join(p for p in parts if p)
    return joined or None


def _photos(place: dict[str, Any]) -> tuple[Photo, ...]:
    photos = []
    for item in place.get("photos") or []:
        prefix, suffix = item.get("prefix"), item.get("suffix")
        if not prefix or not suffix:
            continue
        photos.append(
            Photo(
                url=f"{prefix}original{suffix}",
                source="foursquare",
                width=item.get("width"),
                height=item.get("height"),
            )
        )
    return tuple(photos)


def normalize_place(place: dict[str, Any]) -> ProviderVenue | None:
    fsq_id = place.get("fsq_id")
    location = place.get("location") or {}
    main = (place.get("geocodes") or {}).get("main") or {}
    coordinate = coordinate_or_none(
        main.get("latitude", location.get("latitude")),
        main.get("longitude", location.get("longitude")),
    )
    if not fsq_id or coordinate is None:
        logger.debug("Skipping Foursquare place without id or location: %r", fsq_id)
        return None
    categories = [c.get("name") for c in place.get("categories") or [] if c.get("name")]
    rating = place.get("rating")
    price = place.get("price")
    review_count = (place.get("stats") or {}).get("total_ratings")
    return ProviderVenue(
        provider="foursquare",
        provider_id=str(fsq_id),
        name=(place.get("name") or "").strip(),
        location=coordinate,
        address=_address(location),
        price_tier=price if isinstance(price, int) and 1 <= price <= 4 else None,
        rating=round(float(rating) / RATING_SCALE, 2) if isinstance(rating, (int, float)) else None,
        review_count=review_count if isinstance(review_count, int) else None,
        cuisine_type=categories[0] if categories else None,
        tags=categories,
        photos=_photos(place),
        open_now=(place.get("hours") or {}).get("open_now"),
    )


class FoursquareProvider(HTTPProvider):
    name = "foursquare"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key if api_key is not None else settings.FOURSQUARE_API_KEY,
            base_url=base_url or settings.FOURSQUARE_BASE_URL,
            timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS,
            client=client,
        )

    def _headers(self) -> dict[str, str]:
        return {"Authorization": self._api_key or "", "Accept": "application/json"}

    async def search(self, query: SearchQuery, *, limit: int = 20) -> list[ProviderVenue]:
        params = {
            "ll": f"{query.origin.lat},{query.origin.lng}",
            "radius": str(query.radius_m),
            "limit": str(limit),
            "fields": SEARCH_FIELDS,
        }
        categories = category_ids(query)
        if categories:
            params["categories"] = categories
        payload = await self._request("GET", "/places/search", params=params)
        venues = []
        for place in payload.get("results") or []:
            if not isinstance(place, dict):
                continue
            venue = normalize_place(place)
            if venue is not None:
                venues.append(venue)
        logger.info("Foursquare returned %d venues", len(venues))
        return venues[:limit]


__all__ = ["FoursquareProvider", "category_ids", "normalize_place"]
