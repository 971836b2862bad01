from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from ..models import Coordinate, Photo, ProviderVenue, SearchQuery
from ..similarity import haversine_m
from .base import Provider


class StaticProvider(Provider):
    """
    In-memory provider for development and tests.

    Returns the stored venues inside the query radius, nearest first. An
    optional ``delay`` and ``error`` let tests simulate slow or failing
    upstreams.
    """

    def __init__(
        self,
        name: str,
        venues: Iterable[ProviderVenue] = (),
        *,
        delay: float = 0.0,
        error: BaseException | None = None,
    ) -> None:
        self.name = name
        self._venues = list(venues)
        self.delay = delay
        self.error = error
        self.calls = 0

    @property
    def venues(self) -> list[ProviderVenue]:
        return list(self._venues)

    @classmethod
    def from_json(cls, name: str, path: str | Path) -> StaticProvider:
        rows = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(name, (venue_from_row(name, row) for row in rows))

    async def search(self, query: SearchQuery, *, limit: int = 20) -> list[ProviderVenue]:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        nearby = [
            (haversine_m(query.origin, venue.location), venue)
            for venue in self._venues
            if haversine_m(query.origin, venue.location) <= query.radius_m
        ]
        nearby.sort(key=lambda item: (item[0], item[1].provider_id))
        return [venue for _, venue in nearby[:limit]]


def venue_from_row(provider: str, row: dict[str, Any]) -> ProviderVenue:
    return ProviderVenue(
        provider=provider,
        provider_id=str(row["id"]),
        name=row.get("name", ""),
        location=Coordinate(float(row["lat"]), float(row["lng"])),
        address=row.get("address"),
        price_tier=row.get("price_tier"),
        rating=row.get("rating"),
        review_count=row.get("review_count"),
        cuisine_type=row.get("cuisine_type"),
        tags=row.get("tags") or (),
        photos=tuple(Photo(url=url, source=provider) for url in row.get("photos") or ()),
        open_now=row.get("open_now"),
    )


__all__ = ["StaticProvider", "venue_from_row"]
