"""
Entity resolution: merge the same physical place reported by several providers.

Two ProviderVenues are duplicates when they lie within
``dedup_threshold_m`` of each other and their normalized names are at least
``name_threshold`` similar. Duplicate pairs form a graph whose connected
components (single linkage) become MergedVenues.
"""

from __future__ import annotations

import hashlib
import logging
from collections import Counter
from collections.abc import Sequence

from .models import MergedVenue, Photo, ProviderVenue
from .settings import settings
from .similarity import centroid, haversine_m, venue_name_similarity

logger = logging.getLogger(__name__)


def stable_venue_id(members: Sequence[ProviderVenue]) -> str:
    """Hash of the group's sorted ``provider:id`` pairs; independent of input order."""
    keys = sorted({member.key for member in members})
    digest = hashlib.sha1("|".join(keys).encode("utf-8")).hexdigest()
    return f"v_{digest[:16]}"


class _DisjointSet:
    def __init__(self, size: int) -> None:
        self.parent = list(range(size))
        self.members: dict[int, list[int]] = {i: [i] for i in range(size)}

    def find(self, item: int) -> int:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        # Lower index stays root so group order follows input order
        root_a, root_b = sorted((a, b))
        self.parent[root_b] = root_a
        self.members[root_a].extend(self.members.pop(root_b))


class EntityResolver:
    def __init__(
        self,
        *,
        dedup_threshold_m: float | None = None,
        name_threshold: float | None = None,
        max_cluster_diameter_m: float | None = None,
        merge_venue_data: bool | None = None,
        provider_order: Sequence[str] = ("google_places", "foursquare"),
    ) -> None:
        self.dedup_threshold_m = (
            dedup_threshold_m
            if dedup_threshold_m is not None
            else settings.DEDUPLICATION_THRESHOLD_M
        )
        self.name_threshold = (
            name_threshold if name_threshold is not None else settings.NAME_SIMILARITY_THRESHOLD
        )
        self.max_cluster_diameter_m = (
            max_cluster_diameter_m
            if max_cluster_diameter_m is not None
            else settings.MAX_CLUSTER_DIAMETER_M
        )
        self.merge_venue_data = (
            merge_venue_data if merge_venue_data is not None else settings.MERGE_VENUE_DATA
        )
        self.provider_order = tuple(provider_order)

    def is_duplicate(self, a: ProviderVenue, b: ProviderVenue) -> bool:
        if haversine_m(a.location, b.location) > self.dedup_threshold_m:
            return False
        return venue_name_similarity(a.name, b.name) >= self.name_threshold

    def resolve(self, venues: Sequence[ProviderVenue]) -> list[MergedVenue]:
        """Group duplicates and merge each group, preserving first-seen order."""
        items = list(venues)
        if not self.merge_venue_data:
            return [self.merge([venue]) for venue in items]

        groups = _DisjointSet(len(items))
        for i in range(len(items)):
            for j in range(i + 1, len(items)):
                if not self.is_duplicate(items[i], items[j]):
                    continue
                root_i, root_j = groups.find(i), groups.find(j)
                if root_i == root_j:
                    continue
                if not self._within_diameter(items, groups.members[root_i], groups.members[root_j]):
                    continue
                groups.union(root_i, root_j)

        merged = [
            self.merge([items[index] for index in sorted(groups.members[root])])
            for root in sorted(groups.members)
        ]
        if len(merged) < len(items):
            logger.info("Resolved %d provider venues into %d places", len(items), len(merged))
        return merged

    def _within_diameter(
        self, items: Sequence[ProviderVenue], left: list[int], right: list[int]
    ) -> bool:
        cap = self.max_cluster_diameter_m
        if cap is None:
            return True
        return all(
            haversine_m(items[a].location, items[b].location) <= cap for a in left for b in right
        )

    def _provider_rank(self, provider: str) -> int:
        try:
            return self.provider_order.index(provider)
        except ValueError:
            return len(self.provider_order)

    def merge(self, group: Sequence[ProviderVenue]) -> MergedVenue:
        if not group:
            raise ValueError("cannot merge an empty group")
        members = sorted(
            enumerate(group), key=lambda item: (self._provider_rank(item[1].provider), item[0])
        )
        ordered = [member for _, member in members]

        sources: dict[str, list[str]] = {}
        for member in ordered:
            sources.setdefault(member.provider, []).append(member.provider_id)

        return MergedVenue(
            venue_id=stable_venue_id(ordered),
            name=_longest(member.name for member in ordered) or "",
            location=centroid(member.location for member in ordered),
            address=_longest(member.address for member in ordered),
            price_tier=_price_mode(ordered),
            rating=_rating(ordered),
            review_count=max(
                (m.review_count for m in ordered if m.review_count is not None), default=None
            ),
            cuisine_type=next((m.cuisine_type for m in ordered if m.cuisine_type), None),
            tags=frozenset().union(*(member.tags for member in ordered)),
            photos=_photos(ordered),
            open_now=_open_now(ordered),
            sources={name: tuple(sorted(ids)) for name, ids in sources.items()},
        )


def _longest(values) -> str | None:
    best: str | None = None
    for value in values:
        text = (value or "").strip()
        if text and (best is None or len(text) > len(best)):
            best = text
    return best


def _price_mode(members: Sequence[ProviderVenue]) -> int | None:
    counts = Counter(m.price_tier for m in members if m.price_tier is not None)
    if not counts:
        return None
    # most votes first, lower tier wins a tie
    return min(counts, key=lambda tier: (-counts[tier], tier))


def _rating(members: Sequence[ProviderVenue]) -> float | None:
    rated = [m for m in members if m.rating is not None]
    if not rated:
        return None
    with_reviews = [m for m in rated if m.review_count is not None]
    if with_reviews:
        best = max(with_reviews, key=lambda m: (m.review_count, m.rating))
        return best.rating
    return max(m.rating for m in rated)


def _photos(members: Sequence[ProviderVenue]) -> tuple[Photo, ...]:
    seen: set[str] = set()
    photos: list[Photo] = []
    for member in members:
        for photo in member.photos:
            if photo.url in seen:
                continue
            seen.add(photo.url)
            photos.append(photo)
    return tuple(photos)


def _open_now(members: Sequence[ProviderVenue]) -> bool | None:
    reported = [m.open_now for m in members if m.open_now is not None]
    if not reported:
        return None
    return any(reported)


__all__ = ["EntityResolver", "stable_venue_id"]
