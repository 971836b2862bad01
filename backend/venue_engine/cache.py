"""
In-process caches for aggregated search results and route lookups.

``ResultCache`` holds the ranked venue list produced for a quantized search
query. It is created once per process and handed to the orchestrator; nothing
in this module keeps global state.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Sequence
from threading import Lock
from typing import Any, Generic, TypeVar

from .metrics import track_cache_metrics
from .models import Coordinate, MergedVenue, SearchQuery
from .similarity import location_prefix

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
V = TypeVar("V")


def _joined(values) -> str:
    return ",".join(sorted(values))


def make_search_key(query: SearchQuery) -> str:
    """Quantized coordinate (~111 m) plus sorted, comma-joined filter sets."""
    return "_".join(
        (
            location_prefix(query.origin),
            _joined(query.cuisines),
            _joined(query.price_tiers),
            _joined(query.vibes),
        )
    )


class ResultCache:
    """TTL-expiring, size-bounded store of ranked venue lists."""

    def __init__(
        self,
        name: str = "search_results",
        *,
        ttl_seconds: float = 30 * 60,
        max_entries: int = 50,
        headroom: int = 10,
        clock: Clock = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.headroom = max(0, min(headroom, max_entries - 1))
        self._clock = clock
        self._store: dict[str, str] = {}
        self._lock = Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    def get(self, key: str) -> list[MergedVenue] | None:
        venues = self._lookup(key)
        track_cache_metrics(self.name, self.stats())
        if venues is not None:
            logger.debug("Search cache hit for %s (%d venues)", key, len(venues))
        return venues

    def _lookup(self, key: str) -> list[MergedVenue] | None:
        with self._lock:
            raw = self._store.get(key)
            if raw is None:
                self._misses += 1
                return None
            try:
                payload = json.loads(raw)
                stored_at = float(payload["timestamp"])
                venues = [MergedVenue.from_dict(item) for item in payload["venues"]]
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.warning("Dropping corrupt cache entry %s: %s", key, exc)
                self._store.pop(key, None)
                self._misses += 1
                return None
            if self._clock() - stored_at > self.ttl_seconds:
                self._store.pop(key, None)
                self._expirations += 1
                self._misses += 1
                return None
            self._hits += 1
            return venues

    def put(self, key: str, venues: Sequence[MergedVenue]) -> None:
        payload = json.dumps(
            {"timestamp": self._clock(), "venues": [venue.to_dict() for venue in venues]}
        )
        with self._lock:
            if key not in self._store and len(self._store) >= self.max_entries:
                self._evict_oldest()
            self._store[key] = payload
        logger.debug("Cached %d venues for %s", len(venues), key)
        track_cache_metrics(self.name, self.stats())

    def _evict_oldest(self) -> None:
        # Evict down to capacity minus headroom so the next few puts do not evict again.
        ordered: list[tuple[float, str]] = []
        for key, raw in list(self._store.items()):
            try:
                ordered.append((float(json.loads(raw)["timestamp"]), key))
            except (ValueError, KeyError, TypeError, AttributeError):
                self._store.pop(key, None)
        ordered.sort()
        target = min(self.max_entries - self.headroom, self.max_entries - 1)
        for _, key in ordered:
            if len(self._store) <= target:
                break
            del self._store[key]
            self._evictions += 1

    def invalidate(self, prefix: str | Coordinate) -> int:
        """Remove every entry whose quantized coordinate matches ``prefix``."""
        if isinstance(prefix, Coordinate):
            prefix = location_prefix(prefix)
        marker = prefix if prefix.endswith("_") else f"{prefix}_"
        with self._lock:
            doomed = [key for key in self._store if key.startswith(marker)]
            for key in doomed:
                del self._store[key]
        logger.info("Invalidated %d cached searches for %s", len(doomed), prefix)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._hits + self._misses
            return {
                "name": self.name,
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._store),
                "evictions": self._evictions,
                "expirations": self._expirations,
                "hit_rate": round(self._hits / total, 3) if total else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class TTLCache(Generic[V]):
    """Small LRU cache with per-entry expiry, used for route lookups."""

    def __init__(self, ttl_seconds: float, max_entries: int = 1024, clock: Clock = time.time):
        self._ttl = ttl_seconds
        self._max = max_entries
        self._clock = clock
        self._store: OrderedDict[str, tuple[float, V]] = OrderedDict()
        self._lock = Lock()

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._store.get(key)
            if not entry:
                return None
            expires_at, value = entry
            if expires_at < self._clock():
                self._store.pop(key, None)
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._store[key] = (self._clock() + self._ttl, value)
            self._store.move_to_end(key)
            while len(self._store) > self._max:
                self._store.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


__all__ = ["ResultCache", "TTLCache", "make_search_key"]
