"""Pure geodesic and textual similarity helpers."""

from __future__ import annotations

import math
import re
import unicodedata
from collections.abc import Collection, Iterable

from rapidfuzz.distance import Levenshtein

from .models import Coordinate

EARTH_RADIUS_M = 6_371_000.0

# Generic words that say what kind of place it is rather than which place it is.
GENERIC_VENUE_WORDS = frozenset(
    {
        "the",
        "restaurant",
        "restaurante",
        "ristorante",
        "trattoria",
        "osteria",
        "pizzeria",
        "cafe",
        "caffe",
        "coffee",
        "bar",
        "bistro",
        "brasserie",
        "grill",
        "kitchen",
        "eatery",
        "diner",
        "lounge",
        "pub",
        "tavern",
        "and",
    }
)

_PUNCT_RE = re.compile(r"[^\w\s]", re.UNICODE)
_SPACE_RE = re.compile(r"\s+")


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in meters."""
    if a == b:
        return 0.0
    lat1, lat2 = math.radians(a.lat), math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(max(0.0, 1 - h)))


def haversine_km(a: Coordinate, b: Coordinate) -> float:
    return haversine_m(a, b) / 1000.0


def edit_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)


def string_similarity(a: str | None, b: str | None) -> float:
    """``1 - editDistance / maxLength`` over lowercased, trimmed input.

    Two empty strings are identical (1.0); an empty string never matches a
    non-empty one (0.0).
    """
    left = (a or "").strip().lower()
    right = (b or "").strip().lower()
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    longest = max(len(left), len(right))
    return 1.0 - edit_distance(left, right) / longest


def normalize_venue_name(name: str | None) -> str:
    if not name:
        return ""
    text = unicodedata.normalize("NFKD", name)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.lower().replace("&", " and ")
    text = _PUNCT_RE.sub(" ", text)
    tokens = [token for token in _SPACE_RE.split(text) if token]
    significant = [token for token in tokens if token not in GENERIC_VENUE_WORDS]
    # "The Bar" must not collapse to nothing
    return " ".join(significant or tokens)


def venue_name_similarity(a: str | None, b: str | None) -> float:
    return string_similarity(normalize_venue_name(a), normalize_venue_name(b))


def jaccard(a: Collection[str], b: Collection[str]) -> float:
    """Set overlap; an empty side means no signal and scores 0."""
    left = {item.strip().lower() for item in a if item and item.strip()}
    right = {item.strip().lower() for item in b if item and item.strip()}
    if not left or not right:
        return 0.0
    return len(left & right) / len(left | right)


def shared_items(a: Iterable[str], b: Iterable[str]) -> tuple[str, ...]:
    """Case-insensitive intersection, reported with the first side's spelling."""
    right = {item.strip().lower() for item in b if item}
    return tuple(sorted({item for item in a if item and item.strip().lower() in right}))


def centroid(points: Iterable[Coordinate]) -> Coordinate:
    items = list(points)
    if not items:
        raise ValueError("centroid of no points")
    lat = sum(p.lat for p in items) / len(items)
    lng = sum(p.lng for p in items) / len(items)
    return Coordinate(lat, lng)


def quantize(value: float, decimals: int = 3) -> str:
    """Fixed-precision coordinate text; 3 decimals is roughly 111 m."""
    rounded = round(value, decimals) + 0.0  # drop negative zero
    return f"{rounded:.{decimals}f}"


def location_prefix(coordinate: Coordinate, decimals: int = 3) -> str:
    return f"{quantize(coordinate.lat, decimals)}_{quantize(coordinate.lng, decimals)}"


__all__ = [
    "EARTH_RADIUS_M",
    "GENERIC_VENUE_WORDS",
    "centroid",
    "edit_distance",
    "haversine_km",
    "haversine_m",
    "jaccard",
    "location_prefix",
    "normalize_venue_name",
    "quantize",
    "shared_items",
    "string_similarity",
    "venue_name_similarity",
]
