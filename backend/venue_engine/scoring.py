"""
Compatibility scoring between two preference profiles.

The AI scorer is tried first. Any failure there (error, timeout, malformed
reply) falls back to the deterministic rules below, so callers always get a
score unless neither profile carries any preference at all.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Collection, Mapping
from typing import Protocol

import sentry_sdk

from .ai_client import AIScorer, Scored, Unavailable
from .errors import InsufficientPreferences
from .metrics import scoring_requests_total
from .models import CompatibilityFactors, CompatibilityScore, PreferenceProfile
from .similarity import jaccard, shared_items

logger = logging.getLogger(__name__)

WEIGHTS: Mapping[str, float] = {
    "cuisine": 0.30,
    "vibe": 0.25,
    "price": 0.20,
    "timing": 0.15,
    "activity": 0.10,
}

# Per empty category, summed over both profiles
CONFIDENCE_PENALTY = 0.1
MIN_CONFIDENCE = 0.1

CONFIDENCE_CATEGORIES = (
    "cuisines",
    "vibes",
    "price_tiers",
    "preferred_times",
    "dietary_restrictions",
)


def dietary_compatibility(a: Collection[str], b: Collection[str]) -> float:
    left = {item.strip().lower() for item in a if item and item.strip()}
    right = {item.strip().lower() for item in b if item and item.strip()}
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.7
    return 0.9 if left & right else 0.3


def weighted_overall(
    cuisine: float, vibe: float, price: float, timing: float, activity: float
) -> float:
    return (
        WEIGHTS["cuisine"] * cuisine
        + WEIGHTS["vibe"] * vibe
        + WEIGHTS["price"] * price
        + WEIGHTS["timing"] * timing
        + WEIGHTS["activity"] * activity
    )


def confidence_for(a: PreferenceProfile, b: PreferenceProfile) -> float:
    empty = sum(
        1 for profile in (a, b) for name in CONFIDENCE_CATEGORIES if not getattr(profile, name)
    )
    return round(max(MIN_CONFIDENCE, 1.0 - CONFIDENCE_PENALTY * empty), 3)


def _reasoning(factors: dict[str, tuple[str, ...]]) -> str:
    parts = []
    if factors["cuisines"]:
        parts.append(f"You both enjoy {', '.join(factors['cuisines'])} cuisine")
    if factors["vibes"]:
        parts.append(f"you share a taste for {', '.join(factors['vibes'])} settings")
    if factors["price_ranges"]:
        parts.append(f"your budgets meet at {', '.join(factors['price_ranges'])}")
    if factors["times"]:
        parts.append(f"you are both free for {', '.join(factors['times'])}")
    if not parts:
        return "Few shared preferences yet; exploring something new together could work well."
    text = "; ".join(parts)
    return text[0].upper() + text[1:] + "."


def compatibility_factors(a: PreferenceProfile, b: PreferenceProfile) -> CompatibilityFactors:
    """Literal intersections of the two profiles, with a short explanation."""
    shared = {
        "cuisines": shared_items(a.cuisines, b.cuisines),
        "vibes": shared_items(a.vibes, b.vibes),
        "price_ranges": shared_items(a.price_tiers, b.price_tiers),
        "times": shared_items(a.preferred_times, b.preferred_times),
    }
    return CompatibilityFactors(
        shared_cuisines=shared["cuisines"],
        shared_vibes=shared["vibes"],
        shared_price_ranges=shared["price_ranges"],
        shared_times=shared["times"],
        shared_activities=shared_items(a.activities, b.activities),
        shared_dietary=shared_items(a.dietary_restrictions, b.dietary_restrictions),
        reasoning=_reasoning(shared),
    )


def rule_based_score(a: PreferenceProfile, b: PreferenceProfile) -> CompatibilityScore:
    cuisine = jaccard(a.cuisines, b.cuisines)
    vibe = jaccard(a.vibes, b.vibes)
    price = jaccard(a.price_tiers, b.price_tiers)
    timing = jaccard(a.preferred_times, b.preferred_times)
    if a.activities or b.activities:
        activity = jaccard(a.activities, b.activities)
    else:
        activity = dietary_compatibility(a.dietary_restrictions, b.dietary_restrictions)
    overall = weighted_overall(cuisine, vibe, price, timing, activity)
    return CompatibilityScore(
        overall_score=round(overall, 4),
        cuisine_score=round(cuisine, 4),
        vibe_score=round(vibe, 4),
        price_score=round(price, 4),
        timing_score=round(timing, 4),
        activity_score=round(activity, 4),
        compatibility_factors=compatibility_factors(a, b),
        confidence=confidence_for(a, b),
        source="rules",
    )


class CompatibilityScorer:
    def __init__(self, ai_scorer: AIScorer | None = None, *, ai_timeout: float = 15.0) -> None:
        self._ai_scorer = ai_scorer
        self._ai_timeout = ai_timeout

    async def _try_ai(self, a: PreferenceProfile, b: PreferenceProfile) -> Scored | Unavailable:
        if self._ai_scorer is None:
            return Unavailable("AI scorer not configured")
        try:
            result = await asyncio.wait_for(self._ai_scorer(a, b), timeout=self._ai_timeout)
        except asyncio.TimeoutError:
            return Unavailable(f"AI scorer timed out after {self._ai_timeout:.1f}s")
        except Exception as exc:
            return Unavailable(f"AI scorer failed: {exc}")
        if not isinstance(result, (Scored, Unavailable)):
            return Unavailable(f"unexpected AI result {type(result).__name__}")
        return result

    async def score(self, a: PreferenceProfile, b: PreferenceProfile) -> CompatibilityScore:
        result = await self._try_ai(a, b)
        if isinstance(result, Scored):
            scoring_requests_total.labels(path="ai").inc()
            return result.score

        sentry_sdk.add_breadcrumb(
            category="scoring",
            message="AI compatibility scoring unavailable; using rules",
            level="info",
            data={"reason": result.reason},
        )
        if a.is_empty and b.is_empty:
            raise InsufficientPreferences(
                f"No preferences for {a.user_id or 'user A'} or {b.user_id or 'user B'} "
                f"and AI scoring unavailable ({result.reason})"
            )
        logger.info("Falling back to rule-based compatibility: %s", result.reason)
        scoring_requests_total.labels(path="rules").inc()
        return rule_based_score(a, b)

    async def score_users(
        self, store: PreferenceStore, user_a: str, user_b: str
    ) -> CompatibilityScore:
        """Look both users up in ``store`` and score them; unknown users have no preferences."""
        profile_a, profile_b = await asyncio.gather(
            store.get_profile(user_a), store.get_profile(user_b)
        )
        return await self.score(
            profile_a or PreferenceProfile(user_id=user_a),
            profile_b or PreferenceProfile(user_id=user_b),
        )


class PreferenceStore(Protocol):
    """Read-only source of preference profiles, keyed by user id."""

    async def get_profile(self, user_id: str) -> PreferenceProfile | None: ...


class InMemoryPreferenceStore:
    def __init__(self, profiles: Mapping[str, PreferenceProfile] | None = None) -> None:
        self._profiles: dict[str, PreferenceProfile] = dict(profiles or {})

    def add(self, profile: PreferenceProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def get_profile(self, user_id: str) -> PreferenceProfile | None:
        return self._profiles.get(user_id)


__all__ = [
    "CompatibilityScorer",
    "InMemoryPreferenceStore",
    "PreferenceStore",
    "WEIGHTS",
    "compatibility_factors",
    "confidence_for",
    "dietary_compatibility",
    "rule_based_score",
    "weighted_overall",
]
