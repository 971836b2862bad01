"""Personalized venue ranking: preference match plus small contextual adjustments."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from .models import Coordinate, MergedVenue, PreferenceProfile, RankedVenue
from .scoring import compatibility_factors
from .settings import ContextWeights, settings
from .similarity import haversine_km

logger = logging.getLogger(__name__)

BASE_SCORE = 0.5
CUISINE_HIT, CUISINE_MISS = 0.3, -0.1
PRICE_HIT, PRICE_MISS = 0.2, -0.05
VIBE_HIT = 0.1

DINNER_HOURS = range(18, 22)
LUNCH_HOURS = range(11, 15)
WINTER_MONTHS = frozenset({11, 12, 1, 2, 3})


@dataclass(frozen=True, slots=True)
class RankingContext:
    now: datetime | None = None
    origin: Coordinate | None = None
    max_distance_km: float | None = None


@dataclass(frozen=True, slots=True)
class TargetPreferences:
    """Preference sets a venue is matched against (one profile, or a pair combined)."""

    cuisines: frozenset[str] = frozenset()
    price_tiers: frozenset[str] = frozenset()
    vibes: frozenset[str] = frozenset()
    max_distance_km: float | None = None
    shared: dict[str, tuple[str, ...]] = field(default_factory=dict)


ContextTerm = Callable[[MergedVenue, RankingContext, ContextWeights], float]


def rating_term(venue: MergedVenue, context: RankingContext, weights: ContextWeights) -> float:
    if not venue.rating:
        return 0.0
    return min((venue.rating - weights.rating_baseline) * weights.rating_scale, weights.rating_cap)


def open_now_term(venue: MergedVenue, context: RankingContext, weights: ContextWeights) -> float:
    if venue.open_now is None:
        return 0.0
    return weights.open_now if venue.open_now else -weights.closed


def time_of_day_term(venue: MergedVenue, context: RankingContext, weights: ContextWeights) -> float:
    if context.now is None:
        return 0.0
    if context.now.hour in DINNER_HOURS:
        return weights.dinner
    if context.now.hour in LUNCH_HOURS:
        return weights.lunch
    return 0.0


def season_term(venue: MergedVenue, context: RankingContext, weights: ContextWeights) -> float:
    if context.now is None or context.now.month not in WINTER_MONTHS:
        return 0.0
    return weights.winter_indoor if "indoor" in {t.lower() for t in venue.tags} else 0.0


def distance_term(venue: MergedVenue, context: RankingContext, weights: ContextWeights) -> float:
    if context.origin is None or context.max_distance_km is None:
        return 0.0
    if haversine_km(context.origin, venue.location) > context.max_distance_km:
        return -weights.too_far
    return 0.0


DEFAULT_TERMS: tuple[ContextTerm, ...] = (
    rating_term,
    open_now_term,
    time_of_day_term,
    season_term,
    distance_term,
)


def _lower(values) -> frozenset[str]:
    return frozenset(v.strip().lower() for v in values if v and v.strip())


def target_preferences(
    user: PreferenceProfile, partner: PreferenceProfile | None = None
) -> TargetPreferences:
    """A pair is matched on what both share, falling back to the union where nothing is shared."""
    if partner is None:
        return TargetPreferences(
            cuisines=_lower(user.cuisines),
            price_tiers=_lower(user.price_tiers),
            vibes=_lower(user.vibes),
            max_distance_km=user.max_distance_km,
        )
    factors = compatibility_factors(user, partner)
    distances = [d for d in (user.max_distance_km, partner.max_distance_km) if d is not None]
    return TargetPreferences(
        cuisines=_lower(factors.shared_cuisines or user.cuisines | partner.cuisines),
        price_tiers=_lower(factors.shared_price_ranges or user.price_tiers | partner.price_tiers),
        vibes=_lower(factors.shared_vibes or user.vibes | partner.vibes),
        max_distance_km=min(distances) if distances else None,
        shared={
            "cuisines": factors.shared_cuisines,
            "vibes": factors.shared_vibes,
            "price_ranges": factors.shared_price_ranges,
        },
    )


def _price_matches(venue: MergedVenue, tiers: frozenset[str]) -> bool:
    if venue.price_tier is None:
        return False
    return venue.price_range in tiers or str(venue.price_tier) in tiers


def _reasoning(venue: MergedVenue, cuisine_match: bool, price_match: bool, vibes: list[str]) -> str:
    reasons = []
    if cuisine_match and venue.cuisine_type:
        reasons.append(f"serves the {venue.cuisine_type} food you're after")
    if price_match and venue.price_range:
        reasons.append(f"fits a {venue.price_range} budget")
    if vibes:
        reasons.append(f"has a {' and '.join(vibes)} feel")
    if venue.rating and venue.rating >= 4.5:
        reasons.append(f"is highly rated ({venue.rating:.1f})")
    if not reasons:
        return f"{venue.name} is a nearby option worth a look."
    if len(reasons) == 1:
        return f"{venue.name} {reasons[0]}."
    return f"{venue.name} {', '.join(reasons[:-1])} and {reasons[-1]}."


class VenueRanker:
    def __init__(
        self,
        *,
        max_total_venues: int | None = None,
        weights: ContextWeights | None = None,
        terms: Sequence[ContextTerm] = DEFAULT_TERMS,
    ) -> None:
        self.max_total_venues = (
            max_total_venues if max_total_venues is not None else settings.MAX_TOTAL_VENUES
        )
        self.weights = weights or settings.parsed_context_weights
        self.terms = tuple(terms)

    def base_match(
        self, venue: MergedVenue, target: TargetPreferences
    ) -> tuple[float, dict[str, object]]:
        score = BASE_SCORE
        cuisine_match = bool(
            venue.cuisine_type and venue.cuisine_type.strip().lower() in target.cuisines
        )
        if target.cuisines and venue.cuisine_type:
            score += CUISINE_HIT if cuisine_match else CUISINE_MISS

        price_match = _price_matches(venue, target.price_tiers)
        if target.price_tiers and venue.price_tier is not None:
            score += PRICE_HIT if price_match else PRICE_MISS

        tags = [tag.lower() for tag in venue.tags]
        vibe_matches = sorted(v for v in target.vibes if any(v in tag for tag in tags))
        score += VIBE_HIT * len(vibe_matches)

        factors: dict[str, object] = {
            "cuisine_match": cuisine_match,
            "price_match": price_match,
            "vibe_matches": vibe_matches,
        }
        return score, factors

    def rank(
        self,
        venues: Sequence[MergedVenue],
        user_profile: PreferenceProfile,
        partner_profile: PreferenceProfile | None = None,
        context: RankingContext | None = None,
    ) -> list[RankedVenue]:
        target = target_preferences(user_profile, partner_profile)
        context = context or RankingContext()
        if context.max_distance_km is None and target.max_distance_km is not None:
            context = RankingContext(
                now=context.now, origin=context.origin, max_distance_km=target.max_distance_km
            )

        ranked: list[RankedVenue] = []
        for venue in venues:
            base, factors = self.base_match(venue, target)
            contextual = sum(term(venue, context, self.weights) for term in self.terms)
            factors["rating_bonus"] = round(rating_term(venue, context, self.weights), 4)
            if target.shared:
                factors["shared_preferences"] = {k: list(v) for k, v in target.shared.items()}
            ai_score = max(0.0, min(100.0, (base + contextual) * 100))
            ranked.append(
                RankedVenue(
                    venue=venue,
                    ai_score=round(ai_score, 2),
                    contextual_score=round(contextual, 4),
                    base_score=round(base, 4),
                    match_factors=factors,
                    reasoning=_reasoning(
                        venue,
                        bool(factors["cuisine_match"]),
                        bool(factors["price_match"]),
                        list(factors["vibe_matches"]),
                    ),
                )
            )

        ranked.sort(
            key=lambda item: (
                -item.ai_score,
                -(item.venue.rating or 0.0),
                item.venue.name.lower(),
                item.venue.venue_id,
            )
        )
        if len(ranked) > self.max_total_venues:
            logger.debug("Truncating %d ranked venues to %d", len(ranked), self.max_total_venues)
        return ranked[: self.max_total_venues]


__all__ = [
    "ContextTerm",
    "DEFAULT_TERMS",
    "RankingContext",
    "TargetPreferences",
    "VenueRanker",
    "distance_term",
    "open_now_term",
    "rating_term",
    "season_term",
    "target_preferences",
    "time_of_day_term",
]
