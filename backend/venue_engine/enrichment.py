"""Bounded-concurrency per-venue enrichment (route distance and ETA)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from .cancellation import CancellationToken
from .metrics import enrichment_results_total
from .models import Coordinate, EnrichmentResult
from .settings import settings

logger = logging.getLogger(__name__)

EnrichFn = Callable[[Coordinate, Coordinate], Awaitable[EnrichmentResult]]
ProgressFn = Callable[[int, int], None]


def _venue_fields(item: Any) -> tuple[str, Coordinate | None]:
    venue = getattr(item, "venue", item)
    return venue.venue_id, getattr(venue, "location", None)


class BatchEnricher:
    def __init__(self, enrich: EnrichFn, *, concurrency_limit: int | None = None) -> None:
        """``enrich(origin, destination)`` produces one venue's EnrichmentResult."""
        self._enrich = enrich
        self.concurrency_limit = concurrency_limit or settings.ENRICHMENT_CONCURRENCY

    async def _enrich_one(
        self, venue_id: str, reference: Coordinate, location: Coordinate
    ) -> EnrichmentResult | None:
        try:
            result = await self._enrich(reference, location)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            enrichment_results_total.labels(outcome="error").inc()
            logger.warning("Enrichment failed for venue %s: %s", venue_id, exc)
            return None
        enrichment_results_total.labels(outcome="ok").inc()
        return result

    async def enrich_batch(
        self,
        venues: Sequence[Any],
        reference: Coordinate,
        concurrency_limit: int | None = None,
        *,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressFn | None = None,
    ) -> dict[str, EnrichmentResult | None]:
        """
        Enrich ``venues`` in waves of at most ``concurrency_limit`` calls.

        A failed venue maps to None without affecting the rest of its wave.
        Venues without a location are skipped. Once ``cancel_token`` fires the
        current wave is allowed to finish and no further wave starts; the
        partial mapping is returned.
        """
        limit = max(1, concurrency_limit or self.concurrency_limit)
        pending = []
        for item in venues:
            venue_id, location = _venue_fields(item)
            if location is None:
                logger.debug("Skipping enrichment for %s: no coordinates", venue_id)
                continue
            pending.append((venue_id, location))

        total = len(pending)
        results: dict[str, EnrichmentResult | None] = {}
        completed = 0

        async def run(venue_id: str, location: Coordinate) -> None:
            nonlocal completed
            results[venue_id] = await self._enrich_one(venue_id, reference, location)
            completed += 1
            if on_progress is not None:
                on_progress(completed, total)

        for start in range(0, total, limit):
            if cancel_token is not None and cancel_token.cancelled:
                logger.info("Enrichment cancelled after %d/%d venues", completed, total)
                break
            wave = pending[start : start + limit]
            await asyncio.gather(*(run(venue_id, location) for venue_id, location in wave))
        return results


__all__ = ["BatchEnricher", "EnrichFn", "ProgressFn"]
