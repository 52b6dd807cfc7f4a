from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field

from ..cache.keys import distance_key
from ..cache.tiered import TieredCache
from ..concurrency import Failed, gather_settled
from ..errors import BackendUnavailableError
from ..pipeline.config import DEFAULT_PIPELINE_CONFIG, PipelineConfig
from ..providers.routing import RoutingBackend
from ..recommendations.models import Duration, LatLng, Venue

logger = logging.getLogger(__name__)


@dataclass
class DurationResult:
    durations: dict[str, Duration] = field(default_factory=dict)
    failed_count: int = 0
    cached_count: int = 0
    fetched_count: int = 0
    secondary_batches: int = 0


def sample_candidates(
    venues: list[Venue],
    limit: int = DEFAULT_PIPELINE_CONFIG.duration_sample_size,
    rng: random.Random | None = None,
) -> list[Venue]:
    """Random sample of at most *limit* venues, keeping the input order."""
    if len(venues) <= limit:
        return list(venues)
    rng = rng or random.Random()
    picked = set(rng.sample(range(len(venues)), limit))
    return [v for i, v in enumerate(venues) if i in picked]


def _batches(items: list[Venue], size: int) -> list[list[Venue]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class DurationResolver:
    """Walking durations for many venues: cache first, then batched routing calls."""

    def __init__(
        self,
        primary: RoutingBackend,
        secondary: RoutingBackend | None,
        cache: TieredCache[Duration],
        config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    ) -> None:
        self.primary = primary
        self.secondary = secondary
        self.cache = cache
        self.config = config

    async def resolve(self, origin: LatLng, venues: list[Venue]) -> DurationResult:
        result = DurationResult()

        routable = [v for v in venues if v.location is not None]
        result.failed_count += len(venues) - len(routable)

        keys = {v.id: distance_key(origin.lat, origin.lng, v.id) for v in routable}
        lookup = await self.cache.get_many(keys.values())
        for venue_id, key in keys.items():
            if key in lookup.found:
                result.durations[venue_id] = lookup.found[key]
        result.cached_count = len(result.durations)

        uncached = [v for v in routable if v.id not in result.durations]
        if not uncached:
            return result

        batches = _batches(uncached, self.config.routing_batch_size)
        outcomes = await gather_settled(
            (self._route_batch(origin, batch, result) for batch in batches),
            timeout=self.config.routing_timeout,
        )

        fresh: dict[str, Duration] = {}
        for batch, outcome in zip(batches, outcomes):
            if isinstance(outcome, Failed):
                # No retry: the whole batch stays unknown.
                result.failed_count += len(batch)
                logger.warning("Routing batch of %d failed: %s", len(batch), outcome.reason)
                continue
            for venue, duration in zip(batch, outcome.value):
                if duration is None:
                    result.failed_count += 1
                    continue
                result.durations[venue.id] = duration
                fresh[keys[venue.id]] = duration

        result.fetched_count = len(fresh)
        self.cache.put_many(fresh)
        logger.info(
            "Durations: %d cached, %d fetched, %d unknown",
            result.cached_count, result.fetched_count, result.failed_count,
        )
        return result

    async def _route_batch(
        self,
        origin: LatLng,
        batch: list[Venue],
        result: DurationResult,
    ) -> list[Duration | None]:
        destinations = [v.location for v in batch]
        try:
            durations = await self.primary.durations(origin, destinations)
        except BackendUnavailableError:
            if self.secondary is None:
                raise
            logger.warning(
                "Routing backend %s unavailable, using %s", self.primary.name, self.secondary.name,
                exc_info=True,
            )
            result.secondary_batches += 1
            durations = await self.secondary.durations(origin, destinations)
        # Pad short answers so every venue maps to an entry.
        return (list(durations) + [None] * len(batch))[: len(batch)]
