from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from ..cache.keys import search_key
from ..cache.tiered import VenueCaches
from ..concurrency import Failed, gather_settled
from ..pipeline.config import DEFAULT_PIPELINE_CONFIG, PipelineConfig
from ..planner.models import SearchPlan
from ..providers.config import DEFAULT_PROVIDER_CONFIG
from ..providers.places import SearchProvider
from ..recommendations.models import LatLng, Venue
from .hours import is_closed_today

logger = logging.getLogger(__name__)

FOOD_TYPES = frozenset({
    "restaurant",
    "food",
    "cafe",
    "bakery",
    "bar",
    "meal_takeaway",
    "meal_delivery",
    "coffee_shop",
    "sandwich_shop",
    "ice_cream_shop",
    "deli",
    "food_court",
    "bagel_shop",
    "dessert_shop",
    "juice_shop",
    "tea_house",
})


def is_food_venue(venue: Venue) -> bool:
    return any(t in FOOD_TYPES or t.endswith("_restaurant") for t in venue.types)


@dataclass
class SourcingResult:
    venues: list[Venue] = field(default_factory=list)
    unique_count: int = 0
    cached_searches: int = 0
    live_searches: int = 0
    skipped_searches: int = 0
    failed_searches: int = 0
    cached_details: int = 0
    fetched_details: int = 0
    failed_ids: list[str] = field(default_factory=list)
    dropped_non_food: int = 0
    dropped_closed: int = 0


class CandidateSourcer:
    """Turn a search plan into a deduplicated list of food venues, cache first."""

    def __init__(
        self,
        provider: SearchProvider,
        caches: VenueCaches,
        config: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
        *,
        search_timeout: float = DEFAULT_PROVIDER_CONFIG.search_timeout,
        details_timeout: float = DEFAULT_PROVIDER_CONFIG.details_timeout,
    ) -> None:
        self.provider = provider
        self.caches = caches
        self.config = config
        self.search_timeout = search_timeout
        self.details_timeout = details_timeout

    async def source(
        self,
        plan: SearchPlan,
        origin: LatLng,
        radius: int,
        now: datetime | None = None,
        on_log: Callable[[str], None] | None = None,
    ) -> SourcingResult:
        log = on_log or (lambda _msg: None)
        now = now or datetime.now().astimezone()
        result = SourcingResult()

        ids = await self._search(plan, origin, radius, result, log)
        result.unique_count = len(ids)
        log(f"FOUND {len(ids)} UNIQUE SPOTS")

        venues = await self._details(ids, result, log)

        food = [v for v in venues if is_food_venue(v)]
        result.dropped_non_food = len(venues) - len(food)
        open_today = [v for v in food if not is_closed_today(v, now)]
        result.dropped_closed = len(food) - len(open_today)
        if result.dropped_closed:
            log(f"SKIPPED {result.dropped_closed} SPOTS CLOSED TODAY")

        result.venues = open_today
        logger.info(
            "Sourced %d venues (searches: %d cached, %d live, %d skipped; details: %d cached, %d fetched, %d failed)",
            len(open_today), result.cached_searches, result.live_searches, result.skipped_searches,
            result.cached_details, result.fetched_details, len(result.failed_ids),
        )
        return result

    # ── Search ────────────────────────────────────────────────────────

    async def _search(
        self,
        plan: SearchPlan,
        origin: LatLng,
        radius: int,
        result: SourcingResult,
        log: Callable[[str], None],
    ) -> list[str]:
        keys = {q: search_key(origin.lat, origin.lng, q, radius) for q in plan.queries}
        lookup = await self.caches.search.get_many(keys.values())
        result.cached_searches = len(lookup.found)

        uncached = [q for q in plan.queries if keys[q] not in lookup.found]
        live = uncached[: self.config.max_live_searches]
        skipped = uncached[self.config.max_live_searches:]
        result.skipped_searches = len(skipped)
        if skipped:
            logger.info("Skipping %d uncached searches over the live limit: %s", len(skipped), skipped)

        if result.cached_searches:
            log(f"CACHE HIT: {result.cached_searches} SEARCHES")
        if live:
            log(f"SEARCHING: {', '.join(q.upper() for q in live)}")

        outcomes = await gather_settled(
            (self.provider.search(q, origin, radius) for q in live),
            timeout=self.search_timeout,
        )
        fresh: dict[str, list[str]] = {}
        live_ids: dict[str, list[str]] = {}
        for query, outcome in zip(live, outcomes):
            if isinstance(outcome, Failed):
                result.failed_searches += 1
                logger.warning("Search %r failed: %s", query, outcome.reason)
                continue
            result.live_searches += 1
            live_ids[query] = outcome.value
            if outcome.value:
                fresh[keys[query]] = outcome.value
        self.caches.search.put_many(fresh)

        ids: list[str] = []
        for query in plan.queries:
            found = lookup.found.get(keys[query])
            ids.extend(found if found is not None else live_ids.get(query, []))
        return list(dict.fromkeys(ids))

    # ── Details ───────────────────────────────────────────────────────

    async def _details(
        self,
        ids: list[str],
        result: SourcingResult,
        log: Callable[[str], None],
    ) -> list[Venue]:
        if not ids:
            return []
        lookup = await self.caches.details.get_many(ids)
        result.cached_details = len(lookup.found)
        if lookup.missing:
            log(f"FETCHING DETAILS FOR {len(lookup.missing)} SPOTS")

        outcomes = await gather_settled(
            (self.provider.details(venue_id) for venue_id in lookup.missing),
            timeout=self.details_timeout,
            limit=self.config.details_concurrency,
        )
        fetched: dict[str, Venue] = {}
        for venue_id, outcome in zip(lookup.missing, outcomes):
            if isinstance(outcome, Failed):
                result.failed_ids.append(venue_id)
                logger.warning("Details for %s failed: %s", venue_id, outcome.reason)
                continue
            fetched[venue_id] = outcome.value
        result.fetched_details = len(fetched)
        self.caches.details.put_many(fetched)

        venues = {**lookup.found, **fetched}
        return [venues[i] for i in ids if i in venues]
