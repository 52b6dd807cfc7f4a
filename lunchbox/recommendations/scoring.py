from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

import pandas as pd
from geopy.distance import geodesic

from ..pipeline.config import DEFAULT_PIPELINE_CONFIG
from ..providers.routing import format_duration
from .models import Candidate, Duration, LatLng, PricePoint, Venue

logger = logging.getLogger(__name__)

# Straight-line estimates walk a little slower than routed ones to cover detours.
ESTIMATED_WALKING_SPEED_MPS = 1.1

PROXIMITY_WEIGHT = 15.0
NEUTRAL_PRICE_SCORE = 7.0
HIDDEN_GEM_BONUS = 5.0
FRESH_BONUS = 8.0


class ProximityTier(str, Enum):
    strict = "strict"
    relaxed = "relaxed"
    emergency = "emergency"
    empty = "empty"


@dataclass
class ProximityResult:
    tier: ProximityTier
    candidates: list[Candidate] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _price_score(price: PricePoint | None, level: int | None) -> float:
    if price is None or level is None:
        return NEUTRAL_PRICE_SCORE
    if price == PricePoint.paying_myself:
        if level <= 2:
            return 10.0
        return 2.0 if level == 3 else -5.0
    if level >= 3:
        return 10.0
    return 5.0 if level == 2 else -3.0


def score_candidate(
    venue: Venue,
    price: PricePoint | None,
    duration_seconds: int | None,
    max_duration: int,
) -> float:
    """Deterministic heuristic score; higher is better."""
    score = 0.0

    if duration_seconds is not None and max_duration > 0:
        score += max(0.0, PROXIMITY_WEIGHT * (1 - duration_seconds / max_duration))

    score += _price_score(price, venue.price_level)

    rating = venue.rating or 0.0
    count = venue.rating_count
    if rating > 4.3 and 50 <= count < 750:
        score += HIDDEN_GEM_BONUS
    if rating >= 4.0 and 0 < count < 50:
        score += FRESH_BONUS

    return score + rating


def rank_candidates(
    candidates: list[Candidate],
    price: PricePoint | None,
    max_duration: int,
    top_n: int = DEFAULT_PIPELINE_CONFIG.top_n,
) -> list[Candidate]:
    """Score every candidate and keep the best *top_n*.

    Order: score desc, rating desc, venue id asc.
    """
    if not candidates:
        return []

    df = pd.DataFrame({
        "pos": range(len(candidates)),
        "id": [c.venue.id for c in candidates],
        "rating": [c.venue.rating or 0.0 for c in candidates],
        "score": [
            score_candidate(c.venue, price, c.duration_seconds, max_duration)
            for c in candidates
        ],
    })
    df = df.sort_values(["score", "rating", "id"], ascending=[False, False, True]).head(top_n)

    return [
        candidates[int(row.pos)].model_copy(update={"score": float(row.score)})
        for row in df.itertuples(index=False)
    ]


# ---------------------------------------------------------------------------
# Proximity filter
# ---------------------------------------------------------------------------


def estimate_walking_seconds(origin: LatLng, destination: LatLng) -> int:
    meters = geodesic((origin.lat, origin.lng), (destination.lat, destination.lng)).meters
    return int(round(meters / ESTIMATED_WALKING_SPEED_MPS))


def _emergency(
    candidates: list[Candidate],
    origin: LatLng | None,
    count: int,
) -> list[Candidate]:
    known = sorted(
        (c for c in candidates if c.duration is not None),
        key=lambda c: (c.duration_seconds, c.venue.id),
    )
    picked = known[:count]
    if len(picked) >= count or origin is None:
        return picked

    estimated: list[Candidate] = []
    for c in candidates:
        if c.duration is not None or c.venue.location is None:
            continue
        seconds = estimate_walking_seconds(origin, c.venue.location)
        estimated.append(c.model_copy(update={
            "duration": Duration(text=f"~{format_duration(seconds)}", seconds=seconds),
            "estimated": True,
        }))
    estimated.sort(key=lambda c: (c.duration_seconds, c.venue.id))
    return picked + estimated[: count - len(picked)]


def apply_proximity_filter(
    candidates: list[Candidate],
    max_duration: int,
    on_log: Callable[[str], None] | None = None,
    origin: LatLng | None = None,
    relaxed_factor: float = DEFAULT_PIPELINE_CONFIG.relaxed_factor,
    emergency_count: int = DEFAULT_PIPELINE_CONFIG.emergency_count,
) -> ProximityResult:
    """Escalate strict -> relaxed -> emergency until something survives.

    Candidates without a known duration never pass the strict or relaxed
    tiers; the emergency tier may estimate them from straight-line distance.
    """
    log = on_log or (lambda _msg: None)

    strict = [c for c in candidates if c.duration is not None and c.duration_seconds <= max_duration]
    if strict:
        return ProximityResult(ProximityTier.strict, strict)

    relaxed_limit = max_duration * relaxed_factor
    log(f"EXPANDING HORIZON: NOTHING WITHIN {round(max_duration / 60)} MIN, TRYING {round(relaxed_limit / 60)} MIN")
    relaxed = [c for c in candidates if c.duration is not None and c.duration_seconds <= relaxed_limit]
    if relaxed:
        return ProximityResult(ProximityTier.relaxed, relaxed)

    emergency = _emergency(candidates, origin, emergency_count)
    if emergency:
        log(f"EMERGENCY MODE: SHOWING THE {len(emergency)} CLOSEST SPOTS")
        logger.info("Proximity filter fell through to emergency tier (%d candidates)", len(emergency))
        return ProximityResult(ProximityTier.emergency, emergency)

    return ProximityResult(ProximityTier.empty, [])
