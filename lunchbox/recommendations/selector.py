"""
Final venue selection.

The LLM picks from the ranked candidates; whatever it cannot supply is
backfilled from the ranking itself, so a run with viable candidates always
ends with a full result set.
"""
from __future__ import annotations

import json
import logging
import random
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from pydantic import ValidationError

from ..errors import ProviderError
from ..llm.config import DEFAULT_LLM_CONFIG, LLMConfig
from ..llm.groq_client import complete
from ..llm.parsing import parse_json_response, recover_array_prefix
from ..pipeline.config import DEFAULT_PIPELINE_CONFIG, PipelineConfig
from ..sourcing.hours import open_status
from .models import Candidate, Preferences, PricePoint, Recommendation, Venue

logger = logging.getLogger(__name__)

FRESH_DROP_MAX_REVIEWS = 80
FRESH_DROP_MAX_MONTHS = 6
TRENDING_MIN_RECENT_SHARE = 0.10
UNKNOWN_AGE_MONTHS = 999.0
GENERIC_DISH = "Ask for the house specialty"

# ---------------------------------------------------------------------------
# Review recency
# ---------------------------------------------------------------------------

_AGE_RE = re.compile(r"(\d+|a|an|one)\s+(hour|day|week|month|year)s?", re.IGNORECASE)


def parse_recency_months(relative_age: str | None) -> float:
    """Convert "3 weeks ago" style text into months. Unknown ages sort last."""
    if not relative_age:
        return UNKNOWN_AGE_MONTHS
    text = relative_age.lower()
    match = _AGE_RE.search(text)
    if not match:
        return UNKNOWN_AGE_MONTHS
    amount = match.group(1)
    n = 1 if amount in ("a", "an", "one") else int(amount)
    unit = match.group(2).lower()
    if unit in ("hour", "day"):
        return 0.0
    if unit == "week":
        return 0.5
    if unit == "month":
        return float(n)
    return 12.0 * n


def is_recent_review(relative_age: str | None) -> bool:
    text = (relative_age or "").lower()
    return any(word in text for word in ("day", "week", "month"))


@dataclass(frozen=True)
class VenueSignals:
    is_fresh_drop: bool
    is_trending: bool
    oldest_review_months: float
    recent_review_share: float


def venue_signals(venue: Venue) -> VenueSignals:
    reviews = [r for r in venue.reviews if r.text]
    ages = [parse_recency_months(r.relative_age) for r in reviews]
    oldest = max(ages) if ages else UNKNOWN_AGE_MONTHS
    recent = sum(1 for a in ages if a <= 1)
    sample = max(1, min(venue.rating_count or 1, len(reviews)))
    share = recent / sample
    return VenueSignals(
        is_fresh_drop=venue.rating_count < FRESH_DROP_MAX_REVIEWS and oldest < FRESH_DROP_MAX_MONTHS,
        is_trending=share >= TRENDING_MIN_RECENT_SHARE,
        oldest_review_months=oldest,
        recent_review_share=share,
    )


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------


def _candidate_payload(candidate: Candidate, now: datetime, reviews_per_venue: int) -> dict[str, Any]:
    venue = candidate.venue
    reviews = sorted(
        (r for r in venue.reviews if r.text),
        key=lambda r: parse_recency_months(r.relative_age),
    )[:reviews_per_venue]
    signals = venue_signals(venue)
    seconds = candidate.duration_seconds
    return {
        "id": venue.id,
        "name": venue.name,
        "rating": venue.rating,
        "total_reviews": venue.rating_count,
        "price_level": venue.price_level,
        "types": venue.types[:5],
        "summary": venue.editorial_summary or "",
        "reviews": [
            {"text": r.text, "stars": r.stars, "recent": is_recent_review(r.relative_age)}
            for r in reviews
        ],
        "cash_only": venue.is_cash_only,
        "vegetarian": venue.serves_vegetarian_food,
        "walking_minutes": -(-seconds // 60) if seconds is not None else None,
        "open_status": open_status(venue, seconds, now).value,
        "is_fresh_drop": signals.is_fresh_drop,
        "is_trending": signals.is_trending,
    }


def build_payload(
    candidates: list[Candidate],
    now: datetime,
    limit: int = DEFAULT_PIPELINE_CONFIG.ai_candidates,
    reviews_per_venue: int = DEFAULT_PIPELINE_CONFIG.reviews_per_venue,
) -> list[dict[str, Any]]:
    return [_candidate_payload(c, now, reviews_per_venue) for c in candidates[:limit]]


def prefilter_by_hints(
    candidates: list[Candidate],
    newly_opened_only: bool,
    popular_only: bool,
    on_log: Callable[[str], None] | None = None,
) -> tuple[list[Candidate], bool]:
    """Narrow to fresh drops / trending venues when any qualify.

    Returns the candidates and whether the fresh-drop narrowing applied.
    """
    log = on_log or (lambda _msg: None)
    found_fresh = False
    if newly_opened_only:
        fresh = [c for c in candidates if venue_signals(c.venue).is_fresh_drop]
        if fresh:
            candidates, found_fresh = fresh, True
            log(f"FOUND {len(fresh)} FRESH DROPS")
        else:
            log("NO NEW OPENINGS DETECTED, SHOWING BEST MATCHES")
    if popular_only:
        trending = [c for c in candidates if venue_signals(c.venue).is_trending]
        if trending:
            candidates = trending
            log(f"FOUND {len(trending)} TRENDING SPOTS")
        else:
            log("NO TRENDING SPOTS DETECTED, SHOWING BEST MATCHES")
    return candidates, found_fresh


# ---------------------------------------------------------------------------
# LLM Prompt
# ---------------------------------------------------------------------------

SELECTION_PROMPT = """\
You are a local food expert who knows "{address}" intimately. Select exactly \
{count} restaurants.

CONTEXT:
- Address: {address}
- Vibe: {vibe}
- Request: {request}
- Time: {hour}:00 {day} ({meal})
- Budget: {budget}
- Dietary: {dietary}
{modes}
ANALYSIS RULES:
1. Extract SPECIFIC dish names from reviews (local language OK).
2. Use exact names, never generic ("food", "meal", "dish").
3. Prefer venues that are open at arrival ("open_status").
4. Flag "went downhill", "overpriced", "slow service" in caveat.

Return ONLY a JSON array of {count} objects:
[{{"venue_id": "id", "reason": "2 sentences quoting reviews, no ratings or walk times", \
"recommended_dish": "specific dish", "is_cash_only": false, "is_new_opening": false, \
"caveat": "brief warning or null"}}]
Never repeat a venue_id."""


def _meal(hour: int) -> str:
    if 6 <= hour < 11:
        return "breakfast"
    if 11 <= hour < 15:
        return "lunch"
    if 15 <= hour < 17:
        return "snack"
    if 17 <= hour < 22:
        return "dinner"
    return "late night"


def _budget(price: PricePoint | None) -> str:
    if price == PricePoint.paying_myself:
        return "budget-friendly ($ to $$)"
    if price == PricePoint.company_card:
        return "quality over cost ($$$ to $$$$)"
    return "any"


def build_system_prompt(
    preferences: Preferences,
    now: datetime,
    *,
    newly_opened_only: bool = False,
    popular_only: bool = False,
    count: int = DEFAULT_PIPELINE_CONFIG.recommendation_count,
) -> str:
    modes = []
    if newly_opened_only:
        modes.append("- MODE: Fresh drops only, prioritise is_fresh_drop=true")
    if popular_only:
        modes.append("- MODE: Trending spots, prioritise is_trending=true")
    if preferences.no_cash:
        modes.append("- REQUIRE: Card payment (exclude cash_only=true)")
    return SELECTION_PROMPT.format(
        address=preferences.address or "this area",
        vibe=preferences.vibe.value if preferences.vibe else "good food",
        request=preferences.freestyle_prompt or "none",
        hour=now.hour,
        day=now.strftime("%A"),
        meal=_meal(now.hour),
        budget=_budget(preferences.price),
        dietary=", ".join(d.value for d in preferences.dietary_restrictions) or "none",
        modes="\n".join(modes) + ("\n" if modes else ""),
        count=count,
    )


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def parse_recommendations(text: str, known_ids: set[str] | None = None) -> list[Recommendation]:
    """Read model output into recommendations, keeping whatever is usable."""
    try:
        parsed = parse_json_response(text)
    except ValueError:
        parsed = recover_array_prefix(text)
        logger.warning("Recovered %d recommendations from malformed output", len(parsed))

    if isinstance(parsed, dict):
        parsed = parsed.get("recommendations", [])
    if not isinstance(parsed, list):
        return []

    recs: list[Recommendation] = []
    for item in parsed:
        if not isinstance(item, dict):
            continue
        raw_id = item.get("venue_id") or item.get("place_id")
        venue_id = str(raw_id) if raw_id is not None else ""
        if not venue_id or (known_ids is not None and venue_id not in known_ids):
            continue
        try:
            recs.append(Recommendation(
                venue_id=venue_id,
                reason=item.get("reason") or item.get("ai_reason") or "",
                recommended_dish=item.get("recommended_dish") or GENERIC_DISH,
                is_cash_only=bool(item.get("is_cash_only")),
                is_fresh_drop=bool(item.get("is_new_opening") or item.get("is_fresh_drop")),
                caveat=item.get("caveat") or None,
            ))
        except ValidationError:
            logger.warning("Dropping malformed recommendation for %s", venue_id, exc_info=True)
    return recs


async def request_recommendations(
    candidates: list[Candidate],
    preferences: Preferences,
    now: datetime,
    config: LLMConfig = DEFAULT_LLM_CONFIG,
    pipeline: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    *,
    newly_opened_only: bool = False,
    popular_only: bool = False,
) -> list[Recommendation]:
    """Ask the LLM to pick venues. Any failure yields an empty list."""
    payload = build_payload(candidates, now, pipeline.ai_candidates, pipeline.reviews_per_venue)
    if not payload:
        return []

    system_prompt = build_system_prompt(
        preferences, now,
        newly_opened_only=newly_opened_only,
        popular_only=popular_only,
        count=pipeline.recommendation_count,
    )
    user_message = (
        f"Analyze these {len(payload)} restaurants and select exactly "
        f"{pipeline.recommendation_count} best matches:\n\n{json.dumps(payload, indent=2)}"
    )
    try:
        text = await complete(system_prompt, user_message, config, temperature=0.5)
    except ProviderError:
        logger.warning("Recommendation request failed, falling back to backfill", exc_info=True)
        return []

    return parse_recommendations(text, {p["id"] for p in payload})


# ---------------------------------------------------------------------------
# Backfill & finalisation
# ---------------------------------------------------------------------------

_DISH_RE = re.compile(
    r"\b(?:try the|best|loved the)\s+([a-z][\w' -]{2,40}?)(?=[.!?,;]|\s+(?:is|was|are|were|and|here|in)\b|$)",
    re.IGNORECASE,
)


def _dish_from_reviews(venue: Venue) -> str:
    for review in venue.reviews:
        match = _DISH_RE.search(review.text)
        if match:
            return match.group(1).strip()
    return GENERIC_DISH


def _backfill_reason(venue: Venue) -> str:
    if venue.editorial_summary:
        return venue.editorial_summary
    if venue.rating:
        return f"Rated {venue.rating:.1f} by {venue.rating_count} diners nearby."
    return "A nearby spot worth a try."


def backfill(
    recs: list[Recommendation],
    candidates: list[Candidate],
    target: int = DEFAULT_PIPELINE_CONFIG.recommendation_count,
    no_cash: bool = False,
) -> list[Recommendation]:
    """Top up *recs* to *target* from the highest-rated unused candidates."""
    result = list(recs)
    used = {r.venue_id for r in result}
    pool = sorted(candidates, key=lambda c: (-(c.venue.rating or 0.0), c.venue.id))
    for candidate in pool:
        if len(result) >= target:
            break
        venue = candidate.venue
        if venue.id in used or (no_cash and venue.is_cash_only):
            continue
        used.add(venue.id)
        result.append(Recommendation(
            venue_id=venue.id,
            reason=_backfill_reason(venue),
            recommended_dish=_dish_from_reviews(venue),
            is_cash_only=venue.is_cash_only,
            is_fresh_drop=venue_signals(venue).is_fresh_drop,
            source="backfill",
        ))
    return result


def dedupe_recommendations(recs: list[Recommendation]) -> list[Recommendation]:
    seen: set[str] = set()
    unique = []
    for rec in recs:
        if rec.venue_id in seen:
            logger.warning("Duplicate recommendation filtered out: %s", rec.venue_id)
            continue
        seen.add(rec.venue_id)
        unique.append(rec)
    return unique


def finalize(
    recs: list[Recommendation],
    rng: random.Random | None = None,
    count: int = DEFAULT_PIPELINE_CONFIG.recommendation_count,
) -> list[Recommendation]:
    shuffled = list(recs)
    (rng or random.Random()).shuffle(shuffled)
    return shuffled[:count]


@dataclass
class SelectionResult:
    recommendations: list[Recommendation] = field(default_factory=list)
    ai_count: int = 0
    backfill_count: int = 0


async def select(
    candidates: list[Candidate],
    preferences: Preferences,
    now: datetime,
    config: LLMConfig = DEFAULT_LLM_CONFIG,
    pipeline: PipelineConfig = DEFAULT_PIPELINE_CONFIG,
    *,
    newly_opened_only: bool = False,
    popular_only: bool = False,
    rng: random.Random | None = None,
    on_log: Callable[[str], None] | None = None,
) -> SelectionResult:
    log = on_log or (lambda _msg: None)
    newly_opened_only = newly_opened_only or preferences.newly_opened_only
    pool, found_fresh = prefilter_by_hints(candidates, newly_opened_only, popular_only, log)

    log("RANKING TOP CANDIDATES")
    ai_recs = await request_recommendations(
        pool, preferences, now, config, pipeline,
        newly_opened_only=newly_opened_only,
        popular_only=popular_only,
    )
    if preferences.no_cash:
        cash_only = {c.venue.id for c in pool if c.venue.is_cash_only}
        ai_recs = [r for r in ai_recs if r.venue_id not in cash_only and not r.is_cash_only]
    if found_fresh:
        ai_recs = [r.model_copy(update={"is_fresh_drop": True}) for r in ai_recs]

    ai_recs = dedupe_recommendations(ai_recs)[: pipeline.recommendation_count]
    combined = backfill(ai_recs, pool, pipeline.recommendation_count, preferences.no_cash)
    if len(combined) < pipeline.recommendation_count and pool is not candidates:
        # Hint pre-filter left too few; fill from the full ranking.
        combined = backfill(combined, candidates, pipeline.recommendation_count, preferences.no_cash)

    final = finalize(dedupe_recommendations(combined), rng, pipeline.recommendation_count)
    result = SelectionResult(
        recommendations=final,
        ai_count=sum(1 for r in final if not r.is_backfill),
        backfill_count=sum(1 for r in final if r.is_backfill),
    )
    if result.backfill_count:
        log(f"BACKFILLED {result.backfill_count} PICKS FROM THE RANKING")
    logger.info("Selection: %d from AI, %d backfilled", result.ai_count, result.backfill_count)
    return result
