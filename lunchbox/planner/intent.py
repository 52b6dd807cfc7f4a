from __future__ import annotations

import json
import logging
import re

from ..errors import ProviderError
from ..llm.config import DEFAULT_LLM_CONFIG, LLMConfig
from ..llm.groq_client import complete
from ..llm.parsing import parse_json_response
from ..recommendations.models import HungerVibe
from .models import SearchPlan, TranslatedIntent

logger = logging.getLogger(__name__)

DEFAULT_PROMPT = "good food nearby"
MAX_TRANSLATED_QUERIES = 3

# ---------------------------------------------------------------------------
# LLM Prompt
# ---------------------------------------------------------------------------

TRANSLATION_PROMPT = """\
You are a local food expert. Turn a diner's free-text request into map search \
queries for restaurants near their address.

Think about the specific neighborhood: what kind of area it is, what people \
who live or work there eat, and which cuisines thrive there. If a vibe is \
given, interpret it for that neighborhood.

Generate 3 search queries, each from a different angle (a specific dish, a \
cuisine type, a local food style). Use specific terms, not generic words like \
"restaurant", "food" or "near me".

Return ONLY valid JSON:
{"search_queries": ["query1", "query2", "query3"], \
"newly_opened_only": true/false/null, "popular_only": true/false/null, \
"cuisine_type": "detected cuisine or null"}"""

# ---------------------------------------------------------------------------
# Static tables
# ---------------------------------------------------------------------------

# First entry is the detection keyword; all entries become search queries.
_CUISINE_KEYWORDS: dict[str, list[str]] = {
    "ramen": ["ramen", "ramen shop", "japanese ramen", "ramen restaurant"],
    "sushi": ["sushi", "sushi restaurant", "japanese sushi", "sushi bar"],
    "pizza": ["pizza", "pizzeria", "italian pizza", "pizza restaurant"],
    "burger": ["burger", "burger joint", "hamburger", "burger restaurant"],
    "tacos": ["tacos", "taco shop", "mexican tacos", "taqueria"],
    "pho": ["pho", "pho restaurant", "vietnamese pho", "pho noodles"],
    "curry": ["curry", "curry house", "indian curry", "thai curry"],
    "pasta": ["pasta", "italian pasta", "pasta restaurant", "italian restaurant"],
    "korean": ["korean", "korean restaurant", "korean bbq", "korean food"],
    "thai": ["thai", "thai restaurant", "thai food", "thai cuisine"],
    "indian": ["indian", "indian restaurant", "indian food", "indian cuisine"],
    "chinese": ["chinese", "chinese restaurant", "chinese food", "dim sum"],
    "vietnamese": ["vietnamese", "vietnamese restaurant", "vietnamese food", "banh mi"],
    "mexican": ["mexican", "mexican restaurant", "mexican food", "burrito"],
    "mediterranean": ["mediterranean", "mediterranean restaurant", "greek food", "falafel"],
    "kebab": ["kebab", "doner", "kebab shop", "shawarma"],
    "sashimi": ["sashimi", "sashimi restaurant", "japanese sashimi", "raw fish"],
    "udon": ["udon", "udon noodles", "japanese udon", "udon restaurant"],
    "dumpling": ["dumpling", "dumplings", "dumpling house", "gyoza"],
    "noodles": ["noodles", "noodle shop", "noodle restaurant", "asian noodles"],
    "bbq": ["bbq", "barbecue", "bbq restaurant", "grill"],
    "seafood": ["seafood", "seafood restaurant", "fish restaurant", "oyster bar"],
    "steak": ["steak", "steakhouse", "steak restaurant", "grill house"],
    "brunch": ["brunch", "brunch spot", "brunch restaurant", "breakfast"],
    "vegan": ["vegan", "vegan restaurant", "plant-based", "vegan food"],
    "vegetarian": ["vegetarian", "vegetarian restaurant", "veggie", "vegetarian food"],
}

_CUISINE_PATTERNS: dict[str, re.Pattern[str]] = {
    cuisine: re.compile(rf"\b{re.escape(keywords[0])}(?:s|es)?\b", re.IGNORECASE)
    for cuisine, keywords in _CUISINE_KEYWORDS.items()
}

_VIBE_QUERIES: dict[HungerVibe, list[str]] = {
    HungerVibe.grab_and_go: ["quick bites", "takeout food", "food truck", "bakery"],
    HungerVibe.light_and_clean: ["healthy restaurant", "salad bar", "sushi", "vietnamese restaurant"],
    HungerVibe.hearty_and_rich: ["comfort food", "ramen shop", "burger joint", "italian restaurant"],
    HungerVibe.spicy_and_bold: ["spicy food", "thai restaurant", "indian restaurant", "sichuan cuisine"],
    HungerVibe.view_and_vibe: ["restaurant with a view", "rooftop restaurant", "beautiful restaurant"],
    HungerVibe.authentic_and_classic: ["classic diner", "traditional cuisine", "historic restaurant"],
}


def _dedupe(queries: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for q in queries:
        q = q.strip()
        key = q.lower()
        if q and key not in seen:
            seen.add(key)
            result.append(q)
    return result


# ---------------------------------------------------------------------------
# Rule-based detection
# ---------------------------------------------------------------------------


def detect_cuisine(prompt: str) -> tuple[str, list[str]] | None:
    """Return ``(cuisine, queries)`` for the first cuisine keyword in *prompt*."""
    for cuisine, pattern in _CUISINE_PATTERNS.items():
        if pattern.search(prompt):
            return cuisine, list(_CUISINE_KEYWORDS[cuisine])
    return None


def vibe_queries(vibe: HungerVibe | None) -> list[str]:
    queries = _VIBE_QUERIES.get(vibe, []) if vibe else []
    return _dedupe([*queries, "restaurant"])


def fallback_queries(prompt: str) -> list[str]:
    prompt = prompt.strip()
    return _dedupe([prompt, f"{prompt} restaurant", "restaurant"])


# ---------------------------------------------------------------------------
# LLM translation
# ---------------------------------------------------------------------------


async def translate_intent(
    prompt: str,
    vibe: HungerVibe | None = None,
    address: str = "",
    config: LLMConfig = DEFAULT_LLM_CONFIG,
) -> TranslatedIntent | None:
    """Ask the LLM for search queries. Returns None on any failure."""
    user_content = (
        f"Request: {prompt}\n"
        f"Address: {address or 'unknown'}\n"
        f"Vibe: {vibe.value if vibe else 'none'}"
    )
    try:
        content = await complete(
            TRANSLATION_PROMPT,
            user_content,
            config,
            model=config.light_model,
            temperature=0.3,
            max_tokens=256,
            json_object=True,
        )
        parsed = parse_json_response(content)
        if not isinstance(parsed, dict):
            raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
        intent = TranslatedIntent(**parsed)
    except (ProviderError, ValueError):
        logger.warning("Intent translation failed, using fallback queries", exc_info=True)
        return None

    logger.info("Translated %r into %s", prompt, json.dumps(intent.search_queries))
    return intent


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


async def plan_queries(
    vibe: HungerVibe | None = None,
    prompt: str | None = None,
    address: str = "",
    config: LLMConfig = DEFAULT_LLM_CONFIG,
) -> SearchPlan:
    prompt = (prompt or "").strip()
    if not prompt and vibe is None:
        prompt = DEFAULT_PROMPT

    if not prompt:
        return SearchPlan(queries=vibe_queries(vibe), source="vibe")

    # Free text always wins over the vibe.
    detected = detect_cuisine(prompt)
    if detected:
        cuisine, queries = detected
        return SearchPlan(queries=_dedupe(queries), cuisine=cuisine, source="cuisine")

    intent = await translate_intent(prompt, vibe, address, config)
    queries = _dedupe(intent.search_queries)[:MAX_TRANSLATED_QUERIES] if intent else []
    if not queries:
        return SearchPlan(queries=fallback_queries(prompt), source="fallback")

    return SearchPlan(
        queries=queries,
        cuisine=intent.cuisine_type or None,
        newly_opened_only=bool(intent.newly_opened_only),
        popular_only=bool(intent.popular_only),
        source="translator",
    )
