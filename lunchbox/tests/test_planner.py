import asyncio
import json
from unittest.mock import AsyncMock, patch

from lunchbox.llm.config import LLMConfig
from lunchbox.planner.intent import (
    detect_cuisine,
    fallback_queries,
    plan_queries,
    translate_intent,
    vibe_queries,
)
from lunchbox.recommendations.models import HungerVibe

from lunchbox.tests.fakes import groq_response, stub_groq

ENABLED_CONFIG = LLMConfig(api_key="test-key", enabled=True)
DISABLED_CONFIG = LLMConfig(api_key="", enabled=True)


def _mock_translation(mock_groq_cls, payload) -> AsyncMock:
    content = payload if isinstance(payload, str) else json.dumps(payload)
    create = AsyncMock(return_value=groq_response(content))
    return stub_groq(mock_groq_cls, create)


# ── Cuisine detection ────────────────────────────────────────────────────


class TestDetectCuisine:
    def test_detects_keyword(self):
        cuisine, queries = detect_cuisine("I want a big bowl of ramen")
        assert cuisine == "ramen"
        assert queries == ["ramen", "ramen shop", "japanese ramen", "ramen restaurant"]

    def test_matches_plural(self):
        cuisine, _ = detect_cuisine("craving burgers today")
        assert cuisine == "burger"

    def test_first_table_entry_wins(self):
        cuisine, _ = detect_cuisine("sushi or pizza, whatever")
        assert cuisine == "sushi"

    def test_word_boundary(self):
        # "photo" must not match "pho"
        assert detect_cuisine("somewhere nice for a photo") is None

    def test_case_insensitive(self):
        cuisine, _ = detect_cuisine("THAI please")
        assert cuisine == "thai"


def test_vibe_queries_always_end_with_restaurant():
    assert vibe_queries(HungerVibe.view_and_vibe) == [
        "restaurant with a view", "rooftop restaurant", "beautiful restaurant", "restaurant",
    ]
    assert vibe_queries(None) == ["restaurant"]


def test_fallback_queries():
    assert fallback_queries("cozy date night") == ["cozy date night", "cozy date night restaurant", "restaurant"]


# ── plan_queries ─────────────────────────────────────────────────────────


def test_scenario_vibe_only_plan():
    plan = asyncio.run(plan_queries(HungerVibe.grab_and_go, None, "Rua Augusta", DISABLED_CONFIG))

    assert plan.queries == ["quick bites", "takeout food", "food truck", "bakery", "restaurant"]
    assert plan.source == "vibe"


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_free_text_cuisine_dominates_vibe(mock_groq_cls):
    plan = asyncio.run(plan_queries(HungerVibe.light_and_clean, "best pizza around", "", ENABLED_CONFIG))

    assert plan.cuisine == "pizza"
    assert plan.source == "cuisine"
    assert plan.queries[0] == "pizza"
    mock_groq_cls.assert_not_called()


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_unmatched_free_text_is_translated(mock_groq_cls):
    create = _mock_translation(mock_groq_cls, {
        "search_queries": ["bifana", "Bifana", "petiscos", "tasca", "extra"],
        "newly_opened_only": True,
        "popular_only": None,
        "cuisine_type": "portuguese",
    })

    plan = asyncio.run(plan_queries(HungerVibe.hearty_and_rich, "something local", "Alfama", ENABLED_CONFIG))

    assert plan.source == "translator"
    assert plan.queries == ["bifana", "petiscos", "tasca"]
    assert plan.newly_opened_only is True
    assert plan.popular_only is False
    assert plan.cuisine == "portuguese"
    assert create.call_args.kwargs["model"] == ENABLED_CONFIG.light_model


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_translation_failure_falls_back(mock_groq_cls):
    stub_groq(mock_groq_cls, AsyncMock(side_effect=Exception("boom")))

    plan = asyncio.run(plan_queries(None, "cozy date night", "", ENABLED_CONFIG))

    assert plan.source == "fallback"
    assert plan.queries == ["cozy date night", "cozy date night restaurant", "restaurant"]


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_empty_translation_falls_back(mock_groq_cls):
    _mock_translation(mock_groq_cls, {"search_queries": []})

    plan = asyncio.run(plan_queries(None, "cozy date night", "", ENABLED_CONFIG))

    assert plan.source == "fallback"


def test_disabled_llm_falls_back():
    plan = asyncio.run(plan_queries(None, "cozy date night", "", DISABLED_CONFIG))

    assert plan.queries[0] == "cozy date night"


def test_no_vibe_no_prompt_uses_default_prompt():
    plan = asyncio.run(plan_queries(None, "   ", "", DISABLED_CONFIG))

    assert plan.queries == ["good food nearby", "good food nearby restaurant", "restaurant"]


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_translate_intent_rejects_non_object(mock_groq_cls):
    _mock_translation(mock_groq_cls, '["just", "a", "list"]')

    assert asyncio.run(translate_intent("x", config=ENABLED_CONFIG)) is None
