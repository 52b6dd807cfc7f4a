from __future__ import annotations

import asyncio
import json
import random
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from lunchbox.llm.config import LLMConfig
from lunchbox.recommendations.models import (
    DietaryRestriction,
    HungerVibe,
    PaymentOptions,
    Preferences,
    PricePoint,
    Recommendation,
)
from lunchbox.recommendations.selector import (
    GENERIC_DISH,
    backfill,
    build_payload,
    build_system_prompt,
    dedupe_recommendations,
    finalize,
    parse_recency_months,
    parse_recommendations,
    prefilter_by_hints,
    request_recommendations,
    select,
    venue_signals,
)

from lunchbox.tests.fakes import ORIGIN, groq_response, make_candidate, make_venue, review, stub_groq, weekly_hours

ENABLED_CONFIG = LLMConfig(api_key="test-key", enabled=True)
DISABLED_CONFIG = LLMConfig(api_key="", enabled=True)
MONDAY_NOON = datetime(2026, 10, 12, 12, 0)
PREFS = Preferences(lat=ORIGIN.lat, lng=ORIGIN.lng, address="Rua Augusta", vibe=HungerVibe.grab_and_go)


def _rec(venue_id: str, **kwargs) -> Recommendation:
    return Recommendation(venue_id=venue_id, reason="r", recommended_dish="d", **kwargs)


def _mock_selection(mock_groq_cls, content: str) -> AsyncMock:
    create = AsyncMock(return_value=groq_response(content))
    return stub_groq(mock_groq_cls, create)


# ── Review signals ───────────────────────────────────────────────────────


@pytest.mark.parametrize("age,months", [
    ("2 hours ago", 0),
    ("a day ago", 0),
    ("3 weeks ago", 0.5),
    ("a month ago", 1),
    ("4 months ago", 4),
    ("2 years ago", 24),
    ("sometime", 999),
    (None, 999),
])
def test_parse_recency_months(age, months):
    assert parse_recency_months(age) == months


def test_fresh_drop_needs_few_reviews_and_young_oldest_review():
    young = [review("Great", "2 months ago"), review("Nice", "3 weeks ago")]
    assert venue_signals(make_venue("a", rating_count=40, reviews=young)).is_fresh_drop
    assert not venue_signals(make_venue("b", rating_count=200, reviews=young)).is_fresh_drop
    old = young + [review("Old", "a year ago")]
    assert not venue_signals(make_venue("c", rating_count=40, reviews=old)).is_fresh_drop


def test_trending_share_of_recent_reviews():
    reviews = [review("x", "2 weeks ago")] + [review("y", "8 months ago")] * 4
    assert venue_signals(make_venue("a", rating_count=500, reviews=reviews)).is_trending
    stale = [review("y", "8 months ago")] * 5
    assert not venue_signals(make_venue("b", rating_count=500, reviews=stale)).is_trending


# ── Payload ──────────────────────────────────────────────────────────────


def test_build_payload_shape():
    candidate = make_candidate(
        "a", 290,
        types=["a", "b", "c", "d", "e", "f"],
        reviews=[review("old one", "a year ago"), review("new one", "2 days ago"), review("", "1 day ago")],
        opening_hours=weekly_hours("11:00 AM – 3:00 PM"),
        payment_options=PaymentOptions(cash_only=True),
    )

    payload = build_payload([candidate], MONDAY_NOON)

    entry = payload[0]
    assert entry["id"] == "a"
    assert entry["types"] == ["a", "b", "c", "d", "e"]
    assert [r["text"] for r in entry["reviews"]] == ["new one", "old one"]
    assert entry["reviews"][0]["recent"] is True
    assert entry["reviews"][1]["recent"] is False
    assert entry["walking_minutes"] == 5
    assert entry["open_status"] == "open"
    assert entry["cash_only"] is True


def test_build_payload_caps_candidates_and_reviews():
    reviews = [review(f"r{i}", f"{i + 1} months ago") for i in range(40)]
    candidates = [make_candidate(f"v{i}", 300, reviews=reviews) for i in range(30)]

    payload = build_payload(candidates, MONDAY_NOON)

    assert len(payload) == 25
    assert len(payload[0]["reviews"]) == 30


def test_prefilter_falls_back_when_nothing_qualifies():
    candidates = [make_candidate("a", 300, rating_count=500)]
    pool, found = prefilter_by_hints(candidates, newly_opened_only=True, popular_only=False)
    assert pool == candidates
    assert not found


def test_prefilter_keeps_fresh_drops():
    fresh = make_candidate("fresh", 300, rating_count=10, reviews=[review("Opened!", "2 weeks ago")])
    old = make_candidate("old", 300, rating_count=900)
    pool, found = prefilter_by_hints([old, fresh], newly_opened_only=True, popular_only=False)
    assert [c.venue.id for c in pool] == ["fresh"]
    assert found


def test_system_prompt_carries_context():
    prefs = Preferences(
        lat=1, lng=2, address="Chiado", price=PricePoint.company_card, no_cash=True,
        dietary_restrictions=[DietaryRestriction.vegan], freestyle_prompt="ramen",
    )
    prompt = build_system_prompt(prefs, MONDAY_NOON, popular_only=True)
    assert "Chiado" in prompt
    assert "lunch" in prompt
    assert "Monday" in prompt
    assert "quality over cost" in prompt
    assert "Vegan" in prompt
    assert "Card payment" in prompt
    assert "Trending" in prompt


# ── Parsing ──────────────────────────────────────────────────────────────


class TestParseRecommendations:
    def test_array(self):
        text = json.dumps([{"venue_id": "a", "reason": "x", "recommended_dish": "bifana"}])
        recs = parse_recommendations(text, {"a"})
        assert recs[0].venue_id == "a"
        assert recs[0].recommended_dish == "bifana"
        assert recs[0].source == "ai"

    def test_wrapped_object_and_legacy_keys(self):
        text = json.dumps({"recommendations": [
            {"place_id": "a", "ai_reason": "because", "recommended_dish": "x", "is_new_opening": True},
        ]})
        recs = parse_recommendations(text, {"a"})
        assert recs[0].reason == "because"
        assert recs[0].is_fresh_drop

    def test_unknown_ids_dropped(self):
        text = json.dumps([{"venue_id": "ghost", "reason": "x"}, {"venue_id": "a", "reason": "y"}])
        assert [r.venue_id for r in parse_recommendations(text, {"a"})] == ["a"]

    def test_scenario_malformed_json_yields_nothing(self):
        assert parse_recommendations('[{"a":1},]', {"a"}) == []

    def test_recovers_truncated_prefix(self):
        text = '```json\n[{"venue_id": "a", "reason": "x"}, {"venue_id": "b", "rea'
        assert [r.venue_id for r in parse_recommendations(text, {"a", "b"})] == ["a"]

    def test_raw_newline_inside_reason(self):
        text = '[{"venue_id": "a", "reason": "Crispy skin.\nGo early."}]'
        recs = parse_recommendations(text, {"a"})
        assert recs[0].reason == "Crispy skin.\nGo early."

    def test_truncated_prefix_with_raw_newline(self):
        text = '[{"venue_id": "a", "reason": "x\ny"}, {"venue_id": "b", "rea'
        assert [r.venue_id for r in parse_recommendations(text, {"a", "b"})] == ["a"]

    def test_numeric_ids_match_known_ids(self):
        text = json.dumps([{"venue_id": 42, "reason": "x"}])
        assert [r.venue_id for r in parse_recommendations(text, {"42"})] == ["42"]

    def test_garbage(self):
        assert parse_recommendations("I cannot help with that.") == []


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_request_recommendations_failure_returns_empty(mock_groq_cls):
    stub_groq(mock_groq_cls, AsyncMock(side_effect=Exception("down")))
    recs = asyncio.run(request_recommendations([make_candidate("a", 300)], PREFS, MONDAY_NOON, ENABLED_CONFIG))
    assert recs == []


# ── Backfill / dedupe / finalize ─────────────────────────────────────────


def test_backfill_sizes_to_target():
    candidates = [make_candidate(f"v{i}", 300, rating=3.0 + i * 0.1) for i in range(6)]
    for existing in (0, 1, 2, 3):
        recs = [_rec(f"v{i}") for i in range(existing)]
        filled = backfill(recs, candidates, target=3)
        assert len(filled) == 3
        assert len({r.venue_id for r in filled}) == 3


def test_backfill_prefers_highest_rated_and_skips_cash_only():
    candidates = [
        make_candidate("best", 300, rating=4.9, payment_options=PaymentOptions(cash_only=True)),
        make_candidate("good", 300, rating=4.5, editorial_summary="Cosy tasca."),
        make_candidate("ok", 300, rating=4.0, reviews=[review("You must try the bacalhau à brás here.")]),
        make_candidate("meh", 300, rating=3.0),
    ]

    filled = backfill([], candidates, target=2, no_cash=True)

    assert [r.venue_id for r in filled] == ["good", "ok"]
    assert filled[0].reason == "Cosy tasca."
    assert filled[0].recommended_dish == GENERIC_DISH
    assert filled[1].recommended_dish == "bacalhau à brás"
    assert all(r.is_backfill for r in filled)


def test_backfill_with_too_few_candidates():
    assert len(backfill([], [make_candidate("a", 300)], target=3)) == 1


def test_dedupe_keeps_first_occurrence():
    recs = [_rec("a", caveat="first"), _rec("b"), _rec("a", caveat="second")]
    unique = dedupe_recommendations(recs)
    assert [r.venue_id for r in unique] == ["a", "b"]
    assert unique[0].caveat == "first"


def test_finalize_shuffles_and_caps():
    recs = [_rec(c) for c in "abcde"]
    final = finalize(recs, random.Random(1))
    assert len(final) == 3
    assert len({r.venue_id for r in final}) == 3


# ── select ───────────────────────────────────────────────────────────────


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_scenario_malformed_ai_output_is_backfilled(mock_groq_cls):
    _mock_selection(mock_groq_cls, '[{"a":1},]')
    candidates = [make_candidate(f"v{i}", 300, rating=4.0 + i * 0.1) for i in range(5)]

    result = asyncio.run(select(candidates, PREFS, MONDAY_NOON, ENABLED_CONFIG, rng=random.Random(0)))

    assert len(result.recommendations) == 3
    assert result.ai_count == 0
    assert result.backfill_count == 3


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_select_mixes_ai_and_backfill_without_duplicates(mock_groq_cls):
    _mock_selection(mock_groq_cls, json.dumps([
        {"venue_id": "v1", "reason": "x", "recommended_dish": "a"},
        {"venue_id": "v1", "reason": "dup", "recommended_dish": "b"},
    ]))
    candidates = [make_candidate(f"v{i}", 300, rating=4.0 + i * 0.1) for i in range(5)]

    result = asyncio.run(select(candidates, PREFS, MONDAY_NOON, ENABLED_CONFIG, rng=random.Random(0)))

    ids = [r.venue_id for r in result.recommendations]
    assert len(ids) == 3 == len(set(ids))
    assert "v1" in ids
    assert result.ai_count == 1
    assert result.backfill_count == 2


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_select_drops_cash_only_ai_picks_when_cashless(mock_groq_cls):
    _mock_selection(mock_groq_cls, json.dumps([{"venue_id": "cash", "reason": "x", "recommended_dish": "a"}]))
    candidates = [
        make_candidate("cash", 300, payment_options=PaymentOptions(cash_only=True)),
        make_candidate("card", 300),
    ]
    prefs = PREFS.model_copy(update={"no_cash": True})

    result = asyncio.run(select(candidates, prefs, MONDAY_NOON, ENABLED_CONFIG))

    assert [r.venue_id for r in result.recommendations] == ["card"]


def test_select_with_disabled_llm_backfills():
    candidates = [make_candidate(f"v{i}", 300) for i in range(4)]
    result = asyncio.run(select(candidates, PREFS, MONDAY_NOON, DISABLED_CONFIG))
    assert result.backfill_count == 3
