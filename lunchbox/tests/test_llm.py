import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from lunchbox.errors import ProviderError
from lunchbox.llm.config import LLMConfig
from lunchbox.llm.groq_client import complete
from lunchbox.llm.parsing import (
    clean_json,
    extract_json,
    parse_json_response,
    recover_array_prefix,
    strip_code_fences,
)

from lunchbox.tests.fakes import groq_response, stub_groq

ENABLED_CONFIG = LLMConfig(api_key="test-key", enabled=True)
DISABLED_CONFIG = LLMConfig(api_key="test-key", enabled=False)


# ── complete ─────────────────────────────────────────────────────────────


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_complete_returns_content(mock_groq_cls):
    create = AsyncMock(return_value=groq_response('{"ok": true}'))
    stub_groq(mock_groq_cls, create)

    result = asyncio.run(complete("system", "user", ENABLED_CONFIG, json_object=True))

    assert result == '{"ok": true}'
    kwargs = create.call_args.kwargs
    assert kwargs["model"] == ENABLED_CONFIG.model
    assert kwargs["response_format"] == {"type": "json_object"}


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_complete_uses_requested_model(mock_groq_cls):
    create = AsyncMock(return_value=groq_response("hi"))
    stub_groq(mock_groq_cls, create)

    asyncio.run(complete("system", "user", ENABLED_CONFIG, model="tiny"))

    assert create.call_args.kwargs["model"] == "tiny"
    assert "response_format" not in create.call_args.kwargs


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_complete_closes_the_client(mock_groq_cls):
    stub_groq(mock_groq_cls, AsyncMock(return_value=groq_response("hi")))

    asyncio.run(complete("system", "user", ENABLED_CONFIG))

    mock_groq_cls.return_value.__aexit__.assert_awaited_once()


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_complete_wraps_api_errors(mock_groq_cls):
    stub_groq(mock_groq_cls, AsyncMock(side_effect=Exception("API timeout")))

    with pytest.raises(ProviderError):
        asyncio.run(complete("system", "user", ENABLED_CONFIG))


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_complete_rejects_empty_output(mock_groq_cls):
    stub_groq(mock_groq_cls, AsyncMock(return_value=groq_response("   ")))

    with pytest.raises(ProviderError):
        asyncio.run(complete("system", "user", ENABLED_CONFIG))


@patch("lunchbox.llm.groq_client.AsyncGroq")
def test_complete_disabled_never_calls_groq(mock_groq_cls):
    with pytest.raises(ProviderError):
        asyncio.run(complete("system", "user", DISABLED_CONFIG))

    mock_groq_cls.assert_not_called()


def test_config_without_key_is_not_usable():
    assert not LLMConfig(api_key="").usable
    assert ENABLED_CONFIG.usable


# ── parsing ──────────────────────────────────────────────────────────────


class TestParsing:
    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n[{"a": 1}]\n```') == '[{"a": 1}]'

    def test_extract_json_drops_commentary(self):
        assert extract_json('Here you go: {"a": [1, 2]} hope it helps') == '{"a": [1, 2]}'

    def test_clean_json_removes_trailing_commas(self):
        assert clean_json('[{"a": 1,},]') == '[{"a": 1}]'

    def test_parse_handles_fenced_array_with_junk_prefix(self):
        text = 'null\n```json\n[{"venue_id": "x"},]\n```'
        assert parse_json_response(text) == [{"venue_id": "x"}]

    def test_parse_tolerates_raw_newlines_in_strings(self):
        assert parse_json_response('{"reason": "one\ntwo"}') == {"reason": "one\ntwo"}

    def test_parse_raises_value_error(self):
        with pytest.raises(ValueError):
            parse_json_response("not valid json{{{")

    def test_recover_array_prefix_keeps_complete_objects(self):
        truncated = '[{"venue_id": "a"}, {"venue_id": "b"}, {"venue_id": "c", "reas'
        assert recover_array_prefix(truncated) == [{"venue_id": "a"}, {"venue_id": "b"}]

    def test_recover_array_prefix_without_array(self):
        assert recover_array_prefix("no json here") == []
