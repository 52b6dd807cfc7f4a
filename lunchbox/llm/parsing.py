"""Tolerant JSON parsing for model output (code fences, commentary, trailing commas)."""
from __future__ import annotations

import json
import re
from typing import Any

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_TRAILING_COMMA_RE = re.compile(r",(\s*[\]}])")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_JUNK_PREFIX_RE = re.compile(r"^(null|none|undefined)\s*(?=[{\[])", re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    text = text.strip()
    text = _FENCE_OPEN_RE.sub("", text)
    return _FENCE_CLOSE_RE.sub("", text).strip()


def extract_json(text: str) -> str:
    """Cut away commentary before the first bracket and after the last matching one."""
    starts = [i for i in (text.find("["), text.find("{")) if i != -1]
    if not starts:
        return text
    start = min(starts)
    closer = "]" if text[start] == "[" else "}"
    end = text.rfind(closer)
    return text[start:end + 1] if end > start else text[start:]


def clean_json(text: str) -> str:
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    text = _CONTROL_CHARS_RE.sub(" ", text)
    return _JUNK_PREFIX_RE.sub("", text)


def parse_json_response(text: str) -> Any:
    """Parse model output as JSON. Raises ValueError when nothing usable is found."""
    cleaned = clean_json(extract_json(strip_code_fences(text)))
    try:
        return json.loads(cleaned, strict=False)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Unparseable JSON from model: {exc}") from exc


def recover_array_prefix(text: str) -> list[Any]:
    """Return the complete elements at the start of a possibly truncated JSON array."""
    cleaned = clean_json(strip_code_fences(text))
    start = cleaned.find("[")
    if start == -1:
        return []
    decoder = json.JSONDecoder(strict=False)
    items: list[Any] = []
    pos = start + 1
    while True:
        while pos < len(cleaned) and cleaned[pos] in " \t\r\n,":
            pos += 1
        if pos >= len(cleaned) or cleaned[pos] == "]":
            break
        try:
            item, pos = decoder.raw_decode(cleaned, pos)
        except json.JSONDecodeError:
            break
        items.append(item)
    return items
