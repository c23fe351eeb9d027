# src/pipeline/plugin_kit/parsing.py — v1
"""Explicit parse step for upstream JSON payloads.

parse_json_payload() never raises: it returns a tagged ParseSuccess or
ParseFailure so each step decides how to surface the failure.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ParseSuccess:
    data: dict[str, Any]
    ok: bool = True


@dataclass(frozen=True)
class ParseFailure:
    error: str
    raw: str
    ok: bool = False


ParseResult = ParseSuccess | ParseFailure


def strip_code_fences(content: str) -> str:
    """Remove markdown code fences some providers wrap around JSON."""
    text = content.strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines)
    return text.strip()


def parse_json_payload(content: str) -> ParseResult:
    """Parse a completion payload that must be a JSON object."""
    text = strip_code_fences(content or "")
    if not text:
        return ParseFailure(error="empty payload", raw=content or "")
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        return ParseFailure(error=f"invalid JSON: {exc.msg} at pos {exc.pos}", raw=content)
    if not isinstance(parsed, dict):
        return ParseFailure(
            error=f"expected JSON object, got {type(parsed).__name__}", raw=content
        )
    return ParseSuccess(data=parsed)


def salvage_json_object(content: str) -> dict[str, Any] | None:
    """Recover the first balanced, decodable JSON object embedded in content.

    Used by partial extraction when the full payload is malformed
    (leading prose, trailing garbage, truncated tail after a complete object).
    """
    text = content or ""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None
