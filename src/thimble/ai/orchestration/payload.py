"""Structured argument payload helpers.

Models emit the arguments of an action as a JSON object, sometimes wrapped in
Markdown code fences or followed by stray prose. These helpers extract the
object without raising, so that the chunk parser can treat an unparseable
payload as "not yet complete" while text is still streaming.
"""

from __future__ import annotations

import json
import re
from typing import Any

__all__ = [
    "CODE_FENCE_RE",
    "strip_code_fence",
    "try_parse_payload",
    "describe_payload_error",
]

CODE_FENCE_RE = re.compile(
    r"^```[ \t]*(?:json|JSON)?[ \t]*\r?\n?(?P<body>.*?)(?:\r?\n?```\s*)?$",
    re.DOTALL,
)

_DECODER = json.JSONDecoder()


def strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    match = CODE_FENCE_RE.match(stripped)
    if not match:
        return stripped
    return (match.group("body") or "").strip()


def try_parse_payload(text: str) -> dict[str, Any] | None:
    """Parse the leading JSON object in *text*, returning None on failure.

    Trailing text after a complete object is ignored. Scalars and arrays are
    not valid payloads.
    """
    if not text or not isinstance(text, str):
        return None
    body = strip_code_fence(text)
    if not body.startswith("{"):
        return None
    try:
        result, _end = _DECODER.raw_decode(body)
    except json.JSONDecodeError:
        return None
    if isinstance(result, dict):
        return result
    return None


def describe_payload_error(text: str) -> str:
    """Return a short diagnostic explaining why *text* is not a valid payload."""
    body = strip_code_fence(text or "")
    if not body:
        return "action payload is empty"
    if not body.startswith("{"):
        return f"action payload must be a JSON object, got: {body[:60]!r}"
    try:
        result, _end = _DECODER.raw_decode(body)
    except json.JSONDecodeError as exc:
        return f"action payload is not valid JSON ({exc.msg} at position {exc.pos})"
    return f"action payload must be a JSON object, got {type(result).__name__}"
