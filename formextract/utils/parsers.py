"""
Parsing of free-form LLM output into raw field dictionaries.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\s*```$")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_DECODER = json.JSONDecoder()


class ResponseParseError(ValueError):
    """LLM content could not be decoded as a field list."""

    def __init__(self, message: str, truncated: bool = False) -> None:
        super().__init__(message)
        self.truncated = truncated


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` (or bare ```) markdown fence."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN_RE.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE_RE.sub("", cleaned)
    return cleaned


def looks_truncated(text: str) -> bool:
    """True when more brackets/braces are opened than closed."""
    return text.count("{") > text.count("}") or text.count("[") > text.count("]")


def _decode(cleaned: str) -> Any:
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as exc:
        first_error = exc

    # Leading prose: decode from the first bracket, ignoring trailing text
    starts = [pos for pos in (cleaned.find("["), cleaned.find("{")) if pos >= 0]
    if starts:
        try:
            return _DECODER.raw_decode(cleaned, min(starts))[0]
        except json.JSONDecodeError:
            pass

    # Cut-off output can still hold a decodable fragment; never return it.
    if looks_truncated(cleaned):
        raise first_error

    for pattern in (_ARRAY_RE, _OBJECT_RE):
        match = pattern.search(cleaned)
        if match:
            try:
                return json.loads(match.group(0))
            except json.JSONDecodeError:
                continue
    raise first_error


def parse_fields_payload(content: str) -> list[dict[str, Any]]:
    """
    Extract the list of raw field objects from LLM message content.

    Accepts a bare JSON array or an object with a "fields" array, optionally
    wrapped in markdown code fences. An object without "fields" yields an
    empty list.

    Raises:
        ResponseParseError: If no JSON can be decoded. `truncated` is set
            when decoding failed and brackets or braces are left open.
    """
    if not content or not content.strip():
        raise ResponseParseError("Empty response content")

    cleaned = strip_code_fences(content)
    try:
        parsed = _decode(cleaned)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(
            f"Failed to parse form data: {exc.msg}",
            truncated=looks_truncated(cleaned),
        ) from exc

    if isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict) and isinstance(parsed.get("fields"), list):
        items = parsed["fields"]
    else:
        logger.warning("Unexpected response format, no fields array found")
        return []

    fields = [item for item in items if isinstance(item, dict)]
    if len(fields) != len(items):
        logger.warning("Dropped %d non-object entries from fields array", len(items) - len(fields))
    return fields
