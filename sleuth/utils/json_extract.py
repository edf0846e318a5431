from __future__ import annotations

import json
import re


class JSONExtractionError(ValueError):
    pass


_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*|\s*```\s*$")


def strip_markdown_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper that models add despite being told not to."""
    return _FENCE_RE.sub("", text or "").strip()


def parse_json_object(text: str) -> dict:
    """Parse an LLM response that must be exactly one JSON object.

    Only surrounding markdown fencing is tolerated; any other prose makes the
    response invalid.
    """
    candidate = strip_markdown_fences(text)
    if not candidate:
        raise JSONExtractionError("Empty response.")
    try:
        obj = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise JSONExtractionError(f"Invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise JSONExtractionError(f"Expected a JSON object, got {type(obj).__name__}")
    return obj
