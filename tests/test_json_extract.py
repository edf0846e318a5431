from __future__ import annotations

import pytest

from sleuth.utils.json_extract import JSONExtractionError, parse_json_object, strip_markdown_fences


def test_parse_plain_object() -> None:
    assert parse_json_object('{"action": "reason"}') == {"action": "reason"}


def test_parse_strips_markdown_fences() -> None:
    text = '```json\n{"tool": "FETCH", "parameters": {"url": "/"}}\n```'
    assert parse_json_object(text) == {"tool": "FETCH", "parameters": {"url": "/"}}
    assert strip_markdown_fences("```\n{}\n```") == "{}"


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "Sure! Here is the JSON: {\"action\": \"reason\"}",
        "[1, 2, 3]",
        "{not json}",
    ],
)
def test_parse_rejects_non_objects_and_prose(text: str) -> None:
    with pytest.raises(JSONExtractionError):
        parse_json_object(text)
