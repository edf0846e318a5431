from __future__ import annotations

from sleuth.utils.template import render_template


def test_render_substitutes_and_blanks_unknown_keys() -> None:
    out = render_template("Goal: {{ goal }}\n{{snapshot}}|{{missing}}|", {"goal": "find", "snapshot": "s"})
    assert out == "Goal: find\ns||"


def test_render_joins_lists_with_newlines() -> None:
    assert render_template("{{items}}", {"items": ["a", "b"]}) == "a\nb"


def test_render_leaves_sentinel_markers_alone() -> None:
    text = "Success replies look like {{FLG:SOMETHING}}"
    assert render_template(text, {"FLG": "x"}) == text


def test_render_does_not_rescan_substituted_values() -> None:
    assert render_template("{{a}}", {"a": "{{b}}", "b": "nope"}) == "{{b}}"
