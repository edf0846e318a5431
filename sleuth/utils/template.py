from __future__ import annotations

import re
from typing import Any


_VAR_RE = re.compile(r"\{\{\s*(?P<key>[a-zA-Z0-9_]+)\s*\}\}")


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return "\n".join(str(v) for v in value)
    return str(value)


def render_template(template: str, variables: dict[str, Any]) -> str:
    """Substitute {{var}} placeholders; unknown keys render as empty strings.

    Only identifier-like names are substituted, so verifier markers such as
    "{{FLG:...}}" inside prompt examples pass through untouched.
    """

    def _replace(match: re.Match[str]) -> str:
        return _to_text(variables.get(match.group("key")))

    return _VAR_RE.sub(_replace, template)
