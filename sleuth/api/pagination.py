from __future__ import annotations

import base64
import json
from dataclasses import dataclass

from .errors import APIError


class CursorError(ValueError):
    pass


@dataclass(frozen=True)
class Cursor:
    created_at: float
    item_id: str


def encode_cursor(cursor: Cursor) -> str:
    raw = json.dumps({"created_at": cursor.created_at, "id": cursor.item_id}, separators=(",", ":"))
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(value: str) -> Cursor:
    s = (value or "").strip()
    if not s:
        raise CursorError("Empty cursor")

    pad = "=" * ((4 - (len(s) % 4)) % 4)
    try:
        obj = json.loads(base64.urlsafe_b64decode((s + pad).encode("ascii")).decode("utf-8"))
        return Cursor(created_at=float(obj["created_at"]), item_id=str(obj["id"]))
    except Exception as e:
        raise CursorError("Invalid cursor") from e


def parse_cursor_param(value: str | None) -> tuple[float, str] | None:
    """Query-string cursor -> store cursor tuple; a malformed cursor is a 400."""
    if not value:
        return None
    try:
        c = decode_cursor(value)
    except CursorError as e:
        raise APIError(status_code=400, code="invalid_argument", message=str(e)) from e
    return (c.created_at, c.item_id)


def next_cursor_param(next_cursor: tuple[float, str] | None) -> str | None:
    if next_cursor is None:
        return None
    return encode_cursor(Cursor(created_at=next_cursor[0], item_id=next_cursor[1]))
