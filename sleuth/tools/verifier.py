from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

from sleuth.loop.errors import ToolTransientError
from sleuth.utils.template import render_template

from .http import get_text, post_json


class VerifierConfigError(RuntimeError):
    pass


@dataclass(frozen=True)
class VerifierResponse:
    code: int
    message: str
    hints: list[str] = field(default_factory=list)
    raw: str = ""


def parse_reply(raw: str) -> VerifierResponse:
    """Parse a `{code, message, hints?}` reply; non-JSON bodies become the message."""
    try:
        obj = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return VerifierResponse(code=0, message=str(raw or ""), raw=str(raw or ""))
    if not isinstance(obj, dict):
        return VerifierResponse(code=0, message=str(raw), raw=str(raw))

    try:
        code = int(obj.get("code") or 0)
    except (TypeError, ValueError):
        code = 0
    msg_any = obj.get("message")
    if msg_any is None:
        msg_any = obj.get("reply", "")
    message = msg_any if isinstance(msg_any, str) else json.dumps(msg_any, ensure_ascii=False)
    hints_any = obj.get("hints")
    if isinstance(hints_any, str):
        hints = [hints_any]
    elif isinstance(hints_any, list):
        hints = [str(h) for h in hints_any if str(h).strip()]
    else:
        hints = []
    return VerifierResponse(code=code, message=message, hints=hints, raw=raw)


class VerifierClient:
    """Client for the task host: answer reports, relation lookups and data files.

    All calls carry the API key. Reports always return the parsed reply (the
    caller decides whether it is a rejection); lookups treat a non-zero reply
    code as a transient tool failure.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout_s: float = 30.0,
        report_path: str = "/report",
    ) -> None:
        self.base_url = (base_url or os.getenv("SLEUTH_VERIFIER_BASE_URL") or "").rstrip("/")
        self.api_key = api_key or os.getenv("SLEUTH_VERIFIER_API_KEY") or ""
        self.timeout_s = float(timeout_s)
        self.report_path = report_path
        if not self.base_url:
            raise VerifierConfigError("Missing SLEUTH_VERIFIER_BASE_URL (or provide base_url explicitly).")
        if not self.api_key:
            raise VerifierConfigError("Missing SLEUTH_VERIFIER_API_KEY (or provide api_key explicitly).")

    def url(self, path: str) -> str:
        path = render_template(path, {"api_key": self.api_key})
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def report(self, task: str, answer: Any) -> VerifierResponse:
        raw = post_json(
            self.url(self.report_path),
            {"task": task, "apikey": self.api_key, "answer": answer},
            timeout_s=self.timeout_s,
        )
        return parse_reply(raw)

    def query(self, endpoint: str, query: str) -> VerifierResponse:
        raw = post_json(
            self.url(endpoint),
            {"apikey": self.api_key, "query": query},
            timeout_s=self.timeout_s,
        )
        res = parse_reply(raw)
        if res.code != 0:
            raise ToolTransientError(f"{endpoint} returned code {res.code}: {res.message[:200]}")
        return res

    def get_text(self, path: str) -> str:
        return get_text(self.url(path), timeout_s=self.timeout_s)
