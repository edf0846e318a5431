from __future__ import annotations

from typing import Any

import pytest

import sleuth.tools.verifier as verifier_mod
from sleuth.loop.errors import ToolTransientError
from sleuth.tools.verifier import VerifierClient, VerifierConfigError, parse_reply


def test_parse_reply_json_and_plain_text() -> None:
    res = parse_reply('{"code": -310, "message": "Wrong", "hints": ["tattoo", ""]}')
    assert (res.code, res.message, res.hints) == (-310, "Wrong", ["tattoo"])

    res = parse_reply('{"code": 0, "reply": "ok"}')
    assert res.message == "ok"

    res = parse_reply("<html>Bad gateway</html>")
    assert res.code == 0
    assert res.message == "<html>Bad gateway</html>"


def test_missing_configuration_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SLEUTH_VERIFIER_BASE_URL", raising=False)
    monkeypatch.delenv("SLEUTH_VERIFIER_API_KEY", raising=False)
    with pytest.raises(VerifierConfigError):
        VerifierClient()
    with pytest.raises(VerifierConfigError):
        VerifierClient(base_url="https://verifier.test")


def test_report_and_query_payloads(monkeypatch: pytest.MonkeyPatch) -> None:
    posted: list[tuple[str, dict[str, Any]]] = []

    def _fake_post(url: str, payload: dict[str, Any], *, timeout_s: float) -> str:
        posted.append((url, payload))
        if url.endswith("/places"):
            return '{"code": -200, "message": "no such place"}'
        return '{"code": 0, "message": "KRAKOW WARSZAWA"}'

    monkeypatch.setattr(verifier_mod, "post_json", _fake_post)
    client = VerifierClient(base_url="https://verifier.test/", api_key="k-1")

    assert client.report("loop", "ELBLAG").message == "KRAKOW WARSZAWA"
    assert client.query("/people", "BARBARA").message == "KRAKOW WARSZAWA"
    with pytest.raises(ToolTransientError):
        client.query("/places", "NOWHERE")

    assert posted[0] == ("https://verifier.test/report", {"task": "loop", "apikey": "k-1", "answer": "ELBLAG"})
    assert posted[1] == ("https://verifier.test/people", {"apikey": "k-1", "query": "BARBARA"})


def test_get_text_renders_api_key_into_path(monkeypatch: pytest.MonkeyPatch) -> None:
    fetched: list[str] = []
    monkeypatch.setattr(verifier_mod, "get_text", lambda url, *, timeout_s: fetched.append(url) or "note")
    client = VerifierClient(base_url="https://verifier.test", api_key="k-1")

    assert client.get_text("/data/{{api_key}}/note.txt") == "note"
    assert client.url("https://elsewhere.test/x") == "https://elsewhere.test/x"
    assert fetched == ["https://verifier.test/data/k-1/note.txt"]
