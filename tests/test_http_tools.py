from __future__ import annotations

import http.client
import io
import tempfile
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

import pytest

from sleuth.tools.http import HTTPToolError, download_file, get_text, post_json


class _Resp(io.BytesIO):
    def __enter__(self) -> "_Resp":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


def _http_error(url: str, code: int, body: bytes) -> urllib.error.HTTPError:
    return urllib.error.HTTPError(url, code, "error", hdrs=None, fp=io.BytesIO(body))  # type: ignore[arg-type]


def test_malformed_urls_are_tool_errors() -> None:
    with pytest.raises(HTTPToolError):
        get_text("/about", timeout_s=1.0)
    with pytest.raises(HTTPToolError):
        get_text("https://site.test/about us", timeout_s=1.0)


def test_dropped_connection_is_a_tool_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _urlopen(req: Any, timeout: float) -> Any:
        raise http.client.RemoteDisconnected("Remote end closed connection without response")

    monkeypatch.setattr(urllib.request, "urlopen", _urlopen)
    with pytest.raises(HTTPToolError):
        get_text("https://site.test/", timeout_s=1.0)
    with pytest.raises(HTTPToolError):
        with tempfile.TemporaryDirectory() as td:
            download_file("https://site.test/a.png", Path(td) / "a.png", timeout_s=1.0)


def test_error_bodies_are_returned_for_posts_only(monkeypatch: pytest.MonkeyPatch) -> None:
    def _urlopen(req: Any, timeout: float) -> Any:
        raise _http_error(req.full_url, 400, b'{"code": -1, "message": "Wrong answer"}')

    monkeypatch.setattr(urllib.request, "urlopen", _urlopen)
    assert post_json("https://verifier.test/report", {"answer": "X"}, timeout_s=1.0) == (
        '{"code": -1, "message": "Wrong answer"}'
    )
    with pytest.raises(HTTPToolError, match="HTTP 400"):
        get_text("https://site.test/missing", timeout_s=1.0)


def test_post_json_sends_json_body(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[Any] = []

    def _urlopen(req: Any, timeout: float) -> Any:
        seen.append(req)
        return _Resp(b"ok")

    monkeypatch.setattr(urllib.request, "urlopen", _urlopen)
    assert post_json("https://verifier.test/report", {"answer": "ŁÓDŹ"}, timeout_s=1.0) == "ok"
    assert seen[0].get_method() == "POST"
    assert seen[0].get_header("Content-type") == "application/json"
    assert seen[0].data == '{"answer": "ŁÓDŹ"}'.encode("utf-8")
