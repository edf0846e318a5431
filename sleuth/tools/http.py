from __future__ import annotations

import http.client
import json
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from sleuth.loop.errors import ToolTransientError


_USER_AGENT = "sleuth-agent/0.1"


class HTTPToolError(ToolTransientError):
    pass


def _request(
    url: str,
    *,
    timeout_s: float,
    data: bytes | None = None,
    headers: dict[str, str] | None = None,
    error_body: bool = False,
) -> bytes:
    """Perform one request; every failure surfaces as `HTTPToolError`.

    With `error_body`, a non-2xx reply that has a body is returned as if it
    succeeded: verifier endpoints put rejections in the body of 4xx replies.
    """
    try:
        req = urllib.request.Request(
            url,
            data=data,
            method="POST" if data is not None else "GET",
            headers={"User-Agent": _USER_AGENT, **(headers or {})},
        )
        with urllib.request.urlopen(req, timeout=float(timeout_s)) as resp:
            return resp.read()
    except urllib.error.HTTPError as e:
        body = b""
        if error_body:
            try:
                body = e.read()
            except (OSError, http.client.HTTPException):
                body = b""
        if body:
            return body
        raise HTTPToolError(f"HTTP {e.code} for {url}") from e
    except TimeoutError as e:
        raise HTTPToolError(f"Timeout for {url}") from e
    except (urllib.error.URLError, http.client.HTTPException, OSError) as e:
        raise HTTPToolError(f"Network error for {url}: {e}") from e
    except ValueError as e:
        # Malformed URLs: unknown scheme, relative path, control characters.
        raise HTTPToolError(f"Invalid URL {url!r}: {e}") from e


def get_bytes(url: str, *, timeout_s: float) -> bytes:
    return _request(url, timeout_s=timeout_s)


def get_text(url: str, *, timeout_s: float) -> str:
    return get_bytes(url, timeout_s=timeout_s).decode("utf-8", errors="replace")


def post_json(url: str, payload: dict[str, Any], *, timeout_s: float) -> str:
    body = _request(
        url,
        timeout_s=timeout_s,
        data=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
        headers={"Content-Type": "application/json", "Accept": "application/json"},
        error_body=True,
    )
    return body.decode("utf-8", errors="replace")


def download_file(url: str, dest: str | Path, *, timeout_s: float) -> Path:
    data = get_bytes(url, timeout_s=timeout_s)
    p = Path(dest)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(data)
    return p
