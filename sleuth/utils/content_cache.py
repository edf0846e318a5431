from __future__ import annotations

import hashlib
import threading
from pathlib import Path
from typing import Callable


def content_key(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ContentCache:
    """Write-through text cache for expensive per-resource analyses.

    Entries live at `<root>/<namespace>/<sha256 of content>.txt`. There is no eviction
    and no invalidation: a cached analysis is reused until the file is deleted by hand,
    even if the prompt that produced it has changed since.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root).expanduser().resolve()
        self._lock = threading.Lock()

    def _path(self, namespace: str, key: str) -> Path:
        return self.root / namespace / f"{key}.txt"

    def get(self, namespace: str, data: bytes) -> str | None:
        p = self._path(namespace, content_key(data))
        if not p.exists():
            return None
        return p.read_text(encoding="utf-8")

    def put(self, namespace: str, data: bytes, value: str) -> None:
        p = self._path(namespace, content_key(data))
        with self._lock:
            p.parent.mkdir(parents=True, exist_ok=True)
            tmp = p.with_suffix(".tmp")
            tmp.write_text(value, encoding="utf-8")
            tmp.replace(p)

    def get_or_compute(self, namespace: str, data: bytes, compute: Callable[[], str]) -> str:
        cached = self.get(namespace, data)
        if cached is not None:
            return cached
        value = compute()
        self.put(namespace, data, value)
        return value
