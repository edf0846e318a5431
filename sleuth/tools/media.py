from __future__ import annotations

import base64
import mimetypes
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from sleuth.utils.content_cache import ContentCache

from .http import get_bytes


AUDIO = "audio"
IMAGE = "image"

DEFAULT_IMAGE_PROMPT = "Describe this image in detail, focusing on any text, people and places visible."


@dataclass(frozen=True)
class MediaInfo:
    kind: str
    url: str
    description: str


@dataclass(frozen=True)
class EnrichedPage:
    html: str
    media: list[MediaInfo] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def _filename(url: str) -> str:
    name = urlparse(url).path.rsplit("/", 1)[-1]
    return name or "media"


class MediaAnalyzer:
    """Downloads one media file and turns it into text (transcript or description).

    Results are cached by content hash: the same bytes are never sent to the
    model twice, whatever URL they came from.
    """

    def __init__(
        self,
        llm: Any,
        *,
        cache: ContentCache | None = None,
        timeout_s: float = 30.0,
        image_prompt: str = DEFAULT_IMAGE_PROMPT,
    ) -> None:
        self._llm = llm
        self.cache = cache
        self.timeout_s = float(timeout_s)
        self.image_prompt = image_prompt

    def analyze(self, kind: str, url: str) -> str:
        data = get_bytes(url, timeout_s=self.timeout_s)
        if kind == AUDIO:
            compute = lambda: self._transcribe(url, data)  # noqa: E731
            namespace = "transcripts"
        elif kind == IMAGE:
            compute = lambda: self._describe(url, data)  # noqa: E731
            namespace = "descriptions"
        else:
            raise ValueError(f"Unsupported media kind: {kind!r}")
        if self.cache is None:
            return compute()
        return self.cache.get_or_compute(namespace, data, compute)

    def _transcribe(self, url: str, data: bytes) -> str:
        return self._llm.transcribe_audio(filename=_filename(url), data=data)

    def _describe(self, url: str, data: bytes) -> str:
        mime = mimetypes.guess_type(_filename(url))[0] or "image/png"
        data_url = f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
        return self._llm.describe_images(prompt=self.image_prompt, images=[data_url])


def find_media(html: str, *, base_url: str) -> list[tuple[str, str]]:
    """List (kind, absolute_url) for every `<audio><source src>` and `<img src>`, in page order per kind."""
    soup = BeautifulSoup(html, "html.parser")
    return [(kind, url) for kind, _el, url in _media_targets(soup, base_url)]


def _media_targets(soup: BeautifulSoup, base_url: str) -> list[tuple[str, Any, str]]:
    targets: list[tuple[str, Any, str]] = []
    for source in soup.select("audio source[src]"):
        src = str(source.get("src") or "").strip()
        if src:
            anchor = source.find_parent("audio") or source
            targets.append((AUDIO, anchor, urljoin(base_url, src)))
    for img in soup.select("img[src]"):
        src = str(img.get("src") or "").strip()
        if src:
            targets.append((IMAGE, img, urljoin(base_url, src)))
    return targets


def _label(kind: str) -> str:
    return "Audio transcription" if kind == AUDIO else "Image description"


def enrich_page(
    html: str,
    *,
    base_url: str,
    analyzer: MediaAnalyzer,
    max_workers: int = 8,
) -> EnrichedPage:
    """Analyse every audio/image element concurrently and inline the results.

    Each analysed element gets a `<p class="media-description">` sibling right
    after it. Elements whose download or analysis fails are left untouched and
    their URLs reported in `failed`.
    """
    soup = BeautifulSoup(html, "html.parser")
    targets = _media_targets(soup, base_url)
    if not targets:
        return EnrichedPage(html=html)

    results: list[str | None] = [None] * len(targets)
    failed: list[str] = []
    workers = max(1, min(int(max_workers), len(targets)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(analyzer.analyze, kind, url) for kind, _el, url in targets]
        for idx, fut in enumerate(futures):
            try:
                results[idx] = fut.result()
            except Exception:
                failed.append(targets[idx][2])

    media: list[MediaInfo] = []
    for (kind, el, url), text in zip(targets, results):
        if text is None:
            continue
        p = soup.new_tag("p")
        p["class"] = "media-description"
        p.string = f"{_label(kind)}: {text}"
        el.insert_after(p)
        media.append(MediaInfo(kind=kind, url=url, description=text))

    return EnrichedPage(html=str(soup), media=media, failed=failed)
