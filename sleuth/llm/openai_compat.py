from __future__ import annotations

import base64
import mimetypes
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

import openai

from sleuth.loop.errors import ToolTransientError


class LLMConfigError(RuntimeError):
    pass


class LLMCallError(ToolTransientError):
    """A model call failed (connection, timeout, error status)."""


# APITimeoutError is a subclass of APIConnectionError.
_TRANSIENT_ERRORS = (openai.APIConnectionError, openai.APIStatusError)


@contextmanager
def transient_llm_errors(what: str) -> Iterator[None]:
    """Re-raise SDK connection and status errors as `LLMCallError`."""
    try:
        yield
    except _TRANSIENT_ERRORS as e:
        raise LLMCallError(f"{what} failed: {e}") from e


@dataclass(frozen=True)
class ChatCompletionResult:
    content: str
    raw: dict[str, Any]


def _image_part(ref: str, *, detail: str) -> dict[str, Any]:
    """Build an `image_url` message part from an http(s) URL or a local file path."""
    if ref.startswith(("http://", "https://", "data:")):
        url = ref
    else:
        p = Path(ref)
        mime = mimetypes.guess_type(p.name)[0] or "image/png"
        url = f"data:{mime};base64,{base64.b64encode(p.read_bytes()).decode('ascii')}"
    return {"type": "image_url", "image_url": {"url": url, "detail": detail}}


class OpenAICompatibleChatClient:
    """Minimal OpenAI-compatible client wrapper.

    Covers the three calls the solver needs: plain chat (the decision oracle),
    multi-image description (vision model) and audio transcription.
    Every call is stateless: one system message plus one user message.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        vision_model: str | None = None,
        transcribe_model: str | None = None,
        timeout_s: float | None = None,
        max_tokens: int | None = 4096,
    ) -> None:
        self.base_url = (
            base_url
            or os.getenv("OPENAI_API_BASE")
            or os.getenv("OPENAI_BASE_URL")
            or "https://api.openai.com/v1"
        )
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        self.model = model or os.getenv("LLM_MODEL") or os.getenv("OPENAI_MODEL") or "gpt-4o"
        self.vision_model = vision_model or os.getenv("SLEUTH_VISION_MODEL") or self.model
        self.transcribe_model = transcribe_model or os.getenv("SLEUTH_TRANSCRIBE_MODEL") or "whisper-1"
        self.timeout_s = timeout_s
        self.max_tokens = max_tokens

        if not self.api_key:
            raise LLMConfigError("Missing OPENAI_API_KEY (or provide api_key explicitly).")

        self._client = openai.OpenAI(base_url=self.base_url, api_key=self.api_key, timeout=self.timeout_s)

    def chat(
        self,
        *,
        system: str,
        user: str,
        temperature: float,
        extra: dict[str, Any] | None = None,
    ) -> ChatCompletionResult:
        return self.chat_messages(
            messages=[{"role": "system", "content": system}, {"role": "user", "content": user}],
            temperature=temperature,
            extra=extra,
        )

    def chat_messages(
        self,
        *,
        messages: list[dict[str, Any]],
        temperature: float,
        model: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ChatCompletionResult:
        payload: dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "temperature": float(temperature),
        }
        if self.max_tokens:
            payload["max_tokens"] = int(self.max_tokens)
        if extra:
            payload.update(extra)
        with transient_llm_errors(f"Chat completion ({payload['model']})"):
            resp = self._client.chat.completions.create(**payload)
        raw = resp.model_dump()
        if not resp.choices:
            return ChatCompletionResult(content="", raw=raw)
        content = (resp.choices[0].message.content or "").strip()
        return ChatCompletionResult(content=content, raw=raw)

    def describe_images(
        self,
        *,
        prompt: str,
        images: list[str],
        system: str = "",
        temperature: float = 0.0,
        detail: str = "low",
    ) -> str:
        """Ask the vision model about one or more images (URLs or local paths)."""
        if not images:
            raise ValueError("No images provided for analysis.")
        parts: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        parts.extend(_image_part(ref, detail=detail) for ref in images)
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": parts})
        res = self.chat_messages(messages=messages, temperature=temperature, model=self.vision_model)
        return res.content

    def transcribe_audio(self, *, filename: str, data: bytes) -> str:
        with transient_llm_errors(f"Transcription of {filename}"):
            resp = self._client.audio.transcriptions.create(
                model=self.transcribe_model,
                file=(filename, data),
            )
        return str(getattr(resp, "text", "") or "").strip()
