from __future__ import annotations

from pathlib import Path
from typing import Any

import httpx
import openai
import pytest

import sleuth.domains.images as images
from sleuth.domains.images import IMAGES_SCHEMA, ImageToolset, description_of, extract_image_names
from sleuth.llm.openai_compat import ChatCompletionResult
from sleuth.loop.engine import LoopController, LoopSettings
from sleuth.loop.errors import ToolTransientError
from sleuth.loop.oracle import parse_decision
from sleuth.tools.verifier import VerifierResponse


class _NullTrace:
    def trace(self, event_type: str, payload: dict[str, Any]) -> None:
        return None


class _ListOracle:
    def __init__(self, replies: list[str]) -> None:
        self.replies = list(replies)
        self.calls = 0

    def decide(self, goal: str, snapshot: str):  # noqa: ANN201
        self.calls += 1
        return parse_decision(self.replies[self.calls - 1], IMAGES_SCHEMA)


class _FakeVerifier:
    base_url = "https://verifier.test"
    timeout_s = 1.0

    def __init__(self, replies: dict[str, list[VerifierResponse]]) -> None:
        self.replies = {k: list(v) for k, v in replies.items()}
        self.reports: list[Any] = []

    def report(self, task: str, answer: Any) -> VerifierResponse:
        self.reports.append(answer)
        queue = self.replies.get(answer) or self.replies["*"]
        return queue.pop(0) if len(queue) > 1 else queue[0]


class _FakeLLM:
    def __init__(self) -> None:
        self.described: list[list[str]] = []
        self.translated: list[str] = []

    def describe_images(self, *, prompt: str, images: list[str], **_: Any) -> str:
        self.described.append(list(images))
        return '{"description": "woman with glasses"}'

    def chat(self, *, system: str, user: str, temperature: float) -> ChatCompletionResult:
        self.translated.append(user)
        return ChatCompletionResult(content='{"description": "kobieta w okularach"}', raw={})


def _reply(message: str, hints: list[str] | None = None, code: int = 0) -> VerifierResponse:
    return VerifierResponse(code=code, message=message, hints=hints or [], raw=message)


@pytest.fixture()
def downloads(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    urls: list[str] = []

    def _fake_download(url: str, dest: str | Path, *, timeout_s: float) -> Path:
        if "BROKEN" in url:
            raise ToolTransientError(f"HTTP 404 for {url}")
        urls.append(url)
        return Path(dest)

    monkeypatch.setattr(images, "download_file", _fake_download)
    return urls


def _toolset(verifier: _FakeVerifier, llm: _FakeLLM, tmp_path: Path, *, translate: str = "") -> ImageToolset:
    return ImageToolset(
        verifier=verifier,
        llm=llm,
        task_name="photos",
        work_dir=tmp_path,
        translate_prompt=translate,
    )


def _run(toolset: ImageToolset, replies: list[str]):  # noqa: ANN202
    state = toolset.bootstrap()
    ctrl = LoopController(
        toolset=toolset,
        oracle=_ListOracle(replies),
        settings=LoopSettings(max_iterations=len(replies)),
    )
    return state, ctrl.run(_NullTrace(), goal="g", state=state)


def test_extract_image_names() -> None:
    text = "Photos: IMG_559.PNG, IMG_1410_FXER.PNG and IMG_559.PNG again; not img_3.png"
    assert extract_image_names(text) == ["IMG_559-small.png", "IMG_1410_FXER-small.png"]
    assert extract_image_names("IMG_7", suffix=".png") == ["IMG_7.png"]


def test_description_of_falls_back_to_raw_text() -> None:
    assert description_of('{"description": " tall man "}') == "tall man"
    assert description_of("just prose") == "just prose"


def test_bootstrap_registers_downloaded_images_and_drops_failures(downloads: list[str], tmp_path: Path) -> None:
    verifier = _FakeVerifier({"START": [_reply("IMG_1.PNG IMG_2_BROKEN.PNG", hints=["look closely"])]})
    state = _toolset(verifier, _FakeLLM(), tmp_path).bootstrap()

    assert sorted(state.resources) == ["IMG_1-small.png"]
    assert downloads == ["https://verifier.test/dane/barbara/IMG_1-small.png"]
    assert state.resources["IMG_1-small.png"].local_path == str(tmp_path / "IMG_1-small.png")
    assert state.hints == ["look closely"]


def test_repeated_transform_overwrites_the_slot(downloads: list[str], tmp_path: Path) -> None:
    verifier = _FakeVerifier(
        {
            "START": [_reply("IMG_1.PNG")],
            "DARKEN IMG_1-small.png": [_reply("Done: IMG_1_A1B2.PNG"), _reply("Done: IMG_1_C3D4.PNG")],
        }
    )
    replies = ['{"nextTool": "DARKEN", "filenames": ["IMG_1-small.png"]}'] * 2
    state, outcome = _run(_toolset(verifier, _FakeLLM(), tmp_path), replies)

    src = state.resources["IMG_1-small.png"]
    assert src.darkened == "IMG_1_C3D4-small.png"
    assert src.repaired is None
    assert src.brightened is None
    assert "IMG_1_A1B2-small.png" in state.resources
    assert "IMG_1_C3D4-small.png" in state.resources
    assert verifier.reports == ["START", "DARKEN IMG_1-small.png", "DARKEN IMG_1-small.png"]
    assert len(outcome.history) == 2


def test_transform_on_unknown_image_is_skipped(downloads: list[str], tmp_path: Path) -> None:
    verifier = _FakeVerifier({"START": [_reply("IMG_1.PNG")]})
    state, outcome = _run(
        _toolset(verifier, _FakeLLM(), tmp_path),
        ['{"nextTool": "BRIGHTEN", "filenames": ["IMG_9-small.png"]}'],
    )

    assert verifier.reports == ["START"]
    assert outcome.history[0].narrative == "Skipped BRIGHTEN IMG_9-small.png: unknown image"


def test_describe_fills_the_resource(downloads: list[str], tmp_path: Path) -> None:
    verifier = _FakeVerifier({"START": [_reply("IMG_1.PNG")]})
    llm = _FakeLLM()
    state, _ = _run(
        _toolset(verifier, llm, tmp_path),
        ['{"nextTool": "DESCRIBE", "filenames": ["IMG_1-small.png"]}'],
    )

    assert state.resources["IMG_1-small.png"].description == "woman with glasses"
    assert llm.described == [[str(tmp_path / "IMG_1-small.png")]]


def test_check_rejection_stores_hints_then_success_ends_run(downloads: list[str], tmp_path: Path) -> None:
    verifier = _FakeVerifier(
        {
            "START": [_reply("IMG_1.PNG IMG_2.PNG")],
            "*": [
                _reply("Not quite, see IMG_3.PNG", hints=["tattoo", "hair colour"], code=-340),
                _reply("{{FLG:BARBARA}}"),
            ],
        }
    )
    llm = _FakeLLM()
    check = '{"nextTool": "CHECK", "filenames": ["IMG_1-small.png", "IMG_2-small.png"]}'
    describe = '{"nextTool": "DESCRIBE", "filenames": ["IMG_1-small.png"]}'
    toolset = _toolset(verifier, llm, tmp_path, translate="Translate: {{text}}")
    state, outcome = _run(toolset, [check, describe, check])

    assert state.hints == ["tattoo", "hair colour"]
    assert "IMG_3-small.png" in state.resources
    assert state.is_rejected("kobieta w okularach")
    assert llm.translated[0] == 'Translate: {"description": "woman with glasses"}'
    # The same description was rejected before, so the second CHECK is not submitted.
    assert verifier.reports == ["START", "kobieta w okularach"]
    assert outcome.success is False
    assert outcome.history[-1].narrative == (
        "Skipped CHECK IMG_1-small.png, IMG_2-small.png: description already rejected"
    )


def test_check_success_returns_description(downloads: list[str], tmp_path: Path) -> None:
    verifier = _FakeVerifier({"START": [_reply("IMG_1.PNG")], "*": [_reply("{{FLG:BARBARA}}")]})
    toolset = _toolset(verifier, _FakeLLM(), tmp_path)
    _, outcome = _run(toolset, ['{"nextTool": "CHECK", "filenames": ["IMG_1-small.png"]}'])

    assert outcome.success is True
    assert outcome.iterations == 1
    assert outcome.answer == "woman with glasses"


class _FlakyLLM(_FakeLLM):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    def describe_images(self, *, prompt: str, images: list[str], **kw: Any) -> str:
        if self.failures > 0:
            self.failures -= 1
            raise openai.APITimeoutError(request=httpx.Request("POST", "https://llm.test/v1/chat/completions"))
        return super().describe_images(prompt=prompt, images=images, **kw)


def test_vision_timeout_skips_the_iteration_and_the_run_continues(downloads: list[str], tmp_path: Path) -> None:
    verifier = _FakeVerifier({"START": [_reply("IMG_1.PNG")]})
    llm = _FlakyLLM(failures=1)
    describe = '{"nextTool": "DESCRIBE", "filenames": ["IMG_1-small.png"]}'
    state, outcome = _run(_toolset(verifier, llm, tmp_path), [describe, describe])

    assert outcome.iterations == 2
    assert outcome.history[0].narrative.startswith("DESCRIBE failed: DESCRIBE IMG_1-small.png failed")
    assert state.resources["IMG_1-small.png"].description == "woman with glasses"


def test_check_timeout_submits_nothing(downloads: list[str], tmp_path: Path) -> None:
    verifier = _FakeVerifier({"START": [_reply("IMG_1.PNG")], "*": [_reply("{{FLG:BARBARA}}")]})
    check = '{"nextTool": "CHECK", "filenames": ["IMG_1-small.png"]}'
    _, outcome = _run(_toolset(verifier, _FlakyLLM(failures=1), tmp_path), [check, check])

    assert verifier.reports == ["START", "woman with glasses"]
    assert outcome.success is True
    assert outcome.iterations == 2
