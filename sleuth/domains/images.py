from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from sleuth.llm.openai_compat import transient_llm_errors
from sleuth.loop.actions import (
    TRANSFORM_OPS,
    CheckAction,
    Decision,
    DecisionSchema,
    DescribeAction,
    TransformAction,
    require_str_list,
)
from sleuth.loop.dispatcher import Handler, Toolset
from sleuth.loop.errors import ToolTransientError
from sleuth.loop.knowledge import DispatchOutcome, KnowledgeState, ToolResult
from sleuth.loop.termination import TerminationDetector
from sleuth.tools.http import download_file
from sleuth.utils.json_extract import JSONExtractionError, parse_json_object
from sleuth.utils.template import render_template


_IMAGE_NAME_RE = re.compile(r"IMG_\d+(?:_[A-Z0-9]+)?")

SLOTS = {"DARKEN": "darkened", "REPAIR": "repaired", "BRIGHTEN": "brightened"}


def extract_image_names(text: str, *, suffix: str = "-small.png") -> list[str]:
    """Image file names mentioned in a verifier message, first mention first, no duplicates."""
    out: list[str] = []
    for m in _IMAGE_NAME_RE.findall(text or ""):
        name = f"{m}{suffix}"
        if name not in out:
            out.append(name)
    return out


def description_of(text: str) -> str:
    """`description` from a JSON reply, or the stripped text when the reply is not JSON."""
    try:
        obj = parse_json_object(text)
    except JSONExtractionError:
        return (text or "").strip()
    desc = obj.get("description")
    if isinstance(desc, str) and desc.strip():
        return desc.strip()
    return (text or "").strip()


@dataclass
class MediaResource:
    filename: str
    source_url: str
    local_path: str
    description: str | None = None
    darkened: str | None = None
    repaired: str | None = None
    brightened: str | None = None


class ImageKnowledge(KnowledgeState):
    title = "photo_state"

    def __init__(self) -> None:
        super().__init__()
        self.resources: dict[str, MediaResource] = {}
        self.hints: list[str] = []

    def register(self, resources: list[MediaResource]) -> None:
        for r in resources:
            self.resources.setdefault(r.filename, r)

    def _apply(self, decision: Decision, outcome: DispatchOutcome) -> None:
        data = outcome.result.data or {}
        self.register(list(data.get("new") or []))
        action = decision.action
        if isinstance(action, TransformAction):
            derived = data.get("derived")
            src = self.resources.get(action.filename)
            if src is not None and derived:
                # One slot per transform: a repeated transform replaces the earlier result.
                setattr(src, SLOTS[action.op], derived)
        elif isinstance(action, DescribeAction):
            src = self.resources.get(action.filename)
            if src is not None:
                src.description = data.get("description") or None
        elif isinstance(action, CheckAction):
            if not outcome.success:
                self._reject(data.get("description") or "")
                hints = data.get("hints")
                if hints:
                    self.hints = list(hints)

    def _sections(self) -> list[tuple[str, list[str]]]:
        lines: list[str] = []
        for name in sorted(self.resources):
            r = self.resources[name]
            lines.append(f"- {name}")
            lines.append(f"    description: {r.description or '(not described)'}")
            for slot in SLOTS.values():
                lines.append(f"    {slot}: {getattr(r, slot) or '(not available)'}")
        return [("images", lines), ("hints", [f"- {h}" for h in self.hints])]


def _single(obj: dict[str, Any], tag: str) -> str:
    return require_str_list(obj.get("filenames"), key="filenames", tag=tag)[0]


def _transform_parser(op: str):
    def parse(obj: dict[str, Any]) -> TransformAction:
        return TransformAction(op=op, filename=_single(obj, op))

    return parse


IMAGES_SCHEMA = DecisionSchema(
    tag_field="nextTool",
    parsers={
        **{op.lower(): _transform_parser(op) for op in TRANSFORM_OPS},
        "describe": lambda obj: DescribeAction(filename=_single(obj, "DESCRIBE")),
        "check": lambda obj: CheckAction(
            filenames=tuple(require_str_list(obj.get("filenames"), key="filenames", tag="CHECK"))
        ),
    },
    rationale_fields=("thinking", "description"),
)


class ImageToolset(Toolset):
    """Photo refinement: transform images on the verifier host, describe them, submit a description.

    Transforms are executed remotely by sending "<OP> <filename>" to the report
    endpoint; the reply names the derived image, which is downloaded locally.
    """

    name = "images"
    schema = IMAGES_SCHEMA

    def __init__(
        self,
        *,
        verifier: Any,
        llm: Any,
        task_name: str,
        work_dir: str | Path,
        image_url_template: str = "{{base_url}}/dane/barbara/{{filename}}",
        image_suffix: str = "-small.png",
        goal: str = "",
        system_prompt: str = "",
        describe_prompt: str = "Describe the person in this image. Focus on: {{hints}}",
        check_prompt: str = "Describe the person shown in these images. {{hints}}",
        translate_prompt: str = "",
        detector: TerminationDetector | None = None,
    ) -> None:
        super().__init__(detector=detector)
        self.verifier = verifier
        self.llm = llm
        self.task_name = task_name
        self.work_dir = Path(work_dir)
        self.image_url_template = image_url_template
        self.image_suffix = image_suffix
        self._goal = goal
        self.system_prompt = system_prompt
        self.describe_prompt = describe_prompt
        self.check_prompt = check_prompt
        self.translate_prompt = translate_prompt

    def goal(self) -> str:
        return self._goal

    def image_url(self, filename: str) -> str:
        return render_template(
            self.image_url_template,
            {"base_url": getattr(self.verifier, "base_url", ""), "filename": filename},
        )

    def fetch_images(self, message: str) -> list[MediaResource]:
        """Download every image named in `message`; names that fail to download are dropped."""
        out: list[MediaResource] = []
        for name in extract_image_names(message, suffix=self.image_suffix):
            url = self.image_url(name)
            try:
                path = download_file(url, self.work_dir / name, timeout_s=self.verifier.timeout_s)
            except ToolTransientError:
                continue
            out.append(MediaResource(filename=name, source_url=url, local_path=str(path)))
        return out

    def bootstrap(self) -> ImageKnowledge:
        state = ImageKnowledge()
        res = self.verifier.report(self.task_name, "START")
        state.register(self.fetch_images(res.message))
        state.hints = list(res.hints)
        return state

    def handlers(self) -> dict[type, Handler]:
        return {
            TransformAction: self._transform,
            DescribeAction: self._describe,
            CheckAction: self._check,
        }

    def _transform(self, action: TransformAction, decision: Decision, state: ImageKnowledge) -> ToolResult:
        if action.filename not in state.resources:
            return ToolResult(narrative=f"Skipped {action.op} {action.filename}: unknown image", skipped=True)
        res = self.verifier.report(self.task_name, f"{action.op} {action.filename}")
        new = self.fetch_images(res.message)
        derived = new[0].filename if new else None
        return ToolResult(
            narrative=f"{action.op} {action.filename} -> {derived or '(no image)'}: {res.message}",
            raw=res.raw,
            data={"new": new, "derived": derived},
        )

    def _describe(self, action: DescribeAction, decision: Decision, state: ImageKnowledge) -> ToolResult:
        src = state.resources.get(action.filename)
        if src is None:
            return ToolResult(narrative=f"Skipped DESCRIBE {action.filename}: unknown image", skipped=True)
        prompt = render_template(self.describe_prompt, {"hints": ", ".join(state.hints)})
        with transient_llm_errors(f"DESCRIBE {action.filename}"):
            text = self.llm.describe_images(prompt=prompt, images=[src.local_path])
        description = description_of(text)
        return ToolResult(
            narrative=f"DESCRIBE {action.filename}: {description}",
            raw=text,
            data={"description": description},
        )

    def _check(self, action: CheckAction, decision: Decision, state: ImageKnowledge) -> ToolResult:
        known = [state.resources[f] for f in action.filenames if f in state.resources]
        if not known:
            names = ", ".join(action.filenames)
            return ToolResult(narrative=f"Skipped CHECK {names}: unknown images", skipped=True)

        prompt = render_template(self.check_prompt, {"hints": ", ".join(state.hints)})
        names = ", ".join(r.filename for r in known)
        with transient_llm_errors(f"CHECK {names}"):
            text = self.llm.describe_images(prompt=prompt, images=[r.local_path for r in known])
            if self.translate_prompt:
                text = self.llm.chat(
                    system="",
                    user=render_template(self.translate_prompt, {"text": text}),
                    temperature=0.0,
                ).content
        description = description_of(text)
        if not description:
            return ToolResult(narrative=f"Skipped CHECK {names}: empty description", skipped=True)
        if state.is_rejected(description):
            return ToolResult(narrative=f"Skipped CHECK {names}: description already rejected", skipped=True)

        res = self.verifier.report(self.task_name, description)
        return ToolResult(
            narrative=f"CHECK {names}: {res.message} (hints: {', '.join(res.hints) or 'none'})",
            raw=res.raw,
            data={"description": description, "hints": res.hints, "new": self.fetch_images(res.message)},
            answer=description,
        )
