from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sleuth.utils.normalize import normalize

from .actions import Decision


@dataclass(frozen=True)
class HistoryEntry:
    iteration: int
    narrative: str


@dataclass(frozen=True)
class ToolResult:
    """What one tool call produced.

    - narrative: one-line summary that becomes the iteration's history entry
    - raw: the verifier/tool reply text (scanned for the success sentinel)
    - data: domain payload consumed by `KnowledgeState.merge`
    - skipped: the dispatcher short-circuited (already queried/visited/rejected)
    - answer: what the run yields if this result carries the success sentinel
    """

    narrative: str
    raw: str = ""
    data: Any = None
    skipped: bool = False
    answer: str | None = None


@dataclass(frozen=True)
class DispatchOutcome:
    result: ToolResult
    success: bool = False

    @property
    def answer(self) -> str | None:
        return self.result.answer if self.success else None


def _clip(text: str, limit: int) -> str:
    s = " ".join((text or "").split())
    if len(s) > limit:
        return s[:limit] + "..."
    return s


class KnowledgeState:
    """Per-run accumulated knowledge: domain registries, history, rejected answers.

    `merge` is the only mutator for tool results and is called once per completed
    dispatch; `note` appends history for iterations that did not merge (skips,
    failed tool calls). `snapshot` is a pure read and renders deterministically.
    """

    title = "state"

    def __init__(self) -> None:
        self._history: list[HistoryEntry] = []
        self._rejected: set[str] = set()

    @property
    def history(self) -> list[HistoryEntry]:
        return list(self._history)

    @property
    def rejected_answers(self) -> frozenset[str]:
        return frozenset(self._rejected)

    def is_rejected(self, candidate: str) -> bool:
        return normalize(candidate) in self._rejected

    def note(self, iteration: int, narrative: str) -> None:
        self._history.append(HistoryEntry(iteration=int(iteration), narrative=narrative))

    def merge(self, iteration: int, decision: Decision, outcome: DispatchOutcome) -> None:
        self._apply(decision, outcome)
        narrative = outcome.result.narrative
        if decision.rationale:
            narrative = f"{narrative} - {decision.rationale}"
        self.note(iteration, narrative)

    def _apply(self, decision: Decision, outcome: DispatchOutcome) -> None:
        raise NotImplementedError

    def _reject(self, candidate: str) -> None:
        key = normalize(candidate)
        if key:
            self._rejected.add(key)

    def _sections(self) -> list[tuple[str, list[str]]]:
        """Domain-specific (heading, lines) blocks, rendered in order."""
        return []

    def snapshot(self, *, history_window: int | None = None) -> str:
        lines: list[str] = [f"{self.title}:"]
        for heading, body in self._sections():
            lines.append(f"  {heading}:")
            if not body:
                lines.append("    (none)")
            for b in body:
                lines.append(f"    {b}")

        lines.append("  rejected_answers:")
        if not self._rejected:
            lines.append("    (none)")
        for r in sorted(self._rejected):
            lines.append(f"    - {_clip(r, 300)}")

        recent = self._history
        if history_window is not None and history_window > 0:
            recent = self._history[-history_window:]
        lines.append("  history:")
        if not recent:
            lines.append("    (none)")
        for h in recent:
            lines.append(f"    - iteration {h.iteration}: {_clip(h.narrative, 600)}")
        return "\n".join(lines)
