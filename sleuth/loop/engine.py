from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

from .actions import action_params
from .dispatcher import Toolset
from .errors import LoopError, OracleParseError, ToolTransientError
from .knowledge import HistoryEntry, KnowledgeState
from .oracle import Oracle
from .state import LoopState
from .termination import is_forced_commitment


DEFAULT_FORCED_COMMITMENT = (
    "IMPORTANT: you must use the answer action this turn. "
    "Make your best guess from the information collected so far."
)


def _now_ts() -> float:
    return time.time()


@dataclass(frozen=True)
class LoopSettings:
    max_iterations: int = 200
    forced_commitment_every: int = 10
    history_window: int | None = 30
    forced_commitment_text: str = DEFAULT_FORCED_COMMITMENT


@dataclass(frozen=True)
class RunOutcome:
    status: LoopState
    iterations: int
    history: list[HistoryEntry] = field(default_factory=list)
    answer: str | None = None
    verifier_reply: str = ""
    reason: str | None = None

    @property
    def success(self) -> bool:
        return self.status is LoopState.TERMINATED_SUCCESS

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "success": self.success,
            "iterations": self.iterations,
            "answer": self.answer,
            "verifier_reply": self.verifier_reply,
            "reason": self.reason,
            "history": [{"iteration": h.iteration, "narrative": h.narrative} for h in self.history],
        }


class LoopController:
    """Drives the decide -> act -> accumulate -> check loop for one run.

    Per iteration i (1-indexed):
      1. every K-th iteration the snapshot is prefixed with the forced-commitment
         instruction (a hint only: the oracle may still choose another action)
      2. oracle -> Decision (parse failure aborts the run)
      3. toolset.dispatch(Decision) -> outcome (transient tool failure: note, move on)
      4. merge into the knowledge state, or note the skip
      5. success sentinel -> stop with the answer
      6. i == max_iterations -> stop, budget exhausted
    """

    def __init__(
        self,
        *,
        toolset: Toolset,
        oracle: Oracle,
        settings: LoopSettings | None = None,
    ) -> None:
        self.toolset = toolset
        self.oracle = oracle
        self.settings = settings or LoopSettings()
        self.loop_state = LoopState.GATHERING
        self.iteration = 0

    def build_snapshot(self, state: KnowledgeState, iteration: int) -> str:
        snapshot = state.snapshot(history_window=self.settings.history_window)
        if is_forced_commitment(iteration, self.settings.forced_commitment_every):
            return f"{self.settings.forced_commitment_text}\n{snapshot}"
        return snapshot

    def run(self, ctx: Any, *, goal: str, state: KnowledgeState) -> RunOutcome:
        max_iterations = int(self.settings.max_iterations)
        self.loop_state = LoopState.GATHERING
        ctx.trace(
            "loop_started",
            {
                "ts": _now_ts(),
                "toolset": self.toolset.name,
                "goal": goal,
                "max_iterations": max_iterations,
                "forced_commitment_every": self.settings.forced_commitment_every,
            },
        )
        self.iteration = 0
        try:
            return self._iterate(ctx, goal=goal, state=state, max_iterations=max_iterations)
        except LoopError as e:
            self.loop_state = LoopState.TERMINATED_FAILED
            e.history = state.history
            e.iterations = self.iteration
            raise

    def _iterate(self, ctx: Any, *, goal: str, state: KnowledgeState, max_iterations: int) -> RunOutcome:
        detector = self.toolset.detector
        iteration = 0
        while not detector.check_budget(iteration, max_iterations):
            iteration += 1
            self.iteration = iteration
            forced = is_forced_commitment(iteration, self.settings.forced_commitment_every)
            self.loop_state = LoopState.FORCED_COMMITMENT if forced else LoopState.GATHERING
            snapshot = self.build_snapshot(state, iteration)
            ctx.trace(
                "loop_iteration",
                {"ts": _now_ts(), "iteration": iteration, "loop_state": self.loop_state.value},
            )

            try:
                decision = self.oracle.decide(goal, snapshot)
            except OracleParseError as e:
                ctx.trace(
                    "oracle_parse_failed",
                    {
                        "ts": _now_ts(),
                        "iteration": iteration,
                        "error": str(e),
                        "raw": getattr(self.oracle, "last_raw", ""),
                    },
                )
                raise

            ctx.trace(
                "oracle_decision",
                {
                    "ts": _now_ts(),
                    "iteration": iteration,
                    "action": decision.tag,
                    "params": action_params(decision.action),
                    "rationale": decision.rationale,
                    "candidate_answer": decision.candidate_answer,
                },
            )

            try:
                outcome = self.toolset.dispatch(decision, state)
            except ToolTransientError as e:
                state.note(iteration, f"{decision.tag} failed: {e}")
                ctx.trace(
                    "tool_error",
                    {"ts": _now_ts(), "iteration": iteration, "action": decision.tag, "error": str(e)},
                )
                continue

            result = outcome.result
            if result.skipped:
                state.note(iteration, result.narrative)
                ctx.trace(
                    "tool_skipped",
                    {"ts": _now_ts(), "iteration": iteration, "action": decision.tag, "narrative": result.narrative},
                )
                continue

            state.merge(iteration, decision, outcome)
            ctx.trace(
                "tool_result",
                {
                    "ts": _now_ts(),
                    "iteration": iteration,
                    "action": decision.tag,
                    "narrative": result.narrative,
                    "raw": result.raw,
                    "success": outcome.success,
                },
            )

            if outcome.success:
                self.loop_state = LoopState.TERMINATED_SUCCESS
                ctx.trace(
                    "loop_succeeded",
                    {"ts": _now_ts(), "iteration": iteration, "answer": outcome.answer, "reply": result.raw},
                )
                return RunOutcome(
                    status=self.loop_state,
                    iterations=iteration,
                    history=state.history,
                    answer=outcome.answer,
                    verifier_reply=result.raw,
                )

        self.loop_state = LoopState.TERMINATED_BUDGET_EXHAUSTED
        ctx.trace("loop_budget_exhausted", {"ts": _now_ts(), "iterations": iteration})
        return RunOutcome(
            status=self.loop_state,
            iterations=iteration,
            history=state.history,
            reason=f"No success after {iteration} iterations.",
        )
