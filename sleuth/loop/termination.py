from __future__ import annotations

from .knowledge import ToolResult


# Verifier replies carry this marker only when the task is solved.
SUCCESS_SENTINEL = "{{FLG:"


def contains_sentinel(text: str | None, *, sentinel: str = SUCCESS_SENTINEL) -> bool:
    return bool(text) and sentinel in str(text)


def budget_exhausted(iteration: int, max_iterations: int) -> bool:
    return int(iteration) >= int(max_iterations)


def is_forced_commitment(iteration: int, every: int) -> bool:
    return every > 0 and iteration > 0 and iteration % every == 0


class TerminationDetector:
    def __init__(self, *, sentinel: str = SUCCESS_SENTINEL) -> None:
        self.sentinel = sentinel

    def check(self, result: ToolResult) -> bool:
        if result.skipped:
            return False
        return contains_sentinel(result.raw, sentinel=self.sentinel)

    def check_budget(self, iteration: int, max_iterations: int) -> bool:
        return budget_exhausted(iteration, max_iterations)
