from __future__ import annotations

from enum import Enum


class LoopState(Enum):
    GATHERING = "gathering"
    FORCED_COMMITMENT = "forced_commitment"
    TERMINATED_SUCCESS = "terminated_success"
    TERMINATED_BUDGET_EXHAUSTED = "terminated_budget_exhausted"
    TERMINATED_FAILED = "terminated_failed"

    @property
    def terminal(self) -> bool:
        return self in {
            LoopState.TERMINATED_SUCCESS,
            LoopState.TERMINATED_BUDGET_EXHAUSTED,
            LoopState.TERMINATED_FAILED,
        }
