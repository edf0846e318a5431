from __future__ import annotations

from typing import Any, Callable

from .actions import Action, Decision, DecisionSchema, ReasonAction, action_tag
from .errors import UnknownActionError
from .knowledge import DispatchOutcome, KnowledgeState, ToolResult
from .termination import TerminationDetector


Handler = Callable[[Any, Decision, Any], ToolResult]


class Toolset:
    """Base class for a domain's action dispatcher.

    Subclasses provide the decision schema, a bootstrap that seeds the knowledge
    state, and one handler per action type. Handlers may read the state (dedup
    checks) but never mutate it: the loop controller merges the returned result.
    Each handler talks to at most one external tool.
    """

    name = "toolset"
    schema: DecisionSchema
    system_prompt = ""

    def __init__(self, *, detector: TerminationDetector | None = None) -> None:
        self.detector = detector or TerminationDetector()

    def goal(self) -> str:
        return ""

    def bootstrap(self) -> KnowledgeState:
        raise NotImplementedError

    def handlers(self) -> dict[type, Handler]:
        return {}

    def dispatch(self, decision: Decision, state: KnowledgeState) -> DispatchOutcome:
        action: Action = decision.action
        if isinstance(action, ReasonAction):
            return DispatchOutcome(result=ToolResult(narrative="Analysis"))

        handler = self.handlers().get(type(action))
        if handler is None:
            raise UnknownActionError(f"{self.name} has no handler for {action_tag(action)}")
        result = handler(action, decision, state)
        if result.skipped:
            return DispatchOutcome(result=result)
        return DispatchOutcome(result=result, success=self.detector.check(result))
