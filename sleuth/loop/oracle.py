from __future__ import annotations

from typing import Any, Protocol

from sleuth.utils.json_extract import JSONExtractionError, parse_json_object
from sleuth.utils.template import render_template

from .actions import Decision, DecisionSchema, decode_decision
from .errors import OracleParseError


class Oracle(Protocol):
    def decide(self, goal: str, snapshot: str) -> Decision: ...


class DecisionOracle:
    """Asks the chat model for the next action and decodes the reply.

    One stateless request per call: the fixed system prompt plus a user message
    rendered from `decision_template` with the goal and the state snapshot.
    An unparsable reply raises `OracleParseError`; there is no re-prompt.
    """

    def __init__(
        self,
        llm: Any,
        *,
        system_prompt: str,
        schema: DecisionSchema,
        decision_template: str = "{{goal}}\n\n{{snapshot}}",
        temperature: float = 0.0,
    ) -> None:
        self._llm = llm
        self.system_prompt = system_prompt
        self.schema = schema
        self.decision_template = decision_template
        self.temperature = float(temperature)
        self.last_raw: str = ""

    def build_prompt(self, goal: str, snapshot: str) -> str:
        return render_template(self.decision_template, {"goal": goal, "snapshot": snapshot}).strip()

    def decide(self, goal: str, snapshot: str) -> Decision:
        prompt = self.build_prompt(goal, snapshot)
        res = self._llm.chat(system=self.system_prompt, user=prompt, temperature=self.temperature)
        self.last_raw = res.content
        return parse_decision(res.content, self.schema)


def parse_decision(text: str, schema: DecisionSchema) -> Decision:
    try:
        obj = parse_json_object(text)
    except JSONExtractionError as e:
        raise OracleParseError(f"Unparsable oracle reply: {e}") from e
    return decode_decision(obj, schema)
