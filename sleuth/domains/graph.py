from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sleuth.loop.actions import (
    AnswerAction,
    Decision,
    DecisionSchema,
    QueryAction,
    ReasonAction,
    require_str,
)
from sleuth.loop.dispatcher import Handler, Toolset
from sleuth.loop.errors import InvalidDecisionError
from sleuth.loop.knowledge import DispatchOutcome, KnowledgeState, ToolResult
from sleuth.loop.termination import TerminationDetector
from sleuth.utils.normalize import first_token, normalize


PEOPLE = "people"
PLACES = "places"
_OPPOSITE = {PEOPLE: PLACES, PLACES: PEOPLE}


def entity_key(relation: str, name: str) -> str:
    """People are looked up by first name only; places by the full normalized name."""
    if relation == PEOPLE:
        return first_token(name)
    return normalize(name)


@dataclass
class Entity:
    key: str
    links: set[str] = field(default_factory=set)
    queried: bool = False


class GraphKnowledge(KnowledgeState):
    title = "investigation_state"

    def __init__(self, *, note: str = "") -> None:
        super().__init__()
        self.note_text = note
        self.people: dict[str, Entity] = {}
        self.places: dict[str, Entity] = {}

    def registry(self, relation: str) -> dict[str, Entity]:
        if relation == PEOPLE:
            return self.people
        if relation == PLACES:
            return self.places
        raise ValueError(f"Unknown relation: {relation!r}")

    def ensure(self, relation: str, key: str) -> Entity:
        reg = self.registry(relation)
        ent = reg.get(key)
        if ent is None:
            ent = Entity(key=key)
            reg[key] = ent
        return ent

    def is_queried(self, relation: str, key: str) -> bool:
        ent = self.registry(relation).get(key)
        return bool(ent and ent.queried)

    def frontier(self, relation: str) -> list[str]:
        return sorted(k for k, e in self.registry(relation).items() if not e.queried)

    def _apply(self, decision: Decision, outcome: DispatchOutcome) -> None:
        data = outcome.result.data or {}
        if isinstance(decision.action, QueryAction):
            relation = data["relation"]
            ent = self.ensure(relation, data["key"])
            if ent.queried:
                return
            ent.queried = True
            ent.links = set(data.get("links") or [])
            opposite = _OPPOSITE[relation]
            for link in ent.links:
                self.ensure(opposite, link)
        elif isinstance(decision.action, AnswerAction):
            if not outcome.success:
                self._reject(data.get("candidate") or decision.action.candidate)

    def _render_registry(self, relation: str) -> list[str]:
        lines: list[str] = []
        reg = self.registry(relation)
        for key in sorted(reg):
            ent = reg[key]
            if ent.queried:
                links = ", ".join(sorted(ent.links)) or "(no links)"
                lines.append(f"- {key} [queried]: {links}")
            else:
                lines.append(f"- {key} [unqueried]")
        return lines

    def _sections(self) -> list[tuple[str, list[str]]]:
        note_lines = [ln for ln in self.note_text.strip().splitlines() if ln.strip()]
        return [
            ("note", note_lines),
            ("people_to_places", self._render_registry(PEOPLE)),
            ("places_to_people", self._render_registry(PLACES)),
            ("unqueried_people", [f"- {k}" for k in self.frontier(PEOPLE)]),
            ("unqueried_places", [f"- {k}" for k in self.frontier(PLACES)]),
        ]


def _query_parser(relation: str):
    def parse(obj: dict[str, Any]) -> QueryAction:
        return QueryAction(relation=relation, target=require_str(obj, "query", tag=f"ask_{relation}"))

    return parse


def _parse_query(obj: dict[str, Any]) -> QueryAction:
    relation = str(obj.get("relation") or "").strip().lower()
    if relation not in (PEOPLE, PLACES):
        raise InvalidDecisionError(f"Invalid query: 'relation' must be one of {[PEOPLE, PLACES]}")
    return QueryAction(relation=relation, target=require_str(obj, "query", tag="query"))


def _parse_answer(obj: dict[str, Any]) -> AnswerAction:
    # An empty answer is decoded and then skipped by the dispatcher, not rejected here.
    return AnswerAction(candidate=str(obj.get("answer") or "").strip())


GRAPH_SCHEMA = DecisionSchema(
    tag_field="action",
    parsers={
        "ask_people": _query_parser(PEOPLE),
        "ask_places": _query_parser(PLACES),
        "query": _parse_query,
        "reason": lambda obj: ReasonAction(),
        "answer": _parse_answer,
    },
    rationale_fields=("reasoning",),
)


class GraphToolset(Toolset):
    """Entity-graph investigation: who was where, and where is the target now.

    Two symmetric relations are queried through the verifier host
    (person -> places, place -> people); each entity is queried at most once.
    """

    name = "graph"
    schema = GRAPH_SCHEMA

    def __init__(
        self,
        *,
        verifier: Any,
        task_name: str,
        note_path: str,
        people_endpoint: str = "/people",
        places_endpoint: str = "/places",
        goal: str = "",
        system_prompt: str = "",
        detector: TerminationDetector | None = None,
    ) -> None:
        super().__init__(detector=detector)
        self.verifier = verifier
        self.task_name = task_name
        self.note_path = note_path
        self.endpoints = {PEOPLE: people_endpoint, PLACES: places_endpoint}
        self._goal = goal
        self.system_prompt = system_prompt

    def goal(self) -> str:
        return self._goal

    def bootstrap(self) -> GraphKnowledge:
        note = self.verifier.get_text(self.note_path) if self.note_path else ""
        return GraphKnowledge(note=note)

    def handlers(self) -> dict[type, Handler]:
        return {QueryAction: self._query, AnswerAction: self._answer}

    def _query(self, action: QueryAction, decision: Decision, state: GraphKnowledge) -> ToolResult:
        relation = action.relation
        key = entity_key(relation, action.target)
        label = "person" if relation == PEOPLE else "place"
        if not key:
            return ToolResult(narrative=f"Skipped {label} query: empty name", skipped=True)
        if state.is_queried(relation, key):
            return ToolResult(narrative=f"Skipped {label} {key}: already queried", skipped=True)

        res = self.verifier.query(self.endpoints[relation], key)
        opposite = _OPPOSITE[relation]
        links = sorted({entity_key(opposite, tok) for tok in res.message.split()} - {""})
        return ToolResult(
            narrative=f"Querying {label} {key}: {', '.join(links) or '(nothing)'}",
            raw=res.raw,
            data={"relation": relation, "key": key, "links": links},
        )

    def _answer(self, action: AnswerAction, decision: Decision, state: GraphKnowledge) -> ToolResult:
        candidate = normalize(action.candidate)
        if not candidate:
            return ToolResult(narrative="Skipped answer: empty answer", skipped=True)
        if state.is_rejected(candidate):
            return ToolResult(narrative=f"Skipped answer {candidate}: already rejected", skipped=True)

        res = self.verifier.report(self.task_name, candidate)
        return ToolResult(
            narrative=f"Attempting answer {candidate}: {res.message}",
            raw=res.raw,
            data={"candidate": candidate},
            answer=candidate,
        )
