from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Callable

from .errors import InvalidDecisionError, OracleParseError, UnknownActionError


@dataclass(frozen=True)
class QueryAction:
    """Look up the links of one entity along a directed relation (e.g. person -> places)."""

    relation: str
    target: str


@dataclass(frozen=True)
class AnswerAction:
    """Submit a candidate answer to the verifier.

    `candidate` is the text used for rejection bookkeeping; `payload` is what gets
    submitted when the verifier expects structured data (defaults to `candidate`).
    """

    candidate: str
    payload: Any = None

    def submission(self) -> Any:
        return self.candidate if self.payload is None else self.payload


@dataclass(frozen=True)
class ReasonAction:
    """No tool call; the rationale is recorded in history."""


TRANSFORM_OPS = ("DARKEN", "REPAIR", "BRIGHTEN")


@dataclass(frozen=True)
class TransformAction:
    op: str
    filename: str


@dataclass(frozen=True)
class DescribeAction:
    filename: str


@dataclass(frozen=True)
class CheckAction:
    filenames: tuple[str, ...]


@dataclass(frozen=True)
class FetchAction:
    url: str


Action = (
    QueryAction
    | AnswerAction
    | ReasonAction
    | TransformAction
    | DescribeAction
    | CheckAction
    | FetchAction
)

_TAGS: dict[type, str] = {
    QueryAction: "QUERY",
    AnswerAction: "ANSWER",
    ReasonAction: "REASON",
    TransformAction: "TRANSFORM",
    DescribeAction: "DESCRIBE",
    CheckAction: "CHECK",
    FetchAction: "FETCH",
}


def action_tag(action: Action) -> str:
    return _TAGS[type(action)]


def action_params(action: Action) -> dict[str, Any]:
    params = asdict(action)
    if isinstance(action, CheckAction):
        params["filenames"] = list(action.filenames)
    return params


@dataclass(frozen=True)
class Decision:
    action: Action
    rationale: str = ""
    candidate_answer: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def tag(self) -> str:
        return action_tag(self.action)


ActionParser = Callable[[dict[str, Any]], Action]


@dataclass(frozen=True)
class DecisionSchema:
    """How one domain's oracle replies are laid out.

    - tag_field: the JSON key holding the action tag ("action", "nextTool", "tool")
    - parsers: lower-cased tag -> parser building the typed action from the reply object
    - rationale_fields: keys joined into the decision rationale, in order
    - candidate_field: optional key holding the oracle's current best answer
    - candidate_parser: turns a structured candidate into its text form; returns
      None for values it cannot use
    """

    tag_field: str
    parsers: dict[str, ActionParser]
    rationale_fields: tuple[str, ...] = ("reasoning",)
    candidate_field: str | None = None
    candidate_parser: Callable[[Any], str | None] | None = None

    @property
    def allowed_tags(self) -> list[str]:
        return sorted(self.parsers)


def require_str(obj: dict[str, Any], key: str, *, tag: str) -> str:
    value = obj.get(key)
    if not isinstance(value, (str, int, float)) or isinstance(value, bool):
        raise InvalidDecisionError(f"Invalid {tag}: missing string '{key}'")
    s = str(value).strip()
    if not s:
        raise InvalidDecisionError(f"Invalid {tag}: missing non-empty '{key}'")
    return s


def require_str_list(value: Any, *, key: str, tag: str) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise InvalidDecisionError(f"Invalid {tag}: '{key}' must be an array of strings")
    out = [str(v).strip() for v in value if isinstance(v, (str, int)) and str(v).strip()]
    if not out:
        raise InvalidDecisionError(f"Invalid {tag}: '{key}' must not be empty")
    return out


def params_object(obj: dict[str, Any], *, key: str = "parameters", tag: str) -> dict[str, Any]:
    params = obj.get(key)
    if not isinstance(params, dict):
        raise InvalidDecisionError(f"Invalid {tag}: '{key}' must be an object")
    return params


def _rationale(obj: dict[str, Any], fields: tuple[str, ...]) -> str:
    parts: list[str] = []
    for f in fields:
        v = obj.get(f)
        if isinstance(v, str) and v.strip():
            parts.append(v.strip())
    return " | ".join(parts)


def decode_decision(obj: dict[str, Any], schema: DecisionSchema) -> Decision:
    """Decode one parsed oracle reply into a typed `Decision`.

    Unknown tags raise `UnknownActionError`; parameters that do not fit the tag
    raise `InvalidDecisionError`. Nothing falls through silently.
    """
    if not isinstance(obj, dict):
        raise OracleParseError(f"Decision must be a JSON object, got {type(obj).__name__}")
    raw_tag = obj.get(schema.tag_field)
    tag = str(raw_tag or "").strip()
    if not tag:
        raise OracleParseError(f"Decision is missing '{schema.tag_field}'")
    parser = schema.parsers.get(tag.lower())
    if parser is None:
        raise UnknownActionError(
            f"Unknown action {tag!r}: must be one of {schema.allowed_tags}"
        )
    action = parser(obj)

    candidate: str | None = None
    if schema.candidate_field:
        cv = obj.get(schema.candidate_field)
        if schema.candidate_parser is not None:
            candidate = schema.candidate_parser(cv)
        elif isinstance(cv, str) and cv.strip():
            candidate = cv.strip()
    if candidate is None and isinstance(action, AnswerAction):
        candidate = action.candidate

    return Decision(
        action=action,
        rationale=_rationale(obj, schema.rationale_fields),
        candidate_answer=candidate,
        raw=obj,
    )
