from __future__ import annotations

from typing import Any


class LoopError(RuntimeError):
    """Base for loop failures.

    When one escapes `LoopController.run`, `history` and `iterations` describe how far
    the run got.
    """

    def __init__(self, *args: Any) -> None:
        super().__init__(*args)
        self.history: list[Any] = []
        self.iterations = 0


class OracleParseError(LoopError):
    """The oracle's reply is not a valid decision. Fatal for the run."""


class UnknownActionError(OracleParseError):
    pass


class InvalidDecisionError(UnknownActionError):
    """The action tag is known but its parameters do not match it."""


class ToolTransientError(LoopError):
    """An external tool call failed (network, timeout, error reply).

    The loop abandons the current dispatch without merging and moves on.
    """
