from __future__ import annotations

from sleuth.loop.knowledge import ToolResult
from sleuth.loop.termination import TerminationDetector, contains_sentinel, is_forced_commitment


def test_sentinel_anywhere_in_raw_reply() -> None:
    det = TerminationDetector()
    assert det.check(ToolResult(narrative="", raw='{"code":0,"message":"{{FLG:BARBARA}}"}'))
    assert not det.check(ToolResult(narrative="", raw='{"code":-1,"message":"Wrong city"}'))
    assert not det.check(ToolResult(narrative="", raw="{{FLG:X}}", skipped=True))
    assert not contains_sentinel(None)


def test_budget_and_forced_commitment_cadence() -> None:
    det = TerminationDetector()
    assert not det.check_budget(199, 200)
    assert det.check_budget(200, 200)
    assert [i for i in range(1, 31) if is_forced_commitment(i, 10)] == [10, 20, 30]
    assert not is_forced_commitment(0, 10)
