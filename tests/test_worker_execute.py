from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any

import pytest

from sleuth.config.load_config import AppConfig, load_app_config
from sleuth.loop.engine import RunOutcome
from sleuth.loop.errors import OracleParseError
from sleuth.loop.knowledge import HistoryEntry
from sleuth.loop.state import LoopState
from sleuth.runtime.worker import execute_run
from sleuth.storage.sqlite_store import SQLiteStore


DEFAULT_CONFIG = Path(__file__).resolve().parents[1] / "config" / "default.toml"


class _FakeAgent:
    def __init__(self, outcome: RunOutcome | None = None, error: Exception | None = None) -> None:
        self.outcome = outcome
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def run(self, ctx: Any, *, task: str, max_iterations: int | None = None, goal: str | None = None) -> RunOutcome:
        self.calls.append({"task": task, "max_iterations": max_iterations, "goal": goal})
        ctx.trace("loop_started", {"task": task})
        if self.error is not None:
            raise self.error
        assert self.outcome is not None
        return self.outcome


@pytest.fixture()
def config() -> AppConfig:
    return load_app_config(DEFAULT_CONFIG)


def _execute(store: SQLiteStore, config: AppConfig, agent: _FakeAgent, **run_config: Any) -> str:
    run = store.create_run(task="graph", config=run_config)
    store.update_run_status(run.run_id, "running")
    execute_run(store, run_id=run.run_id, config=config, agent=agent, llm=object(), verifier=object())
    return run.run_id


def _event_types(store: SQLiteStore, run_id: str) -> list[str]:
    return [e["event_type"] for e in store.iter_events(run_id)]


def test_success_marks_run_completed(config: AppConfig) -> None:
    outcome = RunOutcome(
        status=LoopState.TERMINATED_SUCCESS,
        iterations=3,
        history=[HistoryEntry(iteration=3, narrative="Attempting answer ELBLAG: {{FLG:FOUND}}")],
        answer="ELBLAG",
        verifier_reply="{{FLG:FOUND}}",
    )
    agent = _FakeAgent(outcome=outcome)
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            run_id = _execute(store, config, agent, max_iterations=3, goal="Find Barbara")
            row = store.get_run(run_id=run_id)
            assert row is not None and row["status"] == "completed"
            assert _event_types(store, run_id) == ["run_started", "loop_started", "final_output"]
            final = list(store.iter_events(run_id))[-1]["payload"]
            assert final["answer"] == "ELBLAG"
            assert final["history"] == [{"iteration": 3, "narrative": "Attempting answer ELBLAG: {{FLG:FOUND}}"}]
        finally:
            store.close()

    assert agent.calls == [{"task": "graph", "max_iterations": 3, "goal": "Find Barbara"}]


def test_budget_exhaustion_marks_run_exhausted(config: AppConfig) -> None:
    outcome = RunOutcome(
        status=LoopState.TERMINATED_BUDGET_EXHAUSTED,
        iterations=2,
        reason="No success after 2 iterations.",
    )
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            run_id = _execute(store, config, _FakeAgent(outcome=outcome))
            row = store.get_run(run_id=run_id)
            assert row is not None
            assert row["status"] == "exhausted"
            assert row["error"] == "No success after 2 iterations."
        finally:
            store.close()


def test_oracle_parse_error_marks_run_failed(config: AppConfig) -> None:
    error = OracleParseError("no JSON object in reply")
    error.history = [HistoryEntry(iteration=1, narrative="Analysis - step 1")]
    error.iterations = 2
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            run_id = _execute(store, config, _FakeAgent(error=error))
            row = store.get_run(run_id=run_id)
            assert row is not None
            assert row["status"] == "failed"
            assert "no JSON object" in row["error"]
            assert _event_types(store, run_id)[-2:] == ["run_failed", "final_output"]
            final = list(store.iter_events(run_id))[-1]["payload"]
            assert final["status"] == "terminated_failed"
            assert final["success"] is False
            assert final["iterations"] == 2
            assert final["reason"] == "no JSON object in reply"
            assert final["history"] == [{"iteration": 1, "narrative": "Analysis - step 1"}]
        finally:
            store.close()


def test_unexpected_error_still_records_a_failed_output(config: AppConfig) -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            run_id = _execute(store, config, _FakeAgent(error=KeyError("places")))
            final = list(store.iter_events(run_id))[-1]["payload"]
            assert final["status"] == "terminated_failed"
            assert final["iterations"] == 0
            assert final["history"] == []
        finally:
            store.close()


def test_missing_run_records_failure(config: AppConfig) -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            assert execute_run(store, run_id="run_missing", config=config, agent=_FakeAgent()) is None
        finally:
            store.close()
