from __future__ import annotations

import json
import threading
import time
import traceback
from dataclasses import dataclass
from typing import Any

from sleuth.agents.registry import SolverAgent
from sleuth.agents.types import AgentContext
from sleuth.config.load_config import AppConfig, load_app_config
from sleuth.llm.openai_compat import OpenAICompatibleChatClient
from sleuth.loop.engine import RunOutcome
from sleuth.loop.state import LoopState
from sleuth.storage.sqlite_store import SQLiteStore, default_db_path
from sleuth.tools.verifier import VerifierClient


@dataclass(frozen=True)
class WorkerConfig:
    poll_interval_s: float = 0.5


def execute_run(
    store: SQLiteStore,
    *,
    run_id: str,
    config: AppConfig,
    agent: SolverAgent | None = None,
    llm: Any = None,
    verifier: Any = None,
) -> RunOutcome | None:
    """Execute one claimed run and record its outcome.

    Success marks the run `completed`, budget exhaustion marks it `exhausted`;
    any exception (including an unparsable oracle reply) marks it `failed` and is
    recorded as a `run_failed` event plus a `final_output` carrying the reason and
    whatever history the loop had built. Returns None when the run failed or does
    not exist.
    """
    run_row = store.get_run(run_id=run_id)
    if run_row is None:
        # Events reference runs; there is nowhere to record the failure.
        return None

    task = str(run_row["task"])
    snapshot = json.loads(str(run_row["config_json"] or "{}"))
    max_iterations = snapshot.get("max_iterations")
    goal = snapshot.get("goal")

    store.append_event(
        run_id,
        "run_started",
        {"task": task, "max_iterations": max_iterations or config.loop.max_iterations, "goal": goal},
    )

    try:
        llm = llm or OpenAICompatibleChatClient(timeout_s=config.http.timeout_s)
        verifier = verifier or VerifierClient(
            timeout_s=config.http.timeout_s,
            report_path=config.verifier.report_path,
        )
        ctx = AgentContext(store=store, config=config, llm=llm, verifier=verifier, run_id=run_id)
        outcome = (agent or SolverAgent()).run(ctx, task=task, max_iterations=max_iterations, goal=goal)
    except Exception as e:
        store.append_event(run_id, "run_failed", {"error": str(e), "traceback": traceback.format_exc()})
        store.append_event(run_id, "final_output", _failed_output(e))
        store.update_run_status(run_id, "failed", error=str(e))
        return None

    store.append_event(run_id, "final_output", outcome.to_dict())
    if outcome.success:
        store.update_run_status(run_id, "completed")
    else:
        store.update_run_status(run_id, "exhausted", error=outcome.reason)
    return outcome


def _failed_output(e: Exception) -> dict[str, Any]:
    history = getattr(e, "history", None) or []
    return {
        "status": LoopState.TERMINATED_FAILED.value,
        "success": False,
        "iterations": int(getattr(e, "iterations", 0) or 0),
        "answer": None,
        "verifier_reply": "",
        "reason": str(e),
        "history": [{"iteration": h.iteration, "narrative": h.narrative} for h in history],
    }


class RunWorker:
    """Single-threaded background worker that executes queued runs one at a time."""

    def __init__(self, *, db_path: str | None = None, config: WorkerConfig | None = None) -> None:
        self._db_path = db_path or default_db_path()
        self._config = config or WorkerConfig()
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

        self._agent = SolverAgent()
        self._app_config = load_app_config()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "poll_interval_s": float(self._config.poll_interval_s),
            "db_path": self._db_path,
        }

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run_loop, name="sleuth-run-worker", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 5.0) -> None:
        self._stop.set()
        t = self._thread
        if t is None:
            return
        t.join(timeout=timeout_s)

    def _run_loop(self) -> None:
        # sqlite3 connections are bound to their thread; the worker opens its own.
        store = SQLiteStore(self._db_path)
        try:
            while not self._stop.is_set():
                claimed = store.claim_next_queued_run()
                if claimed is None:
                    time.sleep(self._config.poll_interval_s)
                    continue

                run_id = str(claimed["run_id"])
                try:
                    execute_run(store, run_id=run_id, config=self._app_config, agent=self._agent)
                except Exception as e:
                    # Never let one run take the worker loop down.
                    store.append_event(
                        run_id,
                        "run_failed",
                        {"error": f"worker_unhandled_exception: {e}", "traceback": traceback.format_exc()},
                    )
                    store.update_run_status(run_id, "failed", error=str(e))
        finally:
            store.close()
