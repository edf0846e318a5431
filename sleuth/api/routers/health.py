from __future__ import annotations

import importlib.metadata
import time
from typing import Any

from fastapi import APIRouter, Request

from sleuth.agents.registry import TASKS
from sleuth.api.errors import APIError
from sleuth.config.load_config import ConfigError, load_app_config
from sleuth.storage.sqlite_store import RUN_STATUSES, SCHEMA_VERSION, SQLiteStore


router = APIRouter()

_REPORTED_DEPS = ("fastapi", "uvicorn", "openai", "beautifulsoup4")


def _pkg_version(name: str) -> str | None:
    try:
        return str(importlib.metadata.version(name))
    except importlib.metadata.PackageNotFoundError:
        return None


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/version")
def version() -> dict[str, Any]:
    return {
        "service": "sleuth-agent",
        "api": "v1",
        "schema_version": int(SCHEMA_VERSION),
        "deps": {name: _pkg_version(name) for name in _REPORTED_DEPS},
        "ts": time.time(),
    }


@router.get("/system/tasks")
def system_tasks() -> dict[str, Any]:
    """Tasks a run can be created for, with the goal each one pursues by default."""
    try:
        cfg = load_app_config()
    except ConfigError as e:
        raise APIError(status_code=503, code="unavailable", message=str(e)) from e

    tasks = cfg.tasks
    return {
        "tasks": [
            {"task": name, "verifier_task": getattr(tasks, name).task_name, "goal": getattr(tasks, name).goal}
            for name in TASKS
        ],
        "loop": {
            "max_iterations": cfg.loop.max_iterations,
            "forced_commitment_every": cfg.loop.forced_commitment_every,
        },
    }


@router.get("/system/worker")
def system_worker(request: Request) -> dict[str, Any]:
    worker = getattr(request.app.state, "run_worker", None)
    worker_snapshot: dict[str, Any] = {"enabled": worker is not None, "running": False}
    if worker is not None:
        worker_snapshot.update(worker.status_snapshot())

    store = SQLiteStore()
    try:
        counts = store.count_runs_by_status()
    finally:
        store.close()
    return {
        "ts": time.time(),
        "worker": worker_snapshot,
        "queue": {"runs_by_status": {s: counts.get(s, 0) for s in RUN_STATUSES}},
        "startup": {"reconciled_running_runs": getattr(request.app.state, "reconciled_running_runs", 0)},
    }
