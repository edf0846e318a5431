from __future__ import annotations

import json
from typing import Any, Literal

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from sleuth.api.errors import APIError
from sleuth.api.pagination import next_cursor_param, parse_cursor_param
from sleuth.storage.sqlite_store import SQLiteStore


router = APIRouter()


class CreateRunRequest(BaseModel):
    task: Literal["graph", "images", "crawl"]
    max_iterations: int | None = Field(default=None, ge=1, le=1000)
    goal: str | None = Field(default=None, description="Overrides the task's configured goal text.")


@router.post("/runs", status_code=201)
def create_run(body: CreateRunRequest) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        config: dict[str, Any] = {}
        if body.max_iterations is not None:
            config["max_iterations"] = int(body.max_iterations)
        if body.goal and body.goal.strip():
            config["goal"] = body.goal.strip()
        rec = store.create_run(task=body.task, config=config)
        return {"run": store.get_run_item(run_id=rec.run_id)}
    finally:
        store.close()


@router.get("/runs")
def list_runs(
    task: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    cursor: str | None = Query(default=None),
    status: list[str] | None = Query(default=None),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        page = store.list_runs_page(
            task=(task.strip() if task else None),
            limit=int(limit),
            cursor=parse_cursor_param(cursor),
            statuses=status or None,
        )
        page["next_cursor"] = next_cursor_param(page.get("next_cursor"))
        return page
    finally:
        store.close()


@router.get("/runs/{run_id}")
def get_run(run_id: str) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        item = store.get_run_item(run_id=run_id)
        if item is None:
            raise APIError(status_code=404, code="not_found", message="Run not found.")
        return {"run": item}
    finally:
        store.close()


@router.get("/runs/{run_id}/output")
def get_run_output(run_id: str) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        row = store.get_latest_event(run_id=run_id, event_type="final_output")
        if row is None:
            raise APIError(status_code=404, code="not_found", message="Run output not found.")
        payload = json.loads(row["payload_json"])
        return {
            "status": payload.get("status"),
            "success": bool(payload.get("success")),
            "iterations": payload.get("iterations"),
            "answer": payload.get("answer"),
            "verifier_reply": payload.get("verifier_reply") or "",
            "reason": payload.get("reason"),
            "history": payload.get("history") or [],
        }
    finally:
        store.close()


@router.get("/runs/{run_id}/events")
def list_run_events(
    run_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    cursor: str | None = Query(default=None),
    event_type: list[str] | None = Query(default=None),
    include_payload: bool = Query(default=False),
) -> dict[str, Any]:
    store = SQLiteStore()
    try:
        if store.get_run(run_id=run_id) is None:
            raise APIError(status_code=404, code="not_found", message="Run not found.")

        page = store.list_events_page(
            run_id=run_id,
            limit=int(limit),
            cursor=parse_cursor_param(cursor),
            event_types=event_type or None,
            include_payload=bool(include_payload),
        )
        page["next_cursor"] = next_cursor_param(page.get("next_cursor"))
        return page
    finally:
        store.close()
