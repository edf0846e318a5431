from __future__ import annotations

import json
import os
import sqlite3
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable


SCHEMA_VERSION = 1

RUN_STATUSES = ("queued", "running", "completed", "exhausted", "failed")
TERMINAL_STATUSES = {"completed", "exhausted", "failed"}


def _utc_ts() -> float:
    return time.time()


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":"))


def default_db_path() -> str:
    return os.getenv("SLEUTH_SQLITE_PATH", "data/app.db")


@dataclass(frozen=True)
class RunRecord:
    run_id: str
    task: str
    created_at: float
    status: str


def _run_item(r: sqlite3.Row) -> dict[str, Any]:
    return {
        "run_id": r["run_id"],
        "task": r["task"],
        "created_at": float(r["created_at"]),
        "started_at": float(r["started_at"]) if r["started_at"] is not None else None,
        "ended_at": float(r["ended_at"]) if r["ended_at"] is not None else None,
        "status": r["status"],
        "error": r["error"],
    }


class SQLiteStore:
    """SQLite-backed store for runs and trace events.

    - Single instance, single worker thread; each thread opens its own store.
    - Run details that vary per task go into `runs.config_json` and `events.payload_json`.
    - The trace is program-recorded and replayable in insertion order.
    """

    def __init__(self, db_path: str | Path | None = None) -> None:
        self.db_path = Path(db_path or default_db_path()).expanduser().resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON;")
        self._conn.execute("PRAGMA journal_mode = WAL;")
        self._conn.execute("PRAGMA synchronous = NORMAL;")

        self._init_schema()

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self, *, mode: str = "IMMEDIATE") -> Iterable[None]:
        self._conn.execute(f"BEGIN {mode};")
        try:
            yield
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS runs (
              run_id TEXT PRIMARY KEY,
              task TEXT NOT NULL,
              created_at REAL NOT NULL,
              started_at REAL,
              ended_at REAL,
              status TEXT NOT NULL,
              config_json TEXT NOT NULL,
              error TEXT
            );
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
              event_id TEXT PRIMARY KEY,
              run_id TEXT NOT NULL,
              created_at REAL NOT NULL,
              event_type TEXT NOT NULL,
              payload_json TEXT NOT NULL,
              FOREIGN KEY (run_id) REFERENCES runs(run_id) ON DELETE CASCADE
            );
            """
        )
        cur.execute("CREATE INDEX IF NOT EXISTS idx_events_run_ts ON events(run_id, created_at);")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_runs_status ON runs(status, created_at);")
        cur.execute(
            "INSERT OR IGNORE INTO meta(key, value) VALUES(?, ?);",
            ("schema_version", str(SCHEMA_VERSION)),
        )
        self._conn.commit()

        current = self._get_schema_version()
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"DB schema_version={current} is newer than code expects ({SCHEMA_VERSION}).")

    def _get_schema_version(self) -> int:
        row = self._conn.execute("SELECT value FROM meta WHERE key = ?;", ("schema_version",)).fetchone()
        if row is None:
            return 0
        try:
            return int(row["value"])
        except (TypeError, ValueError):
            return 0

    # --- Runs
    def create_run(self, *, task: str, config: dict[str, Any] | None = None) -> RunRecord:
        run_id = _new_id("run")
        created_at = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO runs(run_id, task, created_at, status, config_json)
            VALUES(?, ?, ?, ?, ?);
            """,
            (run_id, task, created_at, "queued", _json_dumps(config or {})),
        )
        self._conn.commit()
        return RunRecord(run_id=run_id, task=task, created_at=created_at, status="queued")

    def get_run(self, *, run_id: str) -> sqlite3.Row | None:
        return self._conn.execute(
            """
            SELECT run_id, task, created_at, started_at, ended_at, status, config_json, error
            FROM runs
            WHERE run_id = ?
            LIMIT 1;
            """,
            (run_id,),
        ).fetchone()

    def get_run_item(self, *, run_id: str) -> dict[str, Any] | None:
        row = self.get_run(run_id=run_id)
        if row is None:
            return None
        item = _run_item(row)
        item["config"] = json.loads(str(row["config_json"] or "{}"))
        return item

    def list_runs_page(
        self,
        *,
        limit: int,
        cursor: tuple[float, str] | None,
        statuses: list[str] | None = None,
        task: str | None = None,
    ) -> dict[str, Any]:
        where = ["1=1"]
        params: list[Any] = []

        if task:
            where.append("task = ?")
            params.append(task)

        if statuses:
            where.append("status IN (%s)" % ",".join(["?"] * len(statuses)))
            params.extend(statuses)

        if cursor is not None:
            created_at, run_id = cursor
            where.append("(created_at < ? OR (created_at = ? AND run_id < ?))")
            params.extend([float(created_at), float(created_at), str(run_id)])

        where_sql = " AND ".join(where)
        fetch_n = int(limit) + 1

        rows = self._conn.execute(
            f"""
            SELECT run_id, task, created_at, started_at, ended_at, status, error
            FROM runs
            WHERE {where_sql}
            ORDER BY created_at DESC, run_id DESC
            LIMIT ?;
            """,
            (*params, fetch_n),
        ).fetchall()

        has_more = len(rows) > limit
        if has_more:
            rows = rows[:limit]

        items = [_run_item(r) for r in rows]

        next_cursor: tuple[float, str] | None = None
        if has_more and items:
            last = items[-1]
            next_cursor = (float(last["created_at"]), str(last["run_id"]))

        return {"items": items, "has_more": has_more, "next_cursor": next_cursor}

    def count_runs_by_status(self) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT status, COUNT(*) AS n FROM runs GROUP BY status ORDER BY status;",
        ).fetchall()
        return {str(r["status"]): int(r["n"]) for r in rows}

    def update_run_status(self, run_id: str, status: str, *, error: str | None = None) -> None:
        if status not in RUN_STATUSES:
            raise ValueError(f"Unknown run status: {status!r}")
        ts = _utc_ts()
        started_at = ts if status == "running" else None
        ended_at = ts if status in TERMINAL_STATUSES else None

        self._conn.execute(
            """
            UPDATE runs
            SET
              status = ?,
              started_at = COALESCE(started_at, ?),
              ended_at = COALESCE(ended_at, ?),
              error = COALESCE(?, error)
            WHERE run_id = ?;
            """,
            (status, started_at, ended_at, error, run_id),
        )
        self._conn.commit()

    def reconcile_running_runs(self, *, reason: str = "server_restarted") -> int:
        """Mark any 'running' runs as failed.

        A run has no checkpoint to resume from, so a process restart ends it.
        Returns the number of runs reconciled.
        """
        ts = _utc_ts()
        rows = self._conn.execute("SELECT run_id FROM runs WHERE status = 'running';").fetchall()
        if not rows:
            return 0

        run_ids = [r["run_id"] for r in rows]
        for run_id in run_ids:
            self._conn.execute(
                """
                UPDATE runs
                SET
                  status = 'failed',
                  ended_at = COALESCE(ended_at, ?),
                  error = COALESCE(error, ?)
                WHERE run_id = ? AND status = 'running';
                """,
                (ts, reason, run_id),
            )
            self._conn.execute(
                """
                INSERT INTO events(event_id, run_id, created_at, event_type, payload_json)
                VALUES(?, ?, ?, ?, ?);
                """,
                (_new_id("evt"), run_id, ts, "run_failed", _json_dumps({"error": reason})),
            )

        self._conn.commit()
        return len(run_ids)

    def claim_next_queued_run(self) -> sqlite3.Row | None:
        """Atomically claim the oldest queued run and mark it as running."""
        with self.transaction(mode="IMMEDIATE"):
            row = self._conn.execute(
                """
                SELECT run_id
                FROM runs
                WHERE status = 'queued'
                ORDER BY created_at ASC, run_id ASC
                LIMIT 1;
                """
            ).fetchone()
            if row is None:
                return None

            run_id = str(row["run_id"])
            updated = self._conn.execute(
                """
                UPDATE runs
                SET
                  status = 'running',
                  started_at = COALESCE(started_at, ?)
                WHERE run_id = ? AND status = 'queued';
                """,
                (_utc_ts(), run_id),
            )
            if updated.rowcount != 1:
                return None
            return self.get_run(run_id=run_id)

    # --- Events (trace)
    def append_event(self, run_id: str, event_type: str, payload: dict[str, Any]) -> str:
        event_id = _new_id("evt")
        created_at = _utc_ts()
        self._conn.execute(
            """
            INSERT INTO events(event_id, run_id, created_at, event_type, payload_json)
            VALUES(?, ?, ?, ?, ?);
            """,
            (event_id, run_id, created_at, event_type, _json_dumps(payload)),
        )
        self._conn.commit()
        return event_id

    def iter_events(self, run_id: str) -> Iterable[dict[str, Any]]:
        rows = self._conn.execute(
            "SELECT created_at, event_type, payload_json FROM events WHERE run_id = ? ORDER BY created_at, rowid;",
            (run_id,),
        )
        for r in rows:
            yield {
                "created_at": float(r["created_at"]),
                "event_type": r["event_type"],
                "payload": json.loads(r["payload_json"]),
            }

    def get_latest_event(self, *, run_id: str, event_type: str) -> sqlite3.Row | None:
        return self._conn.execute(
            """
            SELECT event_id, run_id, created_at, event_type, payload_json
            FROM events
            WHERE run_id = ? AND event_type = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1;
            """,
            (run_id, event_type),
        ).fetchone()

    def list_events_page(
        self,
        *,
        run_id: str,
        limit: int,
        cursor: tuple[float, str] | None,
        event_types: list[str] | None,
        include_payload: bool,
    ) -> dict[str, Any]:
        # Insertion order within a timestamp (rowid); the cursor names the last event and is exclusive.
        where = ["run_id = ?"]
        params: list[Any] = [run_id]

        if event_types:
            where.append("event_type IN (%s)" % ",".join(["?"] * len(event_types)))
            params.extend(event_types)

        if cursor is not None:
            created_at, event_id = cursor
            where.append(
                "(created_at > ? OR (created_at = ? AND rowid > (SELECT rowid FROM events WHERE event_id = ?)))"
            )
            params.extend([float(created_at), float(created_at), str(event_id)])

        where_sql = " AND ".join(where)
        fetch_n = int(limit) + 1
        columns = "event_id, run_id, created_at, event_type" + (", payload_json" if include_payload else "")
        rows = self._conn.execute(
            f"SELECT {columns} FROM events WHERE {where_sql} ORDER BY created_at ASC, rowid ASC LIMIT ?",
            (*params, fetch_n),
        ).fetchall()

        has_more = len(rows) > limit
        if has_more:
            rows = rows[:limit]

        items: list[dict[str, Any]] = []
        for r in rows:
            item: dict[str, Any] = {
                "event_id": r["event_id"],
                "run_id": r["run_id"],
                "created_at": float(r["created_at"]),
                "event_type": r["event_type"],
            }
            if include_payload:
                item["payload"] = json.loads(r["payload_json"])
            items.append(item)

        next_cursor: tuple[float, str] | None = None
        if has_more and items:
            last = items[-1]
            next_cursor = (float(last["created_at"]), str(last["event_id"]))

        return {"items": items, "has_more": has_more, "next_cursor": next_cursor}
