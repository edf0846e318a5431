from __future__ import annotations

import json
import sqlite3
import tempfile

import pytest

from sleuth.storage.sqlite_store import SCHEMA_VERSION, SQLiteStore


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name = ? LIMIT 1;",
        (name,),
    ).fetchone()
    return row is not None


def test_reconcile_running_runs_marks_failed_and_records_event() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = f"{td}/app.db"
        store = SQLiteStore(db_path)
        try:
            run = store.create_run(task="graph", config={"max_iterations": 5})
            store.update_run_status(run.run_id, "running")

            reconciled = store.reconcile_running_runs(reason="server_restarted")
            assert reconciled == 1

            run_row = store.get_run(run_id=run.run_id)
            assert run_row is not None
            assert run_row["status"] == "failed"
            assert run_row["error"] == "server_restarted"

            evt = store.get_latest_event(run_id=run.run_id, event_type="run_failed")
            assert evt is not None
            payload = json.loads(evt["payload_json"])
            assert payload["error"] == "server_restarted"
        finally:
            store.close()


def test_schema_has_runs_events_and_version() -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            assert _table_exists(store._conn, "runs")
            assert _table_exists(store._conn, "events")
            assert store._get_schema_version() == SCHEMA_VERSION
        finally:
            store.close()


def test_claim_next_queued_run_is_fifo_and_exclusive() -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            first = store.create_run(task="graph")
            second = store.create_run(task="crawl")

            claimed = store.claim_next_queued_run()
            assert claimed is not None and claimed["run_id"] == first.run_id
            claimed = store.claim_next_queued_run()
            assert claimed is not None and claimed["run_id"] == second.run_id
            assert store.claim_next_queued_run() is None
            assert store.count_runs_by_status() == {"running": 2}
        finally:
            store.close()


def test_update_run_status_rejects_unknown_status() -> None:
    with tempfile.TemporaryDirectory() as td:
        store = SQLiteStore(f"{td}/app.db")
        try:
            run = store.create_run(task="images")
            with pytest.raises(ValueError):
                store.update_run_status(run.run_id, "canceled")
            store.update_run_status(run.run_id, "exhausted", error="No success after 3 iterations.")
            item = store.get_run_item(run_id=run.run_id)
            assert item is not None
            assert item["status"] == "exhausted"
            assert item["ended_at"] is not None
            assert item["config"] == {}
        finally:
            store.close()


def test_event_pages_keep_insertion_order_within_a_timestamp() -> None:
    with tempfile.TemporaryDirectory() as td:
        db_path = f"{td}/app.db"
        store = SQLiteStore(db_path)
        try:
            run = store.create_run(task="graph", config={})
            for i in range(3):
                store.append_event(run.run_id, "loop_iteration", {"iteration": i + 1})

            # Same timestamp, with ids that sort opposite to insertion.
            conn = sqlite3.connect(db_path)
            try:
                rowids = [r[0] for r in conn.execute("SELECT rowid FROM events ORDER BY rowid;")]
                for n, rowid in enumerate(rowids):
                    conn.execute(
                        "UPDATE events SET created_at = 1000.0, event_id = ? WHERE rowid = ?;",
                        (f"evt_{9 - n}", rowid),
                    )
                conn.commit()
            finally:
                conn.close()

            seen: list[int] = []
            cursor = None
            while True:
                page = store.list_events_page(
                    run_id=run.run_id, limit=1, cursor=cursor, event_types=None, include_payload=True
                )
                seen.extend(item["payload"]["iteration"] for item in page["items"])
                if not page["has_more"]:
                    break
                cursor = page["next_cursor"]
            assert seen == [1, 2, 3]
        finally:
            store.close()
