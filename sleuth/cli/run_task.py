from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from sleuth.agents.registry import TASKS, SolverAgent
from sleuth.config.load_config import default_config_path, load_app_config
from sleuth.runtime.worker import execute_run
from sleuth.storage.sqlite_store import SQLiteStore


EXIT_SUCCESS = 0
EXIT_FAILED = 1
EXIT_EXHAUSTED = 2


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one Sleuth task synchronously.")
    parser.add_argument("--task", required=True, choices=list(TASKS), help="Task to solve.")
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=0,
        help="Step budget (default: loop.max_iterations from config).",
    )
    parser.add_argument("--goal", default="", help="Override the task's configured goal text.")
    parser.add_argument(
        "--db-path",
        default="",
        help="SQLite path (default: env SLEUTH_SQLITE_PATH or data/app.db).",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    if args.max_iterations < 0:
        raise SystemExit(f"max_iterations must be >= 1, got {args.max_iterations}")

    app_config = load_app_config()
    store = SQLiteStore(args.db_path or None)
    try:
        config_snapshot: dict[str, Any] = {"config_path": str(default_config_path())}
        if args.max_iterations:
            config_snapshot["max_iterations"] = int(args.max_iterations)
        if args.goal.strip():
            config_snapshot["goal"] = args.goal.strip()

        run = store.create_run(task=args.task, config=config_snapshot)
        store.update_run_status(run.run_id, "running")
        outcome = execute_run(store, run_id=run.run_id, config=app_config, agent=SolverAgent())

        if outcome is None:
            row = store.get_latest_event(run_id=run.run_id, event_type="final_output")
            failure = json.loads(row["payload_json"]) if row is not None else {"status": "failed"}
            print(json.dumps({"run_id": run.run_id, **failure}, ensure_ascii=False, indent=2))
            return EXIT_FAILED

        print(json.dumps({"run_id": run.run_id, **outcome.to_dict()}, ensure_ascii=False, indent=2))
        return EXIT_SUCCESS if outcome.success else EXIT_EXHAUSTED
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
