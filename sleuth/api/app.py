from __future__ import annotations

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sleuth.api.errors import install_error_handlers
from sleuth.runtime.worker import RunWorker
from sleuth.storage.sqlite_store import SQLiteStore

from .routers.health import router as health_router
from .routers.runs import router as runs_router


def _cors_origins_from_env() -> list[str]:
    raw = os.getenv("SLEUTH_CORS_ORIGINS", "").strip()
    if not raw:
        return ["http://localhost:3000", "http://127.0.0.1:3000"]
    return [o.strip() for o in raw.split(",") if o.strip()]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"1", "true", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "no", "n", "off"}:
        return False
    return default


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ANN202
        # Runs left 'running' by a previous process cannot resume.
        store = SQLiteStore()
        try:
            app.state.reconciled_running_runs = int(store.reconcile_running_runs())
        finally:
            store.close()

        if _env_bool("SLEUTH_ENABLE_WORKER", True):
            worker = RunWorker()
            worker.start()
            app.state.run_worker = worker
        try:
            yield
        finally:
            worker = getattr(app.state, "run_worker", None)
            if worker is not None:
                worker.stop()

    app = FastAPI(title="Sleuth Agent API", version="0.1.0", lifespan=lifespan)

    install_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins_from_env(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api/v1", tags=["system"])
    app.include_router(runs_router, prefix="/api/v1", tags=["runs"])
    return app


app = create_app()
