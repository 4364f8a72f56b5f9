"""Mission Control collector: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from mission_control import config
from mission_control.collectors.scheduler import CollectorContext, CollectorScheduler, RetryPolicy
from mission_control.collectors.tasks import TRANSCRIPTS_COLLECTOR, build_collectors
from mission_control.db import connection, migrations
from mission_control.db.file_watcher import FileWatcher
from mission_control.observability import initialize as initialize_observability, shutdown as shutdown_observability
from mission_control.routers.api import api_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("mission_control")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Mission Control collector starting up")
    initialize_observability(app)

    # 1. Open the store
    db = await connection.connect()
    app.state.db = db

    # 2. Run migrations. A failure here aborts startup.
    try:
        await migrations.run_migrations(db, config.MIGRATIONS_DIR)
    except migrations.MigrationError:
        logger.exception("Migrations failed, refusing to start")
        await connection.close(db)
        raise

    # 3. Start collectors
    scheduler = CollectorScheduler(
        CollectorContext(db=db),
        build_collectors(),
        RetryPolicy.from_settings(config.scheduler_settings()),
    )
    app.state.scheduler = scheduler
    scheduler.start()

    # 4. Optional transcript watcher
    watcher = FileWatcher()
    app.state.watcher = watcher
    if config.TRANSCRIPT_WATCH_ENABLED:
        await watcher.start(scheduler, TRANSCRIPTS_COLLECTOR, config.AGENTS_ROOT)

    yield

    logger.info("Mission Control collector shutting down")
    await watcher.stop()
    await scheduler.stop()
    shutdown_observability(app)
    await connection.close(db)
    app.state.db = None


app = FastAPI(
    title="Mission Control API",
    description="Read-only API over the Mission Control collector record",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(api_router)


@app.get("/api/status")
def status():
    """Process liveness."""
    return {
        "status": "ok",
        "db": "connected" if getattr(app.state, "db", None) is not None else "disconnected",
        "watcher": "running" if getattr(app.state, "watcher", None) and app.state.watcher.is_running else "stopped",
    }


def run() -> None:
    import uvicorn

    uvicorn.run("mission_control.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
