"""Database migration dispatcher.

Routes migration calls to the backend implementation (SQLite or Postgres)
and doubles as a command-line entry point::

    python -m mission_control.db.migrations
"""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import aiosqlite

from mission_control import config
from mission_control.db import sqlite_migrations
from mission_control.db.errors import MigrationChecksumError, MigrationError
from mission_control.models import MigrationResult

logger = logging.getLogger("mission_control.db")

__all__ = ["MigrationChecksumError", "MigrationError", "run_migrations"]


async def run_migrations(db: Any, migrations_dir: Path | str | None = None) -> MigrationResult:
    """Apply pending migrations on the provided store handle."""
    if isinstance(db, aiosqlite.Connection):
        directory = Path(migrations_dir) if migrations_dir else config.MIGRATIONS_ROOT / "sqlite"
        logger.info("Running SQLite migrations from %s", directory)
        result = await sqlite_migrations.run_migrations(db, directory)
    else:
        from mission_control.db import postgres_migrations

        directory = Path(migrations_dir) if migrations_dir else config.MIGRATIONS_ROOT / "postgres"
        logger.info("Running Postgres migrations from %s", directory)
        result = await postgres_migrations.run_migrations(db, directory)

    logger.info("Migrations complete: %d applied, %d skipped", len(result.applied), len(result.skipped))
    return result


async def _main() -> MigrationResult:
    from mission_control.db import connection

    db = await connection.connect()
    try:
        return await run_migrations(db, config.MIGRATIONS_DIR)
    finally:
        await connection.close(db)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    outcome = asyncio.run(_main())
    print(json.dumps(outcome.model_dump(), indent=2))
