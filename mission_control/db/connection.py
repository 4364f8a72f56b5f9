"""Store handle lifecycle.

Opens an async SQLite connection (default, WAL mode) or an asyncpg pool
when ``MC_DB_BACKEND=postgres``. The caller owns the handle and passes it
to every component; nothing here is cached at module level.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Union

import aiosqlite

from mission_control import config

logger = logging.getLogger("mission_control.db")

# Any covers asyncpg.Pool without importing it for SQLite-only installs.
DbConnection = Union[aiosqlite.Connection, Any]


async def connect_sqlite(path: Path | str) -> aiosqlite.Connection:
    if str(path) != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(path))
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.info("Database connection established: %s", path)
    return conn


async def connect() -> DbConnection:
    """Open the store handle for the configured backend."""
    if config.DB_BACKEND == "postgres":
        import asyncpg

        logger.info("Connecting to PostgreSQL")
        return await asyncpg.create_pool(config.DATABASE_URL)
    return await connect_sqlite(config.DB_PATH)


async def close(db: DbConnection | None) -> None:
    if db is None:
        return
    await db.close()
    logger.info("Database connection closed")
