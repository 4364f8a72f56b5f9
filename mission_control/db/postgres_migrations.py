"""Versioned SQL migrations for the PostgreSQL backend."""
from __future__ import annotations

import logging
from pathlib import Path

import asyncpg

from mission_control.db.errors import MigrationChecksumError, MigrationError
from mission_control.db.sqlite_migrations import checksum, migration_files
from mission_control.models import MigrationResult

logger = logging.getLogger("mission_control.db")

_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS _migrations (
    id          SERIAL PRIMARY KEY,
    name        TEXT NOT NULL UNIQUE,
    checksum    TEXT NOT NULL,
    applied_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


async def run_migrations(pool: asyncpg.Pool, migrations_dir: Path) -> MigrationResult:
    result = MigrationResult()

    async with pool.acquire() as conn:
        await conn.execute(_TRACKING_TABLE)

        for path in migration_files(migrations_dir):
            sql = path.read_text(encoding="utf-8")
            digest = checksum(sql)
            recorded = await conn.fetchval("SELECT checksum FROM _migrations WHERE name = $1", path.name)

            if recorded is not None:
                if recorded != digest:
                    raise MigrationChecksumError(path.name)
                result.skipped.append(path.name)
                continue

            logger.info("Applying migration %s", path.name)
            try:
                async with conn.transaction():
                    await conn.execute(sql)
                    await conn.execute(
                        "INSERT INTO _migrations (name, checksum) VALUES ($1, $2)",
                        path.name, digest,
                    )
            except asyncpg.PostgresError as exc:
                raise MigrationError(f"migration {path.name} failed: {exc}") from exc
            result.applied.append(path.name)

    return result
