"""Versioned SQL migrations for the SQLite backend.

Each ``*.sql`` file is applied at most once, inside its own transaction,
and recorded in ``_migrations`` with a SHA-256 checksum of its text.
"""
from __future__ import annotations

import hashlib
import logging
from pathlib import Path

import aiosqlite

from mission_control.db.errors import MigrationChecksumError, MigrationError
from mission_control.models import MigrationResult

logger = logging.getLogger("mission_control.db")

_TRACKING_TABLE = """
CREATE TABLE IF NOT EXISTS _migrations (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT NOT NULL UNIQUE,
    checksum    TEXT NOT NULL,
    applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
"""


def checksum(sql: str) -> str:
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


def migration_files(migrations_dir: Path) -> list[Path]:
    return sorted((p for p in migrations_dir.glob("*.sql") if p.is_file()), key=lambda p: p.name)


async def _recorded_checksum(db: aiosqlite.Connection, name: str) -> str | None:
    async with db.execute("SELECT checksum FROM _migrations WHERE name = ?", (name,)) as cur:
        row = await cur.fetchone()
    return row[0] if row else None


async def run_migrations(db: aiosqlite.Connection, migrations_dir: Path) -> MigrationResult:
    await db.executescript(_TRACKING_TABLE)
    result = MigrationResult()

    for path in migration_files(migrations_dir):
        sql = path.read_text(encoding="utf-8")
        digest = checksum(sql)
        recorded = await _recorded_checksum(db, path.name)

        if recorded is not None:
            if recorded != digest:
                raise MigrationChecksumError(path.name)
            result.skipped.append(path.name)
            continue

        logger.info("Applying migration %s", path.name)
        try:
            # executescript commits any pending transaction first, so the
            # explicit BEGIN keeps the file and its tracking row atomic.
            await db.executescript("BEGIN;\n" + sql)
            await db.execute(
                "INSERT INTO _migrations (name, checksum) VALUES (?, ?)",
                (path.name, digest),
            )
            await db.commit()
        except Exception as exc:
            await db.rollback()
            raise MigrationError(f"migration {path.name} failed: {exc}") from exc
        result.applied.append(path.name)

    return result
