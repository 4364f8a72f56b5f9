"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any

import aiosqlite

from mission_control.db.repositories import (
    SqliteCollectorStateRepository,
    SqliteCronRepository,
    SqliteEventRepository,
    SqliteHealthRepository,
    SqliteMemoryDocRepository,
    SqliteSessionRepository,
    SqliteSnapshotRepository,
    SqliteTranscriptRepository,
)


def get_snapshot_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteSnapshotRepository(db)
    from mission_control.db.repositories.postgres.snapshots import PostgresSnapshotRepository
    return PostgresSnapshotRepository(db)


def get_session_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteSessionRepository(db)
    from mission_control.db.repositories.postgres.sessions import PostgresSessionRepository
    return PostgresSessionRepository(db)


def get_cron_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteCronRepository(db)
    from mission_control.db.repositories.postgres.cron import PostgresCronRepository
    return PostgresCronRepository(db)


def get_memory_doc_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteMemoryDocRepository(db)
    from mission_control.db.repositories.postgres.memory import PostgresMemoryDocRepository
    return PostgresMemoryDocRepository(db)


def get_health_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteHealthRepository(db)
    from mission_control.db.repositories.postgres.health import PostgresHealthRepository
    return PostgresHealthRepository(db)


def get_event_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteEventRepository(db)
    from mission_control.db.repositories.postgres.ledger import PostgresEventRepository
    return PostgresEventRepository(db)


def get_collector_state_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteCollectorStateRepository(db)
    from mission_control.db.repositories.postgres.ledger import PostgresCollectorStateRepository
    return PostgresCollectorStateRepository(db)


def get_transcript_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteTranscriptRepository(db)
    from mission_control.db.repositories.postgres.transcripts import PostgresTranscriptRepository
    return PostgresTranscriptRepository(db)
