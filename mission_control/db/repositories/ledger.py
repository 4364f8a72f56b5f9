"""SQLite repositories for the event log and collector liveness state."""
from __future__ import annotations

import aiosqlite

from mission_control.date_utils import now_iso
from mission_control.db.repositories.common import idempotency_key, make_id


class SqliteEventRepository:
    """Append-only warning/audit log with duplicate suppression."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def append(self, event: dict) -> bool:
        key = idempotency_key(event["category"], event["severity"], event["title"], event["ts"])
        cur = await self.db.execute(
            """INSERT INTO events (event_id, idempotency_key, ts, category, severity, title, details, source_ref)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(idempotency_key) DO NOTHING""",
            (
                make_id("event"), key, event["ts"], event["category"], event["severity"],
                event["title"], event.get("details") or "", event.get("sourceRef"),
            ),
        )
        created = cur.rowcount > 0
        await self.db.commit()
        return created

    async def list_recent(self, limit: int = 100, category: str | None = None) -> list[dict]:
        if category:
            query = "SELECT * FROM events WHERE category = ? ORDER BY ts DESC, event_id LIMIT ?"
            params: tuple = (category, limit)
        else:
            query = "SELECT * FROM events ORDER BY ts DESC, event_id LIMIT ?"
            params = (limit,)
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def count(self) -> int:
        async with self.db.execute("SELECT COUNT(*) FROM events") as cur:
            row = await cur.fetchone()
        return int(row[0]) if row else 0


class SqliteCollectorStateRepository:
    """One row per collector task: the scheduler's liveness ledger."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def mark_success(self, collector_name: str, ts: str | None = None) -> None:
        await self.db.execute(
            """INSERT INTO collector_state (collector_name, last_success_at, last_error_at, error_count, stale, last_error)
               VALUES (?, ?, NULL, 0, 0, NULL)
               ON CONFLICT(collector_name) DO UPDATE SET
                 last_success_at=excluded.last_success_at, last_error_at=NULL,
                 error_count=0, stale=0, last_error=NULL""",
            (collector_name, ts or now_iso()),
        )
        await self.db.commit()

    async def mark_failure(self, collector_name: str, error: str, stale: bool, ts: str | None = None) -> None:
        await self.db.execute(
            """INSERT INTO collector_state (collector_name, last_success_at, last_error_at, error_count, stale, last_error)
               VALUES (?, NULL, ?, 1, ?, ?)
               ON CONFLICT(collector_name) DO UPDATE SET
                 last_error_at=excluded.last_error_at,
                 error_count=collector_state.error_count + 1,
                 stale=excluded.stale, last_error=excluded.last_error""",
            (collector_name, ts or now_iso(), 1 if stale else 0, error),
        )
        await self.db.commit()

    async def get(self, collector_name: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM collector_state WHERE collector_name = ?", (collector_name,)
        ) as cur:
            row = await cur.fetchone()
        if not row:
            return None
        data = dict(row)
        data["stale"] = bool(data["stale"])
        return data

    async def list_all(self) -> list[dict]:
        async with self.db.execute("SELECT * FROM collector_state ORDER BY collector_name") as cur:
            rows = [dict(r) for r in await cur.fetchall()]
        for row in rows:
            row["stale"] = bool(row["stale"])
        return rows
