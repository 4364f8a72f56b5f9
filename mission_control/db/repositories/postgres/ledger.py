from __future__ import annotations

import asyncpg

from mission_control.date_utils import now_iso
from mission_control.db.repositories.common import idempotency_key, make_id


class PostgresEventRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def append(self, event: dict) -> bool:
        key = idempotency_key(event["category"], event["severity"], event["title"], event["ts"])
        inserted = await self.db.fetchval(
            """INSERT INTO events (event_id, idempotency_key, ts, category, severity, title, details, source_ref)
               VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
               ON CONFLICT(idempotency_key) DO NOTHING
               RETURNING event_id""",
            make_id("event"), key, event["ts"], event["category"], event["severity"],
            event["title"], event.get("details") or "", event.get("sourceRef"),
        )
        return inserted is not None

    async def list_recent(self, limit: int = 100, category: str | None = None) -> list[dict]:
        if category:
            rows = await self.db.fetch(
                "SELECT * FROM events WHERE category = $1 ORDER BY ts DESC, event_id LIMIT $2",
                category, limit,
            )
        else:
            rows = await self.db.fetch("SELECT * FROM events ORDER BY ts DESC, event_id LIMIT $1", limit)
        return [dict(r) for r in rows]

    async def count(self) -> int:
        return int(await self.db.fetchval("SELECT COUNT(*) FROM events") or 0)


class PostgresCollectorStateRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def mark_success(self, collector_name: str, ts: str | None = None) -> None:
        await self.db.execute(
            """INSERT INTO collector_state (collector_name, last_success_at, last_error_at, error_count, stale, last_error)
               VALUES ($1, $2, NULL, 0, FALSE, NULL)
               ON CONFLICT(collector_name) DO UPDATE SET
                 last_success_at=EXCLUDED.last_success_at, last_error_at=NULL,
                 error_count=0, stale=FALSE, last_error=NULL""",
            collector_name, ts or now_iso(),
        )

    async def mark_failure(self, collector_name: str, error: str, stale: bool, ts: str | None = None) -> None:
        await self.db.execute(
            """INSERT INTO collector_state (collector_name, last_success_at, last_error_at, error_count, stale, last_error)
               VALUES ($1, NULL, $2, 1, $3, $4)
               ON CONFLICT(collector_name) DO UPDATE SET
                 last_error_at=EXCLUDED.last_error_at,
                 error_count=collector_state.error_count + 1,
                 stale=EXCLUDED.stale, last_error=EXCLUDED.last_error""",
            collector_name, ts or now_iso(), bool(stale), error,
        )

    async def get(self, collector_name: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM collector_state WHERE collector_name = $1", collector_name)
        return dict(row) if row else None

    async def list_all(self) -> list[dict]:
        rows = await self.db.fetch("SELECT * FROM collector_state ORDER BY collector_name")
        return [dict(r) for r in rows]
