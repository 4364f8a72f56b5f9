from __future__ import annotations

import asyncpg

from mission_control.db.repositories.common import dump_json, load_json, make_id
from mission_control.db.repositories.health import sample_key


class PostgresHealthRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def insert_sample(
        self,
        status: str,
        errors: list[str],
        raw: str,
        ts: str,
        stale: bool = False,
        snapshot_id: str | None = None,
    ) -> bool:
        inserted = await self.db.fetchval(
            """INSERT INTO health_samples (sample_id, idempotency_key, ts, gateway_status, raw, errors_json, stale, source_snapshot_id)
               VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8)
               ON CONFLICT(idempotency_key) DO NOTHING
               RETURNING sample_id""",
            make_id("health"), sample_key(status, raw, ts), ts, status, raw or "",
            dump_json(list(errors)), bool(stale), snapshot_id,
        )
        return inserted is not None

    async def latest(self) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM health_samples ORDER BY ts DESC LIMIT 1")
        if not row:
            return None
        data = dict(row)
        data["errors_json"] = load_json(data.get("errors_json"), [])
        return data
