"""PostgreSQL repository for raw source snapshots."""
from __future__ import annotations

import asyncpg

from mission_control.db.repositories.common import dump_json, idempotency_key, load_json, make_id


class PostgresSnapshotRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def insert(self, snapshot: dict) -> tuple[str, bool]:
        key = idempotency_key(snapshot["source_type"], snapshot["captured_at"], snapshot["payload_hash"])
        inserted = await self.db.fetchval(
            """INSERT INTO source_snapshots (id, idempotency_key, source_type, captured_at, payload_hash, meta_json, payload_json)
               VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb)
               ON CONFLICT(idempotency_key) DO NOTHING
               RETURNING id""",
            make_id("snapshot"), key, snapshot["source_type"], snapshot["captured_at"],
            snapshot["payload_hash"], dump_json(snapshot.get("meta") or {}),
            dump_json(snapshot.get("payload")),
        )
        if inserted:
            return inserted, True
        existing = await self.db.fetchval("SELECT id FROM source_snapshots WHERE idempotency_key = $1", key)
        return existing, False

    async def latest(self, source_type: str) -> dict | None:
        row = await self.db.fetchrow(
            """SELECT * FROM source_snapshots WHERE source_type = $1
               ORDER BY captured_at DESC, created_at DESC LIMIT 1""",
            source_type,
        )
        if not row:
            return None
        data = dict(row)
        data["meta_json"] = load_json(data.get("meta_json"), {})
        data["payload_json"] = load_json(data.get("payload_json"))
        return data

    async def count(self, source_type: str | None = None) -> int:
        if source_type:
            value = await self.db.fetchval("SELECT COUNT(*) FROM source_snapshots WHERE source_type = $1", source_type)
        else:
            value = await self.db.fetchval("SELECT COUNT(*) FROM source_snapshots")
        return int(value or 0)
