"""SQLite repository for raw source snapshots."""
from __future__ import annotations

import aiosqlite

from mission_control.db.repositories.common import dump_json, idempotency_key, load_json, make_id


class SqliteSnapshotRepository:
    """Append-only snapshot log, deduplicated by (sourceType, capturedAt, payloadHash)."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def insert(self, snapshot: dict) -> tuple[str, bool]:
        """Insert a snapshot row. Returns ``(snapshot_id, created)``."""
        key = idempotency_key(snapshot["source_type"], snapshot["captured_at"], snapshot["payload_hash"])
        cur = await self.db.execute(
            """INSERT INTO source_snapshots (id, idempotency_key, source_type, captured_at, payload_hash, meta_json, payload_json)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(idempotency_key) DO NOTHING""",
            (
                make_id("snapshot"), key, snapshot["source_type"], snapshot["captured_at"],
                snapshot["payload_hash"], dump_json(snapshot.get("meta") or {}),
                dump_json(snapshot.get("payload")),
            ),
        )
        created = cur.rowcount > 0
        await self.db.commit()
        async with self.db.execute(
            "SELECT id FROM source_snapshots WHERE idempotency_key = ?", (key,)
        ) as cur:
            row = await cur.fetchone()
        return row[0], created

    async def latest(self, source_type: str) -> dict | None:
        async with self.db.execute(
            """SELECT * FROM source_snapshots WHERE source_type = ?
               ORDER BY captured_at DESC, created_at DESC LIMIT 1""",
            (source_type,),
        ) as cur:
            row = await cur.fetchone()
        if not row:
            return None
        data = dict(row)
        data["meta_json"] = load_json(data.get("meta_json"), {})
        data["payload_json"] = load_json(data.get("payload_json"))
        return data

    async def count(self, source_type: str | None = None) -> int:
        if source_type:
            query, params = "SELECT COUNT(*) FROM source_snapshots WHERE source_type = ?", (source_type,)
        else:
            query, params = "SELECT COUNT(*) FROM source_snapshots", ()
        async with self.db.execute(query, params) as cur:
            row = await cur.fetchone()
        return int(row[0]) if row else 0
