"""SQLite repository for gateway health samples."""
from __future__ import annotations

import hashlib

import aiosqlite

from mission_control.db.repositories.common import dump_json, idempotency_key, load_json, make_id


def sample_key(status: str, raw: str, ts: str) -> str:
    """Samples with the same status and output collapse within one second."""
    digest = hashlib.sha1((raw or "").encode("utf-8")).hexdigest()[:12]
    return idempotency_key(status, digest, ts[:19])


class SqliteHealthRepository:
    def __init__(self, db: aiosqlite.Connection):
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
        cur = await self.db.execute(
            """INSERT INTO health_samples (sample_id, idempotency_key, ts, gateway_status, raw, errors_json, stale, source_snapshot_id)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(idempotency_key) DO NOTHING""",
            (
                make_id("health"), sample_key(status, raw, ts), ts, status, raw or "",
                dump_json(list(errors)), 1 if stale else 0, snapshot_id,
            ),
        )
        created = cur.rowcount > 0
        await self.db.commit()
        return created

    async def latest(self) -> dict | None:
        async with self.db.execute("SELECT * FROM health_samples ORDER BY ts DESC LIMIT 1") as cur:
            row = await cur.fetchone()
        if not row:
            return None
        data = dict(row)
        data["errors_json"] = load_json(data.get("errors_json"), [])
        data["stale"] = bool(data["stale"])
        return data
