from __future__ import annotations

import asyncpg

from mission_control.db.repositories.memory import SUMMARY_MAX_CHARS


class PostgresMemoryDocRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def upsert_docs(self, docs: list[dict], snapshot_id: str | None) -> int:
        for doc in docs:
            await self.db.execute(
                """INSERT INTO memory_docs (path, kind, title, updated_at, summary, redacted, source_snapshot_id)
                   VALUES ($1, $2, $3, $4, $5, $6, $7)
                   ON CONFLICT(path) DO UPDATE SET
                     kind=EXCLUDED.kind, title=EXCLUDED.title, updated_at=EXCLUDED.updated_at,
                     summary=EXCLUDED.summary, redacted=EXCLUDED.redacted,
                     source_snapshot_id=EXCLUDED.source_snapshot_id""",
                doc["path"], doc["kind"], doc.get("title") or "", doc.get("updatedAt"),
                (doc.get("summary") or "")[:SUMMARY_MAX_CHARS],
                bool(doc.get("redacted")), snapshot_id,
            )
        return len(docs)

    async def list_docs(self, kind: str | None = None) -> list[dict]:
        if kind:
            rows = await self.db.fetch("SELECT * FROM memory_docs WHERE kind = $1 ORDER BY path", kind)
        else:
            rows = await self.db.fetch("SELECT * FROM memory_docs ORDER BY kind, path")
        return [dict(r) for r in rows]
