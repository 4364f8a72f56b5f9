"""SQLite repository for workspace memory documents."""
from __future__ import annotations

import aiosqlite

SUMMARY_MAX_CHARS = 240


class SqliteMemoryDocRepository:
    """Stores a bounded, already-redacted summary per document. Never full content."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_docs(self, docs: list[dict], snapshot_id: str | None) -> int:
        for doc in docs:
            await self.db.execute(
                """INSERT INTO memory_docs (path, kind, title, updated_at, summary, redacted, source_snapshot_id)
                   VALUES (?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(path) DO UPDATE SET
                     kind=excluded.kind, title=excluded.title, updated_at=excluded.updated_at,
                     summary=excluded.summary, redacted=excluded.redacted,
                     source_snapshot_id=excluded.source_snapshot_id""",
                (
                    doc["path"], doc["kind"], doc.get("title") or "", doc.get("updatedAt"),
                    (doc.get("summary") or "")[:SUMMARY_MAX_CHARS],
                    1 if doc.get("redacted") else 0, snapshot_id,
                ),
            )
            await self.db.commit()
        return len(docs)

    async def list_docs(self, kind: str | None = None) -> list[dict]:
        if kind:
            query, params = "SELECT * FROM memory_docs WHERE kind = ? ORDER BY path", (kind,)
        else:
            query, params = "SELECT * FROM memory_docs ORDER BY kind, path", ()
        async with self.db.execute(query, params) as cur:
            rows = [dict(r) for r in await cur.fetchall()]
        for row in rows:
            row["redacted"] = bool(row["redacted"])
        return rows
