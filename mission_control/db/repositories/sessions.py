"""SQLite repository for observed sessions and the agents they belong to."""
from __future__ import annotations

from collections import Counter

import aiosqlite

from mission_control.db.repositories.common import SESSION_COLUMNS, session_insert_values

# started_at is kept once known. ended_at is stamped only when leaving "active".
_UPSERT_SESSION = f"""INSERT INTO sessions ({SESSION_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(session_key) DO UPDATE SET
    session_id = COALESCE(excluded.session_id, sessions.session_id),
    label = excluded.label,
    status = excluded.status,
    started_at = COALESCE(sessions.started_at, excluded.started_at),
    ended_at = CASE
        WHEN excluded.status = 'active' THEN NULL
        WHEN sessions.status = 'active'
            THEN COALESCE(excluded.ended_at, excluded.last_update_at, excluded.updated_at)
        ELSE COALESCE(sessions.ended_at, excluded.ended_at)
    END,
    runtime_ms = COALESCE(excluded.runtime_ms, sessions.runtime_ms),
    model = COALESCE(excluded.model, sessions.model),
    agent_id = COALESCE(excluded.agent_id, sessions.agent_id),
    session_kind = COALESCE(excluded.session_kind, sessions.session_kind),
    run_type = excluded.run_type,
    last_update_at = MAX(
        COALESCE(sessions.last_update_at, excluded.last_update_at),
        COALESCE(excluded.last_update_at, sessions.last_update_at)
    ),
    transcript_path = COALESCE(excluded.transcript_path, sessions.transcript_path),
    source_snapshot_id = excluded.source_snapshot_id,
    updated_at = excluded.updated_at"""


class SqliteSessionRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_many(self, rows: list[dict], snapshot_id: str | None, observed_at: str) -> int:
        for row in rows:
            await self.db.execute(_UPSERT_SESSION, session_insert_values(row, snapshot_id, observed_at))
            await self.db.commit()
        return len(rows)

    async def touch_agents(self, rows: list[dict], observed_at: str) -> int:
        counts = Counter(row["agentId"] for row in rows if row.get("agentId"))
        for agent_id, session_count in counts.items():
            await self.db.execute(
                """INSERT INTO agents (agent_id, first_seen_at, last_seen_at, session_count)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(agent_id) DO UPDATE SET
                     last_seen_at = MAX(agents.last_seen_at, excluded.last_seen_at),
                     session_count = excluded.session_count""",
                (agent_id, observed_at, observed_at, session_count),
            )
            await self.db.commit()
        return len(counts)

    async def get(self, session_key: str) -> dict | None:
        async with self.db.execute("SELECT * FROM sessions WHERE session_key = ?", (session_key,)) as cur:
            row = await cur.fetchone()
            return dict(row) if row else None

    async def list_sessions(self, limit: int = 500, status: str | None = None) -> list[dict]:
        if status:
            query = """SELECT * FROM sessions WHERE status = ?
                       ORDER BY last_update_at DESC NULLS LAST, session_key LIMIT ?"""
            params: tuple = (status, limit)
        else:
            query = """SELECT * FROM sessions
                       ORDER BY last_update_at DESC NULLS LAST, session_key LIMIT ?"""
            params = (limit,)
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def count_by_status(self) -> dict[str, int]:
        async with self.db.execute("SELECT status, COUNT(*) FROM sessions GROUP BY status") as cur:
            return {row[0]: int(row[1]) for row in await cur.fetchall()}

    async def list_agents(self) -> list[dict]:
        async with self.db.execute("SELECT * FROM agents ORDER BY last_seen_at DESC, agent_id") as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def transcript_targets(self, limit: int) -> list[dict]:
        async with self.db.execute(
            """SELECT session_id, session_key, transcript_path FROM sessions
               WHERE session_id IS NOT NULL AND transcript_path IS NOT NULL
               ORDER BY last_update_at DESC NULLS LAST LIMIT ?""",
            (limit,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]

    async def session_keys_by_id(self) -> dict[str, str]:
        async with self.db.execute(
            "SELECT session_id, session_key FROM sessions WHERE session_id IS NOT NULL"
        ) as cur:
            return {row[0]: row[1] for row in await cur.fetchall()}
