"""PostgreSQL repository for observed sessions and agents."""
from __future__ import annotations

from collections import Counter

import asyncpg

from mission_control.db.repositories.common import SESSION_COLUMNS, session_insert_values

_UPSERT_SESSION = f"""INSERT INTO sessions ({SESSION_COLUMNS})
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15)
ON CONFLICT(session_key) DO UPDATE SET
    session_id = COALESCE(EXCLUDED.session_id, sessions.session_id),
    label = EXCLUDED.label,
    status = EXCLUDED.status,
    started_at = COALESCE(sessions.started_at, EXCLUDED.started_at),
    ended_at = CASE
        WHEN EXCLUDED.status = 'active' THEN NULL
        WHEN sessions.status = 'active'
            THEN COALESCE(EXCLUDED.ended_at, EXCLUDED.last_update_at, EXCLUDED.updated_at)
        ELSE COALESCE(sessions.ended_at, EXCLUDED.ended_at)
    END,
    runtime_ms = COALESCE(EXCLUDED.runtime_ms, sessions.runtime_ms),
    model = COALESCE(EXCLUDED.model, sessions.model),
    agent_id = COALESCE(EXCLUDED.agent_id, sessions.agent_id),
    session_kind = COALESCE(EXCLUDED.session_kind, sessions.session_kind),
    run_type = EXCLUDED.run_type,
    last_update_at = GREATEST(sessions.last_update_at, EXCLUDED.last_update_at),
    transcript_path = COALESCE(EXCLUDED.transcript_path, sessions.transcript_path),
    source_snapshot_id = EXCLUDED.source_snapshot_id,
    updated_at = EXCLUDED.updated_at"""


class PostgresSessionRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def upsert_many(self, rows: list[dict], snapshot_id: str | None, observed_at: str) -> int:
        for row in rows:
            await self.db.execute(_UPSERT_SESSION, *session_insert_values(row, snapshot_id, observed_at))
        return len(rows)

    async def touch_agents(self, rows: list[dict], observed_at: str) -> int:
        counts = Counter(row["agentId"] for row in rows if row.get("agentId"))
        for agent_id, session_count in counts.items():
            await self.db.execute(
                """INSERT INTO agents (agent_id, first_seen_at, last_seen_at, session_count)
                   VALUES ($1, $2, $3, $4)
                   ON CONFLICT(agent_id) DO UPDATE SET
                     last_seen_at = GREATEST(agents.last_seen_at, EXCLUDED.last_seen_at),
                     session_count = EXCLUDED.session_count""",
                agent_id, observed_at, observed_at, session_count,
            )
        return len(counts)

    async def get(self, session_key: str) -> dict | None:
        row = await self.db.fetchrow("SELECT * FROM sessions WHERE session_key = $1", session_key)
        return dict(row) if row else None

    async def list_sessions(self, limit: int = 500, status: str | None = None) -> list[dict]:
        if status:
            rows = await self.db.fetch(
                """SELECT * FROM sessions WHERE status = $1
                   ORDER BY last_update_at DESC NULLS LAST, session_key LIMIT $2""",
                status, limit,
            )
        else:
            rows = await self.db.fetch(
                "SELECT * FROM sessions ORDER BY last_update_at DESC NULLS LAST, session_key LIMIT $1",
                limit,
            )
        return [dict(r) for r in rows]

    async def count_by_status(self) -> dict[str, int]:
        rows = await self.db.fetch("SELECT status, COUNT(*) AS n FROM sessions GROUP BY status")
        return {row["status"]: int(row["n"]) for row in rows}

    async def list_agents(self) -> list[dict]:
        rows = await self.db.fetch("SELECT * FROM agents ORDER BY last_seen_at DESC, agent_id")
        return [dict(r) for r in rows]

    async def transcript_targets(self, limit: int) -> list[dict]:
        rows = await self.db.fetch(
            """SELECT session_id, session_key, transcript_path FROM sessions
               WHERE session_id IS NOT NULL AND transcript_path IS NOT NULL
               ORDER BY last_update_at DESC NULLS LAST LIMIT $1""",
            limit,
        )
        return [dict(r) for r in rows]

    async def session_keys_by_id(self) -> dict[str, str]:
        rows = await self.db.fetch("SELECT session_id, session_key FROM sessions WHERE session_id IS NOT NULL")
        return {row["session_id"]: row["session_key"] for row in rows}
