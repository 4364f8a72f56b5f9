"""SQLite repository for cron jobs and runs."""
from __future__ import annotations

import aiosqlite


class SqliteCronRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def upsert_jobs(self, jobs: list[dict], snapshot_id: str | None, observed_at: str) -> int:
        for job in jobs:
            await self.db.execute(
                """INSERT INTO cron_jobs (job_id, name, schedule_kind, enabled, next_run_at, agent_id, source_snapshot_id, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(job_id) DO UPDATE SET
                     name=excluded.name, schedule_kind=excluded.schedule_kind,
                     enabled=excluded.enabled, next_run_at=excluded.next_run_at,
                     agent_id=COALESCE(excluded.agent_id, cron_jobs.agent_id),
                     source_snapshot_id=excluded.source_snapshot_id, updated_at=excluded.updated_at""",
                (
                    job["jobId"], job.get("name") or "unnamed", job.get("scheduleKind") or "unknown",
                    1 if job.get("enabled") else 0, job.get("nextRunAt"), job.get("agentId"),
                    snapshot_id, observed_at,
                ),
            )
            await self.db.commit()
        return len(jobs)

    async def upsert_runs(self, runs: list[dict], snapshot_id: str | None, observed_at: str) -> int:
        for run in runs:
            await self.db.execute(
                """INSERT INTO cron_runs (run_id, job_id, status, started_at, ended_at, summary, source_snapshot_id, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                   ON CONFLICT(run_id) DO UPDATE SET
                     job_id=excluded.job_id, status=excluded.status,
                     started_at=COALESCE(cron_runs.started_at, excluded.started_at),
                     ended_at=COALESCE(excluded.ended_at, cron_runs.ended_at),
                     summary=excluded.summary,
                     source_snapshot_id=excluded.source_snapshot_id, updated_at=excluded.updated_at""",
                (
                    run["runId"], run.get("jobId") or "unknown", run.get("status") or "unknown",
                    run.get("startedAt"), run.get("endedAt"), run.get("summary") or "",
                    snapshot_id, observed_at,
                ),
            )
            await self.db.commit()
        return len(runs)

    async def list_jobs(self) -> list[dict]:
        async with self.db.execute("SELECT * FROM cron_jobs ORDER BY next_run_at IS NULL, next_run_at, job_id") as cur:
            rows = [dict(r) for r in await cur.fetchall()]
        for row in rows:
            row["enabled"] = bool(row["enabled"])
        return rows

    async def list_runs(self, job_id: str | None = None, limit: int = 100) -> list[dict]:
        if job_id:
            query = "SELECT * FROM cron_runs WHERE job_id = ? ORDER BY started_at DESC NULLS LAST LIMIT ?"
            params: tuple = (job_id, limit)
        else:
            query = "SELECT * FROM cron_runs ORDER BY started_at DESC NULLS LAST LIMIT ?"
            params = (limit,)
        async with self.db.execute(query, params) as cur:
            return [dict(r) for r in await cur.fetchall()]
