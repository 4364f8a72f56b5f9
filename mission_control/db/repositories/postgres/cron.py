from __future__ import annotations

import asyncpg


class PostgresCronRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def upsert_jobs(self, jobs: list[dict], snapshot_id: str | None, observed_at: str) -> int:
        for job in jobs:
            await self.db.execute(
                """INSERT INTO cron_jobs (job_id, name, schedule_kind, enabled, next_run_at, agent_id, source_snapshot_id, updated_at)
                   VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                   ON CONFLICT(job_id) DO UPDATE SET
                     name=EXCLUDED.name, schedule_kind=EXCLUDED.schedule_kind,
                     enabled=EXCLUDED.enabled, next_run_at=EXCLUDED.next_run_at,
                     agent_id=COALESCE(EXCLUDED.agent_id, cron_jobs.agent_id),
                     source_snapshot_id=EXCLUDED.source_snapshot_id, updated_at=EXCLUDED.updated_at""",
                job["jobId"], job.get("name") or "unnamed", job.get("scheduleKind") or "unknown",
                bool(job.get("enabled")), job.get("nextRunAt"), job.get("agentId"),
                snapshot_id, observed_at,
            )
        return len(jobs)

    async def upsert_runs(self, runs: list[dict], snapshot_id: str | None, observed_at: str) -> int:
        for run in runs:
            await self.db.execute(
                """INSERT INTO cron_runs (run_id, job_id, status, started_at, ended_at, summary, source_snapshot_id, updated_at)
                   VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                   ON CONFLICT(run_id) DO UPDATE SET
                     job_id=EXCLUDED.job_id, status=EXCLUDED.status,
                     started_at=COALESCE(cron_runs.started_at, EXCLUDED.started_at),
                     ended_at=COALESCE(EXCLUDED.ended_at, cron_runs.ended_at),
                     summary=EXCLUDED.summary,
                     source_snapshot_id=EXCLUDED.source_snapshot_id, updated_at=EXCLUDED.updated_at""",
                run["runId"], run.get("jobId") or "unknown", run.get("status") or "unknown",
                run.get("startedAt"), run.get("endedAt"), run.get("summary") or "",
                snapshot_id, observed_at,
            )
        return len(runs)

    async def list_jobs(self) -> list[dict]:
        rows = await self.db.fetch("SELECT * FROM cron_jobs ORDER BY next_run_at NULLS LAST, job_id")
        return [dict(r) for r in rows]

    async def list_runs(self, job_id: str | None = None, limit: int = 100) -> list[dict]:
        if job_id:
            rows = await self.db.fetch(
                "SELECT * FROM cron_runs WHERE job_id = $1 ORDER BY started_at DESC NULLS LAST LIMIT $2",
                job_id, limit,
            )
        else:
            rows = await self.db.fetch(
                "SELECT * FROM cron_runs ORDER BY started_at DESC NULLS LAST LIMIT $1", limit
            )
        return [dict(r) for r in rows]
