"""Read model over the persisted record.

Turns repository rows into camelCase DTO dicts for the GET-only API. It
reads only the store and never reaches into adapters or the scheduler.
"""
from __future__ import annotations

from typing import Any

from mission_control.date_utils import elapsed_ms, now_iso
from mission_control.db.factory import (
    get_collector_state_repository,
    get_cron_repository,
    get_event_repository,
    get_health_repository,
    get_memory_doc_repository,
    get_session_repository,
    get_snapshot_repository,
    get_transcript_repository,
)

API_VERSION = "v1"


def _envelope(**body: Any) -> dict[str, Any]:
    return {"ok": True, "apiVersion": API_VERSION, "generatedAt": now_iso(), "readOnly": True, **body}


def session_dto(row: dict, now: str | None = None) -> dict[str, Any]:
    active = row.get("status") == "active"
    return {
        "sessionKey": row["session_key"],
        "sessionId": row.get("session_id"),
        "label": row.get("label"),
        "status": row.get("status"),
        "startedAt": row.get("started_at"),
        "endedAt": row.get("ended_at"),
        "runtimeMs": row.get("runtime_ms"),
        "elapsedMs": elapsed_ms(row.get("started_at"), now) if active else None,
        "model": row.get("model"),
        "agentId": row.get("agent_id"),
        "runType": row.get("run_type"),
        "lastUpdateAt": row.get("last_update_at"),
        "updatedAt": row.get("updated_at"),
    }


def collector_dto(row: dict) -> dict[str, Any]:
    return {
        "collectorName": row["collector_name"],
        "lastSuccessAt": row.get("last_success_at"),
        "lastErrorAt": row.get("last_error_at"),
        "errorCount": int(row.get("error_count") or 0),
        "stale": bool(row.get("stale")),
        "lastError": row.get("last_error"),
    }


class ReadModel:
    def __init__(self, db: Any):
        self.db = db
        self.sessions_repo = get_session_repository(db)
        self.cron_repo = get_cron_repository(db)
        self.memory_repo = get_memory_doc_repository(db)
        self.health_repo = get_health_repository(db)
        self.event_repo = get_event_repository(db)
        self.state_repo = get_collector_state_repository(db)
        self.snapshot_repo = get_snapshot_repository(db)
        self.transcript_repo = get_transcript_repository(db)

    async def overview(self) -> dict[str, Any]:
        by_status = await self.sessions_repo.count_by_status()
        collectors = await self.state_repo.list_all()
        latest = await self.health_repo.latest()
        return _envelope(
            summary={
                "agents": len(await self.sessions_repo.list_agents()),
                "sessions": sum(by_status.values()),
                "activeSessions": by_status.get("active", 0),
                "memoryDocs": len(await self.memory_repo.list_docs()),
                "cronJobs": len(await self.cron_repo.list_jobs()),
                "events": await self.event_repo.count(),
                "collectorErrors": sum(1 for row in collectors if (row.get("error_count") or 0) > 0),
                "staleCollectors": sum(1 for row in collectors if row.get("stale")),
                "latestStatus": latest["gateway_status"] if latest else "unknown",
            }
        )

    async def sessions(self, limit: int = 100, status: str | None = None) -> dict[str, Any]:
        now = now_iso()
        rows = await self.sessions_repo.list_sessions(limit=limit, status=status)
        agents = await self.sessions_repo.list_agents()
        return _envelope(
            agents=[
                {
                    "agentId": row["agent_id"],
                    "firstSeenAt": row.get("first_seen_at"),
                    "lastSeenAt": row.get("last_seen_at"),
                    "sessionCount": row.get("session_count"),
                }
                for row in agents
            ],
            sessions=[session_dto(row, now) for row in rows],
        )

    async def session_stream(self, session_id: str) -> dict[str, Any]:
        messages = await self.transcript_repo.list_messages(session_id)
        spans = await self.transcript_repo.list_tool_spans(session_id)
        return _envelope(
            sessionId=session_id,
            messages=[
                {
                    "eventId": row["event_id"],
                    "role": row.get("role"),
                    "ts": row.get("message_ts"),
                    "textPreview": row.get("text_preview"),
                    "model": row.get("model"),
                    "provider": row.get("provider"),
                    "stopReason": row.get("stop_reason"),
                    "usage": {
                        "input": row.get("usage_input"),
                        "output": row.get("usage_output"),
                        "total": row.get("usage_total"),
                    },
                }
                for row in messages
            ],
            toolSpans=[
                {
                    "toolCallId": row["tool_call_id"],
                    "toolName": row.get("tool_name"),
                    "startedAt": row.get("started_at"),
                    "finishedAt": row.get("finished_at"),
                    "durationMs": row.get("duration_ms"),
                    "isError": bool(row.get("is_error")),
                }
                for row in spans
            ],
        )

    async def cron(self, runs_limit: int = 200) -> dict[str, Any]:
        jobs = await self.cron_repo.list_jobs()
        runs = await self.cron_repo.list_runs(limit=runs_limit)
        latest = await self.snapshot_repo.latest("cron")
        details = ((latest or {}).get("payload_json") or {}).get("details") or {}
        return _envelope(
            jobs=[
                {
                    "jobId": row["job_id"],
                    "name": row.get("name"),
                    "scheduleKind": row.get("schedule_kind"),
                    "enabled": bool(row.get("enabled")),
                    "nextRunAt": row.get("next_run_at"),
                    "agentId": row.get("agent_id"),
                    "updatedAt": row.get("updated_at"),
                    "detail": details.get(row["job_id"]),
                }
                for row in jobs
            ],
            runs=[
                {
                    "runId": row["run_id"],
                    "jobId": row.get("job_id"),
                    "status": row.get("status"),
                    "startedAt": row.get("started_at"),
                    "endedAt": row.get("ended_at"),
                    "summary": row.get("summary"),
                }
                for row in runs
            ],
        )

    async def memory(self) -> dict[str, Any]:
        docs = await self.memory_repo.list_docs()
        return _envelope(
            redactedDocs=sum(1 for row in docs if row.get("redacted")),
            docs=[
                {
                    "path": row["path"],
                    "kind": row.get("kind"),
                    "title": row.get("title"),
                    "updatedAt": row.get("updated_at"),
                    "summary": row.get("summary"),
                    "redacted": bool(row.get("redacted")),
                }
                for row in docs
            ],
        )

    async def health(self) -> dict[str, Any]:
        latest = await self.health_repo.latest()
        collectors = await self.state_repo.list_all()
        return _envelope(
            latest={
                "ts": latest["ts"],
                "gatewayStatus": latest["gateway_status"],
                "stale": bool(latest.get("stale")),
                "errors": latest.get("errors_json") or [],
            }
            if latest
            else None,
            collectors=[collector_dto(row) for row in collectors],
        )

    async def events(self, limit: int = 100, category: str | None = None) -> dict[str, Any]:
        rows = await self.event_repo.list_recent(limit=limit, category=category)
        return _envelope(
            events=[
                {
                    "eventId": row["event_id"],
                    "ts": row.get("ts"),
                    "category": row.get("category"),
                    "severity": row.get("severity"),
                    "title": row.get("title"),
                    "details": row.get("details"),
                    "sourceRef": row.get("source_ref"),
                }
                for row in rows
            ]
        )
