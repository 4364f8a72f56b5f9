"""Ingestion layer: adapter snapshots to snapshot rows, entity upserts and events.

Every write is idempotent. Re-ingesting an identical snapshot at the same
capture time leaves one ``source_snapshots`` row and no duplicate events,
while the entity upserts still run and converge on the same state.
"""
from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, Awaitable, Callable

from mission_control import observability
from mission_control.db.factory import (
    get_cron_repository,
    get_event_repository,
    get_health_repository,
    get_memory_doc_repository,
    get_session_repository,
    get_snapshot_repository,
)
from mission_control.db.repositories.memory import SUMMARY_MAX_CHARS
from mission_control.models import (
    CollectedSnapshot,
    CronSnapshot,
    IngestResult,
    MemoryDocRecord,
    SessionRecord,
    StatusSnapshot,
)
from mission_control.redaction import redact_text, redact_value

logger = logging.getLogger("mission_control.ingest")

STATUS_RAW_MAX_CHARS = 2048
SNAPSHOT_ROW_LIMIT = 200
_WARNING_TITLE_MAX_CHARS = 200

_CRON_DETAIL_FIELDS = ("agentId", "sessionKey", "sessionTarget", "wakeMode", "schedule", "delivery", "payload", "state")


def payload_hash(payload: Any) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def warning_title(category: str, warning: str) -> str:
    """Event title that keeps distinct warnings of one capture apart."""
    text = warning.strip()[:_WARNING_TITLE_MAX_CHARS] or "unknown"
    return f"{category}_adapter_warning:{text}"


class Ingestor:
    def __init__(self, db: Any):
        self.db = db
        self.snapshot_repo = get_snapshot_repository(db)
        self.session_repo = get_session_repository(db)
        self.cron_repo = get_cron_repository(db)
        self.memory_repo = get_memory_doc_repository(db)
        self.health_repo = get_health_repository(db)
        self.event_repo = get_event_repository(db)

    async def _ingest(
        self,
        snapshot: CollectedSnapshot,
        payload: dict[str, Any],
        write_entities: Callable[[str], Awaitable[int]],
    ) -> IngestResult:
        meta = snapshot.metadata
        t0 = time.monotonic()
        with observability.start_span("ingest.snapshot", {"source": meta.sourceType}):
            snapshot_id, created = await self.snapshot_repo.insert(
                {
                    "source_type": meta.sourceType,
                    "captured_at": meta.capturedAt,
                    "payload_hash": payload_hash(payload),
                    "meta": meta.model_dump(),
                    "payload": payload,
                }
            )
            entities = await write_entities(snapshot_id)
            events = await self._append_warnings(snapshot)

        elapsed = int((time.monotonic() - t0) * 1000)
        observability.record_ingestion(meta.sourceType, "created" if created else "duplicate", elapsed)
        observability.record_adapter_warning(meta.sourceType, len(snapshot.warnings))
        logger.debug(
            "Ingested %s snapshot %s (created=%s entities=%d events=%d) in %dms",
            meta.sourceType, snapshot_id, created, entities, events, elapsed,
        )
        return IngestResult(snapshotId=snapshot_id, created=created, entities=entities, events=events)

    async def _append_warnings(self, snapshot: CollectedSnapshot) -> int:
        meta = snapshot.metadata
        appended = 0
        for warning in snapshot.warnings:
            details = redact_text(warning, meta.sourceRef).value
            created = await self.event_repo.append(
                {
                    "ts": meta.capturedAt,
                    "category": meta.sourceType,
                    "severity": "warning",
                    "title": warning_title(meta.sourceType, details),
                    "details": details,
                    "sourceRef": meta.sourceRef,
                }
            )
            appended += int(created)
        return appended

    # ── Sessions ────────────────────────────────────────────────────

    async def ingest_sessions(self, snapshot: CollectedSnapshot[list[SessionRecord]]) -> IngestResult:
        rows = []
        for record in snapshot.data:
            row = record.model_dump()
            row["label"] = redact_text(record.label).value
            rows.append(row)

        payload = {
            "total": len(rows),
            "active": sum(1 for row in rows if row["status"] == "active"),
            "sessions": [
                {
                    "sessionKey": row["sessionKey"],
                    "status": row["status"],
                    "agentId": row["agentId"],
                    "runType": row["runType"],
                    "lastUpdateAt": row["lastUpdateAt"],
                }
                for row in rows[:SNAPSHOT_ROW_LIMIT]
            ],
        }
        observed_at = snapshot.metadata.capturedAt

        async def write(snapshot_id: str) -> int:
            count = await self.session_repo.upsert_many(rows, snapshot_id, observed_at)
            await self.session_repo.touch_agents(rows, observed_at)
            return count

        return await self._ingest(snapshot, payload, write)

    # ── Cron ────────────────────────────────────────────────────────

    async def ingest_cron(self, snapshot: CollectedSnapshot[CronSnapshot]) -> IngestResult:
        jobs = []
        details: dict[str, Any] = {}
        for job in snapshot.data.jobs:
            row = job.model_dump(exclude={"raw", *_CRON_DETAIL_FIELDS})
            row["agentId"] = job.agentId
            row["name"] = redact_text(job.name).value
            jobs.append(row)
            detail = {field: getattr(job, field) for field in _CRON_DETAIL_FIELDS if getattr(job, field) is not None}
            if detail:
                redacted_detail, _ = redact_value(detail)
                details[job.jobId] = redacted_detail

        runs = []
        for run in snapshot.data.runs:
            row = run.model_dump()
            row["summary"] = redact_text(run.summary).value
            runs.append(row)

        payload = {"jobs": jobs, "runs": runs[:SNAPSHOT_ROW_LIMIT], "details": details}
        observed_at = snapshot.metadata.capturedAt

        async def write(snapshot_id: str) -> int:
            count = await self.cron_repo.upsert_jobs(jobs, snapshot_id, observed_at)
            count += await self.cron_repo.upsert_runs(runs, snapshot_id, observed_at)
            return count

        return await self._ingest(snapshot, payload, write)

    # ── Status ──────────────────────────────────────────────────────

    async def ingest_status(self, snapshot: CollectedSnapshot[StatusSnapshot]) -> IngestResult:
        source_ref = snapshot.metadata.sourceRef
        raw = redact_text(snapshot.data.raw, source_ref)
        errors = [redact_text(error, source_ref).value for error in snapshot.data.errors]
        raw_summary = raw.value[:STATUS_RAW_MAX_CHARS]

        payload = {
            "gatewayStatus": snapshot.data.gatewayStatus,
            "errors": errors,
            "rawSummary": raw_summary,
            "redactionIndicators": raw.indicators,
        }

        async def write(snapshot_id: str) -> int:
            await self.health_repo.insert_sample(
                snapshot.data.gatewayStatus,
                errors,
                raw_summary,
                snapshot.metadata.capturedAt,
                stale=False,
                snapshot_id=snapshot_id,
            )
            return 1

        return await self._ingest(snapshot, payload, write)

    # ── Memory ──────────────────────────────────────────────────────

    async def ingest_memory(self, snapshot: CollectedSnapshot[list[MemoryDocRecord]]) -> IngestResult:
        docs = []
        for doc in snapshot.data:
            redaction = redact_text(doc.content, doc.path)
            docs.append(
                {
                    "path": doc.path,
                    "kind": doc.kind,
                    "title": redact_text(doc.title, doc.path).value,
                    "updatedAt": doc.updatedAt,
                    "summary": redaction.value[:SUMMARY_MAX_CHARS],
                    "redacted": redaction.redacted,
                    "indicators": redaction.indicators,
                    "contentHash": payload_hash(redaction.value),
                }
            )

        payload = {
            "docs": [
                {key: doc[key] for key in ("path", "kind", "updatedAt", "redacted", "indicators", "contentHash")}
                for doc in docs
            ]
        }

        async def write(snapshot_id: str) -> int:
            return await self.memory_repo.upsert_docs(docs, snapshot_id)

        return await self._ingest(snapshot, payload, write)
