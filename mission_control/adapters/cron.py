"""Cron scheduler adapter."""
from __future__ import annotations

from typing import Any, Sequence

from mission_control import config
from mission_control.adapters.base import (
    CommandAdapter,
    failure_detail,
    first_present,
    object_rows,
    optional_dict,
    optional_str,
    optional_ts,
    parse_json,
)
from mission_control.command_runner import shell_command_runner
from mission_control.date_utils import now_iso, to_iso
from mission_control.models import CollectedSnapshot, CronJobRecord, CronRunRecord, CronSnapshot

_FALSE_TOKENS = {"false", "0", "", "no", "off"}


def _coerce_enabled(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_TOKENS
    return bool(value)


def _schedule_kind(row: dict[str, Any]) -> str:
    kind = first_present(row, "scheduleKind", "schedule_kind")
    if kind is None:
        schedule = optional_dict(row, "schedule") or {}
        kind = schedule.get("kind")
    return str(kind) if kind is not None else "unknown"


def _next_run_at(row: dict[str, Any]) -> str | None:
    explicit = optional_ts(row, "nextRunAt", "next_run_at")
    if explicit:
        return explicit
    state = optional_dict(row, "state") or {}
    return to_iso(first_present(state, "nextRunAtMs", "nextRunAt"))


def normalize_job(row: dict[str, Any]) -> CronJobRecord:
    return CronJobRecord(
        jobId=str(first_present(row, "jobId", "job_id", "id") or "unknown"),
        name=str(row.get("name") or "unnamed"),
        scheduleKind=_schedule_kind(row),
        enabled=_coerce_enabled(row.get("enabled", False)),
        nextRunAt=_next_run_at(row),
        agentId=optional_str(row, "agentId", "agent_id"),
        sessionKey=optional_str(row, "sessionKey", "session_key"),
        sessionTarget=optional_str(row, "sessionTarget", "session_target"),
        wakeMode=optional_str(row, "wakeMode", "wake_mode"),
        schedule=optional_dict(row, "schedule"),
        delivery=optional_dict(row, "delivery"),
        payload=optional_dict(row, "payload"),
        state=optional_dict(row, "state"),
        raw=row,
    )


def normalize_run(row: dict[str, Any]) -> CronRunRecord:
    summary = row.get("summary")
    return CronRunRecord(
        runId=str(first_present(row, "runId", "run_id", "id") or "unknown"),
        jobId=str(first_present(row, "jobId", "job_id") or "unknown"),
        status=str(row.get("status") or "unknown"),
        startedAt=optional_ts(row, "startedAt", "started_at"),
        endedAt=optional_ts(row, "endedAt", "ended_at"),
        summary="" if summary is None else str(summary),
    )


class CronAdapter(CommandAdapter):
    source_type = "cron"

    def __init__(self, run_command=shell_command_runner, command: Sequence[str] | None = None):
        super().__init__(run_command, command or config.CRON_COMMAND)

    async def collect(self) -> CollectedSnapshot[CronSnapshot]:
        captured_at = now_iso()
        warnings: list[str] = []
        data = CronSnapshot()

        result = await self._probe(self.command)
        if not result.ok:
            warnings.append(f"cron_command_failed:{failure_detail(result.stderr)}")
        else:
            payload, ok = parse_json(result.stdout)
            if not ok:
                warnings.append("cron_output_not_json")
            elif isinstance(payload, list):
                data = CronSnapshot(jobs=[normalize_job(row) for row in object_rows(payload)])
            elif isinstance(payload, dict):
                data = CronSnapshot(
                    jobs=[normalize_job(row) for row in object_rows(payload.get("jobs"))],
                    runs=[normalize_run(row) for row in object_rows(payload.get("runs"))],
                )

        return CollectedSnapshot[CronSnapshot](
            metadata=self._metadata(captured_at),
            data=data,
            warnings=warnings,
        )
