"""Helpers shared by the SQLite and Postgres repositories."""
from __future__ import annotations

import json
import uuid
from typing import Any

from mission_control.date_utils import iso_to_epoch_ms


def make_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4()}"


def idempotency_key(*parts: Any) -> str:
    return "::".join(str(part) for part in parts)


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True, default=str)


def load_json(value: Any, default: Any = None) -> Any:
    if value is None:
        return default
    if not isinstance(value, (str, bytes)):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return default


def session_insert_values(row: dict, snapshot_id: str | None, observed_at: str) -> tuple:
    """Column values for one session upsert, in ``SESSION_COLUMNS`` order.

    Active rows without a probe-reported start fall back to the capture time,
    and active rows never carry an end time.
    """
    active = row.get("status") == "active"
    started_at = row.get("startedAt") or (observed_at if active else None)
    ended_at = None if active else row.get("endedAt")
    return (
        row["sessionKey"],
        row.get("sessionId"),
        row.get("label") or "unlabeled",
        row.get("status") or "unknown",
        started_at,
        ended_at,
        row.get("runtimeMs"),
        row.get("model"),
        row.get("agentId"),
        row.get("sessionKind"),
        row.get("runType") or "unknown",
        row.get("lastUpdateAt"),
        row.get("transcriptPath"),
        snapshot_id,
        observed_at,
    )


SESSION_COLUMNS = (
    "session_key, session_id, label, status, started_at, ended_at, runtime_ms, model, "
    "agent_id, session_kind, run_type, last_update_at, transcript_path, source_snapshot_id, updated_at"
)


def tool_duration_ms(started_at: str | None, finished_at: str | None) -> int | None:
    start = iso_to_epoch_ms(started_at)
    end = iso_to_epoch_ms(finished_at)
    if start is None or end is None:
        return None
    return max(0, end - start)
