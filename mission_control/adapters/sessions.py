"""Session-list adapter with a secondary probe fallback."""
from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from mission_control import config
from mission_control.adapters.base import (
    CommandAdapter,
    failure_detail,
    first_present,
    object_rows,
    optional_int,
    optional_str,
    optional_ts,
    parse_json,
)
from mission_control.command_runner import shell_command_runner
from mission_control.date_utils import iso_to_epoch_ms, now_iso, now_ms
from mission_control.models import CollectedSnapshot, SessionRecord, SessionRunType

logger = logging.getLogger("mission_control.adapters")

# Ordered top to bottom; first match wins.
_RUN_TYPE_RULES: list[tuple[Callable[[str], bool], SessionRunType]] = [
    (lambda key: ":subagent:" in key, "subagent"),
    (lambda key: ":cron:" in key, "cron"),
    (lambda key: key.startswith("agent:main:"), "main"),
    (lambda key: key.startswith("agent:"), "agent"),
]


def classify_run_type(session_key: str) -> SessionRunType:
    for matches, run_type in _RUN_TYPE_RULES:
        if matches(session_key):
            return run_type
    return "unknown"


def infer_agent_id(session_key: str) -> str | None:
    parts = session_key.split(":")
    if len(parts) < 2:
        return None
    candidate = parts[1].strip()
    return candidate or None


def derive_status(
    explicit: Any,
    last_update_at: str | None,
    fallback_ts: str | None,
    now: int,
    active_window_ms: int,
) -> str:
    if explicit in ("active", "recent"):
        return explicit
    last_update_ms = iso_to_epoch_ms(last_update_at)
    if isinstance(explicit, str) and explicit.strip():
        # Any other reported state (completed, ended, ...) is no longer active.
        return "recent" if last_update_ms is not None or fallback_ts else "unknown"
    if last_update_ms is not None and now - last_update_ms <= active_window_ms:
        return "active"
    if last_update_ms is not None or fallback_ts:
        return "recent"
    return "unknown"


def normalize_session(row: dict[str, Any], now: int, active_window_ms: int) -> SessionRecord:
    """Total normalization of one untrusted session row."""
    session_key = str(first_present(row, "sessionKey", "session_key", "key", "id") or "unknown")
    last_update_at = optional_ts(row, "lastUpdateAt", "updatedAt", "updated_at", "lastActivityAt")
    started_at = optional_ts(row, "startedAt", "started_at")
    ended_at = optional_ts(row, "endedAt", "ended_at")
    agent_id = optional_str(row, "agentId", "agent_id") or infer_agent_id(session_key)

    return SessionRecord(
        sessionKey=session_key,
        sessionId=optional_str(row, "sessionId", "session_id"),
        label=str(first_present(row, "label", "displayName", "display_name") or "unlabeled"),
        status=derive_status(
            row.get("status"),
            last_update_at,
            started_at or ended_at,
            now,
            active_window_ms,
        ),
        startedAt=started_at,
        endedAt=ended_at,
        runtimeMs=optional_int(row, "runtimeMs", "runtime_ms"),
        model=optional_str(row, "model"),
        agentId=agent_id,
        sessionKind=optional_str(row, "kind", "sessionKind", "session_kind"),
        runType=classify_run_type(session_key),
        lastUpdateAt=last_update_at,
        transcriptPath=optional_str(row, "transcriptPath", "transcript_path"),
    )


def _rows_from_payload(payload: Any) -> list[dict[str, Any]]:
    if isinstance(payload, dict):
        return object_rows(payload.get("sessions"))
    return object_rows(payload)


class SessionsAdapter(CommandAdapter):
    source_type = "sessions"

    def __init__(
        self,
        run_command=shell_command_runner,
        command: Sequence[str] | None = None,
        fallback_command: Sequence[str] | None = None,
        active_window_ms: int | None = None,
        limit: int | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        super().__init__(run_command, command or config.SESSIONS_COMMAND)
        self.fallback_command = list(fallback_command or config.SESSIONS_FALLBACK_COMMAND)
        self.active_window_ms = active_window_ms or config.SESSION_ACTIVE_WINDOW_MS
        self.limit = limit or config.SESSIONS_LIST_LIMIT
        self.clock = clock

    async def _probe_rows(self, command: Sequence[str], stage: str, warnings: list[str]):
        result = await self._probe(command)
        if not result.ok:
            warnings.append(f"{stage}_command_failed:{failure_detail(result.stderr)}")
            return None
        payload, ok = parse_json(result.stdout)
        if not ok:
            warnings.append(f"{stage}_output_not_json")
            return None
        return _rows_from_payload(payload)

    async def collect(self) -> CollectedSnapshot[list[SessionRecord]]:
        captured_at = now_iso()
        warnings: list[str] = []

        rows = await self._probe_rows(self.command, "sessions", warnings)
        if rows is None and self.fallback_command:
            logger.info("Primary session probe unusable, trying fallback: %s", " ".join(self.fallback_command))
            rows = await self._probe_rows(self.fallback_command, "sessions_fallback", warnings)

        now = self.clock()
        records = [normalize_session(row, now, self.active_window_ms) for row in (rows or [])]
        return CollectedSnapshot[list[SessionRecord]](
            metadata=self._metadata(captured_at),
            data=records[: self.limit],
            warnings=warnings,
        )
