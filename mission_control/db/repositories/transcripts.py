"""SQLite repository for transcript tailing state and parsed transcript rows."""
from __future__ import annotations

import aiosqlite

from mission_control.date_utils import now_iso
from mission_control.db.repositories.common import dump_json, load_json, tool_duration_ms


def _span_from_row(row) -> dict:
    data = dict(row)
    data["is_error"] = bool(data["is_error"])
    data["arguments_json"] = load_json(data.get("arguments_json"))
    data["result_json"] = load_json(data.get("result_json"))
    return data


class SqliteTranscriptRepository:
    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    # ── Offsets ─────────────────────────────────────────────────────

    async def get_offsets(self) -> dict[str, dict]:
        async with self.db.execute(
            "SELECT session_id, transcript_path, last_byte_offset, last_line_number, head_fingerprint "
            "FROM session_stream_offsets"
        ) as cur:
            rows = await cur.fetchall()
        return {
            row["session_id"]: {
                "transcript_path": row["transcript_path"],
                "offset": int(row["last_byte_offset"] or 0),
                "line": int(row["last_line_number"] or 0),
                "fingerprint": row["head_fingerprint"],
            }
            for row in rows
        }

    async def upsert_offset(
        self,
        session_id: str,
        session_key: str | None,
        transcript_path: str,
        byte_offset: int,
        line_number: int,
        fingerprint: str | None = None,
    ) -> None:
        await self.db.execute(
            """INSERT INTO session_stream_offsets (session_id, session_key, transcript_path, last_byte_offset, last_line_number, head_fingerprint, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_id) DO UPDATE SET
                 session_key=COALESCE(excluded.session_key, session_stream_offsets.session_key),
                 transcript_path=excluded.transcript_path,
                 last_byte_offset=excluded.last_byte_offset,
                 last_line_number=excluded.last_line_number,
                 head_fingerprint=excluded.head_fingerprint,
                 updated_at=excluded.updated_at""",
            (session_id, session_key, transcript_path, byte_offset, line_number, fingerprint, now_iso()),
        )
        await self.db.commit()

    # ── Events and messages ─────────────────────────────────────────

    async def insert_event(self, event: dict) -> bool:
        cur = await self.db.execute(
            """INSERT INTO session_events (session_id, event_id, session_key, parent_event_id, event_type, event_ts, source_line, raw_json)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_id, event_id) DO NOTHING""",
            (
                event["session_id"], event["event_id"], event.get("session_key"),
                event.get("parent_event_id"), event.get("event_type") or "unknown",
                event.get("event_ts"), event["source_line"], dump_json(event.get("raw") or {}),
            ),
        )
        created = cur.rowcount > 0
        await self.db.commit()
        return created

    async def upsert_message(self, message: dict) -> None:
        await self.db.execute(
            """INSERT INTO session_messages (session_id, event_id, session_key, role, message_ts, text_preview,
                   provider, model, stop_reason, usage_input, usage_output, usage_total)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_id, event_id) DO UPDATE SET
                 session_key=COALESCE(excluded.session_key, session_messages.session_key),
                 role=excluded.role, message_ts=excluded.message_ts, text_preview=excluded.text_preview,
                 provider=excluded.provider, model=excluded.model, stop_reason=excluded.stop_reason,
                 usage_input=excluded.usage_input, usage_output=excluded.usage_output,
                 usage_total=excluded.usage_total""",
            (
                message["session_id"], message["event_id"], message.get("session_key"),
                message.get("role") or "unknown", message.get("message_ts"), message.get("text_preview"),
                message.get("provider"), message.get("model"), message.get("stop_reason"),
                message.get("usage_input"), message.get("usage_output"), message.get("usage_total"),
            ),
        )
        await self.db.commit()

    # ── Tool spans ──────────────────────────────────────────────────

    async def upsert_tool_call(self, call: dict) -> dict:
        await self.db.execute(
            """INSERT INTO tool_spans (session_id, tool_call_id, session_key, event_id_call, tool_name, arguments_json, started_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_id, tool_call_id) DO UPDATE SET
                 session_key=COALESCE(excluded.session_key, tool_spans.session_key),
                 event_id_call=excluded.event_id_call,
                 tool_name=COALESCE(tool_spans.tool_name, excluded.tool_name),
                 arguments_json=COALESCE(excluded.arguments_json, tool_spans.arguments_json),
                 started_at=COALESCE(tool_spans.started_at, excluded.started_at)""",
            (
                call["session_id"], call["tool_call_id"], call.get("session_key"),
                call.get("event_id"), call.get("tool_name"), dump_json(call.get("arguments")),
                call.get("started_at"),
            ),
        )
        return await self._refresh_duration(call["session_id"], call["tool_call_id"])

    async def upsert_tool_result(self, result: dict) -> dict:
        await self.db.execute(
            """INSERT INTO tool_spans (session_id, tool_call_id, session_key, event_id_result, tool_name, result_json, is_error, finished_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(session_id, tool_call_id) DO UPDATE SET
                 session_key=COALESCE(excluded.session_key, tool_spans.session_key),
                 event_id_result=excluded.event_id_result,
                 tool_name=COALESCE(tool_spans.tool_name, excluded.tool_name),
                 result_json=excluded.result_json,
                 is_error=excluded.is_error,
                 finished_at=excluded.finished_at""",
            (
                result["session_id"], result["tool_call_id"], result.get("session_key"),
                result.get("event_id"), result.get("tool_name"), dump_json(result.get("result")),
                1 if result.get("is_error") else 0, result.get("finished_at"),
            ),
        )
        return await self._refresh_duration(result["session_id"], result["tool_call_id"])

    async def _refresh_duration(self, session_id: str, tool_call_id: str) -> dict:
        span = await self.get_tool_span(session_id, tool_call_id) or {}
        duration = tool_duration_ms(span.get("started_at"), span.get("finished_at"))
        if duration is not None and duration != span.get("duration_ms"):
            await self.db.execute(
                "UPDATE tool_spans SET duration_ms = ? WHERE session_id = ? AND tool_call_id = ?",
                (duration, session_id, tool_call_id),
            )
            span["duration_ms"] = duration
        await self.db.commit()
        return span

    # ── Reads ───────────────────────────────────────────────────────

    async def get_tool_span(self, session_id: str, tool_call_id: str) -> dict | None:
        async with self.db.execute(
            "SELECT * FROM tool_spans WHERE session_id = ? AND tool_call_id = ?",
            (session_id, tool_call_id),
        ) as cur:
            row = await cur.fetchone()
        return _span_from_row(row) if row else None

    async def list_tool_spans(self, session_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM tool_spans WHERE session_id = ? ORDER BY started_at, tool_call_id",
            (session_id,),
        ) as cur:
            return [_span_from_row(r) for r in await cur.fetchall()]

    async def list_events(self, session_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM session_events WHERE session_id = ? ORDER BY source_line, event_id",
            (session_id,),
        ) as cur:
            rows = [dict(r) for r in await cur.fetchall()]
        for row in rows:
            row["raw_json"] = load_json(row.get("raw_json"), {})
        return rows

    async def list_messages(self, session_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM session_messages WHERE session_id = ? ORDER BY message_ts, event_id",
            (session_id,),
        ) as cur:
            return [dict(r) for r in await cur.fetchall()]
