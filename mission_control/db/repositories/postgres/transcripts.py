from __future__ import annotations

import asyncpg

from mission_control.date_utils import now_iso
from mission_control.db.repositories.common import dump_json, load_json, tool_duration_ms


def _span_from_row(row) -> dict:
    data = dict(row)
    data["arguments_json"] = load_json(data.get("arguments_json"))
    data["result_json"] = load_json(data.get("result_json"))
    return data


class PostgresTranscriptRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def get_offsets(self) -> dict[str, dict]:
        rows = await self.db.fetch(
            "SELECT session_id, transcript_path, last_byte_offset, last_line_number, head_fingerprint "
            "FROM session_stream_offsets"
        )
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
               VALUES ($1, $2, $3, $4, $5, $6, $7)
               ON CONFLICT(session_id) DO UPDATE SET
                 session_key=COALESCE(EXCLUDED.session_key, session_stream_offsets.session_key),
                 transcript_path=EXCLUDED.transcript_path,
                 last_byte_offset=EXCLUDED.last_byte_offset,
                 last_line_number=EXCLUDED.last_line_number,
                 head_fingerprint=EXCLUDED.head_fingerprint,
                 updated_at=EXCLUDED.updated_at""",
            session_id, session_key, transcript_path, byte_offset, line_number, fingerprint, now_iso(),
        )

    async def insert_event(self, event: dict) -> bool:
        inserted = await self.db.fetchval(
            """INSERT INTO session_events (session_id, event_id, session_key, parent_event_id, event_type, event_ts, source_line, raw_json)
               VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
               ON CONFLICT(session_id, event_id) DO NOTHING
               RETURNING event_id""",
            event["session_id"], event["event_id"], event.get("session_key"),
            event.get("parent_event_id"), event.get("event_type") or "unknown",
            event.get("event_ts"), event["source_line"], dump_json(event.get("raw") or {}),
        )
        return inserted is not None

    async def upsert_message(self, message: dict) -> None:
        await self.db.execute(
            """INSERT INTO session_messages (session_id, event_id, session_key, role, message_ts, text_preview,
                   provider, model, stop_reason, usage_input, usage_output, usage_total)
               VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
               ON CONFLICT(session_id, event_id) DO UPDATE SET
                 session_key=COALESCE(EXCLUDED.session_key, session_messages.session_key),
                 role=EXCLUDED.role, message_ts=EXCLUDED.message_ts, text_preview=EXCLUDED.text_preview,
                 provider=EXCLUDED.provider, model=EXCLUDED.model, stop_reason=EXCLUDED.stop_reason,
                 usage_input=EXCLUDED.usage_input, usage_output=EXCLUDED.usage_output,
                 usage_total=EXCLUDED.usage_total""",
            message["session_id"], message["event_id"], message.get("session_key"),
            message.get("role") or "unknown", message.get("message_ts"), message.get("text_preview"),
            message.get("provider"), message.get("model"), message.get("stop_reason"),
            message.get("usage_input"), message.get("usage_output"), message.get("usage_total"),
        )

    async def upsert_tool_call(self, call: dict) -> dict:
        await self.db.execute(
            """INSERT INTO tool_spans (session_id, tool_call_id, session_key, event_id_call, tool_name, arguments_json, started_at)
               VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7)
               ON CONFLICT(session_id, tool_call_id) DO UPDATE SET
                 session_key=COALESCE(EXCLUDED.session_key, tool_spans.session_key),
                 event_id_call=EXCLUDED.event_id_call,
                 tool_name=COALESCE(tool_spans.tool_name, EXCLUDED.tool_name),
                 arguments_json=COALESCE(EXCLUDED.arguments_json, tool_spans.arguments_json),
                 started_at=COALESCE(tool_spans.started_at, EXCLUDED.started_at)""",
            call["session_id"], call["tool_call_id"], call.get("session_key"),
            call.get("event_id"), call.get("tool_name"), dump_json(call.get("arguments")),
            call.get("started_at"),
        )
        return await self._refresh_duration(call["session_id"], call["tool_call_id"])

    async def upsert_tool_result(self, result: dict) -> dict:
        await self.db.execute(
            """INSERT INTO tool_spans (session_id, tool_call_id, session_key, event_id_result, tool_name, result_json, is_error, finished_at)
               VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8)
               ON CONFLICT(session_id, tool_call_id) DO UPDATE SET
                 session_key=COALESCE(EXCLUDED.session_key, tool_spans.session_key),
                 event_id_result=EXCLUDED.event_id_result,
                 tool_name=COALESCE(tool_spans.tool_name, EXCLUDED.tool_name),
                 result_json=EXCLUDED.result_json,
                 is_error=EXCLUDED.is_error,
                 finished_at=EXCLUDED.finished_at""",
            result["session_id"], result["tool_call_id"], result.get("session_key"),
            result.get("event_id"), result.get("tool_name"), dump_json(result.get("result")),
            bool(result.get("is_error")), result.get("finished_at"),
        )
        return await self._refresh_duration(result["session_id"], result["tool_call_id"])

    async def _refresh_duration(self, session_id: str, tool_call_id: str) -> dict:
        span = await self.get_tool_span(session_id, tool_call_id) or {}
        duration = tool_duration_ms(span.get("started_at"), span.get("finished_at"))
        if duration is not None and duration != span.get("duration_ms"):
            await self.db.execute(
                "UPDATE tool_spans SET duration_ms = $1 WHERE session_id = $2 AND tool_call_id = $3",
                duration, session_id, tool_call_id,
            )
            span["duration_ms"] = duration
        return span

    async def get_tool_span(self, session_id: str, tool_call_id: str) -> dict | None:
        row = await self.db.fetchrow(
            "SELECT * FROM tool_spans WHERE session_id = $1 AND tool_call_id = $2",
            session_id, tool_call_id,
        )
        return _span_from_row(row) if row else None

    async def list_tool_spans(self, session_id: str) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM tool_spans WHERE session_id = $1 ORDER BY started_at, tool_call_id", session_id
        )
        return [_span_from_row(r) for r in rows]

    async def list_events(self, session_id: str) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM session_events WHERE session_id = $1 ORDER BY source_line, event_id", session_id
        )
        result = [dict(r) for r in rows]
        for row in result:
            row["raw_json"] = load_json(row.get("raw_json"), {})
        return result

    async def list_messages(self, session_id: str) -> list[dict]:
        rows = await self.db.fetch(
            "SELECT * FROM session_messages WHERE session_id = $1 ORDER BY message_ts, event_id", session_id
        )
        return [dict(r) for r in rows]
