"""Incremental transcript tailer.

Reads each session's append-only JSONL transcript past the last persisted
byte offset and turns complete lines into session events, chat messages and
merged tool spans. Only ``\\n``-terminated lines are consumed, so a line that
is still being written is picked up whole on the next pass.

A file that shrank below its offset, or whose first line no longer hashes to
the stored fingerprint, is treated as replaced and read again from the start.
A replacement that keeps the same first line and is already longer than the
old offset cannot be told apart from an append.
"""
from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

from mission_control import config, observability
from mission_control.command_runner import FileAccess, LocalFileAccess
from mission_control.date_utils import to_iso
from mission_control.db.factory import get_session_repository, get_transcript_repository
from mission_control.models import TailStats, TranscriptTarget
from mission_control.redaction import redact_text, redact_value

logger = logging.getLogger("mission_control.transcripts")

TEXT_PREVIEW_MAX_CHARS = 480
_PREVIEW_SEPARATOR = " · "
_TOPIC_MARKER = "-topic-"
HEAD_FINGERPRINT_MAX_BYTES = 4096


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) and value.strip() else None


def head_fingerprint(head: bytes) -> str | None:
    """Hash of the first complete line, or None while that line is still being written."""
    end = head.find(b"\n")
    if end >= 0:
        head = head[: end + 1]
    elif len(head) < HEAD_FINGERPRINT_MAX_BYTES:
        return None
    return hashlib.sha1(head).hexdigest()


def event_id_for_line(record: dict[str, Any], line: str, line_number: int) -> str:
    explicit = record.get("id")
    if isinstance(explicit, str) and explicit.strip():
        return explicit.strip()
    digest = hashlib.sha1(line.encode("utf-8")).hexdigest()[:10]
    return f"line_{line_number}_{digest}"


def text_preview(content: Any) -> str | None:
    """Join the text blocks of a message body into one bounded preview."""
    if isinstance(content, str):
        text = content.strip()
    elif isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
                piece = block["text"].strip()
                if piece:
                    parts.append(piece)
        text = _PREVIEW_SEPARATOR.join(parts)
    else:
        return None
    if not text:
        return None
    return redact_text(text[:TEXT_PREVIEW_MAX_CHARS]).value


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _message_summary(message: dict[str, Any], preview: str | None) -> dict[str, Any]:
    summary = {
        "role": _text(message.get("role")),
        "model": _text(message.get("model")),
        "provider": _text(message.get("provider")),
        "stopReason": _text(message.get("stopReason")),
        "textPreview": preview,
    }
    if message.get("role") == "toolResult":
        summary["toolCallId"] = _text(message.get("toolCallId"))
        summary["toolName"] = _text(message.get("toolName"))
        summary["isError"] = message.get("isError") is True
    return summary


def compact_event(record: dict[str, Any], event_id: str, event_ts: str | None) -> dict[str, Any]:
    compact: dict[str, Any] = {
        "id": event_id,
        "type": _text(record.get("type")),
        "timestamp": event_ts,
        "parentId": _text(record.get("parentId")),
    }
    message = record.get("message")
    if isinstance(message, dict):
        compact["message"] = _message_summary(message, text_preview(message.get("content")))
    return compact


def session_id_from_path(path: Path) -> str:
    return path.stem.split(_TOPIC_MARKER, 1)[0]


class TranscriptTailer:
    def __init__(
        self,
        db: Any,
        agents_root: Path | None = None,
        files: FileAccess | None = None,
        max_files: int | None = None,
    ):
        self.db = db
        self.agents_root = agents_root or config.AGENTS_ROOT
        self.files = files or LocalFileAccess()
        self.max_files = max_files or config.TRANSCRIPT_MAX_FILES
        self.session_repo = get_session_repository(db)
        self.transcript_repo = get_transcript_repository(db)

    async def run(self) -> TailStats:
        stats = TailStats()
        targets = await self.targets()
        if not targets:
            return stats

        offsets = await self.transcript_repo.get_offsets()
        session_keys = await self.session_repo.session_keys_by_id()
        for target in targets:
            session_key = target.sessionKey or session_keys.get(target.sessionId)
            try:
                await self._tail(target, session_key, offsets.get(target.sessionId), stats)
            except Exception:
                logger.exception("Failed to tail transcript %s", target.transcriptPath)
                stats.failedFiles += 1

        if stats.events or stats.resets:
            logger.info(
                "Tailed %d transcripts: %d events, %d messages, %d tool calls, %d tool results",
                stats.files, stats.events, stats.messages, stats.toolCalls, stats.toolResults,
            )
        return stats

    async def targets(self) -> list[TranscriptTarget]:
        rows = await self.session_repo.transcript_targets(self.max_files)
        targets = [
            TranscriptTarget(
                sessionId=row["session_id"],
                transcriptPath=row["transcript_path"],
                sessionKey=row.get("session_key"),
            )
            for row in rows
        ]
        if targets:
            return targets
        return self.discover()

    def discover(self) -> list[TranscriptTarget]:
        """Find ``<agents_root>/*/sessions/*.jsonl`` when the store knows no transcript paths."""
        try:
            agent_dirs = self.files.list_dir(self.agents_root)
        except OSError as exc:
            logger.debug("Agents root %s unavailable: %s", self.agents_root, exc)
            return []

        targets: list[TranscriptTarget] = []
        seen: set[str] = set()
        for agent_dir in agent_dirs:
            try:
                entries = self.files.list_dir(agent_dir / "sessions")
            except OSError:
                continue
            for path in entries:
                if path.suffix != ".jsonl":
                    continue
                session_id = session_id_from_path(path)
                # Offsets are keyed per session, so only the first file of a session is tailed.
                if session_id in seen:
                    continue
                seen.add(session_id)
                targets.append(TranscriptTarget(sessionId=session_id, transcriptPath=str(path)))
                if len(targets) >= self.max_files:
                    return targets
        return targets

    async def _tail(
        self,
        target: TranscriptTarget,
        session_key: str | None,
        saved: dict | None,
        stats: TailStats,
    ) -> None:
        path = Path(target.transcriptPath)
        offset = 0
        line_number = 0
        saved_fingerprint = None
        if saved and saved.get("transcript_path") == target.transcriptPath:
            offset = int(saved.get("offset") or 0)
            line_number = int(saved.get("line") or 0)
            saved_fingerprint = saved.get("fingerprint")

        try:
            size = self.files.size(path)
            fingerprint = head_fingerprint(self.files.read_head(path, HEAD_FINGERPRINT_MAX_BYTES))
        except OSError as exc:
            logger.warning("Transcript %s unreadable: %s", path, exc)
            return

        reset = False
        if offset > size:
            logger.info("Transcript %s shrank (%d < %d), resetting offset", path, size, offset)
            reset = True
        elif offset and saved_fingerprint and fingerprint != saved_fingerprint:
            logger.info("Transcript %s was replaced, resetting offset", path)
            reset = True
        if reset:
            offset = 0
            line_number = 0
            stats.resets += 1

        if offset == size and not reset:
            return

        try:
            chunk = self.files.read_bytes_from(path, offset)
        except OSError as exc:
            logger.warning("Transcript %s unreadable: %s", path, exc)
            return

        stats.files += 1
        end = chunk.rfind(b"\n")
        if end >= 0:
            for raw_line in chunk[: end + 1].split(b"\n"):
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                line_number += 1
                try:
                    await self._process_line(target.sessionId, session_key, line, line_number, stats)
                except Exception:
                    # A store outage fails the offset write below too, so the offset stays put.
                    logger.exception("Skipping line %d of %s", line_number, path)
                    stats.skippedLines += 1
            offset += end + 1

        if end >= 0 or reset:
            await self.transcript_repo.upsert_offset(
                target.sessionId, session_key, target.transcriptPath, offset, line_number, fingerprint
            )

    async def _process_line(
        self,
        session_id: str,
        session_key: str | None,
        line: str,
        line_number: int,
        stats: TailStats,
    ) -> None:
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            stats.skippedLines += 1
            return
        if not isinstance(record, dict):
            stats.skippedLines += 1
            return

        event_id = event_id_for_line(record, line, line_number)
        event_ts = to_iso(record.get("timestamp"))
        created = await self.transcript_repo.insert_event(
            {
                "session_id": session_id,
                "event_id": event_id,
                "session_key": session_key,
                "parent_event_id": _text(record.get("parentId")),
                "event_type": _text(record.get("type")),
                "event_ts": event_ts,
                "source_line": line_number,
                "raw": compact_event(record, event_id, event_ts),
            }
        )
        stats.events += int(created)

        message = record.get("message")
        if record.get("type") != "message" or not isinstance(message, dict):
            return
        await self._process_message(session_id, session_key, event_id, event_ts, message, stats)

    async def _process_message(
        self,
        session_id: str,
        session_key: str | None,
        event_id: str,
        event_ts: str | None,
        message: dict[str, Any],
        stats: TailStats,
    ) -> None:
        role = _text(message.get("role")) or "unknown"
        usage = message.get("usage") if isinstance(message.get("usage"), dict) else {}
        await self.transcript_repo.upsert_message(
            {
                "session_id": session_id,
                "event_id": event_id,
                "session_key": session_key,
                "role": role,
                "message_ts": event_ts,
                "text_preview": text_preview(message.get("content")),
                "provider": _text(message.get("provider")),
                "model": _text(message.get("model")),
                "stop_reason": _text(message.get("stopReason")),
                "usage_input": _as_int(usage.get("input")),
                "usage_output": _as_int(usage.get("output")),
                "usage_total": _as_int(usage.get("totalTokens")),
            }
        )
        stats.messages += 1

        content = message.get("content")
        if isinstance(content, list):
            for block in content:
                if not isinstance(block, dict) or block.get("type") != "toolCall":
                    continue
                tool_call_id = block.get("id")
                if not isinstance(tool_call_id, str) or not tool_call_id:
                    continue
                arguments = block.get("arguments")
                if arguments is None:
                    arguments = block.get("partialJson")
                span = await self.transcript_repo.upsert_tool_call(
                    {
                        "session_id": session_id,
                        "tool_call_id": tool_call_id,
                        "session_key": session_key,
                        "event_id": event_id,
                        "tool_name": _text(block.get("name")),
                        "arguments": redact_value(arguments)[0] if arguments is not None else None,
                        "started_at": event_ts,
                    }
                )
                stats.toolCalls += 1
                self._record_span(span)

        tool_call_id = message.get("toolCallId")
        if role == "toolResult" and isinstance(tool_call_id, str) and tool_call_id:
            span = await self.transcript_repo.upsert_tool_result(
                {
                    "session_id": session_id,
                    "tool_call_id": tool_call_id,
                    "session_key": session_key,
                    "event_id": event_id,
                    "tool_name": _text(message.get("toolName")),
                    "result": redact_value(content)[0] if content is not None else None,
                    "is_error": message.get("isError") is True,
                    "finished_at": event_ts,
                }
            )
            stats.toolResults += 1
            self._record_span(span)

    @staticmethod
    def _record_span(span: dict) -> None:
        if not span or not span.get("started_at") or not span.get("finished_at"):
            return
        status = "error" if span.get("is_error") else "ok"
        observability.record_tool_span(span.get("tool_name") or "unknown", status, span.get("duration_ms"))
