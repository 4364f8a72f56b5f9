import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import aiosqlite

from mission_control.collectors.transcripts import (
    HEAD_FINGERPRINT_MAX_BYTES,
    TranscriptTailer,
    event_id_for_line,
    head_fingerprint,
    text_preview,
)
from mission_control.command_runner import LocalFileAccess
from mission_control.db.factory import get_session_repository, get_transcript_repository
from mission_control.db.migrations import run_migrations

SESSION_ID = "sess-1"
SESSION_KEY = "agent:main:main"

RECORDS = [
    {"type": "session", "id": "sess-header", "timestamp": "2026-02-16T10:00:00Z", "cwd": "/ws"},
    {
        "type": "message",
        "timestamp": "2026-02-16T10:00:01Z",
        "message": {"role": "user", "content": [{"type": "text", "text": "List files"}]},
    },
    {
        "type": "message",
        "id": "msg-2",
        "parentId": "sess-header",
        "timestamp": "2026-02-16T10:00:02Z",
        "message": {
            "role": "assistant",
            "model": "claude-sonnet",
            "provider": "anthropic",
            "stopReason": "toolUse",
            "usage": {"input": 10, "output": 5, "totalTokens": 15},
            "content": [
                {"type": "text", "text": "Running ls"},
                {"type": "toolCall", "id": "call-1", "name": "bash", "arguments": {"cmd": "ls"}},
            ],
        },
    },
    {
        "type": "message",
        "id": "msg-3",
        "parentId": "msg-2",
        "timestamp": "2026-02-16T10:00:03.500Z",
        "message": {
            "role": "toolResult",
            "toolCallId": "call-1",
            "toolName": "bash",
            "isError": False,
            "content": [{"type": "text", "text": "a.txt"}],
        },
    },
    {
        "type": "message",
        "id": "msg-4",
        "parentId": "msg-3",
        "timestamp": "2026-02-16T10:00:04Z",
        "message": {"role": "assistant", "content": [{"type": "text", "text": "One file: a.txt"}]},
    },
]


def transcript_text(records: list[dict]) -> str:
    return "".join(json.dumps(record) + "\n" for record in records)


class TranscriptTailerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.agents_root = self.root / "agents"
        self.dbs: list[aiosqlite.Connection] = []

    async def asyncTearDown(self) -> None:
        for db in self.dbs:
            await db.close()

    async def _db(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(":memory:")
        db.row_factory = aiosqlite.Row
        await run_migrations(db)
        self.dbs.append(db)
        return db

    async def _seed_session(self, db, transcript: Path) -> None:
        await get_session_repository(db).upsert_many(
            [
                {
                    "sessionKey": SESSION_KEY,
                    "sessionId": SESSION_ID,
                    "status": "active",
                    "lastUpdateAt": "2026-02-16T10:00:04.000Z",
                    "transcriptPath": str(transcript),
                }
            ],
            None,
            "2026-02-16T10:00:05.000Z",
        )

    async def _tailer(self, transcript: Path, seed: bool = True):
        db = await self._db()
        if seed:
            await self._seed_session(db, transcript)
        return db, TranscriptTailer(db, agents_root=self.agents_root, max_files=10)

    async def _rows(self, db) -> tuple[list, list, list]:
        repo = get_transcript_repository(db)
        return (
            await repo.list_events(SESSION_ID),
            await repo.list_messages(SESSION_ID),
            await repo.list_tool_spans(SESSION_ID),
        )

    async def test_two_passes_match_one_pass(self) -> None:
        content = transcript_text(RECORDS).encode("utf-8")
        cut = content.index(b'"Running ls"')

        whole = self.root / "whole.jsonl"
        whole.write_bytes(content)
        db_one, one_pass = await self._tailer(whole)
        await one_pass.run()

        split = self.root / "split.jsonl"
        split.write_bytes(content[:cut])
        db_two, two_pass = await self._tailer(split)
        first = await two_pass.run()
        with split.open("ab") as handle:
            handle.write(content[cut:])
        second = await two_pass.run()

        self.assertEqual(first.events, 2)
        self.assertEqual(second.events, 3)
        self.assertEqual(await self._rows(db_one), await self._rows(db_two))

        offsets = await get_transcript_repository(db_two).get_offsets()
        self.assertEqual(offsets[SESSION_ID]["offset"], len(content))
        self.assertEqual(offsets[SESSION_ID]["line"], len(RECORDS))

    async def test_rerun_without_new_bytes_changes_nothing(self) -> None:
        transcript = self.root / "t.jsonl"
        transcript.write_text(transcript_text(RECORDS), encoding="utf-8")
        db, tailer = await self._tailer(transcript)

        await tailer.run()
        before = await self._rows(db)
        again = await tailer.run()

        self.assertEqual(again.events, 0)
        self.assertEqual(again.files, 0)
        self.assertEqual(await self._rows(db), before)

    async def test_events_messages_and_ids(self) -> None:
        transcript = self.root / "t.jsonl"
        transcript.write_text(transcript_text(RECORDS), encoding="utf-8")
        db, tailer = await self._tailer(transcript)

        stats = await tailer.run()
        events, messages, _ = await self._rows(db)

        self.assertEqual(stats.events, 5)
        self.assertEqual(stats.messages, 4)
        self.assertEqual(events[0]["event_id"], "sess-header")
        self.assertTrue(events[1]["event_id"].startswith("line_2_"))
        self.assertEqual(events[2]["parent_event_id"], "sess-header")
        self.assertEqual(events[2]["session_key"], SESSION_KEY)
        self.assertEqual(events[2]["raw_json"]["message"]["textPreview"], "Running ls")
        self.assertNotIn("cwd", events[0]["raw_json"])

        assistant = next(row for row in messages if row["event_id"] == "msg-2")
        self.assertEqual(assistant["role"], "assistant")
        self.assertEqual(assistant["model"], "claude-sonnet")
        self.assertEqual(assistant["stop_reason"], "toolUse")
        self.assertEqual(
            (assistant["usage_input"], assistant["usage_output"], assistant["usage_total"]), (10, 5, 15)
        )

    async def test_tool_call_and_result_merge_into_one_span(self) -> None:
        transcript = self.root / "t.jsonl"
        transcript.write_text(transcript_text(RECORDS), encoding="utf-8")
        db, tailer = await self._tailer(transcript)

        stats = await tailer.run()
        _, _, spans = await self._rows(db)

        self.assertEqual((stats.toolCalls, stats.toolResults), (1, 1))
        self.assertEqual(len(spans), 1)
        span = spans[0]
        self.assertEqual(span["tool_call_id"], "call-1")
        self.assertEqual(span["tool_name"], "bash")
        self.assertEqual(span["event_id_call"], "msg-2")
        self.assertEqual(span["event_id_result"], "msg-3")
        self.assertEqual(span["arguments_json"], {"cmd": "ls"})
        self.assertEqual(span["result_json"], [{"type": "text", "text": "a.txt"}])
        self.assertFalse(span["is_error"])
        self.assertEqual(span["duration_ms"], 1500)

    async def test_result_before_call_still_merges(self) -> None:
        transcript = self.root / "t.jsonl"
        transcript.write_text(transcript_text([RECORDS[3], RECORDS[2]]), encoding="utf-8")
        db, tailer = await self._tailer(transcript)

        await tailer.run()
        _, _, spans = await self._rows(db)

        self.assertEqual(len(spans), 1)
        self.assertEqual(spans[0]["duration_ms"], 1500)

    async def test_partial_trailing_line_waits_for_newline(self) -> None:
        transcript = self.root / "t.jsonl"
        first_line = json.dumps(RECORDS[0]) + "\n"
        transcript.write_text(first_line + json.dumps(RECORDS[1]), encoding="utf-8")
        db, tailer = await self._tailer(transcript)

        stats = await tailer.run()
        offsets = await get_transcript_repository(db).get_offsets()
        self.assertEqual(stats.events, 1)
        self.assertEqual(offsets[SESSION_ID]["offset"], len(first_line.encode("utf-8")))

        with transcript.open("a", encoding="utf-8") as handle:
            handle.write("\n")
        stats = await tailer.run()
        self.assertEqual(stats.events, 1)
        self.assertEqual((await get_transcript_repository(db).get_offsets())[SESSION_ID]["line"], 2)

    async def test_unparseable_lines_are_skipped_but_consumed(self) -> None:
        transcript = self.root / "t.jsonl"
        transcript.write_text(
            json.dumps(RECORDS[0]) + "\n{broken json\n\n[1, 2]\n" + json.dumps(RECORDS[4]) + "\n",
            encoding="utf-8",
        )
        db, tailer = await self._tailer(transcript)

        stats = await tailer.run()
        events, _, _ = await self._rows(db)

        self.assertEqual(stats.skippedLines, 2)
        self.assertEqual(stats.events, 2)
        self.assertEqual([event["source_line"] for event in events], [1, 4])

    async def test_truncated_file_resets_offset(self) -> None:
        transcript = self.root / "t.jsonl"
        transcript.write_text(transcript_text(RECORDS), encoding="utf-8")
        db, tailer = await self._tailer(transcript)
        await tailer.run()

        rotated = {"type": "session", "id": "sess-header-2", "timestamp": "2026-02-16T11:00:00Z"}
        transcript.write_text(transcript_text([rotated]), encoding="utf-8")
        with self.assertLogs("mission_control.transcripts", level="INFO"):
            stats = await tailer.run()

        offsets = await get_transcript_repository(db).get_offsets()
        events, _, _ = await self._rows(db)
        self.assertEqual(stats.resets, 1)
        self.assertEqual(stats.events, 1)
        self.assertEqual(offsets[SESSION_ID]["line"], 1)
        self.assertEqual(offsets[SESSION_ID]["offset"], transcript.stat().st_size)
        self.assertIn("sess-header-2", [event["event_id"] for event in events])

    async def test_missing_file_is_skipped_without_offset(self) -> None:
        db, tailer = await self._tailer(self.root / "gone.jsonl")

        with self.assertLogs("mission_control.transcripts", level="WARNING"):
            stats = await tailer.run()

        self.assertEqual(stats.files, 0)
        self.assertEqual(await get_transcript_repository(db).get_offsets(), {})

    async def test_discovers_agent_transcripts_when_store_has_none(self) -> None:
        sessions_dir = self.agents_root / "coder" / "sessions"
        sessions_dir.mkdir(parents=True)
        (sessions_dir / "sess-42-topic-7.jsonl").write_text(transcript_text(RECORDS[:2]), encoding="utf-8")
        (sessions_dir / "notes.txt").write_text("ignored", encoding="utf-8")
        db, tailer = await self._tailer(self.root / "unused.jsonl", seed=False)

        targets = await tailer.targets()
        stats = await tailer.run()

        self.assertEqual([target.sessionId for target in targets], ["sess-42"])
        self.assertEqual(stats.events, 2)
        self.assertEqual(len(await get_transcript_repository(db).list_events("sess-42")), 2)


    async def test_non_string_fields_are_dropped_not_fatal(self) -> None:
        odd = {
            "type": "message",
            "id": "msg-odd",
            "parentId": {"id": "p"},
            "timestamp": "2026-02-16T10:00:02Z",
            "message": {
                "role": ["assistant"],
                "model": {"id": "x"},
                "provider": 7,
                "stopReason": {"kind": "end"},
                "content": [
                    {"type": "text", "text": "hi"},
                    {"type": "toolCall", "id": "call-9", "name": ["bash"], "arguments": {}},
                ],
            },
        }
        transcript = self.root / "t.jsonl"
        transcript.write_text(transcript_text([odd, RECORDS[4]]), encoding="utf-8")
        db, tailer = await self._tailer(transcript)

        stats = await tailer.run()
        events, messages, spans = await self._rows(db)
        offsets = await get_transcript_repository(db).get_offsets()

        self.assertEqual(stats.events, 2)
        self.assertEqual(stats.skippedLines, 0)
        self.assertEqual(offsets[SESSION_ID]["offset"], transcript.stat().st_size)
        self.assertIsNone(events[0]["parent_event_id"])
        odd_message = next(row for row in messages if row["event_id"] == "msg-odd")
        self.assertEqual(odd_message["role"], "unknown")
        self.assertIsNone(odd_message["model"])
        self.assertIsNone(odd_message["provider"])
        self.assertIsNone(odd_message["stop_reason"])
        self.assertIsNone(spans[0]["tool_name"])

    async def test_failing_line_is_skipped_and_other_files_still_tailed(self) -> None:
        first = self.root / "first.jsonl"
        second = self.root / "second.jsonl"
        first.write_text(transcript_text(RECORDS[:3]), encoding="utf-8")
        second.write_text(transcript_text(RECORDS[:2]), encoding="utf-8")
        db = await self._db()
        await get_session_repository(db).upsert_many(
            [
                {"sessionKey": "agent:main:a", "sessionId": "sess-a", "status": "active", "transcriptPath": str(first)},
                {"sessionKey": "agent:main:b", "sessionId": "sess-b", "status": "active", "transcriptPath": str(second)},
            ],
            None,
            "2026-02-16T10:00:05.000Z",
        )

        class UnreadableFirst(LocalFileAccess):
            def read_bytes_from(self, path: Path, offset: int) -> bytes:
                if path == first:
                    raise RuntimeError("disk went away")
                return super().read_bytes_from(path, offset)

        tailer = TranscriptTailer(db, agents_root=self.agents_root, files=UnreadableFirst())
        repo = tailer.transcript_repo
        insert_event = repo.insert_event

        async def failing_insert(event: dict) -> bool:
            if event["event_id"] == "sess-header" and event["session_id"] == "sess-b":
                raise ValueError("rejected by store")
            return await insert_event(event)

        with patch.object(repo, "insert_event", side_effect=failing_insert):
            with self.assertLogs("mission_control.transcripts", level="ERROR"):
                stats = await tailer.run()

        offsets = await repo.get_offsets()
        self.assertEqual(stats.failedFiles, 1)
        self.assertEqual(stats.skippedLines, 1)
        self.assertEqual(stats.events, 1)
        self.assertNotIn("sess-a", offsets)
        self.assertEqual(offsets["sess-b"]["line"], 2)
        self.assertEqual(offsets["sess-b"]["offset"], second.stat().st_size)

    async def test_replaced_file_longer_than_offset_is_read_from_start(self) -> None:
        transcript = self.root / "t.jsonl"
        transcript.write_text(transcript_text(RECORDS[:2]), encoding="utf-8")
        db, tailer = await self._tailer(transcript)
        await tailer.run()

        replacement = [
            {"type": "session", "id": "sess-header-2", "timestamp": "2026-02-16T11:00:00Z"},
            *RECORDS[2:],
        ]
        transcript.write_text(transcript_text(replacement), encoding="utf-8")
        with self.assertLogs("mission_control.transcripts", level="INFO") as logs:
            stats = await tailer.run()

        offsets = await get_transcript_repository(db).get_offsets()
        events, _, _ = await self._rows(db)
        self.assertTrue(any("replaced" in line for line in logs.output))
        self.assertEqual(stats.resets, 1)
        self.assertEqual(stats.events, len(replacement))
        self.assertEqual(offsets[SESSION_ID]["line"], len(replacement))
        self.assertEqual(offsets[SESSION_ID]["fingerprint"], head_fingerprint(transcript.read_bytes()))
        self.assertIn("sess-header-2", [event["event_id"] for event in events])


class TranscriptHelperTests(unittest.TestCase):
    def test_head_fingerprint_waits_for_complete_first_line(self) -> None:
        self.assertIsNone(head_fingerprint(b'{"type": "sess'))
        self.assertEqual(head_fingerprint(b"a\nb\n"), head_fingerprint(b"a\nc"))
        self.assertNotEqual(head_fingerprint(b"a\n"), head_fingerprint(b"b\n"))
        self.assertIsNotNone(head_fingerprint(b"x" * HEAD_FINGERPRINT_MAX_BYTES))

    def test_derived_event_id_is_stable(self) -> None:
        line = '{"type": "message"}'
        self.assertEqual(event_id_for_line({}, line, 3), event_id_for_line({}, line, 3))
        self.assertNotEqual(event_id_for_line({}, line, 3), event_id_for_line({}, line, 4))
        self.assertEqual(event_id_for_line({"id": "evt-9"}, line, 3), "evt-9")

    def test_text_preview_joins_and_redacts(self) -> None:
        content = [
            {"type": "text", "text": "first"},
            {"type": "toolCall", "id": "x"},
            {"type": "text", "text": "key sk-abcdefghijklmnop1234"},
        ]
        preview = text_preview(content)
        self.assertTrue(preview.startswith("first · key "))
        self.assertNotIn("sk-abcdefghijklmnop1234", preview)
        self.assertEqual(len(text_preview("x" * 1000)), 480)
        self.assertIsNone(text_preview([]))
        self.assertIsNone(text_preview(None))


if __name__ == "__main__":
    unittest.main()
