import unittest

import aiosqlite

from mission_control.collectors.ingest import Ingestor, payload_hash, warning_title
from mission_control.db.migrations import run_migrations
from mission_control.models import (
    CollectedSnapshot,
    CronJobRecord,
    CronRunRecord,
    CronSnapshot,
    MemoryDocRecord,
    SessionRecord,
    SourceMetadata,
    StatusSnapshot,
)
from mission_control.redaction import EXCLUDED_PATH_SENTINEL

T0 = "2026-02-16T10:00:00.000Z"
T1 = "2026-02-16T10:00:10.000Z"
T2 = "2026-02-16T10:00:20.000Z"
T3 = "2026-02-16T10:00:30.000Z"


def _metadata(source_type: str, captured_at: str, transport: str = "command") -> SourceMetadata:
    return SourceMetadata(sourceType=source_type, capturedAt=captured_at, transport=transport, sourceRef="test-probe")


def sessions_snapshot(captured_at: str, *records: SessionRecord, warnings=None):
    return CollectedSnapshot[list[SessionRecord]](
        metadata=_metadata("sessions", captured_at), data=list(records), warnings=warnings or []
    )


class IngestTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.ingestor = Ingestor(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()


class SnapshotIdempotenceTests(IngestTestCase):
    async def test_same_snapshot_twice_is_one_row_and_no_duplicate_events(self) -> None:
        snapshot = sessions_snapshot(
            T0,
            SessionRecord(sessionKey="agent:main:main", status="active", lastUpdateAt=T0),
            warnings=["sessions_command_failed:boom"],
        )

        first = await self.ingestor.ingest_sessions(snapshot)
        second = await self.ingestor.ingest_sessions(snapshot)

        self.assertTrue(first.created)
        self.assertFalse(second.created)
        self.assertEqual(first.snapshotId, second.snapshotId)
        self.assertEqual(first.events, 1)
        self.assertEqual(second.events, 0)
        self.assertEqual(await self.ingestor.snapshot_repo.count("sessions"), 1)
        self.assertEqual(await self.ingestor.event_repo.count(), 1)

    async def test_new_capture_time_is_a_new_snapshot(self) -> None:
        record = SessionRecord(sessionKey="agent:main:main", status="active", lastUpdateAt=T0)
        await self.ingestor.ingest_sessions(sessions_snapshot(T0, record))
        await self.ingestor.ingest_sessions(sessions_snapshot(T1, record))

        self.assertEqual(await self.ingestor.snapshot_repo.count("sessions"), 2)

    async def test_payload_hash_ignores_key_order(self) -> None:
        self.assertEqual(payload_hash({"a": 1, "b": [1, 2]}), payload_hash({"b": [1, 2], "a": 1}))
        self.assertNotEqual(payload_hash({"a": 1}), payload_hash({"a": 2}))


class SessionTransitionTests(IngestTestCase):
    KEY = "agent:coder:subagent:abc-123"

    async def _poll(self, captured_at: str, **fields) -> dict:
        record = SessionRecord(sessionKey=self.KEY, agentId="coder", runType="subagent", **fields)
        await self.ingestor.ingest_sessions(sessions_snapshot(captured_at, record))
        return await self.ingestor.session_repo.get(self.KEY)

    async def test_started_at_survives_polls_and_ended_at_is_stamped_on_exit(self) -> None:
        row = await self._poll(T0, status="active", startedAt=T0, lastUpdateAt=T0)
        self.assertEqual(row["started_at"], T0)
        self.assertIsNone(row["ended_at"])

        row = await self._poll(T1, status="active", lastUpdateAt=T1)
        self.assertEqual(row["started_at"], T0)

        row = await self._poll(T2, status="recent", lastUpdateAt=T1)
        self.assertEqual(row["status"], "recent")
        self.assertEqual(row["started_at"], T0)
        self.assertEqual(row["ended_at"], T1)

        row = await self._poll(T3, status="recent", lastUpdateAt=T1)
        self.assertEqual(row["ended_at"], T1)

    async def test_active_without_start_uses_capture_time_once(self) -> None:
        row = await self._poll(T1, status="active", lastUpdateAt=T1)
        self.assertEqual(row["started_at"], T1)

        row = await self._poll(T2, status="active", lastUpdateAt=T2)
        self.assertEqual(row["started_at"], T1)

    async def test_reactivation_clears_end_and_keeps_start(self) -> None:
        await self._poll(T0, status="active", startedAt=T0, lastUpdateAt=T0)
        await self._poll(T1, status="recent", lastUpdateAt=T0)
        row = await self._poll(T2, status="active", lastUpdateAt=T2)

        self.assertEqual(row["started_at"], T0)
        self.assertIsNone(row["ended_at"])

    async def test_last_update_never_regresses(self) -> None:
        await self._poll(T0, status="active", lastUpdateAt=T2)
        row = await self._poll(T1, status="active", lastUpdateAt=T1)
        self.assertEqual(row["last_update_at"], T2)

        row = await self._poll(T3, status="active")
        self.assertEqual(row["last_update_at"], T2)

    async def test_labels_are_redacted_and_agents_tracked(self) -> None:
        await self._poll(T0, status="active", label="deploy with token=supersecretvalue", lastUpdateAt=T0)
        row = await self.ingestor.session_repo.get(self.KEY)
        agents = await self.ingestor.session_repo.list_agents()

        self.assertNotIn("supersecretvalue", row["label"])
        self.assertEqual([agent["agent_id"] for agent in agents], ["coder"])
        self.assertEqual(agents[0]["session_count"], 1)


class WarningEventTests(IngestTestCase):
    async def test_distinct_warnings_become_distinct_redacted_events(self) -> None:
        snapshot = CollectedSnapshot[list[MemoryDocRecord]](
            metadata=_metadata("memory", T0, transport="filesystem"),
            data=[],
            warnings=["missing_core_doc:USER.md", "missing_core_doc:MEMORY.md", "memory_dir_unavailable"],
        )
        result = await self.ingestor.ingest_memory(snapshot)
        events = await self.ingestor.event_repo.list_recent()

        self.assertEqual(result.events, 3)
        self.assertEqual(
            sorted(event["title"] for event in events),
            [
                "memory_adapter_warning:memory_dir_unavailable",
                "memory_adapter_warning:missing_core_doc:MEMORY.md",
                "memory_adapter_warning:missing_core_doc:USER.md",
            ],
        )
        self.assertTrue(all(event["severity"] == "warning" for event in events))
        self.assertTrue(all(event["ts"] == T0 for event in events))

    async def test_warning_details_are_redacted(self) -> None:
        snapshot = CollectedSnapshot[StatusSnapshot](
            metadata=_metadata("status", T0),
            data=StatusSnapshot(gatewayStatus="unknown", errors=["api_key=abcdef0123456789"]),
            warnings=["status_command_failed:api_key=abcdef0123456789"],
        )
        await self.ingestor.ingest_status(snapshot)
        events = await self.ingestor.event_repo.list_recent()
        sample = await self.ingestor.health_repo.latest()

        self.assertNotIn("abcdef0123456789", events[0]["details"])
        self.assertNotIn("abcdef0123456789", events[0]["title"])
        self.assertNotIn("abcdef0123456789", sample["errors_json"][0])

    def test_warning_title_is_truncated(self) -> None:
        title = warning_title("cron", "x" * 500)
        self.assertEqual(len(title), len("cron_adapter_warning:") + 200)


class StatusIngestTests(IngestTestCase):
    async def test_raw_output_is_redacted_and_truncated(self) -> None:
        raw = "Gateway running. Bearer abcdefghijklmnopqrstuv " + ("." * 5000)
        snapshot = CollectedSnapshot[StatusSnapshot](
            metadata=_metadata("status", T0),
            data=StatusSnapshot(gatewayStatus="ok", raw=raw),
        )
        await self.ingestor.ingest_status(snapshot)
        sample = await self.ingestor.health_repo.latest()

        self.assertEqual(sample["gateway_status"], "ok")
        self.assertNotIn("abcdefghijklmnopqrstuv", sample["raw"])
        self.assertLessEqual(len(sample["raw"]), 2048)
        self.assertEqual(sample["errors_json"], [])


class CronIngestTests(IngestTestCase):
    async def test_jobs_runs_and_rich_detail(self) -> None:
        job = CronJobRecord(
            jobId="job-1",
            name="Digest",
            scheduleKind="cron",
            enabled=True,
            agentId="main",
            schedule={"kind": "cron", "expr": "0 9 * * *"},
            delivery={"channel": "telegram", "to": "token=abcdef0123456789"},
            raw={"id": "job-1"},
        )
        run = CronRunRecord(runId="run-1", jobId="job-1", status="ok", summary="sent digest")
        snapshot = CollectedSnapshot[CronSnapshot](
            metadata=_metadata("cron", T0), data=CronSnapshot(jobs=[job], runs=[run])
        )

        result = await self.ingestor.ingest_cron(snapshot)
        jobs = await self.ingestor.cron_repo.list_jobs()
        runs = await self.ingestor.cron_repo.list_runs()
        latest = await self.ingestor.snapshot_repo.latest("cron")

        self.assertEqual(result.entities, 2)
        self.assertEqual(jobs[0]["name"], "Digest")
        self.assertTrue(jobs[0]["enabled"])
        self.assertEqual(runs[0]["summary"], "sent digest")
        detail = latest["payload_json"]["details"]["job-1"]
        self.assertEqual(detail["schedule"], {"kind": "cron", "expr": "0 9 * * *"})
        self.assertNotIn("abcdef0123456789", detail["delivery"]["to"])
        self.assertNotIn("raw", latest["payload_json"]["jobs"][0])


class MemoryIngestTests(IngestTestCase):
    async def test_summary_is_redacted_bounded_and_content_never_stored(self) -> None:
        docs = [
            MemoryDocRecord(
                path="/ws/MEMORY.md",
                kind="core",
                title="Memory",
                updatedAt=T0,
                content="remember sk-abcdefghijklmnop1234 " + ("word " * 200),
            ),
            MemoryDocRecord(path="/ws/memory/secrets.md", kind="memory", title="Keys", content="nothing to see"),
        ]
        snapshot = CollectedSnapshot[list[MemoryDocRecord]](
            metadata=_metadata("memory", T0, transport="filesystem"), data=docs
        )

        await self.ingestor.ingest_memory(snapshot)
        rows = {row["path"]: row for row in await self.ingestor.memory_repo.list_docs()}
        latest = await self.ingestor.snapshot_repo.latest("memory")

        core = rows["/ws/MEMORY.md"]
        self.assertTrue(core["redacted"])
        self.assertNotIn("sk-abcdefghijklmnop1234", core["summary"])
        self.assertLessEqual(len(core["summary"]), 240)
        excluded = rows["/ws/memory/secrets.md"]
        self.assertEqual(excluded["summary"], EXCLUDED_PATH_SENTINEL)
        self.assertEqual(excluded["title"], EXCLUDED_PATH_SENTINEL)
        self.assertNotIn("content", latest["payload_json"]["docs"][0])
        self.assertNotIn("word word", str(latest["payload_json"]))


if __name__ == "__main__":
    unittest.main()
