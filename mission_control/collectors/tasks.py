"""Collector task wiring: adapter -> ingestor on hot and warm cadences."""
from __future__ import annotations

from pathlib import Path

from mission_control import config
from mission_control.adapters import CronAdapter, MemoryAdapter, SessionsAdapter, StatusAdapter
from mission_control.collectors.cadence import CadenceProfile
from mission_control.collectors.ingest import Ingestor
from mission_control.collectors.scheduler import CollectorContext, CollectorTask
from mission_control.collectors.transcripts import TranscriptTailer
from mission_control.command_runner import FileAccess, shell_command_runner

TRANSCRIPTS_COLLECTOR = "transcripts_hot"


def build_collectors(
    run_command=shell_command_runner,
    files: FileAccess | None = None,
    workspace_root: Path | None = None,
    agents_root: Path | None = None,
    hot_interval_ms: int | None = None,
    warm_interval_ms: int | None = None,
) -> list[CollectorTask]:
    sessions_adapter = SessionsAdapter(run_command=run_command)
    cron_adapter = CronAdapter(run_command=run_command)
    status_adapter = StatusAdapter(run_command=run_command)
    memory_adapter = MemoryAdapter(workspace_root or config.WORKSPACE_ROOT, files=files)
    hot = CadenceProfile.hot(hot_interval_ms)
    warm = CadenceProfile.warm(warm_interval_ms)

    async def collect_sessions(ctx: CollectorContext) -> None:
        snapshot = await sessions_adapter.collect()
        await Ingestor(ctx.db).ingest_sessions(snapshot)

    async def collect_cron(ctx: CollectorContext) -> None:
        snapshot = await cron_adapter.collect()
        await Ingestor(ctx.db).ingest_cron(snapshot)

    async def collect_health(ctx: CollectorContext) -> None:
        snapshot = await status_adapter.collect()
        await Ingestor(ctx.db).ingest_status(snapshot)

    async def tail_transcripts(ctx: CollectorContext) -> None:
        stats = await TranscriptTailer(ctx.db, agents_root=agents_root, files=files).run()
        if stats.skippedLines:
            ctx.logger.debug("Skipped %d unusable transcript lines", stats.skippedLines)
        if stats.failedFiles:
            ctx.logger.warning("%d transcripts failed this pass", stats.failedFiles)

    async def collect_memory(ctx: CollectorContext) -> None:
        snapshot = await memory_adapter.collect()
        await Ingestor(ctx.db).ingest_memory(snapshot)

    return [
        CollectorTask("sessions_hot", hot, collect_sessions),
        CollectorTask("cron_hot", hot, collect_cron),
        CollectorTask("health_hot", hot, collect_health),
        CollectorTask(TRANSCRIPTS_COLLECTOR, hot, tail_transcripts),
        CollectorTask("memory_warm", warm, collect_memory),
    ]
