"""Pydantic models for collected snapshots and their normalized records."""
from __future__ import annotations

from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

SourceType = Literal["sessions", "cron", "status", "memory"]
SessionStatus = Literal["active", "recent", "unknown"]
SessionRunType = Literal["main", "subagent", "cron", "agent", "unknown"]
GatewayStatus = Literal["ok", "degraded", "offline", "unknown"]


class CommandResult(BaseModel):
    stdout: str = ""
    stderr: str = ""
    exitCode: int = 0

    @property
    def ok(self) -> bool:
        return self.exitCode == 0


class RedactionResult(BaseModel):
    value: str
    redacted: bool = False
    indicators: list[str] = Field(default_factory=list)


# ── Snapshot envelope ──────────────────────────────────────────────

class SourceMetadata(BaseModel):
    sourceType: SourceType
    capturedAt: str
    freshnessMs: int = 0
    readOnly: Literal[True] = True
    transport: Literal["filesystem", "command"]
    sourceRef: str


class CollectedSnapshot(BaseModel, Generic[T]):
    metadata: SourceMetadata
    data: T
    warnings: list[str] = Field(default_factory=list)


# ── Sessions ───────────────────────────────────────────────────────

class SessionRecord(BaseModel):
    sessionKey: str
    sessionId: Optional[str] = None
    label: str = "unlabeled"
    status: SessionStatus = "unknown"
    startedAt: Optional[str] = None
    endedAt: Optional[str] = None
    runtimeMs: Optional[int] = None
    model: Optional[str] = None
    agentId: Optional[str] = None
    sessionKind: Optional[str] = None
    runType: SessionRunType = "unknown"
    lastUpdateAt: Optional[str] = None
    transcriptPath: Optional[str] = None


# ── Cron ───────────────────────────────────────────────────────────

class CronJobRecord(BaseModel):
    jobId: str
    name: str = "unnamed"
    scheduleKind: str = "unknown"
    enabled: bool = False
    nextRunAt: Optional[str] = None
    agentId: Optional[str] = None
    sessionKey: Optional[str] = None
    sessionTarget: Optional[str] = None
    wakeMode: Optional[str] = None
    schedule: Optional[dict[str, Any]] = None
    delivery: Optional[dict[str, Any]] = None
    payload: Optional[dict[str, Any]] = None
    state: Optional[dict[str, Any]] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class CronRunRecord(BaseModel):
    runId: str
    jobId: str = "unknown"
    status: str = "unknown"
    startedAt: Optional[str] = None
    endedAt: Optional[str] = None
    summary: str = ""


class CronSnapshot(BaseModel):
    jobs: list[CronJobRecord] = Field(default_factory=list)
    runs: list[CronRunRecord] = Field(default_factory=list)


# ── Status ─────────────────────────────────────────────────────────

class StatusSnapshot(BaseModel):
    gatewayStatus: GatewayStatus = "unknown"
    raw: str = ""
    errors: list[str] = Field(default_factory=list)


# ── Memory ─────────────────────────────────────────────────────────

class MemoryDocRecord(BaseModel):
    path: str
    kind: Literal["core", "memory"]
    updatedAt: Optional[str] = None
    title: str = ""
    content: str = ""


# ── Transcripts ────────────────────────────────────────────────────

class TranscriptTarget(BaseModel):
    sessionId: str
    transcriptPath: str
    sessionKey: Optional[str] = None


class TailStats(BaseModel):
    files: int = 0
    events: int = 0
    messages: int = 0
    toolCalls: int = 0
    toolResults: int = 0
    skippedLines: int = 0
    resets: int = 0
    failedFiles: int = 0


class MigrationResult(BaseModel):
    applied: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class IngestResult(BaseModel):
    snapshotId: str
    created: bool
    entities: int = 0
    events: int = 0
