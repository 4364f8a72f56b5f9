"""Repository package for database access."""

from .snapshots import SqliteSnapshotRepository
from .sessions import SqliteSessionRepository
from .cron import SqliteCronRepository
from .memory import SqliteMemoryDocRepository
from .health import SqliteHealthRepository
from .ledger import SqliteCollectorStateRepository, SqliteEventRepository
from .transcripts import SqliteTranscriptRepository

__all__ = [
    "SqliteSnapshotRepository",
    "SqliteSessionRepository",
    "SqliteCronRepository",
    "SqliteMemoryDocRepository",
    "SqliteHealthRepository",
    "SqliteEventRepository",
    "SqliteCollectorStateRepository",
    "SqliteTranscriptRepository",
]
