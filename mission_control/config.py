"""Mission Control collector configuration."""
import os
import shlex
from dataclasses import dataclass
from pathlib import Path


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _env_command(name: str, default: str) -> list[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        value = default
    return shlex.split(value)


def _env_path(name: str, default: Path) -> Path:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return Path(value).expanduser()


# Project root (one level up from mission_control/)
PROJECT_ROOT = Path(__file__).resolve().parent.parent
PACKAGE_ROOT = Path(__file__).resolve().parent

# Database
DB_BACKEND = os.getenv("MC_DB_BACKEND", "sqlite").strip().lower() or "sqlite"
DB_PATH = _env_path("MC_DB_PATH", PROJECT_ROOT / "data" / "mission_control.db")
DATABASE_URL = (
    os.getenv("MC_DATABASE_URL")
    or os.getenv("DATABASE_URL")
    or "postgresql://mission_control@localhost:5432/mission_control"
)
MIGRATIONS_ROOT = PACKAGE_ROOT / "db" / "sql"
MIGRATIONS_DIR = _env_path("MC_MIGRATIONS_DIR", MIGRATIONS_ROOT / DB_BACKEND)

# Observed runtime
WORKSPACE_ROOT = _env_path("OPENCLAW_WORKSPACE", Path.home() / ".openclaw" / "workspace")
AGENTS_ROOT = _env_path("OPENCLAW_AGENTS_ROOT", Path.home() / ".openclaw" / "agents")

SESSIONS_COMMAND = _env_command("MC_SESSIONS_COMMAND", "openclaw sessions list --json")
SESSIONS_FALLBACK_COMMAND = _env_command("MC_SESSIONS_FALLBACK_COMMAND", "openclaw sessions --json")
CRON_COMMAND = _env_command("MC_CRON_COMMAND", "openclaw cron list --json")
STATUS_COMMAND = _env_command("MC_STATUS_COMMAND", "openclaw gateway status")
PROBE_TIMEOUT_SECONDS = _env_int("MC_PROBE_TIMEOUT_SECONDS", 10)

# Collector cadence + retry tuning
HOT_INTERVAL_MS = _env_int("MC_HOT_INTERVAL_MS", 10_000)
WARM_INTERVAL_MS = _env_int("MC_WARM_INTERVAL_MS", 120_000)
COLLECTOR_MAX_RETRIES = _env_int("MC_COLLECTOR_MAX_RETRIES", 3)
COLLECTOR_BACKOFF_BASE_MS = _env_int("MC_COLLECTOR_BACKOFF_BASE_MS", 500)
COLLECTOR_BACKOFF_MAX_MS = _env_int("MC_COLLECTOR_BACKOFF_MAX_MS", 10_000)
SESSION_ACTIVE_WINDOW_MS = _env_int("MC_SESSION_ACTIVE_WINDOW_MS", 15 * 60 * 1000)
SESSIONS_LIST_LIMIT = _env_int("MC_SESSIONS_LIST_LIMIT", 500)

# Transcript tailing
TRANSCRIPT_MAX_FILES = _env_int("MC_TRANSCRIPT_MAX_FILES", 120)
TRANSCRIPT_WATCH_ENABLED = _env_bool("MC_TRANSCRIPT_WATCH_ENABLED", False)

# Observability
OTEL_ENABLED = _env_bool("MC_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("MC_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("MC_OTEL_SERVICE_NAME", "mission-control-collector")
PROM_PORT = _env_int("MC_PROM_PORT", 0)

# Server settings
HOST = os.getenv("MC_HOST", "127.0.0.1")
PORT = _env_int("MC_PORT", 4242)


@dataclass(frozen=True)
class SchedulerSettings:
    max_retries: int
    backoff_base_ms: int
    backoff_max_ms: int


def scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(
        max_retries=COLLECTOR_MAX_RETRIES,
        backoff_base_ms=COLLECTOR_BACKOFF_BASE_MS,
        backoff_max_ms=COLLECTOR_BACKOFF_MAX_MS,
    )
