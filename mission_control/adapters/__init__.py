"""Read-only source adapters for the observed agent runtime."""
from mission_control.adapters.cron import CronAdapter
from mission_control.adapters.memory import MemoryAdapter
from mission_control.adapters.sessions import SessionsAdapter
from mission_control.adapters.status import StatusAdapter

__all__ = ["CronAdapter", "MemoryAdapter", "SessionsAdapter", "StatusAdapter"]
