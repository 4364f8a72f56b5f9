"""Observability helpers."""

from mission_control.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_adapter_warning,
    record_collector_run,
    record_ingestion,
    record_tool_span,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_adapter_warning",
    "record_collector_run",
    "record_ingestion",
    "record_tool_span",
]
