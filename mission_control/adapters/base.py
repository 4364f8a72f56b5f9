"""Shared adapter plumbing: metadata envelope and tolerant field readers."""
from __future__ import annotations

import json
from typing import Any, Literal, Sequence

from mission_control.date_utils import now_iso, to_iso
from mission_control.models import SourceMetadata, SourceType


class SourceAdapter:
    """Read-only probe wrapper. ``collect()`` never raises for expected failures."""

    source_type: SourceType
    transport: Literal["filesystem", "command"] = "command"

    @property
    def source_ref(self) -> str:
        raise NotImplementedError

    def _metadata(self, captured_at: str | None = None) -> SourceMetadata:
        return SourceMetadata(
            sourceType=self.source_type,
            capturedAt=captured_at or now_iso(),
            freshnessMs=0,
            readOnly=True,
            transport=self.transport,
            sourceRef=self.source_ref,
        )


class CommandAdapter(SourceAdapter):
    transport: Literal["filesystem", "command"] = "command"

    def __init__(self, run_command, command: Sequence[str]):
        if not command:
            raise ValueError("probe command must not be empty")
        self.run_command = run_command
        self.command = list(command)

    @property
    def source_ref(self) -> str:
        return " ".join(self.command)

    async def _probe(self, command: Sequence[str]):
        head, *args = command
        return await self.run_command(head, args)


def failure_detail(stderr: str) -> str:
    return (stderr or "").strip() or "unknown"


def parse_json(text: str) -> tuple[Any, bool]:
    try:
        return json.loads(text), True
    except (TypeError, ValueError):
        return None, False


def object_rows(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [row for row in value if isinstance(row, dict)]


def first_present(row: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = row.get(key)
        if value is not None:
            return value
    return None


def optional_str(row: dict[str, Any], *keys: str) -> str | None:
    value = first_present(row, *keys)
    if isinstance(value, str) and value.strip():
        return value
    return None


def optional_int(row: dict[str, Any], *keys: str) -> int | None:
    value = first_present(row, *keys)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def optional_dict(row: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = row.get(key)
    return value if isinstance(value, dict) else None


def optional_ts(row: dict[str, Any], *keys: str) -> str | None:
    return to_iso(first_present(row, *keys))
