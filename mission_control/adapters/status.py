"""Gateway status adapter: free-text status line to a closed classification."""
from __future__ import annotations

import re
from typing import Sequence

from mission_control import config
from mission_control.adapters.base import CommandAdapter, failure_detail
from mission_control.command_runner import shell_command_runner
from mission_control.date_utils import now_iso
from mission_control.models import CollectedSnapshot, GatewayStatus, StatusSnapshot


def _keywords(*words: str) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(word).replace(r"\ ", r"\s+") for word in words)
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


# Priority order matters: "running with warnings" is degraded, not ok.
_STATUS_RULES: list[tuple[re.Pattern[str], GatewayStatus]] = [
    (_keywords("degraded", "warning", "warnings"), "degraded"),
    (_keywords("offline", "stopped", "not running", "unreachable"), "offline"),
    (_keywords("healthy", "running", "ok"), "ok"),
]


def classify_status(raw: str) -> GatewayStatus:
    for pattern, status in _STATUS_RULES:
        if pattern.search(raw or ""):
            return status
    return "unknown"


class StatusAdapter(CommandAdapter):
    source_type = "status"

    def __init__(self, run_command=shell_command_runner, command: Sequence[str] | None = None):
        super().__init__(run_command, command or config.STATUS_COMMAND)

    async def collect(self) -> CollectedSnapshot[StatusSnapshot]:
        captured_at = now_iso()
        result = await self._probe(self.command)

        if not result.ok:
            detail = failure_detail(result.stderr)
            return CollectedSnapshot[StatusSnapshot](
                metadata=self._metadata(captured_at),
                data=StatusSnapshot(gatewayStatus="unknown", raw=result.stdout, errors=[detail]),
                warnings=[f"status_command_failed:{detail}"],
            )

        return CollectedSnapshot[StatusSnapshot](
            metadata=self._metadata(captured_at),
            data=StatusSnapshot(gatewayStatus=classify_status(result.stdout), raw=result.stdout),
        )
