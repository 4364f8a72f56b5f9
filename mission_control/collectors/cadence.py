"""Polling cadences for collector tasks."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from mission_control import config

CadenceKind = Literal["hot", "warm"]


@dataclass(frozen=True)
class CadenceProfile:
    kind: CadenceKind
    interval_ms: int

    @classmethod
    def hot(cls, interval_ms: int | None = None) -> "CadenceProfile":
        return cls("hot", interval_ms or config.HOT_INTERVAL_MS)

    @classmethod
    def warm(cls, interval_ms: int | None = None) -> "CadenceProfile":
        return cls("warm", interval_ms or config.WARM_INTERVAL_MS)

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0
