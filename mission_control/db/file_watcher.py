"""Transcript watcher using watchfiles.

Wakes the transcript collector early when a ``.jsonl`` file under the agents
root is added or modified. The polling cadence still guarantees progress;
this only shortens the delay.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

from watchfiles import Change, awatch

logger = logging.getLogger("mission_control.watcher")


def transcript_changes(changes: set[tuple[Change, str]]) -> list[Path]:
    """Added or modified ``.jsonl`` paths from a raw watchfiles batch."""
    result = []
    for change_type, path_str in changes:
        path = Path(path_str)
        if path.suffix != ".jsonl":
            continue
        if change_type in (Change.modified, Change.added):
            result.append(path)
    return result


class FileWatcher:
    """Background watcher that triggers a named collector on transcript writes."""

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self, scheduler, collector_name: str, agents_root: Path) -> None:
        if self._running:
            logger.warning("File watcher already running")
            return
        if not agents_root.exists():
            logger.warning("Agents root %s does not exist, watcher has nothing to monitor", agents_root)
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(scheduler, collector_name, agents_root))
        logger.info("File watcher started for %s", agents_root)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def _watch_loop(self, scheduler, collector_name: str, agents_root: Path) -> None:
        try:
            async for changes in awatch(agents_root, stop_event=self._stop_event):
                if not self._running:
                    break
                changed = transcript_changes(changes)
                if not changed:
                    continue
                if scheduler.trigger(collector_name) is None:
                    logger.debug("Collector %s already running, %d changes left to next pass", collector_name, len(changed))
                else:
                    logger.debug("Detected %d transcript changes, triggered %s", len(changed), collector_name)
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        except Exception as exc:
            logger.error("File watcher error: %s", exc)
        finally:
            self._running = False
