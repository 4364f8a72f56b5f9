"""Collector scheduler: independent cadences, retry with backoff, single-flight.

Each task gets its own ticker. A tick that lands while the previous run of
the same task is still going is dropped, never queued. Failed attempts are
retried with ``min(base * 2**attempt, max)`` delays; every attempt is written
to ``collector_state`` and only the final failed attempt marks the task stale.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from mission_control import observability
from mission_control.collectors.cadence import CadenceProfile
from mission_control.config import SchedulerSettings
from mission_control.db.factory import get_collector_state_repository

logger = logging.getLogger("mission_control.scheduler")


@dataclass
class CollectorContext:
    db: Any
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("mission_control.collectors"))


TaskBody = Callable[[CollectorContext], Awaitable[None]]


@dataclass(frozen=True)
class CollectorTask:
    name: str
    cadence: CadenceProfile
    run: TaskBody


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_base_ms: int = 500
    backoff_max_ms: int = 10_000

    @classmethod
    def from_settings(cls, settings: SchedulerSettings) -> "RetryPolicy":
        return cls(settings.max_retries, settings.backoff_base_ms, settings.backoff_max_ms)

    def delay_ms(self, attempt: int) -> int:
        return min(self.backoff_base_ms * (2 ** attempt), self.backoff_max_ms)

    def is_last(self, attempt: int) -> bool:
        return attempt >= self.max_retries


@dataclass
class RetryState:
    attempt: int = 0
    last_error: Optional[str] = None
    terminal: bool = False
    succeeded: bool = False


@dataclass
class _TaskState:
    ticker: Optional[asyncio.Task] = None
    inflight: Optional[asyncio.Task] = None
    running: bool = False
    runs: int = 0
    last_result: Optional[str] = None


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class CollectorScheduler:
    """Drives collector tasks. ``sleep`` is used for backoff delays only."""

    def __init__(
        self,
        context: CollectorContext,
        tasks: list[CollectorTask],
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.context = context
        self.tasks = {task.name: task for task in tasks}
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._state = {name: _TaskState() for name in self.tasks}
        self._state_repo = get_collector_state_repository(context.db)
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            logger.warning("Collector scheduler already running")
            return
        self._started = True
        for task in self.tasks.values():
            self._state[task.name].ticker = asyncio.create_task(self._tick_loop(task))
            logger.info(
                "collector_started collector=%s cadence=%s interval_ms=%d",
                task.name, task.cadence.kind, task.cadence.interval_ms,
            )

    async def stop(self) -> None:
        """Cancel every ticker, then wait for in-flight runs to finish on their own."""
        self._started = False
        tickers = [state.ticker for state in self._state.values() if state.ticker]
        for ticker in tickers:
            ticker.cancel()
        await asyncio.gather(*tickers, return_exceptions=True)

        inflight = [state.inflight for state in self._state.values() if state.inflight and not state.inflight.done()]
        if inflight:
            logger.info("Waiting for %d in-flight collector runs", len(inflight))
            await asyncio.gather(*inflight, return_exceptions=True)

        for name, state in self._state.items():
            state.ticker = None
            logger.info("collector_stopped collector=%s", name)

    def trigger(self, name: str) -> asyncio.Task | None:
        """Run ``name`` now unless it is already running. Returns the run, or None if dropped."""
        task = self.tasks.get(name)
        if task is None:
            raise KeyError(f"Unknown collector: {name}")
        return self._dispatch(task)

    def status(self) -> dict[str, dict]:
        return {
            name: {
                "cadence": task.cadence.kind,
                "intervalMs": task.cadence.interval_ms,
                "running": self._state[name].running,
                "runs": self._state[name].runs,
                "lastResult": self._state[name].last_result,
            }
            for name, task in self.tasks.items()
        }

    async def _tick_loop(self, task: CollectorTask) -> None:
        while True:
            self._dispatch(task)
            await asyncio.sleep(task.cadence.interval_seconds)

    def _dispatch(self, task: CollectorTask) -> asyncio.Task | None:
        state = self._state[task.name]
        if state.running:
            logger.debug("collector_skip_overlap collector=%s", task.name)
            return None
        state.running = True
        state.inflight = asyncio.create_task(self._execute(task, state))
        return state.inflight

    async def _execute(self, task: CollectorTask, state: _TaskState) -> RetryState | None:
        t0 = time.monotonic()
        try:
            retry = await self.run_with_retries(task)
        except Exception:
            logger.exception("collector_state_write_failed collector=%s", task.name)
            return None
        finally:
            state.running = False
            state.runs += 1

        elapsed = int((time.monotonic() - t0) * 1000)
        state.last_result = "success" if retry.succeeded else "failed"
        observability.record_collector_run(task.name, state.last_result, elapsed)
        if not retry.succeeded:
            logger.error(
                "collector_failed_permanently collector=%s attempts=%d error=%s",
                task.name, retry.attempt + 1, retry.last_error,
            )
        return retry

    async def run_with_retries(self, task: CollectorTask) -> RetryState:
        retry = RetryState()
        while not retry.terminal:
            try:
                with observability.start_span("collector.run", {"collector": task.name, "attempt": retry.attempt}):
                    await task.run(self.context)
            except Exception as exc:
                retry.last_error = _error_message(exc)
                is_last = self.policy.is_last(retry.attempt)
                await self._state_repo.mark_failure(task.name, retry.last_error, stale=is_last)
                logger.warning(
                    "collector_retry collector=%s attempt=%d max_retries=%d last=%s error=%s",
                    task.name, retry.attempt, self.policy.max_retries, is_last, retry.last_error,
                )
                if is_last:
                    retry.terminal = True
                    continue
                await self._sleep(self.policy.delay_ms(retry.attempt) / 1000.0)
                retry.attempt += 1
            else:
                await self._state_repo.mark_success(task.name)
                retry.succeeded = True
                retry.terminal = True
        return retry
