import asyncio
import unittest

import aiosqlite

from mission_control.collectors.cadence import CadenceProfile
from mission_control.collectors.scheduler import (
    CollectorContext,
    CollectorScheduler,
    CollectorTask,
    RetryPolicy,
)
from mission_control.db.factory import get_collector_state_repository
from mission_control.db.migrations import run_migrations


class RetryPolicyTests(unittest.TestCase):
    def test_delay_doubles_and_is_capped(self) -> None:
        policy = RetryPolicy(max_retries=5, backoff_base_ms=100, backoff_max_ms=250)
        self.assertEqual([policy.delay_ms(attempt) for attempt in range(4)], [100, 200, 250, 250])

    def test_last_attempt(self) -> None:
        policy = RetryPolicy(max_retries=2)
        self.assertEqual([policy.is_last(attempt) for attempt in range(4)], [False, False, True, True])

    def test_cadence_profiles(self) -> None:
        self.assertEqual(CadenceProfile.hot(1000), CadenceProfile("hot", 1000))
        self.assertEqual(CadenceProfile.warm(5000).kind, "warm")
        self.assertEqual(CadenceProfile.hot(1500).interval_seconds, 1.5)


class CollectorSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.state_repo = get_collector_state_repository(self.db)
        self.sleeps: list[float] = []

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _fake_sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def _scheduler(self, *tasks: CollectorTask, max_retries: int = 2) -> CollectorScheduler:
        return CollectorScheduler(
            CollectorContext(db=self.db),
            list(tasks),
            RetryPolicy(max_retries=max_retries, backoff_base_ms=5, backoff_max_ms=10),
            sleep=self._fake_sleep,
        )

    async def test_success_records_healthy_state(self) -> None:
        calls = []

        async def body(ctx):
            calls.append(ctx.db)

        scheduler = self._scheduler(CollectorTask("sessions_hot", CadenceProfile.hot(1000), body))
        retry = await scheduler.trigger("sessions_hot")
        state = await self.state_repo.get("sessions_hot")

        self.assertTrue(retry.succeeded)
        self.assertEqual(calls, [self.db])
        self.assertEqual(state["error_count"], 0)
        self.assertFalse(state["stale"])
        self.assertIsNotNone(state["last_success_at"])
        self.assertEqual(scheduler.status()["sessions_hot"]["lastResult"], "success")

    async def test_transient_failures_retry_with_backoff_then_reset(self) -> None:
        attempts = []

        async def flaky(ctx):
            attempts.append(len(attempts))
            if len(attempts) < 3:
                raise RuntimeError(f"probe failed #{len(attempts)}")

        scheduler = self._scheduler(CollectorTask("cron_hot", CadenceProfile.hot(1000), flaky), max_retries=3)
        retry = await scheduler.trigger("cron_hot")
        state = await self.state_repo.get("cron_hot")

        self.assertTrue(retry.succeeded)
        self.assertEqual(len(attempts), 3)
        self.assertEqual(self.sleeps, [0.005, 0.01])
        self.assertEqual(state["error_count"], 0)
        self.assertFalse(state["stale"])
        self.assertIsNone(state["last_error"])

    async def test_non_final_failure_is_recorded_but_not_stale(self) -> None:
        seen_states = []

        async def flaky(ctx):
            seen_states.append(await self.state_repo.get("health_hot"))
            if len(seen_states) == 1:
                raise RuntimeError("first attempt failed")

        scheduler = self._scheduler(CollectorTask("health_hot", CadenceProfile.hot(1000), flaky))
        await scheduler.trigger("health_hot")

        during_retry = seen_states[1]
        self.assertEqual(during_retry["error_count"], 1)
        self.assertFalse(during_retry["stale"])
        self.assertEqual(during_retry["last_error"], "first attempt failed")

    async def test_exhausted_retries_mark_stale(self) -> None:
        attempts = []

        async def broken(ctx):
            attempts.append(1)
            raise ValueError("gateway unreachable")

        scheduler = self._scheduler(CollectorTask("health_hot", CadenceProfile.hot(1000), broken), max_retries=1)
        with self.assertLogs("mission_control.scheduler", level="ERROR") as logs:
            retry = await scheduler.trigger("health_hot")
        state = await self.state_repo.get("health_hot")

        self.assertFalse(retry.succeeded)
        self.assertEqual(len(attempts), 2)
        self.assertEqual(self.sleeps, [0.005])
        self.assertTrue(state["stale"])
        self.assertEqual(state["error_count"], 2)
        self.assertEqual(state["last_error"], "gateway unreachable")
        self.assertTrue(any("collector_failed_permanently" in line for line in logs.output))

    async def test_next_success_clears_stale(self) -> None:
        fail = [True]

        async def body(ctx):
            if fail[0]:
                raise RuntimeError("down")

        scheduler = self._scheduler(CollectorTask("memory_warm", CadenceProfile.warm(1000), body), max_retries=0)
        await scheduler.trigger("memory_warm")
        self.assertTrue((await self.state_repo.get("memory_warm"))["stale"])

        fail[0] = False
        await scheduler.trigger("memory_warm")
        state = await self.state_repo.get("memory_warm")
        self.assertFalse(state["stale"])
        self.assertEqual(state["error_count"], 0)

    async def test_overlapping_trigger_is_dropped(self) -> None:
        release = asyncio.Event()
        running = []
        overlaps = []

        async def slow(ctx):
            if running:
                overlaps.append(True)
            running.append(True)
            await release.wait()
            running.pop()

        scheduler = self._scheduler(CollectorTask("transcripts_hot", CadenceProfile.hot(1000), slow))
        first = scheduler.trigger("transcripts_hot")
        await asyncio.sleep(0)
        second = scheduler.trigger("transcripts_hot")

        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertTrue(scheduler.status()["transcripts_hot"]["running"])

        release.set()
        await first
        self.assertEqual(overlaps, [])
        self.assertEqual(scheduler.status()["transcripts_hot"]["runs"], 1)
        third = scheduler.trigger("transcripts_hot")
        self.assertIsNotNone(third)
        await third

    async def test_ticks_never_overlap_a_slow_body(self) -> None:
        active = [0]
        peak = [0]
        runs = [0]

        async def slow(ctx):
            active[0] += 1
            peak[0] = max(peak[0], active[0])
            await asyncio.sleep(0.05)
            active[0] -= 1
            runs[0] += 1

        scheduler = self._scheduler(CollectorTask("sessions_hot", CadenceProfile("hot", 10), slow))
        scheduler.start()
        await asyncio.sleep(0.2)
        await scheduler.stop()

        self.assertEqual(peak[0], 1)
        self.assertGreaterEqual(runs[0], 2)
        self.assertEqual(active[0], 0)
        self.assertFalse(scheduler.is_running)

    async def test_stop_lets_in_flight_run_finish(self) -> None:
        finished = []

        async def body(ctx):
            await asyncio.sleep(0.05)
            finished.append(True)

        scheduler = self._scheduler(CollectorTask("cron_hot", CadenceProfile("hot", 60_000), body))
        scheduler.start()
        await asyncio.sleep(0.01)
        await scheduler.stop()

        self.assertEqual(finished, [True])
        self.assertFalse(scheduler.status()["cron_hot"]["running"])

    async def test_tasks_are_isolated(self) -> None:
        async def broken(ctx):
            raise RuntimeError("nope")

        async def fine(ctx):
            return None

        scheduler = self._scheduler(
            CollectorTask("cron_hot", CadenceProfile.hot(1000), broken),
            CollectorTask("sessions_hot", CadenceProfile.hot(1000), fine),
            max_retries=0,
        )
        await asyncio.gather(scheduler.trigger("cron_hot"), scheduler.trigger("sessions_hot"))

        self.assertTrue((await self.state_repo.get("cron_hot"))["stale"])
        self.assertFalse((await self.state_repo.get("sessions_hot"))["stale"])

    async def test_unknown_collector_raises(self) -> None:
        scheduler = self._scheduler()
        with self.assertRaises(KeyError):
            scheduler.trigger("nope")


if __name__ == "__main__":
    unittest.main()
