"""Tests for TaskManager scheduling and job bookkeeping."""

from __future__ import annotations

import asyncio

import pytest

from webhook_relay.metrics.collector import WebhookMetrics
from webhook_relay.taskmanager import CronJob, TaskManager


class _Counter:
    def __init__(self, fail: bool = False) -> None:
        self.calls = 0
        self.fail = fail

    async def __call__(self) -> None:
        self.calls += 1
        if self.fail:
            msg = "database is locked"
            raise RuntimeError(msg)


class TestRegister:
    def test_register_names_job(self) -> None:
        tm = TaskManager()
        handler = _Counter()
        tm.register("reclaim", CronJob(handler=handler, period=5))
        assert tm.jobs["reclaim"].name == "reclaim"
        assert tm.state("reclaim").runs == 0

    def test_reregister_replaces(self) -> None:
        tm = TaskManager()
        tm.register("job", CronJob(handler=_Counter(), period=5))
        tm.register("job", CronJob(handler=_Counter(), period=9))
        assert len(tm.jobs) == 1
        assert tm.jobs["job"].period == 9

    def test_unknown_state(self) -> None:
        with pytest.raises(KeyError):
            TaskManager().state("missing")


class TestRunNow:
    async def test_run_now_records_state(self) -> None:
        tm = TaskManager()
        handler = _Counter()
        tm.register("job", CronJob(handler=handler, period=60))
        await tm.run_now("job")
        assert handler.calls == 1
        state = tm.state("job")
        assert state.runs == 1
        assert state.failures == 0
        assert state.last_run_at is not None

    async def test_run_now_propagates_failure(self) -> None:
        tm = TaskManager()
        tm.register("job", CronJob(handler=_Counter(fail=True), period=60))
        with pytest.raises(RuntimeError):
            await tm.run_now("job")
        state = tm.state("job")
        assert state.failures == 1
        assert state.last_error == "RuntimeError: database is locked"

    async def test_run_now_unknown(self) -> None:
        with pytest.raises(KeyError):
            await TaskManager().run_now("missing")

    async def test_cron_metrics(self) -> None:
        metrics = WebhookMetrics()
        tm = TaskManager(metrics=metrics)
        tm.register("audit_retention", CronJob(handler=_Counter(), period=60))
        await tm.run_now("audit_retention")
        count = metrics.registry.get_sample_value(
            "webhook_relay_cron_histogram_count", {"job_name": "audit_retention"}
        )
        assert count == 1


class TestSchedule:
    async def test_start_stop(self) -> None:
        tm = TaskManager()
        handler = _Counter()
        tm.register("fast", CronJob(handler=handler, period=0.01))
        await tm.start()
        assert tm.is_running
        await asyncio.sleep(0.1)
        await tm.stop()
        assert not tm.is_running
        assert handler.calls >= 2
        calls = handler.calls
        await asyncio.sleep(0.05)
        assert handler.calls == calls

    async def test_run_on_start(self) -> None:
        tm = TaskManager()
        handler = _Counter()
        tm.register("reclaim", CronJob(handler=handler, period=3600, run_on_start=True))
        await tm.start()
        await asyncio.sleep(0.02)
        await tm.stop()
        assert handler.calls == 1

    async def test_failures_do_not_stop_the_loop(self) -> None:
        tm = TaskManager()
        handler = _Counter(fail=True)
        tm.register("flaky", CronJob(handler=handler, period=0.01))
        await tm.start()
        await asyncio.sleep(0.1)
        await tm.stop()
        assert handler.calls >= 2
        assert tm.state("flaky").failures == handler.calls

    async def test_register_while_running(self) -> None:
        tm = TaskManager()
        await tm.start()
        handler = _Counter()
        tm.register("late", CronJob(handler=handler, period=3600, run_on_start=True))
        await asyncio.sleep(0.02)
        await tm.stop()
        assert handler.calls == 1

    async def test_stop_without_start(self) -> None:
        await TaskManager().stop()
