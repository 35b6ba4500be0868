"""Cron scheduler for the relay's maintenance jobs.

Each ``CronJob`` runs on its own asyncio task every ``period`` seconds.
Jobs that must catch up after a restart (lease reclaim) set
``run_on_start`` and fire once before their first sleep. Per-job run
counts and the last failure are kept for the health endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from webhook_relay.utils.crypto import utcnow

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from webhook_relay.metrics.collector import WebhookMetrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CronJob:
    """A recurring maintenance job."""

    handler: Callable[[], Awaitable[None]]
    period: float  # seconds
    name: str = ""
    run_on_start: bool = False


@dataclass
class JobState:
    """Bookkeeping for one registered job."""

    runs: int = 0
    failures: int = 0
    last_run_at: datetime | None = None
    last_error: str | None = None


class TaskManager:
    """Runs registered ``CronJob`` handlers on background tasks.

    Usage::

        tm = TaskManager(metrics=webhook_metrics)
        tm.register("reclaim_leases", CronJob(handler=..., period=30, run_on_start=True))
        await tm.start()
        ...
        await tm.stop()
    """

    def __init__(self, *, metrics: WebhookMetrics | None = None) -> None:
        self._jobs: dict[str, CronJob] = {}
        self._state: dict[str, JobState] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._running = False
        self._metrics = metrics

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def jobs(self) -> dict[str, CronJob]:
        """Registered jobs by name."""
        return dict(self._jobs)

    def state(self, name: str) -> JobState:
        """Run bookkeeping of a registered job.

        Raises:
            KeyError: No job registered under *name*.
        """
        return self._state[name]

    def register(self, name: str, job: CronJob) -> None:
        """Add *job* under *name*, replacing (and cancelling) any job of that name.

        Jobs registered while the manager is running start right away.
        """
        job = CronJob(
            handler=job.handler,
            period=job.period,
            name=name,
            run_on_start=job.run_on_start,
        )
        previous = self._tasks.pop(name, None)
        if previous is not None:
            previous.cancel()
        self._jobs[name] = job
        self._state[name] = JobState()
        if self._running:
            self._tasks[name] = asyncio.create_task(self._schedule(job))

    async def run_now(self, name: str) -> None:
        """Execute a job once, outside its schedule; failures propagate.

        Raises:
            KeyError: No job registered under *name*.
        """
        await self._execute(self._jobs[name])

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for name, job in self._jobs.items():
            self._tasks[name] = asyncio.create_task(self._schedule(job))
        logger.info("TaskManager started: %s", ", ".join(sorted(self._jobs)) or "no jobs")

    async def stop(self) -> None:
        """Cancel every job task and wait for it to unwind."""
        if not self._running:
            return
        self._running = False
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        for outcome in await asyncio.gather(*tasks, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.error("Cron task ended with %r during shutdown", outcome)
        logger.info("TaskManager stopped")

    async def _execute(self, job: CronJob) -> None:
        state = self._state[job.name]
        state.runs += 1
        state.last_run_at = utcnow()
        try:
            if self._metrics is not None:
                with self._metrics.track_cron(job.name):
                    await job.handler()
            else:
                await job.handler()
        except Exception as exc:
            state.failures += 1
            state.last_error = f"{type(exc).__name__}: {exc}"
            raise
        state.last_error = None

    async def _schedule(self, job: CronJob) -> None:
        if job.run_on_start:
            await self._guarded(job)
        while self._running:
            await asyncio.sleep(job.period)
            if not self._running:
                break
            await self._guarded(job)

    async def _guarded(self, job: CronJob) -> None:
        try:
            await self._execute(job)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Cron job %r failed", job.name)
