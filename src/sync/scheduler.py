"""
Session Scheduler

Runs periodic jobs (overdue sweep, reminder firing) for as long as a
session is open. Each job runs right away and then every `interval`
seconds until stop() is called.

A job that raises is logged and runs again on its next tick; it never
takes the scheduler or the other jobs down with it.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import structlog

from src.audit import AuditLogger
from src.models.audit import AuditEventBuilder

logger = structlog.get_logger(__name__)


@dataclass
class PeriodicJob:
    name: str
    interval: float
    func: Callable[[], Awaitable[object]]
    runs: int = 0
    failures: int = 0


class SessionScheduler:
    """Owns one asyncio task per registered job."""

    def __init__(self, audit_logger: Optional[AuditLogger] = None):
        self._audit = audit_logger or AuditLogger()
        self._jobs: dict[str, PeriodicJob] = {}
        self._tasks: list[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return bool(self._tasks)

    @property
    def jobs(self) -> dict[str, PeriodicJob]:
        return dict(self._jobs)

    def add_job(self, name: str, interval: float, func: Callable[[], Awaitable[object]]) -> PeriodicJob:
        if interval <= 0:
            raise ValueError(f"Job interval must be positive: {name}")
        if self.is_running:
            raise RuntimeError("Jobs must be registered before the scheduler starts")
        job = PeriodicJob(name=name, interval=interval, func=func)
        self._jobs[name] = job
        return job

    def start(self) -> None:
        """Start every registered job. Calling start() twice is a no-op."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._run(job, self._stop_event), name=f"job:{job.name}")
            for job in self._jobs.values()
        ]
        logger.info("scheduler_started", jobs=list(self._jobs))

    async def stop(self) -> None:
        """Signal every job to stop and wait until their loops exit."""
        if not self.is_running:
            return
        self._stop_event.set()
        tasks, self._tasks = self._tasks, []
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scheduler_stopped")

    async def _run(self, job: PeriodicJob, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await job.func()
                job.runs += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                job.failures += 1
                self._audit.log(AuditEventBuilder.sweep_failed(job.name, str(e)))

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=job.interval)
            except asyncio.TimeoutError:
                continue
