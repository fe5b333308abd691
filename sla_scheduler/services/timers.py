"""
Cancellable one-shot timers for the scheduling loop.

The loop re-arms a fresh one-shot timer after every tick completes
(fixed-delay), so the timer backend only needs call_later/cancel.
APSchedulerTimers runs them on an AsyncIOScheduler with DateTriggers;
tests substitute a manual clock.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger


logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[Any]]


class TimerBackend(Protocol):
    """Schedules a coroutine callback once, after a delay."""

    def call_later(self, delay_seconds: float, callback: TimerCallback, name: str = "") -> Any:
        ...

    def cancel(self, handle: Any) -> None:
        ...

    def shutdown(self) -> None:
        ...


class APSchedulerTimers:
    """
    TimerBackend on top of APScheduler's AsyncIOScheduler.

    The APScheduler job only spawns the callback as an asyncio task, so
    shutting the scheduler down never cancels a callback that is already
    running.
    """

    def __init__(self, timezone_name: str = "UTC"):
        self.timezone_name = timezone_name
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._tasks: set[asyncio.Task] = set()

    def create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler."""
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': None  # A late one-shot still fires
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.timezone_name
        )

    def _ensure_started(self) -> AsyncIOScheduler:
        if self.scheduler is None:
            self.scheduler = self.create_scheduler()
        if not self.scheduler.running:
            self.scheduler.start()
        return self.scheduler

    def call_later(self, delay_seconds: float, callback: TimerCallback, name: str = ""):
        scheduler = self._ensure_started()
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)

        async def fire():
            task = asyncio.get_running_loop().create_task(callback())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return scheduler.add_job(
            fire,
            DateTrigger(run_date=run_date),
            name=name or None,
        )

    def cancel(self, handle) -> None:
        try:
            handle.remove()
        except JobLookupError:
            # Already fired
            pass

    def shutdown(self) -> None:
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.scheduler = None

    @property
    def in_flight(self) -> int:
        """Number of callbacks still running."""
        return len(self._tasks)
