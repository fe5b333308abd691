"""
Background Job Scheduler for SLA monitoring.

Runs a fixed roster of named jobs:
- SLA breach detection (every 5 minutes, lock 4 minutes)
- SLA warning detection (every 5 minutes, lock 4 minutes)
- Expired lot marking (hourly, lock 50 minutes)
- Low stock alerts (every 30 minutes, lock 25 minutes)
- Expired refresh token cleanup (every 6 hours, lock 5 hours)

Each job is a fixed-delay loop: tick -> take the job's lock -> run ->
arm the next timer `interval` after the run finished. A job therefore
never overlaps itself inside one process, and the lock (TTL < interval)
keeps other instances from running it in the same window.

Job failures are logged and tracked by JobFailureMonitor; they never stop
the loop.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sla_scheduler.core.config import settings
from sla_scheduler.core.exceptions import ValidationError
from sla_scheduler.models.schemas import (
    JobFailureStatus,
    JobStatus,
    SchedulerHealth,
)
from sla_scheduler.services.locks import LockCoordinator, create_lock_coordinator
from sla_scheduler.services.maintenance import MaintenanceJobs
from sla_scheduler.services.push import PushChannel
from sla_scheduler.services.sla_evaluator import SlaEvaluator
from sla_scheduler.services.timers import APSchedulerTimers, TimerBackend


logger = logging.getLogger(__name__)


INITIAL_RUN = "initial_run"


@dataclass(frozen=True)
class JobDefinition:
    """A named recurring job. Immutable once registered."""
    name: str
    action: Callable[[], Awaitable[Any]]
    interval_seconds: float
    lock_ttl_seconds: int
    description: str = ""

    def __post_init__(self):
        if self.interval_seconds <= 0:
            raise ValidationError(
                "Job interval must be positive", field="interval_seconds", value=self.interval_seconds
            )
        if self.lock_ttl_seconds <= 0:
            raise ValidationError(
                "Lock TTL must be positive", field="lock_ttl_seconds", value=self.lock_ttl_seconds
            )
        if self.lock_ttl_seconds >= self.interval_seconds:
            raise ValidationError(
                f"Lock TTL for '{self.name}' must be shorter than its interval",
                field="lock_ttl_seconds",
                value=self.lock_ttl_seconds
            )


# ==========================================
# Job Failure Monitor
# ==========================================

class JobFailureMonitor:
    """
    Track job failures over a trailing 24 hours.

    Reaching the threshold marks the job degraded and logs CRITICAL.
    The job keeps running; the next success clears it.
    """

    def __init__(self, failure_threshold: int = 2, window: timedelta = timedelta(hours=24)):
        self.failure_threshold = failure_threshold
        self.window = window
        self.failed_jobs: Dict[str, List[datetime]] = defaultdict(list)
        self.last_errors: Dict[str, str] = {}
        self.degraded_jobs: set = set()

    async def record_success(self, job_name: str) -> None:
        """Record job success - reset failure count."""
        self.failed_jobs[job_name] = []
        self.last_errors.pop(job_name, None)
        self.degraded_jobs.discard(job_name)

    async def record_failure(self, job_name: str, error: str) -> bool:
        """
        Record job failure.

        Returns True if the job just crossed into degraded.
        """
        now = datetime.now(timezone.utc)

        self.failed_jobs[job_name].append(now)
        self.last_errors[job_name] = error

        cutoff = now - self.window
        self.failed_jobs[job_name] = [
            t for t in self.failed_jobs[job_name] if t > cutoff
        ]

        failure_count = len(self.failed_jobs[job_name])

        if failure_count >= self.failure_threshold and job_name not in self.degraded_jobs:
            self.degraded_jobs.add(job_name)
            logger.critical(
                f"CRITICAL: Job {job_name} failed {failure_count} times. "
                f"Last error: {error}"
            )
            return True

        return False

    def get_status(self) -> Dict[str, JobFailureStatus]:
        """Get current failure status for all jobs."""
        return {
            job_name: JobFailureStatus(
                failure_count=len(failures),
                last_failure=failures[-1] if failures else None,
                last_error=self.last_errors.get(job_name),
                is_degraded=job_name in self.degraded_jobs,
            )
            for job_name, failures in self.failed_jobs.items()
        }


@dataclass
class _JobStats:
    runs: int = 0
    skipped: int = 0
    last_run_at: Optional[datetime] = None


class SlaScheduler:
    """
    Lifecycle manager for the scheduled SLA and maintenance jobs.

    Owns the running flag, a run token per start() and the currently armed
    timer per job. Independent instances do not share state.
    """

    def __init__(
        self,
        lock_coordinator: Optional[LockCoordinator] = None,
        timers: Optional[TimerBackend] = None,
        evaluator: Optional[SlaEvaluator] = None,
        maintenance: Optional[MaintenanceJobs] = None,
        job_monitor: Optional[JobFailureMonitor] = None,
        initial_run_delay_seconds: Optional[float] = None,
        initial_run_lock_ttl_seconds: Optional[int] = None,
    ):
        self.lock_coordinator = lock_coordinator
        self.timers = timers
        self.evaluator = evaluator
        self.maintenance = maintenance
        self.job_monitor = job_monitor or JobFailureMonitor(
            failure_threshold=settings.job_failure_alert_threshold
        )
        self.initial_run_delay_seconds = (
            settings.initial_run_delay_seconds
            if initial_run_delay_seconds is None else initial_run_delay_seconds
        )
        self.initial_run_lock_ttl_seconds = (
            initial_run_lock_ttl_seconds or settings.initial_run_lock_ttl_seconds
        )

        self.is_running = False
        self.jobs: Dict[str, JobDefinition] = {}
        self._handles: Dict[str, Any] = {}
        self._stats: Dict[str, _JobStats] = defaultdict(_JobStats)
        self._run_token: Optional[object] = None
        self._in_flight: set = set()

    def build_roster(self) -> List[JobDefinition]:
        """The fixed set of recurring jobs with their interval / lock TTL."""
        return [
            JobDefinition(
                name="sla_breach",
                action=self.evaluator.check_sla_breaches,
                interval_seconds=settings.sla_breach_interval_seconds,
                lock_ttl_seconds=settings.sla_breach_lock_ttl_seconds,
                description="Notify on documents past their SLA deadline",
            ),
            JobDefinition(
                name="sla_warning",
                action=self.evaluator.check_sla_warnings,
                interval_seconds=settings.sla_warning_interval_seconds,
                lock_ttl_seconds=settings.sla_warning_lock_ttl_seconds,
                description="Notify on documents whose SLA deadline is within the lookahead",
            ),
            JobDefinition(
                name="expired_lots",
                action=self.maintenance.mark_expired_lots,
                interval_seconds=settings.expired_lots_interval_seconds,
                lock_ttl_seconds=settings.expired_lots_lock_ttl_seconds,
                description="Mark inventory lots past expiry",
            ),
            JobDefinition(
                name="low_stock",
                action=self.maintenance.check_low_stock,
                interval_seconds=settings.low_stock_interval_seconds,
                lock_ttl_seconds=settings.low_stock_lock_ttl_seconds,
                description="Alert warehouse staff on stock at or below its minimum level",
            ),
            JobDefinition(
                name="token_cleanup",
                action=self.maintenance.cleanup_expired_tokens,
                interval_seconds=settings.token_cleanup_interval_seconds,
                lock_ttl_seconds=settings.token_cleanup_lock_ttl_seconds,
                description="Delete expired refresh tokens",
            ),
        ]

    def initial_run_jobs(self) -> List[str]:
        """Jobs fired once shortly after startup."""
        return ["sla_breach", "sla_warning", "expired_lots"]

    # ==========================================
    # LIFECYCLE
    # ==========================================

    def start(self, push_channel: Optional[PushChannel] = None) -> None:
        """Register every job and arm the initial run."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        if self.lock_coordinator is None:
            self.lock_coordinator = create_lock_coordinator()
        if self.timers is None:
            self.timers = APSchedulerTimers(settings.scheduler_timezone)
        if self.evaluator is None:
            self.evaluator = SlaEvaluator()
        if self.maintenance is None:
            self.maintenance = MaintenanceJobs(
                store=self.evaluator.store,
                notifications=self.evaluator.notifications,
                directory=self.evaluator.directory,
            )

        self.evaluator.notifications.push_channel = push_channel

        self.is_running = True
        self._run_token = object()

        logger.info("🚀 Starting background job scheduler")
        for job in self.build_roster():
            self.schedule_loop(job)

        self._arm(
            INITIAL_RUN,
            self.initial_run_delay_seconds,
            partial(self._initial_run, self._run_token),
        )

        logger.info(f"All jobs registered: {', '.join(self.jobs)}")

    def stop(self) -> None:
        """
        Stop arming timers and cancel every pending one.

        Actions already running are left to finish.
        """
        if not self.is_running:
            return

        self.is_running = False
        self._run_token = None

        for handle in self._handles.values():
            self.timers.cancel(handle)
        self._handles.clear()
        self.timers.shutdown()

        if self.evaluator is not None:
            self.evaluator.notifications.push_channel = None

        logger.info("🛑 Scheduler stopped")

    async def close(self) -> None:
        """Stop the scheduler and release the lock store connection."""
        self.stop()
        if self.lock_coordinator is not None:
            await self.lock_coordinator.close()

    # ==========================================
    # SCHEDULING LOOP
    # ==========================================

    def schedule_loop(self, job: JobDefinition) -> None:
        """Register a job; its first tick comes one interval from now."""
        self.jobs[job.name] = job
        self._arm(job.name, job.interval_seconds, partial(self._tick, job, self._run_token))

    def _arm(self, key: str, delay_seconds: float, callback) -> None:
        self._handles[key] = self.timers.call_later(delay_seconds, callback, name=key)

    def _is_current(self, token: Optional[object]) -> bool:
        return self.is_running and token is not None and token is self._run_token

    async def _tick(self, job: JobDefinition, token: object) -> None:
        if not self._is_current(token):
            return
        self._handles.pop(job.name, None)

        if await self.lock_coordinator.acquire(job.name, job.lock_ttl_seconds):
            await self._run_action(job)
        else:
            self._stats[job.name].skipped += 1

        # Fixed delay: measured from the end of this tick
        if self._is_current(token):
            self._arm(job.name, job.interval_seconds, partial(self._tick, job, token))

    async def _run_action(self, job: JobDefinition) -> Any:
        """
        Run a job action; exceptions are logged, never raised.

        A job already running in this process (loop tick, initial run or
        manual trigger) is skipped rather than started a second time.
        """
        stats = self._stats[job.name]
        if job.name in self._in_flight:
            logger.debug(f"Job {job.name} is still running, skipping")
            stats.skipped += 1
            return None

        self._in_flight.add(job.name)
        stats.runs += 1
        stats.last_run_at = datetime.now(timezone.utc)
        start_time = stats.last_run_at

        try:
            result = await job.action()
        except Exception as e:
            logger.error(f"❌ Job {job.name} failed: {e}", exc_info=True)
            await self.job_monitor.record_failure(job.name, str(e))
            return None
        finally:
            self._in_flight.discard(job.name)

        elapsed = (datetime.now(timezone.utc) - start_time).total_seconds()
        if isinstance(result, dict) and result.get("error"):
            await self.job_monitor.record_failure(job.name, result["error"])
        else:
            await self.job_monitor.record_success(job.name)
        logger.debug(f"Job {job.name} finished in {elapsed:.2f}s: {result}")
        return result

    async def _initial_run(self, token: object) -> None:
        """One-shot startup burst, claimed by a single instance."""
        if not self._is_current(token):
            return
        self._handles.pop(INITIAL_RUN, None)

        if not await self.lock_coordinator.acquire(INITIAL_RUN, self.initial_run_lock_ttl_seconds):
            logger.debug("Initial run claimed by another instance")
            return

        logger.info("Running initial checks")
        for name in self.initial_run_jobs():
            if not self._is_current(token):
                break
            job = self.jobs.get(name)
            if job:
                await self._run_action(job)

    async def trigger_job(self, name: str) -> Any:
        """
        Run a registered job immediately, outside its loop.

        Still honours the job's lock. Returns the action result, or None
        if the job is unknown, already running, or locked elsewhere.
        """
        job = self.jobs.get(name)
        if job is None:
            logger.error(f"Job not found: {name}")
            return None
        if not await self.lock_coordinator.acquire(job.name, job.lock_ttl_seconds):
            logger.info(f"Job {name} is locked by another instance")
            return None
        logger.info(f"Manually triggered job: {name}")
        return await self._run_action(job)

    # ==========================================
    # STATUS
    # ==========================================

    def get_jobs_status(self) -> List[JobStatus]:
        """Get status of all registered jobs."""
        return [
            JobStatus(
                name=job.name,
                interval_seconds=job.interval_seconds,
                lock_ttl_seconds=job.lock_ttl_seconds,
                armed=job.name in self._handles,
                runs=self._stats[job.name].runs,
                skipped=self._stats[job.name].skipped,
                last_run_at=self._stats[job.name].last_run_at,
            )
            for job in self.jobs.values()
        ]

    def get_health_status(self) -> SchedulerHealth:
        """Scheduler status and job failure information."""
        failures = self.job_monitor.get_status()
        has_failures = any(info.failure_count > 0 for info in failures.values())

        return SchedulerHealth(
            status="degraded" if has_failures else "healthy",
            is_running=self.is_running,
            jobs=self.get_jobs_status(),
            failures=failures,
            degraded_jobs=sorted(self.job_monitor.degraded_jobs),
        )


# ==========================================
# GLOBAL SCHEDULER INSTANCE
# ==========================================

scheduler = SlaScheduler()


def get_scheduler() -> SlaScheduler:
    """Get the global scheduler instance."""
    return scheduler
