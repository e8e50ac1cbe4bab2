"""
Hospital Wait Monitor - Job Scheduler

APScheduler-based scheduler for the scraping and health check jobs.
Supports cron expressions, manual triggers, per-job bookkeeping and
graceful shutdown.

Every job handler is wrapped so that each run gets its own trace context,
run/error counters are kept, and overlapping runs of the same job are
skipped rather than queued.

Usage:
    from scrapers.scheduler import CronJobConfig, ScrapeScheduler

    scheduler = ScrapeScheduler(timezone="Europe/Berlin")
    scheduler.schedule_job(
        CronJobConfig(name="hospital_scraping", schedule="*/30 * * * *", run_on_start=True),
        handler,
    )
    scheduler.start()
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone
from typing import Any, Awaitable, Callable, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from observability.provider import Observability
from observability.tracing import TraceContext
from scrapers.base import utc_now


logger = logging.getLogger(__name__)

JobHandler = Callable[[TraceContext], Awaitable[Any]]


class InvalidScheduleError(ValueError):
    """The cron expression or timezone could not be parsed."""


class JobNotFoundError(LookupError):
    """No job is registered under the given name."""


def build_cron_trigger(schedule: str, timezone: str = "UTC") -> CronTrigger:
    """
    Parse a five-field crontab expression.

    Raises:
        InvalidScheduleError: If the expression is malformed
    """
    if len(schedule.split()) != 5:
        raise InvalidScheduleError(f"Invalid cron expression '{schedule}': expected 5 fields")
    try:
        return CronTrigger.from_crontab(schedule, timezone=timezone)
    except (ValueError, TypeError, KeyError) as e:
        raise InvalidScheduleError(f"Invalid cron expression '{schedule}': {e}") from e


# =============================================================================
# Job Types
# =============================================================================

@dataclass(frozen=True)
class CronJobConfig:
    """
    Registration options for one job.

    Attributes:
        name: Unique job name (also the APScheduler job id)
        schedule: Five-field crontab expression
        enabled: Register paused when False
        run_on_start: Fire once as soon as the scheduler starts
        timezone: Overrides the scheduler timezone for this job
    """

    name: str
    schedule: str
    enabled: bool = True
    run_on_start: bool = False
    timezone: Optional[str] = None


@dataclass
class CronJobStatus:
    """Bookkeeping for one job, updated on every run."""

    name: str
    schedule: str
    enabled: bool = True
    is_running: bool = False
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    last_duration_ms: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schedule": self.schedule,
            "enabled": self.enabled,
            "is_running": self.is_running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
            "last_duration_ms": round(self.last_duration_ms, 1) if self.last_duration_ms is not None else None,
        }


@dataclass
class _RegisteredJob:
    config: CronJobConfig
    handler: JobHandler
    status: CronJobStatus


# =============================================================================
# Scheduler
# =============================================================================

class ScrapeScheduler:
    """
    Manages scheduled execution of pipeline jobs.

    Features:
    - Cron expressions validated at registration
    - Replace-by-name registration
    - Manual trigger with overlap protection
    - Run and error counters per job
    - Graceful shutdown that waits for running jobs
    """

    def __init__(
        self,
        timezone: str = "UTC",
        observability: Optional[Observability] = None,
        shutdown_timeout_s: float = 30.0,
        poll_interval_s: float = 0.1,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.timezone = timezone
        self.observability = observability
        self.shutdown_timeout_s = shutdown_timeout_s
        self.poll_interval_s = poll_interval_s
        self._sleep = sleep
        self._jobs: dict[str, _RegisteredJob] = {}
        self._running = False

        self.scheduler = AsyncIOScheduler(
            timezone=timezone,
            job_defaults={
                "coalesce": True,  # Combine missed runs
                "max_instances": 1,  # Only one instance per job
                "misfire_grace_time": 300,
            },
        )

        self.scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self.scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

    # -------------------------------------------------------------------------
    # APScheduler events
    # -------------------------------------------------------------------------

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        logger.debug(
            "Job executed",
            extra={
                "job_id": event.job_id,
                "scheduled_time": event.scheduled_run_time.isoformat(),
            },
        )

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        logger.error(
            "Job execution failed",
            extra={
                "job_id": event.job_id,
                "scheduled_time": event.scheduled_run_time.isoformat(),
                "exception": str(event.exception),
            },
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        logger.warning(
            "Job execution missed",
            extra={
                "job_id": event.job_id,
                "scheduled_time": event.scheduled_run_time.isoformat(),
            },
        )

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def _build_trigger(self, config: CronJobConfig) -> CronTrigger:
        return build_cron_trigger(config.schedule, config.timezone or self.timezone)

    def schedule_job(self, config: CronJobConfig, handler: JobHandler) -> CronJobStatus:
        """
        Register (or replace) a job.

        Args:
            config: Name, schedule and flags
            handler: Coroutine function receiving the run's TraceContext

        Returns:
            The job's status record

        Raises:
            InvalidScheduleError: If the schedule is malformed; nothing is
                registered or replaced in that case
        """
        trigger = self._build_trigger(config)

        previous = self._jobs.get(config.name)
        if previous is not None:
            logger.info("Replacing existing job", extra={"job": config.name})
            self._unschedule(config.name)

        if not config.enabled:
            next_run_time = None
        elif config.run_on_start:
            next_run_time = datetime.now(dt_timezone.utc)
        else:
            next_run_time = trigger.get_next_fire_time(None, datetime.now(trigger.timezone))

        self.scheduler.add_job(
            self._run_wrapped,
            trigger=trigger,
            args=[config.name],
            id=config.name,
            name=f"Job: {config.name}",
            next_run_time=next_run_time,
            replace_existing=True,
        )

        status = CronJobStatus(
            name=config.name,
            schedule=config.schedule,
            enabled=config.enabled,
            # A run of the replaced job still in flight blocks the new one
            is_running=previous is not None and previous.status.is_running,
            next_run=next_run_time,
        )
        self._jobs[config.name] = _RegisteredJob(config=config, handler=handler, status=status)

        logger.info(
            "Scheduled job",
            extra={
                "job": config.name,
                "schedule": config.schedule,
                "enabled": config.enabled,
                "run_on_start": config.run_on_start,
            },
        )
        return status

    def _unschedule(self, name: str) -> None:
        if self.scheduler.get_job(name) is not None:
            self.scheduler.remove_job(name)
        self._jobs.pop(name, None)

    def _get(self, name: str) -> _RegisteredJob:
        try:
            return self._jobs[name]
        except KeyError:
            raise JobNotFoundError(f"Job not found: {name}") from None

    def start_job(self, name: str) -> None:
        """Resume a paused job."""
        entry = self._get(name)
        self.scheduler.resume_job(name)
        entry.status.enabled = True
        logger.info("Job resumed", extra={"job": name})

    def stop_job(self, name: str) -> None:
        """Pause a job without removing it."""
        entry = self._get(name)
        self.scheduler.pause_job(name)
        entry.status.enabled = False
        logger.info("Job paused", extra={"job": name})

    def remove_job(self, name: str) -> None:
        self._get(name)
        self._unschedule(name)
        logger.info("Job removed", extra={"job": name})

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def _run_wrapped(self, name: str) -> Any:
        """Run one job with bookkeeping. Errors are counted, not raised."""
        entry = self._jobs.get(name)
        if entry is None:
            logger.warning("Fired job is no longer registered", extra={"job": name})
            return None

        status = entry.status
        if status.is_running:
            logger.warning("Job already running, skipping this run", extra={"job": name})
            return None

        context = (
            self.observability.new_context(job=name)
            if self.observability else TraceContext.new(job=name)
        )
        status.is_running = True
        status.run_count += 1
        status.last_run = utc_now()
        started = time.monotonic()
        success = False

        logger.info("Job started", extra=context.log_extra(job=name, run=status.run_count))
        try:
            with context.span(f"job.{name}"):
                result = await entry.handler(context)
            success = True
            return result
        except Exception as e:
            status.error_count += 1
            status.last_error = str(e) or type(e).__name__
            logger.error(
                "Job failed",
                extra=context.log_extra(job=name, error=status.last_error, error_count=status.error_count),
            )
            if self.observability:
                self.observability.record_error(f"job.{name}", e, context)
            return None
        finally:
            duration_ms = (time.monotonic() - started) * 1000
            status.is_running = False
            current = self._jobs.get(name)
            if current is not None and current.status is not status:
                current.status.is_running = False
            status.last_duration_ms = duration_ms
            status.next_run = self._next_run_time(name)
            if self.observability:
                self.observability.record_operation(f"job.{name}", duration_ms, success)
            logger.info(
                "Job finished",
                extra=context.log_extra(job=name, success=success, duration_ms=round(duration_ms, 1)),
            )

    async def run_job_immediately(self, name: str) -> Any:
        """
        Run a job now, outside its schedule.

        Returns the handler's result, or None when the job was already
        running (the request is dropped, not queued) or failed.

        Raises:
            JobNotFoundError: If no job has that name
        """
        entry = self._get(name)
        if entry.status.is_running:
            logger.warning("Job already running, manual trigger ignored", extra={"job": name})
            return None
        logger.info("Manual trigger", extra={"job": name})
        return await self._run_wrapped(name)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def _next_run_time(self, name: str) -> Optional[datetime]:
        job = self.scheduler.get_job(name)
        return getattr(job, "next_run_time", None) if job else None

    def get_job_status(self, name: str) -> CronJobStatus:
        entry = self._get(name)
        entry.status.next_run = self._next_run_time(name)
        return entry.status

    def get_all_job_statuses(self) -> list[CronJobStatus]:
        return [self.get_job_status(name) for name in self._jobs]

    def get_running_jobs(self) -> list[str]:
        return [name for name, entry in self._jobs.items() if entry.status.is_running]

    def has_job(self, name: str) -> bool:
        return name in self._jobs

    @property
    def job_count(self) -> int:
        return len(self._jobs)

    @property
    def is_running(self) -> bool:
        return self._running

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start firing scheduled jobs. Must be called inside a running loop."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting scheduler", extra={"timezone": self.timezone})
        self.scheduler.start()
        self._running = True
        logger.info(f"Scheduler started with {len(self._jobs)} jobs")

    async def shutdown(self) -> None:
        """
        Stop scheduling new runs, wait for running jobs, then stop APScheduler.

        APScheduler is only paused while jobs drain; shutting it down cancels
        in-flight job coroutines. Each running job gets up to
        ``shutdown_timeout_s``; after that the scheduler stops waiting and
        returns.
        """
        if self._running:
            logger.info("Stopping scheduler")
            self.scheduler.pause()

        try:
            for name in self.get_running_jobs():
                waited = 0.0
                while self._job_is_running(name) and waited < self.shutdown_timeout_s:
                    await self._sleep(self.poll_interval_s)
                    waited += self.poll_interval_s
                if self._job_is_running(name):
                    logger.warning(
                        "Job still running after shutdown timeout",
                        extra={"job": name, "timeout_s": self.shutdown_timeout_s},
                    )
        finally:
            if self._running:
                self.scheduler.shutdown(wait=False)
                self._running = False

        logger.info("Scheduler stopped")

    def _job_is_running(self, name: str) -> bool:
        entry = self._jobs.get(name)
        return entry is not None and entry.status.is_running


__all__ = [
    "CronJobConfig",
    "CronJobStatus",
    "InvalidScheduleError",
    "build_cron_trigger",
    "JobHandler",
    "JobNotFoundError",
    "ScrapeScheduler",
]
