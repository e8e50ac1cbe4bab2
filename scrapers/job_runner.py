"""
Hospital Wait Monitor - Job Runner

Executes one scraping job: every configured target is scraped in order and
each successful result is inserted into the metric store.

Scrape success and persistence success are tracked separately. A job
succeeds when at least one target was scraped, even if storing the record
failed; insert failures are logged, counted and reported in the result.

Only one job runs at a time. A call made while a job is running returns a
skipped result immediately and is not added to the history.

Usage:
    from scrapers.job_runner import JobRunner

    runner = JobRunner(orchestrator, store, targets, observability)
    result = await runner.execute_scraping_job()
    print(result.success, result.records_inserted)
"""

import asyncio
import logging
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from database.store import MetricStore
from observability.provider import Observability
from observability.tracing import TraceContext
from scrapers.base import ScrapeTarget, utc_now
from scrapers.orchestrator import ScrapeOrchestrator


logger = logging.getLogger(__name__)

SCRAPING_JOB_NAME = "hospital_scraping"
DEFAULT_HISTORY_SIZE = 100


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


# =============================================================================
# Results
# =============================================================================

@dataclass
class TargetOutcome:
    """What happened to one target within a job."""

    target: ScrapeTarget
    scrape_success: bool
    inserted: bool = False
    record_id: Optional[str] = None
    error: Optional[str] = None
    insert_error: Optional[str] = None
    retries: int = 0
    duration_ms: float = 0.0


@dataclass
class JobExecutionResult:
    """Summary of one job run."""

    job_id: str
    start_time: datetime
    end_time: datetime
    success: bool
    records_inserted: int = 0
    error: Optional[str] = None
    insert_failures: int = 0
    skipped: bool = False
    correlation_id: Optional[str] = None
    targets: list[TargetOutcome] = field(default_factory=list)

    @property
    def duration_ms(self) -> float:
        return (self.end_time - self.start_time).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_ms": round(self.duration_ms, 1),
            "success": self.success,
            "records_inserted": self.records_inserted,
            "insert_failures": self.insert_failures,
            "skipped": self.skipped,
            "error": self.error,
            "targets": [
                {
                    "url": outcome.target.url,
                    "department": outcome.target.department,
                    "scrape_success": outcome.scrape_success,
                    "inserted": outcome.inserted,
                    "error": outcome.error or outcome.insert_error,
                }
                for outcome in self.targets
            ],
        }


@dataclass(frozen=True)
class ExecutionStats:
    total_executions: int
    successful_executions: int
    failed_executions: int
    success_rate: float
    average_duration_ms: float
    total_records_inserted: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_executions": self.total_executions,
            "successful_executions": self.successful_executions,
            "failed_executions": self.failed_executions,
            "success_rate": round(self.success_rate, 4),
            "average_duration_ms": round(self.average_duration_ms, 1),
            "total_records_inserted": self.total_records_inserted,
        }


# =============================================================================
# Runner
# =============================================================================

class JobRunner:
    """
    Runs scraping jobs and keeps a bounded execution history.

    Attributes:
        targets: Pages scraped on every run, in order
        shutdown_timeout_s: How long shutdown waits for a running job
    """

    def __init__(
        self,
        orchestrator: ScrapeOrchestrator,
        store: MetricStore,
        targets: list[ScrapeTarget],
        observability: Optional[Observability] = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
        shutdown_timeout_s: float = 60.0,
        poll_interval_s: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.targets = list(targets)
        self.observability = observability
        self.shutdown_timeout_s = shutdown_timeout_s
        self.poll_interval_s = poll_interval_s
        self._sleep = sleep
        self._history: deque[JobExecutionResult] = deque(maxlen=history_size)
        self._state = JobState.IDLE
        self._current_job_id: Optional[str] = None
        self._current_started: Optional[datetime] = None
        self._shutting_down = False
        self._last_scraper_ok: Optional[bool] = None

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> JobState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is JobState.RUNNING

    def can_execute_job(self) -> bool:
        return not self.is_running and not self._shutting_down

    def current_status(self) -> dict[str, Any]:
        last = self._history[-1] if self._history else None
        return {
            "state": self._state.value,
            "is_running": self.is_running,
            "current_job_id": self._current_job_id,
            "current_job_started": self._current_started.isoformat() if self._current_started else None,
            "last_execution": last.to_dict() if last else None,
            "targets": len(self.targets),
        }

    def execution_history(self, limit: Optional[int] = None) -> list[JobExecutionResult]:
        """Recorded executions, most recent first."""
        history = list(reversed(self._history))
        return history[:limit] if limit is not None else history

    def execution_stats(self) -> ExecutionStats:
        total = len(self._history)
        successful = sum(1 for result in self._history if result.success)
        durations = [result.duration_ms for result in self._history]
        return ExecutionStats(
            total_executions=total,
            successful_executions=successful,
            failed_executions=total - successful,
            success_rate=successful / total if total else 0.0,
            average_duration_ms=sum(durations) / total if total else 0.0,
            total_records_inserted=sum(result.records_inserted for result in self._history),
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_scraping_job(self, context: Optional[TraceContext] = None) -> JobExecutionResult:
        """
        Scrape all targets in order and store the results.

        Never raises; unexpected errors are recorded on the result.
        """
        if not self.can_execute_job():
            reason = "shutting down" if self._shutting_down else "a job is already running"
            logger.warning(
                "Skipping scraping job",
                extra={"reason": reason, "current_job_id": self._current_job_id},
            )
            now = utc_now()
            return JobExecutionResult(
                job_id=f"skipped-{uuid.uuid4().hex[:12]}",
                start_time=now,
                end_time=now,
                success=False,
                error=f"Skipped: {reason}",
                skipped=True,
            )

        self._state = JobState.RUNNING
        job_id = f"job-{uuid.uuid4().hex[:12]}"
        context = context or (
            self.observability.new_context(job=SCRAPING_JOB_NAME)
            if self.observability else TraceContext.new(job=SCRAPING_JOB_NAME)
        )
        start_time = utc_now()
        started = time.monotonic()
        self._current_job_id = job_id
        self._current_started = start_time
        outcomes: list[TargetOutcome] = []
        error: Optional[str] = None

        logger.info(
            "Scraping job started",
            extra=context.log_extra(job_id=job_id, targets=len(self.targets)),
        )

        try:
            with context.span("scraping_job", job_id=job_id, targets=len(self.targets)) as span:
                for target in self.targets:
                    outcomes.append(await self._process_target(target, context))
                span.set_attributes(
                    scraped=sum(1 for outcome in outcomes if outcome.scrape_success),
                    inserted=sum(1 for outcome in outcomes if outcome.inserted),
                )
        except Exception as e:
            error = f"Unexpected job error: {e}"
            logger.exception("Scraping job crashed", extra=context.log_extra(job_id=job_id))
            if self.observability:
                self.observability.record_error("scraping_job", e, context)
        finally:
            self._state = JobState.IDLE
            self._current_job_id = None
            self._current_started = None

        success = error is None and any(outcome.scrape_success for outcome in outcomes)
        if error is None and not success:
            failures = [outcome.error for outcome in outcomes if outcome.error]
            error = "; ".join(failures) if failures else "No targets configured"

        result = JobExecutionResult(
            job_id=job_id,
            start_time=start_time,
            end_time=utc_now(),
            success=success,
            records_inserted=sum(1 for outcome in outcomes if outcome.inserted),
            insert_failures=sum(1 for outcome in outcomes if outcome.insert_error),
            error=error,
            correlation_id=context.correlation_id,
            targets=outcomes,
        )
        self._history.append(result)

        duration_s = time.monotonic() - started
        if self.observability:
            self.observability.metrics.record_job_execution(SCRAPING_JOB_NAME, duration_s, success)
            self.observability.record_operation(SCRAPING_JOB_NAME, duration_s * 1000, success)

        log = logger.info if success else logger.error
        log(
            "Scraping job finished",
            extra=context.log_extra(
                job_id=job_id,
                success=success,
                records_inserted=result.records_inserted,
                insert_failures=result.insert_failures,
                duration_ms=round(duration_s * 1000, 1),
                error=error,
            ),
        )
        return result

    async def _process_target(self, target: ScrapeTarget, context: TraceContext) -> TargetOutcome:
        started = time.monotonic()
        try:
            scrape = await self.orchestrator.scrape(target, context)
        except Exception as e:
            logger.exception("Scrape raised unexpectedly", extra=context.log_extra(url=target.url))
            return TargetOutcome(
                target=target,
                scrape_success=False,
                error=str(e) or type(e).__name__,
                duration_ms=(time.monotonic() - started) * 1000,
            )

        outcome = TargetOutcome(
            target=target,
            scrape_success=scrape.success,
            error=None if scrape.success else scrape.error,
            retries=scrape.metrics.retries,
        )
        if not scrape.success or scrape.data is None:
            outcome.duration_ms = (time.monotonic() - started) * 1000
            return outcome

        insert_started = time.monotonic()
        try:
            outcome.record_id = await self.store.insert(scrape.data)
            outcome.inserted = True
            if self.observability:
                self.observability.metrics.record_records_inserted(1)
        except Exception as e:
            outcome.insert_error = str(e) or type(e).__name__
            logger.error(
                "Failed to store scraped metric",
                extra=context.log_extra(url=target.url, error=outcome.insert_error),
            )
            if self.observability:
                self.observability.record_error("insert", e, context, url=target.url)
        finally:
            if self.observability:
                self.observability.metrics.record_database_operation(
                    "insert",
                    time.monotonic() - insert_started,
                    outcome.inserted,
                )

        outcome.duration_ms = (time.monotonic() - started) * 1000
        return outcome

    # -------------------------------------------------------------------------
    # Health and Shutdown
    # -------------------------------------------------------------------------

    async def perform_health_check(self) -> bool:
        """
        True when the store is connected and the browser can load a page.

        While a job is running the browser is not probed; the last probe
        result stands in for it.
        """
        store_ok = False
        try:
            if self.store.is_connected():
                store_ok = (await self.store.health_check()).connected
        except Exception as e:
            logger.warning("Store health check raised", extra={"error": str(e)})

        scraper_ok = False
        if self.is_running:
            scraper_ok = self._last_scraper_ok if self._last_scraper_ok is not None else True
        else:
            try:
                scraper_ok = await self.orchestrator.health_check()
            except Exception as e:
                logger.warning("Scraper health check raised", extra={"error": str(e)})
            self._last_scraper_ok = scraper_ok

        healthy = store_ok and scraper_ok
        log = logger.debug if healthy else logger.warning
        log(
            "Job runner health check",
            extra={"store_ok": store_ok, "scraper_ok": scraper_ok, "healthy": healthy},
        )
        return healthy

    async def shutdown(self) -> None:
        """
        Wait for a running job (up to ``shutdown_timeout_s``), then close the
        browser and disconnect the store.
        """
        self._shutting_down = True
        logger.info("Job runner shutting down", extra={"running": self.is_running})

        waited = 0.0
        while self.is_running and waited < self.shutdown_timeout_s:
            await self._sleep(self.poll_interval_s)
            waited += self.poll_interval_s

        if self.is_running:
            logger.warning(
                "Running job did not finish before shutdown timeout",
                extra={"job_id": self._current_job_id, "timeout_s": self.shutdown_timeout_s},
            )

        try:
            await self.orchestrator.shutdown()
        except Exception as e:
            logger.error("Error shutting down scraper", extra={"error": str(e)})

        try:
            await self.store.disconnect()
        except Exception as e:
            logger.error("Error disconnecting metric store", extra={"error": str(e)})

        logger.info("Job runner stopped")


__all__ = [
    "SCRAPING_JOB_NAME",
    "JobState",
    "TargetOutcome",
    "JobExecutionResult",
    "ExecutionStats",
    "JobRunner",
]
