"""
Hospital Wait Monitor - Application Startup

Wires the scraping pipeline together, runs it under the scheduler and
shuts it down in order when a signal arrives.

Startup order:
    1. Settings validation and logging
    2. Metric store connection
    3. Browser launch and scraper health check
    4. Job runner, health checker and health endpoint
    5. Scheduler with the scraping and health check jobs

Usage:
    # Run the service
    python -m startup

    # Validate configuration only
    python -m startup --check
"""

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from config.logging import setup_logging
from config.settings import Settings, get_settings
from config.targets import TargetConfigError, load_targets
from database.store import MetricStore, StoreError, create_store
from health.checker import HealthChecker, HealthReport
from health.server import HealthServer, create_health_app
from observability.provider import Observability
from observability.tracing import TraceContext
from scrapers.base import ScrapeTarget, utc_now
from scrapers.browser import BrowserConfig, BrowserSessionManager
from scrapers.errors import JobFailedError, ScraperError
from scrapers.job_runner import SCRAPING_JOB_NAME, JobExecutionResult, JobRunner
from scrapers.orchestrator import ScrapeOrchestrator, ScrapingConfig
from scrapers.scheduler import (
    CronJobConfig,
    InvalidScheduleError,
    ScrapeScheduler,
    build_cron_trigger,
)


logger = logging.getLogger(__name__)

HEALTH_CHECK_JOB_NAME = "health_check"


@dataclass
class StartupResult:
    """Result of startup validation."""

    success: bool = True
    settings_valid: bool = False
    store_connected: bool = False
    browser_ready: bool = False
    targets_loaded: int = 0

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    started_at: datetime = field(default_factory=utc_now)

    def add_error(self, message: str) -> None:
        """Add an error and mark as failed."""
        self.errors.append(message)
        self.success = False

    def add_warning(self, message: str) -> None:
        """Add a warning (doesn't fail startup)."""
        self.warnings.append(message)


# =============================================================================
# Validation
# =============================================================================

def validate_settings(settings: Settings) -> tuple[bool, list[str]]:
    """
    Validate settings that pydantic cannot check field by field.

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    errors = []

    if settings.store_backend == "sqlalchemy" and not settings.database_url:
        errors.append("DATABASE_URL is not configured")

    if settings.proxy_username and not settings.proxy_server:
        errors.append("PROXY_USERNAME is set but PROXY_SERVER is not")

    if settings.retry_base_delay_ms > settings.retry_max_delay_ms:
        errors.append("RETRY_BASE_DELAY_MS must not exceed RETRY_MAX_DELAY_MS")

    drain_s = settings.scheduler_shutdown_timeout_seconds + settings.job_shutdown_timeout_seconds
    if settings.graceful_shutdown_timeout_seconds < drain_s:
        errors.append(
            "GRACEFUL_SHUTDOWN_TIMEOUT_SECONDS must be at least "
            f"SCHEDULER_SHUTDOWN_TIMEOUT_SECONDS + JOB_SHUTDOWN_TIMEOUT_SECONDS ({drain_s:g}s)"
        )

    for schedule in (settings.scraping_schedule, settings.health_check_schedule):
        try:
            build_cron_trigger(schedule, settings.timezone)
        except InvalidScheduleError as e:
            errors.append(str(e))

    if settings.is_production:
        if settings.debug:
            errors.append("DEBUG should be False in production")
        if settings.log_level == "DEBUG":
            errors.append("LOG_LEVEL should not be DEBUG in production")
        if settings.store_backend == "memory":
            errors.append("STORE_BACKEND=memory loses all data on restart")

    return len(errors) == 0, errors


def validate_targets(settings: Settings) -> tuple[bool, list[ScrapeTarget], str]:
    """
    Load scrape targets.

    Returns:
        Tuple of (is_valid, targets, message)
    """
    try:
        targets = load_targets(settings=settings)
    except TargetConfigError as e:
        return False, [], str(e)
    return True, targets, f"Loaded {len(targets)} target(s)"


# =============================================================================
# Application
# =============================================================================

class HospitalWaitMonitor:
    """
    The running service: pipeline components plus scheduler and health
    endpoint.

    Attributes:
        settings: Application settings
        observability: Shared logging/metrics/tracing entry point
        store: Metric persistence
        orchestrator: Single-target scrape coordinator
        job_runner: Multi-target job executor
        scheduler: Cron scheduler for the jobs
        health_checker: Component health aggregator
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[MetricStore] = None,
        playwright_factory: Optional[Callable[[], Any]] = None,
        serve_health: bool = True,
    ):
        self.settings = settings or get_settings()
        self.observability = Observability(service_name=self.settings.service_name)
        self.store = store or create_store(self.settings)

        browser = BrowserSessionManager(
            config=BrowserConfig.from_settings(self.settings),
            observability=self.observability,
            playwright_factory=playwright_factory,
        )
        self.orchestrator = ScrapeOrchestrator(
            browser,
            observability=self.observability,
            config=ScrapingConfig.from_settings(self.settings),
        )

        self.targets: list[ScrapeTarget] = []
        self.job_runner: Optional[JobRunner] = None
        self.health_checker: Optional[HealthChecker] = None
        self.health_server: Optional[HealthServer] = None
        self.serve_health = serve_health
        self.scheduler = ScrapeScheduler(
            timezone=self.settings.timezone,
            observability=self.observability,
            shutdown_timeout_s=self.settings.scheduler_shutdown_timeout_seconds,
        )

        self._shutdown_event = asyncio.Event()
        self._stopped = False

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------

    async def start(self) -> StartupResult:
        """
        Bring up every component and start the scheduler.

        On failure the components that did start are shut down again and
        the returned result carries the errors.
        """
        result = StartupResult()
        settings = self.settings

        logger.info("=" * 60)
        logger.info("Hospital Wait Monitor - Starting")
        logger.info("=" * 60)

        settings_valid, settings_errors = validate_settings(settings)
        result.settings_valid = settings_valid
        for error in settings_errors:
            result.add_error(error)
            logger.error(f"Settings error: {error}")
        if not settings_valid:
            return result

        targets_valid, targets, targets_message = validate_targets(settings)
        if not targets_valid:
            result.add_error(f"Targets: {targets_message}")
            logger.error(f"Targets: {targets_message}")
            return result
        self.targets = targets
        result.targets_loaded = len(targets)
        logger.info(f"Targets: {targets_message}")

        try:
            await self.store.connect()
            result.store_connected = True
            logger.info("Metric store connected", extra={"backend": settings.store_backend})
        except StoreError as e:
            result.add_error(f"Store: {e}")
            logger.error(f"Store: {e}")
            return result

        try:
            await self.orchestrator.initialize()
        except ScraperError as e:
            result.add_error(f"Browser: {e}")
            logger.error(f"Browser: {e}")
            await self._release_startup_resources()
            return result

        result.browser_ready = await self.orchestrator.health_check()
        if not result.browser_ready:
            result.add_warning("Scraper health check failed at startup")
            logger.warning("Scraper health check failed at startup")

        self.job_runner = JobRunner(
            self.orchestrator,
            self.store,
            self.targets,
            observability=self.observability,
            shutdown_timeout_s=settings.job_shutdown_timeout_seconds,
        )
        self.health_checker = HealthChecker(
            self.store,
            self.orchestrator,
            observability=self.observability,
            job_runner=self.job_runner,
            version=settings.service_version,
        )

        if self.serve_health:
            app = create_health_app(self.health_checker, self.observability, debug=settings.debug)
            self.health_server = HealthServer(app, host=settings.health_host, port=settings.health_port)
            await self.health_server.start()

        self.scheduler.schedule_job(
            CronJobConfig(
                name=SCRAPING_JOB_NAME,
                schedule=settings.scraping_schedule,
                run_on_start=True,
            ),
            self.run_scraping_job,
        )
        self.scheduler.schedule_job(
            CronJobConfig(name=HEALTH_CHECK_JOB_NAME, schedule=settings.health_check_schedule),
            self.run_health_check,
        )
        self.scheduler.start()

        logger.info("-" * 60)
        logger.info(
            "Hospital Wait Monitor started",
            extra={
                "environment": settings.environment,
                "schedule": settings.scraping_schedule,
                "targets": len(self.targets),
                "browser": settings.browser_type,
            },
        )
        for warning in result.warnings:
            logger.warning(f"  - {warning}")
        logger.info("-" * 60)
        return result

    async def _release_startup_resources(self) -> None:
        try:
            await self.orchestrator.shutdown()
        except Exception as e:
            logger.error(f"Error closing browser: {e}")
        try:
            await self.store.disconnect()
        except Exception as e:
            logger.error(f"Error disconnecting store: {e}")

    # -------------------------------------------------------------------------
    # Job Handlers
    # -------------------------------------------------------------------------

    async def run_scraping_job(self, context: TraceContext) -> JobExecutionResult:
        """
        Scheduler handler for the scraping job.

        Raises:
            JobFailedError: If no target was scraped, so the scheduler
                counts the run as an error
        """
        result = await self.job_runner.execute_scraping_job(context)
        if not result.skipped and not result.success:
            raise JobFailedError(result.error or "No target scraped successfully")
        return result

    async def run_health_check(self, context: TraceContext) -> HealthReport:
        """Scheduler handler for the periodic health check."""
        report = await self.health_checker.perform_health_check()
        self.observability.record_heartbeat()
        logger.info(
            "Periodic health check",
            extra=context.log_extra(status=report.status.value, uptime_seconds=round(report.uptime_seconds)),
        )
        return report

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def request_shutdown(self, sig: Optional[signal.Signals] = None) -> None:
        if sig is not None:
            logger.info(f"Received signal {sig.name}, shutting down...")
        self._shutdown_event.set()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: self.request_shutdown(s))

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()

    async def _shutdown_sequence(self) -> None:
        # Scheduler first so no new job starts while the runner drains
        await self.scheduler.shutdown()

        if self.job_runner is not None:
            await self.job_runner.shutdown()
        else:
            await self._release_startup_resources()

        await self._stop_serving()

    async def _stop_serving(self) -> None:
        if self.health_server is not None:
            await self.health_server.stop()
        self.observability.shutdown()

    async def shutdown(self) -> None:
        """
        Stop everything in order, bounded by the graceful shutdown timeout.

        When the ceiling is hit the browser and store are still released.
        """
        if self._stopped:
            return
        self._stopped = True

        timeout = self.settings.graceful_shutdown_timeout_seconds
        logger.info("Shutting down Hospital Wait Monitor...", extra={"timeout_s": timeout})
        try:
            await asyncio.wait_for(self._shutdown_sequence(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.error("Graceful shutdown timed out", extra={"timeout_s": timeout})
            await self._release_startup_resources()
            await self._stop_serving()
        logger.info("Shutdown complete")


# =============================================================================
# CLI Entry Point
# =============================================================================

def check_configuration(settings: Settings) -> int:
    """
    Validate configuration without starting anything.

    Returns:
        0 on success, 1 on failure
    """
    settings_valid, errors = validate_settings(settings)
    targets_valid, targets, targets_message = validate_targets(settings)
    if not targets_valid:
        errors.append(f"Targets: {targets_message}")

    if settings_valid and targets_valid:
        print("\nAll validations passed")
        print(f"  - Schedule: {settings.scraping_schedule} ({settings.timezone})")
        for target in targets:
            print(f"  - Target: {target.department} @ {target.url}")
        return 0

    print("\nValidation failed:")
    for error in errors:
        print(f"  - {error}")
    return 1


async def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the monitor service.

    Returns:
        Exit code (0 for success, 1 for startup failure)
    """
    parser = argparse.ArgumentParser(description="Hospital emergency department wait time monitor")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate configuration and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args(argv)

    setup_logging()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    settings = get_settings()
    if args.check:
        return check_configuration(settings)

    monitor = HospitalWaitMonitor(settings)
    monitor.install_signal_handlers()

    result = await monitor.start()
    if not result.success:
        logger.error("Startup validation FAILED")
        for error in result.errors:
            logger.error(f"  - {error}")
        await monitor.shutdown()
        return 1

    try:
        await monitor.wait_for_shutdown()
    except asyncio.CancelledError:
        logger.info("Main loop cancelled")
    finally:
        await monitor.shutdown()
    return 0


def run() -> None:
    """Console script entry point."""
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Monitor interrupted by user")
        exit_code = 0
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
