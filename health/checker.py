"""
Hospital Wait Monitor - Health Checker

Aggregates component health into one report for the health endpoint and
the periodic health check job.

Components:
    - database: metric store connectivity and latency
    - scraper: browser can open a page (skipped while a job holds the browser)
    - observability: metrics provider is initialized
    - job_runner: rolling success rate of recent jobs

The overall status is the worst component status.
"""

import logging
import os
import platform
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from database.store import MetricStore
from observability.provider import Observability
from scrapers.base import utc_now
from scrapers.job_runner import JobRunner
from scrapers.orchestrator import ScrapeOrchestrator


logger = logging.getLogger(__name__)

SLOW_DATABASE_MS = 1000.0
UNHEALTHY_SUCCESS_RATE = 0.5
DEGRADED_SUCCESS_RATE = 0.8


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.DEGRADED: 1,
    HealthStatus.UNHEALTHY: 2,
}


@dataclass
class ComponentHealth:
    status: HealthStatus
    message: str
    response_time_ms: float = 0.0
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "response_time_ms": round(self.response_time_ms, 2),
            "details": self.details,
        }


@dataclass
class HealthReport:
    status: HealthStatus
    timestamp: datetime
    uptime_seconds: float
    version: str
    components: dict[str, ComponentHealth]
    system: dict[str, Any] = field(default_factory=dict)

    @property
    def is_serving(self) -> bool:
        """Healthy and degraded services still answer 200."""
        return self.status is not HealthStatus.UNHEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "version": self.version,
            "components": {name: component.to_dict() for name, component in self.components.items()},
            "system": self.system,
        }


def worst_status(statuses: list[HealthStatus]) -> HealthStatus:
    if not statuses:
        return HealthStatus.HEALTHY
    return max(statuses, key=_SEVERITY.__getitem__)


class HealthChecker:
    """Runs component checks and builds HealthReport objects."""

    def __init__(
        self,
        store: MetricStore,
        orchestrator: ScrapeOrchestrator,
        observability: Optional[Observability] = None,
        job_runner: Optional[JobRunner] = None,
        version: str = "1.0.0",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self.observability = observability
        self.job_runner = job_runner
        self.version = version
        self._clock = clock
        self._started = clock()
        self._last_scraper_ok: Optional[bool] = None

    @property
    def uptime_seconds(self) -> float:
        return self._clock() - self._started

    # -------------------------------------------------------------------------
    # Component checks
    # -------------------------------------------------------------------------

    async def check_database(self) -> ComponentHealth:
        started = self._clock()
        try:
            health = await self.store.health_check()
        except Exception as e:
            return ComponentHealth(
                HealthStatus.UNHEALTHY,
                f"Health check raised: {e}",
                (self._clock() - started) * 1000,
            )

        details = {"version": health.version, "last_error": health.last_error}
        if health.record_count is not None:
            details["record_count"] = health.record_count
        if not health.connected:
            return ComponentHealth(
                HealthStatus.UNHEALTHY, "Database not connected", health.response_time_ms, details
            )
        if health.response_time_ms > SLOW_DATABASE_MS:
            return ComponentHealth(
                HealthStatus.DEGRADED, "Database responding slowly", health.response_time_ms, details
            )
        return ComponentHealth(HealthStatus.HEALTHY, "Database connected", health.response_time_ms, details)

    async def check_scraper(self) -> ComponentHealth:
        # The browser context is shared; never probe it while a job is using it
        if self.job_runner is not None and self.job_runner.is_running:
            ok = self._last_scraper_ok if self._last_scraper_ok is not None else True
            return ComponentHealth(
                HealthStatus.HEALTHY if ok else HealthStatus.UNHEALTHY,
                "Scrape in progress, probe skipped",
                details={"probe_skipped": True},
            )

        started = self._clock()
        ok = await self.orchestrator.health_check()
        self._last_scraper_ok = ok
        elapsed = (self._clock() - started) * 1000
        details = {
            "browser_type": self.orchestrator.browser.browser_type.value,
            "initialized": self.orchestrator.browser.is_initialized,
        }
        if ok:
            return ComponentHealth(HealthStatus.HEALTHY, "Browser operational", elapsed, details)
        return ComponentHealth(HealthStatus.UNHEALTHY, "Browser health check failed", elapsed, details)

    def check_observability(self) -> ComponentHealth:
        if self.observability is None:
            return ComponentHealth(HealthStatus.DEGRADED, "Observability not configured")
        if not self.observability.is_initialized():
            return ComponentHealth(HealthStatus.DEGRADED, "Observability not initialized")
        return ComponentHealth(HealthStatus.HEALTHY, "Observability operational")

    def check_job_runner(self) -> ComponentHealth:
        if self.job_runner is None:
            return ComponentHealth(HealthStatus.HEALTHY, "Job runner not attached")

        stats = self.job_runner.execution_stats()
        details = {**stats.to_dict(), "state": self.job_runner.state.value}
        if stats.total_executions == 0:
            return ComponentHealth(HealthStatus.HEALTHY, "No executions yet", details=details)
        if stats.success_rate < UNHEALTHY_SUCCESS_RATE:
            return ComponentHealth(
                HealthStatus.UNHEALTHY,
                f"Low success rate: {stats.success_rate:.0%}",
                details=details,
            )
        if stats.success_rate < DEGRADED_SUCCESS_RATE:
            return ComponentHealth(
                HealthStatus.DEGRADED,
                f"Reduced success rate: {stats.success_rate:.0%}",
                details=details,
            )
        return ComponentHealth(
            HealthStatus.HEALTHY,
            f"Success rate: {stats.success_rate:.0%}",
            details=details,
        )

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    async def perform_health_check(self) -> HealthReport:
        components = {
            "database": await self.check_database(),
            "scraper": await self.check_scraper(),
            "observability": self.check_observability(),
            "job_runner": self.check_job_runner(),
        }

        if self.observability is not None:
            for name, component in components.items():
                self.observability.record_health_check(
                    name, component.status is HealthStatus.HEALTHY, component.response_time_ms
                )

        report = HealthReport(
            status=worst_status([component.status for component in components.values()]),
            timestamp=utc_now(),
            uptime_seconds=self.uptime_seconds,
            version=self.version,
            components=components,
            system={
                "pid": os.getpid(),
                "python_version": platform.python_version(),
                "platform": platform.system().lower(),
            },
        )
        if report.status is not HealthStatus.HEALTHY:
            logger.warning(
                "Health check not healthy",
                extra={
                    "status": report.status.value,
                    "components": {name: c.status.value for name, c in components.items()},
                },
            )
        return report

    async def check_readiness(self) -> tuple[bool, dict[str, Any]]:
        """Ready when the store is connected and the browser is initialized."""
        store_ready = self.store.is_connected()
        browser_ready = self.orchestrator.browser.is_initialized
        return store_ready and browser_ready, {
            "database": store_ready,
            "browser": browser_ready,
        }

    def check_liveness(self) -> tuple[bool, dict[str, Any]]:
        return True, {"uptime_seconds": round(self.uptime_seconds, 1)}

    async def simple_health(self) -> tuple[bool, str]:
        report = await self.perform_health_check()
        failing = [
            name for name, component in report.components.items()
            if component.status is not HealthStatus.HEALTHY
        ]
        if not failing:
            return True, "All systems operational"
        return report.is_serving, f"Issues detected in: {', '.join(failing)}"


__all__ = [
    "HealthStatus",
    "ComponentHealth",
    "HealthReport",
    "HealthChecker",
    "worst_status",
]
