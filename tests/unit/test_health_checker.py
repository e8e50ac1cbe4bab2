"""
Hospital Wait Monitor - Health Checker Unit Tests

Tests component status rules and report aggregation.
"""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from database.store import InMemoryMetricStore, StoreHealth
from health.checker import (
    SLOW_DATABASE_MS,
    HealthChecker,
    HealthStatus,
    worst_status,
)
from scrapers.base import BrowserType
from scrapers.job_runner import ExecutionStats, JobState


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def job_runner_with(success_rate, total=10, running=False):
    runner = MagicMock()
    runner.is_running = running
    runner.state = JobState.RUNNING if running else JobState.IDLE
    successful = round(total * success_rate)
    runner.execution_stats.return_value = ExecutionStats(
        total_executions=total,
        successful_executions=successful,
        failed_executions=total - successful,
        success_rate=success_rate,
        average_duration_ms=1500.0,
        total_records_inserted=successful,
    )
    return runner


@pytest.fixture
def mock_orchestrator():
    orchestrator = MagicMock()
    orchestrator.health_check = AsyncMock(return_value=True)
    orchestrator.browser.browser_type = BrowserType.CHROMIUM
    orchestrator.browser.is_initialized = True
    return orchestrator


@pytest_asyncio.fixture
async def store():
    store = InMemoryMetricStore()
    await store.connect()
    return store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def checker(store, mock_orchestrator, observability, clock):
    return HealthChecker(store, mock_orchestrator, observability, version="2.1.0", clock=clock)


def test_worst_status():
    assert worst_status([]) is HealthStatus.HEALTHY
    assert worst_status([HealthStatus.HEALTHY, HealthStatus.DEGRADED]) is HealthStatus.DEGRADED
    assert worst_status([HealthStatus.UNHEALTHY, HealthStatus.DEGRADED]) is HealthStatus.UNHEALTHY


# =============================================================================
# Components
# =============================================================================

class TestDatabaseCheck:
    """Tests for HealthChecker.check_database."""

    @pytest.mark.asyncio
    async def test_connected(self, checker):
        component = await checker.check_database()

        assert component.status is HealthStatus.HEALTHY
        assert component.details["record_count"] == 0

    @pytest.mark.asyncio
    async def test_disconnected(self, checker, store):
        await store.disconnect()

        assert (await checker.check_database()).status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_slow(self, checker, store):
        store.health_check = AsyncMock(
            return_value=StoreHealth(connected=True, response_time_ms=SLOW_DATABASE_MS + 1)
        )

        assert (await checker.check_database()).status is HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_raising_store(self, checker, store):
        store.health_check = AsyncMock(side_effect=RuntimeError("socket closed"))

        component = await checker.check_database()

        assert component.status is HealthStatus.UNHEALTHY
        assert "socket closed" in component.message


class TestScraperCheck:
    """Tests for HealthChecker.check_scraper."""

    @pytest.mark.asyncio
    async def test_operational(self, checker):
        component = await checker.check_scraper()

        assert component.status is HealthStatus.HEALTHY
        assert component.details["browser_type"] == "chromium"

    @pytest.mark.asyncio
    async def test_failed_probe(self, checker, mock_orchestrator):
        mock_orchestrator.health_check.return_value = False

        assert (await checker.check_scraper()).status is HealthStatus.UNHEALTHY

    @pytest.mark.asyncio
    async def test_probe_skipped_while_job_runs(self, checker, mock_orchestrator):
        await checker.check_scraper()
        checker.job_runner = job_runner_with(1.0, running=True)
        mock_orchestrator.health_check.reset_mock()

        component = await checker.check_scraper()

        mock_orchestrator.health_check.assert_not_awaited()
        assert component.status is HealthStatus.HEALTHY
        assert component.details == {"probe_skipped": True}

    @pytest.mark.asyncio
    async def test_skipped_probe_reports_last_failure(self, checker, mock_orchestrator):
        mock_orchestrator.health_check.return_value = False
        await checker.check_scraper()
        checker.job_runner = job_runner_with(1.0, running=True)

        assert (await checker.check_scraper()).status is HealthStatus.UNHEALTHY


class TestOtherChecks:
    """Tests for the observability and job runner checks."""

    def test_observability_missing(self, store, mock_orchestrator):
        checker = HealthChecker(store, mock_orchestrator)
        assert checker.check_observability().status is HealthStatus.DEGRADED

    def test_observability_shut_down(self, checker, observability):
        observability.shutdown()
        assert checker.check_observability().status is HealthStatus.DEGRADED

    def test_no_job_runner(self, checker):
        assert checker.check_job_runner().status is HealthStatus.HEALTHY

    @pytest.mark.parametrize(
        "rate, expected",
        [
            (1.0, HealthStatus.HEALTHY),
            (0.8, HealthStatus.HEALTHY),
            (0.7, HealthStatus.DEGRADED),
            (0.4, HealthStatus.UNHEALTHY),
        ],
    )
    def test_success_rate_thresholds(self, checker, rate, expected):
        checker.job_runner = job_runner_with(rate)
        assert checker.check_job_runner().status is expected

    def test_no_executions_is_healthy(self, checker):
        checker.job_runner = job_runner_with(0.0, total=0)
        assert checker.check_job_runner().status is HealthStatus.HEALTHY


# =============================================================================
# Reports
# =============================================================================

class TestReports:
    """Tests for report aggregation and probes."""

    @pytest.mark.asyncio
    async def test_healthy_report(self, checker, clock):
        clock.now += 90

        report = await checker.perform_health_check()

        assert report.status is HealthStatus.HEALTHY
        assert report.is_serving
        assert report.uptime_seconds == 90
        data = report.to_dict()
        assert data["version"] == "2.1.0"
        assert set(data["components"]) == {"database", "scraper", "observability", "job_runner"}
        assert "python_version" in data["system"]

    @pytest.mark.asyncio
    async def test_degraded_still_serving(self, checker):
        checker.job_runner = job_runner_with(0.7)

        report = await checker.perform_health_check()

        assert report.status is HealthStatus.DEGRADED
        assert report.is_serving

    @pytest.mark.asyncio
    async def test_unhealthy_not_serving(self, checker, store):
        await store.disconnect()

        report = await checker.perform_health_check()

        assert report.status is HealthStatus.UNHEALTHY
        assert not report.is_serving

    @pytest.mark.asyncio
    async def test_records_component_gauges(self, checker, store, observability):
        await store.disconnect()

        await checker.perform_health_check()

        registry = observability.metrics.registry
        assert registry.get_sample_value("component_healthy", {"component": "database"}) == 0
        assert registry.get_sample_value("component_healthy", {"component": "scraper"}) == 1

    @pytest.mark.asyncio
    async def test_readiness(self, checker, mock_orchestrator):
        assert await checker.check_readiness() == (True, {"database": True, "browser": True})

        mock_orchestrator.browser.is_initialized = False
        ready, checks = await checker.check_readiness()

        assert not ready
        assert checks["browser"] is False

    def test_liveness(self, checker, clock):
        clock.now += 12.34
        assert checker.check_liveness() == (True, {"uptime_seconds": 12.3})

    @pytest.mark.asyncio
    async def test_simple_health(self, checker, store):
        assert await checker.simple_health() == (True, "All systems operational")

        await store.disconnect()
        ok, message = await checker.simple_health()

        assert not ok
        assert message == "Issues detected in: database"
