"""
Hospital Wait Monitor - Prometheus Metrics

Counters, gauges and histograms for the scraping pipeline. Each
ScraperMetrics instance owns its own CollectorRegistry so tests and
multiple app instances in one process never collide on metric names.

Usage:
    from observability.metrics import ScraperMetrics

    metrics = ScraperMetrics()
    metrics.record_scraping_attempt(scraper_id)
    body = metrics.render()
"""

from typing import Optional
from urllib.parse import urlparse

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class ScraperMetrics:
    """Prometheus instruments for scraping, storage and health."""

    CONTENT_TYPE = CONTENT_TYPE_LATEST

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()
        r = self.registry

        # ---------------------------------------------------------------------
        # Hospital data
        # ---------------------------------------------------------------------
        self.hospital_wait_time = Gauge(
            "hospital_wait_time_minutes",
            "Current emergency department wait time",
            ["department"],
            registry=r,
        )
        self.hospital_patient_count = Gauge(
            "hospital_patient_count",
            "Patients currently in the emergency department",
            ["department", "kind"],
            registry=r,
        )
        self.data_quality_score = Gauge(
            "data_quality_score",
            "Quality score of the last extracted metric (0-1)",
            ["department"],
            registry=r,
        )
        self.data_freshness = Gauge(
            "data_freshness_minutes",
            "Minutes since the hospital website last updated its data",
            ["department"],
            registry=r,
        )

        # ---------------------------------------------------------------------
        # Scraping
        # ---------------------------------------------------------------------
        self.scraping_attempts = Counter(
            "scraping_attempts_total",
            "Scrape attempts started",
            ["scraper_id"],
            registry=r,
        )
        self.scraping_success = Counter(
            "scraping_success_total",
            "Scrapes that produced a metric",
            ["scraper_id"],
            registry=r,
        )
        self.scraping_failures = Counter(
            "scraping_failures_total",
            "Scrapes that exhausted all attempts",
            ["scraper_id", "reason"],
            registry=r,
        )
        self.scraping_duration = Histogram(
            "scraping_duration_seconds",
            "End-to-end scrape duration including retries",
            ["scraper_id"],
            buckets=(1, 2.5, 5, 10, 20, 30, 60, 120, 300),
            registry=r,
        )
        self.scraping_retries = Histogram(
            "scraping_retry_count",
            "Retries needed per scrape",
            ["scraper_id"],
            buckets=(0, 1, 2, 3, 5, 10),
            registry=r,
        )

        # ---------------------------------------------------------------------
        # Browser
        # ---------------------------------------------------------------------
        self.browser_launch_duration = Histogram(
            "browser_launch_duration_seconds",
            "Time to launch the browser and open a context",
            ["browser_type"],
            registry=r,
        )
        self.browser_navigation_duration = Histogram(
            "browser_navigation_duration_seconds",
            "Page navigation time",
            ["target_host", "success"],
            registry=r,
        )

        # ---------------------------------------------------------------------
        # Storage
        # ---------------------------------------------------------------------
        self.db_connection_health = Gauge(
            "db_connection_healthy",
            "1 when the metric store answered its last health check",
            registry=r,
        )
        self.db_operation_duration = Histogram(
            "db_operation_duration_seconds",
            "Metric store operation time",
            ["operation"],
            registry=r,
        )
        self.db_operation_errors = Counter(
            "db_operation_errors_total",
            "Failed metric store operations",
            ["operation"],
            registry=r,
        )
        self.records_inserted = Counter(
            "records_inserted_total",
            "Hospital metric records persisted",
            registry=r,
        )

        # ---------------------------------------------------------------------
        # Application
        # ---------------------------------------------------------------------
        self.job_executions = Counter(
            "job_executions_total",
            "Scheduled job executions",
            ["job", "status"],
            registry=r,
        )
        self.job_duration = Histogram(
            "job_duration_seconds",
            "Scheduled job execution time",
            ["job"],
            registry=r,
        )
        self.component_health = Gauge(
            "component_healthy",
            "1 when the component passed its last health check",
            ["component"],
            registry=r,
        )
        self.operation_duration = Histogram(
            "operation_duration_seconds",
            "Duration of named operations",
            ["operation", "success"],
            registry=r,
        )
        self.errors_by_category = Counter(
            "errors_by_category_total",
            "Errors grouped by operation and exception type",
            ["operation", "error_type"],
            registry=r,
        )
        self.heartbeat = Counter(
            "app_heartbeat_total",
            "Liveness heartbeats",
            registry=r,
        )

    # -------------------------------------------------------------------------
    # Recording helpers
    # -------------------------------------------------------------------------

    def record_hospital_data(
        self,
        department: str,
        wait_time_minutes: int,
        total_patients: Optional[int] = None,
        ambulance_patients: Optional[int] = None,
        emergency_cases: Optional[int] = None,
        update_delay_minutes: Optional[int] = None,
        quality_score: Optional[float] = None,
    ) -> None:
        self.hospital_wait_time.labels(department=department).set(wait_time_minutes)
        for kind, value in (
            ("total", total_patients),
            ("ambulance", ambulance_patients),
            ("emergency", emergency_cases),
        ):
            if value is not None:
                self.hospital_patient_count.labels(department=department, kind=kind).set(value)
        if update_delay_minutes is not None:
            self.data_freshness.labels(department=department).set(update_delay_minutes)
        if quality_score is not None:
            self.data_quality_score.labels(department=department).set(quality_score)

    def record_scraping_attempt(self, scraper_id: str) -> None:
        self.scraping_attempts.labels(scraper_id=scraper_id).inc()

    def record_scraping_success(self, scraper_id: str, duration_s: float, retries: int) -> None:
        self.scraping_success.labels(scraper_id=scraper_id).inc()
        self.scraping_duration.labels(scraper_id=scraper_id).observe(duration_s)
        self.scraping_retries.labels(scraper_id=scraper_id).observe(retries)

    def record_scraping_failure(self, scraper_id: str, duration_s: float, reason: str) -> None:
        self.scraping_failures.labels(scraper_id=scraper_id, reason=reason).inc()
        self.scraping_duration.labels(scraper_id=scraper_id).observe(duration_s)

    def record_browser_launch(self, browser_type: str, duration_s: float) -> None:
        self.browser_launch_duration.labels(browser_type=browser_type).observe(duration_s)

    def record_browser_navigation(self, url: str, duration_s: float, success: bool) -> None:
        host = urlparse(url).hostname or "unknown"
        self.browser_navigation_duration.labels(
            target_host=host, success=str(success).lower()
        ).observe(duration_s)

    def record_database_operation(self, operation: str, duration_s: float, success: bool) -> None:
        self.db_operation_duration.labels(operation=operation).observe(duration_s)
        if not success:
            self.db_operation_errors.labels(operation=operation).inc()

    def record_database_health(self, healthy: bool) -> None:
        self.db_connection_health.set(1 if healthy else 0)

    def record_records_inserted(self, count: int = 1) -> None:
        self.records_inserted.inc(count)

    def record_job_execution(self, job: str, duration_s: float, success: bool) -> None:
        status = "success" if success else "failure"
        self.job_executions.labels(job=job, status=status).inc()
        self.job_duration.labels(job=job).observe(duration_s)

    def render(self) -> bytes:
        """Render all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)


__all__ = ["ScraperMetrics"]
