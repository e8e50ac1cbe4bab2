"""
Hospital Wait Monitor - Scrape Orchestrator

Runs one scrape of one target: open a page, navigate, wait for the content
to render, extract, and close the page again. The whole attempt is wrapped
by the retry engine, so a navigation timeout on attempt one is followed by
a fresh page on attempt two.

Always returns a ScrapingResult; failures are reported in the result rather
than raised.

Usage:
    from scrapers.orchestrator import ScrapeOrchestrator, ScrapingConfig

    orchestrator = ScrapeOrchestrator(browser, config=ScrapingConfig.from_settings(settings))
    await orchestrator.initialize()
    result = await orchestrator.scrape(ScrapeTarget(url, "Rettungsstelle"))
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Union

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError

from config.settings import Settings
from observability.metrics import ScraperMetrics
from observability.provider import Observability
from observability.tracing import TraceContext
from scrapers.base import (
    HospitalMetricRecord,
    RecordMetadata,
    ScrapeTarget,
    ScrapingMetrics,
    ScrapingResult,
)
from scrapers.browser import BrowserSessionManager
from scrapers.errors import ExtractionError
from scrapers.extractor import ExtractionResult, FieldExtractor, calculate_quality_score
from scrapers.retry import (
    BROWSER_NETWORK_ERRORS,
    DEFAULT_RETRYABLE_ERRORS,
    RetryConfig,
    RetryEngine,
)
from scrapers.selectors import CONTENT_READY_SELECTORS, DATA_READY_SELECTORS


logger = logging.getLogger(__name__)

HEALTH_CHECK_URL = "about:blank"


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class ScrapingConfig:
    """
    Scrape behaviour independent of the browser engine.

    Attributes:
        scraper_id: Stamped on records and metrics
        version: Service version stamped on records
        page_timeout_ms: Navigation timeout per attempt
        network_idle_timeout_ms: Upper bound for the network idle wait
        settle_delay_ms: Pause after readiness checks for late rendering
        ready_selectors: (selector, timeout_ms) pairs awaited in order
        retry: Policy for whole scrape attempts
        retry_extraction_failures: Treat "no wait time found" as retryable
    """

    scraper_id: str = "hospital-scraper-1"
    version: str = "1.0.0"
    page_timeout_ms: int = 30000
    network_idle_timeout_ms: int = 30000
    settle_delay_ms: int = 2000
    ready_selectors: tuple[tuple[str, int], ...] = (CONTENT_READY_SELECTORS, DATA_READY_SELECTORS)
    retry: RetryConfig = field(
        default_factory=lambda: RetryConfig(
            max_attempts=4,
            base_delay_ms=2000,
            retryable_errors=DEFAULT_RETRYABLE_ERRORS + BROWSER_NETWORK_ERRORS,
        )
    )
    retry_extraction_failures: bool = False

    def __post_init__(self) -> None:
        if self.retry_extraction_failures and "ExtractionError" not in self.retry.retryable_errors:
            object.__setattr__(self, "retry", self.retry.with_retryable("ExtractionError"))

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScrapingConfig":
        return cls(
            scraper_id=settings.scraper_id,
            version=settings.service_version,
            page_timeout_ms=settings.page_timeout_ms,
            settle_delay_ms=settings.settle_delay_ms,
            retry=RetryConfig(
                max_attempts=settings.max_retries + 1,
                base_delay_ms=settings.retry_base_delay_ms,
                max_delay_ms=settings.retry_max_delay_ms,
                retryable_errors=DEFAULT_RETRYABLE_ERRORS + BROWSER_NETWORK_ERRORS,
            ),
            retry_extraction_failures=settings.retry_extraction_failures,
        )


# =============================================================================
# Orchestrator
# =============================================================================

class ScrapeOrchestrator:
    """Coordinates browser, extractor and retry engine for single scrapes."""

    def __init__(
        self,
        browser: BrowserSessionManager,
        extractor: Optional[FieldExtractor] = None,
        retry_engine: Optional[RetryEngine] = None,
        observability: Optional[Observability] = None,
        config: Optional[ScrapingConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.browser = browser
        self.extractor = extractor or FieldExtractor()
        self.retry_engine = retry_engine or RetryEngine()
        self.observability = observability
        self.metrics: Optional[ScraperMetrics] = observability.metrics if observability else None
        self.config = config or ScrapingConfig()
        self._sleep = sleep

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        await self.browser.initialize()

    async def shutdown(self) -> None:
        await self.browser.shutdown()

    def get_config(self) -> ScrapingConfig:
        return self.config

    def update_config(self, **changes: Any) -> ScrapingConfig:
        """Replace selected config fields, e.g. ``update_config(settle_delay_ms=0)``."""
        self.config = replace(self.config, **changes)
        logger.info("Scraping config updated", extra={"fields": sorted(changes)})
        return self.config

    # -------------------------------------------------------------------------
    # Scraping
    # -------------------------------------------------------------------------

    def _new_context(self, parent: Optional[TraceContext], target: ScrapeTarget) -> TraceContext:
        if parent is not None:
            return parent.child(target=target.url)
        if self.observability is not None:
            return self.observability.new_context(target=target.url)
        return TraceContext.new(target=target.url)

    async def scrape(self, target: ScrapeTarget, context: Optional[TraceContext] = None) -> ScrapingResult:
        """
        Scrape one target with retries.

        Args:
            target: Page to scrape
            context: Parent trace context (a child scope is created)

        Returns:
            ScrapingResult with the record on success or the last error on failure
        """
        context = self._new_context(context, target)
        started = time.monotonic()
        timings: dict[str, float] = {"page_load_ms": 0.0, "extraction_ms": 0.0}

        if self.metrics is not None:
            self.metrics.record_scraping_attempt(self.config.scraper_id)
        logger.info(
            "Starting scrape",
            extra=context.log_extra(url=target.url, department=target.department),
        )

        async def attempt() -> ExtractionResult:
            return await self._perform_scrape(target, context, timings)

        with context.span("scrape", url=target.url, department=target.department) as span:
            outcome = await self.retry_engine.execute(
                attempt, "scrape_hospital_page", self.config.retry, context
            )
            span.set_attributes(attempts=outcome.attempts, success=outcome.success)
            if not outcome.success:
                span.set_status("error", outcome.error_message)

        total_ms = (time.monotonic() - started) * 1000
        metrics = ScrapingMetrics(
            total_time_ms=total_ms,
            page_load_time_ms=timings["page_load_ms"],
            extraction_time_ms=timings["extraction_ms"],
            retries=outcome.retries,
        )

        if not outcome.success:
            error = outcome.error_message or "Scrape failed"
            reason = type(outcome.error).__name__ if outcome.error else "unknown"
            if self.metrics is not None:
                self.metrics.record_scraping_failure(self.config.scraper_id, total_ms / 1000, reason)
            if self.observability is not None and outcome.error is not None:
                self.observability.record_error("scrape", outcome.error, context, url=target.url)
            logger.error(
                "Scrape failed",
                extra=context.log_extra(
                    url=target.url, error=error, attempts=outcome.attempts, total_time_ms=round(total_ms, 1)
                ),
            )
            return ScrapingResult(
                success=False,
                url=target.url,
                scraper_id=self.config.scraper_id,
                browser_type=self.browser.browser_type,
                error=error,
                metrics=metrics,
                user_agent=self.browser.user_agent,
                correlation_id=context.correlation_id,
            )

        extraction: ExtractionResult = outcome.data
        metric = extraction.metric
        record = HospitalMetricRecord.from_metric(
            metric,
            target,
            RecordMetadata(
                scraper_id=self.config.scraper_id,
                version=self.config.version,
                processing_time_ms=int(total_ms),
                browser_type=self.browser.browser_type,
                user_agent=self.browser.user_agent,
                screen_resolution=self.browser.screen_resolution,
            ),
        )
        quality = calculate_quality_score(metric)

        if self.metrics is not None:
            self.metrics.record_scraping_success(self.config.scraper_id, total_ms / 1000, outcome.retries)
            self.metrics.record_hospital_data(
                target.department,
                metric.wait_time_minutes,
                metric.total_patients,
                metric.ambulance_patients,
                metric.emergency_cases,
                metric.update_delay_minutes,
                quality,
            )
        logger.info(
            "Scrape completed",
            extra=context.log_extra(
                url=target.url,
                wait_time_minutes=metric.wait_time_minutes,
                quality_score=quality,
                retries=outcome.retries,
                total_time_ms=round(total_ms, 1),
            ),
        )
        return ScrapingResult(
            success=True,
            url=target.url,
            scraper_id=self.config.scraper_id,
            browser_type=self.browser.browser_type,
            data=record,
            metrics=metrics,
            quality_score=quality,
            user_agent=self.browser.user_agent,
            correlation_id=context.correlation_id,
        )

    async def _perform_scrape(
        self,
        target: ScrapeTarget,
        context: TraceContext,
        timings: dict[str, float],
    ) -> ExtractionResult:
        """One attempt: fresh page, navigate, wait, extract, close."""
        if not self.browser.is_initialized:
            await self.browser.initialize()

        page = await self.browser.create_page()
        try:
            load_started = time.monotonic()
            await self.browser.navigate(page, target.url, self.config.page_timeout_ms)
            await self._wait_until_ready(page, context)
            timings["page_load_ms"] = (time.monotonic() - load_started) * 1000

            extract_started = time.monotonic()
            extraction = await self.extractor.extract(page, context)
            timings["extraction_ms"] = (time.monotonic() - extract_started) * 1000

            if not extraction.success:
                raise ExtractionError(extraction.error or "Extraction failed")
            return extraction
        finally:
            await self.browser.close_page(page)

    async def _wait_until_ready(self, page: Page, context: TraceContext) -> None:
        """
        Give client-side rendering a chance to finish.

        None of these waits is fatal: a page that never goes idle or lacks the
        expected containers is still handed to the extractor.
        """
        await self.browser.wait_for_network_idle(page, self.config.network_idle_timeout_ms)

        for selector, timeout_ms in self.config.ready_selectors:
            try:
                await page.wait_for_selector(selector, timeout=timeout_ms)
            except PlaywrightTimeoutError:
                logger.debug(
                    "Readiness selector not found",
                    extra=context.log_extra(selector=selector, timeout_ms=timeout_ms),
                )

        if self.config.settle_delay_ms > 0:
            await self._sleep(self.config.settle_delay_ms / 1000)

    # -------------------------------------------------------------------------
    # Utilities
    # -------------------------------------------------------------------------

    async def health_check(self) -> bool:
        """Liveness probe: open a page and load about:blank."""
        page = None
        try:
            if not self.browser.is_initialized:
                await self.browser.initialize()
            page = await self.browser.create_page()
            await page.goto(HEALTH_CHECK_URL, timeout=10000)
            return True
        except Exception as e:
            logger.warning("Scraper health check failed", extra={"error": str(e)})
            return False
        finally:
            await self.browser.close_page(page)

    async def take_screenshot(self, target: ScrapeTarget, path: Union[str, Path]) -> bytes:
        """Load a target and save a full-page screenshot for selector debugging."""
        if not self.browser.is_initialized:
            await self.browser.initialize()
        page = await self.browser.create_page()
        try:
            await self.browser.navigate(page, target.url, self.config.page_timeout_ms)
            await self._wait_until_ready(page, TraceContext.new(target=target.url))
            image = await self.browser.take_screenshot(page, path)
            logger.info("Screenshot saved", extra={"url": target.url, "path": str(path)})
            return image
        finally:
            await self.browser.close_page(page)


__all__ = [
    "HEALTH_CHECK_URL",
    "ScrapingConfig",
    "ScrapeOrchestrator",
]
