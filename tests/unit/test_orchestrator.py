"""
Hospital Wait Monitor - Scrape Orchestrator Unit Tests

Tests the retry-wrapped scrape workflow against fake pages.
"""

import pytest

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config.settings import Settings
from scrapers.base import BrowserType
from scrapers.orchestrator import HEALTH_CHECK_URL, ScrapeOrchestrator, ScrapingConfig
from scrapers.retry import RetryConfig, RetryEngine
from tests.conftest import SAMPLE_PAGE_TEXT, FakePage


def timeout_pages(failures: int, body_text: str = SAMPLE_PAGE_TEXT):
    """Page factory whose first ``failures`` pages time out on navigation."""
    created = []

    def factory():
        errors = [PlaywrightTimeoutError("Timeout 30000ms exceeded")] if len(created) < failures else []
        page = FakePage(body_text=body_text, goto_errors=errors)
        created.append(page)
        return page

    factory.created = created
    return factory


# =============================================================================
# Configuration
# =============================================================================

class TestScrapingConfig:
    """Tests for ScrapingConfig."""

    def test_extraction_failures_not_retryable_by_default(self):
        assert "ExtractionError" not in ScrapingConfig().retry.retryable_errors

    def test_retry_extraction_failures_adds_signature(self):
        config = ScrapingConfig(retry_extraction_failures=True)
        assert "ExtractionError" in config.retry.retryable_errors

    def test_from_settings(self):
        settings = Settings(max_retries=2, retry_base_delay_ms=500, scraper_id="er-1", settle_delay_ms=0)

        config = ScrapingConfig.from_settings(settings)

        assert config.retry.max_attempts == 3
        assert config.retry.base_delay_ms == 500
        assert config.scraper_id == "er-1"
        assert config.settle_delay_ms == 0

    def test_update_config(self, orchestrator):
        updated = orchestrator.update_config(page_timeout_ms=5000)

        assert updated.page_timeout_ms == 5000
        assert orchestrator.get_config() is updated


# =============================================================================
# Scrape
# =============================================================================

class TestScrape:
    """Tests for ScrapeOrchestrator.scrape."""

    @pytest.mark.asyncio
    async def test_successful_scrape(self, orchestrator, fake_playwright, sample_target):
        fake_playwright.page_factory = lambda: FakePage(body_text=SAMPLE_PAGE_TEXT)

        result = await orchestrator.scrape(sample_target)

        assert result.success
        assert result.error is None
        assert result.url == sample_target.url
        assert result.browser_type == BrowserType.CHROMIUM
        assert result.metrics.retries == 0
        assert result.quality_score == 1.0
        assert result.correlation_id

        record = result.data
        assert record.wait_time_minutes == 45
        assert record.total_patients == 12
        assert record.update_delay_minutes == 3
        assert record.department == "Rettungsstelle"
        assert record.source_url == sample_target.url
        assert record.scraping_success
        assert record.metadata.scraper_id == orchestrator.config.scraper_id
        assert record.metadata.screen_resolution == "1920x1080"

    @pytest.mark.asyncio
    async def test_three_timeouts_then_success(self, browser_manager, fake_playwright, no_sleep, sample_target):
        factory = timeout_pages(3)
        fake_playwright.page_factory = factory
        orchestrator = ScrapeOrchestrator(
            browser_manager,
            retry_engine=RetryEngine(sleep=no_sleep),
            config=ScrapingConfig(settle_delay_ms=0, retry=RetryConfig(max_attempts=5)),
            sleep=no_sleep,
        )

        result = await orchestrator.scrape(sample_target)

        assert result.success
        assert result.metrics.retries == 3
        assert len(factory.created) == 4
        assert all(page.closed for page in factory.created)

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, browser_manager, fake_playwright, no_sleep, sample_target, observability):
        fake_playwright.page_factory = timeout_pages(10)
        orchestrator = ScrapeOrchestrator(
            browser_manager,
            retry_engine=RetryEngine(sleep=no_sleep),
            observability=observability,
            config=ScrapingConfig(settle_delay_ms=0, retry=RetryConfig(max_attempts=3)),
            sleep=no_sleep,
        )

        result = await orchestrator.scrape(sample_target)

        assert not result.success
        assert result.data is None
        assert "Timeout 30000ms exceeded" in result.error
        assert result.metrics.retries == 2
        failures = observability.metrics.registry.get_sample_value(
            "scraping_failures_total",
            {"scraper_id": orchestrator.config.scraper_id, "reason": "TimeoutError"},
        )
        assert failures == 1

    @pytest.mark.asyncio
    async def test_extraction_failure_fails_fast(self, orchestrator, fake_playwright, sample_target):
        pages = []

        def factory():
            pages.append(FakePage(body_text="Wartezeit: 9999 min"))
            return pages[-1]

        fake_playwright.page_factory = factory

        result = await orchestrator.scrape(sample_target)

        assert not result.success
        assert result.error == "Could not extract wait time from page"
        assert len(pages) == 1
        assert pages[0].closed

    @pytest.mark.asyncio
    async def test_extraction_failure_retried_when_enabled(
        self, browser_manager, fake_playwright, no_sleep, sample_target
    ):
        pages = []

        def factory():
            pages.append(FakePage(body_text="Wartezeit: 9999 min"))
            return pages[-1]

        fake_playwright.page_factory = factory
        orchestrator = ScrapeOrchestrator(
            browser_manager,
            retry_engine=RetryEngine(sleep=no_sleep),
            config=ScrapingConfig(
                settle_delay_ms=0,
                retry=RetryConfig(max_attempts=3),
                retry_extraction_failures=True,
            ),
            sleep=no_sleep,
        )

        result = await orchestrator.scrape(sample_target)

        assert not result.success
        assert len(pages) == 3

    @pytest.mark.asyncio
    async def test_initializes_browser_lazily(self, orchestrator, fake_playwright, sample_target):
        assert not orchestrator.browser.is_initialized

        await orchestrator.scrape(sample_target)

        assert fake_playwright.start_count == 1

    @pytest.mark.asyncio
    async def test_waits_for_ready_selectors_and_settles(self, browser_manager, fake_playwright, no_sleep, sample_target):
        pages = []

        def factory():
            pages.append(FakePage(body_text=SAMPLE_PAGE_TEXT))
            return pages[-1]

        fake_playwright.page_factory = factory
        config = ScrapingConfig(settle_delay_ms=1500)
        orchestrator = ScrapeOrchestrator(
            browser_manager,
            retry_engine=RetryEngine(sleep=no_sleep),
            config=config,
            sleep=no_sleep,
        )

        result = await orchestrator.scrape(sample_target)

        assert result.success
        assert pages[0].waited_selectors == [selector for selector, _ in config.ready_selectors]
        no_sleep.assert_awaited_once_with(1.5)

    @pytest.mark.asyncio
    async def test_records_hospital_gauges(self, orchestrator, fake_playwright, observability, sample_target):
        fake_playwright.page_factory = lambda: FakePage(body_text=SAMPLE_PAGE_TEXT)

        await orchestrator.scrape(sample_target)

        registry = observability.metrics.registry
        assert registry.get_sample_value("hospital_wait_time_minutes", {"department": "Rettungsstelle"}) == 45
        assert registry.get_sample_value(
            "hospital_patient_count", {"department": "Rettungsstelle", "kind": "total"}
        ) == 12
        assert registry.get_sample_value(
            "scraping_attempts_total", {"scraper_id": orchestrator.config.scraper_id}
        ) == 1


# =============================================================================
# Utilities
# =============================================================================

class TestUtilities:
    """Tests for health check, screenshot and lifecycle."""

    @pytest.mark.asyncio
    async def test_health_check_loads_blank_page(self, orchestrator, fake_playwright):
        assert await orchestrator.health_check() is True

        page = fake_playwright.pages[0]
        assert page.visited == [HEALTH_CHECK_URL]
        assert page.closed

    @pytest.mark.asyncio
    async def test_health_check_failure_returns_false(self, orchestrator, fake_playwright):
        fake_playwright.launch_error = RuntimeError("no browser")

        assert await orchestrator.health_check() is False

    @pytest.mark.asyncio
    async def test_take_screenshot(self, orchestrator, fake_playwright, sample_target, tmp_path):
        image = await orchestrator.take_screenshot(sample_target, tmp_path / "er.png")

        assert image.startswith(b"\x89PNG")
        page = fake_playwright.pages[0]
        assert page.visited == [sample_target.url]
        assert page.closed

    @pytest.mark.asyncio
    async def test_shutdown_closes_browser(self, orchestrator, fake_playwright):
        await orchestrator.initialize()

        await orchestrator.shutdown()

        assert not orchestrator.browser.is_initialized
        fake_playwright.stop.assert_awaited_once()
