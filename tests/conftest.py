"""
Hospital Wait Monitor - Test Configuration

Pytest fixtures and configuration for the test suite.
Provides in-process Playwright doubles so no test launches a real browser
or touches the network.
"""

import os
from collections import defaultdict
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError


# =============================================================================
# Environment Configuration
# =============================================================================

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("LOG_FILE", "")


@pytest.fixture(autouse=True)
def fresh_settings():
    """Reload settings for every test so monkeypatched env vars apply."""
    from config.settings import clear_settings_cache

    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Playwright Doubles
# =============================================================================

class FakeElement:
    """Stands in for a Playwright Locator resolved to one element."""

    def __init__(
        self,
        text: Optional[str] = None,
        attributes: Optional[dict[str, str]] = None,
        error: Optional[Exception] = None,
    ):
        self.text = text
        self.attributes = attributes or {}
        self.error = error

    async def text_content(self, timeout: Optional[float] = None) -> Optional[str]:
        if self.error:
            raise self.error
        return self.text

    async def get_attribute(self, name: str, timeout: Optional[float] = None) -> Optional[str]:
        if self.error:
            raise self.error
        return self.attributes.get(name)


class FakeLocator:
    def __init__(
        self,
        elements: Optional[list[FakeElement]] = None,
        inner_text: Optional[str] = None,
        error: Optional[Exception] = None,
    ):
        self.elements = elements or []
        self._inner_text = inner_text
        self.error = error

    async def all(self) -> list[FakeElement]:
        if self.error:
            raise self.error
        return list(self.elements)

    async def inner_text(self, timeout: Optional[float] = None) -> str:
        if self._inner_text is None:
            raise PlaywrightTimeoutError("Timeout exceeded waiting for body")
        return self._inner_text


class FakePage:
    """
    Minimal async Page.

    Args:
        body_text: Returned by ``locator("body").inner_text()``
        title: Returned by ``title()``
        elements: Selector -> elements (or an Exception to raise from ``all()``)
        goto_errors: Raised by successive ``goto`` calls, then navigation succeeds
    """

    def __init__(
        self,
        body_text: Optional[str] = "",
        title: str = "",
        elements: Optional[dict[str, Any]] = None,
        goto_errors: Optional[list[Exception]] = None,
    ):
        self.body_text = body_text
        self._title = title
        self.elements = elements or {}
        self.goto_errors = list(goto_errors or [])
        self.visited: list[str] = []
        self.handlers: dict[str, list[Callable]] = defaultdict(list)
        self.closed = False
        self.waited_selectors: list[str] = []

    def locator(self, selector: str) -> FakeLocator:
        if selector == "body":
            return FakeLocator(inner_text=self.body_text)
        found = self.elements.get(selector, [])
        if isinstance(found, Exception):
            return FakeLocator(error=found)
        return FakeLocator(elements=found)

    async def title(self) -> str:
        return self._title

    async def goto(self, url: str, wait_until: Optional[str] = None, timeout: Optional[float] = None):
        self.visited.append(url)
        if self.goto_errors:
            raise self.goto_errors.pop(0)
        return None

    async def wait_for_load_state(self, state: str = "load", timeout: Optional[float] = None) -> None:
        return None

    async def wait_for_selector(self, selector: str, timeout: Optional[float] = None) -> None:
        self.waited_selectors.append(selector)
        raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded")

    async def screenshot(self, **options: Any) -> bytes:
        return b"\x89PNG fake"

    def on(self, event: str, handler: Callable) -> None:
        self.handlers[event].append(handler)

    def emit(self, event: str, payload: Any) -> None:
        for handler in self.handlers[event]:
            handler(payload)

    def is_closed(self) -> bool:
        return self.closed

    async def close(self) -> None:
        self.closed = True


class FakeContext:
    def __init__(self, page_factory: Callable[[], FakePage]):
        self.page_factory = page_factory
        self.pages: list[FakePage] = []
        self.default_timeout: Optional[float] = None
        self.default_navigation_timeout: Optional[float] = None
        self.extra_headers: dict[str, str] = {}
        self.close = AsyncMock()

    async def new_page(self) -> FakePage:
        page = self.page_factory()
        self.pages.append(page)
        return page

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.default_navigation_timeout = timeout

    async def set_extra_http_headers(self, headers: dict[str, str]) -> None:
        self.extra_headers.update(headers)


class FakeBrowser:
    def __init__(self, page_factory: Callable[[], FakePage]):
        self.page_factory = page_factory
        self.context_options: dict[str, Any] = {}
        self.context: Optional[FakeContext] = None
        self.close = AsyncMock()

    async def new_context(self, **options: Any) -> FakeContext:
        self.context_options = options
        self.context = FakeContext(self.page_factory)
        return self.context


class FakeBrowserType:
    def __init__(self, owner: "FakePlaywright"):
        self.owner = owner
        self.launch_options: Optional[dict[str, Any]] = None

    async def launch(self, **options: Any) -> FakeBrowser:
        self.launch_options = options
        if self.owner.launch_error is not None:
            raise self.owner.launch_error
        self.owner.browser = FakeBrowser(lambda: self.owner.page_factory())
        return self.owner.browser


class FakePlaywright:
    """
    Replacement for ``async_playwright()``.

    Pass ``fake.factory`` as ``playwright_factory``. Pages are built by
    ``page_factory``, which tests replace to control page content.
    """

    def __init__(self):
        self.page_factory: Callable[[], FakePage] = FakePage
        self.launch_error: Optional[Exception] = None
        self.browser: Optional[FakeBrowser] = None
        self.chromium = FakeBrowserType(self)
        self.firefox = FakeBrowserType(self)
        self.webkit = FakeBrowserType(self)
        self.stop = AsyncMock()
        self.start_count = 0

    def factory(self) -> "FakePlaywright":
        return self

    async def start(self) -> "FakePlaywright":
        self.start_count += 1
        return self

    @property
    def pages(self) -> list[FakePage]:
        if self.browser is None or self.browser.context is None:
            return []
        return self.browser.context.pages


@pytest.fixture
def fake_playwright():
    return FakePlaywright()


# =============================================================================
# Pipeline Fixtures
# =============================================================================

@pytest.fixture
def no_sleep():
    """Async sleep replacement that records requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def observability():
    """Observability with its own Prometheus registry."""
    from observability.metrics import ScraperMetrics
    from observability.provider import Observability

    return Observability(service_name="test-monitor", metrics=ScraperMetrics())


@pytest.fixture
def browser_manager(fake_playwright, observability):
    from scrapers.browser import BrowserConfig, BrowserSessionManager

    return BrowserSessionManager(
        BrowserConfig(),
        observability=observability,
        playwright_factory=fake_playwright.factory,
    )


@pytest.fixture
def orchestrator(browser_manager, observability, no_sleep):
    from scrapers.orchestrator import ScrapeOrchestrator, ScrapingConfig
    from scrapers.retry import RetryEngine

    return ScrapeOrchestrator(
        browser_manager,
        retry_engine=RetryEngine(sleep=no_sleep),
        observability=observability,
        config=ScrapingConfig(settle_delay_ms=0),
        sleep=no_sleep,
    )


# =============================================================================
# Sample Data Factories
# =============================================================================

SAMPLE_PAGE_TEXT = (
    "Notaufnahme Friedrichshain\n"
    "Aktuelle Wartezeit: 45 min\n"
    "Patienten in Behandlung: 12\n"
    "Stand: vor 3 min"
)


@pytest.fixture
def sample_page_text():
    return SAMPLE_PAGE_TEXT


@pytest.fixture
def sample_target():
    from scrapers.base import ScrapeTarget

    return ScrapeTarget(
        url="https://www.vivantes.de/klinikum-im-friedrichshain/rettungsstelle",
        department="Rettungsstelle",
    )


@pytest.fixture
def record_factory(sample_target):
    """Factory for HospitalMetricRecord test data."""
    from scrapers.base import (
        BrowserType,
        HospitalMetricRecord,
        ParsedMetric,
        RecordMetadata,
    )

    def _create_record(**kwargs):
        metric_fields = {
            "wait_time_minutes": kwargs.pop("wait_time_minutes", 45),
            "total_patients": kwargs.pop("total_patients", 12),
            "ambulance_patients": kwargs.pop("ambulance_patients", None),
            "emergency_cases": kwargs.pop("emergency_cases", None),
            "update_delay_minutes": kwargs.pop("update_delay_minutes", 3),
        }
        target = kwargs.pop("target", sample_target)
        metadata = RecordMetadata(
            scraper_id="test-scraper",
            version="1.0.0",
            processing_time_ms=1200,
            browser_type=BrowserType.CHROMIUM,
        )
        record = HospitalMetricRecord.from_metric(
            ParsedMetric(**metric_fields),
            target,
            metadata,
            timestamp=kwargs.pop("timestamp", None),
        )
        if kwargs:
            record = record.model_copy(update=kwargs)
        return record

    return _create_record
