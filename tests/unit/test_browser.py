"""
Hospital Wait Monitor - Browser Session Manager Unit Tests

Tests launch options, page creation and idempotent shutdown against the
Playwright doubles in conftest.
"""

import pytest
from unittest.mock import AsyncMock

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config.settings import Settings
from scrapers.base import BrowserType
from scrapers.browser import (
    CHROMIUM_ARGS,
    DEFAULT_USER_AGENTS,
    BrowserConfig,
    BrowserSessionManager,
    PageEvent,
    ProxyConfig,
    Viewport,
)
from scrapers.errors import BrowserLaunchError, NotInitializedError
from tests.conftest import FakePage


class FakeConsoleMessage:
    def __init__(self, text, type="log"):
        self.text = text
        self.type = type


class FakeResponse:
    def __init__(self, status, url="https://example.com/data.json"):
        self.status = status
        self.url = url


# =============================================================================
# Configuration
# =============================================================================

class TestBrowserConfig:
    """Tests for BrowserConfig."""

    def test_defaults(self):
        config = BrowserConfig()
        assert config.browser_type == BrowserType.CHROMIUM
        assert config.headless
        assert str(config.viewport) == "1920x1080"
        assert config.effective_user_agent == DEFAULT_USER_AGENTS[BrowserType.CHROMIUM]

    def test_custom_user_agent_wins(self):
        config = BrowserConfig(browser_type=BrowserType.FIREFOX, user_agent="TestAgent/1.0")
        assert config.effective_user_agent == "TestAgent/1.0"

    def test_from_settings(self):
        settings = Settings(
            browser_type="firefox",
            headless=False,
            viewport_width=1280,
            viewport_height=720,
            proxy_server="http://proxy:3128",
            proxy_username="user",
        )

        config = BrowserConfig.from_settings(settings)

        assert config.browser_type == BrowserType.FIREFOX
        assert not config.headless
        assert config.viewport == Viewport(1280, 720)
        assert config.proxy.as_dict() == {"server": "http://proxy:3128", "username": "user"}

    def test_proxy_omits_missing_credentials(self):
        assert ProxyConfig("http://proxy:3128").as_dict() == {"server": "http://proxy:3128"}


# =============================================================================
# Initialization
# =============================================================================

class TestInitialize:
    """Tests for BrowserSessionManager.initialize."""

    @pytest.mark.asyncio
    async def test_launches_chromium_with_hardening_args(self, browser_manager, fake_playwright):
        await browser_manager.initialize()

        assert browser_manager.is_initialized
        options = fake_playwright.chromium.launch_options
        assert options["headless"] is True
        assert options["args"] == list(CHROMIUM_ARGS)
        assert "proxy" not in options

    @pytest.mark.asyncio
    async def test_context_options(self, browser_manager, fake_playwright):
        await browser_manager.initialize()

        context_options = fake_playwright.browser.context_options
        assert context_options["viewport"] == {"width": 1920, "height": 1080}
        assert context_options["user_agent"] == browser_manager.user_agent
        assert context_options["ignore_https_errors"] is True
        assert context_options["java_script_enabled"] is True
        context = fake_playwright.browser.context
        assert context.default_timeout == 30000
        assert context.default_navigation_timeout == 30000

    @pytest.mark.asyncio
    async def test_firefox_gets_no_chromium_args(self, fake_playwright):
        manager = BrowserSessionManager(
            BrowserConfig(browser_type=BrowserType.FIREFOX, proxy=ProxyConfig("http://proxy:3128")),
            playwright_factory=fake_playwright.factory,
        )

        await manager.initialize()

        options = fake_playwright.firefox.launch_options
        assert "args" not in options
        assert options["proxy"] == {"server": "http://proxy:3128"}
        assert fake_playwright.chromium.launch_options is None

    @pytest.mark.asyncio
    async def test_initialize_twice_launches_once(self, browser_manager, fake_playwright):
        await browser_manager.initialize()
        await browser_manager.initialize()

        assert fake_playwright.start_count == 1

    @pytest.mark.asyncio
    async def test_launch_failure_raises_and_cleans_up(self, browser_manager, fake_playwright):
        fake_playwright.launch_error = RuntimeError("Executable doesn't exist")

        with pytest.raises(BrowserLaunchError, match="Executable doesn't exist"):
            await browser_manager.initialize()

        assert not browser_manager.is_initialized
        fake_playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_records_launch_metric(self, browser_manager, observability):
        await browser_manager.initialize()

        count = observability.metrics.registry.get_sample_value(
            "browser_launch_duration_seconds_count", {"browser_type": "chromium"}
        )
        assert count == 1


# =============================================================================
# Pages
# =============================================================================

class TestPages:
    """Tests for page creation, navigation and closing."""

    @pytest.mark.asyncio
    async def test_create_page_requires_initialize(self, browser_manager):
        with pytest.raises(NotInitializedError):
            await browser_manager.create_page()

    @pytest.mark.asyncio
    async def test_create_page_registers_listeners(self, browser_manager):
        await browser_manager.initialize()

        page = await browser_manager.create_page()

        assert set(page.handlers) == {"console", "pageerror", "response"}

    @pytest.mark.asyncio
    async def test_observers_receive_events(self, browser_manager):
        await browser_manager.initialize()
        events: list[PageEvent] = []

        page = await browser_manager.create_page(observers=[events.append])
        page.emit("console", FakeConsoleMessage("script failed", "error"))
        page.emit("pageerror", RuntimeError("undefined is not a function"))
        page.emit("response", FakeResponse(200))
        page.emit("response", FakeResponse(503))

        assert [event.kind for event in events] == ["console", "pageerror", "response"]
        assert events[0].level == "error"
        assert events[2].status == 503

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_others(self, browser_manager):
        await browser_manager.initialize()
        events = []

        def broken(event):
            raise RuntimeError("observer bug")

        page = await browser_manager.create_page(observers=[broken, events.append])
        page.emit("pageerror", RuntimeError("boom"))

        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_navigate_uses_domcontentloaded(self, browser_manager):
        await browser_manager.initialize()
        page = await browser_manager.create_page()
        page.goto = AsyncMock()

        await browser_manager.navigate(page, "https://example.com", timeout_ms=5000)

        page.goto.assert_awaited_once_with(
            "https://example.com", wait_until="domcontentloaded", timeout=5000
        )

    @pytest.mark.asyncio
    async def test_navigate_propagates_errors(self, browser_manager, fake_playwright, observability):
        fake_playwright.page_factory = lambda: FakePage(goto_errors=[PlaywrightTimeoutError("Timeout")])
        await browser_manager.initialize()
        page = await browser_manager.create_page()

        with pytest.raises(PlaywrightTimeoutError):
            await browser_manager.navigate(page, "https://example.com/er")

        failed = observability.metrics.registry.get_sample_value(
            "browser_navigation_duration_seconds_count",
            {"target_host": "example.com", "success": "false"},
        )
        assert failed == 1

    @pytest.mark.asyncio
    async def test_wait_for_network_idle_timeout_returns_false(self, browser_manager):
        await browser_manager.initialize()
        page = await browser_manager.create_page()
        page.wait_for_load_state = AsyncMock(side_effect=PlaywrightTimeoutError("Timeout"))

        assert await browser_manager.wait_for_network_idle(page, 100) is False

    @pytest.mark.asyncio
    async def test_close_page_tolerates_closed_and_none(self, browser_manager):
        await browser_manager.initialize()
        page = await browser_manager.create_page()

        await browser_manager.close_page(page)
        await browser_manager.close_page(page)
        await browser_manager.close_page(None)

        assert page.closed

    @pytest.mark.asyncio
    async def test_take_screenshot_writes_path(self, browser_manager, tmp_path):
        await browser_manager.initialize()
        page = await browser_manager.create_page()
        page.screenshot = AsyncMock(return_value=b"png")
        target = tmp_path / "shots" / "er.png"

        image = await browser_manager.take_screenshot(page, target)

        assert image == b"png"
        assert target.parent.is_dir()
        page.screenshot.assert_awaited_once_with(full_page=True, path=str(target))

    @pytest.mark.asyncio
    async def test_set_user_agent(self, browser_manager, fake_playwright):
        await browser_manager.initialize()

        await browser_manager.set_user_agent("Monitor/2.0")

        assert fake_playwright.browser.context.extra_headers == {"User-Agent": "Monitor/2.0"}
        assert browser_manager.user_agent == "Monitor/2.0"


# =============================================================================
# Shutdown
# =============================================================================

class TestShutdown:
    """Tests for BrowserSessionManager.shutdown."""

    @pytest.mark.asyncio
    async def test_closes_in_order(self, browser_manager, fake_playwright):
        await browser_manager.initialize()
        context = fake_playwright.browser.context
        calls = []
        context.close.side_effect = lambda: calls.append("context")
        fake_playwright.browser.close.side_effect = lambda: calls.append("browser")
        fake_playwright.stop.side_effect = lambda: calls.append("playwright")

        await browser_manager.shutdown()

        assert calls == ["context", "browser", "playwright"]
        assert not browser_manager.is_initialized

    @pytest.mark.asyncio
    async def test_shutdown_twice_is_noop(self, browser_manager, fake_playwright):
        await browser_manager.initialize()

        await browser_manager.shutdown()
        await browser_manager.shutdown()

        fake_playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_before_initialize(self, browser_manager):
        await browser_manager.shutdown()

    @pytest.mark.asyncio
    async def test_already_closed_errors_ignored(self, browser_manager, fake_playwright):
        await browser_manager.initialize()
        fake_playwright.browser.context.close.side_effect = RuntimeError("Target page, context or browser has been closed")
        fake_playwright.browser.close.side_effect = RuntimeError("Browser closed")

        await browser_manager.shutdown()

        fake_playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unexpected_error_raised_after_release(self, browser_manager, fake_playwright):
        await browser_manager.initialize()
        fake_playwright.browser.close.side_effect = RuntimeError("disk full")

        with pytest.raises(RuntimeError, match="disk full"):
            await browser_manager.shutdown()

        fake_playwright.stop.assert_awaited_once()
        assert not browser_manager.is_initialized
