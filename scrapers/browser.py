"""
Hospital Wait Monitor - Browser Session Manager

Owns the Playwright driver, one browser process and one browsing context.
Pages are short-lived: one per scrape attempt, always closed afterwards.

This layer never retries. Launch failures raise BrowserLaunchError and
navigation failures propagate to the caller, which decides on retries.

Usage:
    from scrapers.browser import BrowserConfig, BrowserSessionManager

    manager = BrowserSessionManager(BrowserConfig.from_settings(settings))
    await manager.initialize()
    page = await manager.create_page()
    try:
        await manager.navigate(page, url, timeout_ms=30000)
    finally:
        await manager.close_page(page)
    await manager.shutdown()
"""

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Optional, Union

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from config.settings import Settings
from observability.provider import Observability
from scrapers.base import BrowserType
from scrapers.errors import BrowserLaunchError, NotInitializedError


logger = logging.getLogger(__name__)


# Launch flags for chromium in containers without a sandbox or a GPU
CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

DEFAULT_USER_AGENTS = {
    BrowserType.CHROMIUM: (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    BrowserType.FIREFOX: (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) "
        "Gecko/20100101 Firefox/121.0"
    ),
    BrowserType.WEBKIT: (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.2 Safari/605.1.15"
    ),
}

# Fragments of Playwright error messages for targets that are already gone
_ALREADY_CLOSED_MARKERS = (
    "has been closed",
    "already closed",
    "Target closed",
    "Browser closed",
    "Connection closed",
)


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class Viewport:
    width: int = 1920
    height: int = 1080

    def as_dict(self) -> dict[str, int]:
        return {"width": self.width, "height": self.height}

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


@dataclass(frozen=True)
class ProxyConfig:
    server: str
    username: Optional[str] = None
    password: Optional[str] = None

    def as_dict(self) -> dict[str, str]:
        proxy = {"server": self.server}
        if self.username:
            proxy["username"] = self.username
        if self.password:
            proxy["password"] = self.password
        return proxy


@dataclass(frozen=True)
class BrowserConfig:
    """
    Browser launch and context options.

    Attributes:
        browser_type: Engine to launch
        headless: Run without a window
        timeout_ms: Default timeout for page actions
        navigation_timeout_ms: Default timeout for navigations
        user_agent: Override for the engine's default desktop UA
        viewport: Context viewport size
        proxy: Optional outbound proxy
        ignore_https_errors: Accept invalid certificates
        javascript_enabled: Run page scripts
    """

    browser_type: BrowserType = BrowserType.CHROMIUM
    headless: bool = True
    timeout_ms: int = 30000
    navigation_timeout_ms: int = 30000
    user_agent: Optional[str] = None
    viewport: Viewport = field(default_factory=Viewport)
    proxy: Optional[ProxyConfig] = None
    ignore_https_errors: bool = True
    javascript_enabled: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrowserConfig":
        proxy = None
        if settings.proxy_server:
            proxy = ProxyConfig(
                server=settings.proxy_server,
                username=settings.proxy_username,
                password=settings.proxy_password,
            )
        return cls(
            browser_type=BrowserType(settings.browser_type),
            headless=settings.headless,
            timeout_ms=settings.browser_timeout_ms,
            navigation_timeout_ms=settings.page_timeout_ms,
            user_agent=settings.user_agent,
            viewport=Viewport(settings.viewport_width, settings.viewport_height),
            proxy=proxy,
        )

    @property
    def effective_user_agent(self) -> str:
        return self.user_agent or default_user_agent(self.browser_type)


def default_user_agent(browser_type: BrowserType) -> str:
    """Desktop user agent matching the browser engine."""
    return DEFAULT_USER_AGENTS[BrowserType(browser_type)]


# =============================================================================
# Page Events
# =============================================================================

@dataclass(frozen=True)
class PageEvent:
    """
    Something a page reported while loading.

    Attributes:
        kind: ``console``, ``pageerror`` or ``response``
        message: Console text, error text or status line
        url: Response URL for ``response`` events
        status: HTTP status for ``response`` events
        level: Console message type for ``console`` events
    """

    kind: str
    message: str
    url: Optional[str] = None
    status: Optional[int] = None
    level: Optional[str] = None


PageObserver = Callable[[PageEvent], Any]


def log_page_event(event: PageEvent) -> None:
    """Default observer: log errors and failed responses."""
    if event.kind == "pageerror":
        logger.warning("Page error", extra={"page_error": event.message})
    elif event.kind == "response":
        logger.warning(
            "HTTP error response",
            extra={"url": event.url, "status": event.status},
        )
    elif event.level == "error":
        logger.debug("Browser console error", extra={"console": event.message})


def _is_already_closed(error: BaseException) -> bool:
    message = str(error)
    return any(marker in message for marker in _ALREADY_CLOSED_MARKERS)


# =============================================================================
# Session Manager
# =============================================================================

class BrowserSessionManager:
    """
    Lifecycle of one Playwright browser and context.

    ``initialize`` must succeed before ``create_page``. ``shutdown`` is
    idempotent and releases context, browser and driver in that order.
    """

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        observability: Optional[Observability] = None,
        playwright_factory: Optional[Callable[[], Any]] = None,
    ):
        """
        Args:
            config: Launch and context options
            observability: Receives launch and navigation metrics
            playwright_factory: Replacement for ``async_playwright``
        """
        self.config = config or BrowserConfig()
        self.observability = observability
        self._playwright_factory = playwright_factory
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    @property
    def is_initialized(self) -> bool:
        return self._context is not None

    @property
    def browser_type(self) -> BrowserType:
        return self.config.browser_type

    @property
    def user_agent(self) -> str:
        return self.config.effective_user_agent

    @property
    def screen_resolution(self) -> str:
        return str(self.config.viewport)

    async def initialize(self) -> None:
        """
        Launch the browser and open the shared context.

        Raises:
            BrowserLaunchError: If the driver, browser or context fails to start
        """
        if self.is_initialized:
            logger.debug("Browser already initialized")
            return

        started = time.monotonic()
        browser_type = self.config.browser_type
        logger.info(
            "Launching browser",
            extra={"browser_type": browser_type.value, "headless": self.config.headless},
        )

        try:
            factory = self._playwright_factory or async_playwright
            self._playwright = await factory().start()
            launcher = getattr(self._playwright, browser_type.value)

            launch_options: dict[str, Any] = {
                "headless": self.config.headless,
                "timeout": self.config.timeout_ms,
            }
            if browser_type == BrowserType.CHROMIUM:
                launch_options["args"] = list(CHROMIUM_ARGS)
            if self.config.proxy:
                launch_options["proxy"] = self.config.proxy.as_dict()

            self._browser = await launcher.launch(**launch_options)
            self._context = await self._browser.new_context(
                user_agent=self.config.effective_user_agent,
                viewport=self.config.viewport.as_dict(),
                ignore_https_errors=self.config.ignore_https_errors,
                java_script_enabled=self.config.javascript_enabled,
            )
            self._context.set_default_timeout(self.config.timeout_ms)
            self._context.set_default_navigation_timeout(self.config.navigation_timeout_ms)

        except Exception as e:
            logger.error(
                "Browser launch failed",
                extra={"browser_type": browser_type.value, "error": str(e)},
            )
            await self._release_partial()
            raise BrowserLaunchError(f"Failed to launch {browser_type.value}: {e}") from e

        duration = time.monotonic() - started
        if self.observability:
            self.observability.metrics.record_browser_launch(browser_type.value, duration)
        logger.info(
            "Browser initialized",
            extra={
                "browser_type": browser_type.value,
                "viewport": self.screen_resolution,
                "duration_ms": round(duration * 1000, 1),
            },
        )

    async def _release_partial(self) -> None:
        # Best effort after a failed launch; the launch error is what matters
        try:
            await self.shutdown()
        except Exception as e:
            logger.debug("Cleanup after failed launch raised", extra={"error": str(e)})

    async def create_page(self, observers: Optional[list[PageObserver]] = None) -> Page:
        """
        Open a new page in the shared context.

        Args:
            observers: Callables receiving PageEvent objects for console
                messages, uncaught page errors and HTTP responses >= 400.
                The logging observer is always registered first.

        Raises:
            NotInitializedError: If ``initialize`` has not completed
        """
        if self._context is None:
            raise NotInitializedError("Browser not initialized. Call initialize() first.")

        page = await self._context.new_page()
        registered = [log_page_event, *(observers or [])]

        def dispatch(event: PageEvent) -> None:
            for observer in registered:
                try:
                    observer(event)
                except Exception as e:
                    logger.debug(
                        "Page observer raised",
                        extra={"observer": getattr(observer, "__name__", repr(observer)), "error": str(e)},
                    )

        def on_console(message: Any) -> None:
            dispatch(PageEvent(kind="console", message=message.text, level=message.type))

        def on_page_error(error: Any) -> None:
            dispatch(PageEvent(kind="pageerror", message=str(error)))

        def on_response(response: Any) -> None:
            if response.status >= 400:
                dispatch(
                    PageEvent(
                        kind="response",
                        message=f"HTTP {response.status}",
                        url=response.url,
                        status=response.status,
                    )
                )

        page.on("console", on_console)
        page.on("pageerror", on_page_error)
        page.on("response", on_response)
        return page

    async def close_page(self, page: Optional[Page]) -> None:
        """Close a page, tolerating pages that are already closed."""
        if page is None:
            return
        try:
            if not page.is_closed():
                await page.close()
        except Exception as e:
            logger.debug("Error closing page", extra={"error": str(e)})

    async def navigate(self, page: Page, url: str, timeout_ms: Optional[int] = None) -> Any:
        """
        Navigate a page and record navigation timing.

        Errors propagate unchanged so the retry engine can classify them.
        """
        timeout = timeout_ms or self.config.navigation_timeout_ms
        started = time.monotonic()
        success = False
        try:
            response = await page.goto(url, wait_until="domcontentloaded", timeout=timeout)
            success = True
            return response
        finally:
            if self.observability:
                self.observability.metrics.record_browser_navigation(
                    url, time.monotonic() - started, success
                )

    async def wait_for_network_idle(self, page: Page, timeout_ms: int = 30000) -> bool:
        """
        Wait until the page has no network activity.

        Returns:
            False when the wait timed out (pages with polling scripts never idle)
        """
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout_ms)
            return True
        except PlaywrightTimeoutError:
            logger.debug("Network idle wait timed out", extra={"timeout_ms": timeout_ms})
            return False

    async def take_screenshot(
        self,
        page: Page,
        path: Optional[Union[str, Path]] = None,
        full_page: bool = True,
    ) -> bytes:
        """Capture a PNG screenshot, optionally writing it to ``path``."""
        options: dict[str, Any] = {"full_page": full_page}
        if path is not None:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            options["path"] = str(path)
        return await page.screenshot(**options)

    async def set_user_agent(self, user_agent: str) -> None:
        """Change the user agent sent by all pages of the context."""
        if self._context is None:
            raise NotInitializedError("Browser not initialized. Call initialize() first.")
        await self._context.set_extra_http_headers({"User-Agent": user_agent})
        self.config = replace(self.config, user_agent=user_agent)
        logger.info("User agent updated")

    async def shutdown(self) -> None:
        """
        Close context, browser and driver.

        Safe to call repeatedly. Errors saying the target is already closed
        are ignored. Other errors are raised after every resource has been
        released.
        """
        if self._context is None and self._browser is None and self._playwright is None:
            return

        unexpected: Optional[BaseException] = None
        steps = (
            ("context", self._context, "close"),
            ("browser", self._browser, "close"),
            ("playwright", self._playwright, "stop"),
        )
        self._context = None
        self._browser = None
        self._playwright = None

        for name, resource, method in steps:
            if resource is None:
                continue
            try:
                await getattr(resource, method)()
            except Exception as e:
                if _is_already_closed(e):
                    logger.debug(f"{name} already closed", extra={"error": str(e)})
                    continue
                logger.error(f"Error closing {name}", extra={"error": str(e)})
                if unexpected is None:
                    unexpected = e

        logger.info("Browser shut down")
        if unexpected is not None:
            raise unexpected


__all__ = [
    "CHROMIUM_ARGS",
    "DEFAULT_USER_AGENTS",
    "Viewport",
    "ProxyConfig",
    "BrowserConfig",
    "PageEvent",
    "PageObserver",
    "BrowserSessionManager",
    "default_user_agent",
    "log_page_event",
]
