"""
CSP-safe browser session manager.
Owns one Chromium process and the per-viewport pages opened on it.
"""
import logging
import time
import uuid
from typing import Dict, List, Optional, Tuple, Any
from playwright.async_api import (
    async_playwright,
    Browser,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
)

from treemeta.utils.schema import PageInfo, ViewportConfig

logger = logging.getLogger(__name__)


DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-features=VizDisplayCompositor",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-blink-features=AutomationControlled",
    "--disable-extensions",
]

# Navigation ladder: (wait_until, timeout ms), tried in order on timeout
NAVIGATION_LADDER = [
    ("networkidle", 10000),
    ("domcontentloaded", 30000),
]

SETTLE_TIME_MS = 2000


class BrowserManager:
    """Manages the browser lifecycle and tracks every page for cleanup."""

    def __init__(self, headless: bool = True, timeout: int = 30000,
                 browser_args: Optional[List[str]] = None):
        self.headless = headless
        self.timeout = timeout
        self.browser_args = list(browser_args) if browser_args is not None else list(DEFAULT_BROWSER_ARGS)

        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.pages: Dict[str, Page] = {}

    async def __aenter__(self) -> "BrowserManager":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.cleanup()

    async def launch(self) -> Browser:
        """
        Start Chromium if it is not running yet.

        Launch failures propagate; they are not retried.
        """
        if self.browser is not None:
            logger.debug("Browser already launched, reusing existing instance")
            return self.browser

        logger.info("Launching Chromium with CSP-safe configuration...")
        start = time.time()

        self.playwright = await async_playwright().start()
        try:
            self.browser = await self.playwright.chromium.launch(
                headless=self.headless,
                args=self.browser_args,
            )
        except Exception as e:
            logger.error(f"Failed to launch browser: {e}")
            await self._stop_playwright()
            raise

        logger.info(f"Browser launched in {int((time.time() - start) * 1000)}ms")
        return self.browser

    async def create_page(self, viewport: ViewportConfig) -> Tuple[Page, str]:
        """
        Open a page emulating the given viewport.

        Args:
            viewport: Viewport dimensions and emulation flags

        Returns:
            (page, session_id) - the id is what close_page() expects
        """
        if self.browser is None:
            await self.launch()

        logger.info(f"Creating page for {viewport.name} viewport ({viewport.width}x{viewport.height})")

        page = await self.browser.new_page(
            viewport={"width": viewport.width, "height": viewport.height},
            device_scale_factor=viewport.device_scale_factor,
            is_mobile=viewport.is_mobile,
            has_touch=viewport.has_touch,
        )

        session_id = f"{viewport.name}-{uuid.uuid4().hex[:12]}"
        self.pages[session_id] = page

        page.set_default_timeout(self.timeout)
        page.set_default_navigation_timeout(self.timeout)

        return page, session_id

    async def navigate(self, page: Page, url: str, **options) -> PageInfo:
        """
        Navigate with a degrading wait strategy.

        Tries networkidle with a short timeout, then domcontentloaded with a
        longer one. A timeout on the last rung, or any non-timeout error,
        propagates to the caller.

        Args:
            page: Page returned by create_page()
            url: Target URL
            **options: Extra keyword arguments for page.goto()

        Returns:
            PageInfo with title and final URL (defaults if they can't be read)
        """
        logger.info(f"Navigating to: {url}")
        start = time.time()

        for rung, (wait_until, timeout) in enumerate(NAVIGATION_LADDER):
            goto_options = {"wait_until": wait_until, "timeout": timeout}
            goto_options.update(options)
            try:
                await page.goto(url, **goto_options)
            except PlaywrightTimeout:
                if rung == len(NAVIGATION_LADDER) - 1:
                    logger.error(f"Navigation to {url} failed even with {wait_until} fallback")
                    raise
                logger.warning(f"{wait_until} timeout after {timeout}ms, falling back...")
                continue

            logger.info(f"Navigation completed with {wait_until} in {int((time.time() - start) * 1000)}ms")
            break

        # Late-rendering content
        try:
            await page.wait_for_timeout(SETTLE_TIME_MS)
        except Exception as e:
            logger.warning(f"Settle wait failed (non-critical): {e}")

        try:
            page_title = await page.title()
            page_url = page.url
        except Exception as e:
            logger.warning(f"Could not get page info: {e}")
            return PageInfo(page_title="Unknown", page_url=url)

        logger.info(f"Page loaded: \"{page_title}\"")
        return PageInfo(page_title=page_title, page_url=page_url)

    async def close_page(self, session_id: str):
        """Close one tracked page. Errors are logged, never raised."""
        page = self.pages.pop(session_id, None)
        if page is None:
            return
        try:
            if not page.is_closed():
                await page.close()
            logger.debug(f"Page {session_id} closed")
        except Exception as e:
            logger.warning(f"Error closing page {session_id}: {e}")

    async def close_all_pages(self):
        """Close every tracked page, continuing past individual failures."""
        if self.pages:
            logger.info(f"Closing {len(self.pages)} open pages...")
        for session_id in list(self.pages):
            await self.close_page(session_id)
        self.pages.clear()

    async def close_browser(self):
        """Close all pages, then the browser and the Playwright driver."""
        await self.close_all_pages()

        if self.browser is not None:
            logger.info("Closing browser...")
            try:
                await self.browser.close()
            except Exception as e:
                logger.error(f"Error during browser cleanup: {e}")
            finally:
                self.browser = None

        await self._stop_playwright()

    async def cleanup(self):
        await self.close_browser()

    async def _stop_playwright(self):
        if self.playwright is None:
            return
        try:
            await self.playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping Playwright: {e}")
        finally:
            self.playwright = None

    # Health checks

    def is_browser_open(self) -> bool:
        return self.browser is not None and self.browser.is_connected()

    def get_open_pages_count(self) -> int:
        return len(self.pages)

    async def get_browser_info(self) -> Optional[Dict[str, Any]]:
        """Version and connection state, or None if not launched."""
        if self.browser is None:
            return None
        try:
            return {
                "version": self.browser.version,
                "is_connected": self.browser.is_connected(),
                "open_pages": len(self.pages),
            }
        except Exception as e:
            return {"error": str(e)}
