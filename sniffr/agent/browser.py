from __future__ import annotations

import logging

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from ..config import settings

logger = logging.getLogger(__name__)


class BrowserSession:
    def __init__(self, headless: bool | None = None) -> None:
        self.browser: Browser | None = None
        self.page: Page | None = None
        self._playwright: Playwright | None = None
        self.headless = settings.headless if headless is None else headless

    async def __aenter__(self) -> "BrowserSession":
        self._playwright = await async_playwright().start()
        self.browser = await self._playwright.chromium.launch(headless=self.headless)
        self.page = await self.browser.new_page()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.browser:
            await self.browser.close()
        if self._playwright:
            await self._playwright.stop()

    async def goto(self, url: str, wait_ms: int = 1000) -> None:
        """
        Navigate to a URL and give the page a moment to hydrate.
        """
        if not self.page:
            raise RuntimeError("Browser page is not initialized. Use within an async context manager.")

        await self.page.goto(url, wait_until="domcontentloaded", timeout=30000)
        try:
            await self.page.wait_for_load_state("networkidle", timeout=5000)
        except PlaywrightTimeoutError:
            logger.info("networkidle_wait_timed_out url=%s", url)

        if wait_ms > 0:
            await self.page.wait_for_timeout(wait_ms)

    def __repr__(self) -> str:
        return f"BrowserSession(headless={self.headless})"
