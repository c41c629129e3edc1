"""
Playwright browser lifecycle.

One Chromium instance and context per manager, launched lazily. Pages are
handed out by ``page()``, an async context manager that always closes the
page, including when the body raises or is cancelled.

Usage:
    manager = BrowserManager(cfg.browser)
    async with manager.page() as page:
        await page.goto("https://example.com")
    await manager.close()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from authpilot.config import BrowserConfig

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1280, "height": 720}
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
)
LAUNCH_ARGS = ["--no-sandbox", "--disable-dev-shm-usage", "--no-first-run"]


class BrowserManager:
    def __init__(self, config: BrowserConfig | None = None) -> None:
        self.config = config or BrowserConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._launch_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    async def launch(self) -> None:
        """Start Chromium and the shared context. No-op when already running."""
        async with self._launch_lock:
            if self._browser is not None:
                return
            self._playwright = await async_playwright().start()
            launch_kwargs: dict[str, Any] = {"headless": self.config.headless, "args": LAUNCH_ARGS}
            if self.config.proxy:
                launch_kwargs["proxy"] = {"server": self.config.proxy}
            self._browser = await self._playwright.chromium.launch(**launch_kwargs)
            self._context = await self._browser.new_context(
                viewport=DEFAULT_VIEWPORT,
                user_agent=DEFAULT_USER_AGENT,
            )
            logger.info(
                "Browser launched (headless=%s, proxy=%s)",
                self.config.headless,
                bool(self.config.proxy),
            )

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        await self.launch()
        if self._context is None:
            raise RuntimeError("Browser context is not available after launch")
        page = await self._context.new_page()
        page.set_default_timeout(self.config.interaction_timeout_ms)
        page.set_default_navigation_timeout(self.config.navigation_timeout_ms)
        try:
            yield page
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.debug("Page close failed: %s", e)

    async def close(self) -> None:
        """Release context, browser and driver. Safe to call repeatedly."""
        for name, closer in (
            ("context", self._context),
            ("browser", self._browser),
        ):
            if closer is None:
                continue
            try:
                await closer.close()
            except Exception as e:
                logger.warning("Error closing %s: %s", name, e)
        self._context = None
        self._browser = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning("Error stopping playwright: %s", e)
            self._playwright = None
