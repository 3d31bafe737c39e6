"""Headless browser engine.

Wraps a Playwright Chromium browser behind an explicitly owned handle.
Callers open() and close() the handle; the browser is launched on the
first open and shut down when the last holder closes it, so one browser
can be shared by the diagram pipeline, output generation and a whole batch
of conversions.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

from playwright.async_api import Browser, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)


class BrowserEngine:
    """Reference-counted Playwright browser handle."""

    def __init__(
        self,
        launch_options: Mapping[str, Any] | None = None,
        *,
        devtools: bool = False,
    ) -> None:
        """Initialize engine.

        Args:
            launch_options: Keyword arguments for chromium.launch()
            devtools: Launch a headed browser with devtools open
        """
        self._launch_options = dict(launch_options or {})
        self._devtools = devtools
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._refs = 0
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        """Whether a browser is currently running."""
        return self._browser is not None

    @property
    def devtools(self) -> bool:
        """Whether the browser runs headed with devtools."""
        return self._devtools

    async def open(self) -> "BrowserEngine":
        """Acquire the browser, launching it if this is the first holder."""
        async with self._lock:
            if self._browser is None:
                await self._launch()
            self._refs += 1
        return self

    async def close(self) -> None:
        """Release the browser, shutting it down after the last holder."""
        async with self._lock:
            if self._refs == 0:
                return
            self._refs -= 1
            if self._refs == 0:
                await self._shutdown()

    async def __aenter__(self) -> "BrowserEngine":
        return await self.open()

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Open an isolated page, closing it on every exit path."""
        if self._browser is None:
            raise RuntimeError("BrowserEngine.page() called before open()")

        page = await self._browser.new_page()
        try:
            yield page
        finally:
            if not page.is_closed():
                await page.close()

    async def _launch(self) -> None:
        options = dict(self._launch_options)
        if self._devtools:
            options["headless"] = False
            args = list(options.get("args", []))
            args.append("--auto-open-devtools-for-tabs")
            options["args"] = args
        else:
            options.setdefault("headless", True)

        logger.debug(f"Launching Chromium with options: {options}")
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(**options)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise

    async def _shutdown(self) -> None:
        logger.debug("Shutting down Chromium")
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        try:
            if browser is not None:
                await browser.close()
        finally:
            if playwright is not None:
                await playwright.stop()
