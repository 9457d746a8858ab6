"""Headless Chromium renderer backed by Playwright.

One browser is launched at startup and shared; each render gets its own
browser context (cookies, storage, cache isolated) that is closed on every
exit path. A semaphore bounds how many contexts exist at once.
"""

import asyncio
import time
from typing import Optional, Protocol

from playwright.async_api import (
    Browser,
    Error as PlaywrightError,
    Playwright,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from constants import BROWSER_LAUNCH_ARGS
from core.config import Settings
from core.exceptions import RenderError
from core.logging import get_logger, log_execution_time
from models.render import RenderedPage

logger = get_logger(__name__)

_BODY_TEXT_JS = "() => document.body ? document.body.innerText : ''"


class Renderer(Protocol):
    """Navigates to a URL and returns markup, title, visible text and a screenshot."""

    async def startup(self) -> None: ...

    async def shutdown(self) -> None: ...

    async def render(self, url: str, timeout: float) -> RenderedPage: ...


class PlaywrightRenderer:
    """Bounded pool of Chromium contexts."""

    # Extra seconds past the navigation timeout for queueing, content and screenshot
    deadline_slack = 5.0

    def __init__(self, settings: Settings):
        self.settings = settings
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launch_lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(settings.render_concurrency)

    async def startup(self) -> None:
        await self._ensure_browser()
        logger.info("Renderer started", concurrency=self.settings.render_concurrency)

    async def shutdown(self) -> None:
        if self._browser:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning("Browser close failed", error=str(e))
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Renderer stopped")

    async def _ensure_browser(self) -> Browser:
        async with self._launch_lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser
            if self._browser is not None:
                logger.warning("Browser disconnected, relaunching")
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=True,
                args=BROWSER_LAUNCH_ARGS,
            )
            return self._browser

    async def render(self, url: str, timeout: float) -> RenderedPage:
        """Render ``url`` or raise RenderError.

        The deadline of ``timeout`` plus ``deadline_slack`` seconds covers the
        wait for a free slot as well as the navigation itself.
        """
        start_time = time.time()
        try:
            page = await asyncio.wait_for(self._render_in_slot(url, timeout),
                                          timeout=timeout + self.deadline_slack)
        except asyncio.TimeoutError:
            raise RenderError("render failed", detail=f"render exceeded {timeout}s deadline")
        except PlaywrightTimeoutError as e:
            raise RenderError("render failed", detail=f"navigation timeout: {e}")
        except PlaywrightError as e:
            raise RenderError("render failed", detail=str(e))

        log_execution_time(logger, "render", start_time, time.time(), url=url,
                           screenshot_bytes=len(page.screenshot))
        return page

    async def _render_in_slot(self, url: str, timeout: float) -> RenderedPage:
        async with self._slots:
            return await self._render_in_context(url, timeout)

    async def _render_in_context(self, url: str, timeout: float) -> RenderedPage:
        browser = await self._ensure_browser()
        timeout_ms = timeout * 1000
        context = await browser.new_context(
            user_agent=self.settings.render_user_agent,
            viewport={
                "width": self.settings.render_viewport_width,
                "height": self.settings.render_viewport_height,
            },
        )
        try:
            page = await context.new_page()
            page.set_default_navigation_timeout(timeout_ms)
            page.set_default_timeout(timeout_ms)
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)

            html = await page.content()
            try:
                title = await page.title()
            except PlaywrightError:
                title = ""
            text = await page.evaluate(_BODY_TEXT_JS) or ""
            screenshot = await page.screenshot(type="png", full_page=False)
            return RenderedPage(html=html, title=title, text=text, screenshot=screenshot)
        finally:
            # Shielded so a cancelled request still releases the context
            await asyncio.shield(self._close_context(context))

    @staticmethod
    async def _close_context(context) -> None:
        try:
            await context.close()
        except PlaywrightError as e:
            logger.debug("Context close failed", error=str(e))
