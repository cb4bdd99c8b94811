"""
Page renderer using Playwright for JavaScript rendering.

Used when a clone request asks for rendered pages: captures the final DOM
and probes runtime globals that static markup cannot reveal.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

from playwright.async_api import async_playwright, Browser, Page, Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from .detector import BuildSignals
from .models import FetchError
from ..utils.log import get_logger
from ..utils.constants import DEFAULT_PAGE_TIMEOUT, DEFAULT_USER_AGENT


# Runs in the page; mirrors the flags of BuildSignals
SIGNAL_PROBE = """
() => ({
    hasVue: !!(window.Vue || window.__VUE__ || document.querySelector('[data-v-app], #app')),
    hasReact: !!(window.React || document.querySelector('[data-reactroot], #root')),
    hasAngular: !!(window.ng || document.querySelector('[ng-version], [ng-app], app-root')),
    hasNext: !!window.__NEXT_DATA__,
    hasNuxt: !!(window.__NUXT__ || window.$nuxt),
    hasWebpack: !!(window.webpackJsonp || Object.keys(window).some(k => k.startsWith('webpackChunk'))),
    scriptSources: Array.from(document.scripts).map(s => s.src).filter(Boolean),
})
"""


@dataclass
class RenderedPage:
    html: str
    final_url: str
    signals: BuildSignals


class PageRenderer:
    """
    Renders web pages using a Playwright headless browser.
    """

    def __init__(
        self,
        timeout: int = DEFAULT_PAGE_TIMEOUT,
        wait_until: str = "networkidle",
        headless: bool = True,
        user_agent: str = DEFAULT_USER_AGENT
    ):
        """
        Initialize the page renderer.

        Args:
            timeout: Page load timeout in milliseconds
            wait_until: Event to wait for ('load', 'domcontentloaded', 'networkidle')
            headless: Run browser in headless mode
            user_agent: User agent of the browser context
        """
        self.timeout = timeout
        self.wait_until = wait_until
        self.headless = headless
        self.user_agent = user_agent
        self.logger = get_logger("renderer")

        self._playwright = None
        self._browser: Optional[Browser] = None

    async def start(self) -> None:
        self.logger.info("Starting Playwright browser...")
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=[
                '--disable-blink-features=AutomationControlled',
                '--no-sandbox',
                '--disable-dev-shm-usage',
            ]
        )

    async def stop(self) -> None:
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self.logger.info("Browser stopped")

    async def render(self, url: str) -> RenderedPage:
        """
        Render a page and return its final HTML and runtime signals.

        Args:
            url: URL to render

        Returns:
            RenderedPage

        Raises:
            FetchError: On navigation failure, timeout or error status
        """
        if not self._browser:
            await self.start()

        context = await self._browser.new_context(
            user_agent=self.user_agent,
            viewport={"width": 1920, "height": 1080},
            ignore_https_errors=True,
        )
        page: Optional[Page] = None

        try:
            page = await context.new_page()
            self.logger.debug(f"Rendering: {url}")
            response = await page.goto(url, wait_until=self.wait_until, timeout=self.timeout)

            if not response:
                raise FetchError(url, "no response")
            if response.status >= 400:
                raise FetchError(url, f"HTTP {response.status}")

            # Let late client-side rendering settle
            await asyncio.sleep(1)

            probe = await page.evaluate(SIGNAL_PROBE)
            return RenderedPage(
                html=await page.content(),
                final_url=page.url,
                signals=BuildSignals.from_dict(probe),
            )

        except PlaywrightTimeout:
            raise FetchError(url, "timeout")
        except PlaywrightError as e:
            raise FetchError(url, f"browser error: {e.message}")
        finally:
            if page:
                await page.close()
            await context.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
