"""
Browser lifecycle shared by every CouponFollow scraper.

``BrowserPool`` owns the one long-lived resource in the pipeline: a
headless Chromium process.  It hands the process out through
``acquire()`` / ``release()`` and relaunches it once it has sat idle
past the reuse window, so a slow bulk run never drives a browser that
has been running for hours.  Pages are short-lived: each one gets its
own context (randomized viewport, rotated User-Agent, stealth patches,
resource policy) and is closed as soon as the caller is done with it.

Stealth stack (applied to every page context, before any navigation):
  1. Real Chrome binary via ``channel="chrome"`` when installed, bundled
     Chromium otherwise.
  2. playwright-stealth — patches webdriver, plugins, chrome.runtime,
     permissions, WebGL and friends through context init scripts.
  3. ``STEALTH_INIT_SCRIPT`` — pins ``navigator.webdriver`` to false and
     presents Chrome's vendor fields.
  4. ``ResourcePolicy`` — aborts images/fonts/stylesheets and analytics.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

from playwright.async_api import (
    async_playwright,
    Browser,
    Error as PlaywrightError,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
)
from playwright_stealth import Stealth

from config.couponfollow import (
    BROWSER_ARGS, BROWSER_CHANNEL, EXTRA_HTTP_HEADERS, NAVIGATION_TIMEOUT_MS,
    SAVE_DEBUG_ARTIFACTS, SESSION_REUSE_SEC, STEALTH_INIT_SCRIPT, WAIT_UNTIL,
    get_user_agent, get_viewport,
)
from errors import LaunchFailure, NavigationTimeout
from handlers.resource_policy import DEFAULT_POLICY, ResourcePolicy

DEBUG_DIR = Path(os.getenv("DEBUG_DIR", "debug_screenshots"))

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Browser launch helper
# ---------------------------------------------------------------------------

async def launch_stealth_browser(
    pw: Playwright,
    *,
    extra_args: list[str] | None = None,
) -> Browser:
    """Launch a headless browser with the server-safe flag set.

    Tries real Chrome first for a legitimate TLS fingerprint and falls
    back to bundled Chromium.  Raises ``LaunchFailure`` if neither starts.
    """
    args = BROWSER_ARGS + (extra_args or [])

    try:
        browser = await pw.chromium.launch(
            headless=True,
            channel=BROWSER_CHANNEL,
            args=args,
        )
        logger.info("Browser launched: channel=%s", BROWSER_CHANNEL)
        return browser
    except Exception as exc:
        logger.warning(
            "Chrome channel %r unavailable (%s) — falling back to bundled Chromium",
            BROWSER_CHANNEL, exc,
        )

    try:
        browser = await pw.chromium.launch(headless=True, args=args)
    except Exception as exc:
        raise LaunchFailure(f"Chromium failed to launch: {exc}") from exc
    logger.info("Browser launched: bundled Chromium (fallback)")
    return browser


class BrowserPool:
    """Reusable browser process plus a factory for hardened pages.

    Usage::

        async with BrowserPool() as pool:
            async with pool.session() as browser:
                page = await pool.new_page(browser)
                ...
                await pool.close_page(page)

    The process is reused while someone holds it or it was released less
    than ``reuse_window_sec`` ago; otherwise the next ``acquire()`` closes
    it and launches a fresh one.
    """

    def __init__(
        self,
        *,
        reuse_window_sec: float = SESSION_REUSE_SEC,
        policy: ResourcePolicy = DEFAULT_POLICY,
        launcher: Callable[[], Awaitable[Browser]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.reuse_window_sec = reuse_window_sec
        self.policy = policy
        self._launcher = launcher
        self._clock = clock
        self._stealth = Stealth()
        self._lock = asyncio.Lock()

        self._pw: Playwright | None = None
        self._browser: Browser | None = None
        self._last_used = 0.0
        self._holders = 0
        self.launch_count = 0

    async def __aenter__(self) -> "BrowserPool":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Process lifecycle
    # ------------------------------------------------------------------

    def _is_reusable(self) -> bool:
        if self._browser is None or not self._browser.is_connected():
            return False
        if self._holders > 0:
            return True
        return self._clock() - self._last_used < self.reuse_window_sec

    async def acquire(self) -> Browser:
        """Return a live browser, relaunching when the old one went stale."""
        async with self._lock:
            if not self._is_reusable():
                await self._close_browser()
                self._browser = await self._launch()
                self.launch_count += 1
            self._holders += 1
            self._last_used = self._clock()
            return self._browser

    def release(self, browser: Browser) -> None:
        if browser is not self._browser:
            return
        self._holders = max(0, self._holders - 1)
        self._last_used = self._clock()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Browser]:
        browser = await self.acquire()
        try:
            yield browser
        finally:
            self.release(browser)

    async def evict_idle(self) -> bool:
        """Close the browser if nobody holds it and the window has lapsed."""
        async with self._lock:
            if self._browser is None or self._is_reusable():
                return False
            await self._close_browser()
            return True

    async def close(self) -> None:
        async with self._lock:
            await self._close_browser()
            if self._pw is not None:
                await self._pw.stop()
                self._pw = None

    async def _launch(self) -> Browser:
        try:
            if self._launcher is not None:
                return await self._launcher()
            if self._pw is None:
                self._pw = await async_playwright().start()
            return await launch_stealth_browser(self._pw)
        except LaunchFailure:
            raise
        except Exception as exc:
            raise LaunchFailure(f"Browser launch failed: {exc}") from exc

    async def _close_browser(self) -> None:
        browser, self._browser = self._browser, None
        self._holders = 0
        if browser is None:
            return
        try:
            await browser.close()
            logger.info("Browser closed (idle past %.0fs)", self.reuse_window_sec)
        except PlaywrightError as exc:
            logger.debug("Browser close failed: %s", exc)

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def new_page(
        self,
        browser: Browser,
        policy: ResourcePolicy | None = None,
    ) -> Page:
        """Open a page in a fresh, fingerprint-hardened context."""
        context = await browser.new_context(
            viewport=get_viewport(),
            user_agent=get_user_agent(),
            locale="en-US",
            timezone_id="America/New_York",
            extra_http_headers=EXTRA_HTTP_HEADERS,
            ignore_https_errors=True,
        )
        try:
            await self._stealth.apply_stealth_async(context)
            await context.add_init_script(STEALTH_INIT_SCRIPT)
            page = await context.new_page()
            await (policy or self.policy).install(page)
        except Exception:
            await context.close()
            raise
        return page

    @staticmethod
    async def close_page(page: Page) -> None:
        """Close *page* and the context it owns, ignoring already-closed errors."""
        for obj in (page, page.context):
            try:
                await obj.close()
            except PlaywrightError as exc:
                logger.debug("Close failed: %s", exc)


class BaseScraper(abc.ABC):
    """Skeleton shared by the listing and directory scrapers.

    Subclasses implement ``scrape(key)`` using ``open_page()`` and
    ``goto()``; browser reuse and page hardening come from the pool.
    """

    def __init__(
        self,
        pool: BrowserPool,
        *,
        policy: ResourcePolicy | None = None,
    ) -> None:
        self.pool = pool
        self.policy = policy or pool.policy

    @asynccontextmanager
    async def open_page(self) -> AsyncIterator[Page]:
        async with self.pool.session() as browser:
            page = await self.pool.new_page(browser, self.policy)
            try:
                yield page
            finally:
                await self.pool.close_page(page)

    async def goto(
        self,
        page: Page,
        url: str,
        *,
        timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        label: str = "",
    ) -> bool:
        """Navigate *page* to *url*.

        A navigation timeout is not fatal — the DOM that did render is
        still worth reading — so it is logged and ``False`` is returned.
        Any other navigation error propagates.
        """
        logger.info("[%s] Navigating to %s", label or url, url)
        try:
            await page.goto(url, wait_until=WAIT_UNTIL, timeout=timeout_ms)
            return True
        except PlaywrightTimeout:
            logger.warning(
                "[%s] %s — continuing with partial DOM",
                label or url, NavigationTimeout(url, timeout_ms),
            )
            return False

    async def save_debug_info(self, page: Page, label: str) -> None:
        """Save a screenshot and HTML dump under ``DEBUG_DIR``.

        Only runs when ``SAVE_DEBUG_ARTIFACTS=true``; failures are logged
        and never break the scrape.
        """
        if not SAVE_DEBUG_ARTIFACTS:
            return
        try:
            DEBUG_DIR.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(DEBUG_DIR / f"{label}.png"), full_page=True)
            html = await page.content()
            (DEBUG_DIR / f"{label}.html").write_text(html[:50_000], encoding="utf-8")
            logger.info("[%s] Debug artifacts saved: %s (url=%s)", label, DEBUG_DIR / label, page.url)
        except Exception as exc:
            logger.warning("[%s] Failed to save debug info: %s", label, exc)

    @abc.abstractmethod
    async def scrape(self, key: str) -> list[Any]:
        """Scrape the page identified by *key* (a domain or a category)."""
        ...
