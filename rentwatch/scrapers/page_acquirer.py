# rentwatch/scrapers/page_acquirer.py

"""Headless-browser page acquisition with navigation retries.

Listing sites render client-side and re-render while loading, so a
plain ``goto`` regularly dies with a detached frame or a destroyed
execution context.  :class:`PageAcquirer` retries navigation, waits for
a settled DOM, scrolls lazy content into existence and always releases
the page, even on error paths.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    Route,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from rentwatch.config.settings import Settings
from rentwatch.errors import NavigationError

logger = logging.getLogger("rentwatch.acquirer")

TRANSIENT_NAV_RE = re.compile(
    r"frame was detached|execution context was destroyed|ERR_ABORTED",
    re.I,
)
BENIGN_TEARDOWN_RE = re.compile(
    r"target (?:page, context or browser )?(?:has been )?closed"
    r"|protocol error|connection closed|has been closed",
    re.I,
)

_READY_STATE_JS = (
    "() => document.readyState === 'interactive'"
    " || document.readyState === 'complete'"
)
_SCROLL_METRICS_JS = (
    "() => [document.body ? document.body.scrollHeight : 0,"
    " window.innerHeight]"
)
_SCROLL_BY_JS = "(step) => window.scrollBy(0, step)"
_SCROLL_MARGIN_PX = 100
_MAX_SCROLL_STEPS = 250


def is_transient(exc: BaseException) -> bool:
    """True for rendering races worth another navigation attempt."""
    return bool(TRANSIENT_NAV_RE.search(str(exc)))


def is_benign_teardown(exc: BaseException) -> bool:
    """True for errors raised because the page is already gone."""
    return bool(BENIGN_TEARDOWN_RE.search(str(exc)))


def navigation_timeout(timeout_ms: int) -> int:
    """Navigation gets twice the action timeout, never under 60s."""
    return max(timeout_ms * 2, 60_000)


@dataclass
class RenderedDocument:
    """Serialised DOM of a fully rendered page."""

    html: str
    url: str


class BrowserSession:
    """Scoped headless Chromium session.

    Use as ``async with BrowserSession() as session``; the browser is
    closed on every exit path.
    """

    def __init__(self, headless: bool | None = None) -> None:
        self.headless = Settings.HEADLESS if headless is None else headless
        self._playwright: Playwright | None = None
        self.browser: Browser | None = None

    async def __aenter__(self) -> "BrowserSession":
        args: list[str] = []
        if Settings.NO_SANDBOX:
            args = ["--no-sandbox", "--disable-setuid-sandbox"]
        self._playwright = await async_playwright().start()
        try:
            self.browser = await self._playwright.chromium.launch(
                headless=self.headless, args=args,
            )
        except BaseException:
            await self._playwright.stop()
            raise
        logger.debug("Browser launched (headless=%s)", self.headless)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            if self.browser is not None:
                await self.browser.close()
        except PlaywrightError as close_exc:
            if not is_benign_teardown(close_exc):
                logger.warning("Browser close failed: %s", close_exc)
        finally:
            self.browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None

    async def new_page(self, timeout_ms: int) -> Page:
        """Open a page in a fresh context with the scraper's identity."""
        if self.browser is None:
            raise RuntimeError("BrowserSession is not open")
        context = await self.browser.new_context(
            user_agent=Settings.USER_AGENT,
            viewport=dict(Settings.VIEWPORT),
            extra_http_headers=dict(Settings.EXTRA_HEADERS),
        )
        page = await context.new_page()
        page.set_default_timeout(timeout_ms)
        page.set_default_navigation_timeout(navigation_timeout(timeout_ms))
        await page.route("**/*", _block_heavy_resources)
        return page


async def _block_heavy_resources(route: Route) -> None:
    if route.request.resource_type in Settings.BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()


class PageAcquirer:
    """Turns a URL into a :class:`RenderedDocument`."""

    def __init__(
        self,
        session: BrowserSession,
        timeout_ms: int | None = None,
        attempts: int | None = None,
    ) -> None:
        self.session = session
        self.timeout_ms = timeout_ms or Settings.TIMEOUT_MS
        self.attempts = attempts or Settings.NAVIGATION_ATTEMPTS

    async def open_page(
        self, url: str, timeout_ms: int | None = None,
    ) -> Page:
        """Open *url* in a new page and wait until it has settled.

        Raises ``NavigationError`` once every attempt has failed; the
        page is released before the error propagates.
        """
        page_timeout = timeout_ms or self.timeout_ms
        page = await self.session.new_page(page_timeout)
        try:
            await self.navigate(page, url, page_timeout)
        except BaseException:
            await self.close_page(page)
            raise
        return page

    async def navigate(self, page: Page, url: str, timeout_ms: int) -> None:
        """Navigate with retries, then wait for a ready DOM."""
        last_error: BaseException | None = None
        transient = False
        for attempt in range(1, self.attempts + 1):
            try:
                await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=navigation_timeout(timeout_ms),
                )
                await page.wait_for_selector(
                    "body", state="attached", timeout=timeout_ms,
                )
                await page.wait_for_function(
                    _READY_STATE_JS, timeout=Settings.READY_STATE_TIMEOUT_MS,
                )
                await asyncio.sleep(Settings.SETTLE_DELAY)
                if attempt > 1:
                    logger.info(
                        "Navigation to %s succeeded on attempt %d",
                        url,
                        attempt,
                    )
                return
            except PlaywrightError as exc:
                last_error = exc
                transient = is_transient(exc)
                logger.warning(
                    "Navigation attempt %d/%d to %s failed (%s): %s",
                    attempt,
                    self.attempts,
                    url,
                    "transient" if transient else "error",
                    str(exc).splitlines()[0] if str(exc) else exc,
                )
                if attempt < self.attempts:
                    await asyncio.sleep(float(attempt))

        raise NavigationError(
            url,
            str(last_error) if last_error else "unknown error",
            attempts=self.attempts,
            transient=transient,
        )

    async def wait_for_any_selector(
        self,
        page: Page,
        selectors: tuple[str, ...] | list[str],
        timeout_ms: int | None = None,
    ) -> bool:
        """Best-effort wait for any of *selectors*; never raises."""
        combined = ", ".join(s for s in selectors if s)
        if not combined:
            return False
        try:
            await page.wait_for_selector(
                combined,
                timeout=timeout_ms or Settings.WAIT_FOR_ITEMS_MS,
            )
            return True
        except PlaywrightError as exc:
            logger.debug("No item selector appeared: %s", exc)
            return False

    async def scroll_to_bottom(self, page: Page) -> int:
        """Scroll in fixed steps until the bottom is reached.

        Returns the number of pixels scrolled.
        """
        step = Settings.SCROLL_STEP_PX
        interval = Settings.SCROLL_INTERVAL_MS / 1000
        scrolled = 0
        for _ in range(_MAX_SCROLL_STEPS):
            metrics: Any = await page.evaluate(_SCROLL_METRICS_JS)
            height, viewport = int(metrics[0]), int(metrics[1])
            if scrolled >= height - viewport - _SCROLL_MARGIN_PX:
                break
            await page.evaluate(_SCROLL_BY_JS, step)
            scrolled += step
            await asyncio.sleep(interval)
        return scrolled

    async def close_page(self, page: Page) -> None:
        """Close a page and its context, swallowing teardown races."""
        try:
            await page.close()
            await page.context.close()
        except Exception as exc:
            if is_benign_teardown(exc):
                logger.debug("Ignoring teardown race: %s", exc)
            else:
                logger.warning("Page close failed: %s", exc)

    async def fetch(
        self,
        url: str,
        wait_for: tuple[str, ...] | list[str] = (),
        scroll: bool = True,
        timeout_ms: int | None = None,
    ) -> RenderedDocument:
        """Open, settle, scroll and serialise *url*; always releases the page."""
        page = await self.open_page(url, timeout_ms)
        try:
            if wait_for:
                await self.wait_for_any_selector(page, wait_for)
            if scroll:
                await self.scroll_to_bottom(page)
            html = await page.content()
            return RenderedDocument(html=html, url=page.url or url)
        finally:
            await self.close_page(page)
