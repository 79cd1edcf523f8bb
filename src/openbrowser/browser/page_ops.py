"""Page operations: scrape, screenshot, script execution, extraction.

Each public method leases the profile's primary page from the context pool
and runs under a caller-supplied timeout.  The page-level helpers
(:func:`load_page`, :func:`scrape_page`) take an already leased page so the
crawler and CAPTCHA handshake can reuse them inside their own lease.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from openbrowser.browser.extract import extract_fields
from openbrowser.browser.guard import operation_guard
from openbrowser.browser.markup import (
    extract_images,
    extract_links,
    extract_metadata,
    parse,
    render_content,
)
from openbrowser.browser.navigation import resilient_goto
from openbrowser.exceptions import InvalidRequestError
from openbrowser.models.page import ContentFormat, Page, Screenshot

if TYPE_CHECKING:
    from playwright.async_api import Page as BrowserPage

    from openbrowser.browser.pool import ContextPool
    from openbrowser.settings.config import Settings

logger = logging.getLogger(__name__)

_SCRAPE_SCREENSHOT_QUALITY = 90


async def load_page(
    page: BrowserPage,
    url: str,
    *,
    wait_for_selector: str | None = None,
    timeout_ms: int = 30_000,
) -> None:
    """Navigate and block until *wait_for_selector* is visible (default: body attached)."""
    await resilient_goto(page, url, timeout_ms=timeout_ms)
    if wait_for_selector:
        await page.wait_for_selector(wait_for_selector, state="visible", timeout=timeout_ms)
    else:
        await page.wait_for_selector("body", state="attached", timeout=timeout_ms)


async def snapshot_page(
    page: BrowserPage,
    *,
    fmt: ContentFormat = ContentFormat.HTML,
    include_screenshot: bool = False,
) -> Page:
    """Build a ``Page`` from whatever document *page* currently shows."""
    title = await page.title()
    html = await page.content()
    screenshot = None
    if include_screenshot:
        screenshot = await page.screenshot(full_page=True, type="jpeg", quality=_SCRAPE_SCREENSHOT_QUALITY)

    soup = parse(html)
    return Page(
        url=page.url,
        title=title,
        html=html,
        content=render_content(html, fmt),
        links=extract_links(soup),
        images=extract_images(soup),
        metadata=extract_metadata(soup),
        screenshot=screenshot,
    )


async def scrape_page(
    page: BrowserPage,
    url: str,
    *,
    fmt: ContentFormat = ContentFormat.HTML,
    wait_for_selector: str | None = None,
    timeout_ms: int = 30_000,
    include_screenshot: bool = False,
) -> Page:
    await load_page(page, url, wait_for_selector=wait_for_selector, timeout_ms=timeout_ms)
    return await snapshot_page(page, fmt=fmt, include_screenshot=include_screenshot)


def parse_script_result(result: Any) -> Any:
    """Decode a string result that holds JSON; return anything else unchanged."""
    if isinstance(result, str):
        try:
            return json.loads(result)
        except ValueError:
            return result
    return result


class PageOperations:
    """Single-page operations against the context pool."""

    def __init__(self, pool: ContextPool, settings: Settings | None = None) -> None:
        if settings is None:
            from openbrowser.settings import get_settings

            settings = get_settings()
        self._pool = pool
        self._default_timeout_ms = settings.browser.timeout_ms

    def _timeout(self, timeout_ms: int | None) -> int:
        return timeout_ms or self._default_timeout_ms

    async def scrape(
        self,
        url: str,
        *,
        fmt: ContentFormat = ContentFormat.HTML,
        wait_for_selector: str | None = None,
        profile_id: str = "default",
        timeout_ms: int | None = None,
        include_screenshot: bool = False,
    ) -> Page:
        timeout_ms = self._timeout(timeout_ms)
        logger.info("scrape %s (profile=%s, format=%s)", url, profile_id, fmt.value)
        async with operation_guard("scrape", timeout_ms):
            async with self._pool.lease(profile_id) as handle:
                page = await handle.page()
                return await scrape_page(
                    page,
                    url,
                    fmt=fmt,
                    wait_for_selector=wait_for_selector,
                    timeout_ms=timeout_ms,
                    include_screenshot=include_screenshot,
                )

    async def screenshot(
        self,
        url: str,
        *,
        full_page: bool = False,
        wait_for_selector: str | None = None,
        profile_id: str = "screenshot",
        timeout_ms: int | None = None,
    ) -> Screenshot:
        timeout_ms = self._timeout(timeout_ms)
        logger.info("screenshot %s (profile=%s, full_page=%s)", url, profile_id, full_page)
        async with operation_guard("screenshot", timeout_ms):
            async with self._pool.lease(profile_id) as handle:
                page = await handle.page()
                await load_page(page, url, wait_for_selector=wait_for_selector, timeout_ms=timeout_ms)
                width, height = await page.evaluate("() => [window.innerWidth, window.innerHeight]")
                data = await page.screenshot(full_page=full_page, type="png")
                return Screenshot(screenshot=data, width=int(width), height=int(height))

    async def execute_script(
        self,
        url: str,
        script: str,
        *,
        profile_id: str = "default",
        timeout_ms: int | None = None,
    ) -> Any:
        """Navigate to *url* and evaluate *script* in the page."""
        timeout_ms = self._timeout(timeout_ms)
        logger.info("execute_script on %s (profile=%s)", url, profile_id)
        async with operation_guard("execute_script", timeout_ms):
            async with self._pool.lease(profile_id) as handle:
                page = await handle.page()
                await load_page(page, url, timeout_ms=timeout_ms)
                result = await page.evaluate(script)
        return parse_script_result(result)

    async def extract(
        self,
        schema: dict[str, Any],
        *,
        url: str | None = None,
        html: str | None = None,
        profile_id: str = "extractor",
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """Apply *schema* to the page at *url*, or to raw *html* when no url is given.

        Raises:
            InvalidRequestError: If neither *url* nor *html* is provided.
        """
        if url:
            page = await self.scrape(url, profile_id=profile_id, timeout_ms=timeout_ms)
            html = page.html
        elif not html:
            raise InvalidRequestError("either url or html must be provided")
        return extract_fields(html, schema)
