"""Breadth-first crawler built on repeated scrapes.

The frontier is a FIFO queue seeded with ``(start_url, 0)``.  The visited set
and the result list live behind one lock, so a URL is claimed exactly once
and the result count never exceeds ``max_pages`` even when several workers
drain the frontier.  With the default ``concurrency=1`` pages are fetched
strictly one after another on the profile's primary page.
"""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from typing import TYPE_CHECKING, Iterable
from urllib.parse import urldefrag, urljoin, urlparse

from playwright.async_api import Error as PlaywrightError

from openbrowser.browser.guard import operation_guard
from openbrowser.browser.page_ops import scrape_page
from openbrowser.exceptions import ContextCanceledError, OpenBrowserError
from openbrowser.models.page import ContentFormat, CrawledPage

if TYPE_CHECKING:
    from playwright.async_api import Page as BrowserPage

    from openbrowser.browser.pool import ContextHandle, ContextPool
    from openbrowser.settings.config import Settings

logger = logging.getLogger(__name__)

_SKIP_SCHEMES = ("javascript:", "mailto:", "tel:", "data:", "blob:")


# ---------------------------------------------------------------------------
# URL filtering
# ---------------------------------------------------------------------------


def _pattern_matches(url: str, pattern: str) -> bool:
    if "*" in pattern or "?" in pattern:
        return fnmatch.fnmatchcase(url, pattern)
    return pattern in url


def matches_patterns(url: str, include: Iterable[str] = (), exclude: Iterable[str] = ()) -> bool:
    """Whether *url* passes the include/exclude filters.

    Plain patterns match as substrings; patterns containing ``*`` or ``?``
    are shell-style globs over the whole URL.  With include patterns the URL
    must match at least one.  Any exclude match rejects the URL, even if it
    also matched an include pattern.
    """
    include = list(include)
    if include and not any(_pattern_matches(url, p) for p in include):
        return False
    return not any(_pattern_matches(url, p) for p in exclude)


def resolve_link(base_url: str, href: str) -> str | None:
    """Absolute http(s) URL for *href* relative to *base_url*, fragment removed."""
    href = href.strip()
    if not href or href.startswith("#") or href.lower().startswith(_SKIP_SCHEMES):
        return None
    absolute, _fragment = urldefrag(urljoin(base_url, href))
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute


def same_origin(a: str, b: str) -> bool:
    pa, pb = urlparse(a), urlparse(b)
    return (pa.scheme, pa.netloc) == (pb.scheme, pb.netloc)


# ---------------------------------------------------------------------------
# Crawl state
# ---------------------------------------------------------------------------


class _CrawlState:
    """Visited set and results shared by all workers of one crawl."""

    def __init__(self, max_pages: int) -> None:
        self.max_pages = max_pages
        self.visited: set[str] = set()
        self.results: list[CrawledPage] = []
        self.lock = asyncio.Lock()

    @property
    def full(self) -> bool:
        return len(self.results) >= self.max_pages

    async def claim(self, url: str) -> bool:
        """Mark *url* visited; ``False`` if it already was or the crawl is full."""
        async with self.lock:
            if self.full or url in self.visited:
                return False
            self.visited.add(url)
            return True

    async def record(self, page: CrawledPage) -> bool:
        async with self.lock:
            if self.full:
                return False
            self.results.append(page)
            return True

    def seen(self, url: str) -> bool:
        return url in self.visited


class Crawler:
    """Breadth-first crawl over one profile's context."""

    def __init__(self, pool: ContextPool, settings: Settings | None = None) -> None:
        if settings is None:
            from openbrowser.settings import get_settings

            settings = get_settings()
        self._pool = pool
        self._defaults = settings.crawl
        self._page_timeout_ms = settings.browser.timeout_ms

    async def crawl(
        self,
        start_url: str,
        *,
        max_pages: int | None = None,
        max_depth: int | None = None,
        include_patterns: Iterable[str] = (),
        exclude_patterns: Iterable[str] = (),
        profile_id: str = "crawler",
        same_origin_only: bool | None = None,
        concurrency: int | None = None,
    ) -> list[CrawledPage]:
        """Crawl from *start_url* and return pages in the order they were fetched.

        Pages that fail to load are skipped and never retried.  Only the loss
        of the browser context aborts the crawl.
        """
        max_pages = max_pages or self._defaults.max_pages
        max_depth = self._defaults.max_depth if max_depth is None else max_depth
        same_origin_only = self._defaults.same_origin if same_origin_only is None else same_origin_only
        concurrency = max(1, concurrency or self._defaults.concurrency)
        include = list(include_patterns)
        exclude = list(exclude_patterns)

        state = _CrawlState(max_pages)
        queue: asyncio.Queue[tuple[str, int]] = asyncio.Queue()
        queue.put_nowait((start_url, 0))

        logger.info(
            "crawl %s (profile=%s, max_pages=%d, max_depth=%d, concurrency=%d)",
            start_url,
            profile_id,
            max_pages,
            max_depth,
            concurrency,
        )

        async def worker(handle: ContextHandle, shared_page: bool) -> None:
            async with handle.bound():
                page = await handle.page() if shared_page else await handle.new_page()
                try:
                    while True:
                        url, depth = await queue.get()
                        try:
                            await self._visit(
                                page,
                                url,
                                depth,
                                state,
                                queue,
                                start_url,
                                max_depth,
                                include,
                                exclude,
                                same_origin_only,
                            )
                        finally:
                            queue.task_done()
                finally:
                    if not shared_page:
                        await page.close()

        async with self._pool.lease(profile_id) as handle:
            workers = [
                asyncio.create_task(worker(handle, shared_page=concurrency == 1), name=f"crawl-worker-{i}")
                for i in range(concurrency)
            ]
            drained = asyncio.ensure_future(queue.join())
            try:
                await asyncio.wait([drained, *workers], return_when=asyncio.FIRST_COMPLETED)
            finally:
                for task in (drained, *workers):
                    task.cancel()
                outcomes = await asyncio.gather(drained, *workers, return_exceptions=True)

            for outcome in outcomes:
                if isinstance(outcome, BaseException) and not isinstance(outcome, asyncio.CancelledError):
                    raise outcome

        logger.info("crawl %s finished: %d pages", start_url, len(state.results))
        return state.results

    async def _visit(
        self,
        page: BrowserPage,
        url: str,
        depth: int,
        state: _CrawlState,
        queue: asyncio.Queue[tuple[str, int]],
        start_url: str,
        max_depth: int,
        include: list[str],
        exclude: list[str],
        same_origin_only: bool,
    ) -> None:
        if not await state.claim(url):
            return

        try:
            async with operation_guard("crawl", self._page_timeout_ms):
                scraped = await scrape_page(page, url, fmt=ContentFormat.HTML, timeout_ms=self._page_timeout_ms)
        except ContextCanceledError:
            raise
        except (OpenBrowserError, PlaywrightError) as exc:
            logger.warning("crawl: skipping %s: %s", url, exc)
            return

        crawled = CrawledPage(**scraped.model_dump(), depth=depth)
        if not await state.record(crawled):
            return
        logger.debug("crawl: fetched %s (depth=%d, %d/%d)", url, depth, len(state.results), state.max_pages)

        if depth >= max_depth or state.full:
            return
        base_url = scraped.url or url
        for link in scraped.links:
            target = resolve_link(base_url, link.url)
            if target is None or state.seen(target):
                continue
            if same_origin_only and not same_origin(target, start_url):
                continue
            if not matches_patterns(target, include, exclude):
                continue
            queue.put_nowait((target, depth + 1))
