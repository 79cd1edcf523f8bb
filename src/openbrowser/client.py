"""Typed Python client for the engine.

``BrowserClient`` wraps ``EngineSupervisor.call`` with one method per RPC
method, converting camelCase payloads into the shared models.  CAPTCHA-aware
methods return the raw payload so callers can branch on
``captchaDetected``.

Usage::

    from openbrowser.client import BrowserClient

    with BrowserClient() as client:
        page = client.scrape("https://example.com", fmt="markdown")
        print(page.title)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from openbrowser.models.action import Action, AutomationResult
from openbrowser.models.captcha import CaptchaSolution
from openbrowser.models.page import ContentFormat, CrawledPage, Page, Screenshot
from openbrowser.models.profile import Profile, Viewport
from openbrowser.sink import ContentSink, SinkError, StoredContent
from openbrowser.supervisor import EngineSupervisor

logger = logging.getLogger(__name__)


def _params(**values: Any) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


class BrowserClient:
    """High-level client over a supervised engine process.

    Args:
        supervisor: Supervisor to call through; a new one is built from
            settings when omitted.
        sink: Optional content sink used by the ``*_and_store`` helpers.
    """

    def __init__(self, supervisor: EngineSupervisor | None = None, *, sink: ContentSink | None = None) -> None:
        self.supervisor = supervisor or EngineSupervisor()
        self.sink = sink

    def __enter__(self) -> "BrowserClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> None:
        self.supervisor.close()

    def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        return self.supervisor.call(method, params or {})

    # -- page operations ------------------------------------------------------

    def test(self) -> dict[str, Any]:
        return self.call("test")

    def scrape(
        self,
        url: str,
        *,
        fmt: ContentFormat | str = ContentFormat.HTML,
        wait_for_selector: str | None = None,
        include_screenshot: bool = False,
        profile_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> Page:
        data = self.call(
            "scrape",
            _params(
                url=url,
                format=ContentFormat(fmt).value,
                waitForSelector=wait_for_selector,
                includeScreenshot=include_screenshot,
                profileId=profile_id,
                timeout=timeout_ms,
            ),
        )
        return Page.model_validate(data)

    def crawl(
        self,
        start_url: str,
        *,
        max_pages: int | None = None,
        max_depth: int | None = None,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
        same_origin: bool | None = None,
        concurrency: int | None = None,
        profile_id: str | None = None,
    ) -> list[CrawledPage]:
        data = self.call(
            "crawl",
            _params(
                startUrl=start_url,
                maxPages=max_pages,
                maxDepth=max_depth,
                includePatterns=include_patterns,
                excludePatterns=exclude_patterns,
                sameOrigin=same_origin,
                concurrency=concurrency,
                profileId=profile_id,
            ),
        )
        return [CrawledPage.model_validate(page) for page in (data or {}).get("pages", [])]

    def extract(
        self,
        schema: dict[str, Any],
        *,
        url: str | None = None,
        html: str | None = None,
        profile_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        data = self.call(
            "extract",
            _params(schema=schema, url=url, html=html, profileId=profile_id, timeout=timeout_ms),
        )
        return (data or {}).get("data", {})

    def automate(
        self,
        actions: list[Action | dict[str, Any]],
        *,
        url: str | None = None,
        profile_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> AutomationResult:
        data = self.call(
            "automate",
            _params(actions=_wire_actions(actions), url=url, profileId=profile_id, timeout=timeout_ms),
        )
        return AutomationResult.model_validate(data)

    def screenshot(
        self,
        url: str,
        *,
        full_page: bool = False,
        wait_for_selector: str | None = None,
        profile_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> Screenshot:
        data = self.call(
            "screenshot",
            _params(
                url=url,
                fullPage=full_page,
                waitForSelector=wait_for_selector,
                profileId=profile_id,
                timeout=timeout_ms,
            ),
        )
        return Screenshot.model_validate(data)

    def execute_script(
        self, url: str, script: str, *, profile_id: str | None = None, timeout_ms: int | None = None
    ) -> Any:
        data = self.call("execute_script", _params(url=url, script=script, profileId=profile_id, timeout=timeout_ms))
        return (data or {}).get("result")

    # -- CAPTCHA-aware operations --------------------------------------------

    def scrape_pro(
        self,
        url: str,
        *,
        fmt: ContentFormat | str = ContentFormat.HTML,
        wait_for_selector: str | None = None,
        profile_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """Scrape; the payload has ``captchaDetected: true`` when interrupted."""
        return self.call(
            "scrape_pro",
            _params(
                url=url,
                format=ContentFormat(fmt).value,
                waitForSelector=wait_for_selector,
                profileId=profile_id,
                timeout=timeout_ms,
            ),
        )

    def automate_pro(
        self,
        actions: list[Action | dict[str, Any]],
        *,
        url: str | None = None,
        profile_id: str | None = None,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        return self.call(
            "automate_pro",
            _params(actions=_wire_actions(actions), url=url, profileId=profile_id, timeout=timeout_ms),
        )

    def get_captcha(
        self, *, url: str | None = None, profile_id: str | None = None, timeout_ms: int | None = None
    ) -> dict[str, Any]:
        return self.call("get_captcha", _params(url=url, profileId=profile_id, timeout=timeout_ms))

    def apply_captcha_solution(
        self, profile_id: str, solution: CaptchaSolution | dict[str, Any], *, timeout_ms: int | None = None
    ) -> dict[str, Any]:
        if isinstance(solution, dict):
            solution = CaptchaSolution.model_validate(solution)
        return self.call(
            "apply_captcha_solution",
            _params(profileId=profile_id, solution=solution.to_wire(), timeout=timeout_ms),
        )

    # -- profiles -------------------------------------------------------------

    def create_profile(
        self,
        name: str,
        *,
        user_agent: str | None = None,
        viewport: Viewport | None = None,
        proxy: str | None = None,
    ) -> Profile:
        data = self.call(
            "create_profile",
            _params(
                name=name,
                userAgent=user_agent,
                viewport=viewport.to_wire() if viewport else None,
                proxy=proxy,
            ),
        )
        return Profile.model_validate(data)

    def list_profiles(self) -> list[Profile]:
        data = self.call("list_profiles")
        return [Profile.model_validate(entry) for entry in (data or {}).get("profiles", [])]

    def delete_profile(self, profile_id: str) -> None:
        self.call("delete_profile", {"profileId": profile_id})

    # -- storage --------------------------------------------------------------

    def scrape_and_store(
        self,
        session_id: str,
        url: str,
        *,
        fmt: ContentFormat | str = ContentFormat.MARKDOWN,
        **kwargs: Any,
    ) -> tuple[Page, StoredContent]:
        """Scrape a page and push its content to the sink."""
        sink = self._require_sink()
        page = self.scrape(url, fmt=fmt, **kwargs)
        stored = sink.store(
            session_id,
            page.url or url,
            page.title or "Untitled Page",
            page.content,
            ContentFormat(fmt).value,
            {
                "source": "openbrowser_scrape",
                "contentLength": len(page.content),
                "links": len(page.links),
                "images": len(page.images),
                "screenshot": "base64_available" if page.screenshot else "none",
                "scrapedAt": datetime.now(timezone.utc).isoformat(),
            },
        )
        return page, stored

    def crawl_and_store(self, session_id: str, start_url: str, **kwargs: Any) -> list[tuple[CrawledPage, StoredContent]]:
        """Crawl and push every page to the sink.

        Pages the sink refuses are logged and left out of the result.
        """
        sink = self._require_sink()
        stored: list[tuple[CrawledPage, StoredContent]] = []
        for page in self.crawl(start_url, **kwargs):
            try:
                receipt = sink.store(
                    session_id,
                    page.url,
                    page.title or "Untitled Page",
                    page.content,
                    ContentFormat.HTML.value,
                    {
                        "source": "openbrowser_crawl",
                        "crawlDepth": page.depth,
                        "parentUrl": start_url,
                        "contentLength": len(page.content),
                        "crawledAt": datetime.now(timezone.utc).isoformat(),
                    },
                )
            except SinkError as exc:
                logger.warning("Failed to store page %s: %s", page.url, exc)
                continue
            stored.append((page, receipt))
        return stored

    def _require_sink(self) -> ContentSink:
        if self.sink is None:
            raise SinkError("no content sink configured")
        return self.sink


def _wire_actions(actions: list[Action | dict[str, Any]]) -> list[dict[str, Any]]:
    return [Action.model_validate(action).to_wire() if isinstance(action, dict) else action.to_wire() for action in actions]
