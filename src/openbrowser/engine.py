"""Automation engine: wires the browser components behind the RPC method table.

The engine runs inside the server process.  ``Engine.call(method, params)``
validates the camelCase params for the method, runs the operation, and
returns a JSON-safe payload.  Failures are raised as ``OpenBrowserError``
subclasses; the API layer turns them into response envelopes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError
from pydantic import ValidationError

from openbrowser import __version__
from openbrowser.browser.actions import ActionInterpreter
from openbrowser.browser.captcha import CaptchaHandshake, interrupt_payload
from openbrowser.browser.crawl import Crawler
from openbrowser.browser.guard import is_target_closed, operation_guard
from openbrowser.browser.navigation import resilient_goto
from openbrowser.browser.page_ops import PageOperations, scrape_page
from openbrowser.browser.pool import ContextPool
from openbrowser.browser.solver import HttpCaptchaSolver, SolverError, build_solver
from openbrowser.exceptions import ContextCanceledError, InvalidRequestError, OpenBrowserError
from openbrowser.models.action import AutomationResult
from openbrowser.models.captcha import CaptchaSession, CaptchaState
from openbrowser.models.page import Page
from openbrowser.models.rpc import (
    ApplyCaptchaParams,
    AutomateParams,
    CrawlParams,
    CreateProfileParams,
    ExtractParams,
    GetCaptchaParams,
    ProfileIdParams,
    ScrapeParams,
    ScreenshotParams,
    ScriptParams,
)
from openbrowser.settings.config import Settings

if TYPE_CHECKING:
    from playwright.async_api import Page as BrowserPage

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


class Engine:
    """Owns the context pool and every operation built on it."""

    def __init__(self, settings: Settings | None = None, *, pool: ContextPool | None = None) -> None:
        if settings is None:
            from openbrowser.settings import get_settings

            settings = get_settings()
        self.settings = settings
        self.pool = pool or ContextPool(settings)
        self.pages = PageOperations(self.pool, settings)
        self.crawler = Crawler(self.pool, settings)
        self.interpreter = ActionInterpreter(self.pool, settings)
        self.captcha = CaptchaHandshake(self.pool, settings)
        self.solver: HttpCaptchaSolver | None = None
        if settings.captcha.strategy == "solver":
            self.solver = build_solver(settings.captcha.solver_url, settings.captcha.solver_timeout_sec)

        self._methods: dict[str, Handler] = {
            "test": self.test,
            "scrape": self.scrape,
            "crawl": self.crawl,
            "extract": self.extract,
            "automate": self.automate,
            "screenshot": self.screenshot,
            "scrape_pro": self.scrape_pro,
            "automate_pro": self.automate_pro,
            "get_captcha": self.get_captcha,
            "apply_captcha_solution": self.apply_captcha_solution,
            "execute_script": self.execute_script,
            "create_profile": self.create_profile,
            "list_profiles": self.list_profiles,
            "delete_profile": self.delete_profile,
        }

    @property
    def methods(self) -> list[str]:
        return sorted(self._methods)

    async def start(self) -> None:
        await self.pool.start()
        logger.info("Engine started (captcha strategy=%s)", "solver" if self.solver else "handoff")

    async def close(self) -> None:
        await self.pool.close()

    async def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Dispatch one RPC call.

        Raises:
            InvalidRequestError: Unknown method or params that fail validation.
            OpenBrowserError: Any operation failure, with its typed code.
        """
        handler = self._methods.get(method)
        if handler is None:
            raise InvalidRequestError(f"Unknown method: {method}")
        try:
            return await handler(params or {})
        except ValidationError as exc:
            raise InvalidRequestError(f"invalid params for {method}: {_summarize(exc)}") from exc
        except PlaywrightError as exc:
            if is_target_closed(exc):
                raise ContextCanceledError(f"{method}: {exc}") from exc
            raise OpenBrowserError(f"{method} failed: {str(exc).splitlines()[0]}") from exc

    # -- plain operations -----------------------------------------------------

    async def test(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"message": "Browser server is working!", "version": __version__}

    async def scrape(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ScrapeParams.model_validate(params)
        page = await self.pages.scrape(
            p.url,
            fmt=p.format,
            wait_for_selector=p.wait_for_selector,
            profile_id=p.profile_id,
            timeout_ms=p.timeout,
            include_screenshot=p.include_screenshot,
        )
        return _page_payload(page)

    async def crawl(self, params: dict[str, Any]) -> dict[str, Any]:
        p = CrawlParams.model_validate(params)
        pages = await self.crawler.crawl(
            p.start_url,
            max_pages=p.max_pages,
            max_depth=p.max_depth,
            include_patterns=p.include_patterns,
            exclude_patterns=p.exclude_patterns,
            profile_id=p.profile_id,
            same_origin_only=p.same_origin,
            concurrency=p.concurrency,
        )
        preview = self.settings.crawl.content_preview_chars
        return {
            "pages": [
                {"url": page.url, "title": page.title, "depth": page.depth, "content": page.content[:preview]}
                for page in pages
            ],
            "count": len(pages),
        }

    async def extract(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ExtractParams.model_validate(params)
        data = await self.pages.extract(
            p.field_map(),
            url=p.url,
            html=p.html,
            profile_id=p.profile_id,
            timeout_ms=p.timeout,
        )
        return {"data": data}

    async def automate(self, params: dict[str, Any]) -> dict[str, Any]:
        p = AutomateParams.model_validate(params)
        result = await self.interpreter.automate(
            p.actions,
            url=p.url,
            profile_id=p.profile_id,
            timeout_ms=p.timeout,
        )
        return result.to_wire()

    async def screenshot(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ScreenshotParams.model_validate(params)
        shot = await self.pages.screenshot(
            p.url,
            full_page=p.full_page,
            wait_for_selector=p.wait_for_selector,
            profile_id=p.profile_id,
            timeout_ms=p.timeout,
        )
        return {**shot.to_wire(), "size": shot.size}

    async def execute_script(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ScriptParams.model_validate(params)
        result = await self.pages.execute_script(p.url, p.script, profile_id=p.profile_id, timeout_ms=p.timeout)
        return {"result": result}

    # -- CAPTCHA-aware operations --------------------------------------------

    async def scrape_pro(self, params: dict[str, Any]) -> dict[str, Any]:
        """Scrape, short-circuiting with an interrupt payload on a CAPTCHA.

        Under the ``solver`` strategy the engine asks the configured solver,
        applies its answer, and scrapes once more before giving up and
        handing the challenge to the caller.
        """
        p = ScrapeParams.model_validate(params)
        timeout_ms = p.timeout or self.settings.browser.timeout_ms

        async with operation_guard("scrape_pro", timeout_ms):
            async with self.pool.lease(p.profile_id) as handle:
                page = await handle.page()

                async def fetch() -> Page:
                    return await scrape_page(
                        page,
                        p.url,
                        fmt=p.format,
                        wait_for_selector=p.wait_for_selector,
                        timeout_ms=timeout_ms,
                        include_screenshot=p.include_screenshot,
                    )

                scraped = await fetch()
                session = await self.captcha.inspect(page, p.profile_id)
                if session.state != CaptchaState.DETECTED:
                    return {**_page_payload(scraped), "captchaDetected": False}

                if await self._try_solver(page, session):
                    scraped = await fetch()
                    return {**_page_payload(scraped), "captchaDetected": False, "captchaSolved": True}

        return self._interrupt(p.profile_id)

    async def automate_pro(self, params: dict[str, Any]) -> dict[str, Any]:
        """Automate, stopping with an interrupt payload when a CAPTCHA blocks the run."""
        p = AutomateParams.model_validate(params)
        timeout_ms = p.timeout or self.settings.browser.automation_timeout_ms

        async with operation_guard("automate_pro", timeout_ms):
            async with self.pool.lease(p.profile_id) as handle:
                page = await handle.page()
                if p.url:
                    await resilient_goto(page, p.url, timeout_ms=min(timeout_ms, self.settings.browser.timeout_ms))
                    session = await self.captcha.inspect(page, p.profile_id)
                    if session.state == CaptchaState.DETECTED and not await self._try_solver(page, session):
                        return {**self._interrupt(p.profile_id), "actions": []}

                result = await self.interpreter.run(page, p.actions, AutomationResult(final_url=page.url))
                if not result.success:
                    session = await self.captcha.inspect(page, p.profile_id)
                    if session.state == CaptchaState.DETECTED:
                        return {**self._interrupt(p.profile_id), **result.to_wire()}

        return {**result.to_wire(), "captchaDetected": False}

    async def get_captcha(self, params: dict[str, Any]) -> dict[str, Any]:
        p = GetCaptchaParams.model_validate(params)
        session = await self.captcha.get_captcha(url=p.url, profile_id=p.profile_id, timeout_ms=p.timeout)
        if session.state not in (CaptchaState.DETECTED, CaptchaState.AWAITING_SOLUTION):
            return {"captchaDetected": False, "state": session.state.value}
        return interrupt_payload(session)

    async def apply_captcha_solution(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ApplyCaptchaParams.model_validate(params)
        session = await self.captcha.apply(p.profile_id, p.solution, timeout_ms=p.timeout)
        return _apply_payload(session)

    async def _try_solver(self, page: BrowserPage, session: CaptchaSession) -> bool:
        if self.solver is None:
            return False
        try:
            solution = await self.solver.solve(session)
        except SolverError as exc:
            logger.warning("Solver failed for %s, handing off: %s", session.profile_id, exc)
            return False
        session = await self.captcha.apply_on(page, session, solution)
        return session.state == CaptchaState.RESOLVED

    def _interrupt(self, profile_id: str) -> dict[str, Any]:
        session = self.captcha.hand_out(profile_id)
        if session.state == CaptchaState.FAILED:
            # The solver's answer was rejected; let the caller try.
            session.state = CaptchaState.AWAITING_SOLUTION
        return interrupt_payload(session)

    # -- profiles ---------------------------------------------------------------

    async def create_profile(self, params: dict[str, Any]) -> dict[str, Any]:
        p = CreateProfileParams.model_validate(params)
        profile = await self.pool.create_profile(p.name, user_agent=p.user_agent, viewport=p.viewport, proxy=p.proxy)
        return profile.to_wire()

    async def list_profiles(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "profiles": [
                {**profile.to_wire(), "live": self.pool.is_live(profile.id)} for profile in self.pool.list()
            ]
        }

    async def delete_profile(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ProfileIdParams.model_validate(params)
        await self.pool.delete(p.profile_id, purge=True)
        self.captcha.reset(p.profile_id)
        return {"deleted": p.profile_id}


def _page_payload(page: Page) -> dict[str, Any]:
    payload = page.to_wire()
    payload.pop("html", None)
    return payload


def _apply_payload(session: CaptchaSession) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "resolved": session.state == CaptchaState.RESOLVED,
        "state": session.state.value,
    }
    if session.error:
        payload["error"] = session.error
    if session.state == CaptchaState.FAILED and session.solution is not None:
        payload["solution"] = session.solution.to_wire()
    return payload


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", ())) or "params"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)
