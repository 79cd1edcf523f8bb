"""Scripted UI action interpreter.

Runs an ordered list of ``Action`` steps against a profile's primary page.
The first failing step halts the run.  Clicks and typing go through a
fallback chain because real-world pages routinely hide, cover, or re-render
their controls:

1. wait until the selector is visible, then act;
2. scroll it into view and act from a page script;
3. try attribute variants (``aria-label``, ``data-testid``, ``placeholder``,
   ``title``, ``alt``) built from the selector text;
4. (click only) hide likely overlays and dispatch a synthetic ``MouseEvent``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Awaitable, Callable
from urllib.parse import urljoin

from playwright.async_api import Error as PlaywrightError

from openbrowser.browser.captcha import detect_captcha
from openbrowser.browser.guard import is_target_closed, operation_guard
from openbrowser.browser.navigation import resilient_goto
from openbrowser.exceptions import ActionFailedError, ElementNotFoundError, NavigationError
from openbrowser.models.action import Action, ActionResult, ActionType, AutomationResult

if TYPE_CHECKING:
    from playwright.async_api import Page

    from openbrowser.browser.pool import ContextPool
    from openbrowser.settings.config import Settings

logger = logging.getLogger(__name__)

SUPPORTED_KEYS = frozenset(
    {"Enter", "Tab", "Escape", "Backspace", "Delete", "ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight"}
)

# Per-strategy budget so one stubborn strategy cannot eat the whole run.
_STRATEGY_TIMEOUT_MS = 5_000
_SCRIPT_CLICK_SETTLE_MS = 200
_DEFAULT_WAIT_SECONDS = 1.0

_OVERLAY_SELECTOR = '[style*="z-index: 9"], [style*="z-index: 10"], .modal-backdrop, .overlay'

_JS_SCROLL_CLICK = """(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    el.scrollIntoView({block: 'center'});
    el.click();
    return true;
}"""

_JS_SET_VALUE = """([selector, text]) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    el.scrollIntoView({block: 'center'});
    el.focus();
    el.value = text;
    el.dispatchEvent(new Event('input', {bubbles: true}));
    el.dispatchEvent(new Event('change', {bubbles: true}));
    return true;
}"""

_JS_FORCE_CLICK = """([selector, overlays]) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    document.querySelectorAll(overlays).forEach((o) => { o.style.display = 'none'; });
    el.dispatchEvent(new MouseEvent('click', {view: window, bubbles: true, cancelable: true}));
    return true;
}"""

_PLAIN_NUMBER = re.compile(r"^\d+(?:\.\d+)?$")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {"ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 1e-3, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(text: str) -> float:
    """Seconds for a wait duration.

    A bare number is milliseconds (``"500"``).  Otherwise a sequence of
    number+unit parts (``"2s"``, ``"1.5s"``, ``"250ms"``, ``"1m30s"``).
    Anything unparsable waits one second.
    """
    text = text.strip()
    if _PLAIN_NUMBER.match(text):
        return float(text) / 1000
    parts = _DURATION_PART.findall(text)
    if not parts or "".join(n + u for n, u in parts) != text:
        return _DEFAULT_WAIT_SECONDS
    return sum(float(n) * _UNIT_SECONDS[u] for n, u in parts)


def _css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def selector_variants(text: str) -> list[str]:
    """Attribute-based selectors for an element described by *text*."""
    quoted = _css_string(text)
    return [
        f'[aria-label*="{quoted}"]',
        f'[data-testid="{quoted}"]',
        f'[placeholder*="{quoted}"]',
        f'[title*="{quoted}"]',
        f'[alt*="{quoted}"]',
    ]


Strategy = tuple[str, Callable[[], Awaitable[bool]]]


async def run_strategies(page: Page, action: str, selector: str, strategies: list[Strategy]) -> str:
    """Try *strategies* in order and return the name of the first that worked.

    A strategy signals failure by returning ``False`` or raising a Playwright
    error.  Loss of the page itself is never treated as a strategy failure.

    Raises:
        ElementNotFoundError: Every strategy failed and *selector* matches
            nothing on the page.
        ActionFailedError: The element exists but every strategy failed.
    """
    last_error: Exception | None = None
    for name, attempt in strategies:
        try:
            if await attempt():
                logger.debug("%s %s succeeded via %s", action, selector, name)
                return name
        except PlaywrightError as exc:
            if is_target_closed(exc):
                raise
            last_error = exc
            logger.debug("%s %s: strategy %s failed: %s", action, selector, name, exc)

    if not await _present(page, selector):
        raise ElementNotFoundError(f"failed to {action} element: {selector} (not found)")
    detail = f": {_first_line(last_error)}" if last_error else ""
    raise ActionFailedError(f"failed to {action} element: {selector}{detail}")


async def _present(page: Page, selector: str) -> bool:
    try:
        return await page.locator(selector).count() > 0
    except PlaywrightError as exc:
        if is_target_closed(exc):
            raise
        return False


def _first_line(exc: Exception) -> str:
    return str(exc).strip().splitlines()[0] if str(exc).strip() else type(exc).__name__


async def robust_click(page: Page, selector: str) -> str:
    async def standard() -> bool:
        locator = page.locator(selector).first
        await locator.wait_for(state="visible", timeout=_STRATEGY_TIMEOUT_MS)
        await locator.click(timeout=_STRATEGY_TIMEOUT_MS)
        return True

    async def script() -> bool:
        if not await page.evaluate(_JS_SCROLL_CLICK, selector):
            return False
        await page.wait_for_timeout(_SCRIPT_CLICK_SETTLE_MS)
        return True

    def variant(sel: str) -> Callable[[], Awaitable[bool]]:
        async def attempt() -> bool:
            locator = page.locator(sel).first
            if await page.locator(sel).count() == 0:
                return False
            await locator.click(timeout=_STRATEGY_TIMEOUT_MS)
            return True

        return attempt

    async def forced() -> bool:
        return bool(await page.evaluate(_JS_FORCE_CLICK, [selector, _OVERLAY_SELECTOR]))

    strategies: list[Strategy] = [("standard", standard), ("script", script)]
    strategies += [(f"variant:{sel}", variant(sel)) for sel in selector_variants(selector)]
    strategies.append(("forced", forced))
    return await run_strategies(page, "click", selector, strategies)


async def robust_type(page: Page, selector: str, text: str) -> str:
    async def standard() -> bool:
        locator = page.locator(selector).first
        await locator.wait_for(state="visible", timeout=_STRATEGY_TIMEOUT_MS)
        await locator.fill("", timeout=_STRATEGY_TIMEOUT_MS)
        await locator.type(text, timeout=_STRATEGY_TIMEOUT_MS)
        return True

    async def script() -> bool:
        return bool(await page.evaluate(_JS_SET_VALUE, [selector, text]))

    def variant(sel: str) -> Callable[[], Awaitable[bool]]:
        async def attempt() -> bool:
            if await page.locator(sel).count() == 0:
                return False
            await page.locator(sel).first.fill(text, timeout=_STRATEGY_TIMEOUT_MS)
            return True

        return attempt

    strategies: list[Strategy] = [("standard", standard), ("script", script)]
    strategies += [(f"variant:{sel}", variant(sel)) for sel in selector_variants(selector)]
    return await run_strategies(page, "type into", selector, strategies)


class ActionInterpreter:
    """Executes action lists against a profile's primary page."""

    def __init__(self, pool: ContextPool, settings: Settings | None = None) -> None:
        if settings is None:
            from openbrowser.settings import get_settings

            settings = get_settings()
        self._pool = pool
        self._default_timeout_ms = settings.browser.automation_timeout_ms
        self._nav_timeout_ms = settings.browser.timeout_ms

    async def automate(
        self,
        actions: list[Action],
        *,
        url: str | None = None,
        profile_id: str = "automation",
        timeout_ms: int | None = None,
    ) -> AutomationResult:
        """Navigate (optionally) and run *actions* in order.

        A CAPTCHA found right after the initial navigation is recorded as an
        advisory ``captcha_check`` entry; it does not stop the run.
        """
        timeout_ms = timeout_ms or self._default_timeout_ms
        logger.info("automate (profile=%s, url=%s, %d actions)", profile_id, url, len(actions))
        async with operation_guard("automate", timeout_ms):
            async with self._pool.lease(profile_id) as handle:
                page = await handle.page()
                result = AutomationResult()
                if url:
                    await resilient_goto(page, url, timeout_ms=min(timeout_ms, self._nav_timeout_ms))
                    result.final_url = page.url
                    detection = await detect_captcha(page)
                    if detection.detected:
                        result.captcha = {
                            "type": detection.captcha_type.value,
                            "selector": detection.element_selector,
                            "pageUrl": detection.page_url,
                        }
                        result.actions.append(
                            ActionResult(
                                type="captcha_check",
                                message=f"CAPTCHA detected ({detection.captcha_type.value}); continuing",
                            )
                        )
                return await self.run(page, actions, result)

    async def run(self, page: Page, actions: list[Action], result: AutomationResult | None = None) -> AutomationResult:
        """Execute *actions* on an already leased page."""
        result = result or AutomationResult()
        for action in actions:
            action_result = await self.execute(page, action)
            result.actions.append(action_result)
            if not action_result.success:
                result.success = False
                result.error = action_result.error
                logger.info("automate halted at %s: %s", action.type.value, action_result.error)
                break

        if result.success:
            result.final_url = page.url
            try:
                result.final_content = await page.inner_text("body", timeout=_STRATEGY_TIMEOUT_MS)
            except PlaywrightError as exc:
                if is_target_closed(exc):
                    raise
                logger.debug("Could not read final content: %s", exc)
        return result

    async def execute(self, page: Page, action: Action) -> ActionResult:
        """Run one action; failures are reported in the result, not raised."""
        result = ActionResult(type=action.type.value)
        try:
            await self._dispatch(page, action, result)
        except (ActionFailedError, NavigationError, PlaywrightError) as exc:
            if isinstance(exc, PlaywrightError) and is_target_closed(exc):
                raise
            result.success = False
            result.error = _first_line(exc)
        return result

    async def _dispatch(self, page: Page, action: Action, result: ActionResult) -> None:
        kind = action.type
        if kind == ActionType.CLICK:
            _require_selector(action)
            result.strategy = await robust_click(page, action.selector)
            result.message = f"Clicked element: {action.selector}"

        elif kind == ActionType.TYPE:
            _require_selector(action)
            result.strategy = await robust_type(page, action.selector, action.text)
            result.message = f"Typed text into: {action.selector}"

        elif kind == ActionType.WAIT:
            if action.selector:
                await page.locator(action.selector).first.wait_for(state="visible")
                result.message = f"Waited for element: {action.selector}"
            else:
                seconds = parse_duration(action.text) if action.text else _DEFAULT_WAIT_SECONDS
                await asyncio.sleep(seconds)
                result.message = f"Waited for {seconds:g}s"

        elif kind == ActionType.SCROLL:
            if action.selector:
                await page.locator(action.selector).first.scroll_into_view_if_needed(timeout=_STRATEGY_TIMEOUT_MS)
                result.message = f"Scrolled to element: {action.selector}"
            else:
                await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
                result.message = "Scrolled to bottom"

        elif kind == ActionType.SCREENSHOT:
            result.screenshot = await page.screenshot(full_page=True, type="png")
            result.message = "Captured screenshot"

        elif kind == ActionType.PRESS:
            key = action.key or action.text
            if key not in SUPPORTED_KEYS:
                raise ActionFailedError(f"unknown key: {key}")
            await page.keyboard.press(key)
            result.message = f"Pressed {key}"

        elif kind == ActionType.SELECT:
            _require_selector(action)
            locator = page.locator(action.selector).first
            try:
                await locator.select_option(value=action.text, timeout=_STRATEGY_TIMEOUT_MS)
                result.strategy = "value"
            except PlaywrightError as exc:
                if is_target_closed(exc):
                    raise
                await locator.select_option(label=action.text, timeout=_STRATEGY_TIMEOUT_MS)
                result.strategy = "label"
            result.message = f"Selected '{action.text}' in {action.selector}"

        elif kind == ActionType.NAVIGATE:
            target = action.text.strip()
            if not target:
                raise ActionFailedError("navigate requires a URL in 'text'")
            if not target.startswith(("http://", "https://")):
                target = urljoin(page.url, target)
            await resilient_goto(page, target, timeout_ms=self._nav_timeout_ms)
            result.message = f"Navigated to {target}"


def _require_selector(action: Action) -> None:
    if not action.selector:
        raise ActionFailedError(f"{action.type.value} requires a selector")
