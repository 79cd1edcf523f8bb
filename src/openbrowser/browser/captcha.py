"""CAPTCHA detection and the caller-driven solve handshake.

Detection scans the current document for known challenge-provider
signatures.  A hit is not an error: the operation that found it returns an
interrupt payload (``captchaDetected: true``) and the profile's handshake
moves through::

    none -> detected -> awaiting_solution -> applying -> resolved | failed

An external solver (human, vision model, or the HTTP solver in
:mod:`openbrowser.browser.solver`) looks at the screenshot and submits a
``CaptchaSolution``; :meth:`CaptchaHandshake.apply` dispatches it against the
still-open page.  The engine never retries the interrupted operation itself
under the ``handoff`` strategy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError

from openbrowser.browser.guard import is_target_closed, operation_guard
from openbrowser.browser.navigation import resilient_goto
from openbrowser.exceptions import ActionFailedError, CaptchaStateError
from openbrowser.models.captcha import (
    APPLICABLE_STATES,
    CaptchaSession,
    CaptchaSolution,
    CaptchaState,
    SolutionType,
)

if TYPE_CHECKING:
    from playwright.async_api import Page

    from openbrowser.browser.pool import ContextPool
    from openbrowser.settings.config import Settings

logger = logging.getLogger(__name__)


class CaptchaType(str, Enum):
    """Known CAPTCHA provider types."""

    RECAPTCHA_V2 = "recaptcha_v2"
    RECAPTCHA_V3 = "recaptcha_v3"
    HCAPTCHA = "hcaptcha"
    CLOUDFLARE_TURNSTILE = "cloudflare_turnstile"
    CLOUDFLARE_CHALLENGE = "cloudflare_challenge"
    FUNCAPTCHA = "funcaptcha"
    TEXT_CAPTCHA = "text_captcha"
    UNKNOWN = "unknown"


@dataclass
class CaptchaDetection:
    """Result of scanning a page for CAPTCHAs."""

    detected: bool = False
    captcha_type: CaptchaType = CaptchaType.UNKNOWN
    element_selector: str = ""
    page_url: str = ""


# Signatures: (CSS selector, CaptchaType), most specific first.
_CAPTCHA_SIGNATURES: list[tuple[str, CaptchaType]] = [
    ('iframe[src*="google.com/recaptcha"]', CaptchaType.RECAPTCHA_V2),
    ('iframe[src*="recaptcha"]', CaptchaType.RECAPTCHA_V2),
    (".g-recaptcha", CaptchaType.RECAPTCHA_V2),
    ("#recaptcha", CaptchaType.RECAPTCHA_V2),
    ('script[src*="recaptcha/api.js?render="]', CaptchaType.RECAPTCHA_V3),
    ('iframe[src*="hcaptcha"]', CaptchaType.HCAPTCHA),
    (".h-captcha", CaptchaType.HCAPTCHA),
    ('iframe[src*="challenges.cloudflare.com"]', CaptchaType.CLOUDFLARE_TURNSTILE),
    (".cf-turnstile", CaptchaType.CLOUDFLARE_TURNSTILE),
    (".cf-challenge-form", CaptchaType.CLOUDFLARE_CHALLENGE),
    ("#challenge-form", CaptchaType.CLOUDFLARE_CHALLENGE),
    ('iframe[src*="funcaptcha.com"]', CaptchaType.FUNCAPTCHA),
    ("#funcaptcha", CaptchaType.FUNCAPTCHA),
    ("img[alt*='captcha' i]", CaptchaType.TEXT_CAPTCHA),
    ("img[src*='captcha' i]", CaptchaType.TEXT_CAPTCHA),
    ("[class*='captcha' i]", CaptchaType.UNKNOWN),
    ("[id*='captcha' i]", CaptchaType.UNKNOWN),
]

_CAPTCHA_PHRASES: tuple[str, ...] = (
    "verify you are human",
    "prove you're not a robot",
    "complete the security check",
    "i'm not a robot",
    "checking your browser",
)

_TEXT_INPUTS = "input[type='text']:visible, input:not([type]):visible"
_FOCUSED_INPUT = "input:focus, textarea:focus"
_RECAPTCHA_FRAME = "iframe[src*='recaptcha']"
_CHECKBOXES = ".recaptcha-checkbox, #recaptcha-anchor"
_VERIFY_CONTROLS = "button[type='submit'], .verify-button, #verify, #recaptcha-verify-button"

_CLICK_PAUSE_MS = 500
_CHECKBOX_SETTLE_MS = 2000
_APPLY_STEP_TIMEOUT_MS = 5000


async def detect_captcha(page: Page) -> CaptchaDetection:
    """Scan the current page for CAPTCHA elements.

    Args:
        page: Playwright ``Page`` object.

    Returns:
        A ``CaptchaDetection`` with details if a CAPTCHA is found.
    """
    detection = CaptchaDetection(page_url=page.url)

    for selector, captcha_type in _CAPTCHA_SIGNATURES:
        try:
            if await page.locator(selector).count() > 0:
                detection.detected = True
                detection.captcha_type = captcha_type
                detection.element_selector = selector
                logger.info("CAPTCHA detected: %s (%s) on %s", captcha_type.value, selector, page.url)
                return detection
        except PlaywrightError as exc:
            if is_target_closed(exc):
                raise
            continue

    # Fallback: check page text for common CAPTCHA phrases
    try:
        body_text = (await page.inner_text("body", timeout=_APPLY_STEP_TIMEOUT_MS)).lower()
    except PlaywrightError as exc:
        if is_target_closed(exc):
            raise
        return detection
    for phrase in _CAPTCHA_PHRASES:
        if phrase in body_text:
            detection.detected = True
            logger.info("CAPTCHA phrase detected: '%s' on %s", phrase, page.url)
            return detection

    return detection


def interrupt_payload(session: CaptchaSession) -> dict[str, Any]:
    """Success-response payload telling the caller a solution is needed.

    The screenshot, when captured, is lifted to a top-level ``screenshot``
    key (base64) so callers can forward it to a solver directly.
    """
    captcha = session.to_wire()
    payload: dict[str, Any] = {
        "captchaDetected": True,
        "captcha": captcha,
        "message": "CAPTCHA detected. Submit a solution with apply_captcha_solution.",
    }
    if "screenshot" in captcha:
        payload["screenshot"] = captcha.pop("screenshot")
    return payload


class CaptchaHandshake:
    """Per-profile CAPTCHA state machine."""

    def __init__(self, pool: ContextPool, settings: Settings | None = None) -> None:
        if settings is None:
            from openbrowser.settings import get_settings

            settings = get_settings()
        self._pool = pool
        self._screenshot_on_detect = settings.captcha.screenshot_on_detect
        self._default_timeout_ms = settings.browser.timeout_ms
        self._sessions: dict[str, CaptchaSession] = {}

    def session(self, profile_id: str) -> CaptchaSession:
        return self._sessions.get(profile_id) or CaptchaSession(profile_id=profile_id)

    def reset(self, profile_id: str) -> None:
        self._sessions.pop(profile_id, None)

    async def inspect(self, page: Page, profile_id: str) -> CaptchaSession:
        """Run detection on *page* and record the outcome for *profile_id*.

        A hit captures a full-page screenshot and moves the profile to
        ``detected``.  A miss leaves any pending challenge untouched.
        """
        detection = await detect_captcha(page)
        if not detection.detected:
            return self.session(profile_id)

        screenshot = None
        if self._screenshot_on_detect:
            try:
                screenshot = await page.screenshot(full_page=True, type="png")
            except PlaywrightError as exc:
                if is_target_closed(exc):
                    raise
                logger.warning("Failed to capture CAPTCHA screenshot: %s", exc)

        session = CaptchaSession(
            profile_id=profile_id,
            state=CaptchaState.DETECTED,
            captcha_type=detection.captcha_type.value,
            selector=detection.element_selector,
            page_url=detection.page_url,
            screenshot=screenshot,
        )
        self._sessions[profile_id] = session
        return session

    def hand_out(self, profile_id: str) -> CaptchaSession:
        """Mark the evidence as delivered to a solver."""
        session = self.session(profile_id)
        if session.state == CaptchaState.DETECTED:
            session.state = CaptchaState.AWAITING_SOLUTION
        return session

    async def get_captcha(
        self,
        *,
        url: str | None = None,
        profile_id: str = "default",
        timeout_ms: int | None = None,
    ) -> CaptchaSession:
        """Detection result and screenshot for the profile's current page.

        Navigates to *url* first when given.
        """
        timeout_ms = timeout_ms or self._default_timeout_ms
        async with operation_guard("get_captcha", timeout_ms):
            async with self._pool.lease(profile_id) as handle:
                page = await handle.page()
                if url:
                    await resilient_goto(page, url, timeout_ms=timeout_ms)
                    # New document: any earlier challenge no longer applies.
                    self.reset(profile_id)
                elif self.session(profile_id).state == CaptchaState.AWAITING_SOLUTION:
                    return self.session(profile_id)
                await self.inspect(page, profile_id)
        return self.hand_out(profile_id)

    async def apply(
        self,
        profile_id: str,
        solution: CaptchaSolution,
        *,
        timeout_ms: int | None = None,
    ) -> CaptchaSession:
        """Apply *solution* to the pending challenge of *profile_id*.

        Raises:
            CaptchaStateError: If no challenge is pending for the profile.
        """
        self._pending(profile_id)
        timeout_ms = timeout_ms or self._default_timeout_ms
        async with operation_guard("apply_captcha_solution", timeout_ms):
            async with self._pool.lease(profile_id) as handle:
                # Re-check under the lease: an earlier apply may have settled it.
                session = self._pending(profile_id)
                page = await handle.page()
                return await self.apply_on(page, session, solution)

    def _pending(self, profile_id: str) -> CaptchaSession:
        session = self.session(profile_id)
        if session.state not in APPLICABLE_STATES:
            raise CaptchaStateError(
                f"no CAPTCHA awaiting a solution for profile {profile_id} (state={session.state.value})"
            )
        return session

    async def apply_on(self, page: Page, session: CaptchaSession, solution: CaptchaSolution) -> CaptchaSession:
        """Dispatch *solution* on an already leased page and settle the state."""
        session.state = CaptchaState.APPLYING
        session.solution = solution
        self._sessions[session.profile_id] = session
        try:
            await apply_solution(page, solution)
        except (ActionFailedError, PlaywrightError) as exc:
            if isinstance(exc, PlaywrightError) and is_target_closed(exc):
                session.state = CaptchaState.FAILED
                raise
            session.state = CaptchaState.FAILED
            session.error = str(exc)
            logger.warning("CAPTCHA solution (%s) failed for %s: %s", solution.type.value, session.profile_id, exc)
            return session

        session.state = CaptchaState.RESOLVED
        session.error = ""
        logger.info("CAPTCHA solution (%s) applied for %s", solution.type.value, session.profile_id)
        return session


# ---------------------------------------------------------------------------
# Solution dispatch
# ---------------------------------------------------------------------------


async def apply_solution(page: Page, solution: CaptchaSolution) -> None:
    """Perform the page interactions a solution describes.

    Raises:
        ActionFailedError: If the solution cannot be applied to this page.
    """
    if solution.type == SolutionType.TEXT:
        await _apply_text(page, solution)
    elif solution.type in (SolutionType.RECAPTCHA_V2, SolutionType.CHECKBOX):
        await _apply_checkbox(page, solution)
    else:
        await _apply_clicks(page, solution)


async def _apply_text(page: Page, solution: CaptchaSolution) -> None:
    if not solution.value:
        raise ActionFailedError("text solution has no value")

    target = page.locator(_FOCUSED_INPUT).first
    if await page.locator(_FOCUSED_INPUT).count() == 0:
        target = page.locator(_TEXT_INPUTS).first
    await target.fill(solution.value, timeout=_APPLY_STEP_TIMEOUT_MS)

    submitted = await target.evaluate(
        """(el) => {
            const form = el.form || el.closest('form');
            if (!form) return false;
            if (form.requestSubmit) { form.requestSubmit(); } else { form.submit(); }
            return true;
        }"""
    )
    if not submitted:
        await target.press("Enter")


async def _apply_checkbox(page: Page, solution: CaptchaSolution) -> None:
    frame_checkbox = page.frame_locator(_RECAPTCHA_FRAME).locator(_CHECKBOXES).first
    try:
        await frame_checkbox.click(timeout=_APPLY_STEP_TIMEOUT_MS)
    except PlaywrightError as exc:
        if is_target_closed(exc):
            raise
        if await page.locator(_CHECKBOXES).count() > 0:
            await page.locator(_CHECKBOXES).first.click(timeout=_APPLY_STEP_TIMEOUT_MS)
        elif solution.coordinates:
            await _click_coordinates(page, solution.coordinates)
        else:
            raise ActionFailedError("CAPTCHA checkbox not found and no coordinates supplied") from exc
    await page.wait_for_timeout(_CHECKBOX_SETTLE_MS)


async def _apply_clicks(page: Page, solution: CaptchaSolution) -> None:
    if not solution.coordinates and not solution.selections:
        raise ActionFailedError(f"{solution.type.value} solution has no coordinates or selections")

    await _click_coordinates(page, solution.coordinates)
    for text in solution.selections:
        await page.get_by_text(text).first.click(timeout=_APPLY_STEP_TIMEOUT_MS)
        await page.wait_for_timeout(_CLICK_PAUSE_MS)

    verify = page.locator(_VERIFY_CONTROLS)
    if await verify.count() > 0:
        await verify.first.click(timeout=_APPLY_STEP_TIMEOUT_MS)
    else:
        logger.debug("No verify control found after applying %s solution", solution.type.value)


async def _click_coordinates(page: Page, coordinates: list[list[float]]) -> None:
    for x, y, *_ in coordinates:
        await page.mouse.click(x, y)
        await page.wait_for_timeout(_CLICK_PAUSE_MS)
