"""HTTP client for an external CAPTCHA solver service.

Used only when ``captcha.strategy = "solver"``.  The service receives the
challenge evidence and answers with a ``CaptchaSolution`` document::

    POST <solver_url>
    {"captchaType": "recaptcha_v2", "pageUrl": "...", "screenshot": "<base64>"}

    200 {"type": "image_selection", "coordinates": [[120, 340]], "confidence": 0.8}
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from openbrowser.models.captcha import CaptchaSession, CaptchaSolution

logger = logging.getLogger(__name__)


class SolverError(Exception):
    """The solver service could not produce a usable solution."""


class HttpCaptchaSolver:
    """Async client for a solver endpoint.

    Args:
        url: Solver endpoint.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport (tests).
    """

    def __init__(self, url: str, *, timeout: float = 60.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self._timeout = timeout
        self._transport = transport

    async def solve(self, session: CaptchaSession) -> CaptchaSolution:
        """Request a solution for the challenge recorded in *session*.

        Raises:
            SolverError: On transport failure, a non-2xx status, or a reply
                that is not a valid solution.
        """
        payload = {
            "captchaType": session.captcha_type,
            "pageUrl": session.page_url,
            "selector": session.selector,
        }
        wire = session.to_wire()
        if "screenshot" in wire:
            payload["screenshot"] = wire["screenshot"]

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as exc:
            raise SolverError(f"solver returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise SolverError(f"solver unreachable: {exc}") from exc
        except ValueError as exc:
            raise SolverError("solver returned invalid JSON") from exc

        try:
            solution = CaptchaSolution.model_validate(data)
        except ValidationError as exc:
            raise SolverError(f"solver returned an invalid solution: {exc}") from exc

        logger.info(
            "Solver proposed %s solution for %s (confidence=%s)",
            solution.type.value,
            session.captcha_type,
            solution.confidence,
        )
        return solution


def build_solver(url: str, timeout: float) -> HttpCaptchaSolver | None:
    """Solver for the configured endpoint, or ``None`` if none is configured."""
    if not url:
        logger.warning("captcha.strategy is 'solver' but captcha.solver_url is empty; using handoff")
        return None
    return HttpCaptchaSolver(url, timeout=timeout)
