"""Timeout and error translation around browser operations."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from openbrowser.exceptions import ContextCanceledError, EngineTimeoutError

logger = logging.getLogger(__name__)

# Playwright messages raised when the page, context or browser went away.
_TARGET_CLOSED_MARKERS: tuple[str, ...] = (
    "Target closed",
    "Target page, context or browser has been closed",
    "Browser has been closed",
    "Browser closed",
    "Page closed",
    "Connection closed",
)


def is_target_closed(exc: BaseException) -> bool:
    message = str(exc)
    return any(marker in message for marker in _TARGET_CLOSED_MARKERS)


@asynccontextmanager
async def operation_guard(operation: str, timeout_ms: int) -> AsyncIterator[None]:
    """Bound the enclosed work by *timeout_ms* and normalize its failures.

    Raises:
        EngineTimeoutError: The deadline passed, or Playwright gave up waiting.
        ContextCanceledError: The page, context, or browser was closed.
    """
    try:
        async with asyncio.timeout(timeout_ms / 1000):
            yield
    except TimeoutError as exc:
        logger.warning("%s exceeded %dms", operation, timeout_ms)
        raise EngineTimeoutError(operation, timeout_ms) from exc
    except PlaywrightTimeout as exc:
        logger.warning("%s: browser wait timed out: %s", operation, exc)
        raise EngineTimeoutError(operation, timeout_ms) from exc
    except PlaywrightError as exc:
        if is_target_closed(exc):
            raise ContextCanceledError(f"{operation}: {exc}") from exc
        raise
