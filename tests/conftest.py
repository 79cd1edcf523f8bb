"""OpenBrowser test configuration: shared fixtures for unit and integration tests."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from openbrowser.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Settings with profile storage under a temporary directory."""
    monkeypatch.setenv("OPENBROWSER_PROFILES__STORAGE_DIR", str(tmp_path / "profiles"))
    from openbrowser.settings.config import Settings

    return Settings()


# ---------------------------------------------------------------------------
# Mock Playwright objects
# ---------------------------------------------------------------------------


def make_page(url: str = "https://example.com/", html: str = "<html><head><title>Example</title></head><body></body></html>") -> MagicMock:
    """Return a mock async Playwright ``Page``.

    Coroutine methods are ``AsyncMock``; ``locator`` returns a locator whose
    ``count`` comes from ``page.counts`` (0 for unknown selectors).
    """
    page = MagicMock()
    page.url = url
    page.goto = AsyncMock(return_value=MagicMock(name="response"))
    page.content = AsyncMock(return_value=html)
    page.title = AsyncMock(return_value="Example")
    page.screenshot = AsyncMock(return_value=b"\x89PNG-bytes")
    page.evaluate = AsyncMock(return_value=None)
    page.inner_text = AsyncMock(return_value="")
    page.wait_for_selector = AsyncMock()
    page.wait_for_timeout = AsyncMock()
    page.click = AsyncMock()
    page.fill = AsyncMock()
    page.type = AsyncMock()
    page.press = AsyncMock()
    page.select_option = AsyncMock()
    page.close = AsyncMock()
    page.is_closed = MagicMock(return_value=False)
    page.frames = []
    page.keyboard = MagicMock()
    page.keyboard.press = AsyncMock()
    page.mouse = MagicMock()
    page.mouse.click = AsyncMock()
    page.mouse.wheel = AsyncMock()

    # Selector -> match count; locators are cached per selector so tests can
    # assert on the calls made through them.
    page.counts = {}
    page.locators = {}

    def locator_factory(selector: str) -> AsyncMock:
        if selector not in page.locators:
            loc = AsyncMock(name=f"locator({selector})")
            loc.first = loc
            loc.count.side_effect = lambda: page.counts.get(selector, 0)
            page.locators[selector] = loc
        return page.locators[selector]

    page.locator = MagicMock(side_effect=locator_factory)
    page.get_by_text = MagicMock(side_effect=lambda text: locator_factory(f"text={text}"))
    frame = MagicMock()
    frame.locator = MagicMock(side_effect=lambda selector: locator_factory(f"frame >> {selector}"))
    page.frame_locator = MagicMock(return_value=frame)
    return page


def make_context(page: MagicMock | None = None) -> MagicMock:
    """Return a mock ``BrowserContext`` whose ``new_page`` yields *page*."""
    context = MagicMock()
    context.new_page = AsyncMock(side_effect=lambda: page or make_page())
    context.close = AsyncMock()
    context.add_init_script = AsyncMock()
    context.set_default_timeout = MagicMock()
    context.on = MagicMock()
    context.pages = []
    return context


def make_browser(context_factory=None) -> MagicMock:
    """Return a mock ``Browser``; each ``new_context`` call builds a new context."""
    browser = MagicMock()
    browser.new_context = AsyncMock(side_effect=lambda **kwargs: (context_factory or make_context)())
    browser.close = AsyncMock()
    browser.is_connected = MagicMock(return_value=True)
    return browser


@pytest.fixture()
def mock_page() -> MagicMock:
    return make_page()


@pytest.fixture()
def mock_browser() -> MagicMock:
    return make_browser()


@pytest.fixture()
def page_factory():
    """Factory for mock pages: ``page_factory(url, html)``."""
    return make_page


@pytest.fixture()
def context_factory():
    return make_context


@pytest.fixture()
def browser_factory():
    return make_browser


# ---------------------------------------------------------------------------
# Pytest markers
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that exercise the HTTP surface end to end")
