"""Unit tests for openbrowser.engine: method dispatch and payload shapes."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from openbrowser import __version__
from openbrowser.browser.pool import ContextPool
from openbrowser.browser.solver import SolverError
from openbrowser.engine import Engine
from openbrowser.exceptions import CaptchaStateError, InvalidRequestError, OpenBrowserError
from openbrowser.models.captcha import CaptchaSolution, SolutionType

HCAPTCHA = 'iframe[src*="hcaptcha"]'
HTML = "<html><head><title>Shop</title></head><body><h1>Welcome to the shop</h1><a href='/a'>A</a></body></html>"


@pytest.fixture()
def page(page_factory):
    return page_factory("https://shop.example/", HTML)


@pytest.fixture()
async def engine(settings, page, browser_factory, context_factory):
    pool = ContextPool(settings, browser=browser_factory(lambda: context_factory(page)))
    eng = Engine(settings, pool=pool)
    await eng.start()
    yield eng
    await eng.close()


class TestDispatch:
    @pytest.mark.anyio
    async def test_method_table(self, engine) -> None:
        assert "scrape_pro" in engine.methods
        assert len(engine.methods) == 14

    @pytest.mark.anyio
    async def test_unknown_method(self, engine) -> None:
        with pytest.raises(InvalidRequestError, match="Unknown method: search"):
            await engine.call("search", {})

    @pytest.mark.anyio
    async def test_invalid_params(self, engine) -> None:
        with pytest.raises(InvalidRequestError, match="url"):
            await engine.call("scrape", {"format": "markdown"})

    @pytest.mark.anyio
    async def test_invalid_enum_value(self, engine) -> None:
        with pytest.raises(InvalidRequestError):
            await engine.call("scrape", {"url": "https://shop.example/", "format": "pdf"})

    @pytest.mark.anyio
    async def test_browser_error_classified(self, engine, page) -> None:
        page.title = AsyncMock(side_effect=PlaywrightError("boom\nstack"))
        with pytest.raises(OpenBrowserError, match="scrape failed: boom"):
            await engine.call("scrape", {"url": "https://shop.example/"})

    @pytest.mark.anyio
    async def test_test_method(self, engine) -> None:
        assert await engine.call("test") == {"message": "Browser server is working!", "version": __version__}


class TestPagePayloads:
    @pytest.mark.anyio
    async def test_scrape(self, engine) -> None:
        data = await engine.call("scrape", {"url": "https://shop.example/", "format": "text", "profileId": "shop"})
        assert "html" not in data
        assert data["url"] == "https://shop.example/"
        assert "Welcome to the shop" in data["content"]
        assert data["links"] == [{"url": "/a", "text": "A"}]

    @pytest.mark.anyio
    async def test_crawl_preview(self, engine, settings) -> None:
        settings.crawl.content_preview_chars = 10
        data = await engine.call("crawl", {"startUrl": "https://shop.example/", "maxPages": 1})
        assert data["count"] == 1
        assert data["pages"][0] == {"url": "https://shop.example/", "title": "Example", "depth": 0, "content": HTML[:10]}

    @pytest.mark.anyio
    async def test_extract_from_html(self, engine) -> None:
        data = await engine.call("extract", {"html": "<h1>Hi</h1>", "schema": {"t": "h1"}})
        assert data == {"data": {"t": "Hi"}}

    @pytest.mark.anyio
    async def test_extract_malformed_selector_is_invalid_request(self, engine) -> None:
        with pytest.raises(InvalidRequestError, match="invalid selector"):
            await engine.call("extract", {"html": "<h1>Hi</h1>", "schema": {"t": "h1[["}})

    @pytest.mark.anyio
    async def test_extract_legacy_selectors(self, engine) -> None:
        data = await engine.call("extract", {"url": "https://shop.example/", "selectors": {"t": "h1"}})
        assert data == {"data": {"t": "Welcome to the shop"}}

    @pytest.mark.anyio
    async def test_screenshot(self, engine, page) -> None:
        page.evaluate = AsyncMock(return_value=[800, 600])
        data = await engine.call("screenshot", {"url": "https://shop.example/"})
        assert data["width"] == 800
        assert data["size"] == len(b"\x89PNG-bytes")
        assert isinstance(data["screenshot"], str)

    @pytest.mark.anyio
    async def test_execute_script(self, engine, page) -> None:
        page.evaluate = AsyncMock(return_value="[1, 2]")
        data = await engine.call("execute_script", {"url": "https://shop.example/", "script": "() => '[1, 2]'"})
        assert data == {"result": [1, 2]}

    @pytest.mark.anyio
    async def test_automate(self, engine) -> None:
        data = await engine.call("automate", {"actions": [{"type": "press", "key": "Enter"}]})
        assert data["success"] is True
        assert data["actions"][0]["type"] == "press"


class TestCaptchaFlow:
    @pytest.mark.anyio
    async def test_scrape_pro_clean(self, engine) -> None:
        data = await engine.call("scrape_pro", {"url": "https://shop.example/"})
        assert data["captchaDetected"] is False
        assert data["title"] == "Example"

    @pytest.mark.anyio
    async def test_scrape_pro_interrupt_then_apply(self, engine, page) -> None:
        page.counts[HCAPTCHA] = 1
        data = await engine.call("scrape_pro", {"url": "https://shop.example/", "profileId": "shop"})

        assert data["captchaDetected"] is True
        assert data["captcha"]["state"] == "awaiting_solution"
        assert data["captcha"]["captchaType"] == "hcaptcha"
        assert "screenshot" in data

        pending = await engine.call("get_captcha", {"profileId": "shop"})
        assert pending["captchaDetected"] is True

        applied = await engine.call(
            "apply_captcha_solution", {"profileId": "shop", "solution": {"type": "text", "value": "abc"}}
        )
        assert applied == {"resolved": True, "state": "resolved"}

    @pytest.mark.anyio
    async def test_failed_apply_echoes_solution(self, engine, page) -> None:
        page.counts[HCAPTCHA] = 1
        await engine.call("scrape_pro", {"url": "https://shop.example/", "profileId": "shop"})

        applied = await engine.call("apply_captcha_solution", {"profileId": "shop", "solution": {"type": "click"}})
        assert applied["resolved"] is False
        assert applied["state"] == "failed"
        assert applied["solution"]["type"] == "click"
        assert applied["error"]

    @pytest.mark.anyio
    async def test_apply_without_challenge(self, engine) -> None:
        with pytest.raises(CaptchaStateError):
            await engine.call("apply_captcha_solution", {"profileId": "shop", "solution": {"type": "text", "value": "a"}})

    @pytest.mark.anyio
    async def test_get_captcha_clean(self, engine) -> None:
        data = await engine.call("get_captcha", {"url": "https://shop.example/"})
        assert data == {"captchaDetected": False, "state": "none"}

    @pytest.mark.anyio
    async def test_solver_strategy_solves_inline(self, engine, page) -> None:
        page.counts[HCAPTCHA] = 1
        engine.solver = MagicMock()
        engine.solver.solve = AsyncMock(return_value=CaptchaSolution(type=SolutionType.TEXT, value="abc"))

        data = await engine.call("scrape_pro", {"url": "https://shop.example/"})
        assert data["captchaDetected"] is False
        assert data["captchaSolved"] is True
        assert page.goto.await_count == 2

    @pytest.mark.anyio
    async def test_solver_failure_hands_off(self, engine, page) -> None:
        page.counts[HCAPTCHA] = 1
        engine.solver = MagicMock()
        engine.solver.solve = AsyncMock(side_effect=SolverError("down"))

        data = await engine.call("scrape_pro", {"url": "https://shop.example/"})
        assert data["captchaDetected"] is True

    @pytest.mark.anyio
    async def test_automate_pro_interrupts_before_actions(self, engine, page) -> None:
        page.counts[HCAPTCHA] = 1
        data = await engine.call(
            "automate_pro", {"url": "https://shop.example/", "actions": [{"type": "click", "selector": "#buy"}]}
        )
        assert data["captchaDetected"] is True
        assert data["actions"] == []
        assert "#buy" not in page.locators

    @pytest.mark.anyio
    async def test_automate_pro_clean(self, engine) -> None:
        data = await engine.call("automate_pro", {"actions": [{"type": "press", "key": "Tab"}]})
        assert data["captchaDetected"] is False
        assert data["success"] is True


class TestProfiles:
    @pytest.mark.anyio
    async def test_create_list_delete(self, engine) -> None:
        created = await engine.call("create_profile", {"name": "EU Shop", "userAgent": "UA/1"})
        assert created["id"] == "EU-Shop"
        assert created["userAgent"] == "UA/1"

        await engine.call("scrape", {"url": "https://shop.example/", "profileId": "EU-Shop"})
        listed = await engine.call("list_profiles")
        entry = next(p for p in listed["profiles"] if p["id"] == "EU-Shop")
        assert entry["live"] is True

        assert await engine.call("delete_profile", {"profileId": "EU-Shop"}) == {"deleted": "EU-Shop"}
        listed = await engine.call("list_profiles")
        assert all(p["id"] != "EU-Shop" for p in listed["profiles"])

    @pytest.mark.anyio
    async def test_delete_unknown(self, engine) -> None:
        from openbrowser.exceptions import ProfileNotFoundError

        with pytest.raises(ProfileNotFoundError):
            await engine.call("delete_profile", {"profileId": "ghost"})
