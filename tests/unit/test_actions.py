"""Unit tests for openbrowser.browser.actions: fallback chains and the interpreter."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from openbrowser.browser.actions import (
    ActionInterpreter,
    parse_duration,
    robust_click,
    robust_type,
    selector_variants,
)
from openbrowser.browser.pool import ContextPool
from openbrowser.exceptions import ActionFailedError, ElementNotFoundError
from openbrowser.models.action import Action, ActionType

RECAPTCHA = 'iframe[src*="google.com/recaptcha"]'


def _block_standard(page, selector: str) -> None:
    """Make the visible-wait strategy time out for *selector*."""
    page.locator(selector).wait_for.side_effect = PlaywrightTimeout("waiting for selector to be visible")


class TestParseDuration:
    @pytest.mark.parametrize(
        ("text", "seconds"),
        [("500", 0.5), ("2s", 2.0), ("1.5s", 1.5), ("250ms", 0.25), ("1m30s", 90.0), ("bogus", 1.0), ("nan", 1.0)],
    )
    def test_formats(self, text: str, seconds: float) -> None:
        assert parse_duration(text) == pytest.approx(seconds)


class TestSelectorVariants:
    def test_quotes_escaped(self) -> None:
        variants = selector_variants('Say "hi"')
        assert variants[0] == '[aria-label*="Say \\"hi\\""]'
        assert len(variants) == 5


class TestRobustClick:
    """Click fallback chain: standard -> script -> variants -> forced."""

    @pytest.mark.anyio
    async def test_standard_first(self, mock_page) -> None:
        assert await robust_click(mock_page, "#buy") == "standard"
        mock_page.locator("#buy").click.assert_awaited_once()
        mock_page.evaluate.assert_not_awaited()

    @pytest.mark.anyio
    async def test_script_when_hidden(self, mock_page) -> None:
        _block_standard(mock_page, "#buy")
        mock_page.evaluate = AsyncMock(return_value=True)

        assert await robust_click(mock_page, "#buy") == "script"
        mock_page.wait_for_timeout.assert_awaited_once_with(200)

    @pytest.mark.anyio
    async def test_attribute_variant(self, mock_page) -> None:
        _block_standard(mock_page, "Buy now")
        mock_page.counts['[data-testid="Buy now"]'] = 1

        assert await robust_click(mock_page, "Buy now") == 'variant:[data-testid="Buy now"]'
        mock_page.locator('[data-testid="Buy now"]').click.assert_awaited_once()

    @pytest.mark.anyio
    async def test_forced_click_last(self, mock_page) -> None:
        _block_standard(mock_page, "#buy")
        mock_page.evaluate = AsyncMock(side_effect=[False, True])

        assert await robust_click(mock_page, "#buy") == "forced"

    @pytest.mark.anyio
    async def test_missing_element(self, mock_page) -> None:
        _block_standard(mock_page, "#ghost")
        with pytest.raises(ElementNotFoundError, match="#ghost"):
            await robust_click(mock_page, "#ghost")

    @pytest.mark.anyio
    async def test_present_but_unclickable(self, mock_page) -> None:
        _block_standard(mock_page, "#stuck")
        mock_page.counts["#stuck"] = 1
        with pytest.raises(ActionFailedError) as exc_info:
            await robust_click(mock_page, "#stuck")
        assert not isinstance(exc_info.value, ElementNotFoundError)

    @pytest.mark.anyio
    async def test_closed_page_is_not_a_strategy_failure(self, mock_page) -> None:
        mock_page.locator("#buy").wait_for.side_effect = PlaywrightError("Target closed")
        with pytest.raises(PlaywrightError):
            await robust_click(mock_page, "#buy")
        mock_page.evaluate.assert_not_awaited()


class TestRobustType:
    @pytest.mark.anyio
    async def test_standard_clears_then_types(self, mock_page) -> None:
        assert await robust_type(mock_page, "#q", "widgets") == "standard"
        locator = mock_page.locator("#q")
        locator.fill.assert_awaited_once_with("", timeout=5000)
        locator.type.assert_awaited_once_with("widgets", timeout=5000)

    @pytest.mark.anyio
    async def test_script_sets_value(self, mock_page) -> None:
        _block_standard(mock_page, "#q")
        mock_page.evaluate = AsyncMock(return_value=True)

        assert await robust_type(mock_page, "#q", "widgets") == "script"
        args = mock_page.evaluate.await_args.args
        assert args[1] == ["#q", "widgets"]

    @pytest.mark.anyio
    async def test_placeholder_variant(self, mock_page) -> None:
        _block_standard(mock_page, "Search")
        mock_page.counts['[placeholder*="Search"]'] = 1

        assert await robust_type(mock_page, "Search", "x") == 'variant:[placeholder*="Search"]'


@pytest.fixture()
async def interpreter(settings, mock_page, browser_factory, context_factory):
    pool = ContextPool(settings, browser=browser_factory(lambda: context_factory(mock_page)))
    await pool.start()
    yield ActionInterpreter(pool, settings)
    await pool.close()


class TestInterpreter:
    """Sequencing and per-action behaviour."""

    @pytest.mark.anyio
    async def test_all_actions_succeed(self, interpreter, mock_page) -> None:
        mock_page.inner_text = AsyncMock(return_value="Thanks for your order")
        actions = [
            Action(type=ActionType.TYPE, selector="#q", text="widget"),
            Action(type=ActionType.PRESS, key="Enter"),
            Action(type=ActionType.CLICK, selector="#buy"),
            Action(type=ActionType.SCROLL),
            Action(type=ActionType.SCREENSHOT),
        ]
        result = await interpreter.automate(actions, url="https://shop.example/")

        assert result.success
        assert [a.type for a in result.actions] == ["type", "press", "click", "scroll", "screenshot"]
        assert result.actions[-1].screenshot == b"\x89PNG-bytes"
        assert result.final_url == "https://example.com/"
        assert result.final_content == "Thanks for your order"
        mock_page.keyboard.press.assert_awaited_once_with("Enter")

    @pytest.mark.anyio
    async def test_first_failure_halts(self, interpreter, mock_page) -> None:
        _block_standard(mock_page, "#missing")
        actions = [
            Action(type=ActionType.CLICK, selector="#missing"),
            Action(type=ActionType.CLICK, selector="#never"),
        ]
        result = await interpreter.automate(actions)

        assert not result.success
        assert len(result.actions) == 1
        assert "#missing" in result.error
        assert result.failed_action is result.actions[0]
        assert "#never" not in mock_page.locators

    @pytest.mark.anyio
    async def test_unknown_key_fails(self, interpreter) -> None:
        result = await interpreter.automate([Action(type=ActionType.PRESS, key="F13")])
        assert not result.success
        assert "unknown key" in result.error

    @pytest.mark.anyio
    async def test_click_requires_selector(self, interpreter) -> None:
        result = await interpreter.automate([Action(type=ActionType.CLICK)])
        assert not result.success
        assert "requires a selector" in result.error

    @pytest.mark.anyio
    async def test_wait_duration(self, interpreter) -> None:
        result = await interpreter.automate([Action(type=ActionType.WAIT, text="10ms")])
        assert result.success
        assert result.actions[0].message == "Waited for 0.01s"

    @pytest.mark.anyio
    async def test_wait_for_selector(self, interpreter, mock_page) -> None:
        result = await interpreter.automate([Action(type=ActionType.WAIT, selector=".ready")])
        assert result.success
        mock_page.locator(".ready").wait_for.assert_awaited_once_with(state="visible")

    @pytest.mark.anyio
    async def test_select_falls_back_to_label(self, interpreter, mock_page) -> None:
        mock_page.locator("#size").select_option.side_effect = [PlaywrightError("no option"), None]
        result = await interpreter.automate([Action(type=ActionType.SELECT, selector="#size", text="Large")])
        assert result.success
        assert result.actions[0].strategy == "label"

    @pytest.mark.anyio
    async def test_relative_navigate_resolved(self, interpreter, mock_page) -> None:
        mock_page.url = "https://shop.example/products/1"
        result = await interpreter.automate([Action(type=ActionType.NAVIGATE, text="../cart")])
        assert result.success
        assert mock_page.goto.await_args.args[0] == "https://shop.example/cart"

    @pytest.mark.anyio
    async def test_navigation_failure_reported(self, interpreter, mock_page) -> None:
        mock_page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))
        result = await interpreter.automate([Action(type=ActionType.NAVIGATE, text="https://nope.invalid/")])
        assert not result.success
        assert "name not resolved" in result.error

    @pytest.mark.anyio
    async def test_captcha_is_advisory(self, interpreter, mock_page) -> None:
        mock_page.counts[RECAPTCHA] = 1
        result = await interpreter.automate(
            [Action(type=ActionType.CLICK, selector="#buy")], url="https://shop.example/"
        )

        assert result.success
        assert result.actions[0].type == "captcha_check"
        assert result.actions[0].success
        assert result.captcha["type"] == "recaptcha_v2"
        assert result.actions[1].type == "click"
