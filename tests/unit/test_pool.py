"""Unit tests for openbrowser.browser.pool: per-profile context lifecycle."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from openbrowser.browser.pool import ContextPool, slugify_profile_id
from openbrowser.exceptions import (
    ContextCanceledError,
    InvalidRequestError,
    ProfileExistsError,
    ProfileNotFoundError,
)
from openbrowser.models.profile import Viewport


@pytest.fixture()
async def pool(settings, mock_browser):
    p = ContextPool(settings, browser=mock_browser)
    await p.start()
    yield p
    await p.close()


class TestSlugify:
    def test_spaces_and_symbols(self) -> None:
        assert slugify_profile_id("My Shop / EU") == "My-Shop-EU"

    def test_empty_rejected(self) -> None:
        with pytest.raises(InvalidRequestError):
            slugify_profile_id("  /// ")


class TestGetOrCreate:
    """Idempotent context acquisition."""

    @pytest.mark.anyio
    async def test_same_handle_returned(self, pool, mock_browser) -> None:
        first = await pool.get_or_create("shop")
        second = await pool.get_or_create("shop")
        assert first is second
        assert mock_browser.new_context.await_count == 1

    @pytest.mark.anyio
    async def test_concurrent_callers_share_one_context(self, pool, mock_browser) -> None:
        handles = await asyncio.gather(*(pool.get_or_create("shop") for _ in range(5)))
        assert len({id(h) for h in handles}) == 1
        assert mock_browser.new_context.await_count == 1

    @pytest.mark.anyio
    async def test_distinct_profiles_get_distinct_contexts(self, pool, mock_browser) -> None:
        a = await pool.get_or_create("a")
        b = await pool.get_or_create("b")
        assert a is not b
        assert a.context is not b.context

    @pytest.mark.anyio
    async def test_invalid_id_rejected(self, pool) -> None:
        with pytest.raises(InvalidRequestError):
            await pool.get_or_create("../etc")

    @pytest.mark.anyio
    async def test_closed_context_replaced_with_same_identity(self, pool, mock_browser) -> None:
        first = await pool.get_or_create("shop")
        ua = first.profile.user_agent
        first._on_close()

        second = await pool.get_or_create("shop")
        assert second is not first
        assert second.profile.user_agent == ua
        assert mock_browser.new_context.await_count == 2

    @pytest.mark.anyio
    async def test_identity_persisted(self, pool, settings) -> None:
        handle = await pool.get_or_create("shop")
        path = Path(settings.profiles.storage_dir) / "shop" / "profile.json"
        data = json.loads(path.read_text())
        assert data["id"] == "shop"
        assert data["userAgent"] == handle.profile.user_agent

    @pytest.mark.anyio
    async def test_stealth_script_and_timeout_applied(self, pool, settings) -> None:
        handle = await pool.get_or_create("shop")
        handle.context.add_init_script.assert_awaited_once()
        handle.context.set_default_timeout.assert_called_once_with(settings.browser.timeout_ms)


class TestPrimaryPage:
    @pytest.mark.anyio
    async def test_page_created_lazily_and_reused(self, pool) -> None:
        handle = await pool.get_or_create("shop")
        page = await handle.page()
        assert await handle.page() is page
        assert handle.context.new_page.await_count == 1

    @pytest.mark.anyio
    async def test_closed_page_reopened(self, pool) -> None:
        handle = await pool.get_or_create("shop")
        page = await handle.page()
        page.is_closed.return_value = True
        assert await handle.page() is not page


class TestDelete:
    @pytest.mark.anyio
    async def test_unknown_profile(self, pool) -> None:
        with pytest.raises(ProfileNotFoundError):
            await pool.delete("ghost")

    @pytest.mark.anyio
    async def test_delete_keeps_identity(self, pool) -> None:
        handle = await pool.get_or_create("shop")
        ua = handle.profile.user_agent
        await pool.delete("shop")

        handle.context.close.assert_awaited_once()
        assert not pool.is_live("shop")
        recreated = await pool.get_or_create("shop")
        assert recreated.profile.user_agent == ua

    @pytest.mark.anyio
    async def test_purge_forgets_identity(self, pool, settings) -> None:
        await pool.get_or_create("shop")
        await pool.delete("shop", purge=True)

        assert not (Path(settings.profiles.storage_dir) / "shop").exists()
        with pytest.raises(ProfileNotFoundError):
            pool.get_profile("shop")

    @pytest.mark.anyio
    async def test_delete_cancels_bound_operation(self, pool) -> None:
        started = asyncio.Event()

        async def operation() -> None:
            async with pool.lease("shop"):
                started.set()
                await asyncio.sleep(10)

        task = asyncio.create_task(operation())
        await started.wait()
        await pool.delete("shop")

        with pytest.raises(ContextCanceledError):
            await task

    @pytest.mark.anyio
    async def test_closed_handle_refuses_pages(self, pool) -> None:
        handle = await pool.get_or_create("shop")
        await pool.delete("shop")
        with pytest.raises(ContextCanceledError):
            await handle.page()


class TestLease:
    @pytest.mark.anyio
    async def test_lease_serializes_operations(self, pool) -> None:
        order: list[str] = []

        async def op(name: str) -> None:
            async with pool.lease("shop"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(op("a"), op("b"))
        assert order in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )


class TestProfiles:
    @pytest.mark.anyio
    async def test_create_profile(self, pool) -> None:
        profile = await pool.create_profile("My Shop", user_agent="UA/1", viewport=Viewport(width=800, height=600))
        assert profile.id == "My-Shop"
        assert profile.name == "My Shop"
        assert profile.user_agent == "UA/1"
        assert not pool.is_live("My-Shop")

    @pytest.mark.anyio
    async def test_create_existing_rejected(self, pool) -> None:
        await pool.create_profile("shop")
        with pytest.raises(ProfileExistsError):
            await pool.create_profile("shop")

    @pytest.mark.anyio
    async def test_created_profile_used_by_get_or_create(self, pool) -> None:
        await pool.create_profile("shop", user_agent="UA/custom")
        handle = await pool.get_or_create("shop")
        assert handle.profile.user_agent == "UA/custom"

    @pytest.mark.anyio
    async def test_list_oldest_first(self, pool) -> None:
        await pool.create_profile("first")
        await pool.create_profile("second")
        assert [p.id for p in pool.list()] == ["first", "second"]

    @pytest.mark.anyio
    async def test_profiles_reloaded_on_start(self, settings, mock_browser) -> None:
        first = ContextPool(settings, browser=mock_browser)
        await first.start()
        created = await first.create_profile("shop", user_agent="UA/keep")
        await first.close()

        second = ContextPool(settings, browser=mock_browser)
        await second.start()
        assert second.get_profile("shop").user_agent == created.user_agent
        await second.close()
