"""Per-profile browser context pool.

The pool is the only component that creates or destroys Playwright browser
contexts.  At most one live context exists per profile id; identity metadata
(user-agent, viewport, proxy) is decided once, persisted under
``<profiles.storage_dir>/<id>/profile.json``, and reused whenever the
context has to be recreated.

Usage::

    pool = ContextPool()
    await pool.start()
    async with pool.lease("default") as handle:
        page = await handle.page()
        await page.goto("https://example.com")
    await pool.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, AsyncIterator

from pydantic import ValidationError

from openbrowser.browser.stealth import (
    STEALTH_SCRIPT,
    ProxyPool,
    build_context_args,
    build_identity,
    build_launch_args,
)
from openbrowser.exceptions import (
    ContextCanceledError,
    InvalidRequestError,
    ProfileExistsError,
    ProfileNotFoundError,
)
from openbrowser.models.profile import Profile, Viewport

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

    from openbrowser.settings.config import Settings

logger = logging.getLogger(__name__)

_PROFILE_FILE = "profile.json"
_VALID_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def slugify_profile_id(name: str) -> str:
    """Derive a filesystem-safe profile id from a display name."""
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", name.strip()).strip("-.")
    if not slug:
        raise InvalidRequestError(f"cannot derive a profile id from name {name!r}")
    return slug


class ContextHandle:
    """A live browser context bound to one profile.

    Operations against a profile share the lazily created primary page and
    are serialized on :attr:`lock`.  Tasks working on the context register
    themselves via :meth:`bound` so that deleting the profile can cancel them.
    """

    def __init__(self, profile: Profile, context: BrowserContext) -> None:
        self.profile = profile
        self.context = context
        self.lock = asyncio.Lock()
        self.tasks: set[asyncio.Task[Any]] = set()
        self.closed = False
        self._page: Page | None = None
        context.on("close", self._on_close)

    @property
    def profile_id(self) -> str:
        return self.profile.id

    def _on_close(self, *_: Any) -> None:
        if not self.closed:
            logger.warning("Browser context for profile %s closed unexpectedly", self.profile_id)
        self.closed = True

    async def page(self) -> Page:
        """Return the primary page, opening a new one if it was closed."""
        self._check_open()
        if self._page is None or self._page.is_closed():
            self._page = await self.context.new_page()
        return self._page

    async def new_page(self) -> Page:
        """Open an additional page in this context (caller closes it)."""
        self._check_open()
        return await self.context.new_page()

    def _check_open(self) -> None:
        if self.closed:
            raise ContextCanceledError(f"browser context for profile {self.profile_id} is closed")

    @asynccontextmanager
    async def bound(self) -> AsyncIterator[ContextHandle]:
        """Register the current task as working on this context.

        If the context is torn down while the task runs, the resulting
        cancellation surfaces as ``ContextCanceledError``.
        """
        task = asyncio.current_task()
        if task is not None:
            self.tasks.add(task)
        try:
            yield self
        except asyncio.CancelledError as exc:
            if not self.closed:
                raise
            if task is not None:
                task.uncancel()
            raise ContextCanceledError(f"profile {self.profile_id} was deleted during the operation") from exc
        finally:
            if task is not None:
                self.tasks.discard(task)

    async def close(self) -> None:
        """Cancel bound tasks and close the underlying context."""
        self.closed = True
        current = asyncio.current_task()
        for task in list(self.tasks):
            if task is not current and not task.done():
                task.cancel()
        try:
            await self.context.close()
        except Exception as exc:  # context may already be gone with the browser
            logger.debug("Closing context for %s raised: %s", self.profile_id, exc)


class ContextPool:
    """Owns the browser and one :class:`ContextHandle` per profile id.

    Args:
        settings: Settings instance; defaults to :func:`get_settings`.
        browser: An already launched browser (tests, embedding).  When
            omitted, :meth:`start` launches Chromium via Playwright.
    """

    def __init__(self, settings: Settings | None = None, *, browser: Browser | None = None) -> None:
        if settings is None:
            from openbrowser.settings import get_settings

            settings = get_settings()
        self._settings = settings
        self._browser = browser
        self._owns_browser = browser is None
        self._playwright: Playwright | None = None
        self._lock = asyncio.Lock()
        self._profiles: dict[str, Profile] = {}
        self._handles: dict[str, ContextHandle] = {}
        self._proxy_pool = ProxyPool(settings.stealth.proxy_urls, settings.stealth.rotation_strategy)
        self._storage_dir = Path(settings.profiles.storage_dir)

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Launch the browser (if not injected) and load persisted identities."""
        if self._browser is None:
            from playwright.async_api import async_playwright

            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                **build_launch_args(self._settings.browser, stealth=self._settings.stealth.apply_stealth_scripts)
            )
            logger.info("Browser launched (headless=%s)", self._settings.browser.headless)
        self._load_profiles()

    async def close(self) -> None:
        """Tear down every live context, then the browser."""
        async with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            await handle.close()
        if self._owns_browser and self._browser is not None:
            try:
                await self._browser.close()
            except Exception as exc:
                logger.debug("Browser close raised: %s", exc)
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Context pool closed (%d contexts)", len(handles))

    # -- contexts -------------------------------------------------------------

    async def get_or_create(self, profile_id: str) -> ContextHandle:
        """Return the live handle for *profile_id*, creating it on first use.

        Repeated calls return the same handle.  A handle whose context was
        closed is replaced by a fresh context with the stored identity.
        """
        _validate_id(profile_id)
        async with self._lock:
            handle = self._handles.get(profile_id)
            if handle is not None and not handle.closed:
                return handle

            profile = self._profiles.get(profile_id)
            if profile is None:
                profile = self._new_identity(profile_id)
                self._profiles[profile_id] = profile
                self._persist(profile)
                logger.info("Created profile %s", profile_id)

            handle = await self._open_context(profile)
            self._handles[profile_id] = handle
            return handle

    @asynccontextmanager
    async def lease(self, profile_id: str) -> AsyncIterator[ContextHandle]:
        """Exclusive use of a profile's primary page for one operation."""
        handle = await self.get_or_create(profile_id)
        async with handle.bound():
            async with handle.lock:
                yield handle

    async def delete(self, profile_id: str, *, purge: bool = False) -> None:
        """Close the profile's live context and cancel operations bound to it.

        The identity metadata is kept so a later :meth:`get_or_create`
        recreates the context with the same identity, unless *purge* is set,
        in which case the profile is forgotten entirely.

        Raises:
            ProfileNotFoundError: If the profile is unknown.
        """
        async with self._lock:
            if profile_id not in self._profiles and profile_id not in self._handles:
                raise ProfileNotFoundError(profile_id)
            handle = self._handles.pop(profile_id, None)
            if purge:
                self._profiles.pop(profile_id, None)
                self._remove_persisted(profile_id)
        if handle is not None:
            await handle.close()
        logger.info("Deleted profile %s%s", profile_id, " (purged)" if purge else "")

    # -- identities -----------------------------------------------------------

    async def create_profile(
        self,
        name: str,
        *,
        user_agent: str | None = None,
        viewport: Viewport | None = None,
        proxy: str | None = None,
    ) -> Profile:
        """Register a new identity without opening a context.

        Raises:
            ProfileExistsError: If a profile with the derived id exists.
        """
        profile_id = slugify_profile_id(name)
        async with self._lock:
            if profile_id in self._profiles:
                raise ProfileExistsError(profile_id)
            profile = self._new_identity(profile_id, name=name, user_agent=user_agent, viewport=viewport, proxy=proxy)
            self._profiles[profile_id] = profile
            self._persist(profile)
        logger.info("Created profile %s", profile_id)
        return profile

    def get_profile(self, profile_id: str) -> Profile:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)
        return profile

    def list(self) -> list[Profile]:
        """All known identities, oldest first."""
        return sorted(self._profiles.values(), key=lambda p: p.created)

    def is_live(self, profile_id: str) -> bool:
        handle = self._handles.get(profile_id)
        return handle is not None and not handle.closed

    # -- internals ------------------------------------------------------------

    def _new_identity(self, profile_id: str, **overrides: Any) -> Profile:
        browser = self._settings.browser
        return build_identity(
            profile_id,
            default_viewport=Viewport(width=browser.viewport_width, height=browser.viewport_height),
            proxy_pool=self._proxy_pool,
            **overrides,
        )

    async def _open_context(self, profile: Profile) -> ContextHandle:
        if self._browser is None:
            raise ContextCanceledError("browser is not running")
        context = await self._browser.new_context(**build_context_args(profile))
        context.set_default_timeout(self._settings.browser.timeout_ms)
        if self._settings.stealth.apply_stealth_scripts:
            await context.add_init_script(STEALTH_SCRIPT)
        logger.debug("Opened browser context for profile %s", profile.id)
        return ContextHandle(profile, context)

    def _profile_path(self, profile_id: str) -> Path:
        return self._storage_dir / profile_id / _PROFILE_FILE

    def _persist(self, profile: Profile) -> None:
        if not self._settings.profiles.persist:
            return
        path = self._profile_path(profile.id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(profile.to_wire(), indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not persist profile %s: %s", profile.id, exc)

    def _remove_persisted(self, profile_id: str) -> None:
        profile_dir = self._storage_dir / profile_id
        if profile_dir.is_dir():
            shutil.rmtree(profile_dir, ignore_errors=True)

    def _load_profiles(self) -> None:
        if not self._settings.profiles.persist or not self._storage_dir.is_dir():
            return
        loaded = 0
        for entry in sorted(self._storage_dir.iterdir()):
            path = entry / _PROFILE_FILE
            if not path.is_file():
                continue
            try:
                profile = Profile.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as exc:
                logger.warning("Skipping unreadable profile %s: %s", path, exc)
                continue
            self._profiles.setdefault(profile.id, profile)
            loaded += 1
        if loaded:
            logger.info("Loaded %d persisted profiles from %s", loaded, self._storage_dir)


def _validate_id(profile_id: str) -> None:
    if not profile_id or not _VALID_ID.match(profile_id):
        raise InvalidRequestError(f"invalid profile id: {profile_id!r}")
