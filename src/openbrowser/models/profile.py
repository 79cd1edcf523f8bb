"""Browser profile identity models."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import Field

from openbrowser.models.base import WireModel


class Viewport(WireModel):
    width: int = 1920
    height: int = 1080


class Profile(WireModel):
    """Identity bundle backing at most one live browser context.

    The live context itself is owned by the context pool; this record is
    the persistable part and survives context teardown.
    """

    id: str
    name: str = ""
    created: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    user_agent: str = ""
    viewport: Viewport | None = None
    proxy: str | None = None
