"""Scraped page models."""

from __future__ import annotations

from enum import Enum

from pydantic import Field

from openbrowser.models.base import B64Bytes, WireModel


class ContentFormat(str, Enum):
    """Representation of ``Page.content``."""

    HTML = "html"
    TEXT = "text"
    MARKDOWN = "markdown"


class Link(WireModel):
    url: str
    text: str = ""


class Image(WireModel):
    url: str
    alt: str = ""


class Page(WireModel):
    """Result of a scrape. Treated as immutable once produced."""

    url: str
    title: str = ""
    html: str = ""
    content: str = ""
    links: list[Link] = Field(default_factory=list)
    images: list[Image] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)
    screenshot: B64Bytes | None = None


class CrawledPage(Page):
    """A ``Page`` annotated with the BFS depth it was reached at."""

    depth: int = 0


class Screenshot(WireModel):
    """Raster capture of a page."""

    screenshot: B64Bytes
    width: int = 0
    height: int = 0

    @property
    def size(self) -> int:
        return len(self.screenshot)
