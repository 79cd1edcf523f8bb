"""Content sink: hand scraped and crawled content to an external store.

The sink is write-only from the engine's point of view.  ``HttpContentSink``
speaks the storage server's envelope protocol (``POST /`` with
``{"method": "store_content", "params": {...}}``).
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel

from openbrowser.exceptions import OpenBrowserError

logger = logging.getLogger(__name__)


class SinkError(OpenBrowserError):
    """Raised when the storage server rejects or cannot take content."""


class StoredContent(BaseModel):
    """Receipt returned by the storage server."""

    id: str
    token_count: int = 0


@runtime_checkable
class ContentSink(Protocol):
    def store(
        self,
        session_id: str,
        url: str,
        title: str,
        content: str,
        content_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoredContent: ...


class HttpContentSink:
    """Post content to a storage server over HTTP.

    Args:
        url: Base URL of the storage server; ``storage.url`` when omitted.
        timeout: Request timeout in seconds.
        transport: Optional httpx transport, for tests.
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if url is None or timeout is None:
            from openbrowser.settings import get_settings

            storage = get_settings().storage
            url = url or storage.url
            timeout = timeout if timeout is not None else storage.timeout_sec
        self.url = url.rstrip("/")
        self._client = httpx.Client(base_url=self.url, timeout=timeout, transport=transport)

    def store(
        self,
        session_id: str,
        url: str,
        title: str,
        content: str,
        content_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> StoredContent:
        params = {
            "session_id": session_id,
            "url": url,
            "title": title,
            "content": content,
            "content_type": content_type,
            "metadata": metadata or {},
        }
        try:
            response = self._client.post("/", json={"method": "store_content", "params": params})
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise SinkError(f"storage server unreachable at {self.url}: {exc}") from exc

        if not body.get("success"):
            raise SinkError(body.get("error") or "Unknown storage error")
        stored = StoredContent.model_validate(body.get("data") or {})
        logger.debug("Stored %s as %s (%d tokens)", url, stored.id, stored.token_count)
        return stored

    def close(self) -> None:
        self._client.close()
