"""RPC envelope and per-method parameter models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from openbrowser.exceptions import ErrorCode
from openbrowser.models.action import Action
from openbrowser.models.base import WireModel
from openbrowser.models.captcha import CaptchaSolution
from openbrowser.models.page import ContentFormat
from openbrowser.models.profile import Viewport


class RpcRequest(BaseModel):
    method: str = Field(..., min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)


class RpcResponse(BaseModel):
    success: bool
    data: Any | None = None
    error: str | None = None
    code: ErrorCode | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "RpcResponse":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, code: ErrorCode, error: str) -> "RpcResponse":
        return cls(success=False, error=error, code=code)


# ---------------------------------------------------------------------------
# Method parameters
# ---------------------------------------------------------------------------


class ScrapeParams(WireModel):
    url: str = Field(..., min_length=1)
    format: ContentFormat = ContentFormat.HTML
    include_screenshot: bool = False
    wait_for_selector: str | None = None
    profile_id: str = "default"
    timeout: int | None = Field(default=None, gt=0, description="Timeout in milliseconds.")


class CrawlParams(WireModel):
    start_url: str = Field(..., min_length=1)
    max_pages: int | None = Field(default=None, gt=0)
    max_depth: int | None = Field(default=None, ge=0)
    include_patterns: list[str] = Field(default_factory=list)
    exclude_patterns: list[str] = Field(default_factory=list)
    profile_id: str = "crawler"
    same_origin: bool | None = None
    concurrency: int | None = Field(default=None, gt=0)


class ExtractParams(WireModel):
    url: str | None = None
    html: str | None = None
    schema_: dict[str, Any] = Field(default_factory=dict, alias="schema")
    selectors: dict[str, Any] = Field(default_factory=dict)
    profile_id: str = "extractor"
    timeout: int | None = Field(default=None, gt=0)

    def field_map(self) -> dict[str, Any]:
        """Merge ``schema`` with the legacy flat ``selectors`` map."""
        return {**self.selectors, **self.schema_}


class AutomateParams(WireModel):
    url: str | None = None
    actions: list[Action] = Field(default_factory=list)
    profile_id: str = "automation"
    timeout: int | None = Field(default=None, gt=0)


class ScreenshotParams(WireModel):
    url: str = Field(..., min_length=1)
    full_page: bool = False
    wait_for_selector: str | None = None
    profile_id: str = "screenshot"
    timeout: int | None = Field(default=None, gt=0)


class ScriptParams(WireModel):
    url: str = Field(..., min_length=1)
    script: str = Field(..., min_length=1)
    profile_id: str = "default"
    timeout: int | None = Field(default=None, gt=0)


class GetCaptchaParams(WireModel):
    url: str | None = None
    profile_id: str = "default"
    timeout: int | None = Field(default=None, gt=0)


class ApplyCaptchaParams(WireModel):
    profile_id: str = Field(..., min_length=1)
    solution: CaptchaSolution
    timeout: int | None = Field(default=None, gt=0)


class CreateProfileParams(WireModel):
    name: str = Field(..., min_length=1)
    user_agent: str | None = None
    viewport: Viewport | None = None
    proxy: str | None = None


class ProfileIdParams(WireModel):
    profile_id: str = Field(..., min_length=1)
