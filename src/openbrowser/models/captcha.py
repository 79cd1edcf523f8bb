"""CAPTCHA handshake models.

State machine::

    none -> detected -> awaiting_solution -> applying -> resolved
                                                      -> failed
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator

from openbrowser.models.base import B64Bytes, WireModel


class CaptchaState(str, Enum):
    NONE = "none"
    DETECTED = "detected"
    AWAITING_SOLUTION = "awaiting_solution"
    APPLYING = "applying"
    RESOLVED = "resolved"
    FAILED = "failed"


# States from which a submitted solution may be applied.
APPLICABLE_STATES = frozenset({CaptchaState.DETECTED, CaptchaState.AWAITING_SOLUTION})


class SolutionType(str, Enum):
    """How a solution is dispatched against the page."""

    TEXT = "text"
    CLICK = "click"
    SELECT = "select"
    RECAPTCHA_V2 = "recaptcha_v2"
    CHECKBOX = "checkbox"
    IMAGE_SELECTION = "image_selection"


class CaptchaSolution(WireModel):
    """Answer proposed by an external solver (human or vision model)."""

    type: SolutionType
    value: str | None = None
    coordinates: list[list[float]] = Field(default_factory=list)
    selections: list[str] = Field(default_factory=list)
    confidence: float | None = None
    instructions: str | None = None

    @field_validator("coordinates")
    @classmethod
    def check_pairs(cls, v: list[list[float]]) -> list[list[float]]:
        """Every coordinate must be an ``[x, y]`` pair."""
        for pair in v:
            if len(pair) < 2:
                raise ValueError("coordinates must be [x, y] pairs")
        return v

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float | None) -> float | None:
        """Clamp confidence to [0.0, 1.0]."""
        if v is None:
            return v
        return max(0.0, min(1.0, v))


class CaptchaSession(WireModel):
    """Per-profile handshake record."""

    profile_id: str
    state: CaptchaState = CaptchaState.NONE
    captcha_type: str = ""
    selector: str = ""
    page_url: str = ""
    screenshot: B64Bytes | None = None
    solution: CaptchaSolution | None = None
    error: str = ""

    @property
    def detected(self) -> bool:
        return self.state != CaptchaState.NONE
