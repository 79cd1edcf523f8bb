"""Automation action models.

An ``Action`` is one primitive UI step; the interpreter turns each into an
``ActionResult`` and the whole run into an ``AutomationResult``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from openbrowser.models.base import B64Bytes, WireModel


class ActionType(str, Enum):
    """Primitive actions the interpreter understands."""

    CLICK = "click"
    TYPE = "type"
    WAIT = "wait"
    SCROLL = "scroll"
    SCREENSHOT = "screenshot"
    PRESS = "press"
    SELECT = "select"
    NAVIGATE = "navigate"


class Action(WireModel):
    """One scripted step.

    ``text`` is overloaded the same way for every action: literal text to
    type, a wait duration, an option to select, or a URL to navigate to.
    """

    type: ActionType
    selector: str = ""
    text: str = ""
    key: str = ""


class ActionResult(WireModel):
    type: str
    success: bool = True
    message: str = ""
    error: str = ""
    strategy: str = ""
    screenshot: B64Bytes | None = None


class AutomationResult(WireModel):
    """Outcome of a full action sequence."""

    success: bool = True
    final_url: str = ""
    final_content: str = ""
    actions: list[ActionResult] = Field(default_factory=list)
    error: str = ""
    captcha: dict[str, Any] | None = None

    @property
    def failed_action(self) -> ActionResult | None:
        """The action that halted the run, if any."""
        for result in self.actions:
            if not result.success:
                return result
        return None
