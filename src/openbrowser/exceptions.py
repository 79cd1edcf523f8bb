"""OpenBrowser exception hierarchy.

Every error carries an ``ErrorCode`` so that callers on the far side of the
RPC bridge can classify failures without inspecting message wording.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Closed set of error classifications returned in RPC envelopes."""

    TIMEOUT = "timeout"
    NAVIGATION = "navigation"
    ACTION_FAILED = "action_failed"
    ELEMENT_NOT_FOUND = "element_not_found"
    CAPTCHA_STATE = "captcha_state"
    PROFILE_NOT_FOUND = "profile_not_found"
    PROFILE_EXISTS = "profile_exists"
    CONTEXT_CANCELED = "context_canceled"
    INVALID_REQUEST = "invalid_request"
    ENGINE_UNAVAILABLE = "engine_unavailable"
    INTERNAL = "internal"


# Codes that indicate the engine process (or its browser) is unhealthy.
CRASH_CODES = frozenset({ErrorCode.CONTEXT_CANCELED})


class OpenBrowserError(Exception):
    """Base exception for all OpenBrowser errors."""

    code: ErrorCode = ErrorCode.INTERNAL


class EngineTimeoutError(OpenBrowserError):
    """Raised when an operation exceeds its caller-supplied timeout."""

    code = ErrorCode.TIMEOUT

    def __init__(self, operation: str, timeout_ms: int) -> None:
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(f"{operation} timed out after {timeout_ms}ms")


class NavigationError(OpenBrowserError):
    """Raised when a page cannot be reached (DNS, refused connection, TLS)."""

    code = ErrorCode.NAVIGATION

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to navigate to {url}: {reason}")


class ActionFailedError(OpenBrowserError):
    """Raised when every strategy for a UI action has been exhausted."""

    code = ErrorCode.ACTION_FAILED


class ElementNotFoundError(ActionFailedError):
    """Raised when a selector never resolves to an element."""

    code = ErrorCode.ELEMENT_NOT_FOUND


class CaptchaStateError(OpenBrowserError):
    """Raised when a CAPTCHA operation is invalid for the current state."""

    code = ErrorCode.CAPTCHA_STATE


class ProfileNotFoundError(OpenBrowserError):
    """Raised when a profile id is unknown to the context pool."""

    code = ErrorCode.PROFILE_NOT_FOUND

    def __init__(self, profile_id: str) -> None:
        self.profile_id = profile_id
        super().__init__(f"profile not found: {profile_id}")


class ProfileExistsError(OpenBrowserError):
    """Raised when explicitly creating a profile that already exists."""

    code = ErrorCode.PROFILE_EXISTS

    def __init__(self, profile_id: str) -> None:
        self.profile_id = profile_id
        super().__init__(f"profile already exists: {profile_id}")


class ContextCanceledError(OpenBrowserError):
    """Raised when the browser context backing an operation went away."""

    code = ErrorCode.CONTEXT_CANCELED


class InvalidRequestError(OpenBrowserError):
    """Raised for malformed RPC payloads or unknown methods."""

    code = ErrorCode.INVALID_REQUEST


class EngineUnavailableError(OpenBrowserError):
    """Raised by the supervisor when the engine process cannot be reached."""

    code = ErrorCode.ENGINE_UNAVAILABLE


class RemoteEngineError(OpenBrowserError):
    """An error reported by the engine inside an RPC response envelope.

    Attributes:
        code: The typed error code from the envelope.
        message: The human-readable error text.
    """

    def __init__(self, code: ErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)
