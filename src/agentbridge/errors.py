"""Error types raised by the streaming synchronization engine.

Every error carries a machine-readable ``error_code`` so the command layer
can map failures to user-facing messages without string matching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class ErrorCode:
    """Constants for error codes surfaced to the command layer."""

    SESSION_BUSY = "session_busy"
    TURN_NOT_FOUND = "turn_not_found"
    FORK_FAILED = "fork_failed"
    RENDER_FAILED = "render_failed"
    RATE_LIMITED = "rate_limited"
    BACKEND_ERROR = "backend_error"
    INVALID_SETTING = "invalid_setting"


@dataclass(eq=False)
class AgentBridgeError(Exception):
    """Base exception for the engine.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class ConversationBusyError(AgentBridgeError):
    """A turn is already in flight for the backend session."""

    def __init__(self, session_id: str, *, conversation_key: str | None = None) -> None:
        details: dict[str, Any] = {"session_id": session_id}
        if conversation_key:
            details["conversation_key"] = conversation_key
        super().__init__(
            error_code=ErrorCode.SESSION_BUSY,
            message=(
                "Another request is already running for this session. "
                "Please wait for it to finish or abort it."
            ),
            details=details,
        )
        self.session_id = session_id


class TurnIndexNotFoundError(AgentBridgeError):
    """A captured conversation point cannot be located in the backend thread."""

    def __init__(self, thread_id: str, identifier: str | int, *, turn_count: int | None = None) -> None:
        details: dict[str, Any] = {"thread_id": thread_id, "identifier": str(identifier)}
        if turn_count is not None:
            details["turn_count"] = turn_count
        super().__init__(
            error_code=ErrorCode.TURN_NOT_FOUND,
            message=f"Turn {identifier!s} was not found in thread {thread_id}",
            details=details,
        )
        self.thread_id = thread_id
        self.identifier = identifier


class ForkError(AgentBridgeError):
    """The backend refused or failed a fork/rollback sequence."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(error_code=ErrorCode.FORK_FAILED, message=message, details=dict(details))


class RenderError(AgentBridgeError):
    """Transient failure while pushing an update to the chat platform."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(error_code=ErrorCode.RENDER_FAILED, message=message, details=dict(details))


class RateLimitedError(RenderError):
    """The chat platform rejected a render because of rate limiting."""

    def __init__(self, message: str = "Rate limited", *, retry_after: float | None = None) -> None:
        super().__init__(message, retry_after=retry_after)
        self.error_code = ErrorCode.RATE_LIMITED
        self.retry_after = retry_after


class BackendError(AgentBridgeError):
    """The agent backend returned an error response."""

    def __init__(self, method: str, message: str, *, code: int | None = None) -> None:
        details: dict[str, Any] = {"method": method}
        if code is not None:
            details["code"] = code
        super().__init__(error_code=ErrorCode.BACKEND_ERROR, message=message, details=details)
        self.method = method
        self.code = code


class InvalidSettingError(AgentBridgeError, ValueError):
    """A per-conversation setting fell outside its accepted range."""

    def __init__(self, name: str, value: Any, *, minimum: float, maximum: float) -> None:
        super().__init__(
            error_code=ErrorCode.INVALID_SETTING,
            message=f"{name} must be between {minimum:g} and {maximum:g} (got {value!r})",
            details={"name": name, "value": value, "minimum": minimum, "maximum": maximum},
        )
        self.name = name


__all__ = [
    "ErrorCode",
    "AgentBridgeError",
    "ConversationBusyError",
    "TurnIndexNotFoundError",
    "ForkError",
    "RenderError",
    "RateLimitedError",
    "BackendError",
    "InvalidSettingError",
]
