"""Data model for the streaming synchronization engine.

These records are shared by the deduplicator, activity log, scheduler and
lifecycle controller. Only :class:`StreamingState` is mutable; everything
else is frozen once created.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


def make_conversation_key(channel_id: str, thread_anchor: str | None = None) -> str:
    """Return the key addressing a chat conversation (channel + optional thread)."""

    return f"{channel_id}_{thread_anchor}" if thread_anchor else channel_id


def parse_conversation_key(key: str) -> tuple[str, str | None]:
    """Split a conversation key back into ``(channel_id, thread_anchor)``."""

    channel_id, separator, anchor = key.partition("_")
    if not separator:
        return key, None
    return channel_id, anchor


class TurnStatus(Enum):
    """Lifecycle status of a streaming turn.

    Values:
        STREAMING: The turn is in flight.
        COMPLETED: The backend finished the turn normally.
        FAILED: The backend reported an error.
        INTERRUPTED: The turn was aborted by the user or the backend.
    """

    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"

    @property
    def is_terminal(self) -> bool:
        return self is not TurnStatus.STREAMING

    @classmethod
    def parse(cls, value: "str | TurnStatus") -> "TurnStatus":
        """Map a backend status string to a terminal status.

        Unknown strings are treated as failures so cleanup still runs.
        """

        if isinstance(value, TurnStatus):
            return value
        normalized = (value or "").strip().lower()
        aliases = {
            "completed": cls.COMPLETED,
            "complete": cls.COMPLETED,
            "success": cls.COMPLETED,
            "failed": cls.FAILED,
            "error": cls.FAILED,
            "interrupted": cls.INTERRUPTED,
            "aborted": cls.INTERRUPTED,
            "cancelled": cls.INTERRUPTED,
            "canceled": cls.INTERRUPTED,
        }
        return aliases.get(normalized, cls.FAILED)


class ActivityKind(Enum):
    """Tag of an :class:`ActivityEntry`."""

    STARTING = "starting"
    THINKING = "thinking"
    TOOL_START = "tool_start"
    TOOL_COMPLETE = "tool_complete"
    GENERATING = "generating"
    ERROR = "error"
    ABORTED = "aborted"
    SESSION_CHANGED = "session_changed"


@dataclass(frozen=True, slots=True)
class ActivityEntry:
    """One structured progress entry in a conversation's activity log.

    Only the fields relevant to ``kind`` are populated. ``call_id`` pairs
    ``tool_start`` with ``tool_complete``; ``segment_id`` identifies the
    response segment a ``generating`` entry belongs to.
    """

    kind: ActivityKind
    timestamp: float = field(default_factory=time.time)
    message: str | None = None
    tool: str | None = None
    call_id: str | None = None
    tool_input: Any = None
    tool_output: str | None = None
    tool_is_error: bool = False
    duration_ms: float | None = None
    content: str | None = None
    char_count: int | None = None
    in_progress: bool = False
    segment_id: str | None = None
    previous_session_id: str | None = None
    link: str | None = None

    @property
    def is_tool(self) -> bool:
        return self.kind in (ActivityKind.TOOL_START, ActivityKind.TOOL_COMPLETE)

    @property
    def is_thought_or_response(self) -> bool:
        return self.kind in (ActivityKind.THINKING, ActivityKind.GENERATING)

    def with_link(self, link: str) -> "ActivityEntry":
        """Return a copy carrying a cross-reference to its rendered message."""

        return replace(self, link=link)


@dataclass(frozen=True, slots=True)
class DeltaEvent:
    """A single partial-text notification as received, before dedup."""

    source_method: str
    item_id: str
    content: str
    arrived_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True, slots=True)
class ForkPoint:
    """A conversation point captured when a fork affordance is created.

    ``turn_index`` is stored verbatim and never recomputed.
    """

    thread_id: str
    turn_index: int
    turn_identifier: str | None = None
    captured_at: float = field(default_factory=time.time)


@dataclass(frozen=True, slots=True)
class StreamingContext:
    """Immutable per-turn record created when a turn starts."""

    channel_id: str
    session_id: str
    turn_id: str
    thread_anchor: str | None = None
    message_id: str | None = None
    mode: str = "default"
    model: str | None = None
    update_rate_seconds: float = 3.0
    started_at: float = field(default_factory=time.time)
    user_id: str | None = None
    query: str | None = None

    @property
    def conversation_key(self) -> str:
        return make_conversation_key(self.channel_id, self.thread_anchor)


@dataclass(slots=True)
class StreamingState:
    """Mutable per-conversation state owned by the lifecycle controller."""

    status: TurnStatus = TurnStatus.STREAMING
    segments: dict[str, list[str]] = field(default_factory=dict)
    segment_order: list[str] = field(default_factory=list)
    current_segment_id: str | None = None
    segment_started_at: float | None = None
    thinking_parts: list[str] = field(default_factory=list)
    thinking_started_at: float | None = None
    active_tools: dict[str, float] = field(default_factory=dict)
    last_rendered: str | None = None
    render_count: int = 0
    rate_limit_hits: int = 0
    error: str | None = None

    def append_text(self, segment_id: str, content: str) -> None:
        if segment_id not in self.segments:
            self.segments[segment_id] = []
            self.segment_order.append(segment_id)
        self.segments[segment_id].append(content)

    def segment_text(self, segment_id: str) -> str:
        return "".join(self.segments.get(segment_id, ()))

    @property
    def response_text(self) -> str:
        """All accepted response text in arrival order."""

        return "".join(self.segment_text(segment_id) for segment_id in self.segment_order)

    @property
    def thinking_text(self) -> str:
        return "".join(self.thinking_parts)


__all__ = [
    "make_conversation_key",
    "parse_conversation_key",
    "TurnStatus",
    "ActivityKind",
    "ActivityEntry",
    "DeltaEvent",
    "ForkPoint",
    "StreamingContext",
    "StreamingState",
]
