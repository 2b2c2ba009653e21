"""Event bus infrastructure connecting the backend stream to the engine.

Backend notifications are normalized into the typed events below and
published on an :class:`EventBus`. The lifecycle controller subscribes when
attached and unsubscribes every handler on teardown.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events in the system."""

    pass


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Inbound Backend Events
# =============================================================================


@dataclass(slots=True)
class TextDeltaReceived(Event):
    """A partial response-text notification, before deduplication.

    Attributes:
        thread_id: Backend thread (session) the delta belongs to.
        source_method: Notification method the delta arrived through.
        item_id: Response item (segment) identifier, may be empty.
        content: The text fragment.
        turn_id: Turn identifier when the notification carries one.
    """

    thread_id: str
    source_method: str
    item_id: str
    content: str
    turn_id: str | None = None


@dataclass(slots=True)
class ReasoningDeltaReceived(Event):
    """A partial reasoning ("thinking") notification."""

    thread_id: str
    source_method: str
    item_id: str
    content: str
    turn_id: str | None = None


_QUIET_EVENT_TYPES.add(TextDeltaReceived)
_QUIET_EVENT_TYPES.add(ReasoningDeltaReceived)


@dataclass(slots=True)
class ToolCallStarted(Event):
    """A tool invocation began.

    Attributes:
        thread_id: Backend thread the tool runs in.
        call_id: Stable correlation id shared with the completion event.
        tool_name: Raw tool name as reported by the backend.
        tool_input: Tool arguments, either a mapping or a command string.
    """

    thread_id: str
    call_id: str
    tool_name: str
    tool_input: Any = None
    turn_id: str | None = None


@dataclass(slots=True)
class ToolCallCompleted(Event):
    """A tool invocation finished, successfully or not."""

    thread_id: str
    call_id: str
    tool_name: str
    tool_input: Any = None
    output: str | None = None
    error: str | None = None
    duration_ms: float | None = None
    turn_id: str | None = None


@dataclass(slots=True)
class TurnStartedNotice(Event):
    """The backend acknowledged the start of a turn.

    ``turn_id`` is the bare, zero-based identifier the live stream reports.
    """

    thread_id: str
    turn_id: str


@dataclass(slots=True)
class TurnFinishedNotice(Event):
    """The backend reported a terminal status for a turn."""

    thread_id: str
    turn_id: str | None
    status: str
    error: str | None = None


# =============================================================================
# Outbound Engine Events
# =============================================================================


@dataclass(slots=True)
class TurnFinalized(Event):
    """Published by the controller once a turn's cleanup has run."""

    conversation_key: str
    session_id: str
    turn_id: str
    status: str
    metadata: dict[str, Any] = field(default_factory=dict)


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus for decoupled communication.

    Handlers are stored as weak references where possible (bound methods)
    to prevent leaks across conversation lifecycles.

    Example::

        bus = EventBus()

        def on_delta(event: TextDeltaReceived) -> None:
            print(event.content)

        bus.subscribe(TextDeltaReceived, on_delta)
        bus.publish(TextDeltaReceived("thr", "item/agentMessage/delta", "msg", "hi"))
        bus.unsubscribe(TextDeltaReceived, on_delta)

    Thread Safety:
        This implementation is NOT thread-safe. All operations should be
        performed from the event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register a handler to receive events of the specified type.

        Note:
            Subscribing the same handler multiple times will result in
            multiple invocations when an event is published.
        """
        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove a previously registered handler.

        Safe to call even if the handler was never subscribed.
        """
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return

        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Broadcast an event to all registered handlers.

        Handlers are invoked synchronously in registration order. A handler
        that raises is logged and the remaining handlers still run.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if handlers is None:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug(
                "Publishing %s to %d handler(s)",
                event_type.__name__,
                len(handlers),
            )

        dead_indices: list[int] = []

        # Iterate over a copy; handlers may unsubscribe while we dispatch.
        for i, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(i)
                continue

            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for i in reversed(dead_indices):
            if i < len(handlers) and handlers[i].resolve() is None:
                handlers.pop(i)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of registered handlers, optionally for one type."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Wrapper for handler references supporting both weak and strong refs.

    Bound methods use WeakMethod; plain functions and lambdas are held
    strongly.
    """

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass

        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    """Get a human-readable name for a handler for logging purposes."""
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    # Core infrastructure
    "Event",
    "EventBus",
    "Handler",
    # Inbound backend events
    "TextDeltaReceived",
    "ReasoningDeltaReceived",
    "ToolCallStarted",
    "ToolCallCompleted",
    "TurnStartedNotice",
    "TurnFinishedNotice",
    # Outbound engine events
    "TurnFinalized",
]
