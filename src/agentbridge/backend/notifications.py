"""Normalization of raw backend notifications into engine events.

The backend reports the same response token through several notification
methods. Each is registered here as a *delta channel* describing where the
text and item id live in its params; adding a channel is a registration,
not a new branch in the dispatcher.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..events import (
    Event,
    EventBus,
    ReasoningDeltaReceived,
    TextDeltaReceived,
    ToolCallCompleted,
    ToolCallStarted,
    TurnFinishedNotice,
    TurnStartedNotice,
)

LOGGER = logging.getLogger(__name__)

_MISSING = object()

# Item types that represent tool activity, mapped to their display name.
_TOOL_ITEM_TYPES: Mapping[str, str] = {
    "commandExecution": "Bash",
    "fileChange": "FileChange",
    "webSearch": "WebSearch",
    "mcpToolCall": "McpTool",
}


@dataclass(frozen=True, slots=True)
class DeltaChannel:
    """Where a partial-text notification method keeps its payload."""

    method: str
    content_path: tuple[str, ...]
    item_id_path: tuple[str, ...] | None = None
    reasoning: bool = False


DEFAULT_DELTA_CHANNELS: tuple[DeltaChannel, ...] = (
    DeltaChannel("item/agentMessage/delta", ("delta",), ("itemId",)),
    DeltaChannel("codex/event/agent_message_content_delta", ("msg", "delta"), ("msg", "item_id")),
    DeltaChannel("codex/event/agent_message_delta", ("msg", "delta")),
    DeltaChannel("item/reasoning/textDelta", ("delta",), ("itemId",), reasoning=True),
    DeltaChannel("item/reasoning/summaryTextDelta", ("delta",), ("itemId",), reasoning=True),
)


def _lookup(params: Mapping[str, Any], path: Sequence[str]) -> Any:
    node: Any = params
    for part in path:
        if not isinstance(node, Mapping):
            return _MISSING
        node = node.get(part, _MISSING)
        if node is _MISSING:
            return _MISSING
    return node


def _first(params: Mapping[str, Any], *paths: Sequence[str]) -> str | None:
    for path in paths:
        value = _lookup(params, path)
        if value is not _MISSING and value is not None and value != "":
            return str(value)
    return None


def extract_thread_id(params: Mapping[str, Any]) -> str | None:
    return _first(
        params,
        ("threadId",),
        ("thread_id",),
        ("conversationId",),
        ("thread", "id"),
        ("msg", "thread_id"),
    )


def extract_turn_id(params: Mapping[str, Any]) -> str | None:
    """Return the turn id from whichever location this notification uses."""

    return _first(
        params,
        ("turn", "id"),
        ("turnId",),
        ("turn_id",),
        ("msg", "turn_id"),
    )


class NotificationNormalizer:
    """Translate ``(method, params)`` notifications into typed events."""

    def __init__(
        self,
        bus: EventBus | None = None,
        *,
        channels: Sequence[DeltaChannel] = DEFAULT_DELTA_CHANNELS,
    ) -> None:
        self._bus = bus
        self._channels: dict[str, DeltaChannel] = {}
        for channel in channels:
            self._channels[channel.method] = channel

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register_delta_channel(
        self,
        method: str,
        *,
        content_path: Sequence[str],
        item_id_path: Sequence[str] | None = None,
        reasoning: bool = False,
    ) -> DeltaChannel:
        channel = DeltaChannel(
            method=method,
            content_path=tuple(content_path),
            item_id_path=tuple(item_id_path) if item_id_path else None,
            reasoning=reasoning,
        )
        self._channels[method] = channel
        LOGGER.debug("Registered delta channel %s", method)
        return channel

    def delta_methods(self) -> frozenset[str]:
        return frozenset(self._channels)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def dispatch(self, message: Mapping[str, Any]) -> Event | None:
        """Normalize a JSON-RPC notification and publish the resulting event."""

        method = message.get("method")
        if not isinstance(method, str):
            return None
        event = self.normalize(method, message.get("params") or {})
        if event is not None and self._bus is not None:
            self._bus.publish(event)
        return event

    def normalize(self, method: str, params: Mapping[str, Any]) -> Event | None:
        channel = self._channels.get(method)
        if channel is not None:
            return self._normalize_delta(channel, params)
        if method == "turn/started":
            return self._normalize_turn_started(params)
        if method == "turn/completed":
            return self._normalize_turn_completed(params)
        if method in ("item/started", "item/completed"):
            return self._normalize_item(method, params)
        return None

    def _normalize_delta(self, channel: DeltaChannel, params: Mapping[str, Any]) -> Event | None:
        content = _lookup(params, channel.content_path)
        if content is _MISSING or not isinstance(content, str) or not content:
            return None
        item_id = ""
        if channel.item_id_path is not None:
            value = _lookup(params, channel.item_id_path)
            item_id = "" if value is _MISSING or value is None else str(value)
        thread_id = extract_thread_id(params) or ""
        event_type = ReasoningDeltaReceived if channel.reasoning else TextDeltaReceived
        return event_type(
            thread_id=thread_id,
            source_method=channel.method,
            item_id=item_id,
            content=content,
            turn_id=extract_turn_id(params),
        )

    def _normalize_turn_started(self, params: Mapping[str, Any]) -> Event | None:
        thread_id = extract_thread_id(params)
        turn_id = extract_turn_id(params)
        if not thread_id or turn_id is None:
            LOGGER.debug("Ignoring turn/started without thread or turn id: %s", params)
            return None
        return TurnStartedNotice(thread_id=thread_id, turn_id=turn_id)

    def _normalize_turn_completed(self, params: Mapping[str, Any]) -> Event | None:
        thread_id = extract_thread_id(params)
        if not thread_id:
            LOGGER.debug("Ignoring turn/completed without thread id: %s", params)
            return None
        turn = params.get("turn") if isinstance(params.get("turn"), Mapping) else {}
        status = str(turn.get("status") or params.get("status") or "completed")
        error = turn.get("error") or params.get("error")
        if isinstance(error, Mapping):
            error = error.get("message")
        return TurnFinishedNotice(
            thread_id=thread_id,
            turn_id=extract_turn_id(params),
            status=status,
            error=str(error) if error else None,
        )

    def _normalize_item(self, method: str, params: Mapping[str, Any]) -> Event | None:
        item = params.get("item")
        if not isinstance(item, Mapping):
            return None
        item_type = item.get("type")
        if item_type not in _TOOL_ITEM_TYPES or not item.get("id"):
            return None
        thread_id = extract_thread_id(params) or ""
        tool_name, tool_input = _tool_details(item)
        if method == "item/started":
            return ToolCallStarted(
                thread_id=thread_id,
                call_id=str(item["id"]),
                tool_name=tool_name,
                tool_input=tool_input,
                turn_id=extract_turn_id(params),
            )
        return ToolCallCompleted(
            thread_id=thread_id,
            call_id=str(item["id"]),
            tool_name=tool_name,
            tool_input=tool_input,
            output=_tool_output(item),
            error=_tool_error(item),
            duration_ms=item.get("durationMs"),
            turn_id=extract_turn_id(params),
        )


def _tool_details(item: Mapping[str, Any]) -> tuple[str, Any]:
    item_type = item["type"]
    if item_type == "commandExecution":
        return "Bash", {"command": item.get("command")}
    if item_type == "fileChange":
        changes = item.get("changes") or []
        paths = [change.get("path") for change in changes if isinstance(change, Mapping) and change.get("path")]
        return "FileChange", {"file_path": paths[0]} if len(paths) == 1 else {"files": ", ".join(paths)}
    if item_type == "webSearch":
        return "WebSearch", {"query": item.get("query")}
    server = item.get("server")
    tool = item.get("tool") or _TOOL_ITEM_TYPES[item_type]
    name = f"{server}__{tool}" if server else str(tool)
    return name, item.get("arguments")


def _tool_output(item: Mapping[str, Any]) -> str | None:
    output = item.get("aggregatedOutput")
    if output is None:
        output = item.get("result")
    if output is None:
        return None
    return output if isinstance(output, str) else str(output)


def _tool_error(item: Mapping[str, Any]) -> str | None:
    error = item.get("error")
    if isinstance(error, Mapping):
        error = error.get("message")
    if error:
        return str(error)
    if item.get("status") == "failed":
        return "failed"
    exit_code = item.get("exitCode")
    if isinstance(exit_code, int) and exit_code != 0:
        return f"exit code {exit_code}"
    return None


__all__ = [
    "DeltaChannel",
    "DEFAULT_DELTA_CHANNELS",
    "NotificationNormalizer",
    "extract_thread_id",
    "extract_turn_id",
]
