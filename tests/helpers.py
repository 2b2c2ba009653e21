"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping

from agentbridge.backend.client import ThreadInfo, TurnInfo
from agentbridge.engine.models import DeltaEvent, StreamingContext

CONTENT_DELTA = "codex/event/agent_message_content_delta"
ITEM_DELTA = "item/agentMessage/delta"
LEGACY_DELTA = "codex/event/agent_message_delta"

REPEATED_TOKEN_TEXT = "```\na = 42\nb = 84\n```"
REPEATED_TOKENS = ["``", "`\n", "a", " =", " ", "42", "\n", "b", " =", " ", "84", "\n", "```"]


def live_delta_replay(item_id: str = "msg_test") -> list[tuple[str, str, str]]:
    """Every token of :data:`REPEATED_TOKEN_TEXT` delivered through all three methods.

    Returns ``(method, item_id, content)`` triples in the captured order.
    """
    replay: list[tuple[str, str, str]] = []
    for token in REPEATED_TOKENS:
        replay.append((CONTENT_DELTA, item_id, token))
        replay.append((ITEM_DELTA, item_id, token))
        replay.append((LEGACY_DELTA, "", token))
    return replay


def replay_notifications(item_id: str = "msg_test", thread_id: str = "thr_1") -> list[dict[str, Any]]:
    """The replay shaped as raw backend notifications."""

    messages: list[dict[str, Any]] = []
    for method, item, content in live_delta_replay(item_id):
        if method == CONTENT_DELTA:
            params: dict[str, Any] = {"msg": {"delta": content, "item_id": item}}
        elif method == LEGACY_DELTA:
            params = {"msg": {"delta": content}}
        else:
            params = {"delta": content, "itemId": item}
        params["threadId"] = thread_id
        messages.append({"method": method, "params": params})
    return messages


def delta(method: str, content: str, *, item_id: str = "msg_test", at: float = 0.0) -> DeltaEvent:
    return DeltaEvent(source_method=method, item_id=item_id, content=content, arrived_at=at)


def make_context(**overrides: Any) -> StreamingContext:
    values: dict[str, Any] = {
        "channel_id": "C_TEST",
        "thread_anchor": "thread_ts_1",
        "message_id": "msg_ts_1",
        "session_id": "thread_1",
        "turn_id": "turn_1",
        "mode": "bypassPermissions",
        "model": "test-model",
        # Long cadence so the throttle timer never fires during a test.
        "update_rate_seconds": 60.0,
        "user_id": "U_TEST",
    }
    values.update(overrides)
    return StreamingContext(**values)


@dataclass
class RenderCall:
    conversation_key: str
    text: str
    metadata: Mapping[str, Any]


class FakeRenderer:
    """Records every render; optionally raises the queued errors first."""

    def __init__(self, *, delay: float = 0.0) -> None:
        self.calls: list[RenderCall] = []
        self.errors: list[BaseException] = []
        self.delay = delay

    async def render(self, conversation_key: str, text: str, metadata: Mapping[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.errors:
            raise self.errors.pop(0)
        self.calls.append(RenderCall(conversation_key, text, dict(metadata)))

    @property
    def last(self) -> RenderCall:
        return self.calls[-1]

    def texts(self) -> list[str]:
        return [call.text for call in self.calls]


@dataclass
class FakeBackend:
    """In-memory backend keeping turn lists per thread.

    Mirrors the real backend's id scheme: ``thread/read`` lists turns as
    ``turn-1``, ``turn-2`` and so on.
    """

    threads: dict[str, list[str]] = field(default_factory=dict)
    calls: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)
    forks: int = 0

    def add_turns(self, thread_id: str, count: int) -> None:
        turns = self.threads.setdefault(thread_id, [])
        for _ in range(count):
            turns.append(f"turn-{len(turns) + 1}")

    async def read_thread(self, thread_id: str) -> ThreadInfo:
        self.calls.append(("thread/read", (thread_id,)))
        turns = self.threads.get(thread_id, [])
        return ThreadInfo(id=thread_id, turns=tuple(TurnInfo(id=turn_id) for turn_id in turns))

    async def fork_thread(self, thread_id: str) -> ThreadInfo:
        self.calls.append(("thread/fork", (thread_id,)))
        self.forks += 1
        fork_id = f"{thread_id}-fork-{self.forks}"
        self.threads[fork_id] = list(self.threads.get(thread_id, []))
        return await self.read_thread(fork_id)

    async def rollback_thread(self, thread_id: str, num_turns: int) -> None:
        self.calls.append(("thread/rollback", (thread_id, num_turns)))
        turns = self.threads[thread_id]
        del turns[len(turns) - num_turns:]

    async def interrupt_turn(self, thread_id: str, turn_id: str | None = None) -> None:
        self.calls.append(("turn/interrupt", (thread_id, turn_id)))

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]
