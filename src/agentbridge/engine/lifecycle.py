"""Turn lifecycle controller.

Owns every per-conversation structure of a streaming turn: context, state,
deduplicators, activity log, throttled renders and the busy lease on the
backend session. Each conversation moves ``idle -> streaming -> {completed |
failed | interrupted} -> idle``; the terminal step always releases the lease,
runs the completion callbacks and deletes the conversation's state, even
when the state is already gone or a cleanup step raises.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, Awaitable, Callable

from ..backend.client import AgentBackend
from ..errors import ConversationBusyError, ForkError, RateLimitedError, RenderError
from ..events import (
    EventBus,
    ReasoningDeltaReceived,
    TextDeltaReceived,
    ToolCallCompleted,
    ToolCallStarted,
    TurnFinalized,
    TurnFinishedNotice,
    TurnStartedNotice,
)
from ..render.renderer import Renderer
from ..services.settings import ConversationSettings, StreamingSettings
from .activity_log import ActivityLog
from .busy import ConversationBusyTracker
from .dedup import DeltaDeduplicator
from .fork import ForkPointResolver, ForkResult
from .models import (
    ActivityEntry,
    ActivityKind,
    DeltaEvent,
    ForkPoint,
    StreamingContext,
    StreamingState,
    TurnStatus,
)
from .scheduler import UpdateScheduler
from .status_line import StatusLine

LOGGER = logging.getLogger(__name__)

TurnCompletedCallback = Callable[[StreamingContext, TurnStatus], "Awaitable[None] | None"]

DEFAULT_SEGMENT_ID = "response"


class TurnLifecycleController:
    """Drives streaming turns from start to guaranteed cleanup.

    Events Emitted:
        - TurnFinalized: On the attached bus, once a turn's cleanup has run.
    """

    def __init__(
        self,
        renderer: Renderer,
        *,
        backend: AgentBackend | None = None,
        settings: StreamingSettings | None = None,
        busy_tracker: ConversationBusyTracker | None = None,
        activity_log: ActivityLog | None = None,
    ) -> None:
        self._renderer = renderer
        self._backend = backend
        self._settings = settings or StreamingSettings()
        self._busy = busy_tracker or ConversationBusyTracker()
        self._activity = activity_log or ActivityLog(
            max_live_entries=self._settings.max_live_entries,
            rolling_window_size=self._settings.rolling_window_size,
        )
        self._scheduler = UpdateScheduler(self._render)
        self._fork = ForkPointResolver(backend) if backend is not None else None

        self._contexts: dict[str, StreamingContext] = {}
        self._states: dict[str, StreamingState] = {}
        self._conversation_settings: dict[str, ConversationSettings] = {}
        self._text_dedup: dict[str, DeltaDeduplicator] = {}
        self._reasoning_dedup: dict[str, DeltaDeduplicator] = {}
        self._live_turn_ids: dict[str, str] = {}
        self._aborted: set[str] = set()
        self._finalizing: set[str] = set()
        self._callbacks: list[TurnCompletedCallback] = []

        self._bus: EventBus | None = None
        self._subscriptions: list[tuple[type, Callable[[Any], None]]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def activity_log(self) -> ActivityLog:
        return self._activity

    @property
    def busy_tracker(self) -> ConversationBusyTracker:
        return self._busy

    @property
    def scheduler(self) -> UpdateScheduler:
        return self._scheduler

    def context(self, key: str) -> StreamingContext | None:
        return self._contexts.get(key)

    def state(self, key: str) -> StreamingState | None:
        return self._states.get(key)

    def active_conversations(self) -> list[str]:
        return list(self._contexts)

    def is_busy(self, session_id: str) -> bool:
        return self._busy.is_busy(session_id)

    # ------------------------------------------------------------------
    # Turn Lifecycle
    # ------------------------------------------------------------------

    def start_turn(
        self,
        context: StreamingContext,
        settings: ConversationSettings | None = None,
    ) -> StreamingState:
        """Begin streaming a turn for ``context``.

        ``settings`` supplies the conversation's budgets and cadence; when
        omitted the process defaults are used with the context's cadence.

        Raises:
            ConversationBusyError: If the backend session or the conversation
                already has a turn in flight.
            ValueError: If the cadence is not positive; the session stays free.
        """
        key = context.conversation_key
        if key in self._contexts:
            LOGGER.warning("Conversation %s already has a turn in flight", key)
            raise ConversationBusyError(context.session_id, conversation_key=key)

        if settings is None:
            settings = self._settings.conversation_defaults()
            cadence = context.update_rate_seconds
        else:
            cadence = settings.update_rate_seconds

        if not self._busy.try_acquire(context.session_id, key):
            raise ConversationBusyError(context.session_id, conversation_key=key)
        try:
            self._scheduler.begin(key, cadence)
        except Exception:
            self._busy.release(context.session_id)
            self._scheduler.forget(key)
            raise

        state = StreamingState()
        self._contexts[key] = context
        self._states[key] = state
        self._conversation_settings[key] = settings
        self._text_dedup[key] = self._new_deduplicator()
        self._reasoning_dedup[key] = self._new_deduplicator()
        self._activity.clear(key)

        LOGGER.debug(
            "Turn started: conversation=%s, session=%s, turn=%s, cadence=%.1fs",
            key,
            context.session_id,
            context.turn_id,
            cadence,
        )
        return state

    async def complete_turn(
        self,
        thread_id: str,
        turn_id: str | None,
        status: str | TurnStatus,
        *,
        error: str | None = None,
    ) -> bool:
        """Finalize the turn reported complete by the backend.

        Returns:
            True if a conversation was finalized, False if the notification
            matched nothing or the turn is already being aborted or finalized.
        """
        key = self._route(thread_id, turn_id)
        if key is None:
            LOGGER.warning(
                "No streaming conversation for completed turn %s/%s", thread_id, turn_id
            )
            return False
        if key in self._aborted:
            LOGGER.info("Ignoring completion of aborted turn in %s", key)
            return False
        if key in self._finalizing:
            LOGGER.info("Ignoring duplicate completion for %s", key)
            return False
        await self._finalize(key, TurnStatus.parse(status), error=error)
        return True

    async def abort(self, key: str) -> bool:
        """Abort the conversation's in-flight turn and finalize it as interrupted."""

        context = self._contexts.get(key)
        if context is None or key in self._aborted:
            return False
        if key in self._finalizing:
            LOGGER.info("Turn in %s is already finalizing; abort ignored", key)
            return False
        self._aborted.add(key)
        LOGGER.info("Aborting turn %s in %s", context.turn_id, key)
        if self._backend is not None:
            try:
                await self._backend.interrupt_turn(
                    context.session_id, self._live_turn_ids.get(key, context.turn_id)
                )
            except Exception:
                LOGGER.warning("Backend interrupt failed for %s", key, exc_info=True)
        if self._contexts.get(key) is context:
            await self._finalize(key, TurnStatus.INTERRUPTED)
        return True

    def on_turn_completed(self, callback: TurnCompletedCallback) -> Callable[[], None]:
        """Register ``callback(context, status)``; returns an unsubscribe function."""

        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Stream handling
    # ------------------------------------------------------------------

    def handle_delta(self, key: str, event: DeltaEvent) -> bool:
        """Apply a response-text delta; returns False if it was dropped."""

        state = self._streaming_state(key)
        if state is None:
            return False
        if not self._text_dedup[key].accept(event):
            return False

        segment_id = event.item_id or state.current_segment_id or DEFAULT_SEGMENT_ID
        live = self._activity.live(key)
        if segment_id != state.current_segment_id or (
            live is not None and live.kind is not ActivityKind.GENERATING
        ):
            self._close_live(key, state)
            state.current_segment_id = segment_id
            state.segment_started_at = time.monotonic()

        state.append_text(segment_id, event.content)
        text = state.segment_text(segment_id)
        self._activity.set_live(
            key,
            ActivityEntry(
                kind=ActivityKind.GENERATING,
                content=text,
                char_count=len(text),
                in_progress=True,
                segment_id=segment_id,
            ),
        )
        self._scheduler.notify(key)
        return True

    def handle_thinking(self, key: str, text: str) -> bool:
        state = self._streaming_state(key)
        if state is None or not text:
            return False
        live = self._activity.live(key)
        if live is not None and live.kind is not ActivityKind.THINKING:
            self._close_live(key, state)
        if state.thinking_started_at is None:
            state.thinking_started_at = time.monotonic()
        state.thinking_parts.append(text)
        thinking = state.thinking_text
        self._activity.set_live(
            key,
            ActivityEntry(
                kind=ActivityKind.THINKING,
                content=thinking,
                char_count=len(thinking),
                in_progress=True,
            ),
        )
        self._scheduler.notify(key)
        return True

    def handle_tool_started(
        self,
        key: str,
        call_id: str,
        tool_name: str,
        tool_input: Any = None,
    ) -> bool:
        state = self._streaming_state(key)
        if state is None:
            return False
        self._close_live(key, state)
        state.active_tools[call_id] = time.monotonic()
        self._activity.append(
            key,
            ActivityEntry(
                kind=ActivityKind.TOOL_START,
                tool=tool_name,
                call_id=call_id,
                tool_input=tool_input,
            ),
        )
        self._scheduler.notify(key)
        return True

    def handle_tool_completed(
        self,
        key: str,
        call_id: str,
        tool_name: str,
        tool_input: Any = None,
        *,
        output: str | None = None,
        error: str | None = None,
        duration_ms: float | None = None,
    ) -> bool:
        state = self._streaming_state(key)
        if state is None:
            return False
        self._close_live(key, state)
        started = state.active_tools.pop(call_id, None)
        if duration_ms is None and started is not None:
            duration_ms = (time.monotonic() - started) * 1000
        self._activity.append(
            key,
            ActivityEntry(
                kind=ActivityKind.TOOL_COMPLETE,
                tool=tool_name,
                call_id=call_id,
                tool_input=tool_input,
                tool_output=output,
                tool_is_error=error is not None,
                duration_ms=duration_ms,
                message=error,
            ),
        )
        self._scheduler.notify(key)
        return True

    def note_session_changed(
        self,
        key: str,
        new_session_id: str,
        previous_session_id: str | None = None,
    ) -> bool:
        """Record mid-turn that the conversation now points at ``new_session_id``.

        Returns False when the conversation has no turn in flight.
        """

        if self._streaming_state(key) is None:
            LOGGER.debug("No turn in flight for %s; session change not logged", key)
            return False
        self._activity.append(
            key,
            ActivityEntry(
                kind=ActivityKind.SESSION_CHANGED,
                message=new_session_id,
                previous_session_id=previous_session_id,
            ),
        )
        self._scheduler.notify(key)
        return True

    # ------------------------------------------------------------------
    # Event bus wiring
    # ------------------------------------------------------------------

    def attach(self, bus: EventBus) -> None:
        """Subscribe to backend events on ``bus``."""

        if self._bus is not None:
            self.detach()
        self._bus = bus
        self._subscriptions = [
            (TextDeltaReceived, self._on_text_delta),
            (ReasoningDeltaReceived, self._on_reasoning_delta),
            (ToolCallStarted, self._on_tool_started),
            (ToolCallCompleted, self._on_tool_completed),
            (TurnStartedNotice, self._on_turn_started),
            (TurnFinishedNotice, self._on_turn_finished),
        ]
        for event_type, handler in self._subscriptions:
            bus.subscribe(event_type, handler)

    def detach(self) -> None:
        """Unsubscribe every handler registered by :meth:`attach`."""

        if self._bus is None:
            return
        for event_type, handler in self._subscriptions:
            self._bus.unsubscribe(event_type, handler)
        self._subscriptions = []
        self._bus = None

    async def wait_for_pending(self) -> None:
        """Wait for finalization tasks spawned from bus notifications."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Detach, abort every in-flight turn and drop remaining leases."""

        self.detach()
        await self.wait_for_pending()
        for key in list(self._contexts):
            await self.abort(key)
        self._scheduler.shutdown()
        self._busy.force_release_all()

    def _on_text_delta(self, event: TextDeltaReceived) -> None:
        key = self._route(event.thread_id, event.turn_id)
        if key is None:
            return
        self.handle_delta(
            key,
            DeltaEvent(source_method=event.source_method, item_id=event.item_id, content=event.content),
        )

    def _on_reasoning_delta(self, event: ReasoningDeltaReceived) -> None:
        key = self._route(event.thread_id, event.turn_id)
        if key is None or key not in self._reasoning_dedup:
            return
        delta = DeltaEvent(source_method=event.source_method, item_id=event.item_id, content=event.content)
        if self._reasoning_dedup[key].accept(delta):
            self.handle_thinking(key, event.content)

    def _on_tool_started(self, event: ToolCallStarted) -> None:
        key = self._route(event.thread_id, event.turn_id)
        if key is not None:
            self.handle_tool_started(key, event.call_id, event.tool_name, event.tool_input)

    def _on_tool_completed(self, event: ToolCallCompleted) -> None:
        key = self._route(event.thread_id, event.turn_id)
        if key is not None:
            self.handle_tool_completed(
                key,
                event.call_id,
                event.tool_name,
                event.tool_input,
                output=event.output,
                error=event.error,
                duration_ms=event.duration_ms,
            )

    def _on_turn_started(self, event: TurnStartedNotice) -> None:
        for key, context in self._contexts.items():
            if context.session_id == event.thread_id and key not in self._live_turn_ids:
                self._live_turn_ids[key] = event.turn_id
                LOGGER.debug("Turn %s live id is %s", context.turn_id, event.turn_id)
                return

    def _on_turn_finished(self, event: TurnFinishedNotice) -> None:
        task = asyncio.create_task(
            self.complete_turn(event.thread_id, event.turn_id, event.status, error=event.error)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Fork
    # ------------------------------------------------------------------

    async def capture_fork_point(self, thread_id: str, identifier: str | None = None) -> ForkPoint:
        return await self._require_fork().capture(thread_id, identifier)

    async def fork_at(self, thread_id: str, captured_index: int) -> ForkResult:
        """Fork ``thread_id`` at a previously captured turn index."""

        return await self._require_fork().fork_at(thread_id, captured_index)

    def _require_fork(self) -> ForkPointResolver:
        if self._fork is None:
            raise ForkError("No backend configured for forking")
        return self._fork

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _finalize(self, key: str, status: TurnStatus, *, error: str | None = None) -> None:
        self._finalizing.add(key)
        context = self._contexts[key]
        state = self._states.get(key)
        try:
            self._scheduler.cancel(key)
            if state is None:
                LOGGER.warning("No streaming state for %s; skipping final render", key)
            else:
                state.status = status
                state.error = error
                self._close_live(key, state)
                if status is TurnStatus.FAILED:
                    self._activity.append(
                        key, ActivityEntry(kind=ActivityKind.ERROR, message=error or "Turn failed")
                    )
                elif status is TurnStatus.INTERRUPTED and key in self._aborted:
                    self._activity.append(key, ActivityEntry(kind=ActivityKind.ABORTED))
                try:
                    await self._scheduler.render_now(key)
                except Exception:
                    LOGGER.exception("Final render failed for %s", key)
        except Exception:
            LOGGER.exception("Error while finalizing turn in %s", key)
        finally:
            self._busy.release(context.session_id)
            await self._run_callbacks(context, status)
            metadata = self._teardown(key, state)
            LOGGER.debug("Turn %s in %s finalized as %s", context.turn_id, key, status.value)
            if self._bus is not None:
                self._bus.publish(
                    TurnFinalized(
                        conversation_key=key,
                        session_id=context.session_id,
                        turn_id=context.turn_id,
                        status=status.value,
                        metadata=metadata,
                    )
                )

    async def _run_callbacks(self, context: StreamingContext, status: TurnStatus) -> None:
        for callback in list(self._callbacks):
            try:
                result = callback(context, status)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                LOGGER.exception("Turn-completed callback %r failed", callback)

    def _teardown(self, key: str, state: StreamingState | None) -> dict[str, Any]:
        metadata: dict[str, Any] = {}
        if state is not None:
            metadata = {
                "render_count": state.render_count,
                "rate_limit_hits": state.rate_limit_hits,
                "response_chars": len(state.response_text),
            }
        dedup = self._text_dedup.pop(key, None)
        if dedup is not None:
            metadata["dropped_duplicates"] = dedup.dropped
            dedup.reset()
        self._reasoning_dedup.pop(key, None)
        self._scheduler.forget(key)
        self._activity.clear(key)
        self._states.pop(key, None)
        self._contexts.pop(key, None)
        self._conversation_settings.pop(key, None)
        self._live_turn_ids.pop(key, None)
        self._aborted.discard(key)
        self._finalizing.discard(key)
        return metadata

    async def _render(self, key: str) -> None:
        context = self._contexts.get(key)
        state = self._states.get(key)
        if context is None or state is None:
            return
        settings = self._conversation_settings.get(key) or self._settings.conversation_defaults()
        text = self._activity.render(key, settings.activity_max_chars)
        response = state.response_text
        status_line = StatusLine(
            mode=context.mode,
            model=context.model,
            session_id=context.session_id,
            duration_ms=(time.time() - context.started_at) * 1000 if state.status.is_terminal else None,
            rate_limit_hits=state.rate_limit_hits,
        )
        metadata = {
            "status": state.status.value,
            "final": state.status.is_terminal,
            "session_id": context.session_id,
            "turn_id": context.turn_id,
            "message_id": context.message_id,
            "status_line": status_line.render(),
            "response": truncate_response(response, settings.response_max_chars),
            "response_chars": len(response),
        }
        try:
            await self._renderer.render(key, text, metadata)
        except RateLimitedError:
            state.rate_limit_hits += 1
            LOGGER.warning("Render rate limited for %s (%d hits)", key, state.rate_limit_hits)
            return
        except RenderError as exc:
            LOGGER.warning("Render failed for %s: %s", key, exc)
            return
        state.last_rendered = text
        state.render_count += 1

    def _close_live(self, key: str, state: StreamingState) -> None:
        live = self._activity.live(key)
        if live is None:
            return
        now = time.monotonic()
        started = state.thinking_started_at if live.kind is ActivityKind.THINKING else state.segment_started_at
        duration_ms = (now - started) * 1000 if started is not None else None
        self._activity.commit_live(key, duration_ms=duration_ms)
        if live.kind is ActivityKind.THINKING:
            state.thinking_parts.clear()
            state.thinking_started_at = None
        else:
            state.current_segment_id = None
            state.segment_started_at = None

    def _streaming_state(self, key: str) -> StreamingState | None:
        state = self._states.get(key)
        if state is None or state.status.is_terminal or key in self._aborted:
            return None
        return state

    def _route(self, thread_id: str, turn_id: str | None) -> str | None:
        for key, context in self._contexts.items():
            if context.session_id != thread_id:
                continue
            if turn_id is None or turn_id in (context.turn_id, self._live_turn_ids.get(key)):
                return key
            LOGGER.debug(
                "Turn id %s does not match %s in %s", turn_id, context.turn_id, key
            )
            return None
        return None

    def _new_deduplicator(self) -> DeltaDeduplicator:
        return DeltaDeduplicator(
            ttl_seconds=self._settings.dedup_ttl_seconds,
            prefix_chars=self._settings.dedup_prefix_chars,
        )


def truncate_response(text: str, max_chars: int) -> str:
    """Trim ``text`` to ``max_chars``, closing a code fence left open by the cut."""

    if len(text) <= max_chars:
        return text
    closing = "\n```"
    cut = text[: max(0, max_chars - 3)]
    if cut.count("```") % 2:
        cut = text[: max(0, max_chars - 3 - len(closing))]
        if cut.count("```") % 2:
            return cut + "..." + closing
    return cut + "..."


__all__ = ["TurnLifecycleController", "TurnCompletedCallback", "truncate_response"]
