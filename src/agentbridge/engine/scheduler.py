"""Render throttling per conversation.

The first change of a turn is rendered immediately. Later changes mark the
conversation dirty and are coalesced into at most one render per cadence.
All renders for a conversation, including the final one, run under the same
``asyncio.Lock`` so they are queued rather than raced.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

LOGGER = logging.getLogger(__name__)

RenderCallback = Callable[[str], Awaitable[None]]


@dataclass(slots=True)
class _Schedule:
    cadence: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    active: bool = True
    dirty: bool = False
    last_render: float | None = None
    flush_task: asyncio.Task[None] | None = None
    timer_task: asyncio.Task[None] | None = None
    renders: int = 0


class UpdateScheduler:
    """Coalesces change notifications into throttled render calls."""

    def __init__(self, render: RenderCallback, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._render = render
        self._clock = clock
        self._schedules: dict[str, _Schedule] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def begin(self, key: str, cadence_seconds: float) -> None:
        """Start scheduling renders for ``key`` at ``cadence_seconds``."""

        if cadence_seconds <= 0:
            raise ValueError("cadence_seconds must be positive")
        previous = self._schedules.get(key)
        if previous is not None:
            previous.active = False
            self._cancel_timers(previous)
        self._schedules[key] = _Schedule(cadence=float(cadence_seconds))

    def cancel(self, key: str) -> None:
        """Stop timers for ``key``; pending renders that have not started are skipped."""

        schedule = self._schedules.get(key)
        if schedule is None:
            return
        schedule.active = False
        schedule.dirty = False
        self._cancel_timers(schedule)

    def forget(self, key: str) -> None:
        self.cancel(key)
        self._schedules.pop(key, None)

    def shutdown(self) -> None:
        for key in list(self._schedules):
            self.forget(key)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------
    def notify(self, key: str) -> bool:
        """Record a change for ``key``.

        Returns:
            True if the change will be rendered, False if ``key`` is not active.
        """
        schedule = self._schedules.get(key)
        if schedule is None or not schedule.active:
            return False
        schedule.dirty = True

        if schedule.last_render is None and schedule.flush_task is None:
            schedule.flush_task = asyncio.create_task(self._flush_now(key, schedule))
        elif schedule.timer_task is None:
            delay = schedule.cadence
            if schedule.last_render is not None:
                delay = max(0.0, schedule.last_render + schedule.cadence - self._clock())
            schedule.timer_task = asyncio.create_task(self._flush_later(key, schedule, delay))
        return True

    async def render_now(self, key: str) -> None:
        """Render ``key`` immediately, serialised behind any in-flight render.

        Used for the final render after :meth:`cancel`; the active flag is not
        consulted.
        """
        schedule = self._schedules.get(key)
        if schedule is None:
            await self._render(key)
            return
        async with schedule.lock:
            schedule.dirty = False
            schedule.last_render = self._clock()
            schedule.renders += 1
            await self._render(key)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def is_active(self, key: str) -> bool:
        schedule = self._schedules.get(key)
        return schedule is not None and schedule.active

    def pending(self, key: str) -> bool:
        schedule = self._schedules.get(key)
        return schedule is not None and schedule.active and schedule.dirty

    def render_count(self, key: str) -> int:
        schedule = self._schedules.get(key)
        return schedule.renders if schedule is not None else 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _flush_now(self, key: str, schedule: _Schedule) -> None:
        try:
            await self._flush(key, schedule)
        finally:
            if schedule.flush_task is asyncio.current_task():
                schedule.flush_task = None

    async def _flush_later(self, key: str, schedule: _Schedule, delay: float) -> None:
        await asyncio.sleep(delay)
        if schedule.timer_task is asyncio.current_task():
            schedule.timer_task = None
        await self._flush(key, schedule)

    async def _flush(self, key: str, schedule: _Schedule) -> None:
        async with schedule.lock:
            if not schedule.active or not schedule.dirty:
                return
            if self._schedules.get(key) is not schedule:
                return
            schedule.dirty = False
            schedule.last_render = self._clock()
            schedule.renders += 1
            try:
                await self._render(key)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.warning("Throttled render failed for %s", key, exc_info=True)

    @staticmethod
    def _cancel_timers(schedule: _Schedule) -> None:
        # An in-flight flush keeps the lock until its render returns; one that
        # has not started yet sees ``active`` cleared and skips.
        task = schedule.timer_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        schedule.timer_task = None


__all__ = ["UpdateScheduler", "RenderCallback"]
