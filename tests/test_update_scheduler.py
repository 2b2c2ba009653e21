"""Tests for :mod:`agentbridge.engine.scheduler`."""

from __future__ import annotations

import asyncio

import pytest

from agentbridge.engine.scheduler import UpdateScheduler

KEY = "C1_t1"
CADENCE = 0.05


class RecordingRender:
    def __init__(self, *, delay: float = 0.0, fail_first: bool = False) -> None:
        self.keys: list[str] = []
        self.delay = delay
        self.fail_first = fail_first
        self.active = 0
        self.max_active = 0

    async def __call__(self, key: str) -> None:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_first:
                self.fail_first = False
                raise RuntimeError("render exploded")
            self.keys.append(key)
        finally:
            self.active -= 1


class TestThrottling:
    """First change renders immediately; later changes coalesce per cadence."""

    @pytest.mark.asyncio
    async def test_first_change_renders_immediately(self) -> None:
        render = RecordingRender()
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)

        assert scheduler.notify(KEY)
        await asyncio.sleep(0.01)

        assert render.keys == [KEY]
        scheduler.forget(KEY)

    @pytest.mark.asyncio
    async def test_rapid_notifications_coalesce_into_one_render(self) -> None:
        render = RecordingRender()
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)

        for _ in range(10):
            scheduler.notify(KEY)
        await asyncio.sleep(CADENCE * 3)

        assert len(render.keys) == 1
        scheduler.forget(KEY)

    @pytest.mark.asyncio
    async def test_changes_after_first_render_wait_for_cadence(self) -> None:
        render = RecordingRender()
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)

        scheduler.notify(KEY)
        await asyncio.sleep(0.01)
        for _ in range(10):
            scheduler.notify(KEY)
        assert scheduler.pending(KEY)
        assert len(render.keys) == 1

        await asyncio.sleep(CADENCE * 2)
        assert len(render.keys) == 2
        assert not scheduler.pending(KEY)

        await asyncio.sleep(CADENCE * 2)
        assert len(render.keys) == 2
        scheduler.forget(KEY)

    @pytest.mark.asyncio
    async def test_notify_unknown_key_is_ignored(self) -> None:
        render = RecordingRender()
        scheduler = UpdateScheduler(render)
        assert not scheduler.notify("missing")
        await asyncio.sleep(0.01)
        assert render.keys == []

    def test_begin_rejects_non_positive_cadence(self) -> None:
        scheduler = UpdateScheduler(RecordingRender())
        with pytest.raises(ValueError):
            scheduler.begin(KEY, 0)


class TestCancellation:
    """No timer fires and nothing renders after cancel or forget."""

    @pytest.mark.asyncio
    async def test_cancel_stops_pending_timer(self) -> None:
        render = RecordingRender()
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)

        scheduler.notify(KEY)
        await asyncio.sleep(0.01)
        scheduler.notify(KEY)
        scheduler.cancel(KEY)
        await asyncio.sleep(CADENCE * 3)

        assert len(render.keys) == 1
        assert not scheduler.is_active(KEY)
        assert not scheduler.notify(KEY)

    @pytest.mark.asyncio
    async def test_cancel_before_first_flush_skips_it(self) -> None:
        render = RecordingRender()
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)

        scheduler.notify(KEY)
        scheduler.cancel(KEY)
        await asyncio.sleep(CADENCE * 2)

        assert render.keys == []

    @pytest.mark.asyncio
    async def test_render_now_after_cancel_renders_once(self) -> None:
        render = RecordingRender()
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)
        scheduler.notify(KEY)
        await asyncio.sleep(0.01)
        scheduler.notify(KEY)

        scheduler.cancel(KEY)
        await scheduler.render_now(KEY)
        await asyncio.sleep(CADENCE * 2)

        assert len(render.keys) == 2
        assert scheduler.render_count(KEY) == 2

    @pytest.mark.asyncio
    async def test_forget_drops_schedule(self) -> None:
        render = RecordingRender()
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)
        scheduler.forget(KEY)

        assert not scheduler.is_active(KEY)
        assert not scheduler.pending(KEY)
        assert not scheduler.notify(KEY)


class TestSerialisation:
    """Renders for one conversation queue behind each other."""

    @pytest.mark.asyncio
    async def test_final_render_waits_for_inflight_flush(self) -> None:
        render = RecordingRender(delay=0.03)
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)

        scheduler.notify(KEY)
        await asyncio.sleep(0.005)
        scheduler.cancel(KEY)
        await scheduler.render_now(KEY)

        assert render.max_active == 1
        assert len(render.keys) == 2

    @pytest.mark.asyncio
    async def test_failed_throttled_render_does_not_stop_scheduling(self) -> None:
        render = RecordingRender(fail_first=True)
        scheduler = UpdateScheduler(render)
        scheduler.begin(KEY, CADENCE)

        scheduler.notify(KEY)
        await asyncio.sleep(0.01)
        scheduler.notify(KEY)
        await asyncio.sleep(CADENCE * 2)

        assert render.keys == [KEY]
        scheduler.forget(KEY)
