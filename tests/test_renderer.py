"""Tests for :mod:`agentbridge.render.renderer`."""

from __future__ import annotations

import pytest

from agentbridge.errors import RateLimitedError, RenderError
from agentbridge.render import RetryingRenderer

from tests.helpers import FakeRenderer


def _retrying(inner: FakeRenderer, **kwargs) -> RetryingRenderer:
    kwargs.setdefault("retry_min_seconds", 0.001)
    kwargs.setdefault("retry_max_seconds", 0.002)
    return RetryingRenderer(inner, **kwargs)


class TestRetryingRenderer:
    """Backoff around transient platform failures."""

    @pytest.mark.asyncio
    async def test_success_passes_through(self) -> None:
        inner = FakeRenderer()
        await _retrying(inner).render("C1_t1", "text", {"final": False})
        assert inner.last.text == "text"
        assert inner.last.metadata == {"final": False}

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self) -> None:
        inner = FakeRenderer()
        inner.errors.extend([RenderError("timeout"), RateLimitedError(retry_after=0.001)])
        renderer = _retrying(inner)

        await renderer.render("C1_t1", "text", {})

        assert len(inner.calls) == 1
        assert renderer.rate_limit_hits == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        inner = FakeRenderer()
        inner.errors.extend([RenderError("down")] * 3)
        with pytest.raises(RenderError):
            await _retrying(inner, max_attempts=2).render("C1_t1", "text", {})
        assert len(inner.errors) == 1

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self) -> None:
        inner = FakeRenderer()
        inner.errors.extend([KeyError("bad payload"), RenderError("unused")])
        with pytest.raises(KeyError):
            await _retrying(inner).render("C1_t1", "text", {})
        assert len(inner.errors) == 1

    @pytest.mark.asyncio
    async def test_rate_limit_error_surfaces_when_exhausted(self) -> None:
        inner = FakeRenderer()
        inner.errors.append(RateLimitedError(retry_after=30))
        renderer = _retrying(inner, max_attempts=1)
        with pytest.raises(RateLimitedError) as excinfo:
            await renderer.render("C1_t1", "text", {})
        assert excinfo.value.retry_after == 30
        assert excinfo.value.error_code == "rate_limited"
        assert renderer.rate_limit_hits == 1
