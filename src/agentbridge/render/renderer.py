"""Outbound rendering seam between the engine and the chat platform."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import RateLimitedError, RenderError

LOGGER = logging.getLogger(__name__)


class Renderer(Protocol):
    """Pushes a conversation's rendered activity to the chat platform.

    ``metadata`` carries the turn status, status line and the truncated
    response text so the platform layer can lay them out as it sees fit.
    Implementations raise :class:`RenderError` (or
    :class:`RateLimitedError`) for transient failures.
    """

    async def render(self, conversation_key: str, text: str, metadata: Mapping[str, Any]) -> None:
        ...


class RetryingRenderer:
    """Wraps a :class:`Renderer` with exponential backoff.

    Rate-limit failures wait at least the ``retry_after`` the platform
    asked for.
    """

    def __init__(
        self,
        inner: Renderer,
        *,
        max_attempts: int = 3,
        retry_min_seconds: float = 0.5,
        retry_max_seconds: float = 6.0,
    ) -> None:
        self._inner = inner
        self._max_attempts = max(1, max_attempts)
        self._backoff = wait_exponential(multiplier=retry_min_seconds, max=retry_max_seconds)
        self.rate_limit_hits = 0

    async def render(self, conversation_key: str, text: str, metadata: Mapping[str, Any]) -> None:
        async for attempt in self._retrying():
            with attempt:
                try:
                    await self._inner.render(conversation_key, text, metadata)
                except RateLimitedError:
                    self.rate_limit_hits += 1
                    LOGGER.warning(
                        "Rate limited rendering %s (attempt %d)",
                        conversation_key,
                        attempt.retry_state.attempt_number,
                    )
                    raise

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(RenderError),
        )

    def _wait(self, retry_state: RetryCallState) -> float:
        delay = self._backoff(retry_state)
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            error = outcome.exception()
            if isinstance(error, RateLimitedError) and error.retry_after:
                delay = max(delay, float(error.retry_after))
        return delay


__all__ = ["Renderer", "RetryingRenderer"]
