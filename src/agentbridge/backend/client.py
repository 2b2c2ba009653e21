"""JSON-RPC client for the agent backend's thread and turn APIs."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import BackendError
from ..services.settings import StreamingSettings

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BackendSettings:
    """Subset of settings required to reach the backend."""

    url: str
    request_timeout: float | None = 30.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None

    @classmethod
    def from_streaming_settings(cls, settings: StreamingSettings) -> "BackendSettings":
        return cls(
            url=settings.backend_url,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
        )


@dataclass(frozen=True, slots=True)
class TurnInfo:
    """A turn as listed by ``thread/read`` (ids look like ``turn-1``)."""

    id: str
    status: str | None = None


@dataclass(frozen=True, slots=True)
class ThreadInfo:
    id: str
    turns: tuple[TurnInfo, ...] = field(default_factory=tuple)

    @property
    def turn_ids(self) -> list[str]:
        return [turn.id for turn in self.turns]

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ThreadInfo":
        """Parse a ``{"thread": {...}}`` result or a bare thread object."""

        thread = payload.get("thread", payload)
        if not isinstance(thread, Mapping) or not thread.get("id"):
            raise BackendError("thread/read", "Backend returned a thread without an id")
        turns = tuple(
            TurnInfo(id=str(turn.get("id", "")), status=turn.get("status"))
            for turn in thread.get("turns") or ()
            if isinstance(turn, Mapping)
        )
        return cls(id=str(thread["id"]), turns=turns)


class AgentBackend(Protocol):
    """Backend operations the engine depends on."""

    async def read_thread(self, thread_id: str) -> ThreadInfo:
        ...

    async def fork_thread(self, thread_id: str) -> ThreadInfo:
        ...

    async def rollback_thread(self, thread_id: str, num_turns: int) -> None:
        ...

    async def interrupt_turn(self, thread_id: str, turn_id: str | None = None) -> None:
        ...


class _TransientBackendError(BackendError):
    """HTTP-level failure worth retrying (5xx, 429)."""


class BackendClient:
    """Async JSON-RPC client with retry semantics."""

    def __init__(self, settings: BackendSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._ids = itertools.count(1)

    @property
    def settings(self) -> BackendSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Thread / turn operations
    # ------------------------------------------------------------------
    async def read_thread(self, thread_id: str) -> ThreadInfo:
        result = await self.call("thread/read", {"threadId": thread_id, "includeTurns": True})
        return ThreadInfo.from_payload(result or {})

    async def fork_thread(self, thread_id: str) -> ThreadInfo:
        result = await self.call("thread/fork", {"threadId": thread_id})
        return ThreadInfo.from_payload(result or {})

    async def rollback_thread(self, thread_id: str, num_turns: int) -> None:
        if num_turns <= 0:
            raise ValueError("num_turns must be positive")
        await self.call("thread/rollback", {"threadId": thread_id, "numTurns": num_turns})

    async def interrupt_turn(self, thread_id: str, turn_id: str | None = None) -> None:
        params: dict[str, Any] = {"threadId": thread_id}
        if turn_id is not None:
            params["turnId"] = turn_id
        await self.call("turn/interrupt", params)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    async def call(self, method: str, params: Mapping[str, Any] | None = None) -> Any:
        """Issue a JSON-RPC request and return its ``result``.

        Raises:
            BackendError: If the backend answers with an error object or the
                request keeps failing after the configured retries.
        """
        request_id = next(self._ids)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": dict(params or {})}
        LOGGER.debug("Backend request %s id=%s", method, request_id)

        async for attempt in self._retrying():
            with attempt:
                response = await self._client.post(self._settings.url, json=payload)
                if response.status_code == 429 or response.status_code >= 500:
                    raise _TransientBackendError(
                        method,
                        f"Backend returned HTTP {response.status_code}",
                        code=response.status_code,
                    )
                if response.is_error:
                    raise BackendError(
                        method,
                        f"Backend returned HTTP {response.status_code}",
                        code=response.status_code,
                    )
                body = response.json()
        return self._unwrap(method, body)

    def _unwrap(self, method: str, body: Any) -> Any:
        if not isinstance(body, Mapping):
            raise BackendError(method, "Backend returned a malformed response")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, Mapping) else str(error)
            code = error.get("code") if isinstance(error, Mapping) else None
            LOGGER.warning("Backend %s failed: %s", method, message)
            raise BackendError(method, message or "Unknown backend error", code=code)
        return body.get("result")

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type((httpx.TransportError, _TransientBackendError)),
        )

    def _build_client(self, settings: BackendSettings) -> httpx.AsyncClient:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return httpx.AsyncClient(timeout=settings.request_timeout, headers=headers)

    async def aclose(self) -> None:
        """Close the underlying HTTP client to release network resources."""

        await self._client.aclose()


__all__ = [
    "AgentBackend",
    "BackendClient",
    "BackendSettings",
    "ThreadInfo",
    "TurnInfo",
]
