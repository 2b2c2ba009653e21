"""Method-aware deduplication of partial-text notifications.

The backend emits each response token through several notification
methods at nearly the same instant. A content-only filter would also drop
genuine repeats (``" ="`` twice in ``a = 1\\nb = 2``), so the filter keys
on content *and* emitting method: a fingerprint seen recently is only
rejected when it arrives through a *different* method than the one that was
accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .models import DeltaEvent

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 0.2
DEFAULT_PREFIX_CHARS = 100
_PRUNE_THRESHOLD = 256


@dataclass(slots=True)
class _Seen:
    method: str
    timestamp: float


class DeltaDeduplicator:
    """Classifies deltas as genuine-new, genuine-repeat or cross-channel duplicate."""

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        prefix_chars: int = DEFAULT_PREFIX_CHARS,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if prefix_chars <= 0:
            raise ValueError("prefix_chars must be positive")
        self._ttl = float(ttl_seconds)
        self._prefix_chars = int(prefix_chars)
        self._seen: dict[str, _Seen] = {}
        self.accepted = 0
        self.dropped = 0

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def fingerprint(self, content: str) -> str:
        return content[: self._prefix_chars]

    def accept(self, event: DeltaEvent) -> bool:
        """Return True when ``event`` carries text that should be kept."""

        if not event.content:
            return False
        now = event.arrived_at
        key = self.fingerprint(event.content)
        seen = self._seen.get(key)

        if seen is None or now - seen.timestamp > self._ttl:
            self._record(key, event.source_method, now)
            return True

        if seen.method == event.source_method:
            seen.timestamp = now
            self.accepted += 1
            return True

        self.dropped += 1
        LOGGER.debug(
            "Dropped duplicate delta via %s (accepted via %s): %r",
            event.source_method,
            seen.method,
            key[:20],
        )
        return False

    def reset(self) -> None:
        self._seen.clear()
        self.accepted = 0
        self.dropped = 0

    def __len__(self) -> int:
        return len(self._seen)

    def _record(self, key: str, method: str, now: float) -> None:
        if len(self._seen) >= _PRUNE_THRESHOLD:
            self._prune(now)
        self._seen[key] = _Seen(method=method, timestamp=now)
        self.accepted += 1

    def _prune(self, now: float) -> None:
        expired = [key for key, seen in self._seen.items() if now - seen.timestamp > self._ttl]
        for key in expired:
            del self._seen[key]


__all__ = ["DeltaDeduplicator", "DEFAULT_TTL_SECONDS", "DEFAULT_PREFIX_CHARS"]
