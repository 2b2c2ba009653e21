"""Busy tracking for backend sessions.

A backend session accepts one turn at a time. The tracker records which
sessions have a turn in flight and which conversation holds each one.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class BusyLease:
    """Represents an in-flight turn holding a backend session."""

    session_id: str
    conversation_key: str | None = None
    acquired_at: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)


class ConversationBusyTracker:
    """In-memory busy set keyed by backend session id."""

    def __init__(self) -> None:
        self._leases: dict[str, BusyLease] = {}

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def try_acquire(self, session_id: str, conversation_key: str | None = None) -> bool:
        """Mark ``session_id`` busy.

        Returns:
            True if acquired, False if a turn is already in flight.
        """
        lease = self._leases.get(session_id)
        if lease is not None:
            LOGGER.warning(
                "Session %s is busy (held by %s since %.0fs ago)",
                session_id,
                lease.conversation_key or "unknown",
                time.time() - lease.acquired_at,
            )
            return False
        self._leases[session_id] = BusyLease(session_id=session_id, conversation_key=conversation_key)
        LOGGER.debug("Busy lease acquired: session=%s, conversation=%s", session_id, conversation_key)
        return True

    def release(self, session_id: str) -> bool:
        """Clear the busy mark.

        Returns:
            True if released, False if the session was not busy.
        """
        lease = self._leases.pop(session_id, None)
        if lease is None:
            LOGGER.debug("Cannot release: session %s not busy", session_id)
            return False
        LOGGER.debug(
            "Busy lease released: session=%s, held=%.2fs",
            session_id,
            time.time() - lease.acquired_at,
        )
        return True

    def force_release_all(self) -> int:
        """Release every lease, returning how many were held."""

        count = len(self._leases)
        self._leases.clear()
        if count:
            LOGGER.warning("Force-released %d busy session(s)", count)
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_busy(self, session_id: str) -> bool:
        return session_id in self._leases

    def holder(self, session_id: str) -> BusyLease | None:
        return self._leases.get(session_id)

    def busy_sessions(self) -> frozenset[str]:
        return frozenset(self._leases)

    def __len__(self) -> int:
        return len(self._leases)


__all__ = ["BusyLease", "ConversationBusyTracker"]
