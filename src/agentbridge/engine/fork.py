"""Resolution of captured conversation points into backend forks.

The live stream reports bare zero-based turn ids (``"0"``, ``"1"``) while
``thread/read`` lists ``"turn-1"``, ``"turn-2"``. A fork point therefore
stores the turn *index* captured when the affordance was created; at fork
time the thread is read fresh, forked whole and rolled back to that index.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from ..backend.client import AgentBackend, ThreadInfo, TurnInfo
from ..errors import ForkError, TurnIndexNotFoundError
from .models import ForkPoint

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ForkResult:
    """Outcome of :meth:`ForkPointResolver.fork_at`."""

    source_thread_id: str
    thread_id: str
    turn_index: int
    turns_rolled_back: int


def find_turn_index(turns: Sequence[TurnInfo | str], identifier: str) -> int | None:
    """Locate ``identifier`` among ``turns``.

    An exact id match wins. Otherwise a bare integer ``n`` is treated as the
    zero-based stream id and matched against ``"turn-{n+1}"``.
    """

    ids = [turn if isinstance(turn, str) else turn.id for turn in turns]
    for index, turn_id in enumerate(ids):
        if turn_id == identifier:
            return index
    try:
        number = int(identifier)
    except (TypeError, ValueError):
        return None
    if number < 0:
        return None
    target = f"turn-{number + 1}"
    for index, turn_id in enumerate(ids):
        if turn_id == target:
            return index
    return None


class ForkPointResolver:
    """Captures fork points and replays them against the backend."""

    def __init__(self, backend: AgentBackend) -> None:
        self._backend = backend

    async def capture(self, thread_id: str, identifier: str | None = None) -> ForkPoint:
        """Capture the index of ``identifier`` (or the latest turn) in ``thread_id``.

        Raises:
            TurnIndexNotFoundError: If the thread has no matching turn.
        """
        thread = await self._backend.read_thread(thread_id)
        total = len(thread.turns)
        if identifier is None:
            if total == 0:
                raise TurnIndexNotFoundError(thread_id, "latest", turn_count=0)
            index = total - 1
        else:
            found = find_turn_index(thread.turns, identifier)
            if found is None:
                LOGGER.warning(
                    "Turn %s not found in thread %s (%d turns)", identifier, thread_id, total
                )
                raise TurnIndexNotFoundError(thread_id, identifier, turn_count=total)
            index = found
        point = ForkPoint(
            thread_id=thread_id,
            turn_index=index,
            turn_identifier=identifier or thread.turns[index].id,
        )
        LOGGER.debug("Captured fork point %s[%d]", thread_id, index)
        return point

    async def fork_at(self, thread_id: str, turn_index: int) -> ForkResult:
        """Fork ``thread_id`` keeping turns ``0..turn_index`` inclusive.

        Raises:
            TurnIndexNotFoundError: If ``turn_index`` is outside the thread.
            ForkError: If the backend does not return a forked thread.
        """
        thread = await self._backend.read_thread(thread_id)
        total = len(thread.turns)
        if not 0 <= turn_index < total:
            raise TurnIndexNotFoundError(thread_id, turn_index, turn_count=total)

        forked: ThreadInfo = await self._backend.fork_thread(thread_id)
        if not forked.id:
            raise ForkError("Backend did not return a forked thread", thread_id=thread_id)

        rollback = total - (turn_index + 1)
        if rollback > 0:
            await self._backend.rollback_thread(forked.id, rollback)
        LOGGER.info(
            "Forked %s at turn %d into %s (rolled back %d of %d turns)",
            thread_id,
            turn_index,
            forked.id,
            rollback,
            total,
        )
        return ForkResult(
            source_thread_id=thread_id,
            thread_id=forked.id,
            turn_index=turn_index,
            turns_rolled_back=rollback,
        )

    async def fork_point(self, point: ForkPoint) -> ForkResult:
        return await self.fork_at(point.thread_id, point.turn_index)


__all__ = ["ForkPointResolver", "ForkResult", "find_turn_index"]
