"""Streaming synchronization engine."""

from .activity_log import ActivityLog, render_entries, render_entry
from .busy import BusyLease, ConversationBusyTracker
from .dedup import DeltaDeduplicator
from .fork import ForkPointResolver, ForkResult, find_turn_index
from .lifecycle import TurnCompletedCallback, TurnLifecycleController
from .models import (
    ActivityEntry,
    ActivityKind,
    DeltaEvent,
    ForkPoint,
    StreamingContext,
    StreamingState,
    TurnStatus,
    make_conversation_key,
    parse_conversation_key,
)
from .scheduler import UpdateScheduler
from .status_line import StatusLine

__all__ = [
    "ActivityEntry",
    "ActivityKind",
    "ActivityLog",
    "BusyLease",
    "ConversationBusyTracker",
    "DeltaDeduplicator",
    "DeltaEvent",
    "ForkPoint",
    "ForkPointResolver",
    "ForkResult",
    "StatusLine",
    "StreamingContext",
    "StreamingState",
    "TurnCompletedCallback",
    "TurnLifecycleController",
    "TurnStatus",
    "UpdateScheduler",
    "find_turn_index",
    "make_conversation_key",
    "parse_conversation_key",
    "render_entries",
    "render_entry",
]
