"""Streaming synchronization engine bridging chat conversations and agent backends."""

from .app import EngineRuntime, configure_logging, create_runtime
from .engine import (
    ActivityLog,
    ConversationBusyTracker,
    DeltaDeduplicator,
    ForkPointResolver,
    StreamingContext,
    TurnLifecycleController,
    TurnStatus,
    UpdateScheduler,
    make_conversation_key,
)
from .errors import AgentBridgeError, ConversationBusyError, TurnIndexNotFoundError
from .events import EventBus
from .services import ConversationSettings, StreamingSettings, load_settings

__version__ = "0.1.0"

__all__ = [
    "ActivityLog",
    "AgentBridgeError",
    "ConversationBusyError",
    "ConversationBusyTracker",
    "ConversationSettings",
    "DeltaDeduplicator",
    "EngineRuntime",
    "EventBus",
    "ForkPointResolver",
    "StreamingContext",
    "StreamingSettings",
    "TurnIndexNotFoundError",
    "TurnLifecycleController",
    "TurnStatus",
    "UpdateScheduler",
    "configure_logging",
    "create_runtime",
    "load_settings",
    "make_conversation_key",
    "__version__",
]
