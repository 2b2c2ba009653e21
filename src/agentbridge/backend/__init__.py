"""Agent backend access: JSON-RPC client and notification normalization."""

from .client import AgentBackend, BackendClient, BackendSettings, ThreadInfo, TurnInfo
from .notifications import DeltaChannel, NotificationNormalizer, extract_thread_id, extract_turn_id

__all__ = [
    "AgentBackend",
    "BackendClient",
    "BackendSettings",
    "ThreadInfo",
    "TurnInfo",
    "DeltaChannel",
    "NotificationNormalizer",
    "extract_thread_id",
    "extract_turn_id",
]
