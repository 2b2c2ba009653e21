"""Configuration services."""

from .settings import ConversationSettings, StreamingSettings, load_settings

__all__ = ["ConversationSettings", "StreamingSettings", "load_settings"]
