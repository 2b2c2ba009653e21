"""Rendering interfaces."""

from .renderer import Renderer, RetryingRenderer

__all__ = ["Renderer", "RetryingRenderer"]
