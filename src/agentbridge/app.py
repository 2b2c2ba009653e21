"""Bootstrap helpers wiring the streaming engine to a backend and a renderer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from .backend.client import AgentBackend, BackendClient, BackendSettings
from .backend.notifications import NotificationNormalizer
from .engine.lifecycle import TurnLifecycleController
from .events import Event, EventBus
from .render.renderer import Renderer, RetryingRenderer
from .services.settings import StreamingSettings, load_settings
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class EngineRuntime:
    """Container returned by :func:`create_runtime`."""

    settings: StreamingSettings
    bus: EventBus
    normalizer: NotificationNormalizer
    controller: TurnLifecycleController
    backend: AgentBackend
    owns_backend: bool = False

    def dispatch(self, message: Mapping[str, Any]) -> Event | None:
        """Feed one raw backend notification into the engine."""

        return self.normalizer.dispatch(message)

    async def aclose(self) -> None:
        """Abort in-flight turns and close the backend client if we created it."""

        await self.controller.shutdown()
        if self.owns_backend and isinstance(self.backend, BackendClient):
            await self.backend.aclose()


def configure_logging(settings: StreamingSettings, *, console: bool = True) -> None:
    """Configure package logging from ``settings.log_level`` and ``settings.log_file``."""

    level = logging_utils.parse_level(settings.log_level)
    logging_utils.setup_logging(level, log_file=settings.log_file, console=console)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def create_runtime(
    renderer: Renderer,
    *,
    settings: StreamingSettings | None = None,
    backend: AgentBackend | None = None,
    configure_logs: bool = True,
    retry_renders: bool = True,
) -> EngineRuntime:
    """Build the event bus, normalizer and controller around ``renderer``.

    When ``backend`` is omitted a :class:`BackendClient` is created from
    ``settings`` and closed by :meth:`EngineRuntime.aclose`.
    """

    settings = settings or load_settings()
    if configure_logs:
        configure_logging(settings)

    owns_backend = backend is None
    if backend is None:
        backend = BackendClient(BackendSettings.from_streaming_settings(settings))

    if retry_renders:
        renderer = RetryingRenderer(
            renderer,
            max_attempts=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
        )

    bus = EventBus()
    controller = TurnLifecycleController(renderer, backend=backend, settings=settings)
    controller.attach(bus)
    _LOGGER.info("Streaming engine ready (backend=%s)", settings.backend_url if owns_backend else "external")
    return EngineRuntime(
        settings=settings,
        bus=bus,
        normalizer=NotificationNormalizer(bus),
        controller=controller,
        backend=backend,
        owns_backend=owns_backend,
    )


__all__ = ["EngineRuntime", "configure_logging", "create_runtime"]
