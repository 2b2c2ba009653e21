"""Shared pytest fixtures."""

from __future__ import annotations

import logging

import pytest

from agentbridge.engine.lifecycle import TurnLifecycleController
from agentbridge.events import EventBus
from agentbridge.services.settings import StreamingSettings
from agentbridge.utils import logging as logging_utils

from tests.helpers import FakeBackend, FakeRenderer, make_context


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def controller(renderer: FakeRenderer, backend: FakeBackend) -> TurnLifecycleController:
    return TurnLifecycleController(renderer, backend=backend, settings=StreamingSettings())


@pytest.fixture
def context():
    return make_context()


@pytest.fixture
def restore_package_logging():
    package_logger = logging.getLogger(logging_utils.PACKAGE_LOGGER)
    handlers = list(package_logger.handlers)
    level = package_logger.level
    yield
    for handler in package_logger.handlers:
        if handler not in handlers:
            handler.close()
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)
