"""Shared pytest fixtures."""

from __future__ import annotations

from typing import Iterator

import pytest

from vaultchat.services import telemetry as telemetry_service
from vaultchat.services.context_storage import ContextStorage


_EVENTS = (
    "context_build",
    "chat_turn_completed",
    "chat_fallback_completion",
    "background_task_failed",
    "scratchpad_write_failed",
)


@pytest.fixture
def event_sink() -> Iterator[telemetry_service.InMemoryEventSink]:
    sink = telemetry_service.InMemoryEventSink()
    for name in _EVENTS:
        telemetry_service.register_event_listener(name, sink)
    yield sink
    for name in _EVENTS:
        telemetry_service.unregister_event_listener(name, sink)


@pytest.fixture
def storage(tmp_path) -> ContextStorage:
    return ContextStorage(tmp_path / "sessions", clock=lambda: "2024-01-01T00:00:00.000Z")
