"""Tests for in-process telemetry events."""

from __future__ import annotations

from vaultchat.services import telemetry as telemetry_service


def test_emit_reaches_registered_listeners_until_unregistered() -> None:
    sink = telemetry_service.InMemoryEventSink()
    telemetry_service.register_event_listener("sample_event", sink)
    telemetry_service.register_event_listener("sample_event", sink)

    telemetry_service.emit("sample_event", {"value": 1})
    telemetry_service.unregister_event_listener("sample_event", sink)
    telemetry_service.emit("sample_event", {"value": 2})

    assert sink.tail() == [{"event": "sample_event", "value": 1}]


def test_failing_listener_does_not_break_emit() -> None:
    sink = telemetry_service.InMemoryEventSink()

    def _broken(payload) -> None:
        raise RuntimeError("listener bug")

    telemetry_service.register_event_listener("sample_event", _broken)
    telemetry_service.register_event_listener("sample_event", sink)
    try:
        telemetry_service.emit("sample_event")
    finally:
        telemetry_service.unregister_event_listener("sample_event", _broken)
        telemetry_service.unregister_event_listener("sample_event", sink)

    assert sink.names() == ["sample_event"]


def test_sink_keeps_a_bounded_tail() -> None:
    sink = telemetry_service.InMemoryEventSink(capacity=10)
    for index in range(15):
        sink({"event": "tick", "index": index})

    assert len(sink) == 10
    assert [event["index"] for event in sink.tail(2)] == [13, 14]
