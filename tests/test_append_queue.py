"""Tests for the serialized append queue."""

from __future__ import annotations

import asyncio

import pytest

from vaultchat.services.append_queue import SerializedAppendQueue


class _RecordingWriter:
    def __init__(self, fail_on: set[str] | None = None, delay: float = 0.0) -> None:
        self.fail_on = set(fail_on or ())
        self.delay = delay
        self.calls: list[str] = []

    async def __call__(self, item: str) -> None:
        self.calls.append(item)
        if self.delay:
            await asyncio.sleep(self.delay)
        if item in self.fail_on:
            raise OSError(f"disk full while writing {item}")


@pytest.mark.asyncio
async def test_draining_an_empty_queue_is_a_noop() -> None:
    writer = _RecordingWriter()
    queue = SerializedAppendQueue(writer)

    assert await queue.drain() == 0
    assert await queue.drain() == 0
    await queue.wait_idle()
    assert writer.calls == []


@pytest.mark.asyncio
async def test_items_are_written_in_fifo_order() -> None:
    writer = _RecordingWriter(delay=0.001)
    queue = SerializedAppendQueue(writer)

    for index in range(1, 6):
        queue.enqueue(f"t{index}")
    await queue.wait_idle()

    assert writer.calls == ["t1", "t2", "t3", "t4", "t5"]
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_enqueue_during_drain_joins_the_active_pass() -> None:
    writer = _RecordingWriter(delay=0.001)
    queue = SerializedAppendQueue(writer)

    queue.enqueue("a")
    await asyncio.sleep(0)
    assert queue.is_draining
    queue.enqueue("b")
    await queue.wait_idle()

    assert writer.calls == ["a", "b"]


@pytest.mark.asyncio
async def test_failed_write_stops_the_pass_and_is_not_retried(event_sink) -> None:
    writer = _RecordingWriter(fail_on={"t2"})
    queue = SerializedAppendQueue(writer, name="scratchpad")

    queue.enqueue("t1")
    queue.enqueue("t2")
    queue.enqueue("t3")
    await queue.wait_idle()

    assert writer.calls == ["t1", "t2"]
    assert queue.pending == 1
    assert not queue.is_draining
    assert event_sink.names() == ["scratchpad_write_failed"]

    queue.enqueue("t4")
    await queue.wait_idle()

    assert writer.calls == ["t1", "t2", "t3", "t4"]
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_explicit_drain_resumes_surviving_items() -> None:
    writer = _RecordingWriter(fail_on={"first"})
    queue = SerializedAppendQueue(writer)

    queue.enqueue("first")
    queue.enqueue("second")
    await queue.wait_idle()

    assert await queue.drain() == 1
    assert writer.calls == ["first", "second"]
