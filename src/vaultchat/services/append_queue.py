"""Serialized FIFO queue for best-effort background writes."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Awaitable, Callable, Deque, Generic, TypeVar

from . import telemetry as telemetry_service

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class SerializedAppendQueue(Generic[T]):
    """Runs queued writes one at a time, in submission order.

    ``enqueue`` returns immediately and schedules a drain pass on the running
    event loop. At most one drain pass is active at any time. Each item is
    removed from the queue *before* its write is awaited, so a failed write is
    never retried. A failing write ends the current pass; whatever is still
    queued waits for the next ``enqueue`` (or an explicit :meth:`drain`).
    """

    def __init__(self, writer: Callable[[T], Awaitable[None]], *, name: str = "append-queue") -> None:
        self._writer = writer
        self._name = name
        self._items: Deque[T] = deque()
        self._draining = False
        self._drain_task: asyncio.Task[int] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def pending(self) -> int:
        return len(self._items)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(self, item: T) -> None:
        """Queue *item* and make sure a drain pass is scheduled.

        Must be called from a coroutine or callback running on the event loop.
        """

        self._items.append(item)
        task = self._drain_task
        if task is not None and not task.done():
            return
        loop = asyncio.get_running_loop()
        self._drain_task = loop.create_task(self.drain(), name=f"{self._name}-drain")

    async def drain(self) -> int:
        """Run one drain pass and return the number of writes attempted."""

        if self._draining:
            return 0
        self._draining = True
        attempted = 0
        try:
            while self._items:
                item = self._items.popleft()
                attempted += 1
                try:
                    await self._writer(item)
                except Exception as exc:
                    LOGGER.warning(
                        "%s write failed; discarding item and pausing with %s item(s) queued: %s",
                        self._name,
                        len(self._items),
                        exc,
                        exc_info=LOGGER.isEnabledFor(logging.DEBUG),
                    )
                    telemetry_service.emit(
                        "scratchpad_write_failed",
                        {"queue": self._name, "error": str(exc), "pending": len(self._items)},
                    )
                    break
        finally:
            self._draining = False
        return attempted

    async def wait_idle(self) -> None:
        """Wait for the scheduled drain pass (if any) to finish."""

        task = self._drain_task
        if task is None:
            return
        await asyncio.shield(task)


__all__ = ["SerializedAppendQueue"]
