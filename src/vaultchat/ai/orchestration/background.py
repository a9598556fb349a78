"""Fire-and-forget maintenance tasks with per-task error boundaries."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Union

from ...services import telemetry as telemetry_service

LOGGER = logging.getLogger(__name__)

TaskSource = Union[Awaitable[Any], Callable[[], Awaitable[Any]]]


class BackgroundTaskRunner:
    """Schedules post-turn work that must never fail the turn that spawned it.

    Each task runs inside its own boundary: an exception is logged, reported
    through the ``background_task_failed`` telemetry event, and dropped.
    Tasks are independent of the turn task, so cancelling a turn leaves them
    running; :meth:`aclose` cancels whatever is still pending.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, work: TaskSource) -> asyncio.Task[None] | None:
        """Start *work* (a coroutine or a zero-argument coroutine factory) in the background."""

        if self._closed:
            LOGGER.debug("Background runner closed; dropping task %s", name)
            if asyncio.iscoroutine(work):
                work.close()
            return None
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._guarded(name, work), name=f"vaultchat:{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every task spawned so far, including tasks they spawn."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _guarded(self, name: str, work: TaskSource) -> None:
        try:
            awaitable = work() if callable(work) else work
            await awaitable
        except asyncio.CancelledError:
            LOGGER.debug("Background task %s cancelled", name)
            raise
        except Exception as exc:
            LOGGER.warning("Background task %s failed: %s", name, exc, exc_info=LOGGER.isEnabledFor(logging.DEBUG))
            telemetry_service.emit("background_task_failed", {"task": name, "error": str(exc)})


__all__ = ["BackgroundTaskRunner", "TaskSource"]
