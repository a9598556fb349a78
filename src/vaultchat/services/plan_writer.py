"""Scratchpad writer that serializes every note through one append queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .append_queue import SerializedAppendQueue
from .context_storage import ContextStorage

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ScratchpadQueueEntry:
    """One pending scratchpad write.

    Without ``section`` the text is appended under a timestamped heading;
    with ``section`` it replaces that section's body, and ``replace_all``
    overwrites the whole scratchpad.
    """

    session_id: str
    text: str
    section: str | None = None
    replace_all: bool = False


class PlanWriter:
    """Queues scratchpad notes so concurrent writers never interleave on one file."""

    def __init__(self, storage: ContextStorage) -> None:
        self._storage = storage
        self._queue: SerializedAppendQueue[ScratchpadQueueEntry] = SerializedAppendQueue(
            self._write, name="scratchpad"
        )

    @property
    def queue(self) -> SerializedAppendQueue[ScratchpadQueueEntry]:
        return self._queue

    def append(self, session_id: str, text: str) -> None:
        """Queue a timestamped free-form note; returns immediately."""

        if not text or not text.strip():
            return
        self._queue.enqueue(ScratchpadQueueEntry(session_id=session_id, text=text.strip()))

    def update_section(self, session_id: str, section: str, text: str) -> None:
        """Queue a replacement of the named scratchpad section; returns immediately."""

        if not text or not text.strip():
            return
        self._queue.enqueue(ScratchpadQueueEntry(session_id=session_id, text=text.strip(), section=section))

    def replace(self, session_id: str, content: str) -> None:
        """Queue an overwrite of the whole scratchpad with *content*."""

        self._queue.enqueue(ScratchpadQueueEntry(session_id=session_id, text=content, replace_all=True))

    async def flush(self) -> None:
        """Wait until the scheduled drain pass has finished."""

        await self._queue.wait_idle()

    async def _write(self, entry: ScratchpadQueueEntry) -> None:
        if entry.replace_all:
            LOGGER.debug("Replacing scratchpad for session %s", entry.session_id)
            await self._storage.write_scratchpad(entry.session_id, entry.text)
        elif entry.section:
            LOGGER.debug("Updating scratchpad section %s for session %s", entry.section, entry.session_id)
            await self._storage.update_scratchpad_section(entry.session_id, entry.section, entry.text)
        else:
            LOGGER.debug("Appending scratchpad note for session %s", entry.session_id)
            await self._storage.append_scratchpad(entry.session_id, entry.text)


__all__ = ["PlanWriter", "ScratchpadQueueEntry"]
