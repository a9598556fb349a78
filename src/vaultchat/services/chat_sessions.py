"""Persisted per-session chat history with summary compaction."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Sequence

from ..ai.orchestration.errors import PersistenceError
from ..ai.prompts import SUMMARY_PREFIX
from ..utils.file_io import read_text, write_text
from .context_storage import ContextStorage

LOGGER = logging.getLogger(__name__)

HISTORY_FILE = "history.json"
COMPACTED_SUMMARY_PREFIX = f"{SUMMARY_PREFIX}\n"


class ChatSessionStore:
    """Stores ``history.json`` next to the session's scratchpad and summary."""

    def __init__(self, storage: ContextStorage) -> None:
        self._storage = storage

    async def load(self, session_id: str) -> list[dict[str, Any]]:
        path = self._storage.session_dir(session_id) / HISTORY_FILE
        raw = await asyncio.to_thread(lambda: read_text(path) if path.exists() else "")
        if not raw.strip():
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.warning("History for session %s is corrupt; starting fresh: %s", session_id, exc)
            return []
        if not isinstance(payload, list):
            return []
        return [dict(item) for item in payload if isinstance(item, Mapping) and "role" in item]

    async def save(self, session_id: str, messages: Sequence[Mapping[str, Any]]) -> None:
        path = self._storage.session_dir(session_id) / HISTORY_FILE
        body = json.dumps([dict(message) for message in messages], indent=2, ensure_ascii=False)
        try:
            await asyncio.to_thread(write_text, path, body)
        except OSError as exc:
            raise PersistenceError(f"Failed to save history: {exc}", session_id=session_id) from exc

    async def append(self, session_id: str, *messages: Mapping[str, Any]) -> list[dict[str, Any]]:
        history = await self.load(session_id)
        history.extend(dict(message) for message in messages)
        await self.save(session_id, history)
        return history

    async def compact(self, session_id: str, summary: str, recent: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Replace the stored history with one summary message plus the recent window."""

        compacted = [{"role": "system", "content": f"{COMPACTED_SUMMARY_PREFIX}{summary.strip()}"}]
        compacted.extend(dict(message) for message in recent)
        await self.save(session_id, compacted)
        LOGGER.debug("Compacted history for session %s to %s message(s)", session_id, len(compacted))
        return compacted


__all__ = ["ChatSessionStore", "HISTORY_FILE", "COMPACTED_SUMMARY_PREFIX"]
