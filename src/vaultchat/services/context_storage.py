"""Per-session persisted notes: scratchpad, rolling summary, and memories."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

from ..ai.orchestration.errors import PersistenceError
from ..utils.file_io import read_text, write_text

LOGGER = logging.getLogger(__name__)

SCRATCHPAD_FILE = "scratchpad.md"
SUMMARY_FILE = "summary.md"
MEMORIES_FILE = "memories.json"
SCRATCHPAD_SECTIONS: tuple[str, ...] = ("Goals", "Plan", "Progress", "Next", "Decisions")
SCRATCHPAD_TEMPLATE = "# Scratchpad\n\n" + "\n".join(f"## {name}\n- \n" for name in SCRATCHPAD_SECTIONS)
SUMMARY_HEADER = "# Conversation Summary"

_SESSION_ID_RE = re.compile(r"[^A-Za-z0-9._-]")
_ENTRY_SPLIT_RE = re.compile(r"\n(?=##\s)")


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _section_pattern(section: str) -> re.Pattern[str]:
    return re.compile(
        rf"(?:^|\n)## {re.escape(section)}[ \t]*(?:\n.*?)?(?=\n## |\Z)",
        re.DOTALL,
    )


def replace_section(document: str, section: str, body: str) -> str:
    """Replace the body of ``## <section>`` in *document*, or append the section."""

    block = f"## {section}\n{body.strip()}\n"
    match = _section_pattern(section).search(document)
    if match is None:
        if not document.strip():
            return block
        return f"{document.rstrip()}\n\n{block}"
    lead = "\n" if match.start() > 0 or match.group(0).startswith("\n") else ""
    return f"{document[: match.start()]}{lead}{block}{document[match.end():]}"


class ContextStorage:
    """Reads and writes the per-session files under ``<base_dir>/<session_id>/``.

    Write methods raise :class:`PersistenceError`; read methods treat a
    missing file as empty.
    """

    def __init__(self, base_dir: Path | str, *, clock: Callable[[], str] | None = None) -> None:
        self._base_dir = Path(base_dir).expanduser()
        self._clock = clock or _utc_timestamp

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def session_dir(self, session_id: str) -> Path:
        cleaned = _SESSION_ID_RE.sub("_", (session_id or "").strip()).strip(".")
        if not cleaned:
            raise PersistenceError("session_id is required", session_id=session_id)
        return self._base_dir / cleaned

    # ------------------------------------------------------------------
    # Scratchpad
    # ------------------------------------------------------------------
    async def ensure_scratchpad_template(self, session_id: str) -> None:
        await self._run(session_id, self._ensure_template_sync, session_id)

    async def update_scratchpad_section(self, session_id: str, section: str, content: str) -> None:
        await self._run(session_id, self._update_section_sync, session_id, section, content)

    async def append_scratchpad(self, session_id: str, text: str) -> None:
        await self._run(session_id, self._append_sync, session_id, text)

    async def write_scratchpad(self, session_id: str, content: str) -> None:
        path = self.session_dir(session_id) / SCRATCHPAD_FILE
        await self._run(session_id, write_text, path, content)

    async def read_scratchpad(self, session_id: str) -> str | None:
        return await asyncio.to_thread(self._read_optional, self.session_dir(session_id) / SCRATCHPAD_FILE)

    async def read_scratchpad_recent(self, session_id: str, limit_entries: int = 2) -> str | None:
        """Return the scratchpad header plus its ``limit_entries`` most recent sections."""

        full = await self.read_scratchpad(session_id)
        if not full:
            return None
        parts = _ENTRY_SPLIT_RE.split(full)
        if len(parts) <= limit_entries + 1:
            return full
        header = parts[0]
        recent = "\n".join(parts[-limit_entries:]) if limit_entries > 0 else ""
        return f"{header}\n{recent}"

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------
    async def write_summary(self, session_id: str, summary: str) -> None:
        path = self.session_dir(session_id) / SUMMARY_FILE
        await self._run(session_id, write_text, path, f"{SUMMARY_HEADER}\n\n{summary.strip()}\n")

    async def read_summary(self, session_id: str) -> str | None:
        return await asyncio.to_thread(self._read_optional, self.session_dir(session_id) / SUMMARY_FILE)

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------
    async def write_memories(self, session_id: str, items: Sequence[dict[str, Any]]) -> None:
        path = self.session_dir(session_id) / MEMORIES_FILE
        body = json.dumps(list(items), indent=2, ensure_ascii=False)
        await self._run(session_id, write_text, path, body)

    async def read_memories(self, session_id: str) -> list[dict[str, Any]]:
        """Return stored memories; a corrupt file raises instead of reading as empty."""

        path = self.session_dir(session_id) / MEMORIES_FILE
        raw = await asyncio.to_thread(self._read_optional, path)
        if not raw or not raw.strip():
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"{path} is not valid JSON: {exc}", session_id=session_id) from exc
        if not isinstance(payload, list):
            raise PersistenceError(f"{path} must contain a JSON array", session_id=session_id)
        return [item for item in payload if isinstance(item, dict)]

    async def delete_session_notes(self, session_id: str) -> None:
        """Delete the scratchpad and summary while keeping ``memories.json``."""

        directory = self.session_dir(session_id)
        for name in (SCRATCHPAD_FILE, SUMMARY_FILE):
            target = directory / name
            try:
                await asyncio.to_thread(target.unlink, True)
            except OSError as exc:
                LOGGER.warning("Failed to delete %s: %s", target, exc)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _run(self, session_id: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            await asyncio.to_thread(func, *args)
        except PersistenceError:
            raise
        except OSError as exc:
            raise PersistenceError(f"Session store write failed: {exc}", session_id=session_id) from exc

    @staticmethod
    def _read_optional(path: Path) -> str | None:
        if not path.exists():
            return None
        return read_text(path)

    def _ensure_template_sync(self, session_id: str) -> None:
        path = self.session_dir(session_id) / SCRATCHPAD_FILE
        if not path.exists():
            write_text(path, SCRATCHPAD_TEMPLATE)

    def _update_section_sync(self, session_id: str, section: str, content: str) -> None:
        path = self.session_dir(session_id) / SCRATCHPAD_FILE
        if not path.exists():
            write_text(path, SCRATCHPAD_TEMPLATE)
        current = read_text(path)
        write_text(path, replace_section(current, section, content))

    def _append_sync(self, session_id: str, text: str) -> None:
        path = self.session_dir(session_id) / SCRATCHPAD_FILE
        block = f"\n\n## {self._clock()}\n{text}\n"
        if path.exists():
            write_text(path, read_text(path) + block)
        else:
            write_text(path, f"# Scratchpad{block}")


__all__ = [
    "ContextStorage",
    "SCRATCHPAD_TEMPLATE",
    "SCRATCHPAD_SECTIONS",
    "SUMMARY_HEADER",
    "replace_section",
]
