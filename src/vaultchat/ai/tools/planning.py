"""Scratchpad tools letting the model read and maintain its per-session plan."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any, Mapping

from ...services.context_storage import SCRATCHPAD_SECTIONS, ContextStorage
from ...services.plan_writer import PlanWriter
from .registry import ToolSpec

LOGGER = logging.getLogger(__name__)

MAX_SECTION_CHARS = 20_000
MAX_SCRATCHPAD_CHARS = 50_000
MAX_NOTE_CHARS = 4_000

ACTIVE_SESSION: ContextVar[str | None] = ContextVar("vaultchat_active_session", default=None)
"""Session the running chat turn belongs to; set by the orchestrator."""

_NO_SESSION = {"ok": False, "error": "No active session"}


class PlanningTools:
    """Scratchpad tools bound to the session of the turn that calls them.

    Writes go through :class:`PlanWriter` so model-initiated edits queue up
    behind progress notes and planner updates instead of racing them.
    """

    def __init__(self, storage: ContextStorage, plan_writer: PlanWriter) -> None:
        self._storage = storage
        self._plan_writer = plan_writer

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                name="planning_read",
                execute=self.planning_read,
                description=(
                    "Read the entire planning scratchpad for the current session. "
                    "Use when you need full context beyond the recent snippet."
                ),
                parameters={"type": "object", "properties": {}},
            ),
            ToolSpec(
                name="planning_update_section",
                execute=self.planning_update_section,
                description="Replace the content of one scratchpad section (Goals, Plan, Progress, Next, Decisions).",
                parameters={
                    "type": "object",
                    "properties": {
                        "section": {"type": "string", "enum": list(SCRATCHPAD_SECTIONS)},
                        "content": {"type": "string", "maxLength": MAX_SECTION_CHARS},
                    },
                    "required": ["section", "content"],
                },
            ),
            ToolSpec(
                name="planning_replace",
                execute=self.planning_replace,
                description="Overwrite the whole planning scratchpad with the full desired content.",
                parameters={
                    "type": "object",
                    "properties": {"content": {"type": "string", "maxLength": MAX_SCRATCHPAD_CHARS}},
                    "required": ["content"],
                },
            ),
            ToolSpec(
                name="planning_write",
                execute=self.planning_write,
                description="Append a short planning note or next step to the session scratchpad. Keep entries concise.",
                parameters={
                    "type": "object",
                    "properties": {
                        "text": {
                            "type": "string",
                            "minLength": 1,
                            "maxLength": MAX_NOTE_CHARS,
                            "description": "Short plan, checklist item, or step description to append.",
                        }
                    },
                    "required": ["text"],
                },
            ),
        ]

    async def planning_read(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        session_id = ACTIVE_SESSION.get()
        if not session_id:
            return dict(_NO_SESSION)
        await self._plan_writer.flush()
        content = await self._storage.read_scratchpad(session_id)
        return {"ok": True, "content": content or ""}

    async def planning_update_section(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        session_id = ACTIVE_SESSION.get()
        if not session_id:
            return dict(_NO_SESSION)
        section = str(arguments.get("section") or "").strip()
        if section not in SCRATCHPAD_SECTIONS:
            return {"ok": False, "error": f"Unknown section '{section}'; use one of {', '.join(SCRATCHPAD_SECTIONS)}"}
        content = _bounded_text(arguments.get("content"), MAX_SECTION_CHARS)
        if content is None:
            return {"ok": False, "error": "content must be a non-empty string"}
        self._plan_writer.update_section(session_id, section, content)
        await self._plan_writer.flush()
        return {"ok": True}

    async def planning_replace(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        session_id = ACTIVE_SESSION.get()
        if not session_id:
            return dict(_NO_SESSION)
        content = arguments.get("content")
        if not isinstance(content, str):
            return {"ok": False, "error": "content must be a string"}
        LOGGER.debug("Model replaced the scratchpad for session %s (%s chars)", session_id, len(content))
        self._plan_writer.replace(session_id, content[:MAX_SCRATCHPAD_CHARS])
        await self._plan_writer.flush()
        return {"ok": True}

    async def planning_write(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        session_id = ACTIVE_SESSION.get()
        if not session_id:
            return dict(_NO_SESSION)
        text = _bounded_text(arguments.get("text"), MAX_NOTE_CHARS)
        if text is None:
            return {"ok": False, "error": "text must be a non-empty string"}
        self._plan_writer.append(session_id, text)
        await self._plan_writer.flush()
        return {"ok": True}


def build_planning_tools(storage: ContextStorage, plan_writer: PlanWriter) -> dict[str, ToolSpec]:
    """Return the scratchpad tool set keyed by tool name."""

    return {spec.name: spec for spec in PlanningTools(storage, plan_writer).specs()}


def _bounded_text(value: Any, limit: int) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return value[:limit]


__all__ = ["ACTIVE_SESSION", "PlanningTools", "build_planning_tools"]
