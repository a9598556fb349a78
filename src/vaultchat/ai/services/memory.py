"""Durable memory extraction, validation, and dedup-merge."""

from __future__ import annotations

import json
import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from jsonschema import Draft202012Validator

from ...services.context_storage import ContextStorage
from ..client import AIClient
from ..prompts import MEMORY_EXTRACTION_PROMPT, conversation_snippet
from .heuristics import should_extract_memories

LOGGER = logging.getLogger(__name__)

MAX_CANDIDATES = 3
MEMORY_TEMPERATURE = 0.1
MEMORY_TYPES: tuple[str, ...] = ("fact", "preference", "entity")
MEMORY_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "content": {"type": "string", "minLength": 1},
        "type": {"type": "string", "enum": list(MEMORY_TYPES)},
        "tags": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["content"],
}
_VALIDATOR = Draft202012Validator(MEMORY_ITEM_SCHEMA)
_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


@dataclass(slots=True, frozen=True)
class MemoryItem:
    """One durable memory; ``created_at`` is epoch milliseconds."""

    id: str
    type: str
    content: str
    tags: tuple[str, ...] = ()
    created_at: int = 0

    def as_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "content": self.content,
            "tags": list(self.tags),
            "createdAt": self.created_at,
        }


@dataclass(slots=True)
class MemoryCandidate:
    content: str
    type: str = "fact"
    tags: list[str] = field(default_factory=list)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def new_memory_id(now_ms: int) -> str:
    return f"mem_{now_ms}_{secrets.token_hex(2)}"


def strip_code_fences(text: str) -> str:
    stripped = (text or "").strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1).strip() if match else stripped


def parse_memory_candidates(text: str, *, limit: int = MAX_CANDIDATES) -> list[MemoryCandidate]:
    """Parse the model reply into validated candidates; invalid items are dropped."""

    body = strip_code_fences(text)
    if not body:
        return []
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        LOGGER.debug("Memory reply was not valid JSON: %s", exc)
        return []
    if not isinstance(payload, list):
        LOGGER.debug("Memory reply was not a JSON array")
        return []
    candidates: list[MemoryCandidate] = []
    for item in payload:
        errors = list(_VALIDATOR.iter_errors(item))
        if errors:
            LOGGER.debug("Dropping invalid memory candidate: %s", errors[0].message)
            continue
        content = item["content"].strip()
        if not content:
            continue
        tags = [tag.strip() for tag in item.get("tags", []) if tag.strip()]
        candidates.append(MemoryCandidate(content=content, type=item.get("type", "fact"), tags=tags))
        if len(candidates) >= limit:
            break
    return candidates


def merge_memories(
    existing: Sequence[Mapping[str, Any]],
    candidates: Iterable[MemoryCandidate],
    *,
    now_ms: int | None = None,
    id_factory: Callable[[int], str] = new_memory_id,
) -> tuple[list[dict[str, Any]], list[MemoryItem]]:
    """Append candidates whose content is not already stored (exact match).

    Returns the merged payload list and the newly added items.
    """

    timestamp = now_ms if now_ms is not None else _epoch_ms()
    merged = [dict(item) for item in existing]
    seen = {item.get("content") for item in merged}
    added: list[MemoryItem] = []
    for candidate in candidates:
        if candidate.content in seen:
            continue
        seen.add(candidate.content)
        memory = MemoryItem(
            id=id_factory(timestamp),
            type=candidate.type,
            content=candidate.content,
            tags=tuple(candidate.tags),
            created_at=timestamp,
        )
        merged.append(memory.as_payload())
        added.append(memory)
    return merged, added


class MemoryService:
    """Extracts up to three memories per turn and merges them into ``memories.json``."""

    def __init__(self, storage: ContextStorage, *, clock: Callable[[], int] = _epoch_ms) -> None:
        self._storage = storage
        self._clock = clock

    async def extract_and_store(
        self,
        session_id: str,
        user_text: str,
        assistant_text: str,
        client: AIClient,
        *,
        proposal_count: int = 0,
        creation_count: int = 0,
    ) -> list[MemoryItem]:
        if not should_extract_memories(user_text, assistant_text, proposal_count, creation_count):
            return []
        reply = await client.complete(
            [
                {"role": "system", "content": MEMORY_EXTRACTION_PROMPT},
                {"role": "user", "content": conversation_snippet(user_text or "", assistant_text or "")},
            ],
            temperature=MEMORY_TEMPERATURE,
        )
        candidates = parse_memory_candidates(reply)
        if not candidates:
            return []
        return await self.store(session_id, candidates)

    async def store(self, session_id: str, candidates: Sequence[MemoryCandidate]) -> list[MemoryItem]:
        existing = await self._storage.read_memories(session_id)
        merged, added = merge_memories(existing, candidates, now_ms=self._clock())
        if added:
            await self._storage.write_memories(session_id, merged)
            LOGGER.debug("Stored %s new memory item(s) for session %s", len(added), session_id)
        return added


__all__ = [
    "MemoryItem",
    "MemoryCandidate",
    "MemoryService",
    "MEMORY_ITEM_SCHEMA",
    "merge_memories",
    "parse_memory_candidates",
    "strip_code_fences",
]
