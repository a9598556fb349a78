"""Keyword heuristics gating planning and memory extraction."""

from __future__ import annotations

LONG_REQUEST_CHARS = 3_200

MULTI_STEP_HINTS: tuple[str, ...] = (
    "plan",
    "outline",
    "checklist",
    "steps",
    "break down",
    "strategy",
    "roadmap",
    "organize",
    "structure",
    "audit",
    "review doc",
    "compare",
    "cross-reference",
    "create base",
    "draft rfc",
    "write documentation",
    "document",
    "index",
    "toc",
    "table of contents",
)

DURABLE_HINTS: tuple[str, ...] = (
    "preference",
    "always ",
    "we use",
    "we decided",
    "decision",
    "style",
    "format",
    "tags:",
    "url",
    "link",
    "id:",
    "identifier",
    "deadline",
    "due",
    "owner",
    "contact",
    "team",
    "project",
)


def should_auto_plan(user_text: str) -> bool:
    """Return ``True`` when the request looks like a multi-step task."""

    text = (user_text or "").lower()
    if len(text) > LONG_REQUEST_CHARS:
        return True
    return any(hint in text for hint in MULTI_STEP_HINTS)


def should_extract_memories(
    user_text: str,
    assistant_text: str,
    proposal_count: int = 0,
    creation_count: int = 0,
) -> bool:
    """Return ``True`` when the turn likely holds durable facts worth remembering."""

    if proposal_count > 0 or creation_count > 0:
        return True
    blob = f"{user_text or ''}\n{assistant_text or ''}".lower()
    return any(hint in blob for hint in DURABLE_HINTS)


__all__ = ["should_auto_plan", "should_extract_memories", "MULTI_STEP_HINTS", "DURABLE_HINTS"]
