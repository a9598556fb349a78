"""Conversation summarizers: a deterministic naive one and a model-backed one."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Protocol, Sequence

from ..orchestration.errors import ConfigurationError, ProviderError
from ..prompts import SUMMARIZER_HISTORY_MESSAGES, SUMMARY_PREFIX, summarizer_prompt
from ..providers import ProviderResolver
from ..utils.tokens import CHARS_PER_TOKEN, estimate_tokens, message_text

LOGGER = logging.getLogger(__name__)

DEFAULT_TARGET_TOKENS = 400
ENTRY_MAX_CHARS = 300
SUMMARY_TEMPERATURE = 0.1
_CODE_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")
_ROLE_LABELS = {"user": "User", "assistant": "Assistant"}


class Summarizer(Protocol):
    """Summarizer collaborator; ``None`` means no summary could be produced."""

    async def summarize(
        self,
        messages: Sequence[Mapping[str, Any]],
        target_tokens: int = DEFAULT_TARGET_TOKENS,
    ) -> str | None:
        ...


def compress_entry(content: Any, max_chars: int = ENTRY_MAX_CHARS) -> str:
    """Strip fenced code, collapse whitespace, and clip to *max_chars*."""

    text = message_text(content)
    clean = _WHITESPACE_RE.sub(" ", _CODE_FENCE_RE.sub("", text)).strip()
    if len(clean) > max_chars:
        return clean[:max_chars] + "…"
    return clean


def build_naive_summary(messages: Sequence[Mapping[str, Any]], target_tokens: int = DEFAULT_TARGET_TOKENS) -> str:
    """Return ``User: ...`` / ``Assistant: ...`` bullets, stopping past *target_tokens*.

    A compacted ``Conversation Summary:`` system message is carried forward
    whole as an ``Earlier:`` entry; other system and tool messages are skipped.
    """

    bullets: list[str] = []
    for message in messages:
        role = str(message.get("role"))
        if role == "system":
            entry = _earlier_summary(message.get("content"), target_tokens)
            label = "Earlier"
        else:
            label = _ROLE_LABELS.get(role)
            if label is None:
                continue
            entry = compress_entry(message.get("content"))
        if not entry:
            continue
        bullets.append(f"{label}: {entry}")
        if estimate_tokens("\n".join(bullets)) > target_tokens:
            break
    return "\n".join(bullets)


def _earlier_summary(content: Any, target_tokens: int) -> str:
    text = message_text(content).strip()
    if not text.startswith(SUMMARY_PREFIX):
        return ""
    return compress_entry(text[len(SUMMARY_PREFIX) :], max(ENTRY_MAX_CHARS, int(target_tokens * CHARS_PER_TOKEN)))


class NaiveSummarizer:
    """Deterministic summarizer used while building context."""

    async def summarize(
        self,
        messages: Sequence[Mapping[str, Any]],
        target_tokens: int = DEFAULT_TARGET_TOKENS,
    ) -> str | None:
        return build_naive_summary(messages, target_tokens) or None


class SummarizerService:
    """Model-backed summarizer used for background summary refinement."""

    def __init__(
        self,
        resolver: ProviderResolver,
        *,
        provider_id: str | None = None,
        model_id: str | None = None,
    ) -> None:
        self._resolver = resolver
        self._provider_id = provider_id
        self._model_id = model_id

    async def summarize(
        self,
        messages: Sequence[Mapping[str, Any]],
        target_tokens: int = DEFAULT_TARGET_TOKENS,
        *,
        provider_id: str | None = None,
        model_id: str | None = None,
    ) -> str | None:
        if not messages:
            return None
        try:
            client = self._resolver.resolve(provider_id or self._provider_id, model_id or self._model_id)
        except ConfigurationError as exc:
            LOGGER.debug("Summarizer has no provider available: %s", exc)
            return None
        history = [
            {"role": str(message.get("role") or "user"), "content": message_text(message.get("content"))}
            for message in messages[-SUMMARIZER_HISTORY_MESSAGES:]
            if message.get("role") in ("user", "assistant", "system")
        ]
        prompt = [{"role": "system", "content": summarizer_prompt(target_tokens)}, *history]
        try:
            text = await client.complete(prompt, temperature=SUMMARY_TEMPERATURE)
        except ProviderError as exc:
            LOGGER.warning("Summary refinement failed: %s", exc)
            return None
        return text.strip() or None


__all__ = [
    "Summarizer",
    "NaiveSummarizer",
    "SummarizerService",
    "build_naive_summary",
    "compress_entry",
]
