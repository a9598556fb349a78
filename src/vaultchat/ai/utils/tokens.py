"""Token estimation utilities for context budgeting."""

from __future__ import annotations

import json
import math
from typing import Any, Iterable, Mapping

# Average characters per token for English prose (GPT-style tokenization)
CHARS_PER_TOKEN = 4.0
# Flat per-message cost covering role markers and separators
MESSAGE_OVERHEAD_TOKENS = 6


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens in a text string.

    Uses a character-count heuristic of ~4 characters per token. The
    estimate is monotonic in ``len(text)`` and is not meant to match any
    provider's tokenizer exactly.

    Args:
        text: The text to estimate tokens for.

    Returns:
        Estimated token count (0 for empty text).
    """
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def message_text(content: Any) -> str:
    """Return the textual form of a message ``content`` payload."""

    if content is None:
        return ""
    if isinstance(content, str):
        return content
    try:
        return json.dumps(content, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(content)


def estimate_message_tokens(message: Mapping[str, Any]) -> int:
    """Estimate a single chat message including the per-message overhead."""

    return estimate_tokens(message_text(message.get("content"))) + MESSAGE_OVERHEAD_TOKENS


def estimate_messages_tokens(messages: Iterable[Mapping[str, Any]]) -> int:
    """Estimate the combined cost of *messages*."""

    return sum(estimate_message_tokens(message) for message in messages)


__all__ = [
    "CHARS_PER_TOKEN",
    "MESSAGE_OVERHEAD_TOKENS",
    "estimate_tokens",
    "message_text",
    "estimate_message_tokens",
    "estimate_messages_tokens",
]
