"""Shared AI helper utilities."""

from .tokens import CHARS_PER_TOKEN, MESSAGE_OVERHEAD_TOKENS, estimate_message_tokens, estimate_messages_tokens, estimate_tokens

__all__ = [
    "CHARS_PER_TOKEN",
    "MESSAGE_OVERHEAD_TOKENS",
    "estimate_tokens",
    "estimate_message_tokens",
    "estimate_messages_tokens",
]
