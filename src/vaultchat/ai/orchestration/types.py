"""Data model shared by the context manager and the chat orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Mapping, Sequence, Union

ChatMessage = Mapping[str, Any]
"""A ``{"role": ..., "content": ...}`` chat message."""

Mode = Literal["chat", "compose", "write"]
AiScope = Literal["team-docs", "vault-wide"]

TOOL_ENABLED_MODES: frozenset[str] = frozenset({"compose", "write"})
MESSAGE_ROLES: frozenset[str] = frozenset({"system", "user", "assistant", "tool"})


# ----------------------------------------------------------------------
# Context slices
# ----------------------------------------------------------------------


@dataclass(slots=True)
class MessageSlice:
    """Verbatim recent turns."""

    type: ClassVar[str] = "messages"
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class SummarySlice:
    """Compressed older history."""

    type: ClassVar[str] = "summary"
    summary: str = ""


@dataclass(slots=True)
class DocSlice:
    """A retrieved document reference with an optional snippet."""

    type: ClassVar[str] = "doc"
    path: str = ""
    title: str = ""
    snippet: str | None = None


@dataclass(slots=True, frozen=True)
class ToolClientInfo:
    """An external tool client (MCP server) and the tools it exposes."""

    client_id: str
    client_name: str
    tools: tuple[str, ...] = ()
    auth_needed: bool = False


@dataclass(slots=True)
class McpOverviewSlice:
    """Available external tool clients and their tool names."""

    type: ClassVar[str] = "mcp-overview"
    clients: list[ToolClientInfo] = field(default_factory=list)


@dataclass(slots=True)
class ScratchpadSlice:
    """Recent entries of the session scratchpad."""

    type: ClassVar[str] = "scratchpad"
    text: str = ""


@dataclass(slots=True)
class MemorySlice:
    """Durable memories stored for the session."""

    type: ClassVar[str] = "memories"
    contents: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PinnedSlice:
    """Files the user pinned for every turn."""

    type: ClassVar[str] = "pinned"
    paths: list[str] = field(default_factory=list)


ContextSlice = Union[
    MessageSlice,
    SummarySlice,
    DocSlice,
    McpOverviewSlice,
    ScratchpadSlice,
    MemorySlice,
    PinnedSlice,
]


# ----------------------------------------------------------------------
# Build request / result
# ----------------------------------------------------------------------


@dataclass(slots=True)
class ContextBuildRequest:
    """Inputs for :meth:`ContextBudgetManager.build_context`."""

    messages: Sequence[ChatMessage]
    session_id: str
    mode: Mode = "chat"
    ai_scope: AiScope = "team-docs"
    team_root: str = ""
    tool_clients: Sequence[ToolClientInfo] = ()
    tool_client_selection: Sequence[str] | None = None
    pinned: Sequence[str] = ()


@dataclass(slots=True)
class ContextMetrics:
    """Accounting for one context build; failures are reported in ``errors``."""

    input_tokens_estimated: int = 0
    pruned_tokens: int = 0
    summarized: bool = False
    retrieval_count: int = 0
    errors: tuple[str, ...] = ()

    def as_payload(self) -> dict[str, object]:
        return {
            "inputTokensEstimated": self.input_tokens_estimated,
            "prunedTokens": self.pruned_tokens,
            "summarized": self.summarized,
            "retrievalCount": self.retrieval_count,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class ContextBuildResult:
    """Bounded message set plus the system augment assembled from slices."""

    system_augment: str
    trimmed_messages: list[dict[str, Any]]
    summary_text: str | None
    metrics: ContextMetrics
    slices: list[ContextSlice] = field(default_factory=list)

    @property
    def summarized(self) -> bool:
        return self.metrics.summarized

    def as_payload(self) -> dict[str, object]:
        return {
            "systemAugment": self.system_augment,
            "trimmedMessages": [dict(message) for message in self.trimmed_messages],
            "summaryText": self.summary_text,
            "metrics": self.metrics.as_payload(),
        }


# ----------------------------------------------------------------------
# Turn results
# ----------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class EditRecord:
    """A proposed edit or a created document."""

    path: str
    content: str

    def as_payload(self) -> dict[str, str]:
        return {"path": self.path, "content": self.content}


@dataclass(slots=True)
class ChatResult:
    """What the caller receives once a turn reaches ``Responded``."""

    text: str
    sources: list[str] = field(default_factory=list)
    proposals: list[EditRecord] = field(default_factory=list)
    creations: list[EditRecord] = field(default_factory=list)
    thoughts: str = ""
    metrics: ContextMetrics | None = None

    def as_payload(self) -> dict[str, object]:
        return {
            "text": self.text,
            "sources": list(self.sources),
            "proposals": [record.as_payload() for record in self.proposals],
            "creations": [record.as_payload() for record in self.creations],
            "thoughts": self.thoughts,
        }


__all__ = [
    "ChatMessage",
    "Mode",
    "AiScope",
    "TOOL_ENABLED_MODES",
    "MESSAGE_ROLES",
    "MessageSlice",
    "SummarySlice",
    "DocSlice",
    "ToolClientInfo",
    "McpOverviewSlice",
    "ScratchpadSlice",
    "MemorySlice",
    "PinnedSlice",
    "ContextSlice",
    "ContextBuildRequest",
    "ContextMetrics",
    "ContextBuildResult",
    "EditRecord",
    "ChatResult",
]
