"""Context budget manager deciding what enters each model call."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from ...services import telemetry as telemetry_service
from ...services.context_storage import ContextStorage
from ...services.retrieval import Retriever, is_within_scope
from .. import prompts
from ..services.context_policy import ContextPolicy
from ..services.summarizer import NaiveSummarizer, Summarizer
from ..utils.tokens import estimate_messages_tokens, estimate_tokens, message_text
from .types import (
    ContextBuildRequest,
    ContextBuildResult,
    ContextMetrics,
    ContextSlice,
    DocSlice,
    McpOverviewSlice,
    MemorySlice,
    MessageSlice,
    PinnedSlice,
    ScratchpadSlice,
    SummarySlice,
    ToolClientInfo,
)

LOGGER = logging.getLogger(__name__)

SCRATCHPAD_RECENT_ENTRIES = 2
MAX_MEMORIES_IN_CONTEXT = 5


class ContextBudgetManager:
    """Builds a bounded message set plus the system augment for one turn.

    ``build_context`` never raises for collaborator failures: summarizer,
    retrieval, and storage errors leave their slice out and are reported in
    ``metrics.errors``.
    """

    def __init__(
        self,
        *,
        retriever: Retriever | None = None,
        summarizer: Summarizer | None = None,
        storage: ContextStorage | None = None,
    ) -> None:
        self._retriever = retriever
        self._summarizer = summarizer or NaiveSummarizer()
        self._storage = storage

    async def build_context(self, request: ContextBuildRequest, policy: ContextPolicy) -> ContextBuildResult:
        messages = [dict(message) for message in request.messages]
        errors: list[str] = []

        trimmed, older = self._split_history(messages, policy)
        summary_text: str | None = None
        pruned_tokens = 0
        if older is not None:
            pruned_tokens = estimate_messages_tokens(older)
            summary_text = await self._summarize(older or messages, policy, errors)

        docs = await self._retrieve(messages, request, policy, errors)
        overview = self._tool_overview(request, policy)
        scratchpad, memories = await self._session_notes(request.session_id, errors)
        pinned = PinnedSlice(paths=list(request.pinned)) if request.pinned else None

        summary_block = prompts.summary_block(summary_text) if summary_text else ""
        if policy.max_input_tokens is not None:
            trimmed, dropped_tokens, overview, scratchpad, memories, pinned = self._enforce_cap(
                policy.max_input_tokens,
                trimmed,
                summary_block,
                docs,
                overview,
                scratchpad,
                memories,
                pinned,
            )
            pruned_tokens += dropped_tokens

        slices: list[ContextSlice] = []
        if summary_text:
            slices.append(SummarySlice(summary=summary_text))
        if overview is not None:
            slices.append(overview)
        slices.extend(docs)
        for extra in (scratchpad, memories, pinned):
            if extra is not None:
                slices.append(extra)
        system_augment = render_system_augment(slices)
        slices.append(MessageSlice(messages=trimmed))

        metrics = ContextMetrics(
            input_tokens_estimated=estimate_messages_tokens(trimmed) + estimate_tokens(system_augment),
            pruned_tokens=pruned_tokens,
            summarized=bool(summary_text),
            retrieval_count=len(docs),
            errors=tuple(errors),
        )
        telemetry_service.emit(
            "context_build",
            {"session_id": request.session_id, "mode": request.mode, **metrics.as_payload()},
        )
        LOGGER.debug(
            "Context built for %s: %s/%s message(s) kept, summarized=%s, docs=%s, tokens~%s",
            request.session_id,
            len(trimmed),
            len(messages),
            metrics.summarized,
            metrics.retrieval_count,
            metrics.input_tokens_estimated,
        )
        return ContextBuildResult(
            system_augment=system_augment,
            trimmed_messages=trimmed,
            summary_text=summary_text,
            metrics=metrics,
            slices=slices,
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    @staticmethod
    def _split_history(
        messages: list[dict[str, Any]],
        policy: ContextPolicy,
    ) -> tuple[list[dict[str, Any]], list[dict[str, Any]] | None]:
        """Return ``(window, older)``; ``older`` is ``None`` when history passes through."""

        total = estimate_messages_tokens(messages)
        if total <= policy.summarize_over_tokens and len(messages) <= policy.history_max_messages:
            return messages, None
        start = max(0, len(messages) - policy.history_max_messages)
        while start < len(messages) - 1 and estimate_messages_tokens(messages[start:]) > policy.summarize_over_tokens:
            start += 1
        return messages[start:], messages[:start]

    async def _summarize(
        self,
        messages: Sequence[dict[str, Any]],
        policy: ContextPolicy,
        errors: list[str],
    ) -> str | None:
        try:
            summary = await self._summarizer.summarize(messages, policy.summary_target_tokens)
        except Exception as exc:
            LOGGER.warning("Summarizer failed while building context: %s", exc)
            errors.append(f"summarizer: {exc}")
            return None
        if not summary or not summary.strip():
            errors.append("summarizer: no summary produced")
            return None
        return summary.strip()

    # ------------------------------------------------------------------
    # Retrieval and auxiliary slices
    # ------------------------------------------------------------------
    async def _retrieve(
        self,
        messages: Sequence[dict[str, Any]],
        request: ContextBuildRequest,
        policy: ContextPolicy,
        errors: list[str],
    ) -> list[DocSlice]:
        retrieval = policy.retrieval
        if not retrieval.enable_vault or self._retriever is None or retrieval.k <= 0:
            return []
        query = latest_user_text(messages)
        if not query:
            return []
        try:
            hits = await self._retriever.search(query, retrieval.k, retrieval.snippet_length)
        except Exception as exc:
            LOGGER.warning("Retrieval failed while building context: %s", exc)
            errors.append(f"retrieval: {exc}")
            return []
        scope_root = request.team_root if request.ai_scope == "team-docs" else ""
        docs: list[DocSlice] = []
        for hit in hits:
            if not is_within_scope(hit.path, scope_root):
                continue
            snippet = hit.snippet[: retrieval.snippet_length] if hit.snippet else None
            docs.append(DocSlice(path=hit.path, title=hit.title or hit.path, snippet=snippet))
            if len(docs) >= retrieval.k:
                break
        return docs

    @staticmethod
    def _tool_overview(request: ContextBuildRequest, policy: ContextPolicy) -> McpOverviewSlice | None:
        if not policy.include_mcp_overview or not request.tool_clients:
            return None
        selection = request.tool_client_selection
        clients = [
            ToolClientInfo(
                client_id=client.client_id,
                client_name=client.client_name,
                tools=tuple(client.tools[: policy.mcp_tools_per_client]),
                auth_needed=client.auth_needed,
            )
            for client in request.tool_clients
            if selection is None or client.client_id in selection
        ]
        return McpOverviewSlice(clients=clients) if clients else None

    async def _session_notes(
        self,
        session_id: str,
        errors: list[str],
    ) -> tuple[ScratchpadSlice | None, MemorySlice | None]:
        if self._storage is None:
            return None, None
        scratchpad: ScratchpadSlice | None = None
        memories: MemorySlice | None = None
        try:
            recent = await self._storage.read_scratchpad_recent(session_id, SCRATCHPAD_RECENT_ENTRIES)
        except Exception as exc:
            LOGGER.warning("Scratchpad unavailable for %s: %s", session_id, exc)
            errors.append(f"scratchpad: {exc}")
        else:
            if recent and recent.strip():
                scratchpad = ScratchpadSlice(text=recent.strip())
        try:
            stored = await self._storage.read_memories(session_id)
        except Exception as exc:
            LOGGER.warning("Memories unavailable for %s: %s", session_id, exc)
            errors.append(f"memories: {exc}")
        else:
            contents = [str(item.get("content")) for item in stored if item.get("content")]
            if contents:
                memories = MemorySlice(contents=contents[:MAX_MEMORIES_IN_CONTEXT])
        return scratchpad, memories

    # ------------------------------------------------------------------
    # Hard cap
    # ------------------------------------------------------------------
    @staticmethod
    def _enforce_cap(
        cap: int,
        trimmed: list[dict[str, Any]],
        summary_block: str,
        docs: list[DocSlice],
        overview: McpOverviewSlice | None,
        scratchpad: ScratchpadSlice | None,
        memories: MemorySlice | None,
        pinned: PinnedSlice | None,
    ) -> tuple[
        list[dict[str, Any]],
        int,
        McpOverviewSlice | None,
        ScratchpadSlice | None,
        MemorySlice | None,
        PinnedSlice | None,
    ]:
        """Drop docs, then auxiliary slices, then the oldest messages until under *cap*.

        ``docs`` is shortened in place. The latest message is always kept.
        """

        window = list(trimmed)
        dropped_tokens = 0

        def _total() -> int:
            extras: list[ContextSlice] = [*docs]
            for item in (overview, scratchpad, memories, pinned):
                if item is not None:
                    extras.append(item)
            augment = render_system_augment(extras)
            joined = "\n\n".join(part for part in (summary_block, augment) if part)
            return estimate_messages_tokens(window) + estimate_tokens(joined)

        while _total() > cap:
            if docs:
                docs.pop()
            elif pinned is not None:
                pinned = None
            elif memories is not None:
                memories = None
            elif scratchpad is not None:
                scratchpad = None
            elif overview is not None:
                overview = None
            elif len(window) > 1:
                dropped_tokens += estimate_messages_tokens(window[:1])
                window = window[1:]
            else:
                break
        return window, dropped_tokens, overview, scratchpad, memories, pinned


def latest_user_text(messages: Sequence[dict[str, Any]]) -> str:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message_text(message.get("content")).strip()
    return ""


def render_system_augment(slices: Sequence[ContextSlice]) -> str:
    """Concatenate slices in priority order into the system augment string."""

    summary: list[str] = []
    overview: list[str] = []
    docs: list[DocSlice] = []
    extras: list[str] = []
    for item in slices:
        if isinstance(item, SummarySlice):
            summary.append(prompts.summary_block(item.summary))
        elif isinstance(item, McpOverviewSlice):
            overview.append(prompts.tool_overview_block(item.clients))
        elif isinstance(item, DocSlice):
            docs.append(item)
        elif isinstance(item, ScratchpadSlice):
            extras.append(prompts.scratchpad_block(item.text))
        elif isinstance(item, MemorySlice):
            extras.append(prompts.memories_block(item.contents))
        elif isinstance(item, PinnedSlice):
            extras.append(prompts.pinned_block(item.paths))
    parts = [*summary, *overview]
    if docs:
        parts.append(prompts.docs_block(docs))
    parts.extend(extras)
    return "\n\n".join(parts)


__all__ = ["ContextBudgetManager", "latest_user_text", "render_system_augment"]
