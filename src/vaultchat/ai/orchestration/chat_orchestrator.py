"""Main chat turn orchestration loop."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence

from openai.types.chat import ChatCompletionToolParam

from ...services import telemetry as telemetry_service
from ...services.chat_sessions import ChatSessionStore
from ...services.context_storage import ContextStorage
from ...services.plan_writer import PlanWriter
from ...services.settings import Settings
from .. import prompts
from ..client import AIClient, AIStreamEvent
from ..providers import ProviderResolver
from ..services.context_policy import ContextPolicy
from ..services.heuristics import should_auto_plan, should_extract_memories
from ..services.memory import MemoryService
from ..services.planning import PlanningService
from ..services.summarizer import SummarizerService
from ..tools.planning import ACTIVE_SESSION
from ..tools.registry import (
    InMemoryToolRegistry,
    ToolRegistry,
    ToolSpec,
    execute_tool,
    merge_tool_sets,
    parse_tool_arguments,
    serialize_tool_result,
)
from .background import BackgroundTaskRunner
from .context_manager import ContextBudgetManager, latest_user_text
from .errors import ProviderError
from .final_answer import FinalAnswerExtractor, StreamPiece, extract_final_answer
from .tool_activity import ToolActivity, ToolResultRecord, tool_status_message
from .types import (
    TOOL_ENABLED_MODES,
    ChatMessage,
    ChatResult,
    ContextBuildRequest,
    ContextBuildResult,
    ToolClientInfo,
)

LOGGER = logging.getLogger(__name__)

TextCallback = Callable[[str], Awaitable[None] | None]

SUPPORTED_MODES: tuple[str, ...] = ("chat", "compose", "write")
PROGRESS_PROCESSING = "Processing..."
PROGRESS_THINKING = "Thinking..."
PROGRESS_NOTE_REQUEST_CHARS = 160


@dataclass(slots=True)
class ToolCallRequest:
    """Tool call directive emitted by the model during one step."""

    call_id: str
    name: str
    index: int
    arguments: str | None
    parsed: Any | None


@dataclass(slots=True)
class ModelStepResult:
    text: str
    tool_calls: list[ToolCallRequest] = field(default_factory=list)


@dataclass(slots=True)
class _TurnCallbacks:
    on_delta: TextCallback
    on_status: TextCallback | None = None
    on_thought: TextCallback | None = None
    on_progress: TextCallback | None = None
    answer_started: bool = False
    reasoning_started: bool = False


class ChatOrchestrator:
    """Runs one chat turn: context, streamed tool loop, answer extraction, fallback.

    The caller receives a :class:`ChatResult` once the answer is complete.
    Summary refinement, planning, memory extraction, and progress notes are
    dispatched afterwards on a :class:`BackgroundTaskRunner` and never affect
    the returned result.
    """

    def __init__(
        self,
        settings: Settings,
        resolver: ProviderResolver,
        *,
        context_manager: ContextBudgetManager | None = None,
        tool_registry: ToolRegistry | None = None,
        storage: ContextStorage | None = None,
        plan_writer: PlanWriter | None = None,
        session_store: ChatSessionStore | None = None,
        summarizer: SummarizerService | None = None,
        planning: PlanningService | None = None,
        memory: MemoryService | None = None,
        runner: BackgroundTaskRunner | None = None,
        promote_untagged: bool = True,
    ) -> None:
        self._settings = settings
        self._resolver = resolver
        self._storage = storage or ContextStorage(settings.resolved_storage_dir())
        self._context_manager = context_manager or ContextBudgetManager(storage=self._storage)
        self._tool_registry: ToolRegistry = tool_registry or InMemoryToolRegistry()
        self._plan_writer = plan_writer or PlanWriter(self._storage)
        self._session_store = session_store
        self._summarizer = summarizer or SummarizerService(resolver)
        self._planning = planning or PlanningService(self._plan_writer)
        self._memory = memory or MemoryService(self._storage)
        self._runner = runner or BackgroundTaskRunner()
        self._promote_untagged = promote_untagged
        self._active_task: asyncio.Task[ChatResult] | None = None
        self._task_lock = asyncio.Lock()

    @property
    def resolver(self) -> ProviderResolver:
        return self._resolver

    @property
    def runner(self) -> BackgroundTaskRunner:
        return self._runner

    @property
    def plan_writer(self) -> PlanWriter:
        return self._plan_writer

    @property
    def storage(self) -> ContextStorage:
        return self._storage

    async def stream_chat(
        self,
        messages: Sequence[ChatMessage],
        mode: str,
        on_delta: TextCallback,
        on_status: TextCallback | None = None,
        on_thought: TextCallback | None = None,
        on_progress: TextCallback | None = None,
        provider_id: str | None = None,
        model_id: str | None = None,
        tool_client_selection: Sequence[str] | None = None,
        *,
        session_id: str = "default",
        pinned: Sequence[str] | None = None,
    ) -> ChatResult:
        """Execute one chat turn and return its result.

        Raises:
            ConfigurationError: no provider/model could be resolved; raised
                before any model call.
            ProviderError: the stream or the fallback completion failed;
                ``partial_text`` carries the answer text already delivered.
        """

        if mode not in SUPPORTED_MODES:
            raise ValueError(f"Unsupported chat mode: {mode}")
        callbacks = _TurnCallbacks(
            on_delta=on_delta,
            on_status=on_status,
            on_thought=on_thought,
            on_progress=on_progress,
        )
        pinned_paths = tuple(pinned if pinned is not None else self._settings.pinned_files)

        async with self._task_lock:
            task = asyncio.create_task(
                self._run_turn(
                    list(messages),
                    mode,
                    callbacks,
                    provider_id=provider_id,
                    model_id=model_id,
                    tool_client_selection=tool_client_selection,
                    session_id=session_id,
                    pinned=pinned_paths,
                )
            )
            self._active_task = task

        try:
            return await task
        finally:
            if self._active_task is task:
                self._active_task = None

    def cancel(self) -> None:
        """Cancel the active chat turn, if any. Background work keeps running."""

        if self._active_task and not self._active_task.done():
            LOGGER.debug("Cancelling active chat task")
            self._active_task.cancel()

    async def wait_for_background(self) -> None:
        """Wait until detached tasks and queued scratchpad writes have finished."""

        await self._runner.wait_idle()
        await self._plan_writer.flush()

    async def aclose(self) -> None:
        """Cancel any active turn, stop background work, and close provider clients."""

        task = self._active_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            if self._active_task is task:
                self._active_task = None
        await self._runner.aclose()
        await self._plan_writer.flush()
        await self._resolver.aclose()

    # ------------------------------------------------------------------
    # Turn
    # ------------------------------------------------------------------
    async def _run_turn(
        self,
        messages: list[dict[str, Any]],
        mode: str,
        callbacks: _TurnCallbacks,
        *,
        provider_id: str | None,
        model_id: str | None,
        tool_client_selection: Sequence[str] | None,
        session_id: str,
        pinned: Sequence[str],
    ) -> ChatResult:
        ACTIVE_SESSION.set(session_id)
        await _invoke(callbacks.on_progress, PROGRESS_PROCESSING)
        client = self._resolver.resolve(provider_id, model_id)

        team_root = self._settings.team_docs_path
        tool_clients = self._tool_registry.list_tool_clients()
        request = ContextBuildRequest(
            messages=messages,
            session_id=session_id,
            mode=mode,  # type: ignore[arg-type]
            ai_scope=self._settings.ai_scope,
            team_root=team_root,
            tool_clients=tool_clients,
            tool_client_selection=tool_client_selection,
            pinned=pinned,
        )
        policy = ContextPolicy.from_settings(self._settings.context_policy)
        context = await self._context_manager.build_context(request, policy)

        selected_clients = selected_tool_clients(tool_clients, tool_client_selection)
        system_text = prompts.system_prompt(
            mode,
            team_root=team_root,
            provider_id=client.settings.provider_id,
            tool_clients=selected_clients,
        )
        system_content = "\n\n".join(part for part in (context.system_augment, system_text) if part)
        conversation: list[dict[str, Any]] = [{"role": "system", "content": system_content}]
        conversation.extend(dict(message) for message in context.trimmed_messages)

        tools = self._select_tools(mode, selected_clients)
        tool_specs = [spec.as_openai_tool() for spec in tools.values()]
        activity = ToolActivity()
        extractor = FinalAnswerExtractor(promote_untagged=self._promote_untagged)
        fallback_used = False
        steps = 0

        LOGGER.debug(
            "Starting %s turn for session %s (messages=%s, tools=%s)",
            mode,
            session_id,
            len(conversation),
            sorted(tools),
        )
        try:
            max_steps = max(1, self._settings.max_tool_steps)
            while steps < max_steps:
                steps += 1
                step = await self._run_model_step(client, conversation, tool_specs, extractor, activity, callbacks)
                if not step.tool_calls:
                    break
                await self._execute_tool_calls(step, tools, conversation, activity, callbacks)
            else:
                LOGGER.warning("Tool step limit (%s) reached for session %s", max_steps, session_id)

            await self._route_pieces(extractor.finish(), activity, callbacks)
            text = extractor.answer
            if not text.strip() and activity.has_tool_results:
                text = await self._fallback_completion(client, conversation, activity, callbacks, session_id)
                fallback_used = True
        except ProviderError as exc:
            if not exc.partial_text:
                exc.partial_text = extractor.answer
            LOGGER.warning("Chat turn for session %s failed: %s", session_id, exc)
            raise

        result = ChatResult(
            text=text,
            sources=list(activity.sources),
            proposals=list(activity.proposals),
            creations=list(activity.creations),
            thoughts=activity.thoughts,
            metrics=context.metrics,
        )
        telemetry_service.emit(
            "chat_turn_completed",
            {
                "session_id": session_id,
                "mode": mode,
                "provider": client.settings.provider_id,
                "model": client.settings.model,
                "steps": steps,
                "tool_calls": activity.call_count,
                "sources": len(result.sources),
                "proposals": len(result.proposals),
                "creations": len(result.creations),
                "fallback": fallback_used,
                "summarized": context.summarized,
            },
        )
        self._dispatch_background(
            session_id,
            messages,
            context,
            result,
            activity,
            client,
            provider_id=provider_id,
            model_id=model_id,
        )
        return result

    def _select_tools(self, mode: str, selected_clients: Sequence[ToolClientInfo]) -> dict[str, ToolSpec]:
        base = self._tool_registry.list_base_tools()
        if mode not in TOOL_ENABLED_MODES or not selected_clients:
            return base
        external = self._tool_registry.list_external_tools([client.client_id for client in selected_clients])
        return merge_tool_sets(base, external)

    async def _run_model_step(
        self,
        client: AIClient,
        conversation: list[dict[str, Any]],
        tool_specs: Sequence[ChatCompletionToolParam],
        extractor: FinalAnswerExtractor,
        activity: ToolActivity,
        callbacks: _TurnCallbacks,
    ) -> ModelStepResult:
        deltas: list[str] = []
        tool_calls: list[ToolCallRequest] = []
        async for event in client.stream_chat(
            conversation,
            tools=tool_specs or None,
            temperature=self._settings.temperature,
        ):
            if event.type == "content.delta" and event.content:
                deltas.append(event.content)
                await self._route_pieces(extractor.feed(event.content), activity, callbacks)
            elif event.type == "reasoning.delta" and event.content:
                await self._route_pieces([StreamPiece("reasoning", event.content)], activity, callbacks)
            elif event.type == "tool_calls.function.arguments.done":
                tool_calls.append(_tool_call_request(event, len(tool_calls)))
        return ModelStepResult(text="".join(deltas), tool_calls=tool_calls)

    async def _execute_tool_calls(
        self,
        step: ModelStepResult,
        tools: Mapping[str, ToolSpec],
        conversation: list[dict[str, Any]],
        activity: ToolActivity,
        callbacks: _TurnCallbacks,
    ) -> None:
        conversation.append(
            {
                "role": "assistant",
                "content": step.text or None,
                "tool_calls": [
                    {
                        "id": call.call_id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments or "{}"},
                    }
                    for call in step.tool_calls
                ],
            }
        )
        activity.record_calls(call.name for call in step.tool_calls)
        for call in step.tool_calls:
            await _invoke(callbacks.on_status, tool_status_message(call.name))
            note = f"Executing {call.name}...\n"
            activity.add_thought(note)
            await _invoke(callbacks.on_thought, note)
            arguments = parse_tool_arguments(call.arguments, call.parsed)
            output = await execute_tool(tools.get(call.name), call.name, arguments)
            activity.record_result(
                ToolResultRecord(tool_name=call.name, call_id=call.call_id, arguments=arguments, output=output)
            )
            conversation.append(
                {
                    "role": "tool",
                    "tool_call_id": call.call_id,
                    "content": serialize_tool_result(output),
                }
            )

    async def _route_pieces(
        self,
        pieces: Sequence[StreamPiece],
        activity: ToolActivity,
        callbacks: _TurnCallbacks,
    ) -> None:
        for piece in pieces:
            if not piece.text:
                continue
            if piece.kind == "answer":
                if not callbacks.answer_started:
                    callbacks.answer_started = True
                    await _invoke(callbacks.on_progress, "")
                await _invoke(callbacks.on_delta, piece.text)
                continue
            if piece.kind == "reasoning" and not callbacks.reasoning_started:
                callbacks.reasoning_started = True
                await _invoke(callbacks.on_progress, PROGRESS_THINKING)
            activity.add_thought(piece.text)
            await _invoke(callbacks.on_thought, piece.text)

    async def _fallback_completion(
        self,
        client: AIClient,
        conversation: Sequence[Mapping[str, Any]],
        activity: ToolActivity,
        callbacks: _TurnCallbacks,
        session_id: str,
    ) -> str:
        note = prompts.fallback_prompt(
            proposal_count=len(activity.proposals),
            creation_count=len(activity.creations),
            citations=activity.sources,
            tool_outputs=[(record.tool_name, serialize_tool_result(record.output)) for record in activity.results],
        )
        LOGGER.debug("Answer was empty after %s tool result(s); requesting fallback completion", len(activity.results))
        reply = await client.complete(
            [*conversation, {"role": "system", "content": note}],
            temperature=self._settings.temperature,
        )
        text = extract_final_answer(reply, promote_untagged=True)
        if text:
            await self._route_pieces([StreamPiece("answer", text)], activity, callbacks)
        telemetry_service.emit(
            "chat_fallback_completion",
            {"session_id": session_id, "tool_results": len(activity.results), "chars": len(text)},
        )
        return text

    # ------------------------------------------------------------------
    # Detached maintenance
    # ------------------------------------------------------------------
    def _dispatch_background(
        self,
        session_id: str,
        messages: Sequence[Mapping[str, Any]],
        context: ContextBuildResult,
        result: ChatResult,
        activity: ToolActivity,
        client: AIClient,
        *,
        provider_id: str | None,
        model_id: str | None,
    ) -> None:
        user_text = latest_user_text(messages)
        if context.summarized and context.summary_text:
            self._runner.spawn(
                "summary",
                lambda: self._refine_summary(session_id, messages, context, result.text, provider_id, model_id),
            )
        if user_text and should_auto_plan(user_text):
            self._runner.spawn("plan", lambda: self._planning.generate_plan(session_id, user_text, client))
            self._runner.spawn(
                "next_actions",
                lambda: self._planning.generate_next_actions(session_id, user_text, result.text, client),
            )
        if should_extract_memories(user_text, result.text, len(result.proposals), len(result.creations)):
            self._runner.spawn(
                "memory",
                lambda: self._memory.extract_and_store(
                    session_id,
                    user_text,
                    result.text,
                    client,
                    proposal_count=len(result.proposals),
                    creation_count=len(result.creations),
                ),
            )
        if activity.has_activity:
            self._plan_writer.append(session_id, progress_note(user_text, result))

    async def _refine_summary(
        self,
        session_id: str,
        messages: Sequence[Mapping[str, Any]],
        context: ContextBuildResult,
        answer: str,
        provider_id: str | None,
        model_id: str | None,
    ) -> None:
        await self._storage.write_summary(session_id, context.summary_text or "")
        kept = len(context.trimmed_messages)
        older = list(messages[: len(messages) - kept]) or list(messages)
        policy = ContextPolicy.from_settings(self._settings.context_policy)
        refined = await self._summarizer.summarize(
            older,
            policy.summary_target_tokens,
            provider_id=provider_id,
            model_id=model_id,
        )
        if not refined:
            LOGGER.debug("No refined summary for session %s; keeping the provisional one", session_id)
            return
        await self._storage.write_summary(session_id, refined)
        if self._session_store is None:
            return
        recent = [dict(message) for message in context.trimmed_messages]
        if answer:
            recent.append({"role": "assistant", "content": answer})
        await self._session_store.compact(session_id, refined, recent)


def selected_tool_clients(
    tool_clients: Sequence[ToolClientInfo],
    selection: Sequence[str] | None,
) -> list[ToolClientInfo]:
    """Return the clients named by *selection*; ``None`` selects every client."""

    if selection is None:
        return list(tool_clients)
    chosen = set(selection)
    return [client for client in tool_clients if client.client_id in chosen]


def progress_note(user_text: str, result: ChatResult) -> str:
    request = " ".join(user_text.split())
    if len(request) > PROGRESS_NOTE_REQUEST_CHARS:
        request = request[:PROGRESS_NOTE_REQUEST_CHARS] + "…"
    return (
        f"Request: {request or '(none)'}\n"
        f"- Sources: {len(result.sources)}\n"
        f"- Proposals: {len(result.proposals)}\n"
        f"- Creations: {len(result.creations)}"
    )


def _tool_call_request(event: AIStreamEvent, ordinal: int) -> ToolCallRequest:
    index = event.tool_index if event.tool_index is not None else ordinal
    name = (event.tool_name or "").strip()
    call_id = (event.tool_call_id or "").strip() or f"{name or 'tool'}:{index}"
    return ToolCallRequest(
        call_id=call_id,
        name=name,
        index=index,
        arguments=event.tool_arguments,
        parsed=event.parsed,
    )


async def _invoke(callback: TextCallback | None, value: str) -> None:
    if callback is None:
        return
    result = callback(value)
    if inspect.isawaitable(result):
        await result


__all__ = [
    "ChatOrchestrator",
    "ToolCallRequest",
    "ModelStepResult",
    "TextCallback",
    "SUPPORTED_MODES",
    "selected_tool_clients",
    "progress_note",
]
