"""Async AI client wrapper built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, MutableMapping, Sequence, cast

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, OpenAIError, RateLimitError
from openai.lib.streaming.chat import ChatCompletionStreamEvent
from openai.types.chat import (
    ChatCompletionMessageParam,
    ChatCompletionToolChoiceOptionParam,
    ChatCompletionToolParam,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .orchestration.errors import ProviderError

LOGGER = logging.getLogger(__name__)

_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)
_PROVIDER_ERRORS: tuple[type[BaseException], ...] = _RETRYABLE_ERRORS + (OpenAIError, httpx.HTTPError)
_REASONING_FIELDS = ("reasoning_content", "reasoning")


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure the AI client."""

    base_url: str
    api_key: str
    model: str
    provider_id: str = "openai"
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False


@dataclass(slots=True)
class AIStreamEvent:
    """Normalized representation of streaming deltas.

    ``type`` mirrors the OpenAI streaming helper event names, plus
    ``reasoning.delta`` for provider reasoning text carried on raw chunks.
    """

    type: str
    content: str | None = None
    parsed: Any | None = None
    tool_name: str | None = None
    tool_index: int | None = None
    tool_arguments: str | None = None
    arguments_delta: str | None = None
    tool_call_id: str | None = None


class AIClient:
    """Async client providing streaming and one-shot completion helpers with retry semantics."""

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._models_cache: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_chat(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None = None,
        temperature: float | None = 0.2,
        max_completion_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> AsyncIterator[AIStreamEvent]:
        """Stream chat completions for the provided messages.

        Transient provider errors are retried only until the first event has
        been yielded; after that a failure raises :class:`ProviderError` so the
        caller never sees duplicated output.
        """

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            tools=tools,
            tool_choice=tool_choice,
            temperature=temperature,
            max_completion_tokens=max_completion_tokens,
            metadata=metadata,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Starting streamed chat completion via %s/%s with %s message(s)",
            self._settings.provider_id,
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)

        yielded = False
        try:
            async for attempt in self._retrying():
                with attempt:
                    call_ids: dict[int, str] = {}
                    try:
                        async with self._client.chat.completions.stream(**payload) as stream:
                            async for event in stream:
                                normalized = self._normalize_stream_event(event, call_ids)
                                if normalized is not None:
                                    yielded = True
                                    yield normalized
                    except _PROVIDER_ERRORS as exc:
                        if yielded:
                            raise ProviderError(f"Model stream interrupted: {exc}") from exc
                        raise
                    break
        except ProviderError:
            raise
        except _PROVIDER_ERRORS as exc:
            raise ProviderError(f"Model stream failed: {exc}") from exc

    async def complete(
        self,
        messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam],
        *,
        temperature: float | None = 0.2,
        max_completion_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> str:
        """Run one non-streaming completion without tools and return its text."""

        payload = self._build_chat_payload(
            messages=self._coerce_messages(messages),
            tools=None,
            tool_choice=None,
            temperature=temperature,
            max_completion_tokens=max_completion_tokens,
            metadata=metadata,
            extra_params=extra_params,
        )
        LOGGER.debug(
            "Requesting completion via %s/%s with %s message(s)",
            self._settings.provider_id,
            self._settings.model,
            len(payload["messages"]),
        )
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.chat.completions.create(**payload)
                    break
        except _PROVIDER_ERRORS as exc:
            raise ProviderError(f"Completion request failed: {exc}") from exc
        return self._extract_completion_text(response)

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return a list of supported model identifiers."""

        if self._models_cache is not None and not force_refresh:
            return list(self._models_cache)

        async with self._models_lock:
            if self._models_cache is not None and not force_refresh:
                return list(self._models_cache)

            response = await self._client.models.list()
            models = [item.id for item in response.data if getattr(item, "id", None)]
            self._models_cache = models
            return list(models)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key or "not-needed",
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )

    def _coerce_messages(
        self, messages: Iterable[Mapping[str, Any] | ChatCompletionMessageParam]
    ) -> List[ChatCompletionMessageParam]:
        normalized: List[ChatCompletionMessageParam] = []
        for message in messages:
            if isinstance(message, MutableMapping):
                normalized.append(cast(ChatCompletionMessageParam, dict(message)))
            else:
                try:
                    normalized.append(cast(ChatCompletionMessageParam, dict(message)))
                except TypeError as exc:
                    raise TypeError("Messages must be mapping-like objects") from exc
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        return normalized

    def _build_chat_payload(
        self,
        *,
        messages: Sequence[ChatCompletionMessageParam],
        tools: Iterable[ChatCompletionToolParam] | None,
        tool_choice: ChatCompletionToolChoiceOptionParam | None,
        temperature: float | None,
        max_completion_tokens: int | None,
        metadata: Mapping[str, str] | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": list(messages),
        }

        merged_metadata = self._merge_metadata(metadata)
        if merged_metadata:
            payload["metadata"] = merged_metadata
        tool_list = list(tools) if tools else []
        if tool_list:
            payload["tools"] = tool_list
            if tool_choice:
                payload["tool_choice"] = tool_choice
        if temperature is not None:
            payload["temperature"] = temperature
        if max_completion_tokens is not None:
            payload["max_completion_tokens"] = max_completion_tokens
        if extra_params:
            payload.update(extra_params)

        return payload

    def _merge_metadata(self, runtime_metadata: Mapping[str, str] | None) -> Dict[str, str] | None:
        combined: Dict[str, str] = {}
        if self._settings.metadata:
            combined.update(self._settings.metadata)
        if runtime_metadata:
            combined.update(runtime_metadata)
        return combined or None

    def _normalize_stream_event(
        self,
        event: ChatCompletionStreamEvent[Any],
        call_ids: dict[int, str],
    ) -> AIStreamEvent | None:
        event_type = getattr(event, "type", None)
        if event_type is None:
            return None

        if event_type == "chunk":
            return self._normalize_chunk(getattr(event, "chunk", None), call_ids)
        if event_type == "content.delta":
            delta_text = getattr(event, "delta", None)
            if delta_text:
                return AIStreamEvent(type=event_type, content=str(delta_text))
            return None
        if event_type == "content.done":
            return AIStreamEvent(
                type=event_type,
                content=getattr(event, "content", None),
                parsed=getattr(event, "parsed", None),
            )
        if event_type == "refusal.delta":
            return AIStreamEvent(type=event_type, content=getattr(event, "delta", None))
        if event_type == "refusal.done":
            return AIStreamEvent(type=event_type, content=getattr(event, "refusal", None))
        if event_type in ("tool_calls.function.arguments.delta", "tool_calls.function.arguments.done"):
            index = getattr(event, "index", None)
            call_id = getattr(event, "id", None) or getattr(event, "tool_call_id", None)
            if not call_id and index is not None:
                call_id = call_ids.get(index)
            return AIStreamEvent(
                type=event_type,
                tool_name=getattr(event, "name", None),
                tool_index=index,
                tool_arguments=getattr(event, "arguments", None),
                arguments_delta=getattr(event, "arguments_delta", None),
                parsed=getattr(event, "parsed_arguments", None),
                tool_call_id=call_id,
            )
        return None

    def _normalize_chunk(self, chunk: Any, call_ids: dict[int, str]) -> AIStreamEvent | None:
        choices = getattr(chunk, "choices", None) or ()
        if not choices:
            return None
        delta = getattr(choices[0], "delta", None)
        if delta is None:
            return None
        for tool_call in getattr(delta, "tool_calls", None) or ():
            index = getattr(tool_call, "index", None)
            call_id = getattr(tool_call, "id", None)
            if index is not None and call_id:
                call_ids[index] = call_id
        for field_name in _REASONING_FIELDS:
            reasoning = getattr(delta, field_name, None)
            if isinstance(reasoning, str) and reasoning:
                return AIStreamEvent(type="reasoning.delta", content=reasoning)
        return None

    @staticmethod
    def _extract_completion_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or ()
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        return content if isinstance(content, str) else ""

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("AI prompt payload (unserializable): %s", payload)
        else:
            LOGGER.debug("AI prompt payload:\n%s", serialized)

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        try:
            result = close()
        except Exception as exc:  # pragma: no cover - defensive guard
            LOGGER.debug("AI client close failed to start: %s", exc)
            return
        if inspect.isawaitable(result):
            await result


__all__ = ["AIClient", "AIStreamEvent", "ClientSettings"]
