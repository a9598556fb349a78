"""Shared test helpers and stub classes.

This module contains reusable test stubs that are used across multiple test files.
Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Iterable, Mapping, Sequence, cast

from openai import AsyncOpenAI

from vaultchat.ai.client import AIClient, ClientSettings
from vaultchat.ai.orchestration.types import DocSlice
from vaultchat.ai.providers import ProviderResolver
from vaultchat.services.settings import Settings


@dataclass
class FakeEvent:
    """Simple structure emulating ChatCompletionStreamEvent attributes."""

    type: str
    delta: str | None = None
    content: str | None = None
    name: str | None = None
    index: int | None = None
    arguments: str | None = None
    arguments_delta: str | None = None
    parsed_arguments: Any | None = None
    refusal: str | None = None
    chunk: Any | None = None


def text_events(*chunks: str) -> list[FakeEvent]:
    return [FakeEvent(type="content.delta", delta=chunk) for chunk in chunks]


def tool_call_event(name: str, arguments: str, *, index: int = 0, parsed: Any | None = None) -> FakeEvent:
    return FakeEvent(
        type="tool_calls.function.arguments.done",
        name=name,
        index=index,
        arguments=arguments,
        parsed_arguments=parsed,
    )


def reasoning_chunk(text: str) -> FakeEvent:
    delta = SimpleNamespace(reasoning_content=text, tool_calls=None)
    return FakeEvent(type="chunk", chunk=SimpleNamespace(choices=[SimpleNamespace(delta=delta)]))


class FakeStream:
    def __init__(self, events: Iterable[Any], error: BaseException | None = None):
        self._iterator = iter(list(events))
        self._error = error

    def __aiter__(self) -> "FakeStream":
        return self

    async def __anext__(self) -> Any:
        try:
            return next(self._iterator)
        except StopIteration as exc:
            if self._error is not None:
                raise self._error from None
            raise StopAsyncIteration from exc


class FakeStreamContext:
    def __init__(self, events: Iterable[Any], error: BaseException | None = None):
        self._events = list(events)
        self._error = error

    async def __aenter__(self) -> FakeStream:
        return FakeStream(self._events, self._error)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return False


class FakeCompletions:
    """Scripted ``chat.completions``: one event list per ``stream`` call, one reply per ``create``.

    A turn entry may be an exception instance, which is raised after the
    turn's events (or immediately when the turn is only an exception).
    """

    def __init__(
        self,
        turns: Sequence[Sequence[Any] | BaseException] = (),
        replies: Sequence[str | BaseException] = (),
    ):
        self._turns = list(turns)
        self._replies = list(replies)
        self.calls: list[dict[str, Any]] = []
        self.create_calls: list[dict[str, Any]] = []

    def stream(self, **kwargs: Any) -> FakeStreamContext:
        self.calls.append(kwargs)
        turn = self._turns.pop(0) if self._turns else []
        if isinstance(turn, BaseException):
            return FakeStreamContext([], turn)
        events = [item for item in turn if not isinstance(item, BaseException)]
        errors = [item for item in turn if isinstance(item, BaseException)]
        return FakeStreamContext(events, errors[0] if errors else None)

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.create_calls.append(kwargs)
        reply = self._replies.pop(0) if self._replies else ""
        if isinstance(reply, BaseException):
            raise reply
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


class FakeModels:
    def __init__(self, payload: list[SimpleNamespace]):
        self._payload = payload
        self.calls = 0

    async def list(self) -> SimpleNamespace:
        self.calls += 1
        return SimpleNamespace(data=self._payload)


def make_openai(
    turns: Sequence[Sequence[Any] | BaseException] = (),
    replies: Sequence[str | BaseException] = (),
) -> SimpleNamespace:
    completions = FakeCompletions(turns, replies)
    models = FakeModels([SimpleNamespace(id="test-model")])
    return SimpleNamespace(chat=SimpleNamespace(completions=completions), models=models)


def make_client(
    turns: Sequence[Sequence[Any] | BaseException] = (),
    replies: Sequence[str | BaseException] = (),
    *,
    max_retries: int = 1,
    provider_id: str = "openai",
) -> tuple[AIClient, FakeCompletions]:
    fake = make_openai(turns, replies)
    client = AIClient(
        ClientSettings(
            base_url="http://local",
            api_key="test",
            model="test-model",
            provider_id=provider_id,
            max_retries=max_retries,
            retry_min_seconds=0,
            retry_max_seconds=0,
        ),
        client=cast(AsyncOpenAI, fake),
    )
    return client, fake.chat.completions


def make_settings(tmp_path: Any, **overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "api_key": "sk-test-1234",
        "storage_dir": str(tmp_path / "sessions"),
        "vault_root": str(tmp_path / "vault"),
        "team_docs_path": "Team",
    }
    values.update(overrides)
    return Settings(**values)


def make_resolver(settings: Settings, client: AIClient) -> ProviderResolver:
    """Resolver whose every provider/model selection yields *client*."""

    return ProviderResolver(settings, client_factory=lambda _settings: client)


class FakeRetriever:
    def __init__(self, docs: Sequence[DocSlice] = (), error: BaseException | None = None):
        self.docs = list(docs)
        self.error = error
        self.queries: list[tuple[str, int, int]] = []

    async def search(self, query: str, k: int, snippet_length: int) -> list[DocSlice]:
        self.queries.append((query, k, snippet_length))
        if self.error is not None:
            raise self.error
        return list(self.docs)


class FakeSummarizer:
    def __init__(self, summary: str | None = "Earlier discussion", error: BaseException | None = None):
        self.summary = summary
        self.error = error
        self.calls: list[tuple[list[Mapping[str, Any]], int]] = []

    async def summarize(self, messages: Sequence[Mapping[str, Any]], target_tokens: int = 400, **_: Any) -> str | None:
        self.calls.append((list(messages), target_tokens))
        if self.error is not None:
            raise self.error
        return self.summary


def conversation(count: int, *, size: int = 10) -> list[dict[str, str]]:
    """Alternating user/assistant history whose contents are *size* characters."""

    messages = []
    for index in range(count):
        role = "user" if index % 2 == 0 else "assistant"
        body = f"{role[0]}{index}".ljust(size, "x")
        messages.append({"role": role, "content": body})
    return messages
