"""Tool specs, the registry contract, and merge-by-name helpers."""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence, cast, runtime_checkable

from openai.types.chat import ChatCompletionToolParam

from ..orchestration.types import ToolClientInfo

LOGGER = logging.getLogger(__name__)

ToolExecutor = Callable[[Mapping[str, Any]], Any]
"""Tool implementation: receives parsed arguments, returns a result or an awaitable."""


@dataclass(slots=True)
class ToolSpec:
    """Tool metadata plus its implementation.

    Attributes:
        name: Tool identifier used in API calls.
        execute: Callable receiving the parsed argument mapping.
        description: Human-readable description (falls back to the callable's docstring).
        parameters: JSON Schema for tool parameters.
        strict: Whether to request strict function calling.
        client_id: Owning external client, ``None`` for base tools.
    """

    name: str
    execute: ToolExecutor
    description: str | None = None
    parameters: Mapping[str, Any] | None = None
    strict: bool = False
    client_id: str | None = None

    def as_openai_tool(self) -> ChatCompletionToolParam:
        """Return an OpenAI-compatible tool spec for the AI client."""

        parameters = dict(self.parameters) if self.parameters else {"type": "object", "properties": {}}
        description = self.description or inspect.getdoc(self.execute) or f"Tool {self.name}"
        return cast(
            ChatCompletionToolParam,
            {
                "type": "function",
                "function": {
                    "name": self.name,
                    "description": description,
                    "parameters": parameters,
                    "strict": bool(self.strict),
                },
            },
        )

    async def run(self, arguments: Mapping[str, Any]) -> Any:
        """Invoke the implementation, awaiting it when it returns an awaitable."""

        result = self.execute(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


@runtime_checkable
class ToolRegistry(Protocol):
    """Contract the orchestrator consumes to discover tools."""

    def list_base_tools(self) -> dict[str, ToolSpec]:
        ...

    def list_external_tools(self, client_ids: Sequence[str]) -> dict[str, ToolSpec]:
        ...

    def list_tool_clients(self) -> list[ToolClientInfo]:
        ...


@dataclass(slots=True)
class _ExternalClient:
    info: ToolClientInfo
    tools: list[ToolSpec] = field(default_factory=list)


class InMemoryToolRegistry:
    """Registry holding base tools and any number of external tool clients."""

    def __init__(self, base_tools: Iterable[ToolSpec] = ()) -> None:
        self._base: dict[str, ToolSpec] = {}
        self._clients: dict[str, _ExternalClient] = {}
        for spec in base_tools:
            self.register_base(spec)

    def register_base(self, spec: ToolSpec) -> None:
        if not spec.name:
            raise ValueError("Tool name is required")
        self._base[spec.name] = spec

    def register_client(
        self,
        client_id: str,
        client_name: str,
        tools: Iterable[ToolSpec],
        *,
        auth_needed: bool = False,
    ) -> None:
        specs = [
            ToolSpec(
                name=spec.name,
                execute=spec.execute,
                description=spec.description,
                parameters=spec.parameters,
                strict=spec.strict,
                client_id=client_id,
            )
            for spec in tools
        ]
        info = ToolClientInfo(
            client_id=client_id,
            client_name=client_name or client_id,
            tools=tuple(spec.name for spec in specs),
            auth_needed=auth_needed,
        )
        self._clients[client_id] = _ExternalClient(info=info, tools=specs)
        LOGGER.debug("Registered tool client %s with %s tool(s)", client_id, len(specs))

    def unregister_client(self, client_id: str) -> None:
        self._clients.pop(client_id, None)

    def list_base_tools(self) -> dict[str, ToolSpec]:
        return dict(self._base)

    def list_external_tools(self, client_ids: Sequence[str]) -> dict[str, ToolSpec]:
        merged: dict[str, ToolSpec] = {}
        for client_id in client_ids:
            client = self._clients.get(client_id)
            if client is None:
                LOGGER.debug("Skipping unknown tool client %s", client_id)
                continue
            merged.update({spec.name: spec for spec in client.tools})
        return merged

    def list_tool_clients(self) -> list[ToolClientInfo]:
        return [client.info for client in self._clients.values()]


def merge_tool_sets(*tool_sets: Mapping[str, ToolSpec]) -> dict[str, ToolSpec]:
    """Merge tool mappings by name; on collisions the later mapping wins."""

    merged: dict[str, ToolSpec] = {}
    for tool_set in tool_sets:
        merged.update(tool_set)
    return merged


def parse_tool_arguments(raw: str | None, parsed: Any | None = None) -> dict[str, Any]:
    """Return tool arguments as a dict, preferring already-parsed values."""

    if isinstance(parsed, Mapping):
        return dict(parsed)
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        LOGGER.debug("Tool arguments were not valid JSON: %s", raw[:200])
        return {}
    return dict(value) if isinstance(value, Mapping) else {}


async def execute_tool(spec: ToolSpec | None, name: str, arguments: Mapping[str, Any]) -> Any:
    """Run a tool call; failures become ``{"ok": False, "error": ...}`` results."""

    if spec is None:
        return {"ok": False, "error": f"Unknown tool: {name}"}
    try:
        return await spec.run(arguments)
    except Exception as exc:
        LOGGER.warning("Tool %s failed: %s", name, exc, exc_info=LOGGER.isEnabledFor(logging.DEBUG))
        return {"ok": False, "error": str(exc)}


def serialize_tool_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(result)


__all__ = [
    "ToolSpec",
    "ToolExecutor",
    "ToolRegistry",
    "InMemoryToolRegistry",
    "merge_tool_sets",
    "parse_tool_arguments",
    "execute_tool",
    "serialize_tool_result",
]
