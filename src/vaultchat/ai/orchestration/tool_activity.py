"""Per-turn accumulation and classification of tool calls and results."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from .errors import ToolResultError
from .types import EditRecord

LOGGER = logging.getLogger(__name__)

BASE_SCHEMA_SOURCE = "Base Schema"

SEARCH_TOOLS: frozenset[str] = frozenset(
    {"search_docs", "search_tags", "search_similar", "find_similar_to_doc", "find_similar_to_many"}
)
PROPOSAL_TOOLS: frozenset[str] = frozenset({"propose_edit"})
CREATION_TOOLS: frozenset[str] = frozenset({"create_doc", "create_base"})

TOOL_STATUS_MESSAGES: Mapping[str, str] = {
    "search_docs": "Searching documents...",
    "read_doc": "Reading document...",
    "follow_links": "Following links...",
    "propose_edit": "Writing document...",
    "create_doc": "Creating document...",
    "list_docs": "Listing documents...",
    "search_tags": "Searching tags...",
    "get_backlinks": "Getting backlinks...",
    "get_graph_context": "Building graph context...",
    "create_base": "Creating base file...",
    "search_base_def": "Retrieving base schema...",
    "planning_read": "Reading plan...",
    "planning_update_section": "Updating plan...",
    "planning_replace": "Updating plan...",
    "planning_write": "Updating plan...",
}


def tool_status_message(tool_name: str) -> str:
    return TOOL_STATUS_MESSAGES.get(tool_name, f"Using {tool_name}...")


@dataclass(slots=True)
class ToolResultRecord:
    """One executed tool call and its (decoded) output."""

    tool_name: str
    call_id: str
    arguments: Mapping[str, Any]
    output: Any


@dataclass(slots=True)
class ToolActivity:
    """Side effects accumulated while a turn runs; discarded after the turn."""

    sources: list[str] = field(default_factory=list)
    proposals: list[EditRecord] = field(default_factory=list)
    creations: list[EditRecord] = field(default_factory=list)
    thoughts: str = ""
    results: list[ToolResultRecord] = field(default_factory=list)
    call_count: int = 0

    @property
    def has_tool_results(self) -> bool:
        return bool(self.results)

    @property
    def has_activity(self) -> bool:
        return self.call_count > 0 or bool(self.results)

    def add_thought(self, text: str) -> None:
        if text:
            self.thoughts += text

    def add_source(self, path: str) -> None:
        if path and path not in self.sources:
            self.sources.append(path)

    def record_calls(self, names: Iterable[str]) -> None:
        self.call_count += sum(1 for _ in names)

    def record_result(self, record: ToolResultRecord) -> None:
        """Store *record* and classify its output into sources, proposals, or creations."""

        self.results.append(record)
        classifier = _CLASSIFIERS.get(record.tool_name)
        if classifier is None:
            return
        try:
            classifier(self, decode_output(record.output))
        except ToolResultError as exc:
            LOGGER.debug("Ignoring tool result: %s", exc)


def decode_output(output: Any) -> Any:
    """Return tool output as Python data, parsing JSON strings when possible."""

    if isinstance(output, (str, bytes)):
        try:
            return json.loads(output)
        except (TypeError, ValueError):
            return output
    return output


def _paths_from_items(items: Any, key: str = "path") -> list[str]:
    paths: list[str] = []
    if not isinstance(items, list):
        return paths
    for item in items:
        if isinstance(item, Mapping):
            value = item.get(key)
            if isinstance(value, str) and value:
                paths.append(value)
    return paths


def _classify_search(activity: ToolActivity, output: Any) -> None:
    items = output.get("results") if isinstance(output, Mapping) else output
    for path in _paths_from_items(items):
        activity.add_source(path)


def _classify_read(activity: ToolActivity, output: Any) -> None:
    if isinstance(output, Mapping) and isinstance(output.get("path"), str):
        activity.add_source(output["path"])


def _keyed_list(key: str, item_key: str = "path") -> Callable[[ToolActivity, Any], None]:
    def _classify(activity: ToolActivity, output: Any) -> None:
        if not isinstance(output, Mapping):
            return
        for path in _paths_from_items(output.get(key), item_key):
            activity.add_source(path)

    return _classify


def _classify_base_schema(activity: ToolActivity, output: Any) -> None:
    activity.add_source(BASE_SCHEMA_SOURCE)


def _edit_record(tool_name: str, output: Any) -> EditRecord:
    if not isinstance(output, Mapping):
        raise ToolResultError(tool_name, "result is not an object")
    if output.get("ok") is not True:
        raise ToolResultError(tool_name, str(output.get("error") or "ok flag not set"))
    path = output.get("path")
    content = output.get("content")
    if not isinstance(path, str) or not path or not isinstance(content, str):
        raise ToolResultError(tool_name, "result is missing path or content")
    return EditRecord(path=path, content=content)


def _classify_proposal(activity: ToolActivity, output: Any) -> None:
    activity.proposals.append(_edit_record("propose_edit", output))


def _classify_creation(activity: ToolActivity, output: Any) -> None:
    record = _edit_record("create_doc", output)
    if all(existing.path != record.path for existing in activity.creations):
        activity.creations.append(record)


_CLASSIFIERS: dict[str, Callable[[ToolActivity, Any], None]] = {
    **{name: _classify_search for name in SEARCH_TOOLS},
    "read_doc": _classify_read,
    "list_docs": _keyed_list("items"),
    "follow_links": _keyed_list("followedDocs"),
    "get_backlinks": _keyed_list("backlinks"),
    "get_graph_context": _keyed_list("nodes", "id"),
    "search_base_def": _classify_base_schema,
    **{name: _classify_proposal for name in PROPOSAL_TOOLS},
    **{name: _classify_creation for name in CREATION_TOOLS},
}


__all__ = [
    "ToolActivity",
    "ToolResultRecord",
    "tool_status_message",
    "decode_output",
    "SEARCH_TOOLS",
    "PROPOSAL_TOOLS",
    "CREATION_TOOLS",
]
