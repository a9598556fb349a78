"""Built-in document tools operating on the markdown vault."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

from ...services.retrieval import VaultAccessError, VaultIndex, is_within_scope
from ...utils.file_io import normalize_vault_path
from .registry import ToolSpec

LOGGER = logging.getLogger(__name__)

DEFAULT_SEARCH_RESULTS = 8
MAX_SEARCH_RESULTS = 25


class VaultTools:
    """Document tools bound to one vault index and AI scope root."""

    def __init__(self, index: VaultIndex, *, scope_root: str = "") -> None:
        self._index = index
        self._scope_root = scope_root

    def specs(self) -> list[ToolSpec]:
        return [
            ToolSpec(
                name="search_docs",
                execute=self.search_docs,
                description="Search team documents by title, frontmatter, and path. Returns matching paths.",
                parameters={
                    "type": "object",
                    "properties": {
                        "query": {"type": "string", "description": "Search terms."},
                        "k": {"type": "integer", "description": "Maximum results.", "minimum": 1},
                    },
                    "required": ["query"],
                },
            ),
            ToolSpec(
                name="list_docs",
                execute=self.list_docs,
                description="List documents, optionally restricted to a folder.",
                parameters={
                    "type": "object",
                    "properties": {"folder": {"type": "string", "description": "Folder path."}},
                },
            ),
            ToolSpec(
                name="read_doc",
                execute=self.read_doc,
                description="Read the full content of a document.",
                parameters={
                    "type": "object",
                    "properties": {"path": {"type": "string", "description": "Document path."}},
                    "required": ["path"],
                },
            ),
            ToolSpec(
                name="propose_edit",
                execute=self.propose_edit,
                description="Propose the COMPLETE new content of an existing document for user review.",
                parameters={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": "Document path."},
                        "content": {"type": "string", "description": "Complete updated content."},
                    },
                    "required": ["path", "content"],
                },
            ),
            ToolSpec(
                name="create_doc",
                execute=self.create_doc,
                description="Create a new document with the COMPLETE content.",
                parameters={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": "New document path."},
                        "content": {"type": "string", "description": "Complete document content."},
                    },
                    "required": ["path", "content"],
                },
            ),
        ]

    def search_docs(self, arguments: Mapping[str, Any]) -> list[dict[str, str]]:
        """Search team documents by title, frontmatter, and path."""

        query = str(arguments.get("query") or "").strip()
        k = _coerce_limit(arguments.get("k"))
        hits = self._index.search(query, k, scope_root=self._scope_root)
        return [{"path": entry.path, "title": entry.title} for entry in hits]

    def list_docs(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        folder = str(arguments.get("folder") or "")
        entries = self._index.list_documents(folder, scope_root=self._scope_root)
        return {"items": [{"path": entry.path, "title": entry.title} for entry in entries]}

    async def read_doc(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        path = self._scoped_path(arguments.get("path"))
        try:
            content = await asyncio.to_thread(self._index.read, path)
        except (OSError, VaultAccessError) as exc:
            return {"ok": False, "error": str(exc)}
        entry = self._index.entry(path)
        return {"ok": True, "path": path, "title": entry.title if entry else path, "content": content}

    async def propose_edit(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        """Record a proposed edit; nothing is written until the user accepts it."""

        path = self._scoped_path(arguments.get("path"))
        content = arguments.get("content")
        if not isinstance(content, str):
            return {"ok": False, "error": "content must be a string"}
        target = self._index.resolve(path)
        exists = await asyncio.to_thread(target.is_file)
        if not exists:
            return {"ok": False, "error": f"Document not found: {path}"}
        return {"ok": True, "path": path, "content": content}

    async def create_doc(self, arguments: Mapping[str, Any]) -> dict[str, Any]:
        path = self._scoped_path(arguments.get("path"))
        content = arguments.get("content")
        if not isinstance(content, str):
            return {"ok": False, "error": "content must be a string"}
        target = self._index.resolve(path)
        if await asyncio.to_thread(target.exists):
            return {"ok": False, "error": f"Document already exists: {path}"}
        await asyncio.to_thread(self._index.write, path, content)
        LOGGER.debug("Created document %s (%s chars)", path, len(content))
        return {"ok": True, "path": path, "content": content}

    def _scoped_path(self, raw: Any) -> str:
        path = normalize_vault_path(str(raw or ""))
        if not path:
            raise VaultAccessError("A document path is required")
        if not is_within_scope(path, self._scope_root):
            raise VaultAccessError(f"Path is outside the AI scope ({self._scope_root}): {path}")
        self._index.resolve(path)
        return path


def build_vault_tools(index: VaultIndex, *, scope_root: str = "") -> dict[str, ToolSpec]:
    """Return the base tool set keyed by tool name."""

    return {spec.name: spec for spec in VaultTools(index, scope_root=scope_root).specs()}


def _coerce_limit(value: Any) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_SEARCH_RESULTS
    return max(1, min(MAX_SEARCH_RESULTS, limit))


__all__ = ["VaultTools", "build_vault_tools"]
