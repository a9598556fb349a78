"""Markdown vault index and the document retrieval collaborator."""

from __future__ import annotations

import asyncio
import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Protocol

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ..ai.orchestration.types import DocSlice
from ..utils.file_io import normalize_vault_path, read_text, write_text

LOGGER = logging.getLogger(__name__)

MARKDOWN_SUFFIXES: frozenset[str] = frozenset({".md", ".mdx", ".base"})
TITLE_WEIGHT = 5
FRONTMATTER_WEIGHT = 3
PATH_WEIGHT = 1


class VaultAccessError(ValueError):
    """A path escapes the vault root or names a missing document."""


@dataclass(slots=True)
class DocumentEntry:
    """Indexed metadata for one vault document."""

    path: str
    title: str
    frontmatter: dict[str, Any] = field(default_factory=dict)
    updated_at: float = 0.0
    search_blob: str = ""


class Retriever(Protocol):
    async def search(self, query: str, k: int, snippet_length: int) -> list[DocSlice]:
        ...


def is_within_scope(path: str, team_root: str) -> bool:
    """Return ``True`` when *path* lies under *team_root* (empty or ``/`` allows all)."""

    root = normalize_vault_path(team_root).rstrip("/")
    if not root:
        return True
    candidate = normalize_vault_path(path)
    return candidate == root or candidate.startswith(f"{root}/")


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split ``---`` delimited YAML frontmatter from the markdown body."""

    if not text.startswith("---\n"):
        return {}, text
    end = text.find("\n---", 4)
    if end == -1:
        return {}, text
    raw = text[4:end]
    body_start = text.find("\n", end + 4)
    body = text[body_start + 1 :] if body_start != -1 else ""
    parser = YAML(typ="safe")
    try:
        payload = parser.load(io.StringIO(raw))
    except YAMLError as exc:
        LOGGER.debug("Ignoring malformed frontmatter: %s", exc)
        return {}, body
    return (payload if isinstance(payload, dict) else {}), body


class VaultIndex:
    """In-memory index of markdown documents under a vault root.

    Search scores each document by query-term hits in its title, its
    frontmatter, and its path; ties go to the most recently modified file.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser().resolve()
        self._entries: dict[str, DocumentEntry] = {}

    @property
    def root(self) -> Path:
        return self._root

    def __len__(self) -> int:
        return len(self._entries)

    def paths(self) -> list[str]:
        return sorted(self._entries)

    def entry(self, path: str) -> DocumentEntry | None:
        return self._entries.get(normalize_vault_path(path))

    def refresh(self) -> int:
        """Rescan the vault and return the number of indexed documents."""

        entries: dict[str, DocumentEntry] = {}
        if self._root.is_dir():
            for dirpath, dirnames, filenames in os.walk(self._root):
                dirnames[:] = [name for name in dirnames if not name.startswith(".")]
                for filename in filenames:
                    file_path = Path(dirpath) / filename
                    if file_path.suffix.lower() not in MARKDOWN_SUFFIXES:
                        continue
                    entry = self._load_entry(file_path)
                    if entry is not None:
                        entries[entry.path] = entry
        self._entries = entries
        LOGGER.debug("Indexed %s document(s) under %s", len(entries), self._root)
        return len(entries)

    def update(self, path: str) -> None:
        """Re-index a single document after it was written."""

        entry = self._load_entry(self.resolve(path))
        if entry is not None:
            self._entries[entry.path] = entry

    def search(self, query: str, k: int = 5, *, scope_root: str = "") -> list[DocumentEntry]:
        terms = [term for term in query.lower().split() if term]
        if not terms or k <= 0:
            return []
        scored: list[tuple[int, float, DocumentEntry]] = []
        for entry in self._entries.values():
            if not is_within_scope(entry.path, scope_root):
                continue
            title = entry.title.lower()
            path = entry.path.lower()
            score = 0
            for term in terms:
                if term in title:
                    score += TITLE_WEIGHT
                if term in entry.search_blob:
                    score += FRONTMATTER_WEIGHT
                if term in path:
                    score += PATH_WEIGHT
            if score > 0:
                scored.append((score, entry.updated_at, entry))
        scored.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [entry for _, _, entry in scored[:k]]

    def list_documents(self, folder: str = "", *, scope_root: str = "") -> list[DocumentEntry]:
        prefix = normalize_vault_path(folder).rstrip("/")
        results = []
        for path in sorted(self._entries):
            if not is_within_scope(path, scope_root):
                continue
            if prefix and not is_within_scope(path, prefix):
                continue
            results.append(self._entries[path])
        return results

    def resolve(self, path: str) -> Path:
        """Map a vault-relative path to an absolute path inside the root."""

        relative = normalize_vault_path(path)
        if not relative:
            raise VaultAccessError("A document path is required")
        candidate = (self._root / relative).resolve()
        if candidate != self._root and self._root not in candidate.parents:
            raise VaultAccessError(f"Path escapes the vault: {path}")
        return candidate

    def read(self, path: str) -> str:
        target = self.resolve(path)
        if not target.is_file():
            raise VaultAccessError(f"Document not found: {path}")
        return read_text(target)

    def write(self, path: str, content: str) -> None:
        write_text(self.resolve(path), content)
        self.update(path)

    def _load_entry(self, file_path: Path) -> DocumentEntry | None:
        try:
            text = read_text(file_path)
            stat = file_path.stat()
        except (OSError, UnicodeDecodeError) as exc:
            LOGGER.debug("Skipping unreadable document %s: %s", file_path, exc)
            return None
        frontmatter, _ = split_frontmatter(text)
        relative = file_path.relative_to(self._root).as_posix()
        title = frontmatter.get("title")
        if not isinstance(title, str) or not title.strip():
            title = file_path.stem
        return DocumentEntry(
            path=relative,
            title=title.strip(),
            frontmatter=frontmatter,
            updated_at=stat.st_mtime,
            search_blob=_frontmatter_blob(frontmatter),
        )


def _frontmatter_blob(frontmatter: dict[str, Any]) -> str:
    def _flatten(value: Any) -> Iterable[str]:
        if isinstance(value, dict):
            for key, item in value.items():
                yield str(key)
                yield from _flatten(item)
        elif isinstance(value, (list, tuple)):
            for item in value:
                yield from _flatten(item)
        elif value is not None:
            yield str(value)

    return " ".join(_flatten(frontmatter)).lower()


class VaultRetriever:
    """Retrieval collaborator backed by a :class:`VaultIndex`."""

    def __init__(self, index: VaultIndex, *, scope_root: str = "") -> None:
        self._index = index
        self._scope_root = scope_root

    @property
    def index(self) -> VaultIndex:
        return self._index

    async def search(self, query: str, k: int, snippet_length: int) -> list[DocSlice]:
        return await asyncio.to_thread(self._search_sync, query, k, snippet_length)

    def _search_sync(self, query: str, k: int, snippet_length: int) -> list[DocSlice]:
        slices: list[DocSlice] = []
        for entry in self._index.search(query, k, scope_root=self._scope_root):
            snippet: str | None = None
            if snippet_length > 0:
                try:
                    snippet = self._index.read(entry.path)[:snippet_length]
                except (OSError, UnicodeDecodeError, VaultAccessError) as exc:
                    LOGGER.debug("Snippet unavailable for %s: %s", entry.path, exc)
            slices.append(DocSlice(path=entry.path, title=entry.title, snippet=snippet))
        return slices


def scope_root_for(ai_scope: str, team_root: str) -> str:
    return team_root if ai_scope == "team-docs" else ""


__all__ = [
    "DocumentEntry",
    "Retriever",
    "VaultAccessError",
    "VaultIndex",
    "VaultRetriever",
    "is_within_scope",
    "scope_root_for",
    "split_frontmatter",
]
