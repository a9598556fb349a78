"""Atomic text IO helpers used by the session stores."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

__all__ = ["read_text", "write_text", "normalize_vault_path"]


def read_text(path: Path | str, *, encoding: str = "utf-8") -> str:
    """Read a text file, stripping a UTF-8 BOM and normalizing newlines."""

    text = Path(path).read_text(encoding=encoding)
    if text.startswith("\ufeff"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n")


def write_text(
    path: Path | str,
    content: str,
    *,
    encoding: str = "utf-8",
    atomic: bool = True,
) -> Path:
    """Write text to disk, replacing the target atomically by default."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    if not atomic:
        with target.open("w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        return target

    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - cleanup path
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
    return target


def normalize_vault_path(path: str) -> str:
    """Return a vault-relative path with forward slashes and no leading ``./`` or ``/``."""

    cleaned = (path or "").strip().replace("\\", "/")
    while cleaned.startswith("./"):
        cleaned = cleaned[2:]
    cleaned = cleaned.lstrip("/")
    while "//" in cleaned:
        cleaned = cleaned.replace("//", "/")
    return cleaned
