"""Tests for per-session scratchpad, summary, and memory persistence."""

from __future__ import annotations

import json

import pytest

from vaultchat.ai.orchestration.errors import PersistenceError
from vaultchat.services.context_storage import SCRATCHPAD_TEMPLATE, ContextStorage, replace_section


def test_replace_section_rewrites_only_the_named_body() -> None:
    document = "# Scratchpad\n\n## Goals\n- ship\n\n## Plan\n- old\n\n## Next\n- later\n"

    updated = replace_section(document, "Plan", "- new step")

    assert "## Plan\n- new step\n" in updated
    assert "- old" not in updated
    assert "## Goals\n- ship" in updated
    assert updated.index("## Plan") < updated.index("## Next")


def test_replace_section_appends_missing_section() -> None:
    updated = replace_section("# Scratchpad\n", "Decisions", "- use tables")

    assert updated == "# Scratchpad\n\n## Decisions\n- use tables\n"


def test_session_dir_sanitizes_identifiers(tmp_path) -> None:
    storage = ContextStorage(tmp_path)

    assert storage.session_dir("team/../alpha").name == "team_.._alpha"
    with pytest.raises(PersistenceError):
        storage.session_dir("  ")


@pytest.mark.asyncio
async def test_section_update_starts_from_template(storage: ContextStorage) -> None:
    await storage.update_scratchpad_section("s1", "Plan", "- gather docs\n- draft")

    text = await storage.read_scratchpad("s1")

    assert text is not None
    assert text.startswith("# Scratchpad")
    for section in ("Goals", "Plan", "Progress", "Next", "Decisions"):
        assert f"## {section}" in text
    assert "## Plan\n- gather docs\n- draft\n" in text


@pytest.mark.asyncio
async def test_append_adds_timestamped_entries(storage: ContextStorage) -> None:
    await storage.ensure_scratchpad_template("s1")
    await storage.append_scratchpad("s1", "first note")
    await storage.append_scratchpad("s1", "second note")

    text = await storage.read_scratchpad("s1") or ""

    assert text.startswith(SCRATCHPAD_TEMPLATE.rstrip())
    assert text.count("## 2024-01-01T00:00:00.000Z") == 2
    assert text.index("first note") < text.index("second note")


@pytest.mark.asyncio
async def test_read_recent_returns_header_and_last_entries(storage: ContextStorage) -> None:
    for note in ("one", "two", "three"):
        await storage.append_scratchpad("s1", note)

    recent = await storage.read_scratchpad_recent("s1", 2) or ""

    assert recent.startswith("# Scratchpad")
    assert "one" not in recent
    assert "two" in recent and "three" in recent


@pytest.mark.asyncio
async def test_summary_round_trip_and_note_deletion(storage: ContextStorage) -> None:
    await storage.write_summary("s1", "  Goals: docs  ")
    await storage.append_scratchpad("s1", "note")
    await storage.write_memories("s1", [{"content": "keep me"}])

    assert await storage.read_summary("s1") == "# Conversation Summary\n\nGoals: docs\n"

    await storage.delete_session_notes("s1")

    assert await storage.read_summary("s1") is None
    assert await storage.read_scratchpad("s1") is None
    assert await storage.read_memories("s1") == [{"content": "keep me"}]


@pytest.mark.asyncio
async def test_memories_are_pretty_printed_and_validated(storage: ContextStorage) -> None:
    await storage.write_memories("s1", [{"id": "m1", "content": "Pref A"}])
    path = storage.session_dir("s1") / "memories.json"

    assert json.loads(path.read_text(encoding="utf-8")) == [{"id": "m1", "content": "Pref A"}]
    assert "\n  " in path.read_text(encoding="utf-8")

    path.write_text('{"content": "not a list"}', encoding="utf-8")
    with pytest.raises(PersistenceError):
        await storage.read_memories("s1")


@pytest.mark.asyncio
async def test_missing_files_read_as_empty(storage: ContextStorage) -> None:
    assert await storage.read_scratchpad("nobody") is None
    assert await storage.read_scratchpad_recent("nobody") is None
    assert await storage.read_memories("nobody") == []
