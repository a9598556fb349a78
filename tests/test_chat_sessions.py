"""Tests for persisted chat history."""

from __future__ import annotations

import pytest

from vaultchat.services.chat_sessions import ChatSessionStore


@pytest.mark.asyncio
async def test_history_round_trip_and_append(storage) -> None:
    store = ChatSessionStore(storage)

    assert await store.load("s1") == []
    await store.save("s1", [{"role": "user", "content": "hi"}])
    history = await store.append("s1", {"role": "assistant", "content": "hello"})

    assert history == [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]
    assert await store.load("s1") == history


@pytest.mark.asyncio
async def test_compact_replaces_history_with_summary_and_recent(storage) -> None:
    store = ChatSessionStore(storage)
    await store.save("s1", [{"role": "user", "content": str(index)} for index in range(10)])

    compacted = await store.compact("s1", " Older talk ", [{"role": "user", "content": "9"}])

    assert compacted == [
        {"role": "system", "content": "Conversation Summary:\nOlder talk"},
        {"role": "user", "content": "9"},
    ]
    assert await store.load("s1") == compacted


@pytest.mark.asyncio
async def test_corrupt_history_loads_as_empty(storage) -> None:
    store = ChatSessionStore(storage)
    path = storage.session_dir("s1") / "history.json"
    path.parent.mkdir(parents=True)
    path.write_text("{broken", encoding="utf-8")

    assert await store.load("s1") == []

    path.write_text('[{"role": "user", "content": "ok"}, {"content": "no role"}, 3]', encoding="utf-8")
    assert await store.load("s1") == [{"role": "user", "content": "ok"}]
