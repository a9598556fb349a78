"""Tests for system prompts and context augment blocks."""

from __future__ import annotations

import pytest

from vaultchat.ai import prompts
from vaultchat.ai.orchestration.types import DocSlice, ToolClientInfo


def test_tool_modes_get_the_tagged_answer_contract() -> None:
    compose = prompts.system_prompt("compose", team_root="Team")
    chat = prompts.system_prompt("chat", team_root="Team")

    assert "<finalAnswer></finalAnswer>" in compose
    assert "(Team)" in compose
    assert "<finalAnswer>" not in chat
    assert "IMPORTANT: Answer based on the provided context" in chat


def test_local_models_and_external_tools_add_sections() -> None:
    local = prompts.system_prompt("write", team_root="", provider_id="ollama")
    remote = prompts.system_prompt("write", team_root="", provider_id="openai")
    with_clients = prompts.system_prompt("compose", team_root="Team", tool_clients=[ToolClientInfo("web", "Web")])

    assert "LOCAL MODELS (MANDATORY)" in local
    assert "LOCAL MODELS" not in remote
    assert "(/)" in local
    assert "EXTERNAL TOOLS:" in with_clients
    assert "EXTERNAL TOOLS:" not in prompts.system_prompt("compose", team_root="Team")


def test_unknown_mode_raises() -> None:
    with pytest.raises(ValueError):
        prompts.system_prompt("review", team_root="Team")


def test_augment_blocks() -> None:
    clients = [ToolClientInfo("web", "Web", ("fetch", "search"), auth_needed=True), ToolClientInfo("db", "DB")]

    assert prompts.summary_block("Goals") == "Conversation Summary:\nGoals"
    assert prompts.tool_overview_block(clients) == (
        "MCP Tools Available (prefer when superior):\n"
        "- Web [web] (authorization required): fetch, search\n"
        "- DB [db]: (no tools listed)"
    )
    assert prompts.docs_block([DocSlice(path="a.md", title="A", snippet=None)]) == (
        "Relevant Docs (keep references only, do not assume content):\n#1 a.md\nTitle: A\nSnippet: "
    )
    assert prompts.memories_block(["one", "two"]) == "Memories:\n- one\n- two"
    assert prompts.pinned_block(["x.md", "y.md"]) == "Pinned Files:\n#1 x.md\n#2 y.md"
    assert prompts.scratchpad_block("notes").startswith("Planning Scratchpad (recent):\nnotes")


def test_fallback_prompt_lists_activity_and_clips_outputs() -> None:
    note = prompts.fallback_prompt(
        proposal_count=2,
        creation_count=0,
        citations=["a.md"],
        tool_outputs=[("search_docs", "x" * 5_000)],
    )

    assert "Proposed 2 edit(s)." in note
    assert "Created" not in note
    assert "Citations: a.md" in note
    assert "Tool #1 search_docs: " + "x" * prompts.FALLBACK_TOOL_OUTPUT_CHARS in note
    assert "x" * (prompts.FALLBACK_TOOL_OUTPUT_CHARS + 1) not in note


def test_conversation_snippet_clips_assistant_text() -> None:
    snippet = prompts.conversation_snippet("question", "a" * 2_000)

    assert snippet.startswith("question\n\nAssistant: ")
    assert snippet.endswith("a" * 1_000)
    assert len(snippet) == len("question\n\nAssistant: ") + 1_000
