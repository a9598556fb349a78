"""Tests for the context budget manager."""

from __future__ import annotations

import pytest

from tests.helpers import FakeRetriever, FakeSummarizer, conversation
from vaultchat.ai.orchestration.context_manager import ContextBudgetManager, latest_user_text, render_system_augment
from vaultchat.ai.orchestration.types import (
    ContextBuildRequest,
    DocSlice,
    McpOverviewSlice,
    MessageSlice,
    SummarySlice,
    ToolClientInfo,
)
from vaultchat.ai.services.context_policy import ContextPolicy, RetrievalPolicy
from vaultchat.ai.utils.tokens import estimate_messages_tokens


def _policy(**overrides) -> ContextPolicy:
    values = {
        "summarize_over_tokens": 1_000,
        "history_max_messages": 20,
        "retrieval": RetrievalPolicy(enable_vault=False),
        "include_mcp_overview": False,
    }
    values.update(overrides)
    return ContextPolicy(**values)


@pytest.mark.asyncio
async def test_small_history_passes_through_unchanged() -> None:
    history = conversation(6)
    summarizer = FakeSummarizer()
    manager = ContextBudgetManager(summarizer=summarizer)

    result = await manager.build_context(ContextBuildRequest(messages=history, session_id="s1"), _policy())

    assert result.trimmed_messages == history
    assert result.metrics.summarized is False
    assert result.summary_text is None
    assert result.metrics.pruned_tokens == 0
    assert summarizer.calls == []
    assert result.system_augment == ""


@pytest.mark.asyncio
async def test_history_over_threshold_is_summarized_and_windowed() -> None:
    history = conversation(30, size=200)
    summarizer = FakeSummarizer("User asked about onboarding docs")
    manager = ContextBudgetManager(summarizer=summarizer)
    policy = _policy(summarize_over_tokens=500, history_max_messages=8)

    result = await manager.build_context(ContextBuildRequest(messages=history, session_id="s1"), policy)

    assert result.metrics.summarized is True
    assert result.summary_text == "User asked about onboarding docs"
    assert 1 <= len(result.trimmed_messages) <= 8
    assert result.trimmed_messages == history[-len(result.trimmed_messages) :]
    older = history[: len(history) - len(result.trimmed_messages)]
    assert summarizer.calls[0][0] == older
    assert result.metrics.pruned_tokens == estimate_messages_tokens(older)
    assert result.system_augment.startswith("Conversation Summary:\nUser asked about onboarding docs")
    assert isinstance(result.slices[0], SummarySlice)
    assert isinstance(result.slices[-1], MessageSlice)


@pytest.mark.asyncio
async def test_message_count_over_window_triggers_summary() -> None:
    history = conversation(12)
    manager = ContextBudgetManager()
    policy = _policy(history_max_messages=4)

    result = await manager.build_context(ContextBuildRequest(messages=history, session_id="s1"), policy)

    assert result.trimmed_messages == history[-4:]
    assert result.metrics.summarized is True
    assert "User: u0" in (result.summary_text or "")


@pytest.mark.asyncio
async def test_single_oversized_message_is_kept_and_summarized() -> None:
    history = [{"role": "user", "content": "y" * 8_000}]
    manager = ContextBudgetManager(summarizer=FakeSummarizer("big request"))

    result = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1"), _policy(summarize_over_tokens=100)
    )

    assert result.trimmed_messages == history
    assert result.metrics.summarized is True
    assert result.summary_text == "big request"


@pytest.mark.asyncio
async def test_summarizer_failure_is_reported_in_metrics() -> None:
    history = conversation(30, size=200)
    manager = ContextBudgetManager(summarizer=FakeSummarizer(error=RuntimeError("no provider")))

    result = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1"),
        _policy(summarize_over_tokens=500, history_max_messages=8),
    )

    assert result.metrics.summarized is False
    assert result.summary_text is None
    assert len(result.trimmed_messages) <= 8
    assert any(error.startswith("summarizer:") for error in result.metrics.errors)


@pytest.mark.asyncio
async def test_summarizer_returning_none_is_a_soft_failure() -> None:
    manager = ContextBudgetManager(summarizer=FakeSummarizer(summary=None))

    result = await manager.build_context(
        ContextBuildRequest(messages=conversation(10), session_id="s1"), _policy(history_max_messages=2)
    )

    assert result.metrics.summarized is False
    assert result.metrics.errors == ("summarizer: no summary produced",)


@pytest.mark.asyncio
async def test_retrieval_uses_latest_user_message_and_truncates_snippets() -> None:
    retriever = FakeRetriever(
        [
            DocSlice(path="Team/a.md", title="A", snippet="0123456789"),
            DocSlice(path="Team/b.md", title="", snippet=None),
        ]
    )
    manager = ContextBudgetManager(retriever=retriever)
    history = [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "ok"},
        {"role": "user", "content": "  onboarding checklist  "},
    ]
    policy = _policy(retrieval=RetrievalPolicy(enable_vault=True, k=3, snippet_length=4))

    result = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1", team_root="Team"), policy
    )

    assert retriever.queries == [("onboarding checklist", 3, 4)]
    docs = [item for item in result.slices if isinstance(item, DocSlice)]
    assert [(doc.path, doc.title, doc.snippet) for doc in docs] == [
        ("Team/a.md", "A", "0123"),
        ("Team/b.md", "Team/b.md", None),
    ]
    assert result.metrics.retrieval_count == 2
    assert "Relevant Docs" in result.system_augment
    assert "#1 Team/a.md" in result.system_augment


@pytest.mark.asyncio
async def test_team_scope_filters_documents_outside_team_root() -> None:
    retriever = FakeRetriever(
        [
            DocSlice(path="Personal/diary.md", title="Diary"),
            DocSlice(path="Team/Docs/a.md", title="A"),
        ]
    )
    manager = ContextBudgetManager(retriever=retriever)
    history = [{"role": "user", "content": "docs"}]
    policy = _policy(retrieval=RetrievalPolicy(enable_vault=True, k=5))

    scoped = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1", ai_scope="team-docs", team_root="Team"), policy
    )
    wide = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1", ai_scope="vault-wide", team_root="Team"), policy
    )

    assert [s.path for s in scoped.slices if isinstance(s, DocSlice)] == ["Team/Docs/a.md"]
    assert [s.path for s in wide.slices if isinstance(s, DocSlice)] == ["Personal/diary.md", "Team/Docs/a.md"]


@pytest.mark.asyncio
async def test_retrieval_failure_degrades_to_no_docs() -> None:
    manager = ContextBudgetManager(retriever=FakeRetriever(error=OSError("index unavailable")))
    policy = _policy(retrieval=RetrievalPolicy(enable_vault=True, k=3))

    result = await manager.build_context(
        ContextBuildRequest(messages=[{"role": "user", "content": "q"}], session_id="s1"), policy
    )

    assert result.metrics.retrieval_count == 0
    assert result.metrics.errors == ("retrieval: index unavailable",)


@pytest.mark.asyncio
async def test_mcp_overview_lists_selected_clients() -> None:
    clients = [
        ToolClientInfo("jira", "Jira", ("search_issues", "create_issue"), auth_needed=True),
        ToolClientInfo("gh", "GitHub", tuple(f"tool_{i}" for i in range(8))),
    ]
    manager = ContextBudgetManager()
    policy = _policy(include_mcp_overview=True, mcp_tools_per_client=3)
    history = [{"role": "user", "content": "hi"}]

    every = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1", tool_clients=clients), policy
    )
    selected = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1", tool_clients=clients, tool_client_selection=["gh"]),
        policy,
    )
    none = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1", tool_clients=clients, tool_client_selection=[]),
        policy,
    )

    overview = next(item for item in every.slices if isinstance(item, McpOverviewSlice))
    assert [client.client_id for client in overview.clients] == ["jira", "gh"]
    assert overview.clients[1].tools == ("tool_0", "tool_1", "tool_2")
    assert "- Jira [jira] (authorization required): search_issues, create_issue" in every.system_augment
    assert "Jira" not in selected.system_augment
    assert "GitHub [gh]" in selected.system_augment
    assert not any(isinstance(item, McpOverviewSlice) for item in none.slices)


@pytest.mark.asyncio
async def test_slices_follow_priority_order(storage) -> None:
    await storage.append_scratchpad("s1", "- step one")
    await storage.write_memories("s1", [{"content": "Prefers tables"}])
    manager = ContextBudgetManager(
        retriever=FakeRetriever([DocSlice(path="Team/a.md", title="A")]),
        summarizer=FakeSummarizer("older stuff"),
        storage=storage,
    )
    policy = _policy(
        history_max_messages=2,
        include_mcp_overview=True,
        retrieval=RetrievalPolicy(enable_vault=True, k=1),
    )
    request = ContextBuildRequest(
        messages=conversation(5),
        session_id="s1",
        tool_clients=[ToolClientInfo("gh", "GitHub", ("search",))],
        pinned=["Team/pinned.md"],
    )

    result = await manager.build_context(request, policy)

    kinds = [item.type for item in result.slices]
    assert kinds == ["summary", "mcp-overview", "doc", "scratchpad", "memories", "pinned", "messages"]
    augment = result.system_augment
    positions = [
        augment.index("Conversation Summary:"),
        augment.index("MCP Tools Available"),
        augment.index("Relevant Docs"),
        augment.index("- step one"),
        augment.index("Prefers tables"),
        augment.index("Team/pinned.md"),
    ]
    assert positions == sorted(positions)


@pytest.mark.asyncio
async def test_corrupt_memories_file_is_reported_not_raised(storage) -> None:
    path = storage.session_dir("s1") / "memories.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json", encoding="utf-8")
    manager = ContextBudgetManager(storage=storage)

    result = await manager.build_context(
        ContextBuildRequest(messages=[{"role": "user", "content": "hi"}], session_id="s1"), _policy()
    )

    assert any(error.startswith("memories:") for error in result.metrics.errors)


@pytest.mark.asyncio
async def test_max_input_tokens_drops_docs_before_messages() -> None:
    docs = [DocSlice(path=f"Team/{i}.md", title=str(i), snippet="s" * 400) for i in range(3)]
    manager = ContextBudgetManager(retriever=FakeRetriever(docs))
    history = conversation(4, size=40)
    cap = estimate_messages_tokens(history) + 5
    policy = _policy(
        max_input_tokens=cap,
        retrieval=RetrievalPolicy(enable_vault=True, k=3, snippet_length=400),
    )

    result = await manager.build_context(ContextBuildRequest(messages=history, session_id="s1"), policy)

    assert result.metrics.retrieval_count == 0
    assert result.trimmed_messages == history
    assert result.metrics.input_tokens_estimated <= cap


@pytest.mark.asyncio
async def test_max_input_tokens_drops_oldest_messages_but_keeps_latest() -> None:
    history = conversation(6, size=400)
    manager = ContextBudgetManager()
    policy = _policy(summarize_over_tokens=100_000, max_input_tokens=50)

    result = await manager.build_context(ContextBuildRequest(messages=history, session_id="s1"), policy)

    assert result.trimmed_messages == history[-1:]
    assert result.metrics.pruned_tokens == estimate_messages_tokens(history[:-1])


@pytest.mark.asyncio
async def test_context_build_emits_telemetry(event_sink) -> None:
    manager = ContextBudgetManager()

    await manager.build_context(
        ContextBuildRequest(messages=[{"role": "user", "content": "hi"}], session_id="s9", mode="compose"),
        _policy(),
    )

    event = event_sink.tail()[-1]
    assert event["event"] == "context_build"
    assert event["session_id"] == "s9"
    assert event["summarized"] is False


def test_latest_user_text_skips_other_roles() -> None:
    messages = [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "reply"},
        {"role": "tool", "content": "{}"},
    ]
    assert latest_user_text(messages) == "first"
    assert latest_user_text([]) == ""


def test_render_system_augment_orders_summary_before_docs() -> None:
    augment = render_system_augment(
        [DocSlice(path="a.md", title="A"), SummarySlice(summary="S")]
    )
    assert augment.index("Conversation Summary") < augment.index("Relevant Docs")


@pytest.mark.asyncio
async def test_compacted_summary_leaving_the_window_is_carried_forward() -> None:
    history = [
        {"role": "system", "content": "Conversation Summary:\nUser prefers British spelling in the runbooks."},
        {"role": "user", "content": "Draft the deploy page"},
        {"role": "assistant", "content": "Done"},
        {"role": "user", "content": "Now the rollback page"},
    ]
    manager = ContextBudgetManager()

    result = await manager.build_context(
        ContextBuildRequest(messages=history, session_id="s1"),
        _policy(summarize_over_tokens=10_000, history_max_messages=3),
    )

    assert result.trimmed_messages == history[1:]
    assert result.metrics.summarized is True
    assert result.metrics.errors == ()
    assert result.summary_text == "Earlier: User prefers British spelling in the runbooks."
    assert "British spelling" in result.system_augment
