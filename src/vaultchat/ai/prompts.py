"""Prompt templates for chat turns and background maintenance calls."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from .orchestration.types import TOOL_ENABLED_MODES, ToolClientInfo

FINAL_ANSWER_OPEN = "<finalAnswer>"
FINAL_ANSWER_CLOSE = "</finalAnswer>"
THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"

FALLBACK_TOOL_OUTPUT_CHARS = 2_000
CONVERSATION_SNIPPET_CHARS = 1_000
SUMMARIZER_HISTORY_MESSAGES = 40
SUMMARY_PREFIX = "Conversation Summary:"


def system_prompt(
    mode: str,
    *,
    team_root: str,
    provider_id: str | None = None,
    tool_clients: Sequence[ToolClientInfo] = (),
) -> str:
    """Return the mode-specific system prompt.

    Tool-enabled modes get the tool workflow (including the ``<think>`` /
    ``<finalAnswer>`` contract); chat mode gets the context-only workflow.
    External tool guidance is appended when any tool client is selected.
    """

    root = team_root or "/"
    if mode in TOOL_ENABLED_MODES:
        workflow = _tool_workflow_section()
        if (provider_id or "").lower() == "ollama":
            workflow += _local_model_section()
    else:
        workflow = _context_only_workflow_section()

    if mode == "compose":
        base = _compose_section(root)
    elif mode == "write":
        base = _write_section(root)
    elif mode == "chat":
        base = _chat_section(root)
    else:
        raise ValueError(f"Unknown mode: {mode}")

    prompt = f"{workflow}\n\n{base}{_code_formatting_section()}"
    if tool_clients:
        prompt += _external_tools_section()
    return prompt


def _compose_section(team_root: str) -> str:
    return (
        "You are a helpful assistant with access to the team document vault and external tools. "
        f"Internal document tools (list_docs, search_docs, read_doc, ...) only cover team documentation within ({team_root}). "
        "Use external tools for web content, code, or files outside the vault. "
        "Be concise and cite documents. Respond in the user's language unless translating."
    )


def _write_section(team_root: str) -> str:
    return (
        "You help with document editing using the most appropriate tools available. "
        f"Internal document tools only cover team docs within ({team_root}). "
        "Always read content first, then use propose_edit or create_doc with the full content. "
        "After tools, provide a brief summary only."
    )


def _chat_section(team_root: str) -> str:
    return (
        f"You are a helpful assistant with knowledge of the internal team docs within ({team_root}). "
        "Answer from the provided context. Be concise and cite documents."
    )


def _tool_workflow_section() -> str:
    return """WORKFLOW:
- ALWAYS start by browsing or searching with tools (list_docs, search_docs) before answering questions about the vault.
- ALWAYS read a document before answering questions about it or editing it. Never guess file contents.
- For edits: read first, then call propose_edit with the COMPLETE updated content.
- For new files: call create_doc with the COMPLETE content.
- Wrap your reasoning in <think></think> tags, then give the user-facing answer inside <finalAnswer></finalAnswer> tags.
- After tools, provide ONLY a brief summary and reference files as [[path/to/file.md|name]].
- Do NOT include file content in responses; the tools handle it.

PLANNING AND MEMORIES:
- The planning scratchpad and stored memories are internal notes. Do not echo them unless asked."""


def _context_only_workflow_section() -> str:
    return (
        "IMPORTANT: Answer based on the provided context and attached files. "
        "Stay within the team documentation scope."
    )


def _local_model_section() -> str:
    return """

LOCAL MODELS (MANDATORY):
- Tool usage is REQUIRED; do not answer from memory.
- Sequence: list_docs/search_docs -> read_doc -> (propose_edit or create_doc if needed) -> answer.
- EXECUTE tools when requested instead of describing them."""


def _code_formatting_section() -> str:
    return """

CODE FORMATTING:
- Wrap code snippets in fenced code blocks with a language tag (```python, ```bash, ```json, ...).
- Never output raw code without fencing."""


def _external_tools_section() -> str:
    return """

EXTERNAL TOOLS:
Prefer external (MCP) tools for web content, code files, and anything outside the team docs folder.
Internal document tools should ONLY be used for team documentation within the configured folder."""


# ----------------------------------------------------------------------
# Context augment blocks
# ----------------------------------------------------------------------


def summary_block(summary: str) -> str:
    return f"{SUMMARY_PREFIX}\n{summary}"


def tool_overview_block(clients: Iterable[ToolClientInfo]) -> str:
    lines = []
    for client in clients:
        tools = ", ".join(client.tools) if client.tools else "(no tools listed)"
        suffix = " (authorization required)" if client.auth_needed else ""
        lines.append(f"- {client.client_name} [{client.client_id}]{suffix}: {tools}")
    return "MCP Tools Available (prefer when superior):\n" + "\n".join(lines)


def docs_block(docs: Sequence[Any]) -> str:
    entries = [
        f"#{index} {doc.path}\nTitle: {doc.title}\nSnippet: {doc.snippet or ''}"
        for index, doc in enumerate(docs, start=1)
    ]
    return "Relevant Docs (keep references only, do not assume content):\n" + "\n\n".join(entries)


def scratchpad_block(text: str) -> str:
    return f"Planning Scratchpad (recent):\n{text}\n\nNOTE: These are internal planning notes for this session."


def memories_block(contents: Sequence[str]) -> str:
    return "Memories:\n" + "\n".join(f"- {content}" for content in contents)


def pinned_block(paths: Sequence[str]) -> str:
    return "Pinned Files:\n" + "\n".join(f"#{index} {path}" for index, path in enumerate(paths, start=1))


# ----------------------------------------------------------------------
# Fallback and background prompts
# ----------------------------------------------------------------------


def fallback_prompt(
    *,
    proposal_count: int,
    creation_count: int,
    citations: Sequence[str],
    tool_outputs: Sequence[tuple[str, str]],
) -> str:
    """Build the trailing system note for the no-tools fallback completion."""

    lines = ["You must now answer directly without tools. Based on:", ""]
    if proposal_count:
        lines.append(f"Proposed {proposal_count} edit(s). User will review diffs.")
    if creation_count:
        lines.append(f"Created {creation_count} new file(s).")
    lines.append("")
    lines.append(
        "Provide a brief natural language summary. Reference files with [[path/to/file.md|filename]]. "
        "NO file content, NO JSON."
    )
    lines.append("")
    lines.append(f"Citations: {', '.join(citations) if citations else '(none)'}")
    outputs = "\n\n".join(
        f"Tool #{index} {name}: {output[:FALLBACK_TOOL_OUTPUT_CHARS]}"
        for index, (name, output) in enumerate(tool_outputs, start=1)
    )
    lines.append(f"Tool outputs: {outputs}")
    return "\n".join(lines)


def summarizer_prompt(target_tokens: int) -> str:
    return (
        "You are a succinct summarizer. Create a compact rolling summary of the prior conversation, "
        "focusing on goals, decisions, constraints, open items, and file references. "
        f"Aim for {target_tokens} tokens or less. Do not include code blocks or long quotes."
    )


PLAN_PROMPT = "Produce 3-5 bullet steps to accomplish the user's request. Only bullets. No preamble."
NEXT_ACTIONS_PROMPT = "List 1-3 immediate next actions as bullet points. No preamble."
MEMORY_EXTRACTION_PROMPT = (
    "From the conversation, propose up to 3 durable memories as a JSON array with fields: "
    "content, type in ['fact','preference','entity'], tags (array of strings). Only output JSON. "
    "Save only long-lived facts, preferences, entities, or decisions useful later. "
    "Ignore transient tool outputs."
)


def conversation_snippet(user_text: str, assistant_text: str) -> str:
    return f"{user_text}\n\nAssistant: {assistant_text[:CONVERSATION_SNIPPET_CHARS]}"


__all__ = [
    "FINAL_ANSWER_OPEN",
    "FINAL_ANSWER_CLOSE",
    "THINK_OPEN",
    "THINK_CLOSE",
    "FALLBACK_TOOL_OUTPUT_CHARS",
    "SUMMARIZER_HISTORY_MESSAGES",
    "SUMMARY_PREFIX",
    "system_prompt",
    "summary_block",
    "tool_overview_block",
    "docs_block",
    "scratchpad_block",
    "memories_block",
    "pinned_block",
    "fallback_prompt",
    "summarizer_prompt",
    "PLAN_PROMPT",
    "NEXT_ACTIONS_PROMPT",
    "MEMORY_EXTRACTION_PROMPT",
    "conversation_snippet",
]
