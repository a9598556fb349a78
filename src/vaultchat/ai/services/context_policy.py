"""Context policy primitives consumed by the context budget manager."""

from __future__ import annotations

from dataclasses import dataclass, field

from ...services.settings import ContextPolicySettings


@dataclass(slots=True, frozen=True)
class RetrievalPolicy:
    """Bounds for document retrieval performed while building context."""

    enable_vault: bool = True
    k: int = 5
    snippet_length: int = 500

    def as_payload(self) -> dict[str, object]:
        return {
            "enableVault": self.enable_vault,
            "k": self.k,
            "snippetLength": self.snippet_length,
        }


@dataclass(slots=True, frozen=True)
class ContextPolicy:
    """Immutable per-build policy deciding what enters a model call."""

    summarize_over_tokens: int
    history_max_messages: int
    retrieval: RetrievalPolicy = field(default_factory=RetrievalPolicy)
    include_mcp_overview: bool = True
    max_input_tokens: int | None = None
    mcp_tools_per_client: int = 5
    summary_target_tokens: int = 400

    def __post_init__(self) -> None:
        if self.history_max_messages < 1:
            raise ValueError("history_max_messages must be at least 1")
        if self.summarize_over_tokens < 0:
            raise ValueError("summarize_over_tokens must be non-negative")
        if self.max_input_tokens is not None and self.max_input_tokens < 1:
            raise ValueError("max_input_tokens must be positive when set")

    @classmethod
    def from_settings(cls, settings: ContextPolicySettings | None) -> "ContextPolicy":
        policy_settings = settings or ContextPolicySettings()
        max_input = policy_settings.max_input_tokens
        return cls(
            summarize_over_tokens=max(0, int(policy_settings.summarize_over_tokens)),
            history_max_messages=max(1, int(policy_settings.history_max_messages)),
            retrieval=RetrievalPolicy(
                enable_vault=bool(policy_settings.retrieval_enabled),
                k=max(0, int(policy_settings.retrieval_k)),
                snippet_length=max(0, int(policy_settings.snippet_length)),
            ),
            include_mcp_overview=bool(policy_settings.include_mcp_overview),
            max_input_tokens=int(max_input) if max_input else None,
            mcp_tools_per_client=max(1, int(policy_settings.mcp_tools_per_client)),
            summary_target_tokens=max(50, int(policy_settings.summary_target_tokens)),
        )

    def as_payload(self) -> dict[str, object]:
        """Return a telemetry-friendly dictionary for this policy."""

        return {
            "maxInputTokens": self.max_input_tokens,
            "summarizeOverTokens": self.summarize_over_tokens,
            "historyMaxMessages": self.history_max_messages,
            "retrieval": self.retrieval.as_payload(),
            "includeMCPOverview": self.include_mcp_overview,
        }


__all__ = ["ContextPolicy", "RetrievalPolicy"]
