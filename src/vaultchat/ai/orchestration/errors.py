"""Error taxonomy for chat turn orchestration."""

from __future__ import annotations

__all__ = [
    "OrchestrationError",
    "ConfigurationError",
    "ProviderError",
    "ToolResultError",
    "BackgroundTaskError",
    "PersistenceError",
]


class OrchestrationError(RuntimeError):
    """Base class for errors raised by the orchestration core."""


class ConfigurationError(OrchestrationError):
    """No provider, credential, or model could be resolved for the turn."""

    def __init__(self, message: str, *, provider_id: str | None = None, model_id: str | None = None) -> None:
        super().__init__(message)
        self.provider_id = provider_id
        self.model_id = model_id


class ProviderError(OrchestrationError):
    """The model provider failed while streaming or completing a turn.

    ``partial_text`` holds whatever answer text reached the delta callback
    before the failure; delivered deltas are never retracted.
    """

    def __init__(self, message: str, *, partial_text: str = "") -> None:
        super().__init__(message)
        self.partial_text = partial_text


class ToolResultError(OrchestrationError):
    """A tool result reported ``ok=false`` or had an unusable payload."""

    def __init__(self, tool_name: str, reason: str) -> None:
        super().__init__(f"{tool_name}: {reason}")
        self.tool_name = tool_name
        self.reason = reason


class BackgroundTaskError(OrchestrationError):
    """A detached maintenance task (summary, plan, memory) failed."""

    def __init__(self, task_name: str, cause: BaseException | None = None) -> None:
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Background task '{task_name}' failed{detail}")
        self.task_name = task_name
        self.cause = cause


class PersistenceError(OrchestrationError):
    """A session-store write failed."""

    def __init__(self, message: str, *, session_id: str | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id
