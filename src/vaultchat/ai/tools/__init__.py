"""Tool specs, the tool registry, and the built-in vault document tools."""

from .registry import InMemoryToolRegistry, ToolRegistry, ToolSpec, merge_tool_sets

__all__ = ["InMemoryToolRegistry", "ToolRegistry", "ToolSpec", "merge_tool_sets"]
