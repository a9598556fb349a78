"""Tests for planning and memory heuristics."""

from __future__ import annotations

from vaultchat.ai.services.heuristics import should_auto_plan, should_extract_memories


def test_multi_step_requests_trigger_planning() -> None:
    assert should_auto_plan("Can you outline the release?")
    assert should_auto_plan("Please draft RFC for the API")
    assert should_auto_plan("x" * 3_201)
    assert not should_auto_plan("What time is it?")
    assert not should_auto_plan("")


def test_memory_extraction_triggers() -> None:
    assert should_extract_memories("hi", "hello", proposal_count=1)
    assert should_extract_memories("hi", "hello", creation_count=2)
    assert should_extract_memories("We decided to ship weekly", "ok")
    assert should_extract_memories("hi", "The deadline is Friday")
    assert not should_extract_memories("hi", "hello")
