"""Tests for the streamed final-answer extractor."""

from __future__ import annotations

import itertools

import pytest

from vaultchat.ai.orchestration.final_answer import (
    FinalAnswerExtractor,
    StreamPiece,
    TagScanner,
    extract_final_answer,
)

TAGGED = "<finalAnswer>Hello</finalAnswer>"


def _run(chunks: list[str], **kwargs) -> tuple[FinalAnswerExtractor, list[StreamPiece]]:
    extractor = FinalAnswerExtractor(**kwargs)
    pieces: list[StreamPiece] = []
    for chunk in chunks:
        pieces.extend(extractor.feed(chunk))
    pieces.extend(extractor.finish())
    return extractor, pieces


def _split(text: str, cuts: tuple[int, ...]) -> list[str]:
    bounds = [0, *cuts, len(text)]
    return [text[start:end] for start, end in zip(bounds, bounds[1:])]


@pytest.mark.parametrize("parts", [2, 3])
def test_tag_split_across_every_boundary_combination(parts: int) -> None:
    for cuts in itertools.combinations(range(1, len(TAGGED)), parts - 1):
        extractor, pieces = _run(_split(TAGGED, cuts))
        assert extractor.answer == "Hello", cuts
        assert "".join(piece.text for piece in pieces if piece.kind == "answer") == "Hello"


def test_single_character_chunks() -> None:
    extractor, pieces = _run(list(TAGGED))

    assert extractor.answer == "Hello"
    assert all(piece.kind == "answer" for piece in pieces)


def test_text_outside_tags_is_routed_to_thoughts() -> None:
    extractor, pieces = _run(["Looking things up. <final", "Answer>Done</finalAnswer> trailing"])

    assert extractor.answer == "Done"
    thoughts = "".join(piece.text for piece in pieces if piece.kind == "thought")
    assert thoughts == "Looking things up.  trailing"


def test_think_sections_become_reasoning() -> None:
    extractor, pieces = _run(["<thi", "nk>step one</th", "ink><finalAnswer>Hi</finalAnswer>"])

    assert extractor.answer == "Hi"
    assert [piece for piece in pieces if piece.kind == "reasoning"] == [StreamPiece("reasoning", "step one")]


def test_untagged_text_is_promoted_on_finish() -> None:
    extractor, pieces = _run(["Plain ", "reply"])

    assert extractor.answer == "Plain reply"
    assert not extractor.saw_final_answer
    assert pieces[-1] == StreamPiece("answer", "Plain reply")
    assert [piece.kind for piece in pieces[:-1]] == ["thought", "thought"]


def test_promotion_can_be_disabled() -> None:
    extractor, _ = _run(["Plain reply"], promote_untagged=False)

    assert extractor.answer == ""


def test_empty_tags_do_not_trigger_promotion() -> None:
    assert extract_final_answer("notes <finalAnswer></finalAnswer>") == ""


def test_unclosed_tag_releases_held_text_on_finish() -> None:
    assert extract_final_answer("<finalAnswer>Partial answer</final") == "Partial answer</final"


def test_tag_scanner_holds_back_only_possible_prefixes() -> None:
    scanner = TagScanner("<a>", "</a>")

    first = scanner.feed("x<")
    assert [segment.text for segment in first] == ["x"]
    second = scanner.feed("b")
    assert [segment.text for segment in second] == ["<b"]
    assert scanner.state == "before-open"

    with pytest.raises(ValueError):
        TagScanner("", "</a>")
