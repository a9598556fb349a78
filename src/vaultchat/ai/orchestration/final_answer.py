"""Incremental extraction of tagged final answers from a chunked text stream."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from ..prompts import FINAL_ANSWER_CLOSE, FINAL_ANSWER_OPEN, THINK_CLOSE, THINK_OPEN

ScannerState = Literal["before-open", "inside", "after-close"]
PieceKind = Literal["answer", "thought", "reasoning"]


@dataclass(slots=True, frozen=True)
class Segment:
    inside: bool
    text: str


@dataclass(slots=True, frozen=True)
class StreamPiece:
    """A routed fragment: ``answer`` goes to the delta callback, the rest to thoughts."""

    kind: PieceKind
    text: str


def _partial_suffix(buffer: str, tag: str) -> int:
    """Length of the longest suffix of *buffer* that is a proper prefix of *tag*."""

    for size in range(min(len(buffer), len(tag) - 1), 0, -1):
        if tag.startswith(buffer[-size:]):
            return size
    return 0


class TagScanner:
    """Recognizes an open/close delimiter pair across arbitrary chunk boundaries.

    The scanner moves ``before-open -> inside -> after-close``; a later open
    tag re-enters ``inside``. At most ``len(tag) - 1`` characters are held
    back between calls while they could still be the start of a tag.
    """

    def __init__(self, open_tag: str, close_tag: str) -> None:
        if not open_tag or not close_tag:
            raise ValueError("Both delimiters are required")
        self._open = open_tag
        self._close = close_tag
        self._state: ScannerState = "before-open"
        self._buffer = ""
        self._opened = False

    @property
    def state(self) -> ScannerState:
        return self._state

    @property
    def opened(self) -> bool:
        """Whether the open tag has been seen at least once."""

        return self._opened

    def feed(self, chunk: str) -> list[Segment]:
        if not chunk:
            return []
        self._buffer += chunk
        segments: list[Segment] = []
        while True:
            inside = self._state == "inside"
            tag = self._close if inside else self._open
            index = self._buffer.find(tag)
            if index >= 0:
                self._emit(segments, inside, self._buffer[:index])
                self._buffer = self._buffer[index + len(tag) :]
                if inside:
                    self._state = "after-close"
                else:
                    self._state = "inside"
                    self._opened = True
                continue
            keep = _partial_suffix(self._buffer, tag)
            self._emit(segments, inside, self._buffer[: len(self._buffer) - keep])
            self._buffer = self._buffer[len(self._buffer) - keep :]
            return segments

    def flush(self) -> list[Segment]:
        """Release any held-back text as plain content of the current state."""

        segments: list[Segment] = []
        self._emit(segments, self._state == "inside", self._buffer)
        self._buffer = ""
        return segments

    @staticmethod
    def _emit(segments: list[Segment], inside: bool, text: str) -> None:
        if not text:
            return
        if segments and segments[-1].inside == inside:
            segments[-1] = Segment(inside, segments[-1].text + text)
        else:
            segments.append(Segment(inside, text))


class FinalAnswerExtractor:
    """Routes streamed model text into answer, reasoning, and thought pieces.

    ``<think>`` sections become ``reasoning``; text inside ``<finalAnswer>``
    becomes ``answer``; any other text becomes ``thought``. When
    ``promote_untagged`` is set and no ``<finalAnswer>`` tag ever appears, the
    untagged text is returned as the answer by :meth:`finish`.
    """

    def __init__(self, *, promote_untagged: bool = True) -> None:
        self._think = TagScanner(THINK_OPEN, THINK_CLOSE)
        self._final = TagScanner(FINAL_ANSWER_OPEN, FINAL_ANSWER_CLOSE)
        self._promote_untagged = promote_untagged
        self._answer: list[str] = []
        self._untagged: list[str] = []

    @property
    def answer(self) -> str:
        return "".join(self._answer)

    @property
    def saw_final_answer(self) -> bool:
        return self._final.opened

    def feed(self, chunk: str) -> list[StreamPiece]:
        return self._route(self._think.feed(chunk))

    def finish(self) -> list[StreamPiece]:
        pieces = self._route(self._think.flush())
        pieces.extend(self._route_visible(self._final.flush()))
        if self._promote_untagged and not self._final.opened:
            promoted = "".join(self._untagged).strip()
            if promoted:
                self._answer.append(promoted)
                pieces.append(StreamPiece("answer", promoted))
        return pieces

    def _route(self, segments: list[Segment]) -> list[StreamPiece]:
        pieces: list[StreamPiece] = []
        for segment in segments:
            if segment.inside:
                pieces.append(StreamPiece("reasoning", segment.text))
            else:
                pieces.extend(self._route_visible(self._final.feed(segment.text)))
        return pieces

    def _route_visible(self, segments: list[Segment]) -> list[StreamPiece]:
        pieces: list[StreamPiece] = []
        for segment in segments:
            if segment.inside:
                self._answer.append(segment.text)
                pieces.append(StreamPiece("answer", segment.text))
            else:
                self._untagged.append(segment.text)
                pieces.append(StreamPiece("thought", segment.text))
        return pieces


def extract_final_answer(text: str, *, promote_untagged: bool = True) -> str:
    """Run *text* through a fresh extractor and return the answer."""

    extractor = FinalAnswerExtractor(promote_untagged=promote_untagged)
    extractor.feed(text)
    extractor.finish()
    return extractor.answer


__all__ = [
    "TagScanner",
    "Segment",
    "StreamPiece",
    "FinalAnswerExtractor",
    "extract_final_answer",
]
