"""Character sliding-window chunking."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass

from code_agent.config import ChunkingConfig


@dataclass(frozen=True, slots=True)
class TextWindow:
    index: int
    start: int
    end: int
    start_line: int
    end_line: int
    text: str


class SlidingWindowChunker:
    """Splits raw text into fixed-size, overlapping character windows.

    Windows advance by ``window_size - overlap`` characters. The stream is
    treated as plain characters, not lines, so a window may begin or end in
    the middle of a line; line numbers are derived afterwards from offsets.
    The last window always ends exactly at ``len(text)``.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def split(self, text: str) -> list[TextWindow]:
        if not text:
            return []

        size = self.config.window_size
        overlap = self.config.overlap
        line_starts = _line_starts(text)
        windows: list[TextWindow] = []
        start = 0

        while start < len(text):
            end = min(start + size, len(text))
            windows.append(
                TextWindow(
                    index=len(windows),
                    start=start,
                    end=end,
                    start_line=_line_of(line_starts, start),
                    end_line=_line_of(line_starts, max(start, end - 1)),
                    text=text[start:end],
                )
            )
            if end == len(text):
                break
            start = end - overlap

        return windows


def _line_starts(text: str) -> list[int]:
    starts = [0]
    for offset, char in enumerate(text):
        if char == "\n":
            starts.append(offset + 1)
    return starts


def _line_of(line_starts: list[int], offset: int) -> int:
    """1-based line number containing character ``offset``."""
    return bisect_right(line_starts, offset)
