import pytest
from pydantic import ValidationError

from code_agent.config import ChunkingConfig
from code_agent.ingest.chunker import SlidingWindowChunker


def _make_source(lines: int = 120) -> str:
    return "\n".join(f"const value{i} = compute({i});" for i in range(lines))


def test_windows_cover_text_and_overlap() -> None:
    text = _make_source()
    chunker = SlidingWindowChunker(ChunkingConfig(window_size=300, overlap=60))

    windows = chunker.split(text)

    assert len(windows) >= 2
    assert windows[0].start == 0
    assert windows[-1].end == len(text)
    assert all(len(window.text) <= 300 for window in windows)
    for previous, current in zip(windows, windows[1:]):
        assert current.start == previous.end - 60
        assert previous.text[-60:] == current.text[:60]

    rebuilt = windows[0].text + "".join(window.text[60:] for window in windows[1:])
    assert rebuilt == text


def test_line_numbers_are_one_based_and_ordered() -> None:
    text = "first line\nsecond line\nthird line\n"
    windows = SlidingWindowChunker(ChunkingConfig(window_size=12, overlap=2)).split(text)

    assert windows[0].start_line == 1
    assert windows[0].end_line == 2
    assert windows[-1].end_line == 3
    assert all(window.start_line <= window.end_line for window in windows)


def test_short_and_empty_text() -> None:
    chunker = SlidingWindowChunker(ChunkingConfig(window_size=100, overlap=20))

    assert chunker.split("") == []
    windows = chunker.split("def f():\n    return 1\n")
    assert len(windows) == 1
    assert windows[0].end == len("def f():\n    return 1\n")


def test_overlap_must_be_smaller_than_window() -> None:
    with pytest.raises(ValidationError):
        ChunkingConfig(window_size=100, overlap=100)
