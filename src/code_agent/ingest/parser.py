"""Reads source files from disk into normalized text records."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from code_agent.ingest.metadata import detect_file_type

logger = logging.getLogger(__name__)

IGNORED_DIRECTORIES = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        ".venv",
        "venv",
        "node_modules",
        "__pycache__",
        ".mypy_cache",
        ".pytest_cache",
        "dist",
        "build",
    }
)


@dataclass(slots=True)
class ParsedSource:
    filename: str
    text: str
    file_type: str


class SourceParser:
    """Decodes UTF-8 source files; binary or undecodable files are skipped."""

    def __init__(
        self,
        *,
        ignored_directories: frozenset[str] = IGNORED_DIRECTORIES,
        max_bytes: int = 2_000_000,
    ) -> None:
        self.ignored_directories = ignored_directories
        self.max_bytes = max_bytes

    def parse(self, path: str | Path, *, filename: str | None = None) -> ParsedSource | None:
        file_path = Path(path)
        raw = file_path.read_bytes()
        if len(raw) > self.max_bytes:
            logger.info("Skipping %s: %d bytes exceeds limit", file_path, len(raw))
            return None
        if b"\x00" in raw:
            logger.info("Skipping binary file %s", file_path)
            return None
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.info("Skipping non-UTF-8 file %s", file_path)
            return None

        name = filename or file_path.name
        return ParsedSource(filename=name, text=text, file_type=detect_file_type(name))

    def parse_text(self, filename: str, text: str) -> ParsedSource:
        return ParsedSource(filename=filename, text=text, file_type=detect_file_type(filename))

    def iter_sources(self, root: str | Path) -> Iterator[ParsedSource]:
        """Yield every readable file under ``root`` (or ``root`` itself).

        Filenames are POSIX paths relative to ``root`` so the same tree
        ingested from different checkouts produces the same chunk keys.
        """

        base = Path(root)
        if not base.exists():
            raise FileNotFoundError(f"No such file or directory: {base}")
        if base.is_file():
            parsed = self.parse(base)
            if parsed is not None:
                yield parsed
            return

        for file_path in sorted(base.rglob("*")):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(base)
            if any(part in self.ignored_directories for part in relative.parts[:-1]):
                continue
            parsed = self.parse(file_path, filename=relative.as_posix())
            if parsed is not None:
                yield parsed
