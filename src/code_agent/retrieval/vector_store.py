"""Vector index interfaces and concrete adapters.

Every chunk is keyed by ``(filename, window_index, embedding_model)``. Search
only ever compares a query against chunks of the same embedding model; vectors
from different models live side by side but never meet in one ranking.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Collection, Iterable, Sequence
from contextlib import closing
from pathlib import Path
from typing import Protocol

from code_agent.ingest.embedder import cosine_similarity
from code_agent.types import Chunk, SearchOutcome, SearchResult

logger = logging.getLogger(__name__)


class DimensionMismatchError(ValueError):
    """A chunk's vector length disagrees with its model's stored dimension."""


class VectorIndex(Protocol):
    """Chunk store contract used by ingestion and retrieval."""

    def put(self, chunk: Chunk) -> None:
        """Insert a chunk, replacing any chunk with the same key."""

    def get_all(self, model: str | None = None) -> list[Chunk]:
        """All chunks in insertion order, optionally for one model."""

    def search(self, query_embedding: list[float], top_k: int, model: str) -> SearchOutcome:
        """Cosine search restricted to ``model``."""

    def models(self) -> list[str]:
        """Embedding models that currently have chunks."""

    def filenames(self, model: str | None = None) -> list[str]:
        """Distinct filenames, in first-insertion order."""

    def dimension(self, model: str) -> int | None:
        """Stored vector length for ``model``; ``None`` if it has no chunks."""

    def remove_file(self, filename: str, model: str) -> int:
        """Delete every chunk of ``filename`` under ``model``; return the count."""

    def replace(self, model: str, filenames: Collection[str], chunks: Sequence[Chunk]) -> int:
        """Swap every chunk of ``filenames`` under ``model`` for ``chunks``.

        Dimensions are checked before anything is deleted; on
        ``DimensionMismatchError`` the index is unchanged. Returns the number
        of chunks removed.
        """

    def count(self, model: str | None = None) -> int:
        """Number of stored chunks, optionally for one model."""


class InMemoryVectorIndex:
    """Process-local index used by tests and short-lived sessions."""

    def __init__(self) -> None:
        self._chunks: dict[tuple[str, int, str], Chunk] = {}
        self._lock = threading.Lock()

    def put(self, chunk: Chunk) -> None:
        with self._lock:
            expected = self._dimension_locked(chunk.embedding_model, skip=chunk.key)
            _check_dimension(chunk, expected)
            self._chunks[chunk.key] = chunk

    def get_all(self, model: str | None = None) -> list[Chunk]:
        with self._lock:
            chunks = list(self._chunks.values())
        return [chunk for chunk in chunks if model is None or chunk.embedding_model == model]

    def search(self, query_embedding: list[float], top_k: int, model: str) -> SearchOutcome:
        return _rank(self.get_all(model), query_embedding, top_k, model)

    def models(self) -> list[str]:
        return _distinct(chunk.embedding_model for chunk in self.get_all())

    def filenames(self, model: str | None = None) -> list[str]:
        return _distinct(chunk.filename for chunk in self.get_all(model))

    def dimension(self, model: str) -> int | None:
        with self._lock:
            return self._dimension_locked(model)

    def remove_file(self, filename: str, model: str) -> int:
        with self._lock:
            stale = [
                key
                for key in self._chunks
                if key[0] == filename and key[2] == model
            ]
            for key in stale:
                del self._chunks[key]
        return len(stale)

    def replace(self, model: str, filenames: Collection[str], chunks: Sequence[Chunk]) -> int:
        names = set(filenames)
        with self._lock:
            expected = next(
                (
                    len(chunk.embedding)
                    for key, chunk in self._chunks.items()
                    if key[2] == model and key[0] not in names
                ),
                None,
            )
            _check_replacement(chunks, model, names, expected)
            stale = [key for key in self._chunks if key[2] == model and key[0] in names]
            for key in stale:
                del self._chunks[key]
            for chunk in chunks:
                self._chunks[chunk.key] = chunk
        return len(stale)

    def count(self, model: str | None = None) -> int:
        return len(self.get_all(model))

    def _dimension_locked(
        self, model: str, skip: tuple[str, int, str] | None = None
    ) -> int | None:
        for key, chunk in self._chunks.items():
            if chunk.embedding_model == model and key != skip:
                return len(chunk.embedding)
        return None


# Ordered, additive migrations. Never edit an applied entry; append a new one.
_MIGRATIONS: list[tuple[int, tuple[str, ...]]] = [
    (
        1,
        (
            """
            CREATE TABLE IF NOT EXISTS chunks (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                filename TEXT NOT NULL,
                file_type TEXT NOT NULL,
                content TEXT NOT NULL,
                window_index INTEGER NOT NULL,
                window_start INTEGER NOT NULL,
                window_end INTEGER NOT NULL,
                start_line INTEGER NOT NULL,
                end_line INTEGER NOT NULL,
                embedding_model TEXT NOT NULL,
                embedding TEXT NOT NULL,
                dimension INTEGER NOT NULL,
                identifiers TEXT NOT NULL,
                classes TEXT NOT NULL,
                keywords TEXT NOT NULL,
                embedding_fallback INTEGER NOT NULL DEFAULT 0,
                UNIQUE (filename, window_index, embedding_model)
            )
            """,
        ),
    ),
    (2, ("CREATE INDEX IF NOT EXISTS idx_chunks_model ON chunks(embedding_model)",)),
    (
        3,
        (
            "CREATE INDEX IF NOT EXISTS idx_chunks_filename "
            "ON chunks(filename, embedding_model)",
        ),
    ),
]

SCHEMA_VERSION = _MIGRATIONS[-1][0]

_COLUMNS = (
    "filename, file_type, content, window_index, window_start, window_end, "
    "start_line, end_line, embedding_model, embedding, dimension, identifiers, "
    "classes, keywords, embedding_fallback"
)

_UPSERT = (
    f"INSERT INTO chunks ({_COLUMNS}) VALUES "
    "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT(filename, window_index, embedding_model) DO UPDATE SET "
    "file_type=excluded.file_type, content=excluded.content, "
    "window_start=excluded.window_start, window_end=excluded.window_end, "
    "start_line=excluded.start_line, end_line=excluded.end_line, "
    "embedding=excluded.embedding, dimension=excluded.dimension, "
    "identifiers=excluded.identifiers, classes=excluded.classes, "
    "keywords=excluded.keywords, embedding_fallback=excluded.embedding_fallback"
)


class SqliteVectorIndex:
    """SQLite-backed persistent index with versioned, additive migrations.

    Opening an existing database only applies migrations newer than its
    recorded ``schema_version``; stored vectors are never recomputed.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._migrate()

    def schema_version(self) -> int:
        with closing(self._connect()) as conn:
            return _current_version(conn)

    def put(self, chunk: Chunk) -> None:
        with closing(self._connect()) as conn, conn:
            row = conn.execute(
                "SELECT dimension FROM chunks WHERE embedding_model = ? "
                "AND NOT (filename = ? AND window_index = ?) LIMIT 1",
                (chunk.embedding_model, chunk.filename, chunk.window_index),
            ).fetchone()
            _check_dimension(chunk, row[0] if row else None)
            conn.execute(_UPSERT, _to_row(chunk))

    def get_all(self, model: str | None = None) -> list[Chunk]:
        query = f"SELECT {_COLUMNS} FROM chunks"
        params: tuple[str, ...] = ()
        if model is not None:
            query += " WHERE embedding_model = ?"
            params = (model,)
        with closing(self._connect()) as conn:
            rows = conn.execute(query + " ORDER BY seq", params).fetchall()
        return [_from_row(row) for row in rows]

    def search(self, query_embedding: list[float], top_k: int, model: str) -> SearchOutcome:
        return _rank(self.get_all(model), query_embedding, top_k, model)

    def models(self) -> list[str]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT embedding_model FROM chunks GROUP BY embedding_model ORDER BY MIN(seq)"
            ).fetchall()
        return [row[0] for row in rows]

    def filenames(self, model: str | None = None) -> list[str]:
        query = "SELECT filename FROM chunks"
        params: tuple[str, ...] = ()
        if model is not None:
            query += " WHERE embedding_model = ?"
            params = (model,)
        with closing(self._connect()) as conn:
            rows = conn.execute(
                query + " GROUP BY filename ORDER BY MIN(seq)", params
            ).fetchall()
        return [row[0] for row in rows]

    def dimension(self, model: str) -> int | None:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT dimension FROM chunks WHERE embedding_model = ? LIMIT 1", (model,)
            ).fetchone()
        return row[0] if row else None

    def remove_file(self, filename: str, model: str) -> int:
        with closing(self._connect()) as conn, conn:
            cursor = conn.execute(
                "DELETE FROM chunks WHERE filename = ? AND embedding_model = ?",
                (filename, model),
            )
            return cursor.rowcount

    def replace(self, model: str, filenames: Collection[str], chunks: Sequence[Chunk]) -> int:
        names = sorted(set(filenames))
        marks = ", ".join("?" for _ in names)
        with closing(self._connect()) as conn, conn:
            row = conn.execute(
                "SELECT dimension FROM chunks WHERE embedding_model = ? "
                f"AND filename NOT IN ({marks}) LIMIT 1",
                (model, *names),
            ).fetchone()
            _check_replacement(chunks, model, set(names), row[0] if row else None)
            cursor = conn.execute(
                f"DELETE FROM chunks WHERE embedding_model = ? AND filename IN ({marks})",
                (model, *names),
            )
            conn.executemany(_UPSERT, [_to_row(chunk) for chunk in chunks])
            return cursor.rowcount

    def count(self, model: str | None = None) -> int:
        query = "SELECT COUNT(*) FROM chunks"
        params: tuple[str, ...] = ()
        if model is not None:
            query += " WHERE embedding_model = ?"
            params = (model,)
        with closing(self._connect()) as conn:
            return int(conn.execute(query, params).fetchone()[0])

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _migrate(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            with conn:
                conn.execute(
                    "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)"
                )
            current = _current_version(conn)
            for version, statements in _MIGRATIONS:
                if version <= current:
                    continue
                with conn:
                    for statement in statements:
                        conn.execute(statement)
                    conn.execute("DELETE FROM schema_version")
                    conn.execute("INSERT INTO schema_version(version) VALUES (?)", (version,))
                logger.info("Applied index schema migration v%d to %s", version, self.path)


def _current_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return int(row[0]) if row and row[0] is not None else 0


def _rank(
    chunks: list[Chunk], query_embedding: list[float], top_k: int, model: str
) -> SearchOutcome:
    if not chunks:
        logger.warning("No compatible index for embedding model %s", model)
        return SearchOutcome(results=[], compatible=False, model=model)

    scored = [
        SearchResult(
            chunk=chunk,
            similarity=cosine_similarity(query_embedding, chunk.embedding),
            position=position,
        )
        for position, chunk in enumerate(chunks)
    ]
    ranked = sorted(scored, key=lambda item: (-item.similarity, item.position))
    return SearchOutcome(results=ranked[:top_k], compatible=True, model=model)


def _check_dimension(chunk: Chunk, expected: int | None) -> None:
    if expected is not None and len(chunk.embedding) != expected:
        raise DimensionMismatchError(
            f"{chunk.id}: embedding has {len(chunk.embedding)} dimensions, "
            f"model {chunk.embedding_model} stores {expected}"
        )


def _check_replacement(
    chunks: Sequence[Chunk], model: str, filenames: set[str], expected: int | None
) -> None:
    for chunk in chunks:
        if chunk.embedding_model != model or chunk.filename not in filenames:
            raise ValueError(f"{chunk.id} is outside the replaced files of model {model}")
        _check_dimension(chunk, expected)
        if expected is None:
            expected = len(chunk.embedding)


def _distinct(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return list(seen)


def _to_row(chunk: Chunk) -> tuple[object, ...]:
    return (
        chunk.filename,
        chunk.file_type,
        chunk.content,
        chunk.window_index,
        chunk.window_start,
        chunk.window_end,
        chunk.start_line,
        chunk.end_line,
        chunk.embedding_model,
        json.dumps(list(chunk.embedding)),
        len(chunk.embedding),
        json.dumps(sorted(chunk.extracted_identifiers)),
        json.dumps(sorted(chunk.extracted_classes)),
        json.dumps(sorted(chunk.extracted_keywords)),
        int(chunk.embedding_fallback),
    )


def _from_row(row: sqlite3.Row) -> Chunk:
    return Chunk(
        filename=row["filename"],
        file_type=row["file_type"],
        content=row["content"],
        window_index=row["window_index"],
        window_start=row["window_start"],
        window_end=row["window_end"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        embedding_model=row["embedding_model"],
        embedding=tuple(json.loads(row["embedding"])),
        extracted_identifiers=frozenset(json.loads(row["identifiers"])),
        extracted_classes=frozenset(json.loads(row["classes"])),
        extracted_keywords=frozenset(json.loads(row["keywords"])),
        embedding_fallback=bool(row["embedding_fallback"]),
    )
