"""End-to-end ingest pipeline: parse -> window -> extract -> embed -> put."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path

from code_agent.config import EmbeddingConfig
from code_agent.ingest.chunker import SlidingWindowChunker
from code_agent.ingest.embedder import (
    Embedder,
    EmbeddingResult,
    fallback_embedding,
    fit_fallback,
)
from code_agent.ingest.metadata import MetadataExtractor
from code_agent.ingest.parser import ParsedSource, SourceParser
from code_agent.retrieval.vector_store import DimensionMismatchError, VectorIndex
from code_agent.types import Chunk

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IngestReport:
    filename: str
    model: str
    chunk_count: int = 0
    fallback_count: int = 0
    removed_count: int = 0
    success: bool = True
    error: str | None = None


class IngestPipeline:
    """Coordinates parser, chunker, extractor, embedder and index.

    Ingestion is keyed by embedding model: re-ingesting a file under the same
    model swaps its previous windows for the new ones in one step, while the
    same file under another model is stored alongside and never compared
    against it. A rejected batch leaves the stored windows untouched.
    """

    def __init__(
        self,
        *,
        parser: SourceParser,
        chunker: SlidingWindowChunker,
        extractor: MetadataExtractor,
        embedder: Embedder,
        index: VectorIndex,
        config: EmbeddingConfig | None = None,
    ) -> None:
        self.parser = parser
        self.chunker = chunker
        self.extractor = extractor
        self.embedder = embedder
        self.index = index
        self.config = config or EmbeddingConfig()

    def ingest_text(self, filename: str, text: str, model: str) -> IngestReport:
        return self._ingest(self.parser.parse_text(filename, text), model)

    def ingest_path(self, path: str | Path, model: str) -> list[IngestReport]:
        """Ingest one file or every readable file below a directory."""

        reports: list[IngestReport] = []
        for source in self.parser.iter_sources(path):
            try:
                reports.append(self._ingest(source, model))
            except DimensionMismatchError as exc:
                logger.error("Failed to ingest %s: %s", source.filename, exc)
                reports.append(
                    IngestReport(
                        filename=source.filename, model=model, success=False, error=str(exc)
                    )
                )

        logger.info(
            "Ingested %d files (%d chunks, %d fallback embeddings) for model %s",
            sum(1 for report in reports if report.success),
            sum(report.chunk_count for report in reports),
            sum(report.fallback_count for report in reports),
            model,
        )
        return reports

    def _ingest(self, source: ParsedSource, model: str) -> IngestReport:
        windows = self.chunker.split(source.text)
        batch = self.embedder.batch_embed(
            [window.text for window in windows], model, self.config.batch_size
        )
        carried, target = self._plan_dimension(source.filename, batch.embeddings, model)

        chunks: list[Chunk] = []
        for window, result in zip(windows, batch.embeddings, strict=True):
            metadata = self.extractor.extract(window.text, source.file_type)
            chunks.append(
                Chunk(
                    filename=source.filename,
                    file_type=source.file_type,
                    content=window.text,
                    window_index=window.index,
                    window_start=window.start,
                    window_end=window.end,
                    start_line=window.start_line,
                    end_line=window.end_line,
                    embedding_model=model,
                    embedding=tuple(fit_fallback(result, window.text, target)),
                    extracted_identifiers=metadata.identifiers,
                    extracted_classes=metadata.classes,
                    extracted_keywords=metadata.keywords,
                    embedding_fallback=result.fallback,
                )
            )

        filenames = {source.filename, *(chunk.filename for chunk in carried)}
        removed = self.index.replace(model, filenames, [*carried, *chunks])

        return IngestReport(
            filename=source.filename,
            model=model,
            chunk_count=len(windows),
            fallback_count=batch.error_count,
            removed_count=removed - len(carried),
            success=batch.success,
            error=batch.error,
        )

    def _plan_dimension(
        self, filename: str, results: list[EmbeddingResult], model: str
    ) -> tuple[list[Chunk], int]:
        """Pick the vector length for a file's chunks under ``model``.

        The model's stored dimension wins. The exception is a model whose
        stored chunks are all fallback vectors while the endpoint now answers
        with another length: the other files' fallbacks are regenerated at the
        endpoint length and returned for re-storing alongside the new file.
        Endpoint vectors of the wrong length are left for the index to reject.
        """

        stored = self.index.dimension(model)
        live = next((len(result.vector) for result in results if not result.fallback), None)
        if stored is None:
            return [], live or self.embedder.dimension_for(model)
        if live is None or live == stored:
            return [], stored

        existing = self.index.get_all(model)
        if not all(chunk.embedding_fallback for chunk in existing):
            return [], stored

        carried = [
            replace(chunk, embedding=tuple(fallback_embedding(chunk.content, live)))
            for chunk in existing
            if chunk.filename != filename
        ]
        logger.info(
            "Regenerating %d fallback chunks of model %s at %d dimensions (was %d)",
            len(carried),
            model,
            live,
            stored,
        )
        return carried, live
