"""Turns enhanced queries into ranked, deduplicated context chunks."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from code_agent.agent.base import Handler, Stage
from code_agent.config import RetrievalConfig
from code_agent.retrieval.retriever import MultiQueryRetriever
from code_agent.types import (
    AgentResponse,
    ContextChunk,
    LineRange,
    ResponseMetadata,
    SearchOutcome,
    clamp_unit,
)

_HEADER = re.compile(r"^\[(.*?):(\d+)-(\d+)\]$")
_RANK_LIMIT = 8
_STRUCTURE_MARKERS = ("function", "class", "const", "def ")
_ERROR_QUERY_WORDS = ("error", "bug", "debug", "exception")
_ERROR_CONTENT_WORDS = ("try", "catch", "except", "error")


class FetcherTask(str, Enum):
    FETCH_CONTEXT = "fetch_context"
    SEARCH_SIMILAR = "search_similar"
    RANK_CONTEXT = "rank_context"


class ContextFetcher(Stage[FetcherTask]):
    """Retrieves evidence for a set of queries from one embedding model's index."""

    name = "ContextFetcher"
    task_kinds = FetcherTask

    def __init__(
        self,
        retriever: MultiQueryRetriever,
        embedding_model: str,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.retriever = retriever
        self.embedding_model = embedding_model
        self.config = config or RetrievalConfig()
        super().__init__()

    def _handlers(self) -> Mapping[FetcherTask, Handler]:
        return {
            FetcherTask.FETCH_CONTEXT: self._fetch_context,
            FetcherTask.SEARCH_SIMILAR: self._search_similar,
            FetcherTask.RANK_CONTEXT: self._rank_context,
        }

    def fetch(self, queries: Sequence[str], corpus_available: bool) -> tuple[list[ContextChunk], float]:
        """Return ranked context and an overall confidence.

        An empty corpus short-circuits to ``([], 0.0)`` without embedding any
        query.
        """

        if not corpus_available:
            return [], 0.0

        outcome = self.retriever.multi_query_search(
            queries, self.embedding_model, top_k=self.config.top_k
        )
        joined = " ".join(queries)
        chunks: list[ContextChunk] = []
        seen: set[str] = set()
        for rank, result in enumerate(outcome.results):
            if result.chunk.id in seen:
                continue
            seen.add(result.chunk.id)
            chunk = parse_match(result.render())
            chunk.relevance_score = relevance_score(chunk.content, chunk.filename, joined)
            chunk.metadata.update(
                {
                    "chunk_id": result.chunk.id,
                    "original_rank": rank,
                    "similarity": result.similarity,
                    "boost": result.relevance_boost,
                    "embedding_model": self.embedding_model,
                    "embedding_fallback": result.chunk.embedding_fallback,
                }
            )
            chunks.append(chunk)

        chunks.sort(key=lambda item: item.relevance_score, reverse=True)
        return chunks, context_confidence(chunks)

    def search_similar(self, query: str, top_k: int = 5) -> SearchOutcome:
        return self.retriever.search(query, self.embedding_model, top_k=top_k)

    def _fetch_context(self, data: Mapping[str, Any]) -> AgentResponse:
        queries = [str(query) for query in data["queries"]]
        chunks, confidence = self.fetch(queries, bool(data.get("corpus_available", False)))
        return AgentResponse(
            success=True,
            data=chunks,
            metadata=ResponseMetadata(
                confidence=confidence,
                sources=[chunk.filename for chunk in chunks],
                extra={"embedding_model": self.embedding_model},
            ),
        )

    def _search_similar(self, data: Mapping[str, Any]) -> AgentResponse:
        outcome = self.search_similar(str(data["query"]), int(data.get("top_k", 5)))
        matches = [result.render() for result in outcome.results]
        return AgentResponse(
            success=True,
            data=matches,
            metadata=ResponseMetadata(
                confidence=0.8 if matches else 0.2,
                extra={"embedding_model": self.embedding_model, "compatible": outcome.compatible},
            ),
        )

    def _rank_context(self, data: Mapping[str, Any]) -> AgentResponse:
        ranked = rank_context(list(data["chunks"]), str(data["query"]))
        return AgentResponse(
            success=True,
            data=ranked,
            metadata=ResponseMetadata(confidence=0.9 if ranked else 0.1),
        )


def parse_match(raw: str) -> ContextChunk:
    """Split ``[filename:start-end]`` header text into a context chunk.

    Text without a recognizable header is kept whole under ``unknown``.
    """

    header, _, body = raw.partition("\n")
    match = _HEADER.match(header.strip())
    if match is None:
        return ContextChunk(
            content=raw, filename="unknown", line_range=LineRange(1, 1), relevance_score=0.0
        )
    return ContextChunk(
        content=body,
        filename=match.group(1),
        line_range=LineRange(int(match.group(2)), int(match.group(3))),
        relevance_score=0.0,
    )


def relevance_score(content: str, filename: str, query: str) -> float:
    query_lower = query.lower()
    content_lower = content.lower()
    query_words = query_lower.split()
    if not query_words:
        return 0.5

    content_words = content_lower.split()
    matching = sum(
        1
        for word in query_words
        if any(word in token or token in word for token in content_words)
    )
    score = 0.5 + (matching / len(query_words)) * 0.3

    if any(word in filename.lower() for word in query_words):
        score += 0.2
    if any(marker in content_lower for marker in _STRUCTURE_MARKERS):
        score += 0.1
    if any(word in query_lower for word in _ERROR_QUERY_WORDS) and any(
        word in content_lower for word in _ERROR_CONTENT_WORDS
    ):
        score += 0.2
    return min(score, 1.0)


def context_confidence(chunks: Sequence[ContextChunk]) -> float:
    if not chunks:
        return 0.0
    mean_relevance = sum(chunk.relevance_score for chunk in chunks) / len(chunks)
    diversity = len({chunk.filename for chunk in chunks}) / len(chunks)
    return clamp_unit(mean_relevance * 0.7 + diversity * 0.3)


def rank_context(chunks: Sequence[ContextChunk], query: str) -> list[ContextChunk]:
    for chunk in chunks:
        chunk.relevance_score = relevance_score(chunk.content, chunk.filename, query)
    return sorted(chunks, key=lambda item: item.relevance_score, reverse=True)[:_RANK_LIMIT]
