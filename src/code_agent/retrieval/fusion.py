"""Relevance boosting and max-score merging for multi-query retrieval."""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import PurePosixPath

from code_agent.config import RetrievalConfig
from code_agent.types import Chunk, SearchResult

_WORD_PATTERN = re.compile(r"[a-z0-9_]+")
_MIN_SIGNIFICANT_LENGTH = 4
_STOP_WORDS = frozenset(
    {
        "about", "also", "does", "doing", "from", "have", "into", "that", "their",
        "there", "these", "this", "those", "what", "when", "where", "which", "while",
        "with", "work", "works", "would", "could", "should", "code", "file", "show",
        "explain", "please", "tell",
    }
)


class RelevanceBooster:
    """Additive boosts layered on top of cosine similarity.

    Each rule fires at most once per chunk:
    - identifier: an extracted identifier occurs in the query, or a
      significant query word occurs inside an identifier;
    - class name: the same test against extracted class names;
    - keyword: an extracted language keyword is itself a query word;
    - filename: the filename stem occurs in the query, or a significant
      query word occurs inside the stem.
    """

    def __init__(self, config: RetrievalConfig | None = None) -> None:
        self.config = config or RetrievalConfig()

    def boost(self, query: str, chunk: Chunk) -> float:
        query_lower = query.lower()
        words = set(_WORD_PATTERN.findall(query_lower))
        significant = {word for word in words if _is_significant(word)}

        total = 0.0
        if _names_match(chunk.extracted_identifiers, query_lower, significant):
            total += self.config.identifier_boost
        if _names_match(chunk.extracted_classes, query_lower, significant):
            total += self.config.class_boost
        if any(keyword.lower() in words for keyword in chunk.extracted_keywords):
            total += self.config.keyword_boost
        stem = PurePosixPath(chunk.filename).stem.lower()
        if stem and (
            (len(stem) >= 3 and stem in query_lower)
            or any(word in stem for word in significant)
        ):
            total += self.config.filename_boost
        return total

    def apply(self, query: str, results: Iterable[SearchResult]) -> list[SearchResult]:
        return [
            SearchResult(
                chunk=result.chunk,
                similarity=result.similarity,
                relevance_boost=self.boost(query, result.chunk),
                position=result.position,
            )
            for result in results
        ]


def merge_max(result_sets: Iterable[list[SearchResult]], min_score: float) -> list[SearchResult]:
    """Keep each chunk's best-scoring result across queries.

    Results scoring below ``min_score`` are dropped. Output is sorted by score
    descending; equal scores fall back to insertion order in the index, so
    the order of the query phrasings never reorders ties.
    """

    best: dict[str, SearchResult] = {}
    for results in result_sets:
        for result in results:
            if result.score < min_score:
                continue
            current = best.get(result.chunk.id)
            if current is None or result.score > current.score:
                best[result.chunk.id] = result
    return sorted(best.values(), key=lambda item: (-item.score, item.position))


def _is_significant(word: str) -> bool:
    return len(word) >= _MIN_SIGNIFICANT_LENGTH and word not in _STOP_WORDS


def _names_match(names: Iterable[str], query_lower: str, significant: set[str]) -> bool:
    for name in names:
        lowered = name.lower()
        if len(lowered) >= 3 and lowered in query_lower:
            return True
        if any(word in lowered for word in significant):
            return True
    return False
