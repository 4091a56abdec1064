"""Embedding abstractions, endpoint-backed embedder, and vector helpers."""

from __future__ import annotations

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Literal

from code_agent.config import EmbeddingConfig
from code_agent.inference.client import InferenceClient, InferenceError
from code_agent.types import clamp_unit

logger = logging.getLogger(__name__)

FALLBACK_DIMENSION = 384

_LCG_MULTIPLIER = 9301
_LCG_INCREMENT = 49297
_LCG_MODULUS = 233280


@dataclass(slots=True)
class EmbeddingResult:
    vector: list[float]
    model: str
    fallback: bool = False
    confidence: float = 0.95
    error: str | None = None


@dataclass(slots=True)
class BatchEmbedResult:
    embeddings: list[EmbeddingResult] = field(default_factory=list)
    success_count: int = 0
    error_count: int = 0
    success: bool = True
    error: str | None = None


class Embedder(ABC):
    """Embedder interface used by ingestion and retrieval."""

    @abstractmethod
    def embed(self, text: str, model: str) -> EmbeddingResult:
        """Embed one text in the vector space of ``model``."""

    @abstractmethod
    def dimension_for(self, model: str) -> int:
        """Vector length currently declared for ``model``."""

    def batch_embed(
        self,
        texts: Sequence[str],
        model: str,
        batch_size: int | None = None,
    ) -> BatchEmbedResult:
        results = [self.embed(text, model) for text in texts]
        return _summarize_batch(results)


class EndpointEmbedder(Embedder):
    """Embeds through the inference endpoint, degrading to a fallback vector.

    An endpoint failure never raises: the caller gets the deterministic
    fallback vector with ``fallback=True`` and low confidence. The dimension
    of a model is learned from its first successful endpoint response so
    fallback vectors of that model have the same length as real ones.
    """

    def __init__(
        self,
        client: InferenceClient,
        config: EmbeddingConfig | None = None,
    ) -> None:
        self.client = client
        self.config = config or EmbeddingConfig()
        self._dimensions: dict[str, int] = {}
        self._lock = threading.Lock()

    def dimension_for(self, model: str) -> int:
        with self._lock:
            return self._dimensions.get(model, self.config.fallback_dimension)

    def embed(self, text: str, model: str) -> EmbeddingResult:
        try:
            vector = self.client.embeddings(model, text)
        except InferenceError as exc:
            logger.warning("Embedding failed for model %s, using fallback: %s", model, exc)
            return EmbeddingResult(
                vector=fallback_embedding(text, self.dimension_for(model)),
                model=model,
                fallback=True,
                confidence=self.config.fallback_confidence,
                error=f"Using fallback embedding: {exc}",
            )

        with self._lock:
            self._dimensions.setdefault(model, len(vector))
        return EmbeddingResult(
            vector=vector,
            model=model,
            confidence=self.config.endpoint_confidence,
        )

    def batch_embed(
        self,
        texts: Sequence[str],
        model: str,
        batch_size: int | None = None,
    ) -> BatchEmbedResult:
        """Embed ``texts`` in batches; each batch fans out and joins.

        Batches are separated by ``batch_delay_seconds``; no pause follows the
        last batch. Failed items carry a fallback vector so the result always
        has one embedding per input, in input order.
        """

        size = batch_size or self.config.batch_size
        results: list[EmbeddingResult] = []
        with ThreadPoolExecutor(max_workers=size) as pool:
            for start in range(0, len(texts), size):
                batch = texts[start : start + size]
                results.extend(pool.map(lambda text: self.embed(text, model), batch))
                if start + size < len(texts) and self.config.batch_delay_seconds > 0:
                    time.sleep(self.config.batch_delay_seconds)

        summary = _summarize_batch(results)
        if summary.error_count:
            logger.warning(
                "Batch embedding for model %s: %d of %d items used fallback vectors",
                model,
                summary.error_count,
                len(results),
            )
        return summary


def fallback_embedding(text: str, dimension: int = FALLBACK_DIMENSION) -> list[float]:
    """Deterministic pseudo-random unit vector seeded by ``text``.

    The values carry no semantic similarity between different texts; they only
    keep the corpus complete while the endpoint is unreachable.
    """

    seed = 0
    for position, char in enumerate(text):
        seed += ord(char) * (position + 1)

    vector: list[float] = []
    for _ in range(dimension):
        seed = (seed * _LCG_MULTIPLIER + _LCG_INCREMENT) % _LCG_MODULUS
        vector.append(seed / _LCG_MODULUS - 0.5)
    return normalize(vector)


def fit_fallback(result: EmbeddingResult, text: str, dimension: int) -> list[float]:
    """Return the result's vector, regenerating a fallback vector at ``dimension``.

    Endpoint vectors are returned untouched whatever their length.
    """

    if result.fallback and len(result.vector) != dimension:
        return fallback_embedding(text, dimension)
    return result.vector


def normalize(vector: Sequence[float]) -> list[float]:
    scaled = _scaled(vector)
    if scaled is None:
        return list(vector)
    magnitude = math.sqrt(math.fsum(value * value for value in scaled))
    return [value / magnitude for value in scaled]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped to ``[0, 1]``.

    Mismatched lengths and zero vectors score 0.0.
    """

    if not a or not b or len(a) != len(b):
        return 0.0
    # Cosine is scale-invariant; rescaling keeps large inputs from overflowing.
    scaled_a, scaled_b = _scaled(a), _scaled(b)
    if scaled_a is None or scaled_b is None:
        return 0.0
    numerator = math.fsum(x * y for x, y in zip(scaled_a, scaled_b, strict=True))
    norm_a = math.sqrt(math.fsum(x * x for x in scaled_a))
    norm_b = math.sqrt(math.fsum(y * y for y in scaled_b))
    return clamp_unit(numerator / (norm_a * norm_b))


def similarity(
    a: Sequence[float],
    b: Sequence[float],
    method: Literal["cosine", "euclidean", "dot"] = "cosine",
) -> float:
    if len(a) != len(b):
        raise ValueError("Embedding dimensions do not match")
    if method == "euclidean":
        distance = math.dist(a, b)
        return clamp_unit(1.0 / (1.0 + distance))
    if method == "dot":
        # Plain sum: overflowing products become inf or nan, which clamp_unit handles.
        return clamp_unit(sum(x * y for x, y in zip(a, b, strict=True)))
    return cosine_similarity(a, b)


def optimize(vector: Sequence[float], target_dimensions: int | None = None) -> list[float]:
    """Truncate to ``target_dimensions`` (when smaller) and re-normalize."""

    reduced = list(vector)
    if target_dimensions and target_dimensions < len(reduced):
        reduced = reduced[:target_dimensions]
    return normalize(reduced)


def _summarize_batch(results: list[EmbeddingResult]) -> BatchEmbedResult:
    errors = sum(1 for result in results if result.fallback)
    return BatchEmbedResult(
        embeddings=results,
        success_count=len(results) - errors,
        error_count=errors,
        success=errors < len(results) / 2 if results else True,
        error=f"{errors} embeddings failed" if errors else None,
    )


def _scaled(vector: Sequence[float]) -> list[float] | None:
    peak = max((abs(value) for value in vector), default=0.0)
    if peak == 0 or not math.isfinite(peak):
        return None
    return [value / peak for value in vector]
