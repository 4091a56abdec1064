"""Multi-query retriever with relevance boosting and max-score dedup."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from code_agent.config import RetrievalConfig
from code_agent.ingest.embedder import Embedder, fit_fallback
from code_agent.retrieval.fusion import RelevanceBooster, merge_max
from code_agent.retrieval.vector_store import VectorIndex
from code_agent.types import SearchOutcome

logger = logging.getLogger(__name__)


class MultiQueryRetriever:
    """Runs several query phrasings against one embedding model's chunks.

    Every query is scored against all compatible chunks, so a chunk that ranks
    low for one phrasing but high for another still surfaces with its best
    score. A chunk id appears at most once in the output.
    """

    def __init__(
        self,
        index: VectorIndex,
        embedder: Embedder,
        booster: RelevanceBooster | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.config = config or RetrievalConfig()
        self.booster = booster or RelevanceBooster(self.config)

    def multi_query_search(
        self,
        queries: Sequence[str],
        model: str,
        *,
        top_k: int | None = None,
    ) -> SearchOutcome:
        limit = top_k or self.config.top_k
        phrasings = [query for query in queries if query.strip()]
        candidate_count = self.index.count(model)
        if candidate_count == 0:
            logger.warning("No chunks indexed for embedding model %s", model)
            return SearchOutcome(results=[], compatible=False, model=model)
        if not phrasings:
            return SearchOutcome(results=[], compatible=True, model=model)

        # Fallback query vectors must match the stored length to be comparable.
        target = self.index.dimension(model) or self.embedder.dimension_for(model)
        batch = self.embedder.batch_embed(phrasings, model)
        per_query = []
        for query, embedding in zip(phrasings, batch.embeddings, strict=True):
            vector = fit_fallback(embedding, query, target)
            outcome = self.index.search(vector, candidate_count, model)
            per_query.append(self.booster.apply(query, outcome.results))

        merged = merge_max(per_query, self.config.min_score)
        return SearchOutcome(results=merged[:limit], compatible=True, model=model)

    def search(self, query: str, model: str, *, top_k: int = 5) -> SearchOutcome:
        return self.multi_query_search([query], model, top_k=top_k)
