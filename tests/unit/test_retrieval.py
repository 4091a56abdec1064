import pytest

from code_agent.config import EmbeddingConfig
from code_agent.ingest.embedder import (
    EndpointEmbedder,
    cosine_similarity,
    fallback_embedding,
)
from code_agent.retrieval.fusion import RelevanceBooster, merge_max
from code_agent.retrieval.retriever import MultiQueryRetriever
from code_agent.retrieval.vector_store import InMemoryVectorIndex
from code_agent.types import Chunk, SearchResult

from conftest import hash_vector


def _chunk(
    filename: str,
    content: str,
    *,
    identifiers: frozenset[str] = frozenset(),
    classes: frozenset[str] = frozenset(),
    keywords: frozenset[str] = frozenset(),
    index: int = 0,
) -> Chunk:
    return Chunk(
        filename=filename,
        file_type="typescript",
        content=content,
        window_index=index,
        window_start=0,
        window_end=len(content),
        start_line=1,
        end_line=content.count("\n") + 1,
        embedding_model="embed-model",
        embedding=tuple(hash_vector(content)),
        extracted_identifiers=identifiers | classes,
        extracted_classes=classes,
        extracted_keywords=keywords,
    )


def test_identifier_boost_for_retry_question() -> None:
    chunk = _chunk(
        "src/http/client.ts",
        "export async function retryRequest(url) { return fetch(url); }",
        identifiers=frozenset({"retryRequest"}),
    )
    booster = RelevanceBooster()

    assert booster.boost("how does the retry logic work", chunk) >= 0.20


def test_boost_rules_are_additive() -> None:
    chunk = _chunk(
        "src/auth/session.ts",
        "class SessionStore { async load() {} }",
        classes=frozenset({"SessionStore"}),
        keywords=frozenset({"async"}),
    )
    booster = RelevanceBooster()

    # identifier + class + keyword + filename stem
    assert booster.boost("where is the async session store", chunk) == pytest.approx(0.65)
    assert booster.boost("unrelated question", chunk) == 0.0


def test_merge_max_dedupes_and_filters() -> None:
    a = _chunk("a.ts", "alpha")
    b = _chunk("b.ts", "beta")
    merged = merge_max(
        [
            [SearchResult(a, 0.4), SearchResult(b, 0.05)],
            [SearchResult(a, 0.2, 0.3), SearchResult(b, 0.3)],
        ],
        min_score=0.1,
    )

    assert [result.chunk.id for result in merged] == [a.id, b.id]
    assert merged[0].score == pytest.approx(0.5)
    assert merged[1].score == pytest.approx(0.3)


def test_merge_max_breaks_ties_by_index_position() -> None:
    first = _chunk("a.ts", "alpha")
    second = _chunk("b.ts", "beta")
    merged = merge_max(
        [
            [SearchResult(second, 0.6, position=1), SearchResult(first, 0.05, position=0)],
            [SearchResult(first, 0.6, position=0), SearchResult(second, 0.2, position=1)],
        ],
        min_score=0.1,
    )

    assert [result.chunk.id for result in merged] == [first.id, second.id]
    assert merged[0].score == merged[1].score


def test_booster_keeps_position() -> None:
    chunk = _chunk("a.ts", "alpha")

    (boosted,) = RelevanceBooster().apply("alpha", [SearchResult(chunk, 0.5, position=7)])

    assert boosted.position == 7


def _retriever(inference_client, index: InMemoryVectorIndex) -> MultiQueryRetriever:
    embedder = EndpointEmbedder(inference_client, EmbeddingConfig(batch_delay_seconds=0.0))
    return MultiQueryRetriever(index, embedder)


def test_multi_query_search_returns_unique_chunks(inference_client) -> None:
    index = InMemoryVectorIndex()
    retry = _chunk(
        "src/http/retry.ts",
        "export function retryRequest(request) { return send(request); }",
        identifiers=frozenset({"retryRequest"}),
    )
    other = _chunk("src/ui/button.ts", "export const buttonColor = 'blue';", index=0)
    index.put(retry)
    index.put(other)
    retriever = _retriever(inference_client, index)

    outcome = retriever.multi_query_search(
        ["how does the retry logic work", "retryRequest send request", "retry request"],
        "embed-model",
    )

    ids = [result.chunk.id for result in outcome.results]
    assert outcome.compatible
    assert len(ids) == len(set(ids))
    top = outcome.results[0]
    assert top.chunk.id == retry.id
    assert top.relevance_boost >= 0.20
    assert all(0.0 <= result.score <= 1.0 for result in outcome.results)


def test_boosted_score_exceeds_cosine(inference_client) -> None:
    index = InMemoryVectorIndex()
    retry = _chunk(
        "src/net/transport.ts",
        "function retryRequest(options) { attempts += 1; }",
        identifiers=frozenset({"retryRequest"}),
    )
    index.put(retry)
    query = "how does the retry logic work"

    outcome = _retriever(inference_client, index).search(query, "embed-model")

    result = outcome.results[0]
    raw = cosine_similarity(hash_vector(query), list(retry.embedding))
    assert result.similarity == pytest.approx(raw)
    assert result.score - raw >= 0.20 - 1e-9


def test_search_without_compatible_chunks(endpoint, inference_client) -> None:
    index = InMemoryVectorIndex()
    index.put(_chunk("a.ts", "alpha"))

    outcome = _retriever(inference_client, index).multi_query_search(["alpha"], "other-model")

    assert outcome.results == []
    assert not outcome.compatible
    assert endpoint.calls("/api/embeddings") == 0


def test_offline_query_matches_stored_dimension(endpoint, inference_client) -> None:
    query = "retryRequest backoff"
    index = InMemoryVectorIndex()
    index.put(
        Chunk(
            filename="retry.ts",
            file_type="typescript",
            content=query,
            window_index=0,
            window_start=0,
            window_end=len(query),
            start_line=1,
            end_line=1,
            embedding_model="embed-model",
            embedding=tuple(fallback_embedding(query, 64)),
            embedding_fallback=True,
        )
    )
    endpoint.embeddings_down = True

    outcome = _retriever(inference_client, index).search(query, "embed-model")

    assert outcome.compatible
    assert outcome.results[0].similarity == pytest.approx(1.0)
