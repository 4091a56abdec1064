import pytest

from code_agent.agent import fallback
from code_agent.agent.query_enhancer import (
    EnhancerTask,
    QueryEnhancer,
    analyze_intent,
    parse_query_response,
)
from code_agent.types import AgentTask, ConversationTurn

from conftest import ENHANCER_MARKER


def test_parse_query_response_strips_numbering() -> None:
    response = "1. retry logic\n\n# Queries\n- backoff strategy\n2) retryRequest\n* http client\n5. extra"

    assert parse_query_response(response) == [
        "retry logic",
        "backoff strategy",
        "retryRequest",
        "http client",
    ]


def test_generate_puts_original_first_and_dedupes(endpoint, inference_client) -> None:
    endpoint.replies[ENHANCER_MARKER] = "how does the retry logic work\nretry logic\nretry logic"
    enhancer = QueryEnhancer(inference_client, "gen-model")

    queries = enhancer.generate("how does the retry logic work")

    assert queries[0] == "how does the retry logic work"
    assert len(queries) == len(set(queries))
    assert "retry logic" in queries
    assert len(queries) <= 8
    assert all(query.strip() == query and query for query in queries)


def test_history_enables_contextual_generator(endpoint, inference_client) -> None:
    enhancer = QueryEnhancer(inference_client, "gen-model")
    history = [
        ConversationTurn("user", "Where is the HTTP client?"),
        ConversationTurn("assistant", "It lives in src/http/client.ts."),
    ]

    enhancer.generate("how does it retry", history)

    prompts = [payload["prompt"] for path, payload in endpoint.requests if path == "/api/generate"]
    assert len(prompts) == 3
    assert any("Previous conversation:" in prompt for prompt in prompts)
    assert any("user: Where is the HTTP client?" in prompt for prompt in prompts)


def test_endpoint_outage_uses_rule_based_generators(endpoint, inference_client) -> None:
    endpoint.failing.add(ENHANCER_MARKER)
    enhancer = QueryEnhancer(inference_client, "gen-model")

    response = enhancer.handle(
        AgentTask(EnhancerTask.GENERATE_QUERIES, {"query": "fix the function error in api config"})
    )

    assert response.success
    queries = response.data
    assert queries[0] == "fix the function error in api config"
    assert "fix the method error in api config" in queries
    assert len(queries) <= 8
    assert set(response.metadata.extra["fallback_generators"]) == {"semantic", "technical"}
    assert 0.0 <= response.metadata.confidence <= 0.95


def test_generation_failure_falls_back_for_whole_stage(monkeypatch, inference_client) -> None:
    enhancer = QueryEnhancer(inference_client, "gen-model")

    def _boom(query, history):
        raise RuntimeError("pool exploded")

    monkeypatch.setattr(enhancer, "_generate", _boom)
    response = enhancer.handle(
        AgentTask(EnhancerTask.GENERATE_QUERIES, {"query": "how does the function handle error"})
    )

    assert response.success
    assert response.metadata.confidence == pytest.approx(0.6)
    assert response.data[0] == "how does the function handle error"
    assert "exception handling" in response.data
    assert "AI generation failed" in (response.error or "")


def test_analyze_intent() -> None:
    intent = analyze_intent("How do I implement the retry function and also log errors?")

    assert intent["type"] == "how-to"
    assert intent["requires_code"]
    assert 0.0 <= intent["complexity"] <= 1.0
    assert "implement" in intent["keywords"]


def test_fallback_generators_are_deterministic() -> None:
    query = "Where is the test config for the database module?"

    assert fallback.structural_queries(query) == [
        "file structure",
        "module organization",
        "import export",
    ]
    assert fallback.technical_queries(query)[:2] == ["query", "table"]
    assert fallback.standalone_queries("What is this?") == ["What is this"]
    assert fallback.fallback_queries(query) == fallback.fallback_queries(query)
    assert len(fallback.fallback_queries(query)) <= 6
