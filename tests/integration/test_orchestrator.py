from itertools import count

import pytest

from code_agent.agent.orchestrator import Orchestrator
from code_agent.retrieval.vector_store import InMemoryVectorIndex
from code_agent.types import ConversationTurn, TraceStatus

from conftest import ANSWER_MARKER

RETRY_SOURCE = """export function retryRequest(req) {
  // retry logic with exponential backoff
  return send(req).catch(() => retryRequest(req));
}
"""

STAGES = ["QueryEnhancer", "ContextFetcher", "Planner", "QuestionAnswering", "Verifier"]


@pytest.fixture()
def orchestrator(pipeline_config, inference_client) -> Orchestrator:
    ticks = count()
    orchestrator = Orchestrator(
        pipeline_config,
        inference_client,
        InMemoryVectorIndex(),
        clock=lambda: float(next(ticks)),
    )
    orchestrator.ingestion().ingest_text("src/retry.ts", RETRY_SOURCE, "embed-model")
    return orchestrator


def test_happy_path_runs_every_stage_in_order(endpoint, orchestrator) -> None:
    question = "How does the retry logic work?"

    result = orchestrator.process_query(question, corpus=["src/retry.ts"])

    assert result.failed_stage is None
    assert [entry.agent_name for entry in result.trace] == [
        name for name in STAGES for _ in range(2)
    ]
    assert [entry.status for entry in result.trace] == [
        TraceStatus.STARTING,
        TraceStatus.COMPLETED,
    ] * len(STAGES)
    timestamps = [entry.timestamp_ms for entry in result.trace]
    assert timestamps == sorted(timestamps)

    assert result.enhanced_queries[0] == question
    assert "retryRequest implementation" in result.enhanced_queries
    assert [chunk.filename for chunk in result.context_used] == ["src/retry.ts"]
    assert result.verification is not None
    assert result.answer == result.verification.final_answer
    assert result.verification.original_answer == endpoint.replies[ANSWER_MARKER]

    answer_prompts = [
        payload["prompt"]
        for path, payload in endpoint.requests
        if path == "/api/generate" and ANSWER_MARKER in payload["prompt"]
    ]
    assert len(answer_prompts) == 1
    assert "[src/retry.ts:1-" in answer_prompts[0]


def test_synthesizer_failure_degrades_without_verification(endpoint, orchestrator) -> None:
    endpoint.failing.add(ANSWER_MARKER)
    question = "How does the retry logic work?"

    result = orchestrator.process_query(question, corpus=["src/retry.ts"])

    assert result.failed_stage == "QuestionAnswering"
    assert "QuestionAnswering" in result.answer
    assert result.enhanced_queries == [question]
    assert result.verification is None
    assert result.trace[-1].agent_name == "QuestionAnswering"
    assert result.trace[-1].status is TraceStatus.ERROR
    assert "Verifier" not in {entry.agent_name for entry in result.trace}


def test_empty_corpus_skips_embedding(endpoint, orchestrator) -> None:
    embeddings_before = endpoint.calls("/api/embeddings")

    result = orchestrator.process_query("How does the retry logic work?", corpus=[])

    assert endpoint.calls("/api/embeddings") == embeddings_before
    assert result.context_used == []
    assert result.failed_stage is None


def test_verifier_failure_keeps_synthesized_answer(endpoint, orchestrator, monkeypatch) -> None:
    def broken_verify(*args, **kwargs):
        raise RuntimeError("scoring crashed")

    monkeypatch.setattr(orchestrator.verifier, "verify", broken_verify)

    result = orchestrator.process_query("How does the retry logic work?", corpus=["src/retry.ts"])

    assert result.failed_stage is None
    assert result.verification is None
    assert result.answer == endpoint.replies[ANSWER_MARKER]
    assert result.trace[-1].agent_name == "Verifier"
    assert result.trace[-1].error == "scoring crashed"


def test_history_reaches_the_answer_prompt(endpoint, orchestrator) -> None:
    history = [
        ConversationTurn("user", "Where is the HTTP client?"),
        ConversationTurn("assistant", "It lives in src/http."),
    ]

    orchestrator.process_query("And how does it retry?", corpus=["src/retry.ts"], history=history)

    answer_prompt = next(
        payload["prompt"]
        for path, payload in endpoint.requests
        if path == "/api/generate" and ANSWER_MARKER in payload["prompt"]
    )
    assert "Human: Where is the HTTP client?" in answer_prompt
    assert "Assistant: It lives in src/http." in answer_prompt


def test_with_models_returns_a_new_snapshot(endpoint, orchestrator) -> None:
    switched = orchestrator.with_models(generation_model="other-gen")

    assert orchestrator.generation_model == "gen-model"
    assert switched.generation_model == "other-gen"
    assert switched.embedding_model == "embed-model"
    assert switched.index is orchestrator.index

    switched.process_query("How does the retry logic work?", corpus=["src/retry.ts"])

    models = {payload["model"] for path, payload in endpoint.requests if path == "/api/generate"}
    assert models == {"other-gen"}
