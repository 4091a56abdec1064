import pytest

from code_agent.agent.synthesizer import Synthesizer
from code_agent.agent.verifier import (
    ISSUE_CODE,
    ISSUE_COMPLETENESS,
    ISSUE_RELEVANCE,
    Verifier,
    VerifierTask,
    agent_performance,
    check_accuracy,
    check_code_validity,
    check_completeness,
    check_consistency,
    check_relevance,
    count_contradictions,
    overall_confidence,
)
from code_agent.config import VerifierConfig
from code_agent.types import AgentTask, ContextChunk, LineRange, TraceEntry, TraceStatus

from conftest import IMPROVE_MARKER

WEIGHTS = (0.25, 0.25, 0.20, 0.15, 0.15)


def _context() -> list[ContextChunk]:
    return [
        ContextChunk(
            "export function retryRequest() { return MAX_RETRIES; }",
            "src/retry.ts",
            LineRange(1, 3),
            0.9,
        )
    ]


def _verifier(inference_client, **overrides) -> Verifier:
    return Verifier(Synthesizer(inference_client, "gen-model"), VerifierConfig(**overrides))


def test_equal_scores_reproduce_their_value() -> None:
    assert overall_confidence([0.9] * 5, WEIGHTS) == 0.9
    assert overall_confidence([0.0, 1.0, 0.0, 0.0, 0.0], WEIGHTS) == 0.25


def test_unbalanced_code_is_flagged(inference_client) -> None:
    result = _verifier(inference_client).verify(
        "How do I write function f?", "function f() { return 1;", []
    )

    assert result.code_validity < 0.8
    assert ISSUE_CODE in result.issues
    assert result.original_answer == "function f() { return 1;"


def test_low_confidence_answer_is_improved_once(endpoint, inference_client) -> None:
    result = _verifier(inference_client).verify(
        "How does the retry logic and the cache work?", "No.", _context()
    )

    assert result.overall_confidence < 0.7
    assert ISSUE_RELEVANCE in result.issues
    assert ISSUE_COMPLETENESS in result.issues
    assert endpoint.calls("/api/generate") == 1
    prompt = endpoint.requests[-1][1]["prompt"]
    assert IMPROVE_MARKER in prompt
    assert endpoint.requests[-1][1]["options"]["num_predict"] == 2000
    assert result.improved
    assert result.final_answer == endpoint.replies[IMPROVE_MARKER]
    assert result.original_answer == "No."
    assert result.agent_performance["state"] == "verified"


def test_failed_improvement_keeps_original(endpoint, inference_client) -> None:
    endpoint.failing.add(IMPROVE_MARKER)

    result = _verifier(inference_client).verify(
        "How does the retry logic and the cache work?", "No.", _context()
    )

    assert endpoint.calls("/api/generate") == 1
    assert not result.improved
    assert result.final_answer == "No."
    assert result.issues


def test_no_improvement_above_threshold(endpoint, inference_client) -> None:
    result = _verifier(inference_client, improvement_threshold=0.0).verify(
        "How does the retry logic and the cache work?", "No.", _context()
    )

    assert endpoint.calls("/api/generate") == 0
    assert result.final_answer == "No."
    assert not result.improved


def test_verify_response_task(inference_client) -> None:
    response = _verifier(inference_client, improvement_threshold=0.0).handle(
        AgentTask(
            VerifierTask.VERIFY_RESPONSE,
            {"query": "what is retryRequest", "answer": "It is a helper.", "context": _context()},
        )
    )

    assert response.success
    assert response.metadata.confidence == response.data.overall_confidence


def test_validate_code_task(inference_client) -> None:
    response = _verifier(inference_client).handle(
        AgentTask(VerifierTask.VALIDATE_CODE, {"code": "function f() { return 1;"})
    )

    assert response.data == pytest.approx(0.3)


def test_accuracy_checks() -> None:
    assert check_accuracy("Use async and await; the function will return a promise.", []) == (
        pytest.approx(0.9)
    )
    assert check_accuracy("this is not wrong", ["it is not wrong"]) == pytest.approx(0.6)
    assert check_accuracy("plain words", ["context"]) == pytest.approx(0.8)


def test_completeness_counts_addressed_clauses() -> None:
    assert check_completeness("explain retry and describe cache", "retry happens") == (
        pytest.approx(0.5)
    )
    assert check_completeness("explain retry", "short") == pytest.approx(0.8)


def test_code_validity() -> None:
    assert check_code_validity("Plain prose answer.") == pytest.approx(0.8)
    assert check_code_validity("```python\ndef f(x):\n    return [x]\n```") == pytest.approx(1.0)
    mixed = "```\nok = (1)\n```\nand\n```\nbad = \"open\n```"
    assert check_code_validity(mixed) == pytest.approx(0.5)


def test_consistency_with_context() -> None:
    assert check_consistency("anything", []) == pytest.approx(0.8)
    context = ["retryRequest uses MAX_RETRIES"]
    assert check_consistency("`retryRequest` reads MAX_RETRIES", context) == pytest.approx(0.9)


def test_contradictions_use_whole_words() -> None:
    assert count_contradictions("this is true", "that is false") == 1
    assert count_contradictions("the island", "this is nothing") == 0


def test_relevance_rewards_on_topic_answers() -> None:
    query = "How does retryRequest handle failures?"
    on_topic = "retryRequest handles failures by calling the request again with a backoff delay."
    assert check_relevance(query, on_topic) > check_relevance(query, "Bananas are yellow.")
    assert check_relevance(query, on_topic * 10) <= 0.95


def test_relevance_length_bonus_starts_at_one_hundred_characters() -> None:
    query = "weather forecast"

    short = check_relevance(query, "x" * 99)
    exact = check_relevance(query, "x" * 100)
    long = check_relevance(query, "x" * 2000)

    assert exact - short == pytest.approx(0.1)
    assert long == pytest.approx(short)


def test_agent_performance_reports_bottlenecks() -> None:
    trace = [
        TraceEntry("QueryEnhancer", TraceStatus.STARTING, 0.0),
        TraceEntry("QueryEnhancer", TraceStatus.COMPLETED, 10.0, execution_time_ms=10.0),
        TraceEntry("ContextFetcher", TraceStatus.COMPLETED, 20.0, execution_time_ms=10.0),
        TraceEntry("Planner", TraceStatus.ERROR, 120.0, error="boom", execution_time_ms=100.0),
    ]

    performance = agent_performance(trace)

    assert performance["total_agents"] == 4
    assert performance["successful_agents"] == 2
    assert performance["failed_agents"] == 1
    assert performance["average_execution_time_ms"] == pytest.approx(40.0)
    assert performance["bottlenecks"] == ["Planner"]
