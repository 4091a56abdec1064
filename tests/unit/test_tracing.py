import logging
from itertools import count

import pytest

from code_agent.logging_config import setup_logging
from code_agent.obs.tracing import AgentTrace, TraceStore
from code_agent.types import (
    ContextChunk,
    LineRange,
    QueryResult,
    ToolCall,
    TraceStatus,
    VerificationResult,
)


def _result(answer: str = "ok", *, failed_stage: str | None = None, improved: bool = False):
    verification = None
    if failed_stage is None:
        verification = VerificationResult(
            relevance=0.8,
            accuracy=0.8,
            completeness=0.8,
            code_validity=0.8,
            consistency=0.8,
            overall_confidence=0.8,
            issues=[],
            improved=improved,
            original_answer=answer,
            final_answer=answer,
        )
    chunk = ContextChunk("body", "src/a.py", LineRange(1, 2), 0.9)
    return QueryResult(
        answer=answer,
        context_used=[chunk, chunk],
        tools_used=[ToolCall("code_analyzer", {}, 0.9)],
        enhanced_queries=["q"],
        trace=(),
        verification=verification,
        failed_stage=failed_stage,
    )


def test_trace_is_append_only_and_ordered() -> None:
    ticks = count()
    trace = AgentTrace(clock=lambda: float(next(ticks)))

    trace.starting("Planner")
    trace.completed("Planner", result={"tools": 2}, execution_time_ms=3.0)
    trace.error("Verifier", "boom")
    snapshot = trace.snapshot()

    assert [entry.status for entry in snapshot] == [
        TraceStatus.STARTING,
        TraceStatus.COMPLETED,
        TraceStatus.ERROR,
    ]
    assert [entry.timestamp_ms for entry in snapshot] == [0.0, 1.0, 2.0]
    assert isinstance(snapshot, tuple)
    with pytest.raises(AttributeError):
        snapshot[0].agent_name = "Other"  # type: ignore[misc]

    trace.starting("Other")
    assert len(snapshot) == 3
    assert len(trace) == 4


def test_store_records_and_summarizes() -> None:
    store = TraceStore()
    first = store.create_record(
        question="q1",
        result=_result(improved=True),
        generation_model="gen",
        embedding_model="embed",
        latency_ms=100.0,
    )
    store.create_record(
        question="q2",
        result=_result(failed_stage="Planner"),
        generation_model="gen",
        embedding_model="embed",
        latency_ms=300.0,
    )

    assert store.get(first.trace_id).sources == ["src/a.py"]
    assert store.get(first.trace_id).tools == ["code_analyzer"]
    summary = store.summary()
    assert summary["total_requests"] == 2
    assert summary["failed_requests"] == 1
    assert summary["improved_answers"] == 1
    assert summary["avg_latency_ms"] == pytest.approx(200.0)
    assert summary["avg_confidence"] == pytest.approx(0.8)
    assert [record.question for record in store.list_recent(1)] == ["q2"]


def test_store_evicts_oldest_and_reports_missing() -> None:
    store = TraceStore(max_records=1)
    old = store.create_record(
        question="old", result=_result(), generation_model="g", embedding_model="e", latency_ms=1.0
    )
    store.create_record(
        question="new", result=_result(), generation_model="g", embedding_model="e", latency_ms=1.0
    )

    assert len(store) == 1
    with pytest.raises(KeyError):
        store.get(old.trace_id)
    assert TraceStore().summary()["total_requests"] == 0


def test_setup_logging_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    import code_agent.logging_config as logging_config

    calls = []
    monkeypatch.setattr(logging_config, "_configured", False)
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    setup_logging("debug")
    setup_logging("info")

    assert len(calls) == 1
    assert calls[0]["level"] == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
