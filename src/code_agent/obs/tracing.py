"""Per-query agent traces, timers, and the API-level trace store."""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from code_agent.types import QueryResult, TraceEntry, TraceStatus


class AgentTrace:
    """Append-only log of stage transitions for one query.

    Entries are frozen once appended; :meth:`snapshot` hands out an immutable
    tuple so consumers can never reorder or edit the log.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or (lambda: time.time() * 1000.0)
        self._entries: list[TraceEntry] = []

    def starting(self, agent_name: str) -> TraceEntry:
        return self._append(TraceEntry(agent_name, TraceStatus.STARTING, self._clock()))

    def completed(
        self, agent_name: str, *, result: Any = None, execution_time_ms: float | None = None
    ) -> TraceEntry:
        return self._append(
            TraceEntry(
                agent_name,
                TraceStatus.COMPLETED,
                self._clock(),
                result=result,
                execution_time_ms=execution_time_ms,
            )
        )

    def error(
        self, agent_name: str, error: str, *, execution_time_ms: float | None = None
    ) -> TraceEntry:
        return self._append(
            TraceEntry(
                agent_name,
                TraceStatus.ERROR,
                self._clock(),
                error=error,
                execution_time_ms=execution_time_ms,
            )
        )

    def snapshot(self) -> tuple[TraceEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def _append(self, entry: TraceEntry) -> TraceEntry:
        self._entries.append(entry)
        return entry


@dataclass(slots=True)
class QueryRecord:
    trace_id: str
    timestamp_utc: str
    question: str
    answer: str
    generation_model: str
    embedding_model: str
    latency_ms: float
    failed_stage: str | None
    overall_confidence: float | None
    improved: bool
    sources: list[str]
    tools: list[str]
    enhanced_queries: list[str]
    trace: list[dict[str, Any]] = field(default_factory=list)


class TraceStore:
    """In-memory record of answered queries for API-level observability."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: dict[str, QueryRecord] = {}
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        question: str,
        result: QueryResult,
        generation_model: str,
        embedding_model: str,
        latency_ms: float,
    ) -> QueryRecord:
        verification = result.verification
        record = QueryRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            question=question,
            answer=result.answer,
            generation_model=generation_model,
            embedding_model=embedding_model,
            latency_ms=latency_ms,
            failed_stage=result.failed_stage,
            overall_confidence=verification.overall_confidence if verification else None,
            improved=verification.improved if verification else False,
            sources=_distinct(chunk.filename for chunk in result.context_used),
            tools=[tool.name for tool in result.tools_used],
            enhanced_queries=list(result.enhanced_queries),
            trace=[_entry_dict(entry) for entry in result.trace],
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> QueryRecord:
        with self._lock:
            record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[QueryRecord]:
        with self._lock:
            records = list(self._records.values())
        return records[-limit:] if limit > 0 else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate latency, failure and confidence figures for dashboards."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_requests": 0,
                "failed_requests": 0,
                "improved_answers": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_confidence": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        confidences = [
            record.overall_confidence
            for record in records
            if record.overall_confidence is not None
        ]
        return {
            "total_requests": total,
            "failed_requests": sum(1 for record in records if record.failed_stage),
            "improved_answers": sum(1 for record in records if record.improved),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_confidence": sum(confidences) / len(confidences) if confidences else 0.0,
        }


class Timer:
    """Simple context timer used around stage handlers."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def _entry_dict(entry: TraceEntry) -> dict[str, Any]:
    return {
        "agent_name": entry.agent_name,
        "status": entry.status.value,
        "timestamp_ms": entry.timestamp_ms,
        "error": entry.error,
        "execution_time_ms": entry.execution_time_ms,
    }


def _distinct(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))
