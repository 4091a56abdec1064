"""FastAPI entrypoint for ingest/query/model/trace endpoints."""

from __future__ import annotations

import os
import threading
from dataclasses import asdict
from typing import Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, model_validator

from code_agent.agent.orchestrator import Orchestrator
from code_agent.config import EndpointConfig, PipelineConfig
from code_agent.inference.client import InferenceClient
from code_agent.logging_config import setup_logging
from code_agent.obs.tracing import Timer, TraceStore
from code_agent.retrieval.vector_store import InMemoryVectorIndex, SqliteVectorIndex, VectorIndex
from code_agent.types import ConversationTurn


def _create_index() -> VectorIndex:
    path = os.getenv("CODE_AGENT_INDEX_PATH")
    if not path:
        return InMemoryVectorIndex()
    return SqliteVectorIndex(path)


def _create_orchestrator() -> Orchestrator:
    defaults = PipelineConfig()
    config = PipelineConfig(
        generation_model=os.getenv("CODE_AGENT_MODEL", defaults.generation_model),
        embedding_model=os.getenv("CODE_AGENT_EMBEDDING_MODEL", defaults.embedding_model),
        endpoint=EndpointConfig(
            base_url=os.getenv("CODE_AGENT_ENDPOINT", defaults.endpoint.base_url)
        ),
    )
    return Orchestrator(config, InferenceClient(config.endpoint), _create_index())


class IngestRequest(BaseModel):
    path: str | None = None
    filename: str | None = None
    text: str | None = None

    @model_validator(mode="after")
    def _path_or_text(self) -> "IngestRequest":
        if self.path is None and (self.filename is None or self.text is None):
            raise ValueError("provide either 'path' or both 'filename' and 'text'")
        return self


class TurnModel(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class QueryRequest(BaseModel):
    question: str = Field(min_length=1)
    chat_history: list[TurnModel] = Field(default_factory=list)
    corpus: list[str] | None = None


class ModelsRequest(BaseModel):
    generation_model: str | None = None
    embedding_model: str | None = None


class SourceSearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=20)


setup_logging(os.getenv("CODE_AGENT_LOG_LEVEL", "INFO"))

app = FastAPI(title="Code Agent", version="0.1.0")

_orchestrator = _create_orchestrator()
_orchestrator_lock = threading.Lock()
_trace_store = TraceStore()


def _current() -> Orchestrator:
    with _orchestrator_lock:
        return _orchestrator


@app.get("/health")
def health() -> dict[str, Any]:
    orchestrator = _current()
    return {
        "status": "ok",
        "generation_model": orchestrator.generation_model,
        "embedding_model": orchestrator.embedding_model,
        "indexed_chunks": orchestrator.index.count(orchestrator.embedding_model),
        "indexed_models": orchestrator.index.models(),
        "trace_count": len(_trace_store),
    }


@app.post("/ingest")
def ingest(request: IngestRequest) -> dict[str, Any]:
    orchestrator = _current()
    pipeline = orchestrator.ingestion()
    try:
        if request.path is not None:
            reports = pipeline.ingest_path(request.path, orchestrator.embedding_model)
        else:
            reports = [
                pipeline.ingest_text(
                    request.filename or "", request.text or "", orchestrator.embedding_model
                )
            ]
    except (OSError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return {
        "embedding_model": orchestrator.embedding_model,
        "files": [asdict(report) for report in reports],
        "chunks_created": sum(report.chunk_count for report in reports),
        "fallback_embeddings": sum(report.fallback_count for report in reports),
    }


@app.post("/query")
def query(request: QueryRequest) -> dict[str, Any]:
    orchestrator = _current()
    corpus = (
        request.corpus
        if request.corpus is not None
        else orchestrator.index.filenames(orchestrator.embedding_model)
    )
    history = [ConversationTurn(turn.role, turn.content) for turn in request.chat_history]

    with Timer() as timer:
        result = orchestrator.process_query(request.question, corpus, history)
    record = _trace_store.create_record(
        question=request.question,
        result=result,
        generation_model=orchestrator.generation_model,
        embedding_model=orchestrator.embedding_model,
        latency_ms=timer.elapsed_ms,
    )
    return {
        "trace_id": record.trace_id,
        "answer": result.answer,
        "failed_stage": result.failed_stage,
        "enhanced_queries": result.enhanced_queries,
        "context_used": [asdict(chunk) for chunk in result.context_used],
        "tools_used": [asdict(tool) for tool in result.tools_used],
        "verification": asdict(result.verification) if result.verification else None,
        "trace": record.trace,
        "latency_ms": record.latency_ms,
    }


@app.post("/models")
def switch_models(request: ModelsRequest) -> dict[str, Any]:
    global _orchestrator
    with _orchestrator_lock:
        _orchestrator = _orchestrator.with_models(
            generation_model=request.generation_model,
            embedding_model=request.embedding_model,
        )
        current = _orchestrator
    return {
        "generation_model": current.generation_model,
        "embedding_model": current.embedding_model,
        "indexed_chunks": current.index.count(current.embedding_model),
    }


@app.post("/sources/search")
def source_search(request: SourceSearchRequest) -> dict[str, Any]:
    orchestrator = _current()
    outcome = orchestrator.fetcher.search_similar(request.query, request.top_k)
    return {
        "embedding_model": orchestrator.embedding_model,
        "compatible": outcome.compatible,
        "items": [
            {
                "chunk_id": result.chunk.id,
                "filename": result.chunk.filename,
                "start_line": result.chunk.start_line,
                "end_line": result.chunk.end_line,
                "similarity": result.similarity,
                "boost": result.relevance_boost,
                "score": result.score,
                "text": result.chunk.content,
            }
            for result in outcome.results
        ],
    }


@app.get("/traces")
def traces(limit: int = 20) -> dict[str, Any]:
    records = [asdict(record) for record in _trace_store.list_recent(limit=limit)]
    return {"items": records}


@app.get("/traces/{trace_id}")
def trace_detail(trace_id: str) -> dict[str, Any]:
    try:
        record = _trace_store.get(trace_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return asdict(record)


@app.get("/metrics")
def metrics() -> dict[str, Any]:
    return _trace_store.summary()
