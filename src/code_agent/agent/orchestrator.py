"""Sequential five-stage pipeline with per-query tracing."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from code_agent.agent.base import Stage
from code_agent.agent.context_fetcher import ContextFetcher, FetcherTask
from code_agent.agent.planner import Planner, PlannerTask
from code_agent.agent.query_enhancer import EnhancerTask, QueryEnhancer
from code_agent.agent.registry import ToolRegistry
from code_agent.agent.synthesizer import Synthesizer, SynthesizerTask
from code_agent.agent.tools import default_registry
from code_agent.agent.verifier import Verifier, VerifierTask
from code_agent.config import PipelineConfig
from code_agent.inference.client import InferenceClient
from code_agent.ingest.chunker import SlidingWindowChunker
from code_agent.ingest.embedder import Embedder, EndpointEmbedder
from code_agent.ingest.metadata import MetadataExtractor
from code_agent.ingest.parser import SourceParser
from code_agent.ingest.pipeline import IngestPipeline
from code_agent.obs.tracing import AgentTrace
from code_agent.retrieval.fusion import RelevanceBooster
from code_agent.retrieval.retriever import MultiQueryRetriever
from code_agent.retrieval.vector_store import InMemoryVectorIndex, VectorIndex
from code_agent.types import (
    AgentResponse,
    AgentTask,
    ContextChunk,
    ConversationTurn,
    PlanResult,
    QueryResult,
    VerificationResult,
)

logger = logging.getLogger(__name__)

DEGRADED_ANSWER = (
    "I encountered an error while processing your request. "
    "The agent system failed at: {stage}. Please try again."
)


class StageFailure(RuntimeError):
    """A pipeline stage returned an unsuccessful response."""

    def __init__(self, stage: str, message: str) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.message = message


class Orchestrator:
    """Owns one configuration snapshot and the stages built from it.

    Stages run strictly in order: enhance, fetch, plan, synthesize, verify.
    Switching models never mutates an orchestrator; :meth:`with_models`
    returns a new one, so a query keeps the models it started with.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        client: InferenceClient | None = None,
        index: VectorIndex | None = None,
        *,
        tool_registry: ToolRegistry | None = None,
        embedder: Embedder | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self.client = client or InferenceClient(self.config.endpoint)
        self.index = index if index is not None else InMemoryVectorIndex()
        self.tool_registry = tool_registry if tool_registry is not None else default_registry()
        self.embedder = embedder or EndpointEmbedder(self.client, self.config.embedding)
        self._clock = clock

        retriever = MultiQueryRetriever(
            self.index,
            self.embedder,
            RelevanceBooster(self.config.retrieval),
            self.config.retrieval,
        )
        self.enhancer = QueryEnhancer(
            self.client, self.config.generation_model, self.config.enhancer
        )
        self.fetcher = ContextFetcher(retriever, self.config.embedding_model, self.config.retrieval)
        self.planner = Planner(self.tool_registry, self.config.planner)
        self.synthesizer = Synthesizer(
            self.client, self.config.generation_model, self.tool_registry, self.config.synthesizer
        )
        self.verifier = Verifier(self.synthesizer, self.config.verifier)

    @property
    def generation_model(self) -> str:
        return self.config.generation_model

    @property
    def embedding_model(self) -> str:
        return self.config.embedding_model

    def with_models(
        self,
        *,
        generation_model: str | None = None,
        embedding_model: str | None = None,
    ) -> "Orchestrator":
        updates: dict[str, str] = {}
        if generation_model:
            updates["generation_model"] = generation_model
        if embedding_model:
            updates["embedding_model"] = embedding_model
        return Orchestrator(
            self.config.model_copy(update=updates),
            self.client,
            self.index,
            tool_registry=self.tool_registry,
            embedder=self.embedder,
            clock=self._clock,
        )

    def ingestion(self) -> IngestPipeline:
        """Ingestion pipeline writing into this orchestrator's index."""
        return IngestPipeline(
            parser=SourceParser(),
            chunker=SlidingWindowChunker(self.config.chunking),
            extractor=MetadataExtractor(),
            embedder=self.embedder,
            index=self.index,
            config=self.config.embedding,
        )

    def process_query(
        self,
        text: str,
        corpus: Sequence[str] = (),
        history: Sequence[ConversationTurn] = (),
    ) -> QueryResult:
        """Answer ``text`` against the indexed ``corpus``.

        ``corpus`` names the files the caller has loaded; an empty corpus
        skips retrieval entirely. A failed stage never raises: the result
        carries a one-line apology naming the stage and the partial trace.
        """

        trace = AgentTrace(self._clock)
        turns = list(history)
        try:
            queries: list[str] = self._run(
                trace,
                self.enhancer,
                AgentTask(EnhancerTask.GENERATE_QUERIES, {"query": text, "history": turns}),
            ).data
            context: list[ContextChunk] = self._run(
                trace,
                self.fetcher,
                AgentTask(
                    FetcherTask.FETCH_CONTEXT,
                    {"queries": queries, "corpus_available": bool(corpus)},
                ),
            ).data
            plan: PlanResult = self._run(
                trace,
                self.planner,
                AgentTask(PlannerTask.ANALYZE_AND_PLAN, {"query": text, "context": context}),
            ).data
            answer = str(
                self._run(
                    trace,
                    self.synthesizer,
                    AgentTask(
                        SynthesizerTask.ANSWER_QUESTION,
                        {
                            "query": text,
                            "context": context,
                            "tools": plan.tools,
                            "complexity": plan.analysis.complexity,
                            "history": turns,
                        },
                    ),
                ).data
            )
        except StageFailure as failure:
            logger.error("Pipeline aborted at %s: %s", failure.stage, failure.message)
            return QueryResult(
                answer=DEGRADED_ANSWER.format(stage=failure.stage),
                context_used=[],
                tools_used=[],
                enhanced_queries=[text],
                trace=trace.snapshot(),
                failed_stage=failure.stage,
            )

        verification = self._verify(trace, text, answer, context)
        return QueryResult(
            answer=verification.final_answer if verification else answer,
            context_used=context,
            tools_used=plan.tools,
            enhanced_queries=queries,
            trace=trace.snapshot(),
            verification=verification,
        )

    def _verify(
        self, trace: AgentTrace, query: str, answer: str, context: list[ContextChunk]
    ) -> VerificationResult | None:
        try:
            response = self._run(
                trace,
                self.verifier,
                AgentTask(
                    VerifierTask.VERIFY_RESPONSE,
                    {
                        "query": query,
                        "answer": answer,
                        "context": context,
                        "trace": trace.snapshot(),
                    },
                ),
            )
        except StageFailure as failure:
            logger.warning("Verification failed, keeping synthesized answer: %s", failure.message)
            return None
        return response.data

    def _run(self, trace: AgentTrace, stage: Stage[Any], task: AgentTask[Any]) -> AgentResponse:
        trace.starting(stage.name)
        response = stage.handle(task)
        elapsed = response.metadata.execution_time_ms
        if not response.success:
            error = response.error or "unknown error"
            trace.error(stage.name, error, execution_time_ms=elapsed)
            raise StageFailure(stage.name, error)
        trace.completed(stage.name, result=response.data, execution_time_ms=elapsed)
        return response
