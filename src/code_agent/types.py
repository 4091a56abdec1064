"""Shared domain models."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Literal, TypeVar


def clamp_unit(value: float) -> float:
    """Clamp a score into ``[0, 1]``."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass(frozen=True, slots=True)
class Chunk:
    """An embedded window of a source file.

    Identity is ``(filename, window_index, embedding_model)``; chunks of the
    same file embedded by different models coexist and are never compared.
    """

    filename: str
    file_type: str
    content: str
    window_index: int
    window_start: int
    window_end: int
    start_line: int
    end_line: int
    embedding_model: str
    embedding: tuple[float, ...]
    extracted_identifiers: frozenset[str] = frozenset()
    extracted_classes: frozenset[str] = frozenset()
    extracted_keywords: frozenset[str] = frozenset()
    embedding_fallback: bool = False

    @property
    def id(self) -> str:
        return chunk_id(self.filename, self.window_index, self.embedding_model)

    @property
    def key(self) -> tuple[str, int, str]:
        return (self.filename, self.window_index, self.embedding_model)


def chunk_id(filename: str, window_index: int, embedding_model: str) -> str:
    return f"{filename}-chunk-{window_index:04d}@{embedding_model}"


@dataclass(slots=True)
class SearchResult:
    """A per-query similarity hit, discarded after ranking.

    ``position`` is the chunk's insertion rank within its model and breaks
    score ties when result sets are merged.
    """

    chunk: Chunk
    similarity: float
    relevance_boost: float = 0.0
    position: int = 0

    @property
    def score(self) -> float:
        return clamp_unit(self.similarity + self.relevance_boost)

    def render(self) -> str:
        """Raw match text: a ``[filename:start-end]`` header, then the body."""
        return (
            f"[{self.chunk.filename}:{self.chunk.start_line}-{self.chunk.end_line}]\n"
            f"{self.chunk.content}"
        )


@dataclass(slots=True)
class SearchOutcome:
    """Search results plus whether any chunk existed for the requested model."""

    results: list[SearchResult]
    compatible: bool
    model: str


@dataclass(frozen=True, slots=True)
class LineRange:
    start: int
    end: int


@dataclass(slots=True)
class ContextChunk:
    """Deduplicated, ranked unit of evidence handed to later stages."""

    content: str
    filename: str
    line_range: LineRange
    relevance_score: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        return (
            f"[{self.filename}:{self.line_range.start}-{self.line_range.end}]\n"
            f"{self.content}"
        )


@dataclass(slots=True)
class ConversationTurn:
    role: Literal["user", "assistant"]
    content: str


K = TypeVar("K", bound=Enum)


@dataclass(slots=True)
class AgentTask(Generic[K]):
    """A unit of work for one stage; ``kind`` is that stage's task enum."""

    kind: K
    data: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ResponseMetadata:
    confidence: float | None = None
    execution_time_ms: float | None = None
    sources: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AgentResponse:
    """Uniform stage result."""

    success: bool
    data: Any = None
    error: str | None = None
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)

    @classmethod
    def failure(cls, error: str, data: Any = None) -> "AgentResponse":
        return cls(success=False, data=data, error=error)


@dataclass(slots=True)
class ToolCall:
    """A planner-selected analysis directive; rendered into prompts, never run."""

    name: str
    parameters: dict[str, Any]
    confidence: float
    result: str | None = None


@dataclass(slots=True)
class PlanPhase:
    name: str
    description: str
    tools: list[ToolCall]
    estimated_time: str


@dataclass(slots=True)
class ExecutionPlan:
    phases: list[PlanPhase]
    total_complexity: float
    requires_verification: bool
    total_estimated_time: str = "7-11 seconds"


class IntentType(str, Enum):
    EXPLANATION = "explanation"
    DEBUGGING = "debugging"
    IMPLEMENTATION = "implementation"
    OPTIMIZATION = "optimization"
    SEARCH = "search"
    ANALYSIS = "analysis"
    DOCUMENTATION = "documentation"
    TESTING = "testing"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(slots=True)
class QueryAnalysis:
    types: list[IntentType]
    primary_type: str
    complexity: float
    confidence: float
    keywords: list[str]
    requires_context: bool
    requires_multi_step: bool


@dataclass(slots=True)
class PlanResult:
    analysis: QueryAnalysis
    tools: list[ToolCall]
    plan: ExecutionPlan
    priority: Priority


class TraceStatus(str, Enum):
    STARTING = "starting"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class TraceEntry:
    """One stage transition; never mutated after it is appended."""

    agent_name: str
    status: TraceStatus
    timestamp_ms: float
    result: Any = None
    error: str | None = None
    execution_time_ms: float | None = None


@dataclass(slots=True)
class VerificationResult:
    relevance: float
    accuracy: float
    completeness: float
    code_validity: float
    consistency: float
    overall_confidence: float
    issues: list[str]
    improved: bool
    original_answer: str
    final_answer: str
    agent_performance: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class QueryResult:
    """What the pipeline hands back to the UI collaborator."""

    answer: str
    context_used: list[ContextChunk]
    tools_used: list[ToolCall]
    enhanced_queries: list[str]
    trace: tuple[TraceEntry, ...]
    verification: VerificationResult | None = None
    failed_stage: str | None = None
