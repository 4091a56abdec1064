"""Configuration models for the code question-answering pipeline."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EndpointConfig(BaseModel):
    """Where the local inference endpoint lives."""

    base_url: str = "http://localhost:11434"
    timeout_seconds: float = Field(default=120.0, gt=0.0)


class EmbeddingConfig(BaseModel):
    """Configures embedding calls and the offline fallback vector."""

    fallback_dimension: int = Field(default=384, ge=1)
    batch_size: int = Field(default=10, ge=1)
    batch_delay_seconds: float = Field(default=0.1, ge=0.0)
    endpoint_confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    fallback_confidence: float = Field(default=0.3, ge=0.0, le=1.0)


class ChunkingConfig(BaseModel):
    """Configures character sliding-window chunking."""

    window_size: int = Field(default=1000, ge=1)
    overlap: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def _overlap_below_window(self) -> "ChunkingConfig":
        if self.overlap >= self.window_size:
            raise ValueError("overlap must be less than window_size")
        return self


class RetrievalConfig(BaseModel):
    """Configures multi-query search and relevance boosting."""

    top_k: int = Field(default=12, ge=1)
    min_score: float = Field(default=0.10, ge=0.0, le=1.0)
    identifier_boost: float = Field(default=0.20, ge=0.0)
    class_boost: float = Field(default=0.20, ge=0.0)
    keyword_boost: float = Field(default=0.10, ge=0.0)
    filename_boost: float = Field(default=0.15, ge=0.0)


class EnhancerConfig(BaseModel):
    """Configures query expansion."""

    max_queries: int = Field(default=8, ge=1)
    temperature: float = Field(default=0.7, ge=0.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    max_tokens: int = Field(default=300, ge=1)


class PlannerConfig(BaseModel):
    """Complexity-formula constants used by the planner."""

    base_complexity: float = Field(default=0.3, ge=0.0, le=1.0)
    length_divisor: float = Field(default=500.0, gt=0.0)
    length_cap: float = Field(default=0.2, ge=0.0)
    per_type: float = Field(default=0.1, ge=0.0)
    conjunction: float = Field(default=0.1, ge=0.0)
    long_query: float = Field(default=0.1, ge=0.0)
    long_query_chars: int = Field(default=200, ge=1)
    verification_threshold: float = Field(default=0.8, ge=0.0, le=1.0)


class SynthesizerConfig(BaseModel):
    """Configures answer generation."""

    temperature: float = Field(default=0.3, ge=0.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    max_tokens: int = Field(default=3000, ge=1)
    stop: list[str] = Field(
        default_factory=lambda: ["Human:", "User:", "## Current Question:"]
    )
    history_turns: int = Field(default=4, ge=0)
    complex_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    stream: bool = False


class VerifierConfig(BaseModel):
    """Verification weights and the improvement gate."""

    weights: tuple[float, float, float, float, float] = (0.25, 0.25, 0.20, 0.15, 0.15)
    improvement_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    issue_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    improvement_context_sections: int = Field(default=3, ge=0)
    improvement_temperature: float = Field(default=0.3, ge=0.0)
    improvement_max_tokens: int = Field(default=2000, ge=1)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> "VerifierConfig":
        if abs(sum(self.weights) - 1.0) > 1e-9:
            raise ValueError("verifier weights must sum to 1.0")
        return self


class PipelineConfig(BaseModel):
    """Immutable snapshot of everything a pipeline run depends on.

    The two model identities travel together with the stage settings so a
    running query never observes a half-applied model switch.
    """

    model_config = ConfigDict(frozen=True)

    generation_model: str = "llama3.2"
    embedding_model: str = "nomic-embed-text"
    endpoint: EndpointConfig = Field(default_factory=EndpointConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    enhancer: EnhancerConfig = Field(default_factory=EnhancerConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    synthesizer: SynthesizerConfig = Field(default_factory=SynthesizerConfig)
    verifier: VerifierConfig = Field(default_factory=VerifierConfig)
