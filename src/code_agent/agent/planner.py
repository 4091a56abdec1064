"""Rule-based query analysis, tool selection and execution planning."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from code_agent.agent.base import Handler, Stage
from code_agent.agent.registry import ToolRegistry
from code_agent.agent.tools import default_registry
from code_agent.config import PlannerConfig
from code_agent.types import (
    AgentResponse,
    ExecutionPlan,
    IntentType,
    PlanPhase,
    PlanResult,
    Priority,
    QueryAnalysis,
    ResponseMetadata,
    ToolCall,
)

INTENT_PATTERNS: dict[IntentType, re.Pattern[str]] = {
    IntentType.EXPLANATION: re.compile(r"explain|how does|what is|describe|tell me about", re.I),
    IntentType.DEBUGGING: re.compile(r"error|bug|fix|debug|issue|problem|wrong|fail", re.I),
    IntentType.IMPLEMENTATION: re.compile(r"implement|create|build|make|write|code", re.I),
    IntentType.OPTIMIZATION: re.compile(r"optimize|improve|better|performance|refactor", re.I),
    IntentType.SEARCH: re.compile(r"find|search|look for|show me|where is", re.I),
    IntentType.ANALYSIS: re.compile(r"analyze|review|check|examine|assess", re.I),
    IntentType.DOCUMENTATION: re.compile(r"document|comment|readme|docs", re.I),
    IntentType.TESTING: re.compile(r"test|spec|unit test|integration", re.I),
}

GENERAL_INTENT = "general"

_CONJUNCTION = re.compile(r"\b(and|also)\b", re.I)
_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
        "by", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do",
        "does", "did", "will", "would", "could", "should", "may", "might", "can", "this",
        "that", "these", "those",
    }
)
_CONTEXT_WORDS = (
    "function", "class", "method", "variable", "code", "implementation", "file", "module",
)
_MAX_KEYWORDS = 10
_MULTI_STEP_THRESHOLD = 0.7
_HIGH_PRIORITY_COMPLEXITY = 0.8


class PlannerTask(str, Enum):
    ANALYZE_AND_PLAN = "analyze_and_plan"
    SELECT_TOOLS = "select_tools"


class Planner(Stage[PlannerTask]):
    """Classifies a question and decides which analysis tools frame the answer.

    Nothing here calls the language model; the plan is a deterministic
    function of the query text and the number of context chunks.
    """

    name = "Planner"
    task_kinds = PlannerTask

    def __init__(
        self,
        tool_registry: ToolRegistry | None = None,
        config: PlannerConfig | None = None,
    ) -> None:
        self.tool_registry = tool_registry if tool_registry is not None else default_registry()
        self.config = config or PlannerConfig()
        super().__init__()

    def _handlers(self) -> Mapping[PlannerTask, Handler]:
        return {
            PlannerTask.ANALYZE_AND_PLAN: self._analyze_and_plan,
            PlannerTask.SELECT_TOOLS: self._select_tools,
        }

    def analyze(self, query: str) -> QueryAnalysis:
        types = [intent for intent, pattern in INTENT_PATTERNS.items() if pattern.search(query)]
        complexity = self.complexity(query, len(types))
        lowered = query.lower()
        return QueryAnalysis(
            types=types,
            primary_type=types[0].value if types else GENERAL_INTENT,
            complexity=complexity,
            confidence=0.8 if types else 0.5,
            keywords=extract_keywords(query),
            requires_context=any(word in lowered for word in _CONTEXT_WORDS),
            requires_multi_step=complexity > _MULTI_STEP_THRESHOLD,
        )

    def complexity(self, query: str, type_count: int) -> float:
        cfg = self.config
        score = cfg.base_complexity
        score += min(len(query) / cfg.length_divisor, cfg.length_cap)
        score += type_count * cfg.per_type
        if _CONJUNCTION.search(query):
            score += cfg.conjunction
        if len(query) > cfg.long_query_chars:
            score += cfg.long_query
        return min(score, 1.0)

    def plan(self, query: str, context_count: int = 0) -> PlanResult:
        analysis = self.analyze(query)
        tools = self.tool_registry.select(query, analysis, context_count)
        return PlanResult(
            analysis=analysis,
            tools=tools,
            plan=self.build_plan(analysis, tools),
            priority=priority_for(analysis),
        )

    def build_plan(self, analysis: QueryAnalysis, tools: Sequence[ToolCall]) -> ExecutionPlan:
        analyzers = [tool for tool in tools if "analyzer" in tool.name]
        others = [tool for tool in tools if "analyzer" not in tool.name]
        return ExecutionPlan(
            phases=[
                PlanPhase("analysis", "Analyze query and available context", analyzers, "2-3 seconds"),
                PlanPhase(
                    "processing",
                    "Execute specialized tools based on query type",
                    others,
                    "3-5 seconds",
                ),
                PlanPhase(
                    "synthesis",
                    "Combine results and generate comprehensive response",
                    [],
                    "2-3 seconds",
                ),
            ],
            total_complexity=analysis.complexity,
            requires_verification=analysis.complexity > self.config.verification_threshold,
        )

    def _analyze_and_plan(self, data: Mapping[str, Any]) -> AgentResponse:
        result = self.plan(str(data["query"]), len(data.get("context", ())))
        return AgentResponse(
            success=True,
            data=result,
            metadata=ResponseMetadata(
                confidence=result.analysis.confidence,
                extra={"priority": result.priority.value},
            ),
        )

    def _select_tools(self, data: Mapping[str, Any]) -> AgentResponse:
        query = str(data["query"])
        analysis = self.analyze(query)
        tools = self.tool_registry.select(query, analysis, len(data.get("context", ())))
        return AgentResponse(success=True, data=tools, metadata=ResponseMetadata(confidence=0.7))


def extract_keywords(query: str) -> list[str]:
    return [
        word for word in query.lower().split() if len(word) > 2 and word not in _STOP_WORDS
    ][:_MAX_KEYWORDS]


def priority_for(analysis: QueryAnalysis) -> Priority:
    if IntentType.DEBUGGING in analysis.types:
        return Priority.HIGH
    if analysis.complexity > _HIGH_PRIORITY_COMPLEXITY:
        return Priority.HIGH
    if IntentType.IMPLEMENTATION in analysis.types:
        return Priority.MEDIUM
    return Priority.LOW
