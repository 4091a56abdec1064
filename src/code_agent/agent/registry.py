"""Analysis tool catalog built on Pydantic v2 models."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from code_agent.types import IntentType, QueryAnalysis, ToolCall

UNKNOWN_TOOL_DESCRIPTION = "Specialized analysis tool"

ParameterBuilder = Callable[[str, QueryAnalysis, int], dict[str, Any]]


class ToolSpec(BaseModel):
    """Declarative description of one analysis directive.

    Tools are never executed; the planner attaches them to a plan and the
    synthesizer renders them into the prompt. A tool is selected when any of
    its ``intents`` was detected or any ``triggers`` word occurs in the query.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(min_length=1)
    description: str
    intents: frozenset[IntentType] = frozenset()
    triggers: tuple[str, ...] = ()
    confidence: float = Field(ge=0.0, le=1.0)
    build_parameters: ParameterBuilder

    def applies_to(self, query: str, analysis: QueryAnalysis) -> bool:
        lowered = query.lower()
        return bool(self.intents.intersection(analysis.types)) or any(
            trigger in lowered for trigger in self.triggers
        )

    def to_call(self, query: str, analysis: QueryAnalysis, context_count: int) -> ToolCall:
        return ToolCall(
            name=self.name,
            parameters=self.build_parameters(query, analysis, context_count),
            confidence=self.confidence,
        )


class ToolRegistry:
    """Ordered store of tool specs; selection follows registration order."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def describe(self, name: str) -> str:
        spec = self._tools.get(name)
        return spec.description if spec is not None else UNKNOWN_TOOL_DESCRIPTION

    def select(
        self, query: str, analysis: QueryAnalysis, context_count: int = 0
    ) -> list[ToolCall]:
        return [
            spec.to_call(query, analysis, context_count)
            for spec in self._tools.values()
            if spec.applies_to(query, analysis)
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
