"""Built-in analysis tools attached to plans by the planner."""

from __future__ import annotations

from typing import Any

from code_agent.agent.registry import ToolRegistry, ToolSpec
from code_agent.types import IntentType, QueryAnalysis


def register_builtin_tools(registry: ToolRegistry) -> None:
    """Register the default tool set used by the planner.

    Tools:
    - `code_analyzer`: structure and behaviour analysis for explain/review questions.
    - `debug_assistant`: error classification and severity for debugging questions.
    - `pattern_search`: similar patterns and usage examples.
    - `refactoring_assistant`: optimisation and refactoring guidance.
    - `documentation_helper`: documentation and inline comments.
    - `implementation_assistant`: implementation guidance.
    - `testing_assistant`: test strategy.
    """

    def _analyzer(query: str, analysis: QueryAnalysis, context_count: int) -> dict[str, Any]:
        return {
            "query": query,
            "analysis_type": "deep_analysis",
            "context_chunks": context_count,
            "focus_areas": list(analysis.keywords),
        }

    def _debug(query: str, analysis: QueryAnalysis, context_count: int) -> dict[str, Any]:
        return {
            "query": query,
            "error_type": detect_error_type(query),
            "context_available": context_count > 0,
            "severity": assess_error_severity(query),
        }

    def _pattern(query: str, analysis: QueryAnalysis, context_count: int) -> dict[str, Any]:
        return {
            "query": query,
            "search_scope": "repository",
            "pattern_type": detect_pattern_type(query),
            "include_examples": True,
        }

    def _refactor(query: str, analysis: QueryAnalysis, context_count: int) -> dict[str, Any]:
        return {
            "query": query,
            "optimization_type": detect_optimization_type(query),
            "code_quality_focus": True,
            "performance_focus": "performance" in query.lower(),
        }

    def _docs(query: str, analysis: QueryAnalysis, context_count: int) -> dict[str, Any]:
        return {
            "query": query,
            "documentation_type": "inline_comments",
            "generate_examples": True,
        }

    def _implement(query: str, analysis: QueryAnalysis, context_count: int) -> dict[str, Any]:
        return {
            "query": query,
            "implementation_type": detect_implementation_type(query),
            "include_tests": "test" in query.lower(),
            "follow_best_practices": True,
        }

    def _testing(query: str, analysis: QueryAnalysis, context_count: int) -> dict[str, Any]:
        return {
            "query": query,
            "test_type": detect_test_type(query),
            "coverage_goal": "comprehensive",
            "include_edge_cases": True,
        }

    registry.register(
        ToolSpec(
            name="code_analyzer",
            description="Deep analysis of code structure, patterns, and functionality",
            intents=frozenset({IntentType.EXPLANATION, IntentType.ANALYSIS}),
            confidence=0.9,
            build_parameters=_analyzer,
        )
    )
    registry.register(
        ToolSpec(
            name="debug_assistant",
            description="Error detection, debugging guidance, and issue resolution",
            intents=frozenset({IntentType.DEBUGGING}),
            confidence=0.95,
            build_parameters=_debug,
        )
    )
    registry.register(
        ToolSpec(
            name="pattern_search",
            description="Finding similar patterns, examples, and usage across the codebase",
            intents=frozenset({IntentType.SEARCH}),
            triggers=("similar", "example"),
            confidence=0.85,
            build_parameters=_pattern,
        )
    )
    registry.register(
        ToolSpec(
            name="refactoring_assistant",
            description="Code improvement suggestions and optimization recommendations",
            intents=frozenset({IntentType.OPTIMIZATION}),
            triggers=("refactor",),
            confidence=0.8,
            build_parameters=_refactor,
        )
    )
    registry.register(
        ToolSpec(
            name="documentation_helper",
            description="Documentation analysis and generation assistance",
            intents=frozenset({IntentType.DOCUMENTATION}),
            triggers=("comment",),
            confidence=0.75,
            build_parameters=_docs,
        )
    )
    registry.register(
        ToolSpec(
            name="implementation_assistant",
            description="Implementation guidance and code generation support",
            intents=frozenset({IntentType.IMPLEMENTATION}),
            confidence=0.85,
            build_parameters=_implement,
        )
    )
    registry.register(
        ToolSpec(
            name="testing_assistant",
            description="Test strategy and test code generation assistance",
            intents=frozenset({IntentType.TESTING}),
            confidence=0.8,
            build_parameters=_testing,
        )
    )


def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry)
    return registry


def detect_error_type(query: str) -> str:
    return _first_match(
        query, (("syntax", "syntax"), ("runtime", "runtime"), ("logic", "logic"), ("type", "type"))
    )


def assess_error_severity(query: str) -> str:
    lowered = query.lower()
    if "crash" in lowered or "fail" in lowered:
        return "high"
    if "error" in lowered or "exception" in lowered:
        return "medium"
    return "low"


def detect_pattern_type(query: str) -> str:
    return _first_match(
        query,
        (
            ("design pattern", "design_pattern"),
            ("algorithm", "algorithm"),
            ("structure", "data_structure"),
        ),
    )


def detect_optimization_type(query: str) -> str:
    return _first_match(
        query,
        (("performance", "performance"), ("memory", "memory"), ("readability", "readability")),
    )


def detect_implementation_type(query: str) -> str:
    return _first_match(
        query,
        (("api", "api"), ("component", "component"), ("function", "function"), ("class", "class")),
    )


def detect_test_type(query: str) -> str:
    return _first_match(
        query,
        (("unit", "unit"), ("integration", "integration"), ("e2e", "e2e"), ("end-to-end", "e2e")),
    )


def _first_match(query: str, table: tuple[tuple[str, str], ...]) -> str:
    lowered = query.lower()
    for needle, label in table:
        if needle in lowered:
            return label
    return "general"
