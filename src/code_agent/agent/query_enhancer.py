"""Expands one question into several retrieval queries."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Any

from langchain_core.prompts import PromptTemplate

from code_agent.agent import fallback
from code_agent.agent.base import Handler, Stage
from code_agent.config import EnhancerConfig
from code_agent.inference.client import GenerationOptions, InferenceClient, InferenceError
from code_agent.types import AgentResponse, ConversationTurn, ResponseMetadata, clamp_unit

logger = logging.getLogger(__name__)

SEMANTIC_PROMPT = PromptTemplate.from_template(
    """You are an expert at generating semantic search queries for code repositories. Given a user's question and conversation context, generate 3-4 semantically related search queries that would help find relevant code.

Recent conversation:
{history}

Current question: "{query}"

Generate search queries that capture:
1. The core intent and meaning
2. Alternative phrasings and synonyms
3. Related concepts and dependencies
4. Implementation-specific terms

Return only the search queries, one per line:"""
)

TECHNICAL_PROMPT = PromptTemplate.from_template(
    """Generate technical search queries for a code repository based on this question: "{query}"

Focus on:
1. Specific function/method names that might be relevant
2. Class names and interfaces
3. Technical keywords and programming concepts
4. Error messages and debugging terms
5. Configuration and setup terms

Return 3-4 technical search queries, one per line:"""
)

CONTEXTUAL_PROMPT = PromptTemplate.from_template(
    """Based on this conversation history and current question, generate contextual search queries:

Previous conversation:
{history}

Current question: "{query}"

Generate 2-3 queries that consider the conversation context and build upon previous topics:"""
)

_SEMANTIC_TURNS = 3
_CONTEXTUAL_TURNS = 4
_LINES_PER_RESPONSE = 4
_NUMBERING = re.compile(r"^(?:\d+[.)]|[-*•])\s*")
_INTENT_STOP_WORDS = frozenset(
    {"the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by"}
)
_CODE_WORDS = ("function", "class", "method", "variable", "code", "implementation")


class EnhancerTask(str, Enum):
    GENERATE_QUERIES = "generate_queries"
    EXPAND_QUERY = "expand_query"
    ANALYZE_INTENT = "analyze_intent"


class QueryEnhancer(Stage[EnhancerTask]):
    """Runs four query generators concurrently and merges their output.

    The semantic, technical and contextual generators ask the language model
    and each degrade independently to a rule-based generator from
    :mod:`code_agent.agent.fallback`; the structural generator is rule-based
    only. The original question is always the first query.
    """

    name = "QueryEnhancer"
    task_kinds = EnhancerTask

    def __init__(
        self,
        client: InferenceClient,
        generation_model: str,
        config: EnhancerConfig | None = None,
    ) -> None:
        self.client = client
        self.generation_model = generation_model
        self.config = config or EnhancerConfig()
        super().__init__()

    def _handlers(self) -> Mapping[EnhancerTask, Handler]:
        return {
            EnhancerTask.GENERATE_QUERIES: self._generate_queries,
            EnhancerTask.EXPAND_QUERY: self._expand_query,
            EnhancerTask.ANALYZE_INTENT: self._analyze_intent,
        }

    def generate(self, query: str, history: Sequence[ConversationTurn] = ()) -> list[str]:
        return self._generate(query, list(history))[0]

    def _generate_queries(self, data: Mapping[str, Any]) -> AgentResponse:
        query = str(data["query"])
        history = list(data.get("history", ()))
        try:
            queries, degraded = self._generate(query, history)
        except Exception as exc:
            logger.warning("Query generation failed, using rule-based queries: %s", exc)
            return AgentResponse(
                success=True,
                data=fallback.fallback_queries(query),
                error=f"AI generation failed, using fallback: {exc}",
                metadata=ResponseMetadata(confidence=0.6),
            )

        return AgentResponse(
            success=True,
            data=queries,
            metadata=ResponseMetadata(
                confidence=assess_query_quality(queries, query),
                sources=["semantic", "technical", "contextual", "structural"],
                extra={"fallback_generators": degraded},
            ),
        )

    def _expand_query(self, data: Mapping[str, Any]) -> AgentResponse:
        queries, _ = self._semantic(str(data["query"]), [])
        return AgentResponse(success=True, data=queries, metadata=ResponseMetadata(confidence=0.7))

    def _analyze_intent(self, data: Mapping[str, Any]) -> AgentResponse:
        return AgentResponse(
            success=True,
            data=analyze_intent(str(data["query"])),
            metadata=ResponseMetadata(confidence=0.8),
        )

    def _generate(
        self, query: str, history: list[ConversationTurn]
    ) -> tuple[list[str], list[str]]:
        generators: list[tuple[str, Callable[[], tuple[list[str], bool]]]] = [
            ("semantic", lambda: self._semantic(query, history)),
            ("technical", lambda: self._technical(query)),
            ("contextual", lambda: self._contextual(query, history)),
            ("structural", lambda: (fallback.structural_queries(query), False)),
        ]
        with ThreadPoolExecutor(max_workers=len(generators)) as pool:
            futures = [(name, pool.submit(generator)) for name, generator in generators]
            outputs = [(name, future.result()) for name, future in futures]

        merged = [query]
        degraded: list[str] = []
        for name, (queries, used_fallback) in outputs:
            merged.extend(queries)
            if used_fallback:
                degraded.append(name)

        unique = list(dict.fromkeys(item.strip() for item in merged if item.strip()))
        return unique[: self.config.max_queries], degraded

    def _semantic(self, query: str, history: list[ConversationTurn]) -> tuple[list[str], bool]:
        prompt = SEMANTIC_PROMPT.format(
            history=_format_history(history[-_SEMANTIC_TURNS:]), query=query
        )
        return self._ask(prompt, lambda: fallback.synonym_queries(query))

    def _technical(self, query: str) -> tuple[list[str], bool]:
        prompt = TECHNICAL_PROMPT.format(query=query)
        return self._ask(prompt, lambda: fallback.technical_queries(query))

    def _contextual(self, query: str, history: list[ConversationTurn]) -> tuple[list[str], bool]:
        if not history:
            return fallback.standalone_queries(query), False
        prompt = CONTEXTUAL_PROMPT.format(
            history=_format_history(history[-_CONTEXTUAL_TURNS:]), query=query
        )
        return self._ask(prompt, lambda: fallback.standalone_queries(query))

    def _ask(
        self, prompt: str, on_failure: Callable[[], list[str]]
    ) -> tuple[list[str], bool]:
        options = GenerationOptions(
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            max_tokens=self.config.max_tokens,
        )
        try:
            response = self.client.generate(self.generation_model, prompt, options=options)
        except InferenceError as exc:
            logger.warning("Query generator fell back to rules: %s", exc)
            return on_failure(), True
        return parse_query_response(response), False


def parse_query_response(response: str) -> list[str]:
    lines = (_NUMBERING.sub("", line.strip()).strip() for line in response.splitlines())
    return [line for line in lines if line and not line.startswith("#")][:_LINES_PER_RESPONSE]


def assess_query_quality(queries: Sequence[str], original: str) -> float:
    """Diversity of the query set plus coverage of the original words, capped at 0.95."""

    unique_words = set(" ".join(queries).lower().split())
    quality = 0.5 + min(len(unique_words) / 20, 0.3)

    original_words = original.lower().split()
    if original_words:
        covered = sum(
            1 for word in original_words if any(word in query.lower() for query in queries)
        )
        quality += (covered / len(original_words)) * 0.2
    return min(quality, 0.95)


def analyze_intent(query: str) -> dict[str, Any]:
    lowered = query.lower()
    if "how" in lowered:
        kind = "how-to"
    elif "what" in lowered:
        kind = "definition"
    elif "why" in lowered:
        kind = "explanation"
    elif "error" in lowered or "bug" in lowered:
        kind = "debugging"
    elif "implement" in lowered or "create" in lowered:
        kind = "implementation"
    else:
        kind = "general"

    complexity = 0.3 + min(len(query) / 200, 0.3) + (len(query.split()) - 3) * 0.05
    if re.search(r"\b(and|also)\b", lowered):
        complexity += 0.1

    return {
        "type": kind,
        "complexity": clamp_unit(complexity),
        "keywords": [
            word
            for word in lowered.split()
            if len(word) > 2 and word not in _INTENT_STOP_WORDS
        ][:8],
        "requires_code": any(word in lowered for word in _CODE_WORDS),
    }


def _format_history(turns: Sequence[ConversationTurn]) -> str:
    return "\n".join(f"{turn.role}: {turn.content}" for turn in turns)
