"""Heuristic answer verification with a single bounded improvement pass."""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from code_agent.agent.base import Handler, Stage
from code_agent.agent.synthesizer import Synthesizer, SynthesizerTask
from code_agent.config import VerifierConfig
from code_agent.inference.client import GenerationOptions
from code_agent.types import (
    AgentResponse,
    AgentTask,
    ContextChunk,
    ResponseMetadata,
    TraceEntry,
    TraceStatus,
    VerificationResult,
)

logger = logging.getLogger(__name__)

ISSUE_RELEVANCE = "Response may not fully address the question"
ISSUE_ACCURACY = "Some information may be inaccurate"
ISSUE_COMPLETENESS = "Response may be incomplete"
ISSUE_CODE = "Code examples may have issues"
ISSUE_CONSISTENCY = "Response may be inconsistent with context"

_STOP_WORDS = frozenset(
    {"the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
     "by", "is", "are", "was", "were"}
)
_QUERY_KEYWORD_LIMIT = 15
_QUESTION_WORDS = ("how", "what", "why", "when", "where", "which", "who")
_ANSWER_MARKERS: dict[str, re.Pattern[str]] = {
    "how": re.compile(r"\b(by|through|using)\b"),
    "what": re.compile(r"\b(is|are|means)\b"),
    "why": re.compile(r"\b(because|due to|reason)\b"),
}
_CODE_QUERY_WORDS = ("code", "implement")

_CONTRADICTION_TOKENS = ("not", "never", "cannot", "impossible", "wrong", "incorrect", "false")
_KNOWN_FACTS = (
    re.compile(r"JavaScript.*interpreted", re.I),
    re.compile(r"Python.*indentation", re.I),
    re.compile(r"TypeScript.*superset.*JavaScript", re.I),
    re.compile(r"React.*component", re.I),
    re.compile(r"async.*await", re.I),
)
_TECHNICAL_PAIRS = (("function", "return"), ("class", "constructor"), ("import", "export"))

_CLAUSE_SPLIT = re.compile(r"\band\b|\bor\b|\balso\b")
_TRANSITIONS = ("however", "also", "additionally")

_FENCED = re.compile(r"```[\s\S]*?```")
_FENCE_OPEN = re.compile(r"^```\w*\n?")
_BARE_CODE_LINE = re.compile(
    r"^\s*(function|def|class|const|let|var|import|export|return|if|for|while)\b.*[{}()\[\];:]"
)
_BRACKETS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = frozenset(_BRACKETS.values())

_TECHNICAL_TERMS = (
    re.compile(r"\b[A-Z][a-zA-Z]*[A-Z][a-zA-Z]*\b"),
    re.compile(r"\b[a-z]+[A-Z][a-zA-Z]*\b"),
    re.compile(r"\b[a-z]+_[a-z]+\b"),
    re.compile(r"\b[A-Z]+_[A-Z]+\b"),
)
_ANTONYMS = (
    ("true", "false"),
    ("yes", "no"),
    ("can", "cannot"),
    ("will", "will not"),
    ("is", "is not"),
)

_BOTTLENECK_FACTOR = 1.5


class VerifierTask(str, Enum):
    VERIFY_RESPONSE = "verify_response"
    CHECK_ACCURACY = "check_accuracy"
    ASSESS_COMPLETENESS = "assess_completeness"
    VALIDATE_CODE = "validate_code"


class AnswerState(str, Enum):
    DRAFT = "draft"
    VERIFIED = "verified"


class Verifier(Stage[VerifierTask]):
    """Scores an answer on five checks and improves it at most once.

    The answer moves from ``draft`` to ``verified`` exactly once; when the
    weighted confidence is below the threshold the transition goes through
    one ``IMPROVE_ANSWER`` call to the synthesizer. A failed improvement keeps
    the draft.
    """

    name = "Verifier"
    task_kinds = VerifierTask

    def __init__(self, synthesizer: Synthesizer, config: VerifierConfig | None = None) -> None:
        self.synthesizer = synthesizer
        self.config = config or VerifierConfig()
        super().__init__()

    def _handlers(self) -> Mapping[VerifierTask, Handler]:
        return {
            VerifierTask.VERIFY_RESPONSE: self._verify_response,
            VerifierTask.CHECK_ACCURACY: self._check_accuracy,
            VerifierTask.ASSESS_COMPLETENESS: self._assess_completeness,
            VerifierTask.VALIDATE_CODE: self._validate_code,
        }

    def verify(
        self,
        query: str,
        answer: str,
        context: Sequence[ContextChunk],
        trace: Sequence[TraceEntry] = (),
    ) -> VerificationResult:
        texts = [chunk.content for chunk in context]
        scores = (
            check_relevance(query, answer),
            check_accuracy(answer, texts),
            check_completeness(query, answer),
            check_code_validity(answer),
            check_consistency(answer, texts),
        )
        overall = overall_confidence(scores, self.config.weights)
        issues = [
            issue
            for issue, score in zip(
                (ISSUE_RELEVANCE, ISSUE_ACCURACY, ISSUE_COMPLETENESS, ISSUE_CODE, ISSUE_CONSISTENCY),
                scores,
                strict=True,
            )
            if score < self.config.issue_threshold
        ]

        final_answer, state = self._settle(query, answer, issues, context, overall)
        relevance, accuracy, completeness, code_validity, consistency = scores
        return VerificationResult(
            relevance=relevance,
            accuracy=accuracy,
            completeness=completeness,
            code_validity=code_validity,
            consistency=consistency,
            overall_confidence=overall,
            issues=issues,
            improved=final_answer != answer,
            original_answer=answer,
            final_answer=final_answer,
            agent_performance={**agent_performance(trace), "state": state.value},
        )

    def _settle(
        self,
        query: str,
        answer: str,
        issues: list[str],
        context: Sequence[ContextChunk],
        overall: float,
    ) -> tuple[str, AnswerState]:
        state = AnswerState.DRAFT
        final_answer = answer
        if overall < self.config.improvement_threshold and issues:
            response = self.synthesizer.handle(
                AgentTask(
                    SynthesizerTask.IMPROVE_ANSWER,
                    {
                        "query": query,
                        "answer": answer,
                        "issues": issues,
                        "context": list(context),
                        "context_sections": self.config.improvement_context_sections,
                        "options": GenerationOptions(
                            temperature=self.config.improvement_temperature,
                            top_p=0.9,
                            max_tokens=self.config.improvement_max_tokens,
                        ),
                    },
                )
            )
            if response.success:
                final_answer = str(response.data)
            else:
                logger.warning("Failed to improve response, keeping draft: %s", response.error)
        state = AnswerState.VERIFIED
        return final_answer, state

    def _verify_response(self, data: Mapping[str, Any]) -> AgentResponse:
        result = self.verify(
            str(data["query"]),
            str(data["answer"]),
            list(data.get("context", ())),
            list(data.get("trace", ())),
        )
        return AgentResponse(
            success=True,
            data=result,
            metadata=ResponseMetadata(confidence=result.overall_confidence),
        )

    def _check_accuracy(self, data: Mapping[str, Any]) -> AgentResponse:
        score = check_accuracy(str(data["content"]), [str(s) for s in data.get("sources", ())])
        return AgentResponse(success=True, data=score, metadata=ResponseMetadata(confidence=score))

    def _assess_completeness(self, data: Mapping[str, Any]) -> AgentResponse:
        score = check_completeness(str(data["query"]), str(data["response"]))
        return AgentResponse(success=True, data=score, metadata=ResponseMetadata(confidence=score))

    def _validate_code(self, data: Mapping[str, Any]) -> AgentResponse:
        score = check_code_validity(str(data["code"]))
        return AgentResponse(success=True, data=score, metadata=ResponseMetadata(confidence=score))


def overall_confidence(scores: Sequence[float], weights: Sequence[float]) -> float:
    """Weighted sum of the five check scores.

    Rounded to 12 places so equal component scores reproduce their common
    value exactly.
    """

    return round(
        math.fsum(weight * score for weight, score in zip(weights, scores, strict=True)), 12
    )


def check_relevance(query: str, answer: str) -> float:
    query_lower = query.lower()
    answer_lower = answer.lower()
    query_keywords = _keywords(query_lower)[:_QUERY_KEYWORD_LIMIT]
    answer_keywords = _keywords(answer_lower)
    overlap = sum(
        1
        for keyword in query_keywords
        if any(keyword in other or other in keyword for other in answer_keywords)
    )
    confidence = overlap / max(len(query_keywords), 1) * 0.6

    asked = [word for word in _QUESTION_WORDS if re.search(rf"\b{word}\b", query_lower)]
    if asked and any(
        _ANSWER_MARKERS[word].search(answer_lower) if word in _ANSWER_MARKERS else True
        for word in asked
    ):
        confidence += 0.2

    if 100 <= len(answer) < 2000:
        confidence += 0.1
    if any(word in query_lower for word in _CODE_QUERY_WORDS) and "`" in answer:
        confidence += 0.1
    return min(confidence, 0.95)


def check_accuracy(answer: str, context: Sequence[str]) -> float:
    confidence = 0.7
    if context:
        context_lower = " ".join(context).lower()
        answer_lower = answer.lower()
        contradictions = sum(
            1
            for token in _CONTRADICTION_TOKENS
            if token in answer_lower and token in context_lower
        )
        confidence += 0.1 if contradictions == 0 else -0.05 * contradictions

    if any(pattern.search(answer) for pattern in _KNOWN_FACTS):
        confidence += 0.1
    if any(first in answer and second in answer for first, second in _TECHNICAL_PAIRS):
        confidence += 0.1
    return max(min(confidence, 0.95), 0.3)


def check_completeness(query: str, answer: str) -> float:
    answer_lower = answer.lower()
    clauses = [part for part in _CLAUSE_SPLIT.split(query.lower()) if part.strip()]
    if len(clauses) > 1:
        addressed = sum(
            1
            for clause in clauses
            if any(keyword in answer_lower for keyword in _keywords(clause))
        )
        confidence = addressed / len(clauses)
    else:
        confidence = 0.8

    if len(answer) > 300:
        confidence += 0.1
    if "example" in answer_lower or "```" in answer:
        confidence += 0.1
    if any(word in answer_lower for word in _TRANSITIONS):
        confidence += 0.05
    return min(confidence, 0.95)


def check_code_validity(answer: str) -> float:
    """Fraction of code blocks that look syntactically sane, floored at 0.3.

    Fenced blocks are checked individually. Without fences, lines that read
    like code are treated as one implicit block; an answer with no code at
    all scores 0.8.
    """

    blocks = [_FENCE_OPEN.sub("", block[:-3]) for block in _FENCED.findall(answer)]
    if not blocks:
        remainder = _FENCED.sub("", answer)
        bare = [line for line in remainder.splitlines() if _BARE_CODE_LINE.match(line)]
        if bare:
            blocks = ["\n".join(bare)]
    if not blocks:
        return 0.8

    valid = sum(1 for code in blocks if balanced_brackets(code) and balanced_quotes(code))
    return max(valid / len(blocks), 0.3)


def balanced_brackets(code: str) -> bool:
    stack: list[str] = []
    for char in code:
        if char in _BRACKETS:
            stack.append(char)
        elif char in _CLOSERS:
            if not stack or _BRACKETS[stack.pop()] != char:
                return False
    return not stack


def balanced_quotes(code: str) -> bool:
    for line in code.splitlines():
        stripped = line.strip()
        if stripped and (stripped.count("'") % 2 or stripped.count('"') % 2):
            return False
    return True


def check_consistency(answer: str, context: Sequence[str]) -> float:
    if not context:
        return 0.8

    joined = " ".join(context)
    context_terms = technical_terms(joined)
    answer_terms = set(technical_terms(answer))
    shared = sum(1 for term in context_terms if term in answer_terms)
    confidence = 0.5 + shared / max(len(context_terms), 1) * 0.4
    confidence -= 0.1 * count_contradictions(answer, joined)
    return max(min(confidence, 0.95), 0.3)


def technical_terms(text: str) -> list[str]:
    """camelCase, PascalCase, snake_case and CONSTANT_CASE tokens, first occurrence order."""
    terms: list[str] = []
    for pattern in _TECHNICAL_TERMS:
        terms.extend(pattern.findall(text))
    return list(dict.fromkeys(terms))


def count_contradictions(answer: str, context: str) -> int:
    answer_lower = answer.lower()
    context_lower = context.lower()
    count = 0
    for positive, negative in _ANTONYMS:
        if _has_phrase(answer_lower, positive) and _has_phrase(context_lower, negative):
            count += 1
        if _has_phrase(answer_lower, negative) and _has_phrase(context_lower, positive):
            count += 1
    return count


def agent_performance(trace: Sequence[TraceEntry]) -> dict[str, Any]:
    timed = [entry for entry in trace if entry.execution_time_ms]
    average = (
        sum(entry.execution_time_ms or 0.0 for entry in timed) / len(timed) if timed else 0.0
    )
    return {
        "total_agents": len(trace),
        "successful_agents": sum(1 for entry in trace if entry.status is TraceStatus.COMPLETED),
        "failed_agents": sum(1 for entry in trace if entry.status is TraceStatus.ERROR),
        "average_execution_time_ms": average,
        "bottlenecks": [
            entry.agent_name
            for entry in timed
            if (entry.execution_time_ms or 0.0) > average * _BOTTLENECK_FACTOR
        ],
    }


def _keywords(text: str) -> list[str]:
    return [word for word in text.split() if len(word) > 2 and word not in _STOP_WORDS]


def _has_phrase(text: str, phrase: str) -> bool:
    return re.search(rf"\b{re.escape(phrase)}\b", text) is not None
