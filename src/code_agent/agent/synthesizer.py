"""Answer generation from context, selected tools and conversation history."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

from langchain_core.prompts import PromptTemplate

from code_agent.agent.base import Handler, Stage
from code_agent.agent.registry import ToolRegistry
from code_agent.agent.tools import default_registry
from code_agent.config import SynthesizerConfig
from code_agent.inference.client import GenerationOptions, InferenceClient, InferenceError
from code_agent.types import (
    AgentResponse,
    ContextChunk,
    ConversationTurn,
    ResponseMetadata,
    ToolCall,
)

logger = logging.getLogger(__name__)

SYSTEM_PREAMBLE = """You are an elite software engineering AI assistant with deep expertise across all programming languages, frameworks, and development practices. You excel at:

**Code Analysis & Understanding**: Deep comprehension of complex codebases and architectural patterns
**Problem Solving**: Identifying issues, debugging, and providing practical solutions
**Technical Communication**: Explaining complex concepts clearly and providing actionable guidance
**Best Practices**: Recommending industry standards, design patterns, and optimization strategies
**Contextual Intelligence**: Leveraging available code context to provide precise, relevant answers

## Response Excellence Standards:
- **Precision**: Provide accurate, technically sound information
- **Clarity**: Use clear explanations with appropriate technical depth
- **Practicality**: Focus on actionable insights and real-world applicability
- **Context Awareness**: Leverage the specific codebase context provided
- **Completeness**: Address all aspects of the question comprehensively
- **Code Quality**: When showing code, follow best practices and include comments

"""

CONTEXT_CLAUSE = PromptTemplate.from_template(
    """## Available Code Context:
You have access to {count} relevant code sections from the user's repository. These provide specific implementation details, patterns, and context about their codebase. Use this context to give precise, codebase-specific answers.

"""
)

TOOLS_CLAUSE = PromptTemplate.from_template(
    """## Active Analysis Tools:
{tools}

These tools have been selected based on your query type and will inform the analysis approach.

"""
)

COMPLEX_CLAUSE = """## Complex Query Handling:
This is a complex, multi-faceted question. Structure your response with:
1. **Overview**: Brief summary of what you'll address
2. **Detailed Analysis**: In-depth examination of each aspect
3. **Code Examples**: Relevant code snippets with explanations
4. **Recommendations**: Specific actionable advice
5. **Next Steps**: Suggested follow-up actions

"""

TASK_CLAUSE = """## Current Task:
Provide a comprehensive, expert-level response to the user's question using all available context and tools."""

QUESTION_SECTION = PromptTemplate.from_template(
    """

## Current Question:
{query}

Provide a comprehensive, expert response:"""
)

IMPROVEMENT_PROMPT = PromptTemplate.from_template(
    """You are a response improvement specialist. Given a user query, an initial response, and identified issues, provide an improved version of the response.

Original Query: "{query}"

Initial Response:
{answer}

Identified Issues:
{issues}

Available Context:
{context}

Please provide an improved response that addresses the identified issues while maintaining accuracy and relevance. Focus on:
1. Directly addressing the user's question
2. Using accurate information from the context
3. Providing complete and comprehensive answers
4. Including valid code examples if relevant
5. Maintaining consistency with the provided context

Improved Response:"""
)

EXPLAIN_CODE_PROMPT = PromptTemplate.from_template(
    """Explain the following code in detail, including its purpose, functionality, and any notable patterns or practices:

```
{code}
```
{context}
Provide a comprehensive explanation covering:
1. Overall purpose and functionality
2. Key components and their roles
3. Notable patterns or techniques used
4. Potential improvements or considerations"""
)

SUMMARY_PROMPT = PromptTemplate.from_template(
    """Generate a concise summary of the following {kind} content:

{content}

Provide a clear, informative summary that captures the key points and main insights."""
)


class SynthesizerTask(str, Enum):
    ANSWER_QUESTION = "answer_question"
    IMPROVE_ANSWER = "improve_answer"
    EXPLAIN_CODE = "explain_code"
    GENERATE_SUMMARY = "generate_summary"


class Synthesizer(Stage[SynthesizerTask]):
    """Builds the answer prompt and calls the generation endpoint.

    Endpoint failures are reported as failed responses; no substitute text
    is ever produced.
    """

    name = "QuestionAnswering"
    task_kinds = SynthesizerTask

    def __init__(
        self,
        client: InferenceClient,
        generation_model: str,
        tool_registry: ToolRegistry | None = None,
        config: SynthesizerConfig | None = None,
    ) -> None:
        self.client = client
        self.generation_model = generation_model
        self.tool_registry = tool_registry if tool_registry is not None else default_registry()
        self.config = config or SynthesizerConfig()
        super().__init__()

    def _handlers(self) -> Mapping[SynthesizerTask, Handler]:
        return {
            SynthesizerTask.ANSWER_QUESTION: self._answer_question,
            SynthesizerTask.IMPROVE_ANSWER: self._improve_answer,
            SynthesizerTask.EXPLAIN_CODE: self._explain_code,
            SynthesizerTask.GENERATE_SUMMARY: self._generate_summary,
        }

    def build_prompt(
        self,
        query: str,
        context: Sequence[ContextChunk],
        tools: Sequence[ToolCall],
        complexity: float,
        history: Sequence[ConversationTurn] = (),
    ) -> str:
        """Assemble the full answer prompt.

        The system part is gated on context, tools and complexity; the body
        then appends context sections, tool summaries, recent turns and the
        question, in that order.
        """

        parts = [SYSTEM_PREAMBLE]
        if context:
            parts.append(CONTEXT_CLAUSE.format(count=len(context)))
        if tools:
            listing = "\n".join(
                f"- **{tool.name.replace('_', ' ').upper()}**: "
                f"{self.tool_registry.describe(tool.name)}"
                for tool in tools
            )
            parts.append(TOOLS_CLAUSE.format(tools=listing))
        if complexity > self.config.complex_threshold:
            parts.append(COMPLEX_CLAUSE)
        parts.append(TASK_CLAUSE)

        if context:
            parts.append("\n\n## Code Context:\n")
            parts.extend(
                f"### Context {index}:\n{chunk.render()}\n\n"
                for index, chunk in enumerate(context, start=1)
            )
        if tools:
            parts.append("\n\n## Tool Analysis Results:\n")
            parts.extend(
                f"**{tool.name}**: {tool.result or 'Analysis completed'}\n" for tool in tools
            )
        recent = list(history)[-self.config.history_turns :] if self.config.history_turns else []
        if recent:
            parts.append("\n\n## Recent Conversation:\n")
            parts.extend(
                f"{'Human' if turn.role == 'user' else 'Assistant'}: {turn.content}\n\n"
                for turn in recent
            )
        parts.append(QUESTION_SECTION.format(query=query))
        return "".join(parts)

    def answer(
        self,
        query: str,
        context: Sequence[ContextChunk],
        tools: Sequence[ToolCall],
        complexity: float,
        history: Sequence[ConversationTurn] = (),
    ) -> AgentResponse:
        prompt = self.build_prompt(query, context, tools, complexity, history)
        try:
            text = self.client.generate(
                self.generation_model,
                prompt,
                options=self._options(),
                stream=self.config.stream,
            )
        except InferenceError as exc:
            return AgentResponse.failure(f"Failed to generate response: {exc}")
        return AgentResponse(
            success=True,
            data=text,
            metadata=ResponseMetadata(
                confidence=answer_confidence(text, len(context), len(tools)),
                sources=[chunk.filename for chunk in context],
            ),
        )

    def improve(
        self,
        query: str,
        answer: str,
        issues: Sequence[str],
        context: Sequence[ContextChunk],
        *,
        options: GenerationOptions | None = None,
        context_sections: int = 3,
    ) -> str:
        """Regenerate ``answer`` addressing ``issues``.

        Raises :class:`InferenceError` when the endpoint fails so the caller
        decides whether to keep the original.
        """

        prompt = IMPROVEMENT_PROMPT.format(
            query=query,
            answer=answer,
            issues="\n".join(f"- {issue}" for issue in issues),
            context="\n\n".join(chunk.render() for chunk in context[:context_sections]),
        )
        return self.client.generate(
            self.generation_model,
            prompt,
            options=options or GenerationOptions(temperature=0.3, top_p=0.9, max_tokens=2000),
        )

    def _answer_question(self, data: Mapping[str, Any]) -> AgentResponse:
        return self.answer(
            str(data["query"]),
            list(data.get("context", ())),
            list(data.get("tools", ())),
            float(data.get("complexity", 0.5)),
            list(data.get("history", ())),
        )

    def _improve_answer(self, data: Mapping[str, Any]) -> AgentResponse:
        try:
            text = self.improve(
                str(data["query"]),
                str(data["answer"]),
                list(data.get("issues", ())),
                list(data.get("context", ())),
                options=data.get("options"),
                context_sections=int(data.get("context_sections", 3)),
            )
        except InferenceError as exc:
            return AgentResponse.failure(f"Failed to improve response: {exc}")
        if not text.strip():
            return AgentResponse.failure("Improvement produced an empty response")
        return AgentResponse(success=True, data=text, metadata=ResponseMetadata(confidence=0.8))

    def _explain_code(self, data: Mapping[str, Any]) -> AgentResponse:
        context = [str(item) for item in data.get("context", ())]
        extra = f"\nAdditional context:\n{chr(10).join(context)}\n" if context else ""
        prompt = EXPLAIN_CODE_PROMPT.format(code=str(data["code"]), context=extra)
        return self._single_shot(prompt, confidence=0.8)

    def _generate_summary(self, data: Mapping[str, Any]) -> AgentResponse:
        prompt = SUMMARY_PROMPT.format(
            kind=str(data.get("type", "general")), content=str(data["content"])
        )
        return self._single_shot(prompt, confidence=0.7)

    def _single_shot(self, prompt: str, *, confidence: float) -> AgentResponse:
        try:
            text = self.client.generate(self.generation_model, prompt, options=self._options())
        except InferenceError as exc:
            return AgentResponse.failure(str(exc))
        return AgentResponse(
            success=True, data=text, metadata=ResponseMetadata(confidence=confidence)
        )

    def _options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            max_tokens=self.config.max_tokens,
            stop=list(self.config.stop),
        )


def answer_confidence(answer: str, context_count: int, tool_count: int) -> float:
    confidence = 0.5
    if len(answer) > 500:
        confidence += 0.1
    if len(answer) > 1000:
        confidence += 0.1
    confidence += 0.05 * min(context_count, 4)
    confidence += 0.05 * min(tool_count, 3)
    if "`" in answer:
        confidence += 0.1
    return min(confidence, 0.95)
