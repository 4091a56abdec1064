"""Deterministic query generators used when the language model is unavailable.

Every function here is pure: the same query always produces the same list,
which keeps enhancement reproducible while the endpoint is down.
"""

from __future__ import annotations

import re

STOP_WORDS = frozenset(
    {"the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
     "by", "is", "are", "was", "were"}
)

SYNONYMS: dict[str, tuple[str, ...]] = {
    "function": ("method", "procedure", "routine"),
    "error": ("exception", "bug", "issue", "problem"),
    "create": ("build", "make", "implement", "generate"),
    "fix": ("repair", "resolve", "solve", "debug"),
    "optimize": ("improve", "enhance", "refactor"),
}

TECHNICAL_TERMS: dict[str, tuple[str, ...]] = {
    "react": ("component", "jsx", "props", "state", "hook"),
    "javascript": ("function", "async", "promise", "callback"),
    "typescript": ("interface", "type", "generic", "decorator"),
    "css": ("style", "class", "selector", "property"),
    "api": ("endpoint", "request", "response", "http"),
    "database": ("query", "table", "schema", "migration"),
}

STRUCTURAL_RULES: tuple[tuple[tuple[str, ...], tuple[str, ...]], ...] = (
    (("file", "module"), ("file structure", "module organization", "import export")),
    (("architecture", "structure"), ("component architecture", "system design", "folder structure")),
    (("config", "setup"), ("configuration files", "environment setup", "build config")),
    (("test",), ("test files", "spec files", "testing framework")),
)

_QUESTION_WORDS = re.compile(r"\b(how|what|why|when|where|which|who)\b", re.IGNORECASE)
_PUNCTUATION = re.compile(r"[?!.]")
_PER_GENERATOR = 3


def keywords(query: str, *, min_length: int = 4) -> list[str]:
    """Lower-cased words of at least ``min_length`` chars, stop words removed."""
    return [
        word
        for word in query.lower().split()
        if len(word) >= min_length and word not in STOP_WORDS
    ]


def synonym_queries(query: str) -> list[str]:
    lowered = query.lower()
    queries: list[str] = []
    for word, replacements in SYNONYMS.items():
        if word not in lowered:
            continue
        pattern = re.compile(re.escape(word), re.IGNORECASE)
        queries.extend(pattern.sub(replacement, query) for replacement in replacements)
    return queries[:_PER_GENERATOR]


def technical_queries(query: str) -> list[str]:
    lowered = query.lower()
    queries: list[str] = []
    for tech, terms in TECHNICAL_TERMS.items():
        if tech in lowered:
            queries.extend(terms[:2])
    for word in keywords(query):
        if word not in queries:
            queries.append(word)
    return queries[:_PER_GENERATOR]


def standalone_queries(query: str) -> list[str]:
    stripped = _PUNCTUATION.sub("", query)
    long_words = [word for word in query.split(" ") if len(word) > 4][:2]
    return [stripped, *long_words]


def structural_queries(query: str) -> list[str]:
    lowered = query.lower()
    queries: list[str] = []
    for triggers, suggestions in STRUCTURAL_RULES:
        if any(trigger in lowered for trigger in triggers):
            queries.extend(suggestions)
    return queries[:_PER_GENERATOR]


def fallback_queries(query: str) -> list[str]:
    """Whole-stage fallback: the query plus keyword and cleaned variants."""

    queries = [query]
    queries.extend(keywords(query)[:3])

    cleaned = " ".join(_QUESTION_WORDS.sub("", query).split())
    if cleaned and cleaned != query:
        queries.append(cleaned)

    lowered = query.lower()
    if "error" in lowered:
        queries.extend(["exception handling", "try catch", "error message"])
    if "function" in lowered:
        queries.extend(["method definition", "function implementation"])

    return list(dict.fromkeys(queries))[:6]
