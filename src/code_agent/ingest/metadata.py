"""File-type detection and rule-table driven metadata extraction.

Extraction is data-driven: ``LANGUAGE_RULES`` maps a language family to an
ordered tuple of regex rules plus a keyword vocabulary. Supporting a new
language means adding a family entry and mapping file types onto it in
``FAMILY_BY_FILE_TYPE``; no extraction code changes.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Literal

RuleKind = Literal["function", "class", "variable", "import", "export"]

_JS_NAME = r"[a-zA-Z_$][a-zA-Z0-9_$]*"
_PY_NAME = r"[a-zA-Z_][a-zA-Z0-9_]*"

FILE_TYPES: dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript-react",
    "js": "javascript",
    "jsx": "javascript-react",
    "py": "python",
    "java": "java",
    "cpp": "cpp",
    "c": "c",
    "cs": "csharp",
    "go": "go",
    "rs": "rust",
    "php": "php",
    "rb": "ruby",
    "swift": "swift",
    "kt": "kotlin",
    "md": "markdown",
    "json": "json",
    "xml": "xml",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "sql": "sql",
    "yaml": "yaml",
    "yml": "yaml",
}


@dataclass(frozen=True, slots=True)
class ExtractionRule:
    kind: RuleKind
    pattern: re.Pattern[str]


@dataclass(frozen=True, slots=True)
class LanguageRules:
    rules: tuple[ExtractionRule, ...]
    keywords: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class PatternRule:
    label: str
    required: tuple[re.Pattern[str], ...]

    def matches(self, content: str) -> bool:
        return all(pattern.search(content) for pattern in self.required)


def _rule(kind: RuleKind, pattern: str, flags: int = 0) -> ExtractionRule:
    return ExtractionRule(kind=kind, pattern=re.compile(pattern, flags))


def _pattern(label: str, *patterns: str) -> PatternRule:
    return PatternRule(label=label, required=tuple(re.compile(pattern) for pattern in patterns))


_JS_IMPORT = _rule("import", r"import\s+.*?\s+from\s+['\"]([^'\"]+)['\"]")
_JS_EXPORT = _rule(
    "export", rf"export\s+(?:default\s+)?(?:class|function|const|let|var)\s+({_JS_NAME})"
)

LANGUAGE_RULES: dict[str, LanguageRules] = {
    "typescript": LanguageRules(
        rules=(
            _rule("function", rf"(?:export\s+)?(?:async\s+)?function\s+({_JS_NAME})\s*\("),
            _rule("function", rf"(?:const|let|var)\s+({_JS_NAME})\s*=\s*(?:async\s+)?\("),
            _rule("function", rf"({_JS_NAME})\s*:\s*\([^)]*\)\s*=>"),
            _rule("class", rf"(?:export\s+)?(?:abstract\s+)?class\s+({_JS_NAME})"),
            _rule("class", rf"(?:export\s+)?interface\s+({_JS_NAME})"),
            _rule("variable", rf"(?:const|let|var)\s+({_JS_NAME})"),
            _JS_IMPORT,
            _JS_EXPORT,
        ),
        keywords=("async", "await", "interface", "type", "enum", "namespace", "module", "declare"),
    ),
    "javascript": LanguageRules(
        rules=(
            _rule("function", rf"(?:export\s+)?(?:async\s+)?function\s+({_JS_NAME})\s*\("),
            _rule("function", rf"(?:const|let|var)\s+({_JS_NAME})\s*=\s*(?:async\s+)?\("),
            _rule("class", rf"(?:export\s+)?class\s+({_JS_NAME})"),
            _rule("variable", rf"(?:const|let|var)\s+({_JS_NAME})"),
            _JS_IMPORT,
            _JS_EXPORT,
        ),
        keywords=("async", "await", "function", "class", "const", "let", "var", "import", "export"),
    ),
    "python": LanguageRules(
        rules=(
            _rule("function", rf"(?:async\s+)?def\s+({_PY_NAME})\s*\("),
            _rule("class", rf"class\s+({_PY_NAME})"),
            _rule("variable", rf"^({_PY_NAME})\s*=", re.MULTILINE),
            _rule("import", rf"from\s+({_PY_NAME}(?:\.{_PY_NAME})*)\s+import"),
            _rule("import", rf"^\s*import\s+({_PY_NAME})", re.MULTILINE),
        ),
        keywords=("def", "class", "import", "from", "async", "await", "lambda", "yield"),
    ),
    # Files without a dedicated family: C-like declarations cover most of them.
    "generic": LanguageRules(
        rules=(
            _rule("function", rf"(?:export\s+)?(?:async\s+)?function\s+({_JS_NAME})\s*\("),
            _rule("function", rf"(?:const|let|var)\s+({_JS_NAME})\s*=\s*(?:async\s+)?\("),
            _rule("class", rf"(?:export\s+)?class\s+({_JS_NAME})"),
            _rule("variable", rf"(?:const|let|var)\s+({_JS_NAME})"),
            _JS_IMPORT,
            _JS_EXPORT,
        ),
        keywords=("async", "await", "function", "class", "const", "let", "var", "import", "export"),
    ),
}

FAMILY_BY_FILE_TYPE: dict[str, str] = {
    "typescript": "typescript",
    "typescript-react": "typescript",
    "javascript": "javascript",
    "javascript-react": "javascript",
    "python": "python",
}

_VARIABLE_LIMIT = 20
_COMPLEXITY_KEYWORDS = ("if", "else", "while", "for", "switch", "case", "catch", "try")
_COMPLEXITY_PATTERN = re.compile(rf"\b(?:{'|'.join(_COMPLEXITY_KEYWORDS)})\b")

# A label is reported once when every one of its patterns occurs.
DESIGN_PATTERNS: tuple[PatternRule, ...] = (
    _pattern("singleton", r"getInstance|singleton"),
    _pattern("factory", r"[fF]actory"),
    _pattern("observer", r"[oO]bserver"),
    _pattern("strategy", r"[sS]trategy"),
)

CODING_PATTERNS: tuple[PatternRule, ...] = (
    _pattern("error_handling", r"\btry\b", r"\b(?:catch|except)\b"),
    _pattern("functional_programming", r"\b(?:map|filter|reduce)\s*\("),
    _pattern("react_hooks", r"\buse(?:State|Effect)\b"),
)

BEST_PRACTICES: tuple[PatternRule, ...] = (
    _pattern("modern_variable_declarations", r"\b(?:const|let)\s"),
    _pattern("code_comments", r"//\s|/\*\s|#\s"),
    _pattern("modular_code", r"\b(?:import|export)\b"),
)

_LONG_LINE = 120
_FUNCTION_LIMIT = 20
_FUNCTION_WORD = re.compile(r"\b(?:function|def)\b")
_VAR_DECLARATION = re.compile(r"\bvar\s")


@dataclass(frozen=True, slots=True)
class ChunkMetadata:
    identifiers: frozenset[str]
    classes: frozenset[str]
    keywords: frozenset[str]
    imports: tuple[str, ...]
    exports: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class CodePatterns:
    design_patterns: tuple[str, ...]
    coding_patterns: tuple[str, ...]
    anti_patterns: tuple[str, ...]
    best_practices: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class FileMetadata:
    filename: str
    file_type: str
    size: int
    lines: int
    functions: tuple[str, ...]
    classes: tuple[str, ...]
    imports: tuple[str, ...]
    exports: tuple[str, ...]
    keywords: tuple[str, ...]
    complexity: float
    max_nesting: int
    patterns: CodePatterns


def detect_file_type(filename: str) -> str:
    suffix = PurePosixPath(filename.replace("\\", "/")).suffix.lstrip(".").lower()
    return FILE_TYPES.get(suffix, "text")


def rules_for(file_type: str) -> LanguageRules:
    return LANGUAGE_RULES[FAMILY_BY_FILE_TYPE.get(file_type, "generic")]


class MetadataExtractor:
    """Pure, synchronous extraction of identifiers and keywords from code text."""

    def extract(self, content: str, file_type: str) -> ChunkMetadata:
        found = self._matches(content, rules_for(file_type))
        classes = frozenset(found["class"])
        identifiers = frozenset(found["function"]) | classes | frozenset(found["variable"])
        return ChunkMetadata(
            identifiers=identifiers,
            classes=classes,
            keywords=frozenset(self._keywords(content, rules_for(file_type))),
            imports=tuple(found["import"]),
            exports=tuple(found["export"]),
        )

    def describe(self, content: str, filename: str, file_type: str | None = None) -> FileMetadata:
        """File-level summary: declarations, dependencies, complexity and pattern labels."""
        resolved = file_type or detect_file_type(filename)
        rules = rules_for(resolved)
        found = self._matches(content, rules)
        return FileMetadata(
            filename=filename,
            file_type=resolved,
            size=len(content),
            lines=content.count("\n") + 1,
            functions=tuple(found["function"]),
            classes=tuple(found["class"]),
            imports=tuple(found["import"]),
            exports=tuple(found["export"]),
            keywords=tuple(self._keywords(content, rules)),
            complexity=control_flow_complexity(content),
            max_nesting=max_brace_nesting(content),
            patterns=self.patterns(content, resolved),
        )

    def patterns(self, content: str, file_type: str) -> CodePatterns:
        """Label design patterns, coding idioms, anti-patterns and good practices.

        Detection is lexical: a label means the text mentions the idiom, not
        that the code implements it correctly.
        """
        anti: list[str] = []
        if "javascript" in file_type and _VAR_DECLARATION.search(content):
            anti.append("var_usage")
        if any(len(line) > _LONG_LINE for line in content.split("\n")):
            anti.append("long_lines")
        if len(_FUNCTION_WORD.findall(content)) > _FUNCTION_LIMIT:
            anti.append("too_many_functions")
        return CodePatterns(
            design_patterns=_labels(DESIGN_PATTERNS, content),
            coding_patterns=_labels(CODING_PATTERNS, content),
            anti_patterns=tuple(anti),
            best_practices=_labels(BEST_PRACTICES, content),
        )

    @staticmethod
    def _matches(content: str, rules: LanguageRules) -> dict[RuleKind, list[str]]:
        found: dict[RuleKind, list[str]] = {
            "function": [],
            "class": [],
            "variable": [],
            "import": [],
            "export": [],
        }
        for rule in rules.rules:
            bucket = found[rule.kind]
            for match in rule.pattern.finditer(content):
                name = match.group(1)
                if name not in bucket:
                    bucket.append(name)
        found["variable"] = found["variable"][:_VARIABLE_LIMIT]
        return found

    @staticmethod
    def _keywords(content: str, rules: LanguageRules) -> list[str]:
        return [
            keyword
            for keyword in rules.keywords
            if re.search(rf"\b{re.escape(keyword)}\b", content)
        ]


def _labels(rules: tuple[PatternRule, ...], content: str) -> tuple[str, ...]:
    return tuple(rule.label for rule in rules if rule.matches(content))


def control_flow_complexity(content: str) -> float:
    """Branch keywords per ten lines, capped at 10."""
    branches = len(_COMPLEXITY_PATTERN.findall(content))
    lines = content.count("\n") + 1
    return min(branches / max(lines / 10, 1), 10.0)


def max_brace_nesting(content: str) -> int:
    deepest = 0
    depth = 0
    for char in content:
        if char == "{":
            depth += 1
            deepest = max(deepest, depth)
        elif char == "}":
            depth -= 1
    return deepest
