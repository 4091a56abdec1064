"""Codebase question-answering agent package."""

from .config import PipelineConfig
from .types import ConversationTurn, QueryResult

__all__ = ["ConversationTurn", "PipelineConfig", "QueryResult"]
