"""Scoring and LLM-powered analysis services."""

from priority_inbox.core.interfaces import AnalysisError

from .analysis import LlmAnalysisService
from .fallback import estimate_due_at, extract_todos_with_regex
from .keywords import extract_keywords
from .llm import LLMClient, LLMError, OllamaClient
from .priority import MessageContext, PriorityScorer, ScoringResult, score_priority

__all__ = [
    "AnalysisError",
    "LLMClient",
    "LLMError",
    "LlmAnalysisService",
    "MessageContext",
    "OllamaClient",
    "PriorityScorer",
    "ScoringResult",
    "estimate_due_at",
    "extract_keywords",
    "extract_todos_with_regex",
    "score_priority",
]
