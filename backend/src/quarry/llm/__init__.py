# backend/src/quarry/llm/__init__.py
"""LLM client and optional AI collaborators."""

from quarry.llm.client import (
    LLMAuthenticationError,
    LLMClient,
    LLMConnectionError,
    LLMError,
    LLMRateLimitError,
)
from quarry.llm.collaborators import (
    Available,
    Embedder,
    LiteLLMEmbedder,
    LLMReranker,
    LLMStrategyClassifier,
    Outcome,
    RerankCandidate,
    Unavailable,
)

__all__ = [
    "Available",
    "Embedder",
    "LiteLLMEmbedder",
    "LLMAuthenticationError",
    "LLMClient",
    "LLMConnectionError",
    "LLMError",
    "LLMRateLimitError",
    "LLMReranker",
    "LLMStrategyClassifier",
    "Outcome",
    "RerankCandidate",
    "Unavailable",
]
