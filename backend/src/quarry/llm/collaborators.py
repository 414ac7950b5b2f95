"""Optional AI collaborators: embedder, strategy classifier and reranker.

The classifier and reranker never raise. Every call returns ``Available``
with a value or ``Unavailable`` with a reason, and callers fall back to
deterministic behaviour on ``Unavailable``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from quarry.constants.llm import CLASSIFY_MAX_TOKENS, RERANK_MAX_TOKENS, RERANK_SNIPPET_CHARS
from quarry.errors import EmbeddingFailure
from quarry.llm.client import LLMClient, LLMError
from quarry.search.models import Workflow

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Available(Generic[T]):
    """The collaborator answered."""

    value: T


@dataclass(frozen=True)
class Unavailable:
    """The collaborator is absent, failed, timed out or answered nonsense."""

    reason: str


Outcome = Union[Available[T], Unavailable]


class Embedder(ABC):
    """Turns texts into vectors in one embedding space."""

    @property
    @abstractmethod
    def model_key(self) -> str:
        """Identifier of the embedding space (``provider/model``)."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed texts.

        Returns:
            One vector per text, in order.

        Raises:
            EmbeddingFailure: If the texts could not be embedded.
        """


class LiteLLMEmbedder(Embedder):
    """Embedder backed by ``LLMClient.embed``."""

    def __init__(self, client: LLMClient, batch_size: int = 32) -> None:
        """Initialize embedder.

        Args:
            client: Client configured with the embedding provider and model.
            batch_size: Texts sent per provider request.
        """
        self.client = client
        self.batch_size = max(1, batch_size)

    @property
    def model_key(self) -> str:
        return self.client.model_key

    async def embed(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]
            try:
                vectors.extend(await self.client.embed(batch))
            except LLMError as e:
                raise EmbeddingFailure(str(e)) from e
        return vectors


CLASSIFICATION_SYSTEM_PROMPT = """You route search queries for a code and documentation search engine.

Pick the retrieval workflow that will find the best results:

- LEXICAL: exact-term lookup. Choose for identifiers, acronyms, file names,
  error codes, or anything the user expects to appear verbatim.
- VECTOR: semantic lookup. Choose for natural-language questions about
  behaviour or concepts where the wording will differ from the source.
- HYBRID: both. Choose when the query mixes specific terms with a
  descriptive phrase, or when unsure.

Respond with a JSON object:
{
  "workflow": "LEXICAL" | "VECTOR" | "HYBRID",
  "reasoning": "<one short sentence>"
}"""


class LLMStrategyClassifier:
    """Asks an LLM which workflow suits a query."""

    def __init__(self, llm_client: LLMClient):
        self.llm = llm_client

    async def classify(self, query: str) -> Outcome[Workflow]:
        """Classify a query into a workflow."""
        try:
            response = await self.llm.generate_with_json(
                f"Query: {query}",
                system_prompt=CLASSIFICATION_SYSTEM_PROMPT,
                max_tokens=CLASSIFY_MAX_TOKENS,
            )
        except LLMError as e:
            return Unavailable(f"classifier request failed: {e}")

        try:
            result = json.loads(_strip_code_fence(response))
            return Available(Workflow(str(result["workflow"]).lower()))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to parse classification response: {e}")
            return Unavailable(f"malformed classifier output: {e}")


@dataclass(frozen=True)
class RerankCandidate:
    """A result handed to the reranker."""

    chunk_id: str
    path: str
    title: str
    text: str


RERANK_SYSTEM_PROMPT = """You judge search results for relevance.

For each numbered candidate, give a relevance score from 0 to 10 for how
well it answers the query. Use the full range.

Respond with a JSON object mapping candidate number to score:
{"scores": {"1": 7.5, "2": 0, ...}}"""


class LLMReranker:
    """Rescores candidates with an LLM.

    Scores replace the fused ranking scores outright. The LLM does not see
    the title or filename boosts applied earlier, so it can undo them.
    """

    def __init__(self, llm_client: LLMClient, snippet_chars: int = RERANK_SNIPPET_CHARS):
        self.llm = llm_client
        self.snippet_chars = snippet_chars

    async def rerank(
        self, query: str, candidates: list[RerankCandidate]
    ) -> Outcome[dict[str, float]]:
        """Score candidates for a query.

        Returns:
            Chunk id mapped to score for every candidate, or Unavailable.
        """
        if not candidates:
            return Available({})

        lines = [f"Query: {query}", ""]
        for number, candidate in enumerate(candidates, start=1):
            snippet = " ".join(candidate.text.split())[: self.snippet_chars]
            lines.append(f"[{number}] {candidate.path} ({candidate.title})\n{snippet}\n")

        try:
            response = await self.llm.generate_with_json(
                "\n".join(lines),
                system_prompt=RERANK_SYSTEM_PROMPT,
                max_tokens=RERANK_MAX_TOKENS,
            )
        except LLMError as e:
            return Unavailable(f"reranker request failed: {e}")

        try:
            raw = json.loads(_strip_code_fence(response))["scores"]
            scores: dict[str, float] = {}
            for number, candidate in enumerate(candidates, start=1):
                value = raw.get(str(number), raw.get(number)) if isinstance(raw, dict) else None
                if value is None:
                    return Unavailable(f"reranker skipped candidate {number}")
                scores[candidate.chunk_id] = float(value)
            return Available(scores)
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to parse rerank response: {e}")
            return Unavailable(f"malformed reranker output: {e}")


def _strip_code_fence(text: str) -> str:
    """Remove a surrounding Markdown code fence some models add to JSON."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()
