"""Query strategy selection."""

import asyncio
import logging
import re
import time
from typing import Protocol

from quarry.config import ConfigError, load_settings
from quarry.constants.search import (
    ACRONYM_MAX_LENGTH,
    ACRONYM_MIN_LENGTH,
    INTERROGATIVE_WORDS,
    STOP_WORDS,
    STRUCTURAL_SEPARATORS,
)
from quarry.llm.collaborators import Available, Outcome, Unavailable
from quarry.search.decision_cache import DecisionCache
from quarry.search.models import DecisionSource, StrategyDecision, Workflow
from quarry.search.query_terms import tokenize

logger = logging.getLogger(__name__)

DEFAULT_CLASSIFY_TIMEOUT = 5.0

_EDGE_PUNCTUATION = ".,;:!?\"'()[]{}<>`"
_DOTTED = re.compile(r"^[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)+$")
_SNAKE = re.compile(r"^_*[A-Za-z0-9]+(?:_+[A-Za-z0-9]+)+_*$")
_CAMEL = re.compile(r"^[a-z][a-z0-9]*(?:[A-Z][a-z0-9]*)+$")
_PASCAL = re.compile(r"^[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]*)+$")


class StrategyClassifier(Protocol):
    """Anything that can classify a query into a workflow."""

    async def classify(self, query: str) -> Outcome[Workflow]: ...


def _is_acronym(token: str) -> bool:
    return (
        ACRONYM_MIN_LENGTH <= len(token) <= ACRONYM_MAX_LENGTH
        and any(ch.isalpha() for ch in token)
        and all((ch.isalpha() and ch.isupper()) or ch.isdigit() for ch in token)
    )


def term_signals(token: str) -> list[str]:
    """Signals that mark a token as a specific term rather than prose."""
    signals = []
    bare = token.strip(_EDGE_PUNCTUATION)
    if _is_acronym(bare):
        signals.append(f"acronym:{bare}")
    for separator in STRUCTURAL_SEPARATORS:
        if separator in token:
            signals.append(f"separator:{separator}")
            break
    if _DOTTED.match(bare):
        signals.append(f"dotted:{bare}")
    elif _SNAKE.match(bare):
        signals.append(f"snake_case:{bare}")
    elif _CAMEL.match(bare):
        signals.append(f"camelCase:{bare}")
    elif _PASCAL.match(bare):
        signals.append(f"PascalCase:{bare}")
    return signals


def heuristic_workflow(query: str) -> tuple[Workflow, tuple[str, ...]]:
    """Classify a query without any external help.

    Specific terms (acronyms, code identifiers, paths) favour exact
    matching. Natural-language questions favour semantic matching.
    Anything else runs both.

    Args:
        query: Raw query text.

    Returns:
        Workflow and the signals that decided it.
    """
    tokens = tokenize(query)

    term_hits = [signal for token in tokens for signal in term_signals(token)]
    if term_hits:
        return Workflow.LEXICAL, tuple(term_hits)

    words = [token.strip(_EDGE_PUNCTUATION).lower() for token in tokens]
    if words and words[0] in INTERROGATIVE_WORDS:
        return Workflow.VECTOR, (f"interrogative:{words[0]}",)

    stop_count = sum(1 for word in words if word in STOP_WORDS)
    if stop_count >= 2 and len(words) >= 4:
        return Workflow.VECTOR, (f"stop_words:{stop_count}",)

    return Workflow.HYBRID, ("default",)


class StrategyOrchestrator:
    """Chooses lexical, vector or hybrid retrieval for each query.

    Decisions are cached by exact query text. A configured classifier is
    consulted first under a timeout; whenever it is absent, fails, times
    out or answers nonsense, the deterministic heuristic decides. Without
    an embedder every decision is lexical.
    """

    def __init__(
        self,
        classifier: StrategyClassifier | None = None,
        cache: DecisionCache | None = None,
        has_embedder: bool = True,
        classify_timeout: float | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            classifier: Optional LLM-backed classifier.
            cache: Decision cache shared across requests.
            has_embedder: Whether vector search is possible at all.
            classify_timeout: Seconds to wait for the classifier.
        """
        if classify_timeout is None:
            try:
                classify_timeout = load_settings().orchestrator.classify_timeout
            except (ValueError, OSError, ConfigError):
                classify_timeout = DEFAULT_CLASSIFY_TIMEOUT
        self.classifier = classifier
        self.cache = cache if cache is not None else DecisionCache()
        self.has_embedder = has_embedder
        self.classify_timeout = classify_timeout

    async def decide(self, query: str) -> StrategyDecision:
        """Select the workflow for a query. Never raises for collaborator failures."""
        cached = self.cache.get(query)
        if cached is not None:
            return cached

        decision = await self._fresh_decision(query)
        self.cache.put(query, decision)
        return decision

    async def _fresh_decision(self, query: str) -> StrategyDecision:
        if not self.has_embedder:
            return StrategyDecision(
                query=query,
                workflow=Workflow.LEXICAL,
                source=DecisionSource.HEURISTIC,
                signals=("no_embedder",),
                decided_at=time.time(),
            )

        fallback_reason: str | None = None
        if self.classifier is not None:
            outcome = await self._consult(query)
            if isinstance(outcome, Available):
                return StrategyDecision(
                    query=query,
                    workflow=outcome.value,
                    source=DecisionSource.COLLABORATOR,
                    signals=("collaborator",),
                    decided_at=time.time(),
                )
            fallback_reason = outcome.reason
            logger.info(f"Strategy classifier unavailable ({outcome.reason}); using heuristic")

        workflow, signals = heuristic_workflow(query)
        if fallback_reason is not None:
            signals = ("collaborator_unavailable", *signals)
        return StrategyDecision(
            query=query,
            workflow=workflow,
            source=DecisionSource.HEURISTIC,
            signals=signals,
            decided_at=time.time(),
        )

    async def _consult(self, query: str) -> Outcome[Workflow]:
        assert self.classifier is not None
        try:
            outcome = await asyncio.wait_for(
                self.classifier.classify(query), timeout=self.classify_timeout
            )
        except asyncio.TimeoutError:
            return Unavailable(f"timed out after {self.classify_timeout}s")
        except Exception as e:
            # Classifier failures never reach the caller
            logger.warning(f"Strategy classifier raised: {e}")
            return Unavailable(f"classifier error: {e}")

        if isinstance(outcome, (Available, Unavailable)):
            if isinstance(outcome, Available) and not isinstance(outcome.value, Workflow):
                return Unavailable(f"classifier returned {outcome.value!r}")
            return outcome
        return Unavailable(f"classifier returned {outcome!r}")
