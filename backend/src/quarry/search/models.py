"""Search request, decision and result models."""

from dataclasses import dataclass, field
from enum import Enum


class Workflow(Enum):
    """Which retrieval primitives a query runs."""

    LEXICAL = "lexical"
    VECTOR = "vector"
    HYBRID = "hybrid"


class DecisionSource(Enum):
    """Where a strategy decision came from."""

    HEURISTIC = "heuristic"
    COLLABORATOR = "collaborator"
    OVERRIDE = "override"


@dataclass(frozen=True)
class StrategyDecision:
    """Selected workflow for a query, with the signals behind it."""

    query: str
    workflow: Workflow
    source: DecisionSource
    signals: tuple[str, ...] = ()
    decided_at: float = 0.0


@dataclass
class SearchOptions:
    """Caller-supplied search options.

    Attributes:
        limit: Maximum results to return (1 to the configured maximum).
        collections: Restrict to these collections; all when None.
        workflow: Forced workflow, bypassing the orchestrator.
        min_score: Drop results scoring below this after normalization.
        rerank: Use the reranker when one is configured. None follows settings.
    """

    limit: int = 10
    collections: list[str] | None = None
    workflow: Workflow | None = None
    min_score: float = 0.0
    rerank: bool | None = None


@dataclass
class ScoreBreakdown:
    """Every factor that went into a result's final score."""

    lexical_score: float | None = None
    lexical_rank: int | None = None
    vector_similarity: float | None = None
    vector_rank: int | None = None
    importance: float = 1.0
    collection_boost: float = 1.0
    path_penalty: float = 1.0
    title_boost: float = 1.0
    fused_score: float | None = None
    rerank_score: float | None = None
    raw_score: float = 0.0  # Score before normalization


@dataclass
class SearchResult:
    """One ranked chunk."""

    chunk_id: str
    document_id: str
    collection: str
    path: str
    title: str
    text: str
    score: float
    rank: int = 0
    breadcrumb: str | None = None
    start_line: int = 0
    end_line: int = 0
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)


@dataclass
class SearchResponse:
    """Ranked results plus how they were produced."""

    query: str
    decision: StrategyDecision
    workflow: Workflow  # Workflow actually run, after any degradation
    results: list[SearchResult] = field(default_factory=list)
    degraded: bool = False
    reranked: bool = False
    warnings: list[str] = field(default_factory=list)
