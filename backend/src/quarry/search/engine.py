"""Hybrid ranking engine."""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from quarry.config import ConfigError, load_settings
from quarry.constants.search import MAX_SEARCH_LIMIT
from quarry.errors import EmbeddingFailure, QueryFailure
from quarry.llm.collaborators import Available, Embedder, LLMReranker, RerankCandidate
from quarry.search.boosting import BoostFactors, ScoreBooster
from quarry.search.decision_cache import TTLCache
from quarry.search.models import (
    DecisionSource,
    ScoreBreakdown,
    SearchOptions,
    SearchResponse,
    SearchResult,
    StrategyDecision,
    Workflow,
)
from quarry.search.orchestrator import StrategyOrchestrator, heuristic_workflow
from quarry.search.query_terms import boost_terms, fts_terms
from quarry.search.ranking import RankedItem, RRFRanker, normalize_scores
from quarry.store.base import DocumentScoring, IndexStore, LexicalHit, VectorHit

logger = logging.getLogger(__name__)


@dataclass
class _Candidate:
    """A chunk under consideration, with everything needed to explain its score."""

    chunk_id: str
    document_id: str
    score: float = 0.0
    raw_score: float = 0.0
    factors: BoostFactors = field(default_factory=BoostFactors)
    breakdown: ScoreBreakdown = field(default_factory=ScoreBreakdown)


@dataclass
class _Primitives:
    lexical: list[LexicalHit] = field(default_factory=list)
    vector: list[VectorHit] = field(default_factory=list)
    vector_failed: str | None = None


class SearchEngine:
    """Runs the selected retrieval primitives and ranks their results.

    Pipeline: validate options, decide the workflow, run lexical and vector
    search concurrently, apply boosts, fuse with RRF when both lists have
    results, normalize so the best result scores 100, optionally rerank,
    then apply ``min_score`` and ``limit``.

    Reranking replaces fused scores with the reranker's own and boosts are
    not reapplied afterwards, so a reranker that ignores paths and titles
    can undo the filename and title boosts. That trade-off is accepted.
    """

    def __init__(
        self,
        store: IndexStore,
        orchestrator: StrategyOrchestrator | None = None,
        embedder: Embedder | None = None,
        reranker: LLMReranker | None = None,
        rerank_cache: TTLCache[tuple[str, tuple[str, ...]], dict[str, float]] | None = None,
        booster: ScoreBooster | None = None,
        ranker: RRFRanker | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            store: Index store queried by both primitives.
            orchestrator: Strategy orchestrator. A heuristic-only one is
                built when omitted.
            embedder: Query embedder. Without one, searches are lexical.
            reranker: Optional reranking collaborator.
            rerank_cache: Cache of reranker scores keyed by query and candidates.
            booster: Boost calculator. Defaults to settings.
            ranker: RRF ranker. Defaults to settings.
        """
        try:
            settings = load_settings()
            self.max_limit = settings.search.max_limit
            self.candidate_multiplier = settings.search.candidate_multiplier
            rrf_k = settings.search.rrf_k
            self.rerank_enabled = settings.rerank.enabled
            self.rerank_timeout = settings.rerank.timeout_seconds
            self.rerank_max_docs = settings.rerank.max_docs
            self.embed_timeout = settings.embedding.timeout_seconds
        except (ValueError, OSError, ConfigError):
            # Settings not available, use defaults from CONFIG_SCHEMA
            self.max_limit = MAX_SEARCH_LIMIT
            self.candidate_multiplier = 3
            rrf_k = 60
            self.rerank_enabled = False
            self.rerank_timeout = 10.0
            self.rerank_max_docs = 40
            self.embed_timeout = 30.0

        self.store = store
        self.embedder = embedder
        self.orchestrator = orchestrator or StrategyOrchestrator(has_embedder=embedder is not None)
        self.reranker = reranker
        self.rerank_cache = rerank_cache
        self.booster = booster or ScoreBooster()
        self.ranker = ranker or RRFRanker(k=rrf_k)

    def validate(self, query: str, options: SearchOptions) -> None:
        """Reject malformed options before any search runs.

        Raises:
            QueryFailure: On an empty query, a limit outside 1..max_limit,
                a negative ``min_score`` or an unknown collection.
        """
        if not query or not query.strip():
            raise QueryFailure("Query must not be empty")
        if options.limit < 1 or options.limit > self.max_limit:
            raise QueryFailure(f"limit must be between 1 and {self.max_limit}, got {options.limit}")
        if options.min_score < 0:
            raise QueryFailure(f"min_score must not be negative, got {options.min_score}")
        for name in options.collections or []:
            if self.store.get_collection(name) is None:
                raise QueryFailure(f"Unknown collection: {name}")

    async def rank(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """Search and rank.

        Args:
            query: Query text.
            options: Search options. Defaults apply when omitted.

        Returns:
            SearchResponse with ranked results and per-result breakdowns.

        Raises:
            QueryFailure: If the options are invalid.
        """
        options = options or SearchOptions()
        self.validate(query, options)

        decision = await self._decide(query, options)
        workflow = decision.workflow
        warnings: list[str] = []
        if workflow is not Workflow.LEXICAL and self.embedder is None:
            warnings.append("No embedder configured; using lexical search")
            workflow = Workflow.LEXICAL

        use_rerank = self.reranker is not None and (
            options.rerank if options.rerank is not None else self.rerank_enabled
        )
        fetch = options.limit * self.candidate_multiplier
        if use_rerank:
            fetch = max(fetch, self.rerank_max_docs)

        primitives = await self._run_primitives(query, workflow, fetch, options.collections)
        if primitives.vector_failed is not None:
            warnings.append(f"Vector search unavailable ({primitives.vector_failed}); using lexical")
            workflow = Workflow.LEXICAL
        degraded = workflow is not decision.workflow

        candidates = self._score(query, workflow, primitives)

        reranked = False
        if use_rerank and candidates:
            candidates, reranked = await self._rerank(query, candidates)

        results = self._finalize(candidates, options)
        return SearchResponse(
            query=query,
            decision=decision,
            workflow=workflow,
            results=results,
            degraded=degraded,
            reranked=reranked,
            warnings=warnings,
        )

    async def _decide(self, query: str, options: SearchOptions) -> StrategyDecision:
        if options.workflow is not None:
            _, signals = heuristic_workflow(query)
            return StrategyDecision(
                query=query,
                workflow=options.workflow,
                source=DecisionSource.OVERRIDE,
                signals=("override", *signals),
                decided_at=time.time(),
            )
        return await self.orchestrator.decide(query)

    async def _run_primitives(
        self, query: str, workflow: Workflow, fetch: int, collections: list[str] | None
    ) -> _Primitives:
        """Run the primitives a workflow needs, concurrently."""
        primitives = _Primitives()
        want_lexical = workflow in (Workflow.LEXICAL, Workflow.HYBRID)
        want_vector = workflow in (Workflow.VECTOR, Workflow.HYBRID)

        async def lexical() -> list[LexicalHit]:
            terms = fts_terms(query)
            return await asyncio.to_thread(self.store.lexical_query, terms, fetch, collections)

        async def vector() -> list[VectorHit]:
            assert self.embedder is not None
            try:
                embeddings = await asyncio.wait_for(
                    self.embedder.embed([query]), timeout=self.embed_timeout
                )
            except asyncio.TimeoutError:
                primitives.vector_failed = "query embedding timed out"
                return []
            except EmbeddingFailure as e:
                primitives.vector_failed = f"query embedding failed: {e}"
                return []
            if not embeddings:
                primitives.vector_failed = "embedder returned no vector"
                return []
            return await asyncio.to_thread(self.store.vector_query, embeddings[0], fetch, collections)

        if want_lexical and want_vector:
            primitives.lexical, primitives.vector = await asyncio.gather(lexical(), vector())
        elif want_vector:
            primitives.vector = await vector()
            if primitives.vector_failed is not None:
                primitives.lexical = await lexical()
        else:
            primitives.lexical = await lexical()

        if primitives.vector_failed is not None:
            logger.warning(f"Degrading to lexical search: {primitives.vector_failed}")
        return primitives

    def _score(self, query: str, workflow: Workflow, primitives: _Primitives) -> list[_Candidate]:
        """Boost each list, fuse when both have results, and normalize."""
        document_ids = [hit.document_id for hit in primitives.lexical]
        document_ids += [hit.document_id for hit in primitives.vector]
        scoring = self.store.document_scoring(document_ids)
        terms = boost_terms(query)
        apply_title_boost = workflow is not Workflow.LEXICAL

        lexical = self._boosted(
            [(hit.chunk_id, hit.document_id, hit.score) for hit in primitives.lexical],
            scoring,
            terms,
            apply_title_boost,
        )
        vector = self._boosted(
            [(hit.chunk_id, hit.document_id, hit.similarity) for hit in primitives.vector],
            scoring,
            terms,
            apply_title_boost,
        )
        for position, candidate in enumerate(lexical, start=1):
            candidate.breakdown.lexical_score = candidate.raw_score
            candidate.breakdown.lexical_rank = position
        for position, candidate in enumerate(vector, start=1):
            candidate.breakdown.vector_similarity = candidate.raw_score
            candidate.breakdown.vector_rank = position

        if lexical and vector:
            candidates = self._fuse(lexical, vector)
        else:
            candidates = lexical or vector

        normalized = normalize_scores([c.score for c in candidates])
        for candidate, score in zip(candidates, normalized):
            candidate.breakdown.raw_score = candidate.score
            candidate.score = score
        return candidates

    def _boosted(
        self,
        hits: list[tuple[str, str, float]],
        scoring: dict[str, DocumentScoring],
        terms: list[str],
        apply_title_boost: bool,
    ) -> list[_Candidate]:
        candidates = []
        seen: set[str] = set()
        for chunk_id, document_id, base in hits:
            doc = scoring.get(document_id)
            if doc is None or chunk_id in seen:
                continue
            seen.add(chunk_id)
            factors = self.booster.factors(doc, terms, apply_title_boost)
            candidates.append(
                _Candidate(
                    chunk_id=chunk_id,
                    document_id=document_id,
                    score=factors.apply(base),
                    raw_score=base,
                    factors=factors,
                    breakdown=ScoreBreakdown(
                        importance=factors.importance,
                        collection_boost=factors.collection_boost,
                        path_penalty=factors.path_penalty,
                        title_boost=factors.title_boost,
                    ),
                )
            )
        candidates.sort(key=lambda c: (-c.score, -c.raw_score, c.chunk_id))
        return candidates

    def _fuse(self, lexical: list[_Candidate], vector: list[_Candidate]) -> list[_Candidate]:
        by_id: dict[str, _Candidate] = {c.chunk_id: c for c in vector}
        for candidate in lexical:
            existing = by_id.get(candidate.chunk_id)
            if existing is None:
                by_id[candidate.chunk_id] = candidate
            else:
                existing.breakdown.lexical_score = candidate.breakdown.lexical_score
                existing.breakdown.lexical_rank = candidate.breakdown.lexical_rank

        fused = self.ranker.fuse(
            [RankedItem(c.chunk_id, c.score, c.raw_score) for c in lexical],
            [RankedItem(c.chunk_id, c.score, c.raw_score) for c in vector],
        )
        candidates = []
        for item in fused:
            candidate = by_id[item.id]
            candidate.score = item.score
            candidate.raw_score = item.raw_score
            candidate.breakdown.fused_score = item.score
            candidates.append(candidate)
        return candidates

    async def _rerank(
        self, query: str, candidates: list[_Candidate]
    ) -> tuple[list[_Candidate], bool]:
        """Hand the top candidates to the reranker.

        Returns:
            Reranked and re-normalized top candidates and True, or the
            input unchanged and False when the reranker is unavailable.
        """
        assert self.reranker is not None
        top = candidates[: self.rerank_max_docs]
        key = (query, tuple(c.chunk_id for c in top))
        scores = self.rerank_cache.get(key) if self.rerank_cache is not None else None

        if scores is None:
            details = await asyncio.to_thread(self.store.chunk_details, [c.chunk_id for c in top])
            rerank_input = [
                RerankCandidate(
                    chunk_id=c.chunk_id,
                    path=details[c.chunk_id].path or "",
                    title=details[c.chunk_id].title or "",
                    text=details[c.chunk_id].text,
                )
                for c in top
                if c.chunk_id in details
            ]
            try:
                outcome = await asyncio.wait_for(
                    self.reranker.rerank(query, rerank_input), timeout=self.rerank_timeout
                )
            except asyncio.TimeoutError:
                logger.warning(f"Reranker timed out after {self.rerank_timeout}s")
                return candidates, False
            except Exception as e:
                logger.warning(f"Reranker raised: {e}")
                return candidates, False
            if not isinstance(outcome, Available):
                logger.info(f"Reranker unavailable: {outcome.reason}")
                return candidates, False
            scores = outcome.value
            if self.rerank_cache is not None:
                self.rerank_cache.put(key, scores)

        reranked = [c for c in top if c.chunk_id in scores]
        for candidate in reranked:
            candidate.breakdown.rerank_score = scores[candidate.chunk_id]
            candidate.raw_score = candidate.score
            candidate.score = scores[candidate.chunk_id]
        reranked.sort(key=lambda c: (-c.score, -c.raw_score, c.chunk_id))

        normalized = normalize_scores([c.score for c in reranked])
        for candidate, score in zip(reranked, normalized):
            candidate.score = score
        return reranked, True

    def _finalize(self, candidates: list[_Candidate], options: SearchOptions) -> list[SearchResult]:
        kept = [c for c in candidates if c.score >= options.min_score][: options.limit]
        details = self.store.chunk_details([c.chunk_id for c in kept])

        results = []
        for candidate in kept:
            chunk = details.get(candidate.chunk_id)
            if chunk is None:
                continue
            results.append(
                SearchResult(
                    chunk_id=candidate.chunk_id,
                    document_id=candidate.document_id,
                    collection=chunk.collection or "",
                    path=chunk.path or "",
                    title=chunk.title or "",
                    text=chunk.text,
                    score=candidate.score,
                    rank=len(results) + 1,
                    breadcrumb=chunk.breadcrumb,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    breakdown=candidate.breakdown,
                )
            )
        return results
