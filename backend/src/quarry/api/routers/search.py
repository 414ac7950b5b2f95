"""Search endpoints."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query, status

from quarry.api.deps import get_search_engine
from quarry.api.schemas import (
    ScoreBreakdownResponse,
    SearchResponseModel,
    SearchResultResponse,
    StrategyDecisionResponse,
)
from quarry.errors import QueryFailure
from quarry.search.engine import SearchEngine
from quarry.search.models import SearchOptions, SearchResponse, Workflow

router = APIRouter(prefix="/api/search", tags=["search"])


@router.get("", response_model=SearchResponseModel)
async def search(
    q: str = Query(..., description="Search query"),
    collection: list[str] | None = Query(None, description="Restrict to these collections"),
    limit: int = Query(10, description="Maximum results"),
    workflow: Workflow | None = Query(None, description="Force lexical, vector or hybrid"),
    min_score: float = Query(0.0, description="Drop results scoring below this (0-100)"),
    rerank: bool | None = Query(None, description="Use the reranker when configured"),
    engine: SearchEngine = Depends(get_search_engine),
) -> SearchResponseModel:
    """Search indexed collections.

    The response carries the strategy decision, the workflow actually run
    and a score breakdown for every result.
    """
    options = SearchOptions(
        limit=limit,
        collections=collection or None,
        workflow=workflow,
        min_score=min_score,
        rerank=rerank,
    )
    try:
        response = await engine.rank(q, options)
    except QueryFailure as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _to_response(response)


def _to_response(response: SearchResponse) -> SearchResponseModel:
    decision = response.decision
    return SearchResponseModel(
        query=response.query,
        workflow=response.workflow.value,
        decision=StrategyDecisionResponse(
            workflow=decision.workflow.value,
            source=decision.source.value,
            signals=list(decision.signals),
        ),
        degraded=response.degraded,
        reranked=response.reranked,
        warnings=response.warnings,
        results=[
            SearchResultResponse(
                rank=result.rank,
                score=result.score,
                chunk_id=result.chunk_id,
                document_id=result.document_id,
                collection=result.collection,
                path=result.path,
                title=result.title,
                text=result.text,
                breadcrumb=result.breadcrumb,
                start_line=result.start_line,
                end_line=result.end_line,
                breakdown=ScoreBreakdownResponse(**asdict(result.breakdown)),
            )
            for result in response.results
        ],
        total=len(response.results),
    )
