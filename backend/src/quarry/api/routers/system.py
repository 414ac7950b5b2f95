"""Status and maintenance endpoints."""

import logging

from fastapi import APIRouter, Depends

from quarry.api.deps import get_decision_cache, get_embedder, get_embedding_cache, get_store
from quarry.api.schemas import CleanupResponse, EmbeddingStatus, StatusResponse
from quarry.indexing.embedding_cache import EmbeddingCache
from quarry.llm.collaborators import Embedder
from quarry.search.decision_cache import DecisionCache
from quarry.store.base import IndexStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["system"])


@router.get("/status", response_model=StatusResponse)
async def get_status(
    store: IndexStore = Depends(get_store),
    cache: EmbeddingCache = Depends(get_embedding_cache),
    decisions: DecisionCache = Depends(get_decision_cache),
    embedder: Embedder | None = Depends(get_embedder),
) -> StatusResponse:
    """Index counts, embedding model and cache sizes."""
    stats = store.stats()
    return StatusResponse(
        collections=stats.collections,
        documents=stats.documents,
        active_chunks=stats.active_chunks,
        tombstoned_chunks=stats.tombstoned_chunks,
        stale_chunks=stats.stale_chunks,
        vectors=stats.vectors,
        embedding=EmbeddingStatus(
            enabled=embedder is not None,
            model=embedder.model_key if embedder is not None else None,
            cache_entries=len(cache),
        ),
        decision_cache_entries=len(decisions),
    )


@router.post("/maintenance/cleanup", response_model=CleanupResponse)
async def cleanup(
    store: IndexStore = Depends(get_store),
    cache: EmbeddingCache = Depends(get_embedding_cache),
    decisions: DecisionCache = Depends(get_decision_cache),
) -> CleanupResponse:
    """Physically remove tombstoned chunks and unreferenced cache entries."""
    compacted = store.compact()
    # An unbound cache cannot tell current entries from another model's
    collected = cache.collect_garbage() if cache.model_key is not None else 0
    expired = decisions.purge_expired()
    logger.info(
        f"Cleanup: {compacted} chunks compacted, {collected} cache entries, "
        f"{expired} expired decisions"
    )
    return CleanupResponse(
        chunks_compacted=compacted,
        cache_entries_collected=collected,
        decisions_expired=expired,
    )
