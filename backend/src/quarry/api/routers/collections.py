"""Collection management endpoints."""

from dataclasses import asdict
from pathlib import Path
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status

from quarry.api.deps import get_indexing_service, get_rerank_cache, get_store
from quarry.api.schemas import (
    CollectionCreate,
    CollectionListResponse,
    CollectionResponse,
    DocumentListResponse,
    DocumentReportResponse,
    DocumentResponse,
    IndexReportResponse,
)
from quarry.errors import (
    CollectionError,
    CollectionExistsError,
    CollectionNotFoundError,
    StoreFailure,
)
from quarry.indexing.service import DocumentStatus, IndexingService, IndexReport
from quarry.search.decision_cache import TTLCache
from quarry.store.base import CollectionRecord, IndexStore

router = APIRouter(prefix="/api/collections", tags=["collections"])


def _raise_for(e: CollectionError) -> NoReturn:
    """Map a collection error onto an HTTP status."""
    if isinstance(e, CollectionNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, CollectionExistsError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@router.get("", response_model=CollectionListResponse)
async def list_collections(store: IndexStore = Depends(get_store)) -> CollectionListResponse:
    """List all collections."""
    collections = store.list_collections()
    return CollectionListResponse(
        collections=[CollectionResponse.model_validate(c) for c in collections],
        total=len(collections),
    )


@router.post("", response_model=CollectionResponse, status_code=status.HTTP_201_CREATED)
async def create_collection(
    request: CollectionCreate, store: IndexStore = Depends(get_store)
) -> CollectionResponse:
    """Register a collection. Documents are read on the first re-index."""
    if request.source_kind != "filesystem":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported source kind: {request.source_kind}",
        )
    root = Path(request.source_locator).expanduser()
    if not root.is_dir():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Source directory does not exist: {request.source_locator}",
        )

    record = CollectionRecord(
        name=request.name,
        source_locator=str(root.resolve()),
        source_kind=request.source_kind,
        include_globs=request.include_globs,
        exclude_globs=request.exclude_globs,
        boost=request.boost,
    )
    try:
        created = store.create_collection(record)
    except CollectionError as e:
        _raise_for(e)
    return CollectionResponse.model_validate(created)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_collection(
    name: str,
    store: IndexStore = Depends(get_store),
    rerank_cache: TTLCache = Depends(get_rerank_cache),
) -> None:
    """Delete a collection with all of its documents and chunks."""
    try:
        store.delete_collection(name)
    except CollectionError as e:
        _raise_for(e)
    except StoreFailure as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    # Cached rerank scores may reference deleted chunks
    rerank_cache.clear()


@router.post("/{name}/reindex", response_model=IndexReportResponse)
async def reindex_collection(
    name: str,
    force: bool = Query(False, description="Re-chunk documents even if unchanged"),
    service: IndexingService = Depends(get_indexing_service),
    rerank_cache: TTLCache = Depends(get_rerank_cache),
) -> IndexReportResponse:
    """Re-scan a collection's source and bring its index up to date.

    Only chunks whose content changed are sent to the embedder. Documents
    that fail are listed with their error; embedding failures are listed as
    warnings on otherwise indexed documents.
    """
    try:
        report = await service.index_collection(name, force=force)
    except CollectionError as e:
        _raise_for(e)
    rerank_cache.clear()
    return _report_to_response(report)


@router.get("/{name}/documents", response_model=DocumentListResponse)
async def list_documents(
    name: str,
    include_inactive: bool = Query(False, description="Include tombstoned documents"),
    store: IndexStore = Depends(get_store),
) -> DocumentListResponse:
    """List the documents of a collection."""
    if store.get_collection(name) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Collection not found: {name}"
        )
    documents = store.list_documents(name, active_only=not include_inactive)
    return DocumentListResponse(
        collection=name,
        documents=[DocumentResponse.model_validate(d) for d in documents],
        total=len(documents),
    )


def _report_to_response(report: IndexReport) -> IndexReportResponse:
    return IndexReportResponse(
        collection=report.collection,
        indexed=report.count(DocumentStatus.INDEXED),
        unchanged=report.count(DocumentStatus.UNCHANGED),
        removed=report.count(DocumentStatus.REMOVED),
        failed=report.count(DocumentStatus.FAILED),
        embedded=report.embedded,
        cache_collected=report.cache_collected,
        warnings=report.warnings,
        documents=[
            DocumentReportResponse(**{**asdict(d), "status": d.status.value})
            for d in report.documents
        ],
    )
