"""Document endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from quarry.api.deps import get_store
from quarry.api.schemas import ChunkResponse, DocumentDetailResponse, DocumentResponse
from quarry.store.base import IndexStore

router = APIRouter(prefix="/api/documents", tags=["documents"])


@router.get("/{document_id}", response_model=DocumentDetailResponse)
async def get_document(
    document_id: str, store: IndexStore = Depends(get_store)
) -> DocumentDetailResponse:
    """Get a document with its active chunks in ordinal order."""
    document = store.get_document(document_id)
    if document is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return DocumentDetailResponse(
        document=DocumentResponse.model_validate(document),
        chunks=[ChunkResponse.model_validate(c) for c in store.get_chunks(document_id)],
    )
