"""Pydantic schemas for API requests and responses."""

from pydantic import BaseModel, ConfigDict, Field


class CollectionCreate(BaseModel):
    """Request to register a new collection."""

    name: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    source_locator: str = Field(..., min_length=1, description="Root directory of the source")
    source_kind: str = "filesystem"
    include_globs: list[str] = Field(default_factory=list)
    exclude_globs: list[str] = Field(default_factory=list)
    boost: float = Field(1.0, ge=0.0, le=10.0, description="Score multiplier for this collection")


class CollectionResponse(BaseModel):
    """A collection."""

    name: str
    source_locator: str
    source_kind: str
    include_globs: list[str]
    exclude_globs: list[str]
    boost: float
    created_at: str | None = None
    scanned_at: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CollectionListResponse(BaseModel):
    """Response for list collections endpoint."""

    collections: list[CollectionResponse]
    total: int


class DocumentResponse(BaseModel):
    """A document's stored state."""

    id: str
    collection: str
    path: str
    title: str
    content_hash: str
    content_type: str | None = None
    generation: int
    importance: float
    path_class: str
    active: bool
    indexed_at: str | None = None

    model_config = ConfigDict(from_attributes=True)


class DocumentListResponse(BaseModel):
    """Documents of one collection."""

    collection: str
    documents: list[DocumentResponse]
    total: int


class ChunkResponse(BaseModel):
    """A stored chunk."""

    id: str
    ordinal: int
    kind: str
    identity: str
    text: str
    start_line: int
    end_line: int
    breadcrumb: str | None = None
    active: bool
    stale: bool

    model_config = ConfigDict(from_attributes=True)


class DocumentDetailResponse(BaseModel):
    """A document with its active chunks."""

    document: DocumentResponse
    chunks: list[ChunkResponse]


class DocumentReportResponse(BaseModel):
    """Outcome of indexing one document."""

    document_id: str
    path: str
    status: str
    generation: int
    chunks: int
    changes: dict[str, int]
    embedded: int
    reused: int
    warnings: list[str]
    error: str | None = None


class IndexReportResponse(BaseModel):
    """Outcome of a collection re-index."""

    collection: str
    indexed: int
    unchanged: int
    removed: int
    failed: int
    embedded: int
    cache_collected: int
    warnings: list[str]
    documents: list[DocumentReportResponse]


class StrategyDecisionResponse(BaseModel):
    """How the workflow for a query was chosen."""

    workflow: str
    source: str
    signals: list[str]


class ScoreBreakdownResponse(BaseModel):
    """Every factor behind a result's score."""

    lexical_score: float | None = None
    lexical_rank: int | None = None
    vector_similarity: float | None = None
    vector_rank: int | None = None
    importance: float
    collection_boost: float
    path_penalty: float
    title_boost: float
    fused_score: float | None = None
    rerank_score: float | None = None
    raw_score: float

    model_config = ConfigDict(from_attributes=True)


class SearchResultResponse(BaseModel):
    """One ranked chunk."""

    rank: int
    score: float
    chunk_id: str
    document_id: str
    collection: str
    path: str
    title: str
    text: str
    breadcrumb: str | None = None
    start_line: int
    end_line: int
    breakdown: ScoreBreakdownResponse


class SearchResponseModel(BaseModel):
    """Search response with results and the decision behind them."""

    query: str
    workflow: str
    decision: StrategyDecisionResponse
    degraded: bool
    reranked: bool
    warnings: list[str]
    results: list[SearchResultResponse]
    total: int


class EmbeddingStatus(BaseModel):
    """Embedding configuration and cache state."""

    enabled: bool
    model: str | None = None
    cache_entries: int


class StatusResponse(BaseModel):
    """Index counts and cache sizes."""

    collections: int
    documents: int
    active_chunks: int
    tombstoned_chunks: int
    stale_chunks: int
    vectors: int
    embedding: EmbeddingStatus
    decision_cache_entries: int


class CleanupResponse(BaseModel):
    """Result of a maintenance pass."""

    chunks_compacted: int
    cache_entries_collected: int
    decisions_expired: int
