"""Change-aware indexing: identities, change detection, embedding cache, importance."""

from quarry.indexing.changes import ChangeDetector, ChangeSet, ChangeStatus, ChunkChange, PriorChunk
from quarry.indexing.embedding_cache import CacheLookup, CacheStatus, EmbeddingCache
from quarry.indexing.hasher import ChunkHasher, compute_identity, normalize_text
from quarry.indexing.importance import ImportanceScorer, PathClass, classify_path, extract_links
from quarry.indexing.service import (
    DocumentReport,
    DocumentStatus,
    IndexingProgressCallback,
    IndexingService,
    IndexReport,
)

__all__ = [
    "CacheLookup",
    "CacheStatus",
    "ChangeDetector",
    "ChangeSet",
    "ChangeStatus",
    "ChunkChange",
    "ChunkHasher",
    "DocumentReport",
    "DocumentStatus",
    "EmbeddingCache",
    "ImportanceScorer",
    "IndexingProgressCallback",
    "IndexingService",
    "IndexReport",
    "PathClass",
    "PriorChunk",
    "classify_path",
    "compute_identity",
    "extract_links",
    "normalize_text",
]
