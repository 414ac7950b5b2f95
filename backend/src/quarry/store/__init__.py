"""Dual lexical/vector index store."""

from quarry.store.base import (
    ChunkWrite,
    CollectionRecord,
    DocumentRecord,
    DocumentScoring,
    IndexStore,
    LexicalHit,
    StoredChunk,
    StoreStats,
    VectorHit,
    chunk_id_for,
    document_id_for,
)
from quarry.store.hybrid_store import HybridStore
from quarry.store.vectorstore import VectorStore

__all__ = [
    "ChunkWrite",
    "CollectionRecord",
    "DocumentRecord",
    "DocumentScoring",
    "HybridStore",
    "IndexStore",
    "LexicalHit",
    "StoredChunk",
    "StoreStats",
    "VectorHit",
    "VectorStore",
    "chunk_id_for",
    "document_id_for",
]
