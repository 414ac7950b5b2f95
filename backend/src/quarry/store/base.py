"""Storage capability interface for the dual lexical/vector index."""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


def document_id_for(collection: str, path: str) -> str:
    """Stable document identifier derived from collection and path."""
    digest = hashlib.sha256(f"{collection}\0{path}".encode("utf-8")).hexdigest()
    return digest[:32]


def chunk_id_for(document_id: str, ordinal: int) -> str:
    """Stable chunk identifier, ``{document_id}:{ordinal}``."""
    return f"{document_id}:{ordinal}"


@dataclass
class CollectionRecord:
    """A named group of documents read from one source."""

    name: str
    source_locator: str
    source_kind: str = "filesystem"
    include_globs: list[str] = field(default_factory=list)
    exclude_globs: list[str] = field(default_factory=list)
    boost: float = 1.0
    created_at: str | None = None
    scanned_at: str | None = None


@dataclass
class DocumentRecord:
    """Stored state of one document."""

    id: str
    collection: str
    path: str
    title: str
    content_hash: str
    content_type: str | None = None
    generation: int = 0
    importance: float = 1.0
    path_class: str = "production"
    active: bool = True
    indexed_at: str | None = None


@dataclass
class ChunkWrite:
    """One chunk to persist as part of a document write.

    Vector handling:
        * ``vector`` set: stored, chunk marked fresh.
        * ``vector`` None and ``keep_vector``: the vector already stored
          under this chunk id is kept and marked stale.
        * ``vector`` None otherwise: any stored vector is dropped.

    ``stale`` marks a chunk whose text has no current embedding; such
    chunks are embedded again on the next pass.
    """

    ordinal: int
    kind: str
    identity: str
    text: str
    start_offset: int
    end_offset: int
    start_line: int
    end_line: int
    breadcrumb: str | None = None
    vector: list[float] | None = None
    keep_vector: bool = False
    stale: bool = False


@dataclass
class StoredChunk:
    """A chunk as read back from the store."""

    id: str
    document_id: str
    ordinal: int
    kind: str
    identity: str
    text: str
    start_offset: int
    end_offset: int
    start_line: int
    end_line: int
    breadcrumb: str | None = None
    active: bool = True
    stale: bool = False
    collection: str | None = None
    path: str | None = None
    title: str | None = None


@dataclass(frozen=True)
class LexicalHit:
    """A full-text match. ``score`` is the negated BM25 value, larger is better."""

    chunk_id: str
    document_id: str
    score: float


@dataclass(frozen=True)
class VectorHit:
    """A nearest-neighbour match. ``similarity`` is 1 - cosine distance."""

    chunk_id: str
    document_id: str
    similarity: float


@dataclass(frozen=True)
class DocumentScoring:
    """Per-document inputs to the final score."""

    document_id: str
    collection: str
    path: str
    title: str
    importance: float
    path_class: str
    collection_boost: float


@dataclass
class StoreStats:
    """Counts reported by the status endpoint."""

    collections: int = 0
    documents: int = 0
    active_chunks: int = 0
    tombstoned_chunks: int = 0
    stale_chunks: int = 0
    vectors: int = 0


class IndexStore(ABC):
    """Persistence capability used by indexing and ranking.

    Implementations keep a lexical and a vector index in step for every
    chunk. Query results are ordered best first with ties broken by chunk
    id, so identical inputs always produce identical output.
    """

    # Collections

    @abstractmethod
    def create_collection(self, collection: CollectionRecord) -> CollectionRecord:
        """Create a collection.

        Raises:
            CollectionExistsError: If the name is taken.
        """

    @abstractmethod
    def get_collection(self, name: str) -> CollectionRecord | None:
        """Get a collection by name."""

    @abstractmethod
    def list_collections(self) -> list[CollectionRecord]:
        """All collections, ordered by name."""

    @abstractmethod
    def delete_collection(self, name: str) -> None:
        """Delete a collection with its documents and chunks.

        Raises:
            CollectionNotFoundError: If no such collection exists.
        """

    @abstractmethod
    def mark_scanned(self, name: str) -> None:
        """Record that a collection was just re-scanned."""

    # Documents and chunks

    @abstractmethod
    def get_document(self, document_id: str) -> DocumentRecord | None:
        """Get a document by id."""

    @abstractmethod
    def list_documents(self, collection: str, active_only: bool = True) -> list[DocumentRecord]:
        """Documents of a collection, ordered by path."""

    @abstractmethod
    def upsert_chunks(self, document: DocumentRecord, chunks: list[ChunkWrite]) -> DocumentRecord:
        """Atomically write a new generation of a document.

        Chunks are keyed by ``(document_id, ordinal)`` so repeating a write is
        a no-op apart from the generation counter. Active chunks at ordinals
        beyond the new chunk list are tombstoned.

        Returns:
            The stored document with its advanced generation.

        Raises:
            StoreFailure: If either index rejects the write. Nothing is
                committed and the generation is unchanged.
        """

    @abstractmethod
    def tombstone_chunks(self, document_id: str, ordinals: list[int]) -> int:
        """Exclude chunks from queries without physically removing them."""

    @abstractmethod
    def deactivate_document(self, document_id: str) -> None:
        """Tombstone a document and all of its chunks."""

    @abstractmethod
    def has_stale_chunks(self, document_id: str) -> bool:
        """True if any active chunk of the document lacks a current embedding."""

    @abstractmethod
    def get_chunks(self, document_id: str, active_only: bool = True) -> list[StoredChunk]:
        """Chunks of a document by ordinal."""

    @abstractmethod
    def chunk_details(self, chunk_ids: list[str]) -> dict[str, StoredChunk]:
        """Chunks by id, with their document's collection, path and title."""

    @abstractmethod
    def document_scoring(self, document_ids: list[str]) -> dict[str, DocumentScoring]:
        """Scoring inputs for the given documents."""

    @abstractmethod
    def set_importance(self, scores: dict[str, float]) -> None:
        """Replace importance for documents, keyed by document id."""

    @abstractmethod
    def replace_links(self, document_id: str, targets: list[str]) -> None:
        """Replace the outgoing links recorded for a document."""

    @abstractmethod
    def links_for_collection(self, collection: str) -> dict[str, list[str]]:
        """Active document paths of a collection mapped to their link targets."""

    # Queries

    @abstractmethod
    def lexical_query(
        self, terms: list[str], limit: int, collections: list[str] | None = None
    ) -> list[LexicalHit]:
        """Full-text search for chunks matching any of the terms."""

    @abstractmethod
    def vector_query(
        self, embedding: list[float], k: int, collections: list[str] | None = None
    ) -> list[VectorHit]:
        """Nearest active chunks to an embedding."""

    # Maintenance

    @abstractmethod
    def compact(self) -> int:
        """Physically remove tombstoned chunks. Returns the number removed."""

    @abstractmethod
    def reset_vectors(self) -> None:
        """Drop every stored vector and mark all chunks stale."""

    @abstractmethod
    def stats(self) -> StoreStats:
        """Current counts."""
