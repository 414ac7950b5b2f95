"""ChromaDB vector store implementation."""

import gc
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import chromadb
from chromadb.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class VectorSnapshot:
    """Stored state of a set of ids, taken before a write that may need undoing."""

    ids: list[str]
    present: list[str] = field(default_factory=list)
    embeddings: list[list[float]] = field(default_factory=list)
    metadatas: list[dict[str, Any]] = field(default_factory=list)


class VectorStore:
    """Vector store wrapper for ChromaDB.

    Holds one vector per chunk, keyed by chunk id. Embeddings are always
    supplied by the caller so the collection never runs its own embedding
    function. Each entry carries ``document_id``, ``collection``, ``active``
    and ``stale`` metadata; ``active`` is the tombstone flag queries filter on.
    """

    COLLECTION_NAME = "quarry_chunks"

    def __init__(self, persist_path: Path) -> None:
        """Initialize vector store with persistent storage.

        Args:
            persist_path: Directory path for ChromaDB persistence.
        """
        self._client = chromadb.PersistentClient(
            path=str(persist_path),
            settings=Settings(anonymized_telemetry=False),
        )
        self._collection = self._open_collection()

    def _open_collection(self) -> chromadb.Collection:
        return self._client.get_or_create_collection(
            name=self.COLLECTION_NAME,
            metadata={"hnsw:space": "cosine"},
            embedding_function=None,
        )

    @property
    def collection(self) -> chromadb.Collection:
        """Get the underlying ChromaDB collection."""
        return self._collection

    def upsert(
        self,
        ids: list[str],
        embeddings: list[list[float]],
        metadatas: list[dict[str, Any]],
    ) -> None:
        """Insert or replace vectors.

        Args:
            ids: Chunk ids.
            embeddings: One vector per id.
            metadatas: One metadata dictionary per id.
        """
        if not ids:
            return
        self._collection.upsert(
            ids=ids,
            embeddings=embeddings,  # type: ignore[arg-type]
            metadatas=metadatas,  # type: ignore[arg-type]
        )

    def existing_ids(self, ids: list[str]) -> set[str]:
        """Subset of ids that currently have a stored vector."""
        if not ids:
            return set()
        result = self._collection.get(ids=ids, include=[])
        return set(result["ids"])

    def snapshot(self, ids: list[str]) -> VectorSnapshot:
        """Capture the vectors and metadata currently stored for ids."""
        snapshot = VectorSnapshot(ids=list(ids))
        if not ids:
            return snapshot
        result = self._collection.get(ids=ids, include=["embeddings", "metadatas"])
        embeddings = result["embeddings"] if result["embeddings"] is not None else []
        metadatas = result["metadatas"] or []
        snapshot.present = list(result["ids"])
        snapshot.embeddings = [[float(x) for x in vector] for vector in embeddings]
        snapshot.metadatas = [dict(m or {}) for m in metadatas]
        return snapshot

    def restore(self, snapshot: VectorSnapshot) -> None:
        """Put the snapshot ids back exactly as captured.

        Ids absent when the snapshot was taken are deleted.
        """
        self.delete(ids=snapshot.ids)
        self.upsert(snapshot.present, snapshot.embeddings, snapshot.metadatas)

    def update_metadata(self, ids: list[str], metadatas: list[dict[str, Any]]) -> None:
        """Update metadata for vectors that exist, skipping missing ids."""
        present = self.existing_ids(ids)
        pairs = [(i, m) for i, m in zip(ids, metadatas) if i in present]
        if not pairs:
            return
        self._collection.update(
            ids=[i for i, _ in pairs],
            metadatas=[m for _, m in pairs],  # type: ignore[arg-type]
        )

    def query(
        self,
        embedding: list[float],
        n_results: int = 10,
        where: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Query for the nearest vectors.

        Args:
            embedding: Query vector.
            n_results: Maximum number of results to return.
            where: Optional metadata filter.

        Returns:
            Query results including ids, metadatas and distances.
        """
        available = self._collection.count()
        if available == 0 or n_results <= 0:
            return {"ids": [[]], "metadatas": [[]], "distances": [[]]}
        result = self._collection.query(
            query_embeddings=[embedding],  # type: ignore[arg-type]
            n_results=min(n_results, available),
            where=where,
            include=["metadatas", "distances"],  # type: ignore[list-item]
        )
        return dict(result)

    def delete(self, ids: list[str] | None = None, where: dict[str, Any] | None = None) -> None:
        """Delete vectors by id or by metadata filter.

        Args:
            ids: Chunk ids to delete.
            where: Metadata filter selecting vectors to delete.
        """
        if ids is not None and not ids:
            return
        if ids is None and where is None:
            return
        self._collection.delete(ids=ids, where=where)

    def count(self) -> int:
        """Number of stored vectors, tombstoned ones included."""
        return self._collection.count()

    def clear(self) -> None:
        """Clear all vectors from the collection."""
        # ChromaDB doesn't have a direct clear method, so we delete and recreate
        self._client.delete_collection(name=self.COLLECTION_NAME)
        self._collection = self._open_collection()

    def close(self) -> None:
        """Close the vector store and release resources.

        Should be called when the store is no longer needed to release file
        handles held by the persistent client.
        """
        # PersistentClient has no close method, so stop its internal systems
        if self._client is not None:
            systems = getattr(self._client, "_identifier_to_system", None)
            if systems:
                for system in list(systems.values()):
                    stop = getattr(system, "stop", None)
                    if stop is None:
                        continue
                    try:
                        stop()
                    except Exception as e:
                        logger.debug(f"Ignoring error while stopping ChromaDB system: {e}")

        self._collection = None  # type: ignore[assignment]
        self._client = None  # type: ignore[assignment]

        # Force garbage collection to release file handles
        gc.collect()
