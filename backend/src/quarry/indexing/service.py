"""Indexing service: source items into the dual index, embedding only what changed."""

import asyncio
import hashlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Callable, Coroutine

from quarry.chunking.chunker import SemanticChunker
from quarry.chunking.models import Chunk
from quarry.config import ConfigError, load_settings
from quarry.errors import CollectionNotFoundError, EmbeddingFailure, StoreFailure
from quarry.indexing.changes import ChangeDetector, ChangeStatus, ChunkChange, PriorChunk
from quarry.indexing.embedding_cache import EmbeddingCache
from quarry.indexing.hasher import ChunkHasher
from quarry.indexing.importance import ImportanceScorer, classify_path, extract_links
from quarry.llm.collaborators import Embedder
from quarry.sources.base import SourceItem
from quarry.sources.filesystem import source_for_collection
from quarry.store.base import (
    ChunkWrite,
    CollectionRecord,
    DocumentRecord,
    IndexStore,
    document_id_for,
)

logger = logging.getLogger(__name__)

# Type alias for progress callback
IndexingProgressCallback = Callable[[int, int, str], Coroutine[Any, Any, None]]

DEFAULT_CONCURRENCY_LIMIT = 8
DEFAULT_EMBED_TIMEOUT = 30.0


class DocumentStatus(Enum):
    """Outcome of indexing one document."""

    INDEXED = "indexed"
    UNCHANGED = "unchanged"  # Content hash matched; nothing written
    FAILED = "failed"  # Store rejected the write; generation not advanced
    REMOVED = "removed"  # Gone from the source; tombstoned


@dataclass
class DocumentReport:
    """What happened to one document during a pass."""

    document_id: str
    path: str
    status: DocumentStatus
    generation: int = 0
    chunks: int = 0
    changes: dict[str, int] = field(default_factory=dict)
    embedded: int = 0  # Identities sent to the embedder successfully
    reused: int = 0  # Chunks served from the embedding cache
    warnings: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class IndexReport:
    """Result of indexing a collection."""

    collection: str
    documents: list[DocumentReport] = field(default_factory=list)
    cache_collected: int = 0

    def count(self, status: DocumentStatus) -> int:
        return sum(1 for report in self.documents if report.status is status)

    @property
    def embedded(self) -> int:
        return sum(report.embedded for report in self.documents)

    @property
    def warnings(self) -> list[str]:
        return [f"{r.path}: {w}" for r in self.documents for w in r.warnings]


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def resolve_document_id(collection: str, item: SourceItem) -> str:
    """The id an item is stored under; derived from its path when the source gives none."""
    return item.document_id or document_id_for(collection, item.path)


class IndexingService:
    """Indexes collections into an ``IndexStore``.

    For each document the content is chunked, each chunk gets a content
    identity, and identities are compared with the previous generation.
    Vectors come from the embedding cache when possible; only identities
    the cache has never seen are sent to the embedder, concurrently and
    under a timeout. A failed embedding leaves the chunk stale rather than
    failing the document. A store failure fails just that document.
    """

    def __init__(
        self,
        store: IndexStore,
        cache: EmbeddingCache,
        chunker: SemanticChunker | None = None,
        hasher: ChunkHasher | None = None,
        embedder: Embedder | None = None,
        concurrency_limit: int | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize indexing service.

        Args:
            store: Dual-index store.
            cache: Embedding cache.
            chunker: Semantic chunker. Defaults to settings.
            hasher: Chunk hasher. Defaults to settings.
            embedder: Embedding collaborator. Without one, chunks are stored
                for lexical search only.
            concurrency_limit: Concurrent embedding calls.
            timeout: Seconds allowed per embedding call.
        """
        if concurrency_limit is None or timeout is None:
            try:
                settings = load_settings().embedding
                default_limit = settings.concurrency_limit
                default_timeout = settings.timeout_seconds
            except (ValueError, OSError, ConfigError):
                default_limit = DEFAULT_CONCURRENCY_LIMIT
                default_timeout = DEFAULT_EMBED_TIMEOUT
            if concurrency_limit is None:
                concurrency_limit = default_limit
            if timeout is None:
                timeout = default_timeout

        self.store = store
        self.cache = cache
        self.chunker = chunker or SemanticChunker()
        self.hasher = hasher or ChunkHasher()
        self.embedder = embedder
        self.detector = ChangeDetector()
        self.scorer = ImportanceScorer()
        self.concurrency_limit = concurrency_limit
        self.timeout = timeout

    def bind_embedding_model(self) -> bool:
        """Point the cache at the embedder's model.

        When the model differs from the one the store was built with, every
        stored vector belongs to another embedding space, so the vector
        index is reset and all chunks become stale.

        Returns:
            True if the model changed.
        """
        if self.embedder is None or self.cache.model_key == self.embedder.model_key:
            return False
        changed = self.cache.bind_model(self.embedder.model_key)
        if changed:
            self.store.reset_vectors()
        return changed

    async def index_collection(
        self,
        name: str,
        progress_callback: IndexingProgressCallback | None = None,
        force: bool = False,
    ) -> IndexReport:
        """Re-scan a collection's source and index it.

        Args:
            name: Collection name.
            progress_callback: Optional async callback (step, total, message).
            force: Re-chunk documents even when their content is unchanged.

        Returns:
            IndexReport with one entry per document seen or removed.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            CollectionError: If its source cannot be read.
        """
        collection = self.store.get_collection(name)
        if collection is None:
            raise CollectionNotFoundError(f"Collection not found: {name}")

        source = source_for_collection(collection)
        items = await asyncio.to_thread(lambda: list(source.iter_items()))
        return await self.index_items(collection, items, progress_callback, force)

    async def index_items(
        self,
        collection: CollectionRecord,
        items: Iterable[SourceItem],
        progress_callback: IndexingProgressCallback | None = None,
        force: bool = False,
    ) -> IndexReport:
        """Index items as the complete current content of a collection.

        Documents previously indexed in the collection but absent from
        ``items`` are tombstoned.
        """
        self.bind_embedding_model()
        items = list(items)
        total = len(items)
        report = IndexReport(collection=collection.name)

        if progress_callback:
            await progress_callback(0, total, f"Indexing documents (0/{total})...")

        seen: set[str] = set()
        for idx, item in enumerate(items):
            document_id = resolve_document_id(collection.name, item)
            seen.add(document_id)
            try:
                document_report = await self.index_document(collection, item, force=force)
            except Exception as e:
                # One broken document must not end the pass
                logger.exception(f"Unexpected error indexing {item.path}")
                document_report = DocumentReport(
                    document_id=document_id,
                    path=item.path,
                    status=DocumentStatus.FAILED,
                    error=str(e),
                )
            report.documents.append(document_report)

            # Emit progress every 10 documents or on the last one
            if progress_callback and ((idx + 1) % 10 == 0 or idx == total - 1):
                await progress_callback(idx + 1, total, f"Indexed {idx + 1}/{total} documents...")

        for document in self.store.list_documents(collection.name):
            if document.id in seen:
                continue
            try:
                self.store.deactivate_document(document.id)
                status, error = DocumentStatus.REMOVED, None
            except StoreFailure as e:
                logger.error(f"Could not tombstone {document.path}: {e}")
                status, error = DocumentStatus.FAILED, str(e)
            report.documents.append(
                DocumentReport(
                    document_id=document.id,
                    path=document.path,
                    status=status,
                    generation=document.generation,
                    error=error,
                )
            )

        self.update_importance(collection.name)
        self.store.mark_scanned(collection.name)
        if self.cache.model_key is not None:
            report.cache_collected = self.cache.collect_garbage()

        logger.info(
            f"Indexed collection {collection.name}: "
            f"{report.count(DocumentStatus.INDEXED)} indexed, "
            f"{report.count(DocumentStatus.UNCHANGED)} unchanged, "
            f"{report.count(DocumentStatus.REMOVED)} removed, "
            f"{report.count(DocumentStatus.FAILED)} failed, "
            f"{report.embedded} embeddings computed"
        )
        return report

    async def index_document(
        self, collection: CollectionRecord, item: SourceItem, force: bool = False
    ) -> DocumentReport:
        """Index one document.

        Returns:
            DocumentReport. Store failures are reported, not raised.
        """
        document_id = resolve_document_id(collection.name, item)
        digest = content_hash(item.content)
        existing = self.store.get_document(document_id)

        if (
            not force
            and existing is not None
            and existing.active
            and existing.content_hash == digest
            and not (self.embedder is not None and self.store.has_stale_chunks(document_id))
        ):
            return DocumentReport(
                document_id=document_id,
                path=item.path,
                status=DocumentStatus.UNCHANGED,
                generation=existing.generation,
            )

        chunks = await asyncio.to_thread(
            self.chunker.chunk, item.content, item.path, item.content_type
        )
        identities = self.hasher.identities(chunks)

        previous: list[PriorChunk] = []
        if existing is not None:
            previous = [
                PriorChunk(stored.ordinal, stored.identity)
                for stored in self.store.get_chunks(document_id)
            ]
        changes = self.detector.classify(previous, identities)

        vectors, embedded, warnings = await self._vectors_for(chunks, identities)
        writes = [
            self._chunk_write(chunk, change, vectors.get(change.identity))
            for chunk, change in zip(chunks, changes.changes)
        ]
        reused = sum(
            1
            for chunk, identity in zip(chunks, identities)
            if identity in vectors and identity not in embedded
        )

        document = DocumentRecord(
            id=document_id,
            collection=collection.name,
            path=item.path,
            title=item.title,
            content_hash=digest,
            content_type=item.content_type,
            importance=existing.importance if existing else 1.0,
            path_class=classify_path(item.path).value,
        )
        try:
            stored = await asyncio.to_thread(self.store.upsert_chunks, document, writes)
        except StoreFailure as e:
            logger.error(f"Failed to store {collection.name}/{item.path}: {e}")
            return DocumentReport(
                document_id=document_id,
                path=item.path,
                status=DocumentStatus.FAILED,
                generation=existing.generation if existing else 0,
                chunks=len(chunks),
                changes=changes.counts(),
                embedded=len(embedded),
                warnings=warnings,
                error=str(e),
            )

        if _is_markdown(item):
            self.store.replace_links(document_id, extract_links(item.content, item.path))

        return DocumentReport(
            document_id=document_id,
            path=item.path,
            status=DocumentStatus.INDEXED,
            generation=stored.generation,
            chunks=len(chunks),
            changes=changes.counts(),
            embedded=len(embedded),
            reused=reused,
            warnings=warnings,
        )

    async def _vectors_for(
        self, chunks: list[Chunk], identities: list[str]
    ) -> tuple[dict[str, list[float]], set[str], list[str]]:
        """Vectors for every embeddable chunk: cache first, then the embedder.

        Returns:
            Identity to vector for every chunk that has one, the identities
            freshly embedded, and a warning per failed embedding.
        """
        if self.embedder is None:
            return {}, set(), []

        wanted = {
            identity: chunk
            for chunk, identity in zip(chunks, identities)
            if not chunk.is_blank
        }
        vectors = self.cache.get_many(list(wanted))
        missing = [identity for identity in wanted if identity not in vectors]
        if not missing:
            return vectors, set(), []

        semaphore = asyncio.Semaphore(self.concurrency_limit)
        results = await asyncio.gather(
            *(self._embed_one(semaphore, self.hasher.embedding_text(wanted[i])) for i in missing),
            return_exceptions=True,
        )

        embedded: set[str] = set()
        warnings: list[str] = []
        for identity, result in zip(missing, results):
            chunk = wanted[identity]
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                reason = (
                    f"timed out after {self.timeout}s"
                    if isinstance(result, asyncio.TimeoutError)
                    else str(result)
                )
                label = chunk.breadcrumb or chunk.kind.value
                warnings.append(f"chunk {chunk.ordinal} ({label}): embedding failed: {reason}")
                continue
            # Only successful embeddings reach the cache
            self.cache.put(identity, result)
            vectors[identity] = result
            embedded.add(identity)

        if warnings:
            logger.warning(f"{len(warnings)} of {len(missing)} embeddings failed")
        return vectors, embedded, warnings

    async def _embed_one(self, semaphore: asyncio.Semaphore, text: str) -> list[float]:
        assert self.embedder is not None
        async with semaphore:
            vectors = await asyncio.wait_for(self.embedder.embed([text]), timeout=self.timeout)
        if len(vectors) != 1 or not vectors[0]:
            raise EmbeddingFailure("embedder returned no vector")
        return vectors[0]

    def _chunk_write(
        self, chunk: Chunk, change: ChunkChange, vector: list[float] | None
    ) -> ChunkWrite:
        needs_vector = self.embedder is not None and not chunk.is_blank
        # The same chunk id held a vector last generation
        same_slot = change.status in (ChangeStatus.UNCHANGED, ChangeStatus.CHANGED)
        return ChunkWrite(
            ordinal=chunk.ordinal,
            kind=chunk.kind.value,
            identity=change.identity,
            text=chunk.text,
            start_offset=chunk.start,
            end_offset=chunk.end,
            start_line=chunk.start_line,
            end_line=chunk.end_line,
            breadcrumb=chunk.breadcrumb,
            vector=vector if needs_vector else None,
            keep_vector=needs_vector and vector is None and same_slot,
            stale=needs_vector and vector is None,
        )

    def update_importance(self, collection: str) -> None:
        """Recompute importance for every active document of a collection."""
        links = self.store.links_for_collection(collection)
        scores = self.scorer.score(links)
        # Sources choose their own ids, so map paths back through the store
        ids_by_path = {doc.path: doc.id for doc in self.store.list_documents(collection)}
        self.store.set_importance(
            {ids_by_path[path]: score for path, score in scores.items() if path in ids_by_path}
        )


def _is_markdown(item: SourceItem) -> bool:
    if item.content_type == "text/markdown":
        return True
    return PurePosixPath(item.path).suffix.lower() in (".md", ".markdown")
