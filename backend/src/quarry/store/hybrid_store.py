"""SQLite FTS5 plus ChromaDB implementation of the index store."""

import json
import logging
import sqlite3
from typing import Any

from quarry.db.connection import Database
from quarry.errors import CollectionExistsError, CollectionNotFoundError, StoreFailure
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
)
from quarry.store.vectorstore import VectorSnapshot, VectorStore

logger = logging.getLogger(__name__)

_CHUNK_COLUMNS = """
    c.id, c.document_id, c.ordinal, c.kind, c.identity, c.text,
    c.start_offset, c.end_offset, c.start_line, c.end_line,
    c.breadcrumb, c.active, c.stale
"""


def _fts_query(terms: list[str]) -> str:
    """OR-join terms as quoted FTS5 strings."""
    quoted = ['"' + term.replace('"', '""') + '"' for term in terms]
    return " OR ".join(quoted)


def _placeholders(values: list[Any]) -> str:
    return ",".join("?" * len(values))


class HybridStore(IndexStore):
    """Keeps chunk text in SQLite FTS5 and chunk vectors in ChromaDB.

    SQLite is the source of truth for collections, documents and chunk
    state. Chroma holds vectors keyed by chunk id and mirrors the tombstone
    flag in metadata so nearest-neighbour queries skip inactive chunks.
    """

    def __init__(self, db: Database, vectorstore: VectorStore) -> None:
        """Initialize store.

        Args:
            db: Migrated database connection.
            vectorstore: Vector store for chunk embeddings.
        """
        self._db = db
        self._vectors = vectorstore

    @property
    def db(self) -> Database:
        return self._db

    @property
    def vectorstore(self) -> VectorStore:
        return self._vectors

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def create_collection(self, collection: CollectionRecord) -> CollectionRecord:
        try:
            with self._db.transaction() as db:
                db.execute(
                    """
                    INSERT INTO collections
                        (name, source_locator, source_kind, include_globs, exclude_globs, boost)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        collection.name,
                        collection.source_locator,
                        collection.source_kind,
                        json.dumps(collection.include_globs),
                        json.dumps(collection.exclude_globs),
                        collection.boost,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise CollectionExistsError(f"Collection already exists: {collection.name}") from e
        logger.info(f"Created collection {collection.name} ({collection.source_locator})")
        created = self.get_collection(collection.name)
        assert created is not None
        return created

    def get_collection(self, name: str) -> CollectionRecord | None:
        row = self._db.fetchone("SELECT * FROM collections WHERE name = ?", (name,))
        return self._row_to_collection(row) if row else None

    def list_collections(self) -> list[CollectionRecord]:
        rows = self._db.fetchall("SELECT * FROM collections ORDER BY name")
        return [self._row_to_collection(row) for row in rows]

    def delete_collection(self, name: str) -> None:
        if self.get_collection(name) is None:
            raise CollectionNotFoundError(f"Collection not found: {name}")
        try:
            with self._db.transaction() as db:
                db.execute(
                    """
                    DELETE FROM fts_chunks WHERE chunk_id IN (
                        SELECT c.id FROM chunks c
                        JOIN documents d ON d.id = c.document_id
                        WHERE d.collection = ?
                    )
                    """,
                    (name,),
                )
                # Documents, chunks and links go by cascade
                db.execute("DELETE FROM collections WHERE name = ?", (name,))
                self._vectors.delete(where={"collection": name})
        except Exception as e:
            raise StoreFailure(f"Failed to delete collection {name}: {e}") from e
        logger.info(f"Deleted collection {name}")

    def mark_scanned(self, name: str) -> None:
        with self._db.transaction() as db:
            db.execute(
                "UPDATE collections SET scanned_at = datetime('now') WHERE name = ?",
                (name,),
            )

    def _row_to_collection(self, row: sqlite3.Row) -> CollectionRecord:
        return CollectionRecord(
            name=row["name"],
            source_locator=row["source_locator"],
            source_kind=row["source_kind"],
            include_globs=json.loads(row["include_globs"] or "[]"),
            exclude_globs=json.loads(row["exclude_globs"] or "[]"),
            boost=row["boost"],
            created_at=row["created_at"],
            scanned_at=row["scanned_at"],
        )

    # ------------------------------------------------------------------
    # Documents and chunks
    # ------------------------------------------------------------------

    def get_document(self, document_id: str) -> DocumentRecord | None:
        row = self._db.fetchone("SELECT * FROM documents WHERE id = ?", (document_id,))
        return self._row_to_document(row) if row else None

    def list_documents(self, collection: str, active_only: bool = True) -> list[DocumentRecord]:
        sql = "SELECT * FROM documents WHERE collection = ?"
        if active_only:
            sql += " AND active = 1"
        rows = self._db.fetchall(sql + " ORDER BY path", (collection,))
        return [self._row_to_document(row) for row in rows]

    def has_stale_chunks(self, document_id: str) -> bool:
        """True if any active chunk of the document lacks a current embedding."""
        row = self._db.fetchone(
            "SELECT 1 FROM chunks WHERE document_id = ? AND active = 1 AND stale = 1 LIMIT 1",
            (document_id,),
        )
        return row is not None

    def upsert_chunks(self, document: DocumentRecord, chunks: list[ChunkWrite]) -> DocumentRecord:
        ordered = sorted(chunks, key=lambda c: c.ordinal)
        snapshot: VectorSnapshot | None = None
        try:
            with self._db.transaction() as db:
                generation = self._upsert_document_row(db, document)
                for chunk in ordered:
                    self._upsert_chunk_row(db, document, chunk)
                dropped = self._tombstone_rows(db, document.id, min_ordinal=len(ordered))
                touched = [chunk_id_for(document.id, c.ordinal) for c in ordered] + dropped
                snapshot = self._vectors.snapshot(touched)
                self._sync_vectors(document, ordered, dropped)
        except Exception as e:
            # SQLite rolled back; put the vectors back to match it
            if snapshot is not None:
                self._restore_vectors(snapshot)
            raise StoreFailure(f"Failed to write {document.collection}/{document.path}: {e}") from e

        stored = self.get_document(document.id)
        assert stored is not None
        logger.debug(
            f"Stored {document.path} generation {generation}: "
            f"{len(ordered)} chunks, {len(dropped)} tombstoned"
        )
        return stored

    def _restore_vectors(self, snapshot: VectorSnapshot) -> None:
        try:
            self._vectors.restore(snapshot)
        except Exception as e:
            logger.error(
                f"Could not restore {len(snapshot.ids)} vectors after a failed write; "
                f"they are rebuilt on the next re-index: {e}"
            )

    def _upsert_document_row(self, db: Database, document: DocumentRecord) -> int:
        row = db.fetchone("SELECT generation FROM documents WHERE id = ?", (document.id,))
        generation = (row["generation"] if row else 0) + 1
        db.execute(
            """
            INSERT INTO documents
                (id, collection, path, title, content_type, content_hash,
                 generation, importance, path_class, active, indexed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, datetime('now'))
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                content_type = excluded.content_type,
                content_hash = excluded.content_hash,
                generation = excluded.generation,
                path_class = excluded.path_class,
                active = 1,
                indexed_at = excluded.indexed_at
            """,
            (
                document.id,
                document.collection,
                document.path,
                document.title,
                document.content_type,
                document.content_hash,
                generation,
                document.importance,
                document.path_class,
            ),
        )
        return generation

    def _upsert_chunk_row(self, db: Database, document: DocumentRecord, chunk: ChunkWrite) -> None:
        chunk_id = chunk_id_for(document.id, chunk.ordinal)
        db.execute(
            """
            INSERT INTO chunks
                (id, document_id, ordinal, kind, identity, breadcrumb,
                 start_offset, end_offset, start_line, end_line, text, active, stale)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?)
            ON CONFLICT(id) DO UPDATE SET
                kind = excluded.kind,
                identity = excluded.identity,
                breadcrumb = excluded.breadcrumb,
                start_offset = excluded.start_offset,
                end_offset = excluded.end_offset,
                start_line = excluded.start_line,
                end_line = excluded.end_line,
                text = excluded.text,
                active = 1,
                stale = excluded.stale
            """,
            (
                chunk_id,
                document.id,
                chunk.ordinal,
                chunk.kind,
                chunk.identity,
                chunk.breadcrumb,
                chunk.start_offset,
                chunk.end_offset,
                chunk.start_line,
                chunk.end_line,
                chunk.text,
                1 if chunk.stale else 0,
            ),
        )
        db.execute("DELETE FROM fts_chunks WHERE chunk_id = ?", (chunk_id,))
        db.execute(
            "INSERT INTO fts_chunks (text, title, path, breadcrumb, chunk_id) VALUES (?, ?, ?, ?, ?)",
            (chunk.text, document.title, document.path, chunk.breadcrumb or "", chunk_id),
        )

    def _tombstone_rows(self, db: Database, document_id: str, min_ordinal: int = 0) -> list[str]:
        rows = db.fetchall(
            "SELECT id FROM chunks WHERE document_id = ? AND active = 1 AND ordinal >= ?",
            (document_id, min_ordinal),
        )
        ids = [row["id"] for row in rows]
        if ids:
            db.execute(
                f"UPDATE chunks SET active = 0 WHERE id IN ({_placeholders(ids)})",
                tuple(ids),
            )
        return ids

    def _sync_vectors(
        self, document: DocumentRecord, chunks: list[ChunkWrite], tombstoned: list[str]
    ) -> None:
        """Mirror a document write into the vector store."""
        fresh = [c for c in chunks if c.vector is not None]
        kept = [c for c in chunks if c.vector is None and c.keep_vector]
        dropped = [c for c in chunks if c.vector is None and not c.keep_vector]

        self._vectors.upsert(
            ids=[chunk_id_for(document.id, c.ordinal) for c in fresh],
            embeddings=[c.vector for c in fresh if c.vector is not None],
            metadatas=[self._metadata(document, c.ordinal, stale=False) for c in fresh],
        )
        if kept:
            self._vectors.update_metadata(
                [chunk_id_for(document.id, c.ordinal) for c in kept],
                [self._metadata(document, c.ordinal, stale=True) for c in kept],
            )
        if dropped:
            self._vectors.delete(ids=[chunk_id_for(document.id, c.ordinal) for c in dropped])
        if tombstoned:
            self._vectors.update_metadata(
                tombstoned,
                [{"active": False} for _ in tombstoned],
            )

    def _metadata(self, document: DocumentRecord, ordinal: int, stale: bool) -> dict[str, Any]:
        return {
            "document_id": document.id,
            "collection": document.collection,
            "ordinal": ordinal,
            "active": True,
            "stale": stale,
        }

    def tombstone_chunks(self, document_id: str, ordinals: list[int]) -> int:
        if not ordinals:
            return 0
        ids = [chunk_id_for(document_id, ordinal) for ordinal in ordinals]
        try:
            with self._db.transaction() as db:
                cursor = db.execute(
                    f"UPDATE chunks SET active = 0 WHERE active = 1 AND id IN ({_placeholders(ids)})",
                    tuple(ids),
                )
                count = cursor.rowcount or 0
                self._vectors.update_metadata(ids, [{"active": False} for _ in ids])
        except Exception as e:
            raise StoreFailure(f"Failed to tombstone chunks of {document_id}: {e}") from e
        return count

    def deactivate_document(self, document_id: str) -> None:
        try:
            with self._db.transaction() as db:
                db.execute("UPDATE documents SET active = 0 WHERE id = ?", (document_id,))
                ids = self._tombstone_rows(db, document_id)
                db.execute("DELETE FROM document_links WHERE source_id = ?", (document_id,))
                self._vectors.update_metadata(ids, [{"active": False} for _ in ids])
        except Exception as e:
            raise StoreFailure(f"Failed to deactivate document {document_id}: {e}") from e

    def get_chunks(self, document_id: str, active_only: bool = True) -> list[StoredChunk]:
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.document_id = ?"
        if active_only:
            sql += " AND c.active = 1"
        rows = self._db.fetchall(sql + " ORDER BY c.ordinal", (document_id,))
        return [self._row_to_chunk(row) for row in rows]

    def chunk_details(self, chunk_ids: list[str]) -> dict[str, StoredChunk]:
        details: dict[str, StoredChunk] = {}
        unique = list(dict.fromkeys(chunk_ids))
        for i in range(0, len(unique), 500):
            batch = unique[i : i + 500]
            rows = self._db.fetchall(
                f"""
                SELECT {_CHUNK_COLUMNS}, d.collection, d.path, d.title
                FROM chunks c JOIN documents d ON d.id = c.document_id
                WHERE c.id IN ({_placeholders(batch)})
                """,
                tuple(batch),
            )
            for row in rows:
                chunk = self._row_to_chunk(row)
                chunk.collection = row["collection"]
                chunk.path = row["path"]
                chunk.title = row["title"]
                details[chunk.id] = chunk
        return details

    def document_scoring(self, document_ids: list[str]) -> dict[str, DocumentScoring]:
        scoring: dict[str, DocumentScoring] = {}
        unique = list(dict.fromkeys(document_ids))
        for i in range(0, len(unique), 500):
            batch = unique[i : i + 500]
            rows = self._db.fetchall(
                f"""
                SELECT d.id, d.collection, d.path, d.title, d.importance, d.path_class,
                       col.boost
                FROM documents d JOIN collections col ON col.name = d.collection
                WHERE d.id IN ({_placeholders(batch)})
                """,
                tuple(batch),
            )
            for row in rows:
                scoring[row["id"]] = DocumentScoring(
                    document_id=row["id"],
                    collection=row["collection"],
                    path=row["path"],
                    title=row["title"],
                    importance=row["importance"],
                    path_class=row["path_class"],
                    collection_boost=row["boost"],
                )
        return scoring

    def set_importance(self, scores: dict[str, float]) -> None:
        if not scores:
            return
        with self._db.transaction() as db:
            db.executemany(
                "UPDATE documents SET importance = ? WHERE id = ?",
                [(score, document_id) for document_id, score in scores.items()],
            )

    def replace_links(self, document_id: str, targets: list[str]) -> None:
        with self._db.transaction() as db:
            db.execute("DELETE FROM document_links WHERE source_id = ?", (document_id,))
            db.executemany(
                "INSERT OR IGNORE INTO document_links (source_id, target_path) VALUES (?, ?)",
                [(document_id, target) for target in targets],
            )

    def links_for_collection(self, collection: str) -> dict[str, list[str]]:
        links: dict[str, list[str]] = {
            row["path"]: []
            for row in self._db.fetchall(
                "SELECT path FROM documents WHERE collection = ? AND active = 1 ORDER BY path",
                (collection,),
            )
        }
        rows = self._db.fetchall(
            """
            SELECT d.path, l.target_path
            FROM document_links l JOIN documents d ON d.id = l.source_id
            WHERE d.collection = ? AND d.active = 1
            ORDER BY d.path, l.target_path
            """,
            (collection,),
        )
        for row in rows:
            links.setdefault(row["path"], []).append(row["target_path"])
        return links

    def _row_to_document(self, row: sqlite3.Row) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            collection=row["collection"],
            path=row["path"],
            title=row["title"],
            content_hash=row["content_hash"],
            content_type=row["content_type"],
            generation=row["generation"],
            importance=row["importance"],
            path_class=row["path_class"],
            active=bool(row["active"]),
            indexed_at=row["indexed_at"],
        )

    def _row_to_chunk(self, row: sqlite3.Row) -> StoredChunk:
        return StoredChunk(
            id=row["id"],
            document_id=row["document_id"],
            ordinal=row["ordinal"],
            kind=row["kind"],
            identity=row["identity"],
            text=row["text"],
            start_offset=row["start_offset"],
            end_offset=row["end_offset"],
            start_line=row["start_line"],
            end_line=row["end_line"],
            breadcrumb=row["breadcrumb"],
            active=bool(row["active"]),
            stale=bool(row["stale"]),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def lexical_query(
        self, terms: list[str], limit: int, collections: list[str] | None = None
    ) -> list[LexicalHit]:
        terms = [term for term in terms if term]
        if not terms or limit <= 0:
            return []

        sql = """
            SELECT c.id AS chunk_id, c.document_id, -bm25(fts_chunks) AS score
            FROM fts_chunks
            JOIN chunks c ON c.id = fts_chunks.chunk_id
            JOIN documents d ON d.id = c.document_id
            WHERE fts_chunks MATCH ? AND c.active = 1 AND d.active = 1
        """
        params: list[Any] = [_fts_query(terms)]
        if collections:
            sql += f" AND d.collection IN ({_placeholders(collections)})"
            params.extend(collections)
        sql += " ORDER BY score DESC, c.id LIMIT ?"
        params.append(limit)

        try:
            rows = self._db.fetchall(sql, tuple(params))
        except sqlite3.OperationalError as e:
            # Sanitized terms should always parse; log and treat as no match
            logger.warning(f"FTS query failed for terms {terms}: {e}")
            return []
        return [LexicalHit(row["chunk_id"], row["document_id"], float(row["score"])) for row in rows]

    def vector_query(
        self, embedding: list[float], k: int, collections: list[str] | None = None
    ) -> list[VectorHit]:
        if k <= 0 or not embedding:
            return []

        where: dict[str, Any] = {"active": True}
        if collections:
            where = {"$and": [{"active": True}, {"collection": {"$in": list(collections)}}]}

        result = self._vectors.query(embedding, n_results=k, where=where)
        ids = result.get("ids", [[]])[0]
        distances = result.get("distances", [[]])[0]
        metadatas = result.get("metadatas", [[]])[0]

        # Chroma metadata can lag a crashed write; SQLite decides what is live
        live = self._active_chunk_ids(list(ids))
        hits = [
            VectorHit(
                chunk_id=chunk_id,
                document_id=(metadata or {}).get("document_id", chunk_id.rsplit(":", 1)[0]),
                similarity=1.0 - float(distance),
            )
            for chunk_id, distance, metadata in zip(ids, distances, metadatas)
            if chunk_id in live
        ]
        hits.sort(key=lambda hit: (-hit.similarity, hit.chunk_id))
        return hits

    def _active_chunk_ids(self, chunk_ids: list[str]) -> set[str]:
        if not chunk_ids:
            return set()
        rows = self._db.fetchall(
            f"""
            SELECT c.id FROM chunks c JOIN documents d ON d.id = c.document_id
            WHERE c.active = 1 AND d.active = 1 AND c.id IN ({_placeholders(chunk_ids)})
            """,
            tuple(chunk_ids),
        )
        return {row["id"] for row in rows}

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def compact(self) -> int:
        try:
            with self._db.transaction() as db:
                rows = db.fetchall("SELECT id FROM chunks WHERE active = 0")
                ids = [row["id"] for row in rows]
                db.execute(
                    "DELETE FROM fts_chunks WHERE chunk_id IN (SELECT id FROM chunks WHERE active = 0)"
                )
                db.execute("DELETE FROM chunks WHERE active = 0")
                db.execute(
                    """
                    DELETE FROM documents
                    WHERE active = 0 AND id NOT IN (SELECT DISTINCT document_id FROM chunks)
                    """
                )
                for i in range(0, len(ids), 500):
                    self._vectors.delete(ids=ids[i : i + 500])
        except Exception as e:
            raise StoreFailure(f"Compaction failed: {e}") from e
        if ids:
            logger.info(f"Compacted {len(ids)} tombstoned chunks")
        return len(ids)

    def reset_vectors(self) -> None:
        try:
            with self._db.transaction() as db:
                db.execute("UPDATE chunks SET stale = 1")
                self._vectors.clear()
        except Exception as e:
            raise StoreFailure(f"Failed to reset vectors: {e}") from e
        logger.warning("Vector index cleared; every chunk needs a new embedding")

    def stats(self) -> StoreStats:
        row = self._db.fetchone(
            """
            SELECT
                (SELECT COUNT(*) FROM collections) AS collections,
                (SELECT COUNT(*) FROM documents WHERE active = 1) AS documents,
                (SELECT COUNT(*) FROM chunks WHERE active = 1) AS active_chunks,
                (SELECT COUNT(*) FROM chunks WHERE active = 0) AS tombstoned_chunks,
                (SELECT COUNT(*) FROM chunks WHERE active = 1 AND stale = 1) AS stale_chunks
            """
        )
        assert row is not None
        return StoreStats(
            collections=row["collections"],
            documents=row["documents"],
            active_chunks=row["active_chunks"],
            tombstoned_chunks=row["tombstoned_chunks"],
            stale_chunks=row["stale_chunks"],
            vectors=self._vectors.count(),
        )
