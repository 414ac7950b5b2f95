"""Tests for the SQLite FTS5 plus ChromaDB index store."""

import pytest

from conftest import fake_vector
from quarry.errors import CollectionExistsError, CollectionNotFoundError, StoreFailure
from quarry.store.base import (
    ChunkWrite,
    CollectionRecord,
    DocumentRecord,
    chunk_id_for,
    document_id_for,
)


def make_document(path: str, collection: str = "docs", **kwargs) -> DocumentRecord:
    return DocumentRecord(
        id=document_id_for(collection, path),
        collection=collection,
        path=path,
        title=kwargs.pop("title", path.rsplit("/", 1)[-1]),
        content_hash=kwargs.pop("content_hash", "hash"),
        **kwargs,
    )


def make_chunk(ordinal: int, text: str, with_vector: bool = True, **kwargs) -> ChunkWrite:
    return ChunkWrite(
        ordinal=ordinal,
        kind="block",
        identity=f"id-{text}",
        text=text,
        start_offset=0,
        end_offset=len(text),
        start_line=1,
        end_line=1,
        vector=fake_vector(text) if with_vector else None,
        **kwargs,
    )


class TestCollections:
    """Tests for collection management."""

    def test_create_and_get(self, store):
        """A created collection can be read back with its settings."""
        created = store.create_collection(
            CollectionRecord(
                name="notes",
                source_locator="/tmp/notes",
                include_globs=["*.md"],
                exclude_globs=["drafts/"],
                boost=1.5,
            )
        )

        assert created.created_at is not None
        fetched = store.get_collection("notes")
        assert fetched.include_globs == ["*.md"]
        assert fetched.exclude_globs == ["drafts/"]
        assert fetched.boost == 1.5

    def test_duplicate_name_rejected(self, store, docs_collection):
        """Names are unique."""
        with pytest.raises(CollectionExistsError):
            store.create_collection(CollectionRecord(name="docs", source_locator="/other"))

    def test_list_is_ordered_by_name(self, store):
        """Collections are listed by name."""
        for name in ("zeta", "alpha"):
            store.create_collection(CollectionRecord(name=name, source_locator="/x"))

        assert [c.name for c in store.list_collections()] == ["alpha", "zeta"]

    def test_delete_removes_documents_and_vectors(self, store, docs_collection):
        """Deleting a collection removes everything indexed under it."""
        store.upsert_chunks(make_document("a.md"), [make_chunk(0, "alpha")])

        store.delete_collection("docs")

        assert store.get_collection("docs") is None
        assert store.stats().active_chunks == 0
        assert store.vectorstore.count() == 0
        assert store.lexical_query(["alpha"], 10) == []

    def test_delete_unknown_collection(self, store):
        """Deleting a missing collection raises."""
        with pytest.raises(CollectionNotFoundError):
            store.delete_collection("nope")

    def test_mark_scanned(self, store, docs_collection):
        """mark_scanned records a scan time."""
        assert docs_collection.scanned_at is None

        store.mark_scanned("docs")

        assert store.get_collection("docs").scanned_at is not None


class TestUpsertChunks:
    """Tests for atomic document writes."""

    def test_first_write_is_generation_one(self, store, docs_collection):
        """A new document starts at generation 1 with its chunks active."""
        stored = store.upsert_chunks(
            make_document("a.md"), [make_chunk(0, "alpha"), make_chunk(1, "beta")]
        )

        assert stored.generation == 1
        chunks = store.get_chunks(stored.id)
        assert [c.ordinal for c in chunks] == [0, 1]
        assert chunks[0].id == chunk_id_for(stored.id, 0)
        assert store.vectorstore.count() == 2

    def test_generation_advances(self, store, docs_collection):
        """Each successful write advances the generation by one."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha")])
        stored = store.upsert_chunks(document, [make_chunk(0, "alpha")])

        assert stored.generation == 2

    def test_repeated_write_is_idempotent(self, store, docs_collection):
        """Writing the same chunks twice leaves one copy of each."""
        document = make_document("a.md")
        chunks = [make_chunk(0, "alpha"), make_chunk(1, "beta")]

        store.upsert_chunks(document, chunks)
        store.upsert_chunks(document, chunks)

        assert len(store.get_chunks(document.id, active_only=False)) == 2
        assert store.vectorstore.count() == 2
        assert len(store.lexical_query(["alpha"], 10)) == 1

    def test_shrinking_tombstones_trailing_chunks(self, store, docs_collection):
        """Chunks past the new end are tombstoned, not deleted."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha"), make_chunk(1, "beta")])

        store.upsert_chunks(document, [make_chunk(0, "alpha")])

        assert [c.ordinal for c in store.get_chunks(document.id)] == [0]
        everything = store.get_chunks(document.id, active_only=False)
        assert [c.active for c in everything] == [True, False]
        assert store.lexical_query(["beta"], 10) == []
        assert store.stats().tombstoned_chunks == 1

    def test_store_failure_rolls_back(self, store, docs_collection, monkeypatch):
        """A vector write failure leaves the previous generation intact."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha")])

        def fail(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store.vectorstore, "upsert", fail)

        with pytest.raises(StoreFailure):
            store.upsert_chunks(document, [make_chunk(0, "gamma")])

        assert store.get_document(document.id).generation == 1
        assert store.get_chunks(document.id)[0].text == "alpha"
        assert store.lexical_query(["gamma"], 10) == []

    def test_failed_write_restores_vectors(self, store, docs_collection, monkeypatch):
        """Vectors written before a later failure are put back as they were."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha"), make_chunk(1, "beta")])
        first = chunk_id_for(document.id, 0)
        before = store.vectorstore.snapshot([first])

        def fail(*args, **kwargs):
            raise RuntimeError("disk full")

        # Tombstoning ordinal 1 updates metadata after the new vector is written
        monkeypatch.setattr(store.vectorstore, "update_metadata", fail)

        with pytest.raises(StoreFailure):
            store.upsert_chunks(document, [make_chunk(0, "gamma")])

        after = store.vectorstore.snapshot([first])
        assert after.embeddings[0] == pytest.approx(before.embeddings[0])
        assert after.metadatas == before.metadatas
        assert store.vectorstore.count() == 2
        hits = store.vector_query(fake_vector("alpha"), 1)
        assert hits[0].chunk_id == first

    def test_kept_vector_is_marked_stale(self, store, docs_collection):
        """A chunk keeping its old vector stays searchable but stale."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha")])

        store.upsert_chunks(
            document,
            [make_chunk(0, "alpha beta", with_vector=False, keep_vector=True, stale=True)],
        )

        assert store.has_stale_chunks(document.id)
        assert store.vectorstore.count() == 1
        assert store.stats().stale_chunks == 1

    def test_missing_vector_is_dropped(self, store, docs_collection):
        """A chunk written without a vector loses any old one."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha")])

        store.upsert_chunks(document, [make_chunk(0, "alpha", with_vector=False)])

        assert store.vectorstore.count() == 0
        assert not store.has_stale_chunks(document.id)

    def test_deactivate_document(self, store, docs_collection):
        """A deactivated document disappears from queries and listings."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha")])

        store.deactivate_document(document.id)

        assert store.list_documents("docs") == []
        assert store.list_documents("docs", active_only=False)[0].active is False
        assert store.lexical_query(["alpha"], 10) == []
        assert store.vector_query(fake_vector("alpha"), 10) == []

    def test_tombstone_chunks(self, store, docs_collection):
        """Individual chunks can be tombstoned."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha"), make_chunk(1, "beta")])

        assert store.tombstone_chunks(document.id, [1]) == 1
        assert store.tombstone_chunks(document.id, []) == 0
        assert [c.ordinal for c in store.get_chunks(document.id)] == [0]


class TestQueries:
    """Tests for lexical and vector queries."""

    @pytest.fixture
    def populated(self, store, docs_collection):
        store.create_collection(CollectionRecord(name="code", source_locator="/code"))
        store.upsert_chunks(
            make_document("guide.md"),
            [make_chunk(0, "installing the server"), make_chunk(1, "running tests")],
        )
        store.upsert_chunks(
            make_document("server.py", collection="code"),
            [make_chunk(0, "server startup and shutdown")],
        )
        return store

    def test_lexical_query_matches_stems(self, populated):
        """Porter stemming matches word forms."""
        hits = populated.lexical_query(["install"], 10)

        assert [hit.chunk_id for hit in hits] == [
            chunk_id_for(document_id_for("docs", "guide.md"), 0)
        ]
        assert hits[0].score > 0

    def test_lexical_query_filters_collections(self, populated):
        """Results can be restricted to named collections."""
        everywhere = populated.lexical_query(["server"], 10)
        code_only = populated.lexical_query(["server"], 10, collections=["code"])

        assert len(everywhere) == 2
        assert [hit.document_id for hit in code_only] == [document_id_for("code", "server.py")]

    def test_lexical_query_is_deterministic(self, populated):
        """The same query yields the same order."""
        assert populated.lexical_query(["server"], 10) == populated.lexical_query(["server"], 10)

    def test_lexical_query_edge_cases(self, populated):
        """Empty terms and non-positive limits return nothing."""
        assert populated.lexical_query([], 10) == []
        assert populated.lexical_query(["server"], 0) == []

    def test_vector_query_ranks_by_similarity(self, populated):
        """The most similar chunk comes first with similarity near 1."""
        hits = populated.vector_query(fake_vector("running tests"), 3)

        assert hits[0].chunk_id == chunk_id_for(document_id_for("docs", "guide.md"), 1)
        assert hits[0].similarity == pytest.approx(1.0, abs=1e-4)
        assert [h.similarity for h in hits] == sorted((h.similarity for h in hits), reverse=True)

    def test_vector_query_filters_collections(self, populated):
        """Vector results respect collection filters."""
        hits = populated.vector_query(fake_vector("server"), 10, collections=["code"])

        assert {hit.document_id for hit in hits} == {document_id_for("code", "server.py")}

    def test_chunk_details_and_scoring(self, populated):
        """Details carry document fields and scoring carries the boost."""
        document_id = document_id_for("docs", "guide.md")
        chunk_id = chunk_id_for(document_id, 0)

        details = populated.chunk_details([chunk_id, chunk_id])
        scoring = populated.document_scoring([document_id])

        assert details[chunk_id].path == "guide.md"
        assert details[chunk_id].collection == "docs"
        assert scoring[document_id].collection_boost == 1.0
        assert scoring[document_id].importance == 1.0


class TestImportanceAndLinks:
    """Tests for importance and link bookkeeping."""

    def test_links_for_collection(self, store, docs_collection):
        """Every active document appears, with its recorded links."""
        a = make_document("a.md")
        b = make_document("b.md")
        store.upsert_chunks(a, [make_chunk(0, "alpha")])
        store.upsert_chunks(b, [make_chunk(0, "beta")])

        store.replace_links(a.id, ["b.md", "c.md"])
        store.replace_links(a.id, ["b.md"])

        assert store.links_for_collection("docs") == {"a.md": ["b.md"], "b.md": []}

    def test_set_importance_survives_rewrite(self, store, docs_collection):
        """Importance is kept when a document is written again."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha")])
        store.set_importance({document.id: 4.5})

        store.upsert_chunks(document, [make_chunk(0, "alpha")])

        assert store.get_document(document.id).importance == 4.5


class TestMaintenance:
    """Tests for compaction, vector reset and stats."""

    def test_compact_removes_tombstones(self, store, docs_collection):
        """Compaction physically removes tombstoned chunks and their vectors."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha"), make_chunk(1, "beta")])
        store.upsert_chunks(document, [make_chunk(0, "alpha")])

        removed = store.compact()

        assert removed == 1
        assert len(store.get_chunks(document.id, active_only=False)) == 1
        assert store.vectorstore.count() == 1
        assert store.stats().tombstoned_chunks == 0

    def test_compact_removes_inactive_documents(self, store, docs_collection):
        """Deactivated documents are gone after compaction."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha")])
        store.deactivate_document(document.id)

        store.compact()

        assert store.get_document(document.id) is None

    def test_reset_vectors(self, store, docs_collection):
        """Resetting drops all vectors and marks every chunk stale."""
        document = make_document("a.md")
        store.upsert_chunks(document, [make_chunk(0, "alpha"), make_chunk(1, "beta")])

        store.reset_vectors()

        stats = store.stats()
        assert stats.vectors == 0
        assert stats.stale_chunks == 2
        assert store.has_stale_chunks(document.id)

    def test_stats(self, store, docs_collection):
        """Stats count collections, documents, chunks and vectors."""
        store.upsert_chunks(
            make_document("a.md"), [make_chunk(0, "alpha"), make_chunk(1, "b", with_vector=False)]
        )

        stats = store.stats()

        assert (stats.collections, stats.documents, stats.active_chunks, stats.vectors) == (
            1,
            1,
            2,
            1,
        )
