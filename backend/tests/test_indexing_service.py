"""Tests for the indexing service."""

import asyncio
from pathlib import Path

import pytest

from conftest import FakeEmbedder
from quarry.chunking.chunker import SemanticChunker
from quarry.errors import CollectionNotFoundError, StoreFailure
from quarry.indexing.hasher import ChunkHasher
from quarry.indexing.service import DocumentStatus, IndexingService, content_hash
from quarry.sources.base import SourceItem
from quarry.store.base import document_id_for

MODULE = "def a():\n    return 1\n\n\ndef b():\n    return 2\n"


@pytest.fixture
def root(docs_collection) -> Path:
    return Path(docs_collection.source_locator)


@pytest.fixture
def service(store, embedding_cache, fake_embedder):
    return IndexingService(
        store,
        embedding_cache,
        chunker=SemanticChunker(max_chunk_chars=3200),
        hasher=ChunkHasher(context_max_chars=240),
        embedder=fake_embedder,
        concurrency_limit=4,
        timeout=5.0,
    )


def report_for(report, path: str):
    return next(doc for doc in report.documents if doc.path == path)


class SlowEmbedder(FakeEmbedder):
    """Fake embedder that takes time per call and tracks calls in flight."""

    def __init__(self, delay: float = 0.01, slow_when=None):
        super().__init__()
        self.delay = delay
        self.slow_when = slow_when
        self.in_flight = 0
        self.peak = 0

    async def embed(self, texts):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            slow = self.slow_when is not None and any(self.slow_when(t) for t in texts)
            await asyncio.sleep(5.0 if slow else self.delay)
            return await super().embed(texts)
        finally:
            self.in_flight -= 1


class TestIndexCollection:
    """Tests for IndexingService.index_collection."""

    async def test_first_pass_indexes_everything(self, service, store, root):
        """A new document is chunked, embedded and stored at generation 1."""
        (root / "m.py").write_text(MODULE)

        report = await service.index_collection("docs")

        doc = report_for(report, "m.py")
        assert doc.status is DocumentStatus.INDEXED
        assert doc.generation == 1
        assert doc.chunks == 2
        assert doc.embedded == 2
        assert doc.changes["new"] == 2
        stats = store.stats()
        assert (stats.active_chunks, stats.vectors, stats.stale_chunks) == (2, 2, 0)

    async def test_unchanged_document_is_skipped(self, service, store, root, fake_embedder):
        """Re-indexing identical content embeds nothing and writes nothing."""
        (root / "m.py").write_text(MODULE)
        await service.index_collection("docs")
        calls = len(fake_embedder.calls)

        report = await service.index_collection("docs")

        doc = report_for(report, "m.py")
        assert doc.status is DocumentStatus.UNCHANGED
        assert doc.generation == 1
        assert len(fake_embedder.calls) == calls
        assert report.embedded == 0

    async def test_editing_one_function_embeds_one_chunk(
        self, service, store, root, fake_embedder
    ):
        """Only the edited chunk is sent to the embedder."""
        (root / "m.py").write_text(MODULE)
        await service.index_collection("docs")
        fake_embedder.calls.clear()

        (root / "m.py").write_text(MODULE.replace("return 2", "return 3"))
        report = await service.index_collection("docs")

        doc = report_for(report, "m.py")
        assert doc.status is DocumentStatus.INDEXED
        assert doc.generation == 2
        assert doc.embedded == 1
        assert doc.changes["unchanged"] == 1
        assert doc.changes["changed"] == 1
        assert len(fake_embedder.embedded_texts) == 1
        assert "return 3" in fake_embedder.embedded_texts[0]
        # The old identity of b() is no longer referenced
        assert report.cache_collected == 1

    async def test_force_reindex_reuses_cache(self, service, root, fake_embedder):
        """Forcing a pass re-chunks but serves every vector from the cache."""
        (root / "m.py").write_text(MODULE)
        await service.index_collection("docs")
        fake_embedder.calls.clear()

        report = await service.index_collection("docs", force=True)

        doc = report_for(report, "m.py")
        assert doc.status is DocumentStatus.INDEXED
        assert doc.generation == 2
        assert doc.embedded == 0
        assert doc.reused == 2
        assert fake_embedder.calls == []

    async def test_reindex_is_idempotent(self, service, store, root):
        """Repeated forced passes leave the same chunks and vectors."""
        (root / "m.py").write_text(MODULE)
        await service.index_collection("docs")
        before = store.stats()

        await service.index_collection("docs", force=True)
        await service.index_collection("docs", force=True)

        after = store.stats()
        assert (after.active_chunks, after.tombstoned_chunks, after.vectors) == (
            before.active_chunks,
            before.tombstoned_chunks,
            before.vectors,
        )

    async def test_identical_documents_share_embeddings(self, service, root, fake_embedder):
        """Equal content in two documents is embedded once."""
        (root / "a.md").write_text("# Same\n\nShared text.\n")
        (root / "b.md").write_text("# Same\n\nShared text.\n")

        report = await service.index_collection("docs")

        assert report.embedded == 1
        assert report_for(report, "b.md").reused == 1

    async def test_one_failed_embedding_leaves_chunk_stale(self, service, store, root, fake_embedder):
        """One embedding failure in a hundred never fails the document."""
        module = "\n\n".join(f"def f{i}():\n    return {i}\n" for i in range(100))
        (root / "big.py").write_text(module)
        fake_embedder.fail_when = lambda text: "def f42(" in text

        report = await service.index_collection("docs")

        doc = report_for(report, "big.py")
        assert doc.status is DocumentStatus.INDEXED
        assert doc.chunks == 100
        assert doc.embedded == 99
        assert len(doc.warnings) == 1
        assert "chunk 42 (f42)" in doc.warnings[0]
        assert "embedding failed" in doc.warnings[0]
        assert report.warnings == [f"big.py: {doc.warnings[0]}"]
        stats = store.stats()
        assert stats.stale_chunks == 1
        assert stats.vectors == 99

    async def test_stale_chunks_are_retried(self, service, store, root, fake_embedder):
        """A later pass embeds chunks left stale, even with unchanged content."""
        module = "\n\n".join(f"def f{i}():\n    return {i}\n" for i in range(10))
        (root / "small.py").write_text(module)
        fake_embedder.fail_when = lambda text: "def f3(" in text
        await service.index_collection("docs")
        fake_embedder.fail_when = None
        fake_embedder.calls.clear()

        report = await service.index_collection("docs")

        doc = report_for(report, "small.py")
        assert doc.status is DocumentStatus.INDEXED
        assert doc.embedded == 1
        assert doc.reused == 9
        assert store.stats().stale_chunks == 0

    async def test_concurrent_embeddings_are_bounded(self, store, embedding_cache, root):
        """No more than concurrency_limit embedding calls run at once."""
        (root / "many.py").write_text(
            "\n\n".join(f"def f{i}():\n    return {i}\n" for i in range(12))
        )
        embedder = SlowEmbedder()
        service = IndexingService(
            store, embedding_cache, embedder=embedder, concurrency_limit=3, timeout=5.0
        )

        report = await service.index_collection("docs")

        assert report.embedded == 12
        assert embedder.peak == 3

    async def test_slow_embedding_times_out_alone(self, store, embedding_cache, root):
        """A chunk whose embedding times out is left stale; the rest are stored."""
        (root / "m.py").write_text(
            "\n\n".join(f"def f{i}():\n    return {i}\n" for i in range(5))
        )
        embedder = SlowEmbedder(slow_when=lambda text: "def f3(" in text)
        service = IndexingService(
            store, embedding_cache, embedder=embedder, concurrency_limit=4, timeout=0.2
        )

        report = await service.index_collection("docs")

        doc = report_for(report, "m.py")
        assert doc.status is DocumentStatus.INDEXED
        assert doc.embedded == 4
        assert len(doc.warnings) == 1
        assert "chunk 3 (f3)" in doc.warnings[0]
        assert "timed out" in doc.warnings[0]
        stats = store.stats()
        assert (stats.vectors, stats.stale_chunks) == (4, 1)

    async def test_store_failure_fails_only_that_document(self, service, store, root, monkeypatch):
        """A rejected write reports FAILED and keeps the previous generation."""
        (root / "m.py").write_text(MODULE)
        (root / "other.md").write_text("# Other\n\nText.\n")
        await service.index_collection("docs")
        original = store.upsert_chunks

        def flaky(document, chunks):
            if document.path == "m.py":
                raise StoreFailure("disk full")
            return original(document, chunks)

        monkeypatch.setattr(store, "upsert_chunks", flaky)
        (root / "m.py").write_text(MODULE.replace("return 2", "return 3"))
        (root / "other.md").write_text("# Other\n\nNew text.\n")

        report = await service.index_collection("docs")

        failed = report_for(report, "m.py")
        assert failed.status is DocumentStatus.FAILED
        assert failed.generation == 1
        assert "disk full" in failed.error
        assert store.get_document(document_id_for("docs", "m.py")).generation == 1
        assert report_for(report, "other.md").status is DocumentStatus.INDEXED

    async def test_unexpected_error_does_not_end_pass(self, service, root, monkeypatch):
        """A crash while chunking one document is reported and the pass continues."""
        (root / "bad.py").write_text("x = 1\n")
        (root / "good.py").write_text("y = 2\n")
        original = service.chunker.chunk

        def chunk(content, path=None, content_type=None):
            if path == "bad.py":
                raise RuntimeError("boom")
            return original(content, path, content_type)

        monkeypatch.setattr(service.chunker, "chunk", chunk)

        report = await service.index_collection("docs")

        assert report_for(report, "bad.py").status is DocumentStatus.FAILED
        assert report_for(report, "bad.py").error == "boom"
        assert report_for(report, "good.py").status is DocumentStatus.INDEXED

    async def test_deleted_file_is_removed(self, service, store, root):
        """Documents gone from the source are tombstoned and reported."""
        (root / "a.md").write_text("# A\n\nalpha\n")
        (root / "b.md").write_text("# B\n\nbravo\n")
        await service.index_collection("docs")

        (root / "b.md").unlink()
        report = await service.index_collection("docs")

        assert report_for(report, "b.md").status is DocumentStatus.REMOVED
        assert [d.path for d in store.list_documents("docs")] == ["a.md"]
        assert store.lexical_query(["bravo"], 10) == []

    async def test_importance_follows_links(self, service, store, root):
        """Documents linked from others gain importance."""
        (root / "docs").mkdir()
        (root / "docs" / "guide.md").write_text("# Guide\n\nText.\n")
        (root / "notes").mkdir()
        (root / "notes" / "n.md").write_text("# Note\n\nSee [guide](../docs/guide.md).\n")
        (root / "README.md").write_text("# Project\n\nRead the [guide](docs/guide.md).\n")

        await service.index_collection("docs")

        def importance(path):
            return store.get_document(document_id_for("docs", path)).importance

        assert importance("docs/guide.md") == pytest.approx(1.8 * 1.6)
        assert importance("README.md") == pytest.approx(2.0)
        assert importance("notes/n.md") == pytest.approx(0.6)

    async def test_test_files_are_classified(self, service, store, root):
        """Test files are stored with the test path class."""
        (root / "tests").mkdir()
        (root / "tests" / "test_m.py").write_text("def test_a():\n    pass\n")

        await service.index_collection("docs")

        document = store.get_document(document_id_for("docs", "tests/test_m.py"))
        assert document.path_class == "test"

    async def test_model_change_resets_vectors(self, service, store, embedding_cache, root):
        """Switching embedding models re-embeds every chunk in the new space."""
        (root / "m.py").write_text(MODULE)
        await service.index_collection("docs")
        other = FakeEmbedder("fake/other-model")
        switched = IndexingService(store, embedding_cache, embedder=other, timeout=5.0)

        assert switched.bind_embedding_model() is True
        assert store.stats().vectors == 0
        assert store.stats().stale_chunks == 2

        report = await switched.index_collection("docs")

        assert report.embedded == 2
        assert len(other.embedded_texts) == 2
        assert store.stats().stale_chunks == 0
        assert embedding_cache.model_key == "fake/other-model"

    async def test_without_embedder_chunks_are_lexical_only(self, store, embedding_cache, root):
        """With no embedder nothing is embedded and nothing is stale."""
        (root / "m.py").write_text(MODULE)
        service = IndexingService(store, embedding_cache, embedder=None)

        report = await service.index_collection("docs")

        assert report.count(DocumentStatus.INDEXED) == 1
        stats = store.stats()
        assert (stats.vectors, stats.stale_chunks) == (0, 0)
        assert len(store.lexical_query(["return"], 10)) == 2

    async def test_progress_callback(self, service, root):
        """Progress is reported at the start and after the last document."""
        for i in range(3):
            (root / f"n{i}.md").write_text(f"# Note {i}\n")
        calls = []

        async def progress(step, total, message):
            calls.append((step, total))

        await service.index_collection("docs", progress_callback=progress)

        assert calls == [(0, 3), (3, 3)]

    async def test_unknown_collection(self, service):
        """Indexing a collection that does not exist raises."""
        with pytest.raises(CollectionNotFoundError):
            await service.index_collection("missing")

    async def test_scan_time_recorded(self, service, store, root):
        """A pass marks the collection as scanned."""
        await service.index_collection("docs")

        assert store.get_collection("docs").scanned_at is not None


class TestIndexItems:
    """Tests for indexing items supplied directly."""

    async def test_items_from_any_source(self, service, store, docs_collection):
        """Items need not come from the filesystem."""
        item = SourceItem(
            document_id=document_id_for("docs", "db/row-1"),
            path="db/row-1",
            content="A row of text.",
            metadata={"title": "Row 1"},
        )

        report = await service.index_items(docs_collection, [item])

        assert report.count(DocumentStatus.INDEXED) == 1
        stored = store.get_document(item.document_id)
        assert stored.title == "Row 1"
        assert stored.content_hash == content_hash("A row of text.")

    async def test_item_without_id_stays_indexed(self, service, store, docs_collection):
        """An item with no id is stored under its derived id and survives the pass."""
        item = SourceItem(document_id="", path="db/row-1", content="A row of text.")

        report = await service.index_items(docs_collection, [item])

        assert [(d.path, d.status) for d in report.documents] == [
            ("db/row-1", DocumentStatus.INDEXED)
        ]
        assert report.documents[0].document_id == document_id_for("docs", "db/row-1")
        assert [d.path for d in store.list_documents("docs")] == ["db/row-1"]

    async def test_importance_with_source_chosen_ids(self, service, store, docs_collection):
        """Importance reaches documents whose ids are not derived from their paths."""
        items = [
            SourceItem(
                document_id="row-readme",
                path="README.md",
                content="# Project\n\nSee [a](a.md).\n",
            ),
            SourceItem(document_id="row-a", path="a.md", content="# A\n\nText.\n"),
        ]

        await service.index_items(docs_collection, items)

        assert store.get_document("row-readme").importance == pytest.approx(2.0)
        assert store.get_document("row-a").importance == pytest.approx(0.6 * 1.3)
