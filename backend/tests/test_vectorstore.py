"""Vector store tests."""

from quarry.store.vectorstore import VectorStore


def _meta(document_id: str, active: bool = True) -> dict:
    return {"document_id": document_id, "collection": "c", "active": active, "stale": False}


def test_vectorstore_initializes(temp_vectorstore: VectorStore):
    """Vector store initializes and creates collection."""
    assert temp_vectorstore.collection is not None
    assert temp_vectorstore.count() == 0


def test_upsert_and_query(temp_vectorstore: VectorStore):
    """Can store vectors and find the nearest."""
    temp_vectorstore.upsert(
        ids=["a:0", "b:0"],
        embeddings=[[1.0, 0.0, 0.0], [0.0, 1.0, 0.0]],
        metadatas=[_meta("a"), _meta("b")],
    )

    results = temp_vectorstore.query([0.9, 0.1, 0.0], n_results=1)

    assert results["ids"][0] == ["a:0"]


def test_query_with_filter(temp_vectorstore: VectorStore):
    """Metadata filters exclude tombstoned vectors."""
    temp_vectorstore.upsert(
        ids=["a:0", "b:0"],
        embeddings=[[1.0, 0.0], [0.9, 0.1]],
        metadatas=[_meta("a", active=False), _meta("b")],
    )

    results = temp_vectorstore.query([1.0, 0.0], n_results=2, where={"active": True})

    assert results["ids"][0] == ["b:0"]


def test_query_empty_store(temp_vectorstore: VectorStore):
    """Querying an empty store returns empty lists."""
    results = temp_vectorstore.query([1.0, 0.0], n_results=5)

    assert results["ids"] == [[]]


def test_update_metadata_skips_missing_ids(temp_vectorstore: VectorStore):
    """Metadata updates ignore ids without a vector."""
    temp_vectorstore.upsert(ids=["a:0"], embeddings=[[1.0, 0.0]], metadatas=[_meta("a")])

    temp_vectorstore.update_metadata(["a:0", "missing"], [{"active": False}, {"active": False}])

    stored = temp_vectorstore.collection.get(ids=["a:0"], include=["metadatas"])
    assert stored["metadatas"][0]["active"] is False
    assert temp_vectorstore.existing_ids(["a:0", "missing"]) == {"a:0"}


def test_delete_by_id_and_filter(temp_vectorstore: VectorStore):
    """Vectors can be deleted by id or by metadata."""
    temp_vectorstore.upsert(
        ids=["a:0", "a:1", "b:0"],
        embeddings=[[1.0, 0.0], [0.0, 1.0], [0.5, 0.5]],
        metadatas=[_meta("a"), _meta("a"), _meta("b")],
    )

    temp_vectorstore.delete(ids=["a:1"])
    assert temp_vectorstore.count() == 2

    temp_vectorstore.delete(where={"document_id": "b"})
    assert temp_vectorstore.existing_ids(["a:0", "b:0"]) == {"a:0"}


def test_clear(temp_vectorstore: VectorStore):
    """Clear removes every vector and leaves a usable collection."""
    temp_vectorstore.upsert(ids=["a:0"], embeddings=[[1.0, 0.0]], metadatas=[_meta("a")])

    temp_vectorstore.clear()

    assert temp_vectorstore.count() == 0
    temp_vectorstore.upsert(ids=["a:0"], embeddings=[[1.0, 0.0]], metadatas=[_meta("a")])
    assert temp_vectorstore.count() == 1


def test_snapshot_and_restore(temp_vectorstore: VectorStore):
    """Restoring a snapshot undoes later writes to the captured ids."""
    temp_vectorstore.upsert(ids=["a:0"], embeddings=[[1.0, 0.0]], metadatas=[_meta("a")])
    snapshot = temp_vectorstore.snapshot(["a:0", "a:1"])

    temp_vectorstore.upsert(
        ids=["a:0", "a:1"],
        embeddings=[[0.0, 1.0], [0.5, 0.5]],
        metadatas=[_meta("a", active=False), _meta("a")],
    )
    temp_vectorstore.restore(snapshot)

    assert snapshot.present == ["a:0"]
    assert temp_vectorstore.existing_ids(["a:0", "a:1"]) == {"a:0"}
    restored = temp_vectorstore.snapshot(["a:0"])
    assert restored.embeddings == [[1.0, 0.0]]
    assert restored.metadatas[0]["active"] is True
