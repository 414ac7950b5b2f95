"""Shared pytest fixtures for all tests.

These fixtures properly clean up resources to prevent file descriptor leaks.
"""

import gc
import hashlib
import math
import re
from collections.abc import Callable

import pytest

from quarry.config import load_settings
from quarry.db.connection import Database
from quarry.db.migrations import run_migrations
from quarry.errors import EmbeddingFailure
from quarry.indexing.embedding_cache import EmbeddingCache
from quarry.llm.collaborators import Embedder
from quarry.store.base import CollectionRecord
from quarry.store.hybrid_store import HybridStore
from quarry.store.vectorstore import VectorStore

FAKE_DIMENSIONS = 32

_WORD = re.compile(r"[a-z0-9]+")


def fake_vector(text: str, dimensions: int = FAKE_DIMENSIONS) -> list[float]:
    """Deterministic bag-of-words vector: texts sharing words point the same way."""
    vector = [0.0] * dimensions
    vector[0] = 1e-3  # Never the zero vector
    for word in _WORD.findall(text.lower()):
        bucket = int(hashlib.sha1(word.encode()).hexdigest(), 16) % dimensions
        vector[bucket] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


class FakeEmbedder(Embedder):
    """Embedder that records every call and can be told to fail."""

    def __init__(self, model_key: str = "fake/bag-of-words") -> None:
        self._model_key = model_key
        self.calls: list[list[str]] = []
        self.fail_when: Callable[[str], bool] | None = None

    @property
    def model_key(self) -> str:
        return self._model_key

    @property
    def embedded_texts(self) -> list[str]:
        return [text for call in self.calls for text in call]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_when is not None and any(self.fail_when(t) for t in texts):
            raise EmbeddingFailure("provider rejected input")
        return [fake_vector(t) for t in texts]


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a temporary data directory with no provider keys."""
    monkeypatch.setenv("QUARRY_DATA_DIR", str(tmp_path / "quarry-data"))
    for name in (
        "ACTIVE_PROVIDER",
        "ACTIVE_MODEL",
        "EMBEDDING_PROVIDER",
        "EMBEDDING_MODEL",
        "QUARRY_DISABLE_EMBEDDINGS",
        "OPENAI_API_KEY",
        "ANTHROPIC_API_KEY",
        "GOOGLE_API_KEY",
    ):
        monkeypatch.delenv(name, raising=False)
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


@pytest.fixture(autouse=True)
def cleanup_after_test():
    """Clean up resources after each test to prevent file descriptor leaks.

    This runs automatically after every test to help garbage collect
    any lingering ChromaDB or SQLite connections.
    """
    yield
    # Force garbage collection to release file handles
    gc.collect()


@pytest.fixture
def temp_vectorstore(tmp_path):
    """Create a temporary vector store that cleans up properly.

    This fixture should be used instead of creating VectorStore instances
    directly in tests to ensure ChromaDB connections are released.
    """
    index_path = tmp_path / "chroma"
    index_path.mkdir()
    store = VectorStore(index_path)
    yield store
    # Clean up to release file handles
    store.close()
    gc.collect()


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary database with the production schema."""
    db = Database(tmp_path / "test.db")
    run_migrations(db)
    yield db
    # Clean up to release file handles
    db.close()
    gc.collect()


@pytest.fixture
def store(temp_db, temp_vectorstore):
    """Dual-index store over the temporary database and vector store."""
    return HybridStore(temp_db, temp_vectorstore)


@pytest.fixture
def embedding_cache(temp_db):
    """Embedding cache over the temporary database, not yet bound to a model."""
    return EmbeddingCache(temp_db)


@pytest.fixture
def fake_embedder():
    """Deterministic embedder that records its calls."""
    return FakeEmbedder()


@pytest.fixture
def docs_collection(store, tmp_path):
    """A registered filesystem collection rooted at an empty directory."""
    root = tmp_path / "docs"
    root.mkdir()
    return store.create_collection(CollectionRecord(name="docs", source_locator=str(root)))
