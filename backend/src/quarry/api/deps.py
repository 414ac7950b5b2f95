"""FastAPI dependency injection functions.

Long-lived components (database, vector store, caches, collaborators) are
built once per process and shared by reference across requests.
``_reset_instances`` clears them for tests.
"""

from functools import lru_cache

from quarry.config import Config, load_settings
from quarry.db.connection import Database
from quarry.db.migrations import run_migrations
from quarry.indexing.embedding_cache import EmbeddingCache
from quarry.indexing.service import IndexingService
from quarry.llm.client import LLMClient
from quarry.llm.collaborators import Embedder, LiteLLMEmbedder, LLMReranker, LLMStrategyClassifier
from quarry.search.decision_cache import DecisionCache, TTLCache
from quarry.search.engine import SearchEngine
from quarry.search.orchestrator import StrategyOrchestrator
from quarry.store.hybrid_store import HybridStore
from quarry.store.vectorstore import VectorStore


@lru_cache
def get_settings() -> Config:
    """Get cached application settings."""
    return load_settings()


_db_instance: Database | None = None


def get_db() -> Database:
    """Get database connection with migrations applied."""
    global _db_instance

    settings = get_settings()

    # Check if cached connection is stale (db file was deleted)
    if _db_instance is not None and not settings.db_path.exists():
        _db_instance.close()
        _db_instance = None

    if _db_instance is None:
        settings.db_path.parent.mkdir(parents=True, exist_ok=True)
        _db_instance = Database(settings.db_path)
        run_migrations(_db_instance)
    return _db_instance


_vectorstore_instance: VectorStore | None = None


def get_vectorstore() -> VectorStore:
    """Get the vector store instance."""
    global _vectorstore_instance
    if _vectorstore_instance is None:
        settings = get_settings()
        settings.chroma_path.mkdir(parents=True, exist_ok=True)
        _vectorstore_instance = VectorStore(settings.chroma_path)
    return _vectorstore_instance


def get_store() -> HybridStore:
    """Get the dual-index store over the shared database and vector store."""
    return HybridStore(get_db(), get_vectorstore())


_embedding_cache_instance: EmbeddingCache | None = None


def get_embedding_cache() -> EmbeddingCache:
    """Get the embedding cache. It is bound to a model by the indexing service."""
    global _embedding_cache_instance
    if _embedding_cache_instance is None:
        _embedding_cache_instance = EmbeddingCache(get_db())
    return _embedding_cache_instance


_llm_instance: LLMClient | None = None


def get_llm() -> LLMClient:
    """Get LLM client instance."""
    global _llm_instance
    if _llm_instance is None:
        settings = get_settings()
        _llm_instance = LLMClient(
            provider=settings.active_provider,
            model=settings.active_model,
            api_key=settings.llm_api_key,
            endpoint=settings.llm_endpoint,
            log_path=settings.llm_log_path,
        )
    return _llm_instance


_embedder_instance: Embedder | None = None


def get_embedder() -> Embedder | None:
    """Get the embedder, or None when embeddings are disabled."""
    global _embedder_instance
    if _embedder_instance is None:
        settings = get_settings()
        if settings.embedding_provider is None or settings.embedding_model is None:
            return None
        client = LLMClient(
            provider=settings.embedding_provider,
            model=settings.embedding_model,
            api_key=settings.embedding_api_key,
            endpoint=settings.ollama_endpoint if settings.embedding_provider == "ollama" else None,
            log_path=settings.llm_log_path,
        )
        _embedder_instance = LiteLLMEmbedder(client, batch_size=settings.embedding.batch_size)
    return _embedder_instance


_decision_cache_instance: DecisionCache | None = None


def get_decision_cache() -> DecisionCache:
    """Get the strategy decision cache shared by every request."""
    global _decision_cache_instance
    if _decision_cache_instance is None:
        _decision_cache_instance = DecisionCache()
    return _decision_cache_instance


_rerank_cache_instance: TTLCache | None = None


def get_rerank_cache() -> TTLCache:
    """Get the reranker score cache."""
    global _rerank_cache_instance
    if _rerank_cache_instance is None:
        settings = get_settings().orchestrator
        _rerank_cache_instance = TTLCache(settings.cache_ttl_seconds, settings.cache_max_entries)
    return _rerank_cache_instance


def get_orchestrator() -> StrategyOrchestrator:
    """Get a strategy orchestrator over the shared decision cache."""
    settings = get_settings()
    classifier = LLMStrategyClassifier(get_llm()) if settings.orchestrator.use_classifier else None
    return StrategyOrchestrator(
        classifier=classifier,
        cache=get_decision_cache(),
        has_embedder=get_embedder() is not None,
    )


def get_search_engine() -> SearchEngine:
    """Get a search engine wired to the shared store, caches and collaborators."""
    settings = get_settings()
    reranker = LLMReranker(get_llm()) if settings.rerank.enabled else None
    return SearchEngine(
        store=get_store(),
        orchestrator=get_orchestrator(),
        embedder=get_embedder(),
        reranker=reranker,
        rerank_cache=get_rerank_cache(),
    )


def get_indexing_service() -> IndexingService:
    """Get an indexing service wired to the shared store and embedding cache."""
    return IndexingService(
        store=get_store(),
        cache=get_embedding_cache(),
        embedder=get_embedder(),
    )


def _reset_instances() -> None:
    """Reset all shared instances (for testing only)."""
    global _db_instance, _vectorstore_instance, _embedding_cache_instance
    global _llm_instance, _embedder_instance, _decision_cache_instance, _rerank_cache_instance
    if _db_instance is not None:
        _db_instance.close()
        _db_instance = None
    if _vectorstore_instance is not None:
        _vectorstore_instance.close()
        _vectorstore_instance = None
    _embedding_cache_instance = None
    _llm_instance = None
    _embedder_instance = None
    _decision_cache_instance = None
    _rerank_cache_instance = None
    get_settings.cache_clear()
