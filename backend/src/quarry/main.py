"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Logging constants defined here (not in constants/) because logging.basicConfig()
# must run before any module imports that might create loggers.
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(
    format=LOG_FORMAT,
    datefmt=DATE_FORMAT,
    level=logging.INFO,
)

# Unify uvicorn loggers with app format
for uvicorn_logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
    uvicorn_logger = logging.getLogger(uvicorn_logger_name)
    uvicorn_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    uvicorn_logger.addHandler(handler)

from quarry.api import deps  # noqa: E402
from quarry.api.routers import collections, documents, search, system  # noqa: E402
from quarry.errors import StoreFailure  # noqa: E402

logger = logging.getLogger(__name__)


def _ensure_data_dir() -> None:
    """Create the data directory and its logs directory."""
    settings = deps.get_settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    (settings.data_dir / settings.paths.logs_dir).mkdir(exist_ok=True)
    logger.info(f"Data directory: {settings.data_dir}")


def _bind_embedding_model() -> None:
    """Bind the embedding cache to the configured model.

    A model different from the one the index was built with invalidates
    every stored vector; chunks are re-embedded on the next re-index.
    """
    embedder = deps.get_embedder()
    if embedder is None:
        logger.info("Embeddings disabled; searches are lexical only")
        return
    try:
        if deps.get_indexing_service().bind_embedding_model():
            logger.warning(f"Embedding model changed to {embedder.model_key}; re-index to rebuild")
        else:
            logger.info(f"Embedding model: {embedder.model_key}")
    except StoreFailure as e:
        logger.error(f"Could not reset vectors for new embedding model: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Lifespan handler for startup and shutdown events.

    On startup:
    - Ensures the data directory exists
    - Opens the index and binds the embedding cache to the configured model

    On shutdown:
    - Closes the database and vector store
    """
    _ensure_data_dir()
    _bind_embedding_model()

    logger.info("Quarry started")

    yield

    deps._reset_instances()


app = FastAPI(
    title="Quarry",
    description="Local-first hybrid search over code and documentation",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(collections.router)
app.include_router(documents.router)
app.include_router(search.router)
app.include_router(system.router)
