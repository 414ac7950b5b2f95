"""Database migrations and schema management for Quarry."""

import logging
import sqlite3

from quarry.db.connection import Database

logger = logging.getLogger(__name__)

# Schema version for tracking migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Collections: named groups of documents from one source
CREATE TABLE IF NOT EXISTS collections (
    name TEXT PRIMARY KEY,
    source_locator TEXT NOT NULL,  -- Root path or URL of the source
    source_kind TEXT NOT NULL DEFAULT 'filesystem',
    include_globs TEXT NOT NULL DEFAULT '[]',  -- JSON list of glob masks
    exclude_globs TEXT NOT NULL DEFAULT '[]',  -- JSON list of glob masks
    boost REAL NOT NULL DEFAULT 1.0,  -- Score multiplier for every document
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    scanned_at TEXT
);

-- Documents: one indexed file, page or row
-- id is derived from (collection, path) so it is stable across runs
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    collection TEXT NOT NULL REFERENCES collections(name) ON DELETE CASCADE,
    path TEXT NOT NULL,
    title TEXT NOT NULL,
    content_type TEXT,
    content_hash TEXT NOT NULL,
    generation INTEGER NOT NULL DEFAULT 0,  -- Advanced on each successful re-index
    importance REAL NOT NULL DEFAULT 1.0,
    path_class TEXT NOT NULL DEFAULT 'production',  -- 'production', 'test', 'docs'
    active INTEGER NOT NULL DEFAULT 1,  -- 0 once the source no longer has it
    indexed_at TEXT,
    UNIQUE(collection, path)
);

-- Chunks: retrievable sub-units of a document
-- id is "{document_id}:{ordinal}"; upserts are keyed by it
CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    ordinal INTEGER NOT NULL,
    kind TEXT NOT NULL,  -- 'function', 'class', 'method', 'block', 'window'
    identity TEXT NOT NULL,  -- Content identity, key into embedding_cache
    breadcrumb TEXT,
    start_offset INTEGER NOT NULL,
    end_offset INTEGER NOT NULL,
    start_line INTEGER NOT NULL,
    end_line INTEGER NOT NULL,
    text TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,  -- Tombstone flag
    stale INTEGER NOT NULL DEFAULT 0,  -- Embedding older than text
    UNIQUE(document_id, ordinal)
);

-- Full-text index over chunk text, document title and path
CREATE VIRTUAL TABLE IF NOT EXISTS fts_chunks USING fts5(
    text,
    title,
    path,
    breadcrumb,
    chunk_id UNINDEXED,  -- Reference to chunks.id
    tokenize='porter unicode61'
);

-- Content-addressed embedding cache
-- vector is packed little-endian float64 so reads are bit-identical
CREATE TABLE IF NOT EXISTS embedding_cache (
    identity TEXT PRIMARY KEY,
    model_key TEXT NOT NULL,
    dims INTEGER NOT NULL,
    vector BLOB NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Key/value settings (e.g. active embedding model)
CREATE TABLE IF NOT EXISTS store_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);

-- Links between documents, used for importance scoring
CREATE TABLE IF NOT EXISTS document_links (
    source_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    target_path TEXT NOT NULL,
    PRIMARY KEY (source_id, target_path)
);

CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection);
CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id);
CREATE INDEX IF NOT EXISTS idx_chunks_identity ON chunks(identity);
CREATE INDEX IF NOT EXISTS idx_chunks_active ON chunks(active);
CREATE INDEX IF NOT EXISTS idx_embedding_cache_model ON embedding_cache(model_key);
"""


def run_migrations(db: Database) -> None:
    """Run database migrations to set up or upgrade schema.

    Args:
        db: Database connection to run migrations on.
    """
    try:
        result = db.fetchone("SELECT version FROM schema_version ORDER BY version DESC LIMIT 1")
        current_version = result[0] if result else 0
    except sqlite3.OperationalError:
        # Table doesn't exist yet
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        return

    # executescript auto-commits, so the version insert is separate
    db.executescript(SCHEMA_SQL)

    db.execute(
        "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    db.commit()
    logger.info(f"Database schema at version {SCHEMA_VERSION} ({db.db_path})")
