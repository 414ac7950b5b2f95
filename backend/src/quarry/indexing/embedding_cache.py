"""Content-addressed embedding cache backed by SQLite."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import Enum

from quarry.db.connection import Database

logger = logging.getLogger(__name__)

MODEL_KEY_SETTING = "embedding_model_key"


class CacheStatus(Enum):
    """Outcome of an embedding cache lookup."""

    HIT = "hit"
    MISS = "miss"
    MODEL_MISMATCH = "model_mismatch"  # Stored under a different embedding model


@dataclass(frozen=True)
class CacheLookup:
    """Result of looking up one identity."""

    status: CacheStatus
    vector: list[float] | None = None

    @property
    def hit(self) -> bool:
        return self.status is CacheStatus.HIT


def pack_vector(vector: list[float]) -> bytes:
    """Pack a vector as little-endian float64 values."""
    return struct.pack(f"<{len(vector)}d", *vector)


def unpack_vector(blob: bytes, dims: int) -> list[float]:
    """Unpack a vector written by ``pack_vector``."""
    return list(struct.unpack(f"<{dims}d", blob))


class EmbeddingCache:
    """Maps content identities to embedding vectors.

    Entries have no TTL. Each is tagged with the embedding model that
    produced it and is only served while that model is active, since the
    same identity maps to a different vector space under another model.
    Entries are removed by ``clear()`` or lazily by ``collect_garbage()``
    once no active chunk references their identity.

    Vectors are stored as float64, so a ``get`` after ``put`` returns a
    bit-identical list.
    """

    def __init__(self, db: Database, model_key: str | None = None) -> None:
        """Initialize cache.

        Args:
            db: Database holding the ``embedding_cache`` table.
            model_key: Active embedding model (``provider/model``). When
                given, it is bound immediately.
        """
        self._db = db
        self._model_key: str | None = None
        if model_key is not None:
            self.bind_model(model_key)

    @property
    def model_key(self) -> str | None:
        """Active embedding model key."""
        return self._model_key

    def bind_model(self, model_key: str) -> bool:
        """Set the active embedding model.

        Args:
            model_key: Identifier of the embedding model configuration.

        Returns:
            True if the model differs from the one last bound to this
            database (cached vectors from the old model stop being served).
        """
        row = self._db.fetchone(
            "SELECT value FROM store_settings WHERE key = ?", (MODEL_KEY_SETTING,)
        )
        previous = row["value"] if row else None
        changed = previous is not None and previous != model_key
        if changed:
            logger.warning(
                f"Embedding model changed from {previous} to {model_key}; "
                "cached embeddings from the old model will not be served"
            )
        with self._db.transaction() as db:
            db.execute(
                "INSERT OR REPLACE INTO store_settings (key, value) VALUES (?, ?)",
                (MODEL_KEY_SETTING, model_key),
            )
        self._model_key = model_key
        return changed

    def lookup(self, identity: str) -> CacheLookup:
        """Look up one identity."""
        row = self._db.fetchone(
            "SELECT model_key, dims, vector FROM embedding_cache WHERE identity = ?",
            (identity,),
        )
        if row is None:
            return CacheLookup(CacheStatus.MISS)
        if self._model_key is None or row["model_key"] != self._model_key:
            return CacheLookup(CacheStatus.MODEL_MISMATCH)
        return CacheLookup(CacheStatus.HIT, unpack_vector(row["vector"], row["dims"]))

    def get(self, identity: str) -> list[float] | None:
        """Get the vector for an identity, or None if absent or stale-model."""
        return self.lookup(identity).vector

    def get_many(self, identities: list[str]) -> dict[str, list[float]]:
        """Get vectors for several identities.

        Returns:
            Mapping of identity to vector for every hit.
        """
        if self._model_key is None or not identities:
            return {}
        found: dict[str, list[float]] = {}
        unique = list(dict.fromkeys(identities))
        # Stay well under SQLite's bound-parameter limit
        for i in range(0, len(unique), 500):
            batch = unique[i : i + 500]
            placeholders = ",".join("?" * len(batch))
            rows = self._db.fetchall(
                f"SELECT identity, dims, vector FROM embedding_cache "
                f"WHERE model_key = ? AND identity IN ({placeholders})",
                (self._model_key, *batch),
            )
            for row in rows:
                found[row["identity"]] = unpack_vector(row["vector"], row["dims"])
        return found

    def put(self, identity: str, vector: list[float]) -> None:
        """Store a vector for an identity under the active model.

        An existing entry from the same model is left untouched, since
        entries are immutable. An entry from another model is replaced.

        Raises:
            ValueError: If no model is bound or the vector is empty.
        """
        if self._model_key is None:
            raise ValueError("No embedding model bound to the cache")
        if not vector:
            raise ValueError("Cannot cache an empty vector")
        with self._db.transaction() as db:
            db.execute(
                """
                INSERT INTO embedding_cache (identity, model_key, dims, vector)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(identity) DO UPDATE SET
                    model_key = excluded.model_key,
                    dims = excluded.dims,
                    vector = excluded.vector,
                    created_at = datetime('now')
                WHERE embedding_cache.model_key != excluded.model_key
                """,
                (identity, self._model_key, len(vector), pack_vector(vector)),
            )

    def collect_garbage(self) -> int:
        """Remove entries no active chunk references, or from other models.

        Returns:
            Number of entries removed.
        """
        with self._db.transaction() as db:
            cursor = db.execute(
                """
                DELETE FROM embedding_cache
                WHERE model_key != ?
                   OR identity NOT IN (SELECT identity FROM chunks WHERE active = 1)
                """,
                (self._model_key or "",),
            )
            removed = cursor.rowcount or 0
        if removed:
            logger.info(f"Embedding cache garbage collection removed {removed} entries")
        return removed

    def clear(self) -> None:
        """Remove every cached embedding."""
        with self._db.transaction() as db:
            db.execute("DELETE FROM embedding_cache")

    def __len__(self) -> int:
        row = self._db.fetchone("SELECT COUNT(*) AS n FROM embedding_cache")
        return int(row["n"]) if row else 0
