"""Exception types shared across the indexing and query pipelines."""


class QuarryError(Exception):
    """Base exception for Quarry errors."""

    pass


class ParseFailure(QuarryError):
    """Raised when a chunking strategy cannot structurally parse content.

    The chunker recovers from this locally by windowing the affected region.
    """

    pass


class EmbeddingFailure(QuarryError):
    """Raised when the embedding collaborator fails or times out for a chunk."""

    pass


class StoreFailure(QuarryError):
    """Raised when the persistence layer rejects a write."""

    pass


class QueryFailure(QuarryError):
    """Raised when search options are malformed or reference unknown data."""

    pass


class CollectionError(QuarryError):
    """Raised for invalid collection management requests."""

    pass


class CollectionNotFoundError(CollectionError):
    """Raised when a named collection does not exist."""

    pass


class CollectionExistsError(CollectionError):
    """Raised when creating a collection whose name is taken."""

    pass
