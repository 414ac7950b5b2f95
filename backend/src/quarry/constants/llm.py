"""LLM client configuration.

Default parameters for LLM API calls. These can be overridden per-call
but provide sensible defaults for most use cases.
"""

# =============================================================================
# Generation Defaults
# =============================================================================
# MAX_TOKENS caps response length to control costs and ensure responses complete.
# JSON_TEMPERATURE is zero because classification and reranking must be
# as repeatable as the provider allows.

MAX_TOKENS = 8192
DEFAULT_TEMPERATURE = 0.7
JSON_TEMPERATURE = 0.0

# =============================================================================
# Collaborator Budgets
# =============================================================================
# Strategy classification answers with a single short JSON object. Reranking
# returns one score per candidate.

CLASSIFY_MAX_TOKENS = 100
RERANK_MAX_TOKENS = 1024
RERANK_SNIPPET_CHARS = 400

# =============================================================================
# Cache Lifetimes
# =============================================================================
# Strategy decisions and reranker outputs are cached for an hour. Embeddings
# are never time-limited; see the embedding cache.

DECISION_CACHE_TTL_SECONDS = 3600
DECISION_CACHE_MAX_ENTRIES = 1024
