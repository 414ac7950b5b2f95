"""Search and ranking constants.

Hybrid search combines SQLite FTS5 BM25 ranking with ChromaDB cosine
similarity. Both lists are boosted per document, fused with Reciprocal Rank
Fusion and normalized so the best result scores exactly 100.
"""

# =============================================================================
# Result Limits
# =============================================================================

DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 100

# =============================================================================
# Fusion and Normalization
# =============================================================================
# RRF_K is the standard rank offset for Reciprocal Rank Fusion. Larger values
# flatten the contribution of top positions. NORMALIZED_TOP_SCORE is the score
# assigned to the best result after normalization.

RRF_K = 60
NORMALIZED_TOP_SCORE = 100.0

# =============================================================================
# Boosting
# =============================================================================
# A query term found in the document path multiplies the score by PATH_BOOST,
# otherwise a hit in the title multiplies by TITLE_BOOST. Boosts compound
# across terms. Terms shorter than MIN_TERM_LENGTH are ignored, which keeps
# two-letter acronyms like "UI" or "DB".

PATH_BOOST = 10.0
TITLE_BOOST = 4.0
MIN_TERM_LENGTH = 2
TEST_PATH_PENALTY = 0.5

# =============================================================================
# Query Analysis
# =============================================================================
# Used both by the FTS5 query sanitizer and by the strategy heuristic.

STOP_WORDS = frozenset(
    {
        "a",
        "an",
        "and",
        "are",
        "as",
        "at",
        "be",
        "by",
        "for",
        "from",
        "has",
        "have",
        "he",
        "in",
        "is",
        "it",
        "its",
        "of",
        "on",
        "that",
        "the",
        "to",
        "was",
        "will",
        "with",
        "does",
        "do",
        "did",
        "can",
        "could",
        "should",
        "would",
        "what",
        "where",
        "when",
        "why",
        "how",
        "who",
        "which",
        "this",
        "these",
        "those",
        "there",
        "here",
    }
)

INTERROGATIVE_WORDS = frozenset(
    {"how", "what", "why", "where", "when", "who", "which", "explain", "describe"}
)

# Acronym-like tokens (all uppercase letters/digits) in this length range
# route the query to lexical search.
ACRONYM_MIN_LENGTH = 2
ACRONYM_MAX_LENGTH = 5

# Separators that mark code-like tokens: scoping, arrows, paths, anchors.
STRUCTURAL_SEPARATORS: tuple[str, ...] = ("::", "->", "/", "#")

# FTS5 treats these characters as syntax.
FTS5_SPECIAL_CHARS = '"*^():{}[]?!+-~<>,;'

# =============================================================================
# Path Classification
# =============================================================================
# Documents under test directories or named like tests are penalized so
# production code ranks first for the same match quality.

TEST_DIR_NAMES = frozenset({"test", "tests", "__tests__", "spec", "specs", "testing"})
TEST_FILE_PATTERNS: tuple[str, ...] = (
    "test_*",
    "*_test.*",
    "*_tests.*",
    "*.test.*",
    "*.spec.*",
    "*Test.java",
    "*Tests.java",
    "conftest.py",
)
DOCS_DIR_NAMES = frozenset({"docs", "doc", "documentation"})
