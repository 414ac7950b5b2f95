"""Chunker constants.

Chunk sizes are measured in characters. Roughly four characters make one
token for English text and source code, so the defaults keep a chunk near
800 tokens, well under common embedding model input limits.
"""

# =============================================================================
# Window Sizes
# =============================================================================
# Structural chunks larger than MAX_CHUNK_CHARS are split into strides, and
# unstructured text is cut into windows of the same size. A window boundary is
# searched for in the last BREAK_SEARCH_PERCENT of the window so chunks end at
# paragraph or sentence breaks where possible. WINDOW_OVERLAP_CHARS of the
# preceding text is carried as embedding context for each window.

MAX_CHUNK_CHARS = 3200
WINDOW_OVERLAP_CHARS = 480
BREAK_SEARCH_PERCENT = 30

# Break candidates in order of preference, with how many characters of the
# separator stay in the earlier window.
BREAK_SEPARATORS: tuple[str, ...] = ("\n\n", ". ", "\n", " ")

# =============================================================================
# Identity Context
# =============================================================================
# A chunk's content identity includes a bounded amount of surrounding context:
# the enclosing declaration signature and the chunk's own docstring or leading
# comment. CONTEXT_MAX_CHARS caps it so large docstrings do not dominate.
# NESTED_OUTLINE_CHARS caps the signature outline a class keeps for its methods.

CONTEXT_MAX_CHARS = 240
NESTED_OUTLINE_CHARS = 800

# =============================================================================
# Language Detection
# =============================================================================
# File extension and content-type tags mapped to chunking languages. Anything
# not listed is chunked with plain text windows.

LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".java": "java",
    ".md": "markdown",
    ".markdown": "markdown",
}

LANGUAGE_BY_CONTENT_TYPE = {
    "text/x-python": "python",
    "text/javascript": "javascript",
    "application/javascript": "javascript",
    "text/typescript": "typescript",
    "text/x-java": "java",
    "text/markdown": "markdown",
}
