"""File source filtering configuration.

These settings control which files a filesystem collection indexes. Large,
binary and minified files are skipped so the index stays focused on
human-readable source and documentation.
"""

# =============================================================================
# Size Limits
# =============================================================================
# Files larger than MAX_FILE_SIZE_KB are skipped. Huge generated files and
# data dumps would produce thousands of low-value windows.

MAX_FILE_SIZE_KB = 500

# =============================================================================
# Binary Detection
# =============================================================================
# The first BINARY_CHECK_BYTES bytes are scanned for null characters.

BINARY_CHECK_BYTES = 1024

# =============================================================================
# Minified/Generated File Detection
# =============================================================================
# Files whose first MINIFIED_SAMPLE_LINES lines average more than
# MINIFIED_AVG_LINE_LENGTH characters are treated as minified bundles.

MINIFIED_AVG_LINE_LENGTH = 500
MINIFIED_SAMPLE_LINES = 20

# =============================================================================
# Default Excludes
# =============================================================================
# Patterns excluded from every filesystem collection in addition to the
# collection's own exclude globs. Bare names match any path component.

DEFAULT_EXCLUDES: tuple[str, ...] = (
    # Hidden files and directories (.git, .venv, .pytest_cache, ...)
    ".*",
    # Dependencies
    "node_modules",
    "vendor",
    "venv",
    "__pycache__",
    "*.pyc",
    # Build outputs
    "build",
    "dist",
    "target",
    "out",
    # Minified/bundled assets
    "*.min.js",
    "*.min.css",
    "*.bundle.js",
    "*.chunk.js",
    "*.map",
    # Lock files
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "Cargo.lock",
    "poetry.lock",
    "Gemfile.lock",
    "composer.lock",
)

# Content types reported for common extensions; others are left unset.
CONTENT_TYPE_BY_EXTENSION = {
    ".py": "text/x-python",
    ".js": "text/javascript",
    ".ts": "text/typescript",
    ".java": "text/x-java",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".txt": "text/plain",
    ".rst": "text/x-rst",
}
