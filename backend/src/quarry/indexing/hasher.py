"""Content identities for chunks."""

import hashlib
import re
import textwrap

from quarry.chunking.models import Chunk, ChunkKind
from quarry.config import ConfigError, load_settings
from quarry.constants.chunking import CONTEXT_MAX_CHARS

_INNER_WHITESPACE = re.compile(r"(?<=\S)[ \t]+(?=\S)")


def normalize_text(text: str) -> str:
    """Normalize text so whitespace-only reformatting does not change it.

    Dedents the block, expands tabs in leading indentation, strips trailing
    whitespace, drops blank lines and collapses runs of spaces or tabs
    between tokens. Relative indentation is kept since it is meaningful in
    Python.
    """
    lines = []
    for line in textwrap.dedent(text.replace("\r\n", "\n").replace("\r", "\n")).split("\n"):
        line = line.rstrip()
        if not line:
            continue
        stripped = line.lstrip(" \t")
        indent = line[: len(line) - len(stripped)].expandtabs(4)
        lines.append(indent + _INNER_WHITESPACE.sub(" ", stripped))
    return "\n".join(lines)


class ChunkHasher:
    """Computes content identities and embedding inputs for chunks.

    The identity covers everything that goes into the embedding input: the
    structural kind, the chunk text, the bounded context (enclosing
    signature and doc text), the container outline and any window prefix.
    Two chunks with equal identities therefore embed to the same vector.
    """

    def __init__(self, context_max_chars: int | None = None) -> None:
        """Initialize hasher.

        Args:
            context_max_chars: Bound on context folded into identity.
                Defaults to settings.
        """
        if context_max_chars is None:
            try:
                context_max_chars = load_settings().chunking.context_max_chars
            except (ValueError, OSError, ConfigError):
                context_max_chars = CONTEXT_MAX_CHARS
        self.context_max_chars = context_max_chars

    def bounded_context(self, context: str) -> str:
        """Context truncated to the configured bound."""
        return context[: self.context_max_chars]

    def identity(self, chunk: Chunk) -> str:
        """Content identity of a chunk."""
        return compute_identity(
            chunk.kind,
            chunk.text,
            context=self.bounded_context(chunk.context),
            outline=chunk.outline,
            prefix=chunk.prefix,
        )

    def identities(self, chunks: list[Chunk]) -> list[str]:
        """Content identities for chunks, in order."""
        return [self.identity(chunk) for chunk in chunks]

    def embedding_text(self, chunk: Chunk) -> str:
        """Text sent to the embedding model for a chunk."""
        parts = [self.bounded_context(chunk.context), chunk.prefix, chunk.text, chunk.outline]
        return "\n".join(part for part in parts if part)


def compute_identity(
    kind: ChunkKind,
    text: str,
    context: str = "",
    outline: str = "",
    prefix: str = "",
) -> str:
    """Hash a chunk's kind, normalized text and bounded context.

    Args:
        kind: Structural kind of the chunk.
        text: Chunk text.
        context: Already-bounded surrounding context.
        outline: Signature outline of nested declarations.
        prefix: Overlap text preceding a window.

    Returns:
        Hex SHA-256 digest.
    """
    hasher = hashlib.sha256()
    parts = (kind.value, *(normalize_text(part) for part in (text, context, outline, prefix)))
    for part in parts:
        hasher.update(part.encode("utf-8"))
        hasher.update(b"\x00")
    return hasher.hexdigest()
