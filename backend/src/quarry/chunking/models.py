"""Data models for semantic chunking."""

from dataclasses import dataclass, field
from enum import Enum


class ChunkKind(Enum):
    """Structural kind of a chunk."""

    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    BLOCK = "block"  # Module-level code, document sections, glue text
    WINDOW = "window"  # Fixed-size fallback window


@dataclass
class Segment:
    """A structural region found by a chunking strategy.

    Offsets are character offsets into the parsed content, ``end`` exclusive.
    """

    start: int
    end: int
    kind: ChunkKind
    breadcrumb: str | None = None
    context: str = ""  # Enclosing signature and doc text
    outline: str = ""  # Signature-only summary of nested declarations


@dataclass
class ParseResult:
    """Result of a structural parse (success or failure)."""

    ok: bool
    segments: list[Segment] = field(default_factory=list)
    failed_regions: list[tuple[int, int]] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def success(
        cls,
        segments: list[Segment],
        failed_regions: list[tuple[int, int]] | None = None,
    ) -> "ParseResult":
        """Create a successful parse result, optionally with unparseable regions."""
        return cls(ok=True, segments=segments, failed_regions=failed_regions or [])

    @classmethod
    def failure(cls, error: str) -> "ParseResult":
        """Create a failed parse result."""
        return cls(ok=False, error=error)


@dataclass
class Chunk:
    """A retrievable sub-unit of a document.

    ``text`` is exactly ``content[start:end]``. The ``prefix``, ``context`` and
    ``outline`` fields feed the embedding input and content identity but are
    never part of the span.
    """

    ordinal: int
    kind: ChunkKind
    text: str
    start: int
    end: int
    start_line: int
    end_line: int
    breadcrumb: str | None = None
    context: str = ""
    outline: str = ""
    prefix: str = ""  # Text preceding a window, carried as overlap
    language: str | None = None

    @property
    def is_blank(self) -> bool:
        """True if the chunk holds only whitespace."""
        return not self.text.strip()
