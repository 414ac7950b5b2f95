"""Base chunking strategy interface."""

import re
from abc import ABC, abstractmethod
from bisect import bisect_right

from quarry.chunking.models import ParseResult

_NEWLINE = re.compile(r"\r\n|\r|\n")


def line_starts(content: str, universal_newlines: bool = False) -> list[int]:
    """Character offsets at which each line begins.

    Args:
        content: Text to scan.
        universal_newlines: Treat ``\\r`` and ``\\r\\n`` as line breaks too,
            matching how the Python tokenizer numbers lines.

    Returns:
        Offsets, one per line. The first entry is always 0.
    """
    starts = [0]
    if universal_newlines:
        starts.extend(match.end() for match in _NEWLINE.finditer(content))
    else:
        index = content.find("\n")
        while index != -1:
            starts.append(index + 1)
            index = content.find("\n", index + 1)
    return starts


def line_of(starts: list[int], offset: int) -> int:
    """1-based line number containing a character offset."""
    return bisect_right(starts, offset)


def bounded_lines(lines: list[str], budget: int) -> str:
    """Join whole lines while the total stays within a character budget."""
    kept: list[str] = []
    used = 0
    for line in lines:
        cost = len(line) + (1 if kept else 0)
        if used + cost > budget:
            break
        kept.append(line)
        used += cost
    return "\n".join(kept)


class ChunkingStrategy(ABC):
    """Abstract base class for language-aware chunking strategies.

    A strategy only finds structural segments. Gap filling, oversize
    splitting and the window fallback are the chunker's job.
    """

    def __init__(self, outline_chars: int = 800) -> None:
        """Initialize strategy.

        Args:
            outline_chars: Budget for the signature outline a container keeps
                for its nested declarations.
        """
        self.outline_chars = outline_chars

    @property
    @abstractmethod
    def languages(self) -> list[str]:
        """Language tags this strategy handles (e.g., ['python'])."""
        pass

    @property
    @abstractmethod
    def language_name(self) -> str:
        """Human-readable language name."""
        pass

    @abstractmethod
    def parse(self, content: str, language: str) -> ParseResult:
        """Find structural segments in content.

        Args:
            content: Text to parse.
            language: Language tag, one of ``languages``.

        Returns:
            ParseResult with ordered, non-overlapping segments, or a failure.
        """
        pass

    def can_chunk(self, language: str) -> bool:
        """Check if this strategy handles the given language tag."""
        return language in self.languages
