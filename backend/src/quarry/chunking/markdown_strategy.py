"""Markdown chunking by heading sections."""

import re

from quarry.chunking.base import ChunkingStrategy
from quarry.chunking.models import ChunkKind, ParseResult, Segment

# ATX headings up to level 3; deeper headings stay inside their section
HEADER_PATTERN = re.compile(r"^(#{1,3})[ \t]+(.+?)[ \t#]*$", re.MULTILINE)
FENCE_PATTERN = re.compile(r"^[ \t]{0,3}(```|~~~)", re.MULTILINE)


class MarkdownChunkingStrategy(ChunkingStrategy):
    """Chunks Markdown into one segment per H1/H2/H3 section."""

    @property
    def languages(self) -> list[str]:
        """Language tags this strategy handles."""
        return ["markdown"]

    @property
    def language_name(self) -> str:
        """Human-readable language name."""
        return "Markdown"

    def parse(self, content: str, language: str) -> ParseResult:
        """Split Markdown at headings outside fenced code blocks.

        Text before the first heading is left as a gap. Each section's
        context is the chain of enclosing headings.

        Args:
            content: Markdown text.
            language: Always ``"markdown"``.

        Returns:
            ParseResult with one segment per section.
        """
        fenced = _fenced_ranges(content)
        headers = [
            match
            for match in HEADER_PATTERN.finditer(content)
            if not any(start <= match.start() < end for start, end in fenced)
        ]

        segments: list[Segment] = []
        trail: list[tuple[int, str]] = []  # (level, title) of enclosing headings

        for i, match in enumerate(headers):
            level = len(match.group(1))
            title = match.group(2).strip()
            while trail and trail[-1][0] >= level:
                trail.pop()
            context = " > ".join(text for _, text in trail)
            trail.append((level, title))

            end = headers[i + 1].start() if i + 1 < len(headers) else len(content)
            segments.append(
                Segment(
                    start=match.start(),
                    end=end,
                    kind=ChunkKind.BLOCK,
                    breadcrumb=title,
                    context=context,
                )
            )

        return ParseResult.success(segments)


def _fenced_ranges(content: str) -> list[tuple[int, int]]:
    """Character ranges covered by fenced code blocks."""
    ranges: list[tuple[int, int]] = []
    opening: re.Match[str] | None = None
    for match in FENCE_PATTERN.finditer(content):
        if opening is None:
            opening = match
        elif match.group(1) == opening.group(1):
            ranges.append((opening.start(), match.end()))
            opening = None
    if opening is not None:
        ranges.append((opening.start(), len(content)))
    return ranges
