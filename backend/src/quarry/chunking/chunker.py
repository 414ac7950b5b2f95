"""Semantic chunker: structural segments with lossless window fallback."""

import logging

from quarry.chunking.base import ChunkingStrategy, line_of, line_starts
from quarry.chunking.models import Chunk, ChunkKind, ParseResult, Segment
from quarry.chunking.registry import ChunkerRegistry
from quarry.chunking.windows import split_windows
from quarry.config import ConfigError, load_settings
from quarry.constants.chunking import (
    BREAK_SEARCH_PERCENT,
    MAX_CHUNK_CHARS,
    NESTED_OUTLINE_CHARS,
    WINDOW_OVERLAP_CHARS,
)
from quarry.errors import ParseFailure

logger = logging.getLogger(__name__)


class SemanticChunker:
    """Splits content into ordered, non-overlapping chunks covering all of it.

    Recognized languages are split at declaration boundaries. Everything a
    strategy does not claim becomes ``block`` chunks, regions it could not
    parse become ``window`` chunks, and any piece longer than
    ``max_chunk_chars`` is split into windows. Joining the text of the
    returned chunks always reproduces the input exactly.
    """

    def __init__(
        self,
        max_chunk_chars: int | None = None,
        window_overlap_chars: int | None = None,
        break_search_percent: int | None = None,
        nested_outline_chars: int | None = None,
        registry: ChunkerRegistry | None = None,
    ) -> None:
        """Initialize chunker.

        Args:
            max_chunk_chars: Maximum chunk length. Defaults to settings.
            window_overlap_chars: Overlap carried as window prefix.
            break_search_percent: Tail share searched for a natural break.
            nested_outline_chars: Budget for container signature outlines.
            registry: Strategy registry. Built from the budget if omitted.
        """
        try:
            settings = load_settings()
            defaults = settings.chunking
            default_max = defaults.max_chunk_chars
            default_overlap = defaults.window_overlap_chars
            default_break = defaults.break_search_percent
            default_outline = defaults.nested_outline_chars
        except (ValueError, OSError, ConfigError):
            # Settings not available, use defaults from CONFIG_SCHEMA
            default_max = MAX_CHUNK_CHARS
            default_overlap = WINDOW_OVERLAP_CHARS
            default_break = BREAK_SEARCH_PERCENT
            default_outline = NESTED_OUTLINE_CHARS

        self.max_chunk_chars = max_chunk_chars or default_max
        self.window_overlap_chars = (
            window_overlap_chars if window_overlap_chars is not None else default_overlap
        )
        self.break_search_percent = (
            break_search_percent if break_search_percent is not None else default_break
        )
        outline_chars = (
            nested_outline_chars if nested_outline_chars is not None else default_outline
        )
        self.registry = registry or ChunkerRegistry(outline_chars)

    def chunk(
        self,
        content: str,
        path: str | None = None,
        content_type: str | None = None,
    ) -> list[Chunk]:
        """Chunk content.

        Args:
            content: Raw text to chunk.
            path: Document path, used to pick a strategy by extension.
            content_type: Optional MIME type or language tag.

        Returns:
            Chunks in order. Empty content yields no chunks.
        """
        if not content:
            return []

        language = self.registry.detect_language(path, content_type)
        strategy = self.registry.get_strategy(language)

        segments: list[Segment]
        if strategy is None:
            segments = [Segment(0, len(content), ChunkKind.WINDOW)]
        else:
            result = self._run_strategy(strategy, content, language or "")
            if result.ok:
                segments = list(result.segments)
                for start, end in result.failed_regions:
                    logger.warning(
                        f"Parse error in {path or '<content>'} at offsets {start}-{end}, "
                        "windowing region"
                    )
                    segments.append(Segment(start, end, ChunkKind.WINDOW))
            else:
                logger.warning(
                    f"Could not parse {path or '<content>'} as {language}: {result.error}; "
                    "falling back to windows"
                )
                segments = [Segment(0, len(content), ChunkKind.WINDOW)]

        pieces = self._layout(content, segments)
        return self._materialize(content, pieces, language)

    def _run_strategy(
        self, strategy: ChunkingStrategy, content: str, language: str
    ) -> ParseResult:
        try:
            return strategy.parse(content, language)
        except ParseFailure as e:
            return ParseResult.failure(str(e))
        except Exception as e:
            # A broken strategy must never abort chunking
            logger.exception(f"Chunking strategy for {language} raised")
            return ParseResult.failure(str(e))

    def _layout(self, content: str, segments: list[Segment]) -> list[Segment]:
        """Order segments, clip overlaps and fill every gap.

        Whitespace-only gaps are folded into the preceding piece (or the
        following one at the start of the content). Other gaps become
        ``block`` pieces.
        """
        length = len(content)
        pieces: list[Segment] = []
        cursor = 0

        for segment in sorted(segments, key=lambda s: (s.start, s.end)):
            start = max(segment.start, cursor, 0)
            end = min(segment.end, length)
            if end <= start:
                continue
            if start > cursor:
                self._add_gap(content, pieces, cursor, start)
            segment.start, segment.end = start, end
            pieces.append(segment)
            cursor = end

        if cursor < length:
            self._add_gap(content, pieces, cursor, length)

        # Leading whitespace gap: merge into the next piece
        if len(pieces) > 1 and not content[pieces[0].start : pieces[0].end].strip():
            pieces[1].start = pieces[0].start
            pieces.pop(0)

        return pieces

    def _add_gap(self, content: str, pieces: list[Segment], start: int, end: int) -> None:
        if pieces and not content[start:end].strip():
            pieces[-1].end = end
        else:
            pieces.append(Segment(start, end, ChunkKind.BLOCK))

    def _materialize(
        self, content: str, pieces: list[Segment], language: str | None
    ) -> list[Chunk]:
        """Turn pieces into chunks, splitting oversized ones into windows."""
        starts = line_starts(content)
        chunks: list[Chunk] = []

        for piece in pieces:
            text = content[piece.start : piece.end]
            windows = split_windows(
                text,
                self.max_chunk_chars,
                self.window_overlap_chars,
                self.break_search_percent,
            )
            split = len(windows) > 1
            for index, (start, end, prefix) in enumerate(windows):
                breadcrumb = piece.breadcrumb
                if split and breadcrumb:
                    breadcrumb = f"{breadcrumb}[{index}]"
                absolute_start = piece.start + start
                absolute_end = piece.start + end
                chunks.append(
                    Chunk(
                        ordinal=len(chunks),
                        kind=piece.kind,
                        text=text[start:end],
                        start=absolute_start,
                        end=absolute_end,
                        start_line=line_of(starts, absolute_start),
                        end_line=line_of(starts, max(absolute_end - 1, absolute_start)),
                        breadcrumb=breadcrumb,
                        context=piece.context,
                        outline=piece.outline if index == 0 else "",
                        prefix=prefix,
                        language=language,
                    )
                )

        return chunks
