"""Strategy registry for selecting a chunking strategy."""

from pathlib import PurePosixPath

from quarry.chunking.base import ChunkingStrategy
from quarry.chunking.markdown_strategy import MarkdownChunkingStrategy
from quarry.chunking.python_strategy import PythonChunkingStrategy
from quarry.chunking.treesitter_strategy import TreeSitterChunkingStrategy
from quarry.constants.chunking import LANGUAGE_BY_CONTENT_TYPE, LANGUAGE_BY_EXTENSION


class ChunkerRegistry:
    """Registry that selects the chunking strategy for a piece of content.

    Content whose language is unknown, or whose language has no strategy,
    gets no strategy and is chunked with plain windows.
    """

    def __init__(self, outline_chars: int = 800):
        """Initialize registry with all available strategies."""
        self._strategies: list[ChunkingStrategy] = [
            PythonChunkingStrategy(outline_chars),
            TreeSitterChunkingStrategy(outline_chars),
            MarkdownChunkingStrategy(outline_chars),
        ]

    def detect_language(self, path: str | None, content_type: str | None = None) -> str | None:
        """Work out the language tag for content.

        Args:
            path: Document path, used for its extension.
            content_type: Optional MIME type or language tag.

        Returns:
            Language tag, or None when unknown.
        """
        if content_type:
            tag = content_type.split(";")[0].strip().lower()
            if tag in LANGUAGE_BY_CONTENT_TYPE:
                return LANGUAGE_BY_CONTENT_TYPE[tag]
            if any(strategy.can_chunk(tag) for strategy in self._strategies):
                return tag
        if path:
            return LANGUAGE_BY_EXTENSION.get(PurePosixPath(path).suffix.lower())
        return None

    def get_strategy(self, language: str | None) -> ChunkingStrategy | None:
        """Get the strategy for a language tag, if any."""
        if language is None:
            return None
        for strategy in self._strategies:
            if strategy.can_chunk(language):
                return strategy
        return None

    @property
    def supported_languages(self) -> list[str]:
        """Language tags with a structural strategy."""
        return [language for strategy in self._strategies for language in strategy.languages]
