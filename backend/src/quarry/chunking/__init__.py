"""Semantic chunking of source code and documents."""

from quarry.chunking.base import ChunkingStrategy
from quarry.chunking.chunker import SemanticChunker
from quarry.chunking.markdown_strategy import MarkdownChunkingStrategy
from quarry.chunking.models import Chunk, ChunkKind, ParseResult, Segment
from quarry.chunking.python_strategy import PythonChunkingStrategy
from quarry.chunking.registry import ChunkerRegistry
from quarry.chunking.treesitter_strategy import TreeSitterChunkingStrategy
from quarry.chunking.windows import split_windows

__all__ = [
    "Chunk",
    "ChunkKind",
    "ChunkerRegistry",
    "ChunkingStrategy",
    "MarkdownChunkingStrategy",
    "ParseResult",
    "PythonChunkingStrategy",
    "Segment",
    "SemanticChunker",
    "TreeSitterChunkingStrategy",
    "split_windows",
]
