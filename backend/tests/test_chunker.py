"""Tests for the semantic chunker and strategy registry."""

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from quarry.chunking.base import ChunkingStrategy
from quarry.chunking.chunker import SemanticChunker
from quarry.chunking.models import ChunkKind, ParseResult, Segment
from quarry.chunking.registry import ChunkerRegistry
from quarry.errors import ParseFailure


def assert_tiles(content: str, chunks) -> None:
    """Chunks are ordered, contiguous and reproduce the content."""
    assert "".join(chunk.text for chunk in chunks) == content
    assert [chunk.ordinal for chunk in chunks] == list(range(len(chunks)))
    position = 0
    for chunk in chunks:
        assert chunk.start == position
        assert chunk.text == content[chunk.start : chunk.end]
        position = chunk.end


@pytest.fixture
def chunker() -> SemanticChunker:
    """Chunker with a small budget so windowing is easy to trigger."""
    return SemanticChunker(max_chunk_chars=400, window_overlap_chars=40)


class TestChunkerRegistry:
    """Tests for language detection and strategy lookup."""

    def test_detects_language_from_extension(self):
        """File extension picks the language."""
        registry = ChunkerRegistry()

        assert registry.detect_language("src/app.py") == "python"
        assert registry.detect_language("web/App.TSX") == "tsx"
        assert registry.detect_language("README.md") == "markdown"
        assert registry.detect_language("notes.txt") is None

    def test_content_type_wins_over_extension(self):
        """An explicit content type overrides the extension."""
        registry = ChunkerRegistry()

        assert registry.detect_language("snippet.txt", "text/x-python") == "python"
        assert registry.detect_language("snippet.txt", "java") == "java"

    def test_unknown_language_has_no_strategy(self):
        """Unknown languages get no strategy."""
        registry = ChunkerRegistry()

        assert registry.get_strategy(None) is None
        assert registry.get_strategy("cobol") is None
        assert registry.get_strategy("python") is not None

    def test_supported_languages(self):
        """Every strategy contributes its languages."""
        languages = ChunkerRegistry().supported_languages

        for language in ("python", "javascript", "typescript", "tsx", "java", "markdown"):
            assert language in languages


class TestSemanticChunker:
    """Tests for SemanticChunker."""

    def test_empty_content_has_no_chunks(self, chunker):
        """Empty content yields nothing."""
        assert chunker.chunk("", "a.py") == []

    def test_whitespace_content_is_one_blank_chunk(self, chunker):
        """Whitespace is still covered, as a single blank chunk."""
        chunks = chunker.chunk("   \n\n", "a.txt")

        assert len(chunks) == 1
        assert chunks[0].is_blank

    def test_unknown_language_uses_windows(self, chunker):
        """Plain text is windowed."""
        content = "word " * 200

        chunks = chunker.chunk(content, "notes.txt")

        assert len(chunks) > 1
        assert all(chunk.kind is ChunkKind.WINDOW for chunk in chunks)
        assert_tiles(content, chunks)

    def test_windows_carry_overlap_prefix(self, chunker):
        """Windows after the first carry preceding text as an embedding prefix."""
        content = "word " * 200

        chunks = chunker.chunk(content, "notes.txt")

        assert chunks[0].prefix == ""
        assert chunks[1].prefix == content[chunks[1].start - 40 : chunks[1].start]

    def test_python_syntax_error_falls_back_to_windows(self, chunker):
        """Unparseable Python is windowed rather than dropped."""
        content = "def broken(:\n    pass\n"

        chunks = chunker.chunk(content, "broken.py")

        assert [chunk.kind for chunk in chunks] == [ChunkKind.WINDOW]
        assert_tiles(content, chunks)

    def test_oversized_function_is_split_with_indexed_breadcrumbs(self, chunker):
        """A function over the budget becomes several windows of the same kind."""
        body = "".join(f"    value_{i} = compute({i})\n" for i in range(60))
        content = f"def big():\n{body}"

        chunks = chunker.chunk(content, "big.py")

        assert len(chunks) > 1
        assert all(chunk.kind is ChunkKind.FUNCTION for chunk in chunks)
        assert [chunk.breadcrumb for chunk in chunks] == [
            f"big[{i}]" for i in range(len(chunks))
        ]
        assert all(len(chunk.text) <= 400 for chunk in chunks)
        assert_tiles(content, chunks)

    def test_line_numbers(self, chunker):
        """Chunks record 1-based inclusive line ranges."""
        content = "def a():\n    return 1\n\n\ndef b():\n    return 2\n"

        chunks = chunker.chunk(content, "lines.py")

        assert [(c.breadcrumb, c.start_line, c.end_line) for c in chunks] == [
            ("a", 1, 4),
            ("b", 5, 6),
        ]

    def test_failed_regions_become_windows(self):
        """Regions a strategy reports as failed are windowed in place."""

        class PartialStrategy(ChunkingStrategy):
            languages = ["partial"]
            language_name = "Partial"

            def parse(self, content, language):
                return ParseResult.success(
                    [Segment(0, 5, ChunkKind.FUNCTION, breadcrumb="first")],
                    failed_regions=[(5, len(content))],
                )

        registry = ChunkerRegistry()
        registry._strategies.insert(0, PartialStrategy())
        chunker = SemanticChunker(max_chunk_chars=400, registry=registry)

        chunks = chunker.chunk("abcdeFGHIJ", content_type="partial")

        assert [(c.kind, c.text) for c in chunks] == [
            (ChunkKind.FUNCTION, "abcde"),
            (ChunkKind.WINDOW, "FGHIJ"),
        ]

    def test_raising_strategy_falls_back_to_windows(self):
        """A strategy raising ParseFailure never aborts chunking."""

        class BrokenStrategy(ChunkingStrategy):
            languages = ["broken"]
            language_name = "Broken"

            def parse(self, content, language):
                raise ParseFailure("grammar missing")

        registry = ChunkerRegistry()
        registry._strategies.insert(0, BrokenStrategy())
        chunker = SemanticChunker(max_chunk_chars=400, registry=registry)

        chunks = chunker.chunk("some text", content_type="broken")

        assert [chunk.kind for chunk in chunks] == [ChunkKind.WINDOW]

    @settings(max_examples=150, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    @given(
        content=st.text(min_size=1, max_size=3000),
        path=st.sampled_from(["a.py", "a.md", "a.txt", "a.js", "A.java", "a.ts"]),
    )
    def test_chunks_always_cover_content(self, content, path):
        """Whatever the input, chunks tile it exactly within the size budget."""
        chunker = SemanticChunker(max_chunk_chars=400, window_overlap_chars=40)

        chunks = chunker.chunk(content, path)

        assert_tiles(content, chunks)
        for chunk in chunks:
            assert 0 < len(chunk.text) <= 400
            assert 1 <= chunk.start_line <= chunk.end_line

    @settings(max_examples=50, deadline=None)
    @given(
        functions=st.lists(
            st.from_regex(r"[a-z][a-z0-9_]{0,10}", fullmatch=True), min_size=1, max_size=8
        )
    )
    def test_generated_python_covers_content(self, functions):
        """Valid Python tiles exactly, with one chunk per function."""
        content = "".join(f"def {name}_{i}():\n    return {i}\n\n" for i, name in enumerate(functions))

        chunks = SemanticChunker(max_chunk_chars=400).chunk(content, "gen.py")

        assert_tiles(content, chunks)
        assert [chunk.breadcrumb for chunk in chunks] == [
            f"{name}_{i}" for i, name in enumerate(functions)
        ]
