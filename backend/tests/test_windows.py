"""Tests for fixed-size text windows."""

from hypothesis import given, settings
from hypothesis import strategies as st

from quarry.chunking.windows import split_windows


class TestSplitWindows:
    """Tests for split_windows."""

    def test_empty_text_has_no_windows(self):
        """Empty text produces no windows."""
        assert split_windows("", 100) == []

    def test_short_text_is_one_window(self):
        """Text within the limit is returned whole."""
        assert split_windows("hello world", 100, overlap_chars=10) == [(0, 11, "")]

    def test_prefers_paragraph_break(self):
        """A window ends after a paragraph break in its tail."""
        text = "x" * 80 + "\n\n" + "y" * 80

        windows = split_windows(text, 100, break_search_percent=30)

        assert windows[0][:2] == (0, 82)
        assert text[windows[1][0] :].startswith("y")

    def test_prefers_sentence_over_space(self):
        """A sentence end beats a later space."""
        text = "a" * 75 + ". " + "b" * 10 + " " + "c" * 100

        windows = split_windows(text, 100, break_search_percent=30)

        assert text[: windows[0][1]].endswith(". ")

    def test_hard_cut_without_separators(self):
        """Text without break points is cut at exactly max_chars."""
        windows = split_windows("a" * 250, 100)

        assert [(start, end) for start, end, _ in windows] == [(0, 100), (100, 200), (200, 250)]

    def test_overlap_prefix_is_preceding_text(self):
        """Each window after the first carries the preceding characters as prefix."""
        text = "".join(str(i % 10) for i in range(250))

        windows = split_windows(text, 100, overlap_chars=10)

        assert windows[0][2] == ""
        start = windows[1][0]
        assert windows[1][2] == text[start - 10 : start]

    def test_multibyte_characters_are_never_split(self):
        """Offsets are characters, so accented text round-trips."""
        text = "é" * 250

        windows = split_windows(text, 100)

        assert "".join(text[start:end] for start, end, _ in windows) == text
        assert all(end - start <= 100 for start, end, _ in windows)

    @settings(max_examples=200)
    @given(
        text=st.text(min_size=1, max_size=2000),
        max_chars=st.integers(min_value=1, max_value=300),
        overlap=st.integers(min_value=0, max_value=50),
        percent=st.integers(min_value=0, max_value=90),
    )
    def test_windows_tile_the_text(self, text, max_chars, overlap, percent):
        """Windows are contiguous, bounded and cover the text exactly."""
        windows = split_windows(text, max_chars, overlap, percent)

        assert windows[0][0] == 0
        assert windows[-1][1] == len(text)
        for (_, end, _), (next_start, _, _) in zip(windows, windows[1:]):
            assert end == next_start
        for start, end, _ in windows:
            assert 0 < end - start <= max_chars
