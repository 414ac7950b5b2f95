"""Fixed-size text windows with natural break points."""

from quarry.constants.chunking import BREAK_SEPARATORS


def split_windows(
    text: str,
    max_chars: int,
    overlap_chars: int = 0,
    break_search_percent: int = 30,
) -> list[tuple[int, int, str]]:
    """Split text into consecutive, non-overlapping windows.

    A window ends at the last paragraph break, sentence end, newline or
    space found in the final ``break_search_percent`` of the window, falling
    back to a hard cut at ``max_chars``. Offsets are character offsets, so a
    multi-byte character is never split.

    Args:
        text: Text to split.
        max_chars: Maximum window length.
        overlap_chars: Characters of preceding text returned as each
            window's overlap prefix.
        break_search_percent: Share of the window searched for a break.

    Returns:
        List of (start, end, prefix) tuples covering the whole text.
    """
    if not text:
        return []
    if max_chars <= 0 or len(text) <= max_chars:
        return [(0, len(text), "")]

    windows: list[tuple[int, int, str]] = []
    start = 0
    length = len(text)

    while start < length:
        end = min(start + max_chars, length)

        if end < length:
            search_start = start + max_chars * (100 - break_search_percent) // 100
            region = text[search_start:end]
            for separator in BREAK_SEPARATORS:
                pos = region.rfind(separator)
                if pos != -1:
                    end = search_start + pos + len(separator)
                    break

        # Always make progress
        if end <= start:
            end = min(start + max_chars, length)

        prefix = text[max(0, start - overlap_chars) : start] if overlap_chars else ""
        windows.append((start, end, prefix))
        start = end

    return windows
