"""Source provider capability."""

import re
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

_MARKDOWN_H1 = re.compile(r"^#\s+(.+?)\s*#*\s*$", re.MULTILINE)


@dataclass
class SourceItem:
    """One unit of raw content handed to the indexer."""

    document_id: str
    path: str
    content: str
    content_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def title(self) -> str:
        """Title from metadata, a leading Markdown heading, or the file name."""
        title = self.metadata.get("title")
        if title:
            return str(title)
        return derive_title(self.path, self.content)


def derive_title(path: str, content: str) -> str:
    """Derive a display title for a document.

    Markdown documents use their first H1 heading. Everything else uses the
    file name.
    """
    pure = PurePosixPath(path)
    if pure.suffix.lower() in (".md", ".markdown"):
        match = _MARKDOWN_H1.search(content)
        if match:
            return match.group(1).strip()
    return pure.name or path


class SourceProvider(ABC):
    """Yields the current content of one collection."""

    @abstractmethod
    def iter_items(self) -> Iterator[SourceItem]:
        """Iterate over every item the source currently holds.

        Items are yielded in a stable order. An item the provider cannot
        read is skipped with a warning rather than ending the iteration.
        """
