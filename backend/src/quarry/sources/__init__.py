"""Content sources that feed collections."""

from quarry.sources.base import SourceItem, SourceProvider, derive_title
from quarry.sources.filesystem import FilesystemSource, source_for_collection

__all__ = [
    "FilesystemSource",
    "SourceItem",
    "SourceProvider",
    "derive_title",
    "source_for_collection",
]
