"""Filesystem source with glob filters, default excludes and size checks."""

import fnmatch
import logging
from collections.abc import Iterator
from pathlib import Path

from quarry.config import ConfigError, load_settings
from quarry.constants.files import (
    BINARY_CHECK_BYTES,
    CONTENT_TYPE_BY_EXTENSION,
    DEFAULT_EXCLUDES,
    MAX_FILE_SIZE_KB,
    MINIFIED_AVG_LINE_LENGTH,
    MINIFIED_SAMPLE_LINES,
)
from quarry.errors import CollectionError
from quarry.sources.base import SourceItem, SourceProvider
from quarry.store.base import CollectionRecord, document_id_for

logger = logging.getLogger(__name__)


class FilesystemSource(SourceProvider):
    """Reads text files under a root directory.

    A file is indexed when it matches at least one include glob (every file
    does when there are none), matches no exclude pattern, and is neither
    too large, binary nor minified.
    """

    def __init__(
        self,
        collection: str,
        root: Path,
        include_globs: list[str] | None = None,
        exclude_globs: list[str] | None = None,
        max_file_size_kb: int | None = None,
    ):
        """Initialize filesystem source.

        Args:
            collection: Collection name, part of each document id.
            root: Directory to scan.
            include_globs: Glob masks a relative path must match.
            exclude_globs: Extra exclude patterns on top of the defaults.
            max_file_size_kb: Size limit. If None, uses settings or default (500).
        """
        self.collection = collection
        self.root = root
        self.include_globs = list(include_globs or [])

        default_max_file_size_kb = MAX_FILE_SIZE_KB
        self.minified_threshold = MINIFIED_AVG_LINE_LENGTH
        try:
            settings = load_settings()
            default_max_file_size_kb = settings.files.max_file_size_kb
            self.minified_threshold = settings.files.minified_line_length
        except (ValueError, OSError, ConfigError):
            # Settings not available, use defaults from CONFIG_SCHEMA
            pass

        if max_file_size_kb is None:
            max_file_size_kb = default_max_file_size_kb
        self.max_file_size_bytes = max_file_size_kb * 1024

        self.exclude_patterns = list(DEFAULT_EXCLUDES)
        if exclude_globs:
            self.exclude_patterns.extend(exclude_globs)

    def _is_included(self, path: str) -> bool:
        if not self.include_globs:
            return True
        name = path.rsplit("/", 1)[-1]
        return any(
            fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(name, pattern)
            for pattern in self.include_globs
        )

    def _is_excluded(self, path: str) -> bool:
        """Check if a relative path matches any exclude pattern."""
        parts = path.split("/")

        for pattern in self.exclude_patterns:
            # Trailing slash means a directory name anywhere in the path
            if pattern.endswith("/"):
                dir_pattern = pattern.rstrip("/")
                if any(fnmatch.fnmatch(part, dir_pattern) for part in parts[:-1]):
                    return True
            # Patterns with a slash match as path prefixes or full-path globs
            elif "/" in pattern:
                if path.startswith(pattern + "/") or path == pattern:
                    return True
                if fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(path, pattern + "/*"):
                    return True
            else:
                if any(fnmatch.fnmatch(part, pattern) for part in parts):
                    return True
                if fnmatch.fnmatch(path, pattern):
                    return True

        return False

    def _is_binary(self, file_path: Path) -> bool:
        try:
            with open(file_path, "rb") as f:
                return b"\x00" in f.read(BINARY_CHECK_BYTES)
        except OSError:
            return True

    def _is_minified(self, content: str) -> bool:
        """Check if content looks minified based on average line length."""
        lines = content.split("\n")[:MINIFIED_SAMPLE_LINES]
        if not lines:
            return False
        avg_length = sum(len(line) for line in lines) / len(lines)
        return avg_length > self.minified_threshold

    def get_files(self) -> list[str]:
        """Relative paths of files that pass the filters, sorted.

        Content checks (binary, minified) happen later, when files are read.
        """
        if not self.root.is_dir():
            raise CollectionError(f"Source directory does not exist: {self.root}")

        files = []
        for file_path in self.root.rglob("*"):
            if not file_path.is_file():
                continue
            relative = file_path.relative_to(self.root).as_posix()
            if self._is_excluded(relative) or not self._is_included(relative):
                continue
            try:
                if file_path.stat().st_size > self.max_file_size_bytes:
                    logger.debug(f"Skipping {relative}: larger than size limit")
                    continue
            except OSError:
                continue
            files.append(relative)
        return sorted(files)

    def iter_items(self) -> Iterator[SourceItem]:
        for relative in self.get_files():
            file_path = self.root / relative
            if self._is_binary(file_path):
                continue
            try:
                content = file_path.read_text(encoding="utf-8")
            except UnicodeDecodeError:
                logger.warning(f"Skipping {relative}: not valid UTF-8")
                continue
            except OSError as e:
                logger.warning(f"Skipping {relative}: {e}")
                continue
            if self._is_minified(content):
                logger.debug(f"Skipping {relative}: looks minified")
                continue

            yield SourceItem(
                document_id=document_id_for(self.collection, relative),
                path=relative,
                content=content,
                content_type=CONTENT_TYPE_BY_EXTENSION.get(file_path.suffix.lower()),
                metadata={"size": len(content)},
            )


def source_for_collection(collection: CollectionRecord) -> FilesystemSource:
    """Build the source provider for a collection.

    Raises:
        CollectionError: If the collection's source kind is not supported.
    """
    if collection.source_kind != "filesystem":
        raise CollectionError(
            f"Unsupported source kind {collection.source_kind!r} for {collection.name}"
        )
    return FilesystemSource(
        collection=collection.name,
        root=Path(collection.source_locator).expanduser(),
        include_globs=collection.include_globs,
        exclude_globs=collection.exclude_globs,
    )
