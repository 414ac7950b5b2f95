"""Document importance from kind and link density."""

import fnmatch
import posixpath
import re
from enum import Enum
from pathlib import PurePosixPath

import networkx as nx

from quarry.constants.importance import (
    DEFAULT_WEIGHT,
    DOCS_MARKDOWN_WEIGHT,
    LINK_BONUS_CAP,
    LINK_BONUS_PER_LINK,
    MAX_IMPORTANCE,
    MIN_IMPORTANCE,
    OTHER_MARKDOWN_WEIGHT,
    README_WEIGHT,
)
from quarry.constants.search import DOCS_DIR_NAMES, TEST_DIR_NAMES, TEST_FILE_PATTERNS

# [text](target) and ![alt](target), ignoring an optional "title"
MARKDOWN_LINK_PATTERN = re.compile(r"!?\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")
# Wiki-style [[target]] or [[target|label]]
WIKI_LINK_PATTERN = re.compile(r"\[\[([^\]|#]+)(?:[#|][^\]]*)?\]\]")

_MARKDOWN_SUFFIXES = {".md", ".markdown"}


class PathClass(Enum):
    """Coarse classification of a document path."""

    PRODUCTION = "production"
    TEST = "test"
    DOCS = "docs"


def classify_path(path: str) -> PathClass:
    """Classify a document path as test, docs or production content.

    Args:
        path: Path relative to the collection root.

    Returns:
        PathClass for the path.
    """
    parts = PurePosixPath(path.replace("\\", "/")).parts
    if not parts:
        return PathClass.PRODUCTION
    directories = [part.lower() for part in parts[:-1]]
    filename = parts[-1]

    if any(part in TEST_DIR_NAMES for part in directories):
        return PathClass.TEST
    if any(fnmatch.fnmatchcase(filename, pattern) for pattern in TEST_FILE_PATTERNS):
        return PathClass.TEST
    if any(part in DOCS_DIR_NAMES for part in directories):
        return PathClass.DOCS
    if PurePosixPath(filename).suffix.lower() in _MARKDOWN_SUFFIXES:
        return PathClass.DOCS
    return PathClass.PRODUCTION


def base_weight(path: str) -> float:
    """Base importance for a document before link bonuses."""
    pure = PurePosixPath(path.replace("\\", "/"))
    if pure.name.lower().startswith("readme"):
        return README_WEIGHT
    if pure.suffix.lower() in _MARKDOWN_SUFFIXES:
        if any(part.lower() in DOCS_DIR_NAMES for part in pure.parts[:-1]):
            return DOCS_MARKDOWN_WEIGHT
        return OTHER_MARKDOWN_WEIGHT
    return DEFAULT_WEIGHT


def extract_links(content: str, path: str) -> list[str]:
    """Find relative links from a document to other documents.

    External URLs, mail links and in-page anchors are ignored. Targets are
    resolved against the linking document's directory.

    Args:
        content: Document text.
        path: Path of the linking document, relative to its collection.

    Returns:
        Sorted, de-duplicated target paths relative to the collection root.
    """
    directory = posixpath.dirname(path.replace("\\", "/"))
    targets: set[str] = set()

    raw_targets = [m.group(1) for m in MARKDOWN_LINK_PATTERN.finditer(content)]
    raw_targets.extend(m.group(1).strip() for m in WIKI_LINK_PATTERN.finditer(content))

    for raw in raw_targets:
        if not raw or raw.startswith("#") or re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*:", raw):
            continue
        target = raw.split("#", 1)[0].split("?", 1)[0]
        if not target:
            continue
        if target.startswith("/"):
            resolved = posixpath.normpath(target.lstrip("/"))
        else:
            resolved = posixpath.normpath(posixpath.join(directory, target))
        if resolved.startswith(".."):
            continue
        targets.add(resolved)

    return sorted(targets)


def clamp_importance(value: float) -> float:
    """Clamp an importance score to the fixed scale."""
    return max(MIN_IMPORTANCE, min(MAX_IMPORTANCE, value))


class ImportanceScorer:
    """Derives per-document importance from a collection's link graph."""

    def build_graph(self, links: dict[str, list[str]]) -> nx.DiGraph:
        """Build a directed link graph.

        Args:
            links: Document path mapped to the paths it links to.

        Returns:
            Graph with one node per document and an edge per resolved link.
            Links to paths outside the collection and self-links are dropped.
            A link target without an extension also matches ``target.md``.
        """
        graph = nx.DiGraph()
        graph.add_nodes_from(links)
        for source, targets in links.items():
            for target in targets:
                resolved = self._resolve(target, links)
                if resolved is not None and resolved != source:
                    graph.add_edge(source, resolved)
        return graph

    def score(self, links: dict[str, list[str]]) -> dict[str, float]:
        """Importance for every document in a collection.

        importance = base_weight * (1 + min(0.3 * inbound_links, 2.0)),
        clamped to the fixed scale.

        Args:
            links: Document path mapped to the paths it links to.

        Returns:
            Document path mapped to importance.
        """
        graph = self.build_graph(links)
        scores: dict[str, float] = {}
        for path in graph.nodes:
            inbound = graph.in_degree(path)
            bonus = min(LINK_BONUS_PER_LINK * inbound, LINK_BONUS_CAP)
            scores[path] = clamp_importance(base_weight(path) * (1.0 + bonus))
        return scores

    def _resolve(self, target: str, links: dict[str, list[str]]) -> str | None:
        if target in links:
            return target
        for suffix in (".md", ".markdown"):
            if target + suffix in links:
                return target + suffix
        return None
