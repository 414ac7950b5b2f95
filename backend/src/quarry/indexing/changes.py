"""Change detection between indexing generations."""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum


class ChangeStatus(Enum):
    """How a chunk relates to the previous generation of its document."""

    UNCHANGED = "unchanged"  # Same identity at the same ordinal
    MOVED = "moved"  # Same identity at a different ordinal
    CHANGED = "changed"  # Different identity where a prior chunk was
    NEW = "new"  # No prior counterpart


@dataclass(frozen=True)
class PriorChunk:
    """A chunk as stored by the previous generation."""

    ordinal: int
    identity: str


@dataclass
class ChunkChange:
    """Classification of one chunk of the new generation."""

    ordinal: int
    identity: str
    status: ChangeStatus
    previous_ordinal: int | None = None


@dataclass
class ChangeSet:
    """Result of comparing two generations of a document."""

    changes: list[ChunkChange] = field(default_factory=list)
    removed: list[PriorChunk] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        """Number of chunks per status, plus removed."""
        result = {status.value: 0 for status in ChangeStatus}
        for change in self.changes:
            result[change.status.value] += 1
        result["removed"] = len(self.removed)
        return result


class ChangeDetector:
    """Classifies a document's new chunks against its previous generation.

    Matching is by content identity only. Identities are matched as a
    multiset, so a chunk that appears twice needs two prior occurrences to
    be fully reused. Ordinal position only decides between ``unchanged``
    and ``moved``, and between ``changed`` and ``new``.
    """

    def classify(self, previous: list[PriorChunk], identities: list[str]) -> ChangeSet:
        """Classify new chunks.

        Args:
            previous: Active chunks of the previous generation.
            identities: Content identities of the new chunks, by ordinal.

        Returns:
            ChangeSet with one change per new chunk and the removed priors.
        """
        prior_by_ordinal = {prior.ordinal: prior for prior in previous}
        consumed: set[int] = set()
        statuses: list[ChunkChange | None] = [None] * len(identities)

        # Same identity at the same position
        for ordinal, identity in enumerate(identities):
            prior = prior_by_ordinal.get(ordinal)
            if prior is not None and prior.identity == identity:
                statuses[ordinal] = ChunkChange(ordinal, identity, ChangeStatus.UNCHANGED, ordinal)
                consumed.add(ordinal)

        # Same identity elsewhere
        available: dict[str, deque[int]] = defaultdict(deque)
        for prior in sorted(previous, key=lambda p: p.ordinal):
            if prior.ordinal not in consumed:
                available[prior.identity].append(prior.ordinal)

        for ordinal, identity in enumerate(identities):
            if statuses[ordinal] is not None or not available[identity]:
                continue
            previous_ordinal = available[identity].popleft()
            consumed.add(previous_ordinal)
            statuses[ordinal] = ChunkChange(ordinal, identity, ChangeStatus.MOVED, previous_ordinal)

        # Anything left is changed in place or new
        for ordinal, identity in enumerate(identities):
            if statuses[ordinal] is not None:
                continue
            if ordinal in prior_by_ordinal and ordinal not in consumed:
                consumed.add(ordinal)
                statuses[ordinal] = ChunkChange(ordinal, identity, ChangeStatus.CHANGED, ordinal)
            else:
                statuses[ordinal] = ChunkChange(ordinal, identity, ChangeStatus.NEW)

        removed = [prior for prior in previous if prior.ordinal not in consumed]
        return ChangeSet(changes=[s for s in statuses if s is not None], removed=removed)
