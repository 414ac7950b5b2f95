"""Ordering, Reciprocal Rank Fusion and score normalization."""

from dataclasses import dataclass, field

from quarry.constants.search import NORMALIZED_TOP_SCORE, RRF_K


@dataclass
class RankedItem:
    """An item in one ranked list.

    ``score`` orders the list; ``raw_score`` breaks ties, then ``id``.
    """

    id: str
    score: float
    raw_score: float = 0.0


@dataclass
class FusedItem:
    """An item after fusion, with its 1-based position in each input list."""

    id: str
    score: float
    raw_score: float
    positions: list[int | None] = field(default_factory=list)


def sort_key(item: RankedItem | FusedItem) -> tuple[float, float, str]:
    """Best first: higher score, then higher raw score, then id."""
    return (-item.score, -item.raw_score, item.id)


class RRFRanker:
    """Combines ranked lists with Reciprocal Rank Fusion.

    RRF_score(item) = sum(1 / (k + position_i)) over the lists containing
    the item, with 1-based positions. An item missing from a list gets no
    contribution from it. Ties go to the higher raw score (the best raw
    score the item had in any list), then to the smaller id.
    """

    def __init__(self, k: int = RRF_K) -> None:
        """Initialize RRF ranker.

        Args:
            k: Rank offset (default 60, standard for RRF).
        """
        self._k = k

    @property
    def k(self) -> int:
        return self._k

    def fuse(self, *rankings: list[RankedItem]) -> list[FusedItem]:
        """Fuse already-ordered lists.

        Args:
            rankings: Lists ordered best first. Duplicate ids within one
                list keep their first position.

        Returns:
            Fused items ordered best first.
        """
        fused: dict[str, FusedItem] = {}
        for list_index, ranking in enumerate(rankings):
            for position, item in enumerate(ranking, start=1):
                entry = fused.get(item.id)
                if entry is None:
                    entry = FusedItem(
                        id=item.id,
                        score=0.0,
                        raw_score=item.raw_score,
                        positions=[None] * len(rankings),
                    )
                    fused[item.id] = entry
                if entry.positions[list_index] is not None:
                    continue
                entry.positions[list_index] = position
                entry.score += 1.0 / (self._k + position)
                entry.raw_score = max(entry.raw_score, item.raw_score)

        return sorted(fused.values(), key=sort_key)


def normalize_scores(scores: list[float], top: float = NORMALIZED_TOP_SCORE) -> list[float]:
    """Scale scores so the best one equals ``top``.

    Scores are returned unchanged when the list is empty or the best score
    is not positive, since there is nothing meaningful to divide by.
    """
    if not scores:
        return []
    best = max(scores)
    if best <= 0:
        return list(scores)
    return [score / best * top for score in scores]
