"""Tests for ordering, Reciprocal Rank Fusion and normalization."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from quarry.search.ranking import RankedItem, RRFRanker, normalize_scores, sort_key


class TestOrder:
    """Tests for deterministic ordering."""

    def test_score_then_raw_score_then_id(self):
        """Ties on score go to raw score, then to the smaller id."""
        items = [
            RankedItem("c", 1.0, 0.5),
            RankedItem("b", 1.0, 0.5),
            RankedItem("a", 1.0, 0.2),
            RankedItem("d", 2.0, 0.0),
        ]

        assert [item.id for item in sorted(items, key=sort_key)] == ["d", "b", "c", "a"]


class TestRRFRanker:
    """Tests for RRFRanker."""

    def test_item_in_both_lists_ranks_first(self):
        """Agreement between lists outranks a single first place."""
        lexical = [RankedItem("a", 3.0), RankedItem("b", 2.0)]
        vector = [RankedItem("b", 0.9), RankedItem("c", 0.8)]

        fused = RRFRanker(k=60).fuse(lexical, vector)

        assert fused[0].id == "b"
        assert fused[0].score == pytest.approx(1 / 62 + 1 / 61)
        assert fused[0].positions == [2, 1]

    def test_missing_list_contributes_nothing(self):
        """An item absent from a list has no position there."""
        fused = RRFRanker(k=60).fuse([RankedItem("a", 1.0)], [])

        assert fused[0].positions == [1, None]
        assert fused[0].score == pytest.approx(1 / 61)

    def test_ties_break_on_raw_score_then_id(self):
        """Equal fused scores fall back to the best raw score, then id."""
        lexical = [RankedItem("x", 5.0, raw_score=0.1)]
        vector = [RankedItem("y", 0.5, raw_score=0.7)]
        fused = RRFRanker().fuse(lexical, vector)

        assert [item.id for item in fused] == ["y", "x"]

        same_raw = RRFRanker().fuse([RankedItem("n", 1.0)], [RankedItem("m", 1.0)])
        assert [item.id for item in same_raw] == ["m", "n"]

    def test_raw_score_is_best_across_lists(self):
        """The tie-break value is the item's highest raw score."""
        fused = RRFRanker().fuse(
            [RankedItem("a", 1.0, raw_score=0.2)], [RankedItem("a", 1.0, raw_score=0.6)]
        )

        assert fused[0].raw_score == 0.6

    def test_duplicate_in_one_list_keeps_first_position(self):
        """A repeated id in one list counts once."""
        fused = RRFRanker(k=0).fuse([RankedItem("a", 1.0), RankedItem("a", 0.5)])

        assert fused[0].score == pytest.approx(1.0)
        assert fused[0].positions == [1]

    def test_default_k(self):
        """The standard rank offset is used by default."""
        assert RRFRanker().k == 60

    @given(
        ids=st.lists(
            st.text(alphabet="abcdef", min_size=1, max_size=3), max_size=15, unique=True
        )
    )
    def test_fusion_is_deterministic(self, ids):
        """Fusing the same lists always yields the same order."""
        lexical = [RankedItem(i, float(len(ids) - n)) for n, i in enumerate(ids)]
        vector = [RankedItem(i, 1.0) for i in reversed(ids)]

        first = RRFRanker().fuse(lexical, vector)
        second = RRFRanker().fuse(lexical, vector)

        assert [item.id for item in first] == [item.id for item in second]
        assert sorted(item.id for item in first) == sorted(ids)


class TestNormalizeScores:
    """Tests for normalize_scores."""

    def test_top_score_becomes_100(self):
        """The best score maps to exactly 100 and the rest scale with it."""
        assert normalize_scores([2.0, 1.0, 0.5]) == [100.0, 50.0, 25.0]

    def test_empty(self):
        """An empty list stays empty."""
        assert normalize_scores([]) == []

    def test_non_positive_top_left_alone(self):
        """Nothing is divided by a zero or negative best score."""
        assert normalize_scores([0.0, 0.0]) == [0.0, 0.0]
        assert normalize_scores([-1.0, -2.0]) == [-1.0, -2.0]

    def test_custom_top(self):
        """A different top value can be requested."""
        assert normalize_scores([4.0, 1.0], top=1.0) == [1.0, 0.25]
