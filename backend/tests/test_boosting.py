"""Tests for per-document score boosting."""

import pytest

from quarry.search.boosting import BoostFactors, ScoreBooster
from quarry.search.ranking import normalize_scores
from quarry.store.base import DocumentScoring


def scoring(path: str, title: str, **kwargs) -> DocumentScoring:
    values = {
        "document_id": "doc",
        "collection": "docs",
        "path": path,
        "title": title,
        "importance": 1.0,
        "path_class": "production",
        "collection_boost": 1.0,
    }
    values.update(kwargs)
    return DocumentScoring(**values)


@pytest.fixture
def booster():
    return ScoreBooster(path_boost=10.0, title_boost=4.0, test_path_penalty=0.5)


class TestBoostFactors:
    """Tests for BoostFactors arithmetic."""

    def test_defaults_are_neutral(self):
        """Default factors leave a score untouched."""
        assert BoostFactors().apply(0.42) == 0.42
        assert BoostFactors().total == 1.0

    def test_factors_multiply(self):
        """A filename match on an important doc in a boosted collection."""
        factors = BoostFactors(
            importance=4.5, collection_boost=1.5, path_penalty=1.0, title_boost=10.0
        )

        assert factors.apply(0.81) == pytest.approx(54.675)
        assert factors.total == pytest.approx(67.5)

    def test_best_boosted_result_normalizes_to_100(self):
        """The boosted top score becomes exactly 100 after normalization."""
        top = BoostFactors(importance=4.5, collection_boost=1.5, title_boost=10.0).apply(0.81)
        other = BoostFactors().apply(0.9)

        normalized = normalize_scores([top, other])

        assert normalized[0] == 100.0
        assert normalized[1] == pytest.approx(0.9 / 54.675 * 100)


class TestScoreBooster:
    """Tests for ScoreBooster."""

    def test_term_in_filename_gets_path_boost(self, booster):
        """A query term in the path wins over a title hit."""
        assert booster.title_multiplier(["mcp"], "docs/mcp-server.md", "MCP Server") == 10.0

    def test_term_in_title_only(self, booster):
        """A term found only in the title gets the title boost."""
        assert booster.title_multiplier(["server"], "docs/setup.md", "Running the Server") == 4.0

    def test_no_match_is_neutral(self, booster):
        """Terms found nowhere leave the score alone."""
        assert booster.title_multiplier(["cache"], "docs/setup.md", "Setup") == 1.0

    def test_boosts_compound_across_terms(self, booster):
        """Each matching term multiplies the boost."""
        multiplier = booster.title_multiplier(
            ["mcp", "install"], "docs/mcp-server.md", "Install the MCP server"
        )

        assert multiplier == 40.0

    def test_test_paths_are_penalized(self, booster):
        """Documents classified as tests get the penalty."""
        factors = booster.factors(scoring("tests/test_mcp.py", "test_mcp.py", path_class="test"), [])

        assert factors.path_penalty == 0.5
        assert factors.apply(1.0) == 0.5

    def test_factors_carry_stored_inputs(self, booster):
        """Importance and collection boost come from the stored scoring."""
        factors = booster.factors(
            scoring("docs/mcp-server.md", "MCP Server", importance=4.5, collection_boost=1.5),
            ["mcp"],
        )

        assert factors == BoostFactors(
            importance=4.5, collection_boost=1.5, path_penalty=1.0, title_boost=10.0
        )
        assert factors.apply(0.81) == pytest.approx(54.675)

    def test_title_boost_can_be_disabled(self, booster):
        """Lexical-only ranking skips the title boost."""
        factors = booster.factors(
            scoring("docs/mcp-server.md", "MCP Server"), ["mcp"], apply_title_boost=False
        )

        assert factors.title_boost == 1.0

    def test_defaults_come_from_settings(self):
        """Without arguments the configured boosts are used."""
        default = ScoreBooster()

        assert default.path_boost == 10.0
        assert default.title_boost == 4.0
        assert default.test_path_penalty == 0.5
