"""Per-document score multipliers."""

from dataclasses import dataclass

from quarry.config import ConfigError, load_settings
from quarry.constants.search import PATH_BOOST, TEST_PATH_PENALTY, TITLE_BOOST
from quarry.store.base import DocumentScoring


@dataclass(frozen=True)
class BoostFactors:
    """Multipliers applied to a base score."""

    importance: float = 1.0
    collection_boost: float = 1.0
    path_penalty: float = 1.0
    title_boost: float = 1.0

    @property
    def total(self) -> float:
        return self.importance * self.collection_boost * self.path_penalty * self.title_boost

    def apply(self, base: float) -> float:
        """final = base x importance x collection_boost x path_penalty x title_boost"""
        return base * self.total


class ScoreBooster:
    """Computes boost factors for documents matched by a query.

    A query term found in the document path (filename included) multiplies
    the title boost by ``path_boost``; otherwise a term found in the title
    multiplies it by ``title_boost``. Boosts compound across terms.
    Documents classified as tests get ``test_path_penalty``.
    """

    def __init__(
        self,
        path_boost: float | None = None,
        title_boost: float | None = None,
        test_path_penalty: float | None = None,
    ) -> None:
        try:
            search = load_settings().search
            defaults = (search.path_boost, search.title_boost, search.test_path_penalty)
        except (ValueError, OSError, ConfigError):
            defaults = (PATH_BOOST, TITLE_BOOST, TEST_PATH_PENALTY)

        self.path_boost = path_boost if path_boost is not None else defaults[0]
        self.title_boost = title_boost if title_boost is not None else defaults[1]
        self.test_path_penalty = (
            test_path_penalty if test_path_penalty is not None else defaults[2]
        )

    def title_multiplier(self, terms: list[str], path: str, title: str) -> float:
        """Compound path/title boost for lowercased query terms."""
        path_lower = path.lower()
        title_lower = title.lower()
        boost = 1.0
        for term in terms:
            if term in path_lower:
                boost *= self.path_boost
            elif term in title_lower:
                boost *= self.title_boost
        return boost

    def path_penalty(self, path_class: str) -> float:
        return self.test_path_penalty if path_class == "test" else 1.0

    def factors(
        self,
        scoring: DocumentScoring,
        terms: list[str],
        apply_title_boost: bool = True,
    ) -> BoostFactors:
        """Boost factors for one document.

        Args:
            scoring: Stored scoring inputs of the document.
            terms: Boost terms extracted from the query.
            apply_title_boost: False for lexical-only ranking.
        """
        return BoostFactors(
            importance=scoring.importance,
            collection_boost=scoring.collection_boost,
            path_penalty=self.path_penalty(scoring.path_class),
            title_boost=(
                self.title_multiplier(terms, scoring.path, scoring.title)
                if apply_title_boost
                else 1.0
            ),
        )
