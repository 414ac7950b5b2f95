"""Query tokenization for FTS5 matching, boosting and strategy heuristics."""

import re

from quarry.constants.search import FTS5_SPECIAL_CHARS, MIN_TERM_LENGTH, STOP_WORDS

_FTS5_SPECIAL = re.compile("[" + re.escape(FTS5_SPECIAL_CHARS) + "]")
# Whitespace, sentence punctuation and quoting
_BOOST_SPLIT = re.compile(r"[\s.,;:!?\"'()\[\]{}]+")


def tokenize(query: str) -> list[str]:
    """Split a query on whitespace, keeping tokens as typed."""
    return query.split()


def fts_terms(query: str) -> list[str]:
    """Terms for an FTS5 match expression.

    FTS5 operator characters are replaced by spaces, terms are lowercased
    and de-duplicated, and stop words are dropped unless the query has
    nothing else.

    Args:
        query: Raw query text.

    Returns:
        Terms in query order. Empty when the query has no word characters.
    """
    cleaned = _FTS5_SPECIAL.sub(" ", query)
    terms = [term for term in dict.fromkeys(t.lower() for t in cleaned.split()) if _has_word(term)]
    content_terms = [term for term in terms if term not in STOP_WORDS]
    return content_terms or terms


def boost_terms(query: str, min_length: int = MIN_TERM_LENGTH) -> list[str]:
    """Terms matched against document paths and titles for boosting.

    Splits on whitespace and sentence punctuation, lowercases and drops
    terms shorter than ``min_length``. Two-letter acronyms survive the
    default length. Each distinct term counts once.
    """
    terms = (term.lower() for term in _BOOST_SPLIT.split(query))
    return list(dict.fromkeys(term for term in terms if len(term) >= min_length))


def _has_word(term: str) -> bool:
    return any(ch.isalnum() for ch in term)
