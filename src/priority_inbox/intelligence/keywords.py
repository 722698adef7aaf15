"""Keyword extraction shared by interaction tracking and learning."""

from __future__ import annotations

import re
from collections import Counter

_STOPWORDS = frozenset(
    """
    the a an and or but in on at to for of with by from up about into through
    during is are was were be been being have has had do does did will would
    could should may might can this that these those i you he she it we they
    what which who when where why how
    """.split()
)
_NON_WORD = re.compile(r"[^\w\s]")


def extract_keywords(text: str, *, limit: int = 10, min_length: int = 4) -> list[str]:
    """Return the ``limit`` most frequent salient words in ``text``.

    Words are lower-cased, punctuation is stripped, stopwords and words
    shorter than ``min_length`` are dropped. Ties keep first-seen order.
    """
    words = _NON_WORD.sub(" ", text.lower()).split()
    counts = Counter(
        word for word in words if len(word) >= min_length and word not in _STOPWORDS
    )
    return [word for word, _count in counts.most_common(limit)]


__all__ = ["extract_keywords"]
