"""Trigram relevance scoring against a weighted comment corpus."""

from __future__ import annotations

import logging
import re
import threading
from collections import defaultdict
from collections.abc import Iterable

from threadsense.models import PhraseWeight, WeightedComment
from threadsense.storage.base import WeightStore

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def normalize_text(text: str) -> str:
    return _NON_ALNUM_RE.sub("", (text or "").lower())


def words_of(text: str) -> list[str]:
    return normalize_text(text).split()


def trigrams_of(text: str) -> set[str]:
    """Word-level 3-grams plus character 3-grams of every word of length >= 3."""
    words = words_of(text)
    trigrams: set[str] = set()
    for idx in range(len(words) - 2):
        trigrams.add(" ".join(words[idx : idx + 3]))
    for word in words:
        for idx in range(len(word) - 2):
            trigrams.add(word[idx : idx + 3])
    return trigrams


def weight_table(comments: Iterable[WeightedComment]) -> dict[str, float]:
    table: dict[str, float] = defaultdict(float)
    for comment in comments:
        if not comment.body:
            continue
        trigrams = trigrams_of(comment.body)
        if not trigrams:
            continue
        share = (comment.weight or 0.0) / len(trigrams)
        for trigram in trigrams:
            table[trigram] += share
    return dict(table)


def score_text(text: str, comments: Iterable[WeightedComment]) -> float:
    table = weight_table(comments)
    if not table:
        return 0.0
    return sum(table.get(trigram, 0.0) for trigram in trigrams_of(text))


class TrigramScorer:
    """Scores text against a corpus through a lazily built trigram cache.

    The cache has no TTL and no change subscription. Any caller that changes
    comment weights, bodies or persisted phrase weights must call
    ``invalidate()`` (or ``set_corpus()``) afterwards.
    """

    def __init__(
        self,
        comments: Iterable[WeightedComment] | None = None,
        store: WeightStore | None = None,
    ) -> None:
        self._comments: list[WeightedComment] = list(comments or [])
        self._store = store
        self._cache: dict[str, float] | None = None
        self._lock = threading.Lock()
        self.builds = 0

    @property
    def comments(self) -> list[WeightedComment]:
        return list(self._comments)

    def set_corpus(self, comments: Iterable[WeightedComment]) -> None:
        with self._lock:
            self._comments = list(comments)
            self._cache = None

    def invalidate(self) -> None:
        with self._lock:
            self._cache = None
        logger.debug("Trigram weight cache invalidated")

    def _table(self) -> dict[str, float]:
        with self._lock:
            if self._cache is None:
                table = weight_table(self._comments)
                if self._store is not None:
                    for row in self._store.get_all_weights():
                        table[row.phrase] = table.get(row.phrase, 0.0) + row.weight
                self._cache = table
                self.builds += 1
                logger.debug("Built trigram weight table: %s entries from %s comments", len(table), len(self._comments))
            return self._cache

    def weight_of(self, trigram: str) -> float:
        return self._table().get(trigram, 0.0)

    def score_text(self, text: str) -> float:
        table = self._table()
        return sum(table.get(trigram, 0.0) for trigram in trigrams_of(text))


def find_relevant_comments(
    question: str,
    comments: Iterable[WeightedComment],
    threshold: float,
    max_results: int = 5,
) -> list[WeightedComment]:
    """Rank comments by community weight plus trigram overlap with the question."""
    scored = [
        (comment.weight + score_text(question, [comment]), idx, comment)
        for idx, comment in enumerate(comments)
        if comment.body
    ]
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [comment for score, _, comment in scored if score >= threshold][:max_results]


def score_against_store(text: str, store: WeightStore) -> float:
    """Sum of persisted phrase weights over the trigrams of ``text``."""
    return sum(store.get_weight(trigram) for trigram in sorted(trigrams_of(text)))


def _nature(weight: float) -> str:
    if weight > 0:
        return "POSITIVE"
    if weight < 0:
        return "NEGATIVE"
    return "NEUTRAL"


def format_weight_table(rows: Iterable[PhraseWeight]) -> str:
    table = [["Phrase Word Table"], ["word", "score", "nature"], ["-" * 40]]
    for row in rows:
        table.append([row.phrase, f"{row.weight:g}", _nature(row.weight)])
    return "\n".join(" | ".join(cells) for cells in table)
