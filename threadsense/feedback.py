"""Phrase weight updates driven by comment edits."""

from __future__ import annotations

import logging
import threading

from threadsense.models import ChangeSpan, FeedbackResult, PhraseAdjustment, PhraseType, SpanKind
from threadsense.storage.base import WeightStore
from threadsense.trigrams import TrigramScorer, normalize_text, trigrams_of

logger = logging.getLogger(__name__)


def _common_prefix(old: list[str], new: list[str]) -> int:
    limit = min(len(old), len(new))
    idx = 0
    while idx < limit and old[idx] == new[idx]:
        idx += 1
    return idx


def _common_suffix(old: list[str], new: list[str], prefix: int) -> int:
    limit = min(len(old), len(new)) - prefix
    idx = 0
    while idx < limit and old[-1 - idx] == new[-1 - idx]:
        idx += 1
    return idx


def _context_slice(words: list[str], start: int, end: int, context_words: int) -> str:
    return " ".join(words[max(0, start - context_words) : min(len(words), end + context_words)])


def find_change_spans(old: str, new: str, context_words: int = 2) -> list[ChangeSpan]:
    """Single contiguous changed region between two bodies, word-aligned.

    Produces at most one deletion span and one addition span. Each span is
    widened by ``context_words`` unchanged words on either side.
    """
    if old == new:
        return []
    old_words = (old or "").split()
    new_words = (new or "").split()
    prefix = _common_prefix(old_words, new_words)
    suffix = _common_suffix(old_words, new_words, prefix)

    spans: list[ChangeSpan] = []
    old_end = len(old_words) - suffix
    new_end = len(new_words) - suffix
    if old_end > prefix:
        spans.append(ChangeSpan(text=_context_slice(old_words, prefix, old_end, context_words), kind=SpanKind.DELETION))
    if new_end > prefix:
        spans.append(ChangeSpan(text=_context_slice(new_words, prefix, new_end, context_words), kind=SpanKind.ADDITION))
    return spans


def _short_phrase(normalized: str) -> list[tuple[str, PhraseType]]:
    words = normalized.split()
    if not words:
        return []
    if len(words) == 1:
        return [(words[0], PhraseType.UNIGRAM)]
    return [(" ".join(words[:2]), PhraseType.BIGRAM)]


def phrases_for_span(text: str, short_span_chars: int = 4) -> list[tuple[str, PhraseType]]:
    normalized = " ".join(normalize_text(text).split())
    if len(normalized) < short_span_chars:
        return _short_phrase(normalized)
    trigrams = trigrams_of(normalized)
    if not trigrams:
        return _short_phrase(normalized)
    return [(trigram, PhraseType.TRIGRAM) for trigram in sorted(trigrams)]


class FeedbackProcessor:
    def __init__(
        self,
        store: WeightStore,
        scorer: TrigramScorer | None = None,
        *,
        multiplier: float = 1.0,
        context_words: int = 2,
        short_span_chars: int = 4,
    ) -> None:
        self.store = store
        self.scorer = scorer
        self.multiplier = multiplier
        self.context_words = context_words
        self.short_span_chars = short_span_chars
        self._lock = threading.Lock()

    def process_edit(self, old_body: str, new_body: str, *, key: str, comment_id: str) -> FeedbackResult:
        spans = find_change_spans(old_body, new_body, context_words=self.context_words)
        result = FeedbackResult(key=key, comment_id=comment_id, spans=spans)
        if not spans:
            logger.debug("Edit to comment %s on %s left the body unchanged", comment_id, key)
            return result

        with self._lock:
            try:
                for span in spans:
                    delta = self.multiplier if span.kind == SpanKind.ADDITION else -self.multiplier
                    for phrase, phrase_type in phrases_for_span(span.text, self.short_span_chars):
                        before = self.store.get_weight(phrase)
                        after = before + delta
                        self.store.set_weight(phrase, after, comment_id)
                        result.adjustments.append(
                            PhraseAdjustment(phrase=phrase, phrase_type=phrase_type, before=before, after=after)
                        )
            finally:
                # A partial write still changes the persisted table.
                if self.scorer is not None:
                    self.scorer.invalidate()

        logger.info(
            "Applied feedback for comment %s on %s: spans=%s adjustments=%s",
            comment_id,
            key,
            len(spans),
            len(result.adjustments),
        )
        return result
