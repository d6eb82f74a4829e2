"""Cross-reference extraction from issue, pull request and comment text."""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache

from pydantic import BaseModel, ConfigDict

from threadsense.keys import InvalidReferenceError, parse_key
from threadsense.models import ReferenceType

_CLOSING_PREFIX_RE = re.compile(r"\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\s*:?\s*$", re.IGNORECASE)
_DEPENDS_PREFIX_RE = re.compile(r"\b(?:depends\s+on|blocked\s+by|requires)\s*:?\s*$", re.IGNORECASE)
_HASH_MENTION_RE = re.compile(r"(?<![\w/&#])#(\d+)\b")
_PREFIX_WINDOW = 24

REFERENCE_PRIORITY: dict[ReferenceType, int] = {
    ReferenceType.ROOT: -1,
    ReferenceType.CLOSING: 0,
    ReferenceType.DEPENDS: 1,
    ReferenceType.DIRECT: 2,
}


class LinkedReference(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    start: int
    end: int
    reference_type: ReferenceType = ReferenceType.DIRECT

    @property
    def priority(self) -> int:
        return REFERENCE_PRIORITY[self.reference_type]


@lru_cache(maxsize=16)
def _url_pattern(hosts: tuple[str, ...]) -> re.Pattern[str]:
    host_alternatives = "|".join(re.escape(host) for host in hosts)
    return re.compile(
        rf"https?://(?:www\.)?(?:{host_alternatives})/[^\s/]+/[^\s/]+/(?:pull|pulls|issues|issue)/\d+",
        re.IGNORECASE,
    )


def classify_reference(text: str, start: int) -> ReferenceType:
    prefix = text[max(0, start - _PREFIX_WINDOW) : start]
    if _CLOSING_PREFIX_RE.search(prefix):
        return ReferenceType.CLOSING
    if _DEPENDS_PREFIX_RE.search(prefix):
        return ReferenceType.DEPENDS
    return ReferenceType.DIRECT


def extract_references(
    text: str | None,
    *,
    ambient_repo: str,
    hosts: Iterable[str] = ("github.com",),
) -> list[LinkedReference]:
    """Scan text for tracker URLs and ``#N`` mentions.

    Hash mentions resolve against ``ambient_repo`` only. Results keep the
    first span of each key and the strongest reference type seen for it.
    """
    if not text:
        return []

    found: list[LinkedReference] = []
    url_spans: list[tuple[int, int]] = []

    for match in _url_pattern(tuple(sorted(set(hosts)))).finditer(text):
        url_spans.append(match.span())
        try:
            key = parse_key(match.group(0))
        except InvalidReferenceError:
            continue
        found.append(
            LinkedReference(
                key=key.canonical,
                start=match.start(),
                end=match.end(),
                reference_type=classify_reference(text, match.start()),
            )
        )

    for match in _HASH_MENTION_RE.finditer(text):
        if any(start <= match.start() < end for start, end in url_spans):
            continue
        key = parse_key(f"#{match.group(1)}", ambient_repo=ambient_repo)
        found.append(
            LinkedReference(
                key=key.canonical,
                start=match.start(),
                end=match.end(),
                reference_type=classify_reference(text, match.start()),
            )
        )

    found.sort(key=lambda ref: ref.start)
    deduped: dict[str, LinkedReference] = {}
    for ref in found:
        existing = deduped.get(ref.key)
        if existing is None:
            deduped[ref.key] = ref
        elif ref.priority < existing.priority:
            deduped[ref.key] = existing.model_copy(update={"reference_type": ref.reference_type})
    return list(deduped.values())
