"""Token counting used for context budget accounting."""

from __future__ import annotations

import re
from typing import Protocol

_TOKEN_SPLIT_RE = re.compile(r"[A-Za-z0-9_]+|[^\s]")


class Tokenizer(Protocol):
    def count_tokens(self, text: str) -> int: ...


class ApproxTokenizer:
    """Deterministic word/punctuation approximation of model token counts.

    Long words are charged one token per ``chars_per_token`` characters, which
    keeps the estimate monotonic in text length.
    """

    def __init__(self, chars_per_token: int = 4) -> None:
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self._chars_per_token = chars_per_token

    def count_tokens(self, text: str) -> int:
        total = 0
        for token in _TOKEN_SPLIT_RE.findall(text or ""):
            total += max(1, -(-len(token) // self._chars_per_token))
        return total
