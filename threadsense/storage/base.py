"""Storage backend interfaces for phrase weight persistence."""

from __future__ import annotations

from typing import Protocol

from threadsense.models import PhraseWeight


class WeightStore(Protocol):
    def get_weight(self, phrase: str) -> float: ...

    def set_weight(self, phrase: str, weight: float, comment_node_id: str | None) -> None: ...

    def get_all_weights(self) -> list[PhraseWeight]: ...
