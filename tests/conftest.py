from __future__ import annotations

import threading

import pytest

from threadsense.connectors.base import FetchError
from threadsense.models import Comment, CommentEdit, FetchedItem, IdentityKey, PhraseWeight, Reaction, ReactionKind


def make_comment(comment_id: str, body: str, *, owner_repo: str = "acme/repo", author: str = "alice", bot: bool = False) -> Comment:
    return Comment(
        id=comment_id,
        node_id=f"IC_{comment_id}",
        author=author,
        author_is_bot=bot,
        body=body,
        owner_repo=owner_repo,
        source_url=f"https://github.com/{owner_repo}/issues/1#issuecomment-{comment_id}",
    )


def make_item(key: str, body: str = "", comments: list[Comment] | None = None, *, diff: str | None = None) -> FetchedItem:
    return FetchedItem(
        key=key,
        body=body,
        is_pull_request=diff is not None,
        diff=diff,
        comments=comments or [],
    )


class FakeCommentSource:
    """In-memory tracker keyed by canonical key; values may be exceptions to raise."""

    def __init__(
        self,
        items: dict[str, FetchedItem | FetchError] | None = None,
        *,
        reactions: dict[str, list[Reaction] | FetchError] | None = None,
        edits: dict[str, list[CommentEdit] | FetchError] | None = None,
    ) -> None:
        self.items = dict(items or {})
        self.reactions = dict(reactions or {})
        self.edits = dict(edits or {})
        self.fetch_counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def fetch_issue_or_pr(self, key: IdentityKey) -> FetchedItem:
        with self._lock:
            self.fetch_counts[key.canonical] = self.fetch_counts.get(key.canonical, 0) + 1
        value = self.items.get(key.canonical)
        if value is None:
            raise FetchError(f"no fixture for {key.canonical}", key=key.canonical)
        if isinstance(value, FetchError):
            raise value
        return value

    def fetch_reactions(self, comment: Comment) -> list[Reaction]:
        value = self.reactions.get(comment.id, [])
        if isinstance(value, FetchError):
            raise value
        return value

    def fetch_edit_history(self, comment: Comment) -> list[CommentEdit]:
        value = self.edits.get(comment.id, [])
        if isinstance(value, FetchError):
            raise value
        return value


def thumbs_up(count: int) -> list[Reaction]:
    return [Reaction(content=ReactionKind.THUMBS_UP, user=f"user{idx}") for idx in range(count)]


class MemoryWeightStore:
    def __init__(self, initial: dict[str, float] | None = None) -> None:
        self.weights = dict(initial or {})
        self.origins: dict[str, str | None] = {}

    def get_weight(self, phrase: str) -> float:
        return self.weights.get(phrase, 0.0)

    def set_weight(self, phrase: str, weight: float, comment_node_id: str | None) -> None:
        self.weights[phrase] = weight
        self.origins[phrase] = comment_node_id

    def get_all_weights(self) -> list[PhraseWeight]:
        return [
            PhraseWeight(phrase=phrase, weight=weight, comment_node_id=self.origins.get(phrase))
            for phrase, weight in sorted(self.weights.items())
        ]


@pytest.fixture
def memory_store() -> MemoryWeightStore:
    return MemoryWeightStore()
