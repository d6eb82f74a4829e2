"""Connector interfaces for tracker sources."""

from __future__ import annotations

from typing import Protocol

from threadsense.models import Comment, CommentEdit, FetchedItem, IdentityKey, Reaction


class FetchError(RuntimeError):
    """A tracker read failed for one item or signal."""

    def __init__(self, message: str, *, key: str | None = None) -> None:
        super().__init__(message)
        self.key = key


class ItemNotFoundError(FetchError):
    """The tracker reports the item does not exist or is not visible."""


class TransientFetchError(FetchError):
    """Timeouts, rate limits and other failures worth retrying later."""


class CommentSource(Protocol):
    def fetch_issue_or_pr(self, key: IdentityKey) -> FetchedItem: ...

    def fetch_reactions(self, comment: Comment) -> list[Reaction]: ...

    def fetch_edit_history(self, comment: Comment) -> list[CommentEdit]: ...
