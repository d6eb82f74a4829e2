"""Connector interfaces and implementations."""

from .base import CommentSource, FetchError, ItemNotFoundError, TransientFetchError
from .github_gh import GithubGhCommentSource, GithubRateLimitError

__all__ = [
    "CommentSource",
    "FetchError",
    "ItemNotFoundError",
    "TransientFetchError",
    "GithubGhCommentSource",
    "GithubRateLimitError",
]
