"""GitHub comment source backed by the gh CLI."""

from __future__ import annotations

import json
import logging
import re
import subprocess
import threading
import time
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from threadsense.connectors.base import CommentSource, FetchError, ItemNotFoundError, TransientFetchError
from threadsense.models import (
    Comment,
    CommentEdit,
    CommentKind,
    FetchedItem,
    IdentityKey,
    Reaction,
    ReactionKind,
)

_RATE_LIMIT_RE = re.compile(r"(?:api|secondary) rate limit", re.IGNORECASE)
_NOT_FOUND_RE = re.compile(r"HTTP 404|Not Found|Could not resolve to a", re.IGNORECASE)
_REACTION_VALUES = {kind.value for kind in ReactionKind}
logger = logging.getLogger(__name__)

COMMENT_EDITS_QUERY = """
query($nodeId: ID!) {
  node(id: $nodeId) {
    ... on IssueComment {
      userContentEdits(first: 100) { nodes { createdAt updatedAt diff } }
    }
    ... on PullRequestReviewComment {
      userContentEdits(first: 100) { nodes { createdAt updatedAt diff } }
    }
  }
}
"""

CLOSING_ISSUES_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      closingIssuesReferences(first: 50) {
        nodes { number repository { nameWithOwner } }
      }
    }
  }
}
"""


class GithubUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: str
    type: str | None = None


class GithubIssue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    number: int
    body: str | None = None
    html_url: str | None = None
    pull_request: dict[str, Any] | None = None


class GithubComment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    node_id: str | None = None
    body: str | None = None
    html_url: str = ""
    user: GithubUser | None = None


class GithubReaction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    content: str
    user: GithubUser | None = None


class GithubContentEdit(BaseModel):
    model_config = ConfigDict(extra="ignore")

    createdAt: str | None = None
    updatedAt: str | None = None
    diff: str | None = None


class GithubRepositoryRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nameWithOwner: str


class GithubClosingIssue(BaseModel):
    model_config = ConfigDict(extra="ignore")

    number: int
    repository: GithubRepositoryRef


class GithubRateLimitError(TransientFetchError):
    def __init__(
        self,
        message: str,
        *,
        reset_at: datetime | None = None,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message)
        self.reset_at = reset_at
        self.retry_after_seconds = retry_after_seconds


class GithubGhClient:
    def __init__(
        self,
        gh_bin: str = "gh",
        *,
        timeout_seconds: float = 30.0,
        rate_limit_retries: int = 2,
        secondary_backoff_base_seconds: float = 5.0,
        rate_limit_max_sleep_seconds: float = 90.0,
    ) -> None:
        self.gh_bin = gh_bin
        self.timeout_seconds = timeout_seconds
        self.rate_limit_retries = max(0, rate_limit_retries)
        self.secondary_backoff_base_seconds = max(1.0, secondary_backoff_base_seconds)
        self.rate_limit_max_sleep_seconds = max(1.0, rate_limit_max_sleep_seconds)
        self._rate_limit_lock = threading.Lock()
        self._global_backoff_until = 0.0

    def get_paginated(self, endpoint: str, per_page: int = 100, max_items: int | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            payload = self.get_page(endpoint, page=page, per_page=per_page)
            if not payload:
                break
            items.extend(payload)
            if max_items is not None and len(items) >= max_items:
                return items[:max_items]
            if len(payload) < per_page:
                break
            page += 1
        return items

    def get_page(self, endpoint: str, *, page: int, per_page: int = 100) -> list[dict[str, Any]]:
        query = f"{endpoint}{'&' if '?' in endpoint else '?'}per_page={per_page}&page={page}"
        payload = self.api_json(query)
        if not isinstance(payload, list):
            return []
        return payload

    def api_json(self, endpoint: str) -> Any:
        output = self._run([self.gh_bin, "api", endpoint, "-X", "GET", "-H", "Accept: application/vnd.github+json"], endpoint)
        if not output:
            return None
        return json.loads(output)

    def api_text(self, endpoint: str, *, accept: str) -> str:
        return self._run([self.gh_bin, "api", endpoint, "-X", "GET", "-H", f"Accept: {accept}"], endpoint)

    def graphql(self, query: str, variables: dict[str, str | int]) -> dict[str, Any]:
        cmd = [self.gh_bin, "api", "graphql", "-f", f"query={query}"]
        for name, value in variables.items():
            # -F lets gh send integers as JSON numbers; -f always sends strings.
            cmd.extend(["-F" if isinstance(value, int) else "-f", f"{name}={value}"])
        output = self._run(cmd, "graphql")
        payload = json.loads(output) if output else {}
        if payload.get("errors"):
            raise FetchError(f"GraphQL query failed: {payload['errors']}")
        return payload.get("data") or {}

    def _run(self, cmd: list[str], endpoint: str) -> str:
        for attempt in range(self.rate_limit_retries + 1):
            self._wait_for_global_backoff()
            try:
                proc = subprocess.run(cmd, text=True, capture_output=True, check=False, timeout=self.timeout_seconds)
            except subprocess.TimeoutExpired as exc:
                raise TransientFetchError(f"gh api timed out after {self.timeout_seconds}s: {endpoint}") from exc
            except OSError as exc:
                raise FetchError(f"gh could not be executed ({self.gh_bin}): {exc}") from exc

            if proc.returncode == 0:
                return proc.stdout.strip()

            stderr = proc.stderr.strip()
            if _NOT_FOUND_RE.search(stderr):
                raise ItemNotFoundError(f"gh api not found: {endpoint}\n{stderr}")
            if not _RATE_LIMIT_RE.search(stderr):
                raise FetchError(f"gh api failed: {' '.join(cmd)}\n{stderr}")

            reset_at = self._get_rate_limit_reset_at()
            retry_after_seconds = self._compute_rate_limit_wait_seconds(reset_at=reset_at, attempt=attempt)
            self._set_global_backoff(retry_after_seconds)
            has_retry = attempt < self.rate_limit_retries

            logger.warning(
                "GitHub rate limit hit for %s (attempt %s/%s). backoff=%.1fs reset_at=%s",
                endpoint,
                attempt + 1,
                self.rate_limit_retries + 1,
                retry_after_seconds,
                reset_at.isoformat() if reset_at else "unknown",
            )

            if has_retry and retry_after_seconds <= self.rate_limit_max_sleep_seconds:
                continue

            raise GithubRateLimitError(
                f"gh api failed: {' '.join(cmd)}\n{stderr}",
                reset_at=reset_at,
                retry_after_seconds=retry_after_seconds,
            )
        raise FetchError(f"gh api failed unexpectedly after retries for endpoint={endpoint}")

    def _wait_for_global_backoff(self) -> None:
        while True:
            with self._rate_limit_lock:
                wait_seconds = self._global_backoff_until - time.monotonic()
            if wait_seconds <= 0:
                return
            time.sleep(wait_seconds)

    def _set_global_backoff(self, wait_seconds: float) -> None:
        target = time.monotonic() + max(0.0, wait_seconds)
        with self._rate_limit_lock:
            self._global_backoff_until = max(self._global_backoff_until, target)

    def _compute_rate_limit_wait_seconds(self, *, reset_at: datetime | None, attempt: int) -> float:
        if reset_at is not None:
            until_reset = (reset_at - datetime.now(UTC)).total_seconds()
            if until_reset > self.rate_limit_max_sleep_seconds:
                return until_reset
            return max(1.0, until_reset + 1.0)
        backoff = self.secondary_backoff_base_seconds * (2**attempt)
        return float(min(self.rate_limit_max_sleep_seconds, max(1.0, backoff)))

    def _get_rate_limit_reset_at(self) -> datetime | None:
        cmd = [self.gh_bin, "api", "rate_limit", "-X", "GET", "-H", "Accept: application/vnd.github+json"]
        try:
            proc = subprocess.run(cmd, text=True, capture_output=True, check=False, timeout=self.timeout_seconds)
        except (subprocess.TimeoutExpired, OSError):
            return None
        if proc.returncode != 0 or not proc.stdout.strip():
            return None
        try:
            data = json.loads(proc.stdout)
        except json.JSONDecodeError:
            return None

        reset_epochs: list[int] = []
        resources = data.get("resources")
        candidates = list(resources.values()) if isinstance(resources, dict) else []
        candidates.append(data.get("rate"))
        for resource in candidates:
            if not isinstance(resource, dict):
                continue
            remaining = resource.get("remaining")
            reset = resource.get("reset")
            if isinstance(remaining, int) and remaining <= 0 and isinstance(reset, int):
                reset_epochs.append(reset)
        if not reset_epochs:
            return None
        return datetime.fromtimestamp(max(reset_epochs), UTC)


class GithubGhCommentSource(CommentSource):
    def __init__(
        self,
        gh_bin: str = "gh",
        *,
        timeout_seconds: float = 30.0,
        rate_limit_retries: int = 2,
        secondary_backoff_base_seconds: float = 5.0,
        rate_limit_max_sleep_seconds: float = 90.0,
        include_review_comments: bool = True,
    ) -> None:
        self.client = GithubGhClient(
            gh_bin=gh_bin,
            timeout_seconds=timeout_seconds,
            rate_limit_retries=rate_limit_retries,
            secondary_backoff_base_seconds=secondary_backoff_base_seconds,
            rate_limit_max_sleep_seconds=rate_limit_max_sleep_seconds,
        )
        self.include_review_comments = include_review_comments

    def fetch_issue_or_pr(self, key: IdentityKey) -> FetchedItem:
        base = f"repos/{key.owner_repo}"
        try:
            issue = GithubIssue.model_validate(self.client.api_json(f"{base}/issues/{key.number}"))
            comments_payload = self.client.get_paginated(f"{base}/issues/{key.number}/comments")
            comments = [
                _normalize_comment(GithubComment.model_validate(item), key.owner_repo, CommentKind.ISSUE_COMMENT)
                for item in comments_payload
            ]
            # The issues API also serves pull requests; only those carry a pull_request link.
            is_pull_request = issue.pull_request is not None
            diff = None
            closing_keys: list[str] = []
            if is_pull_request:
                diff = self.client.api_text(f"{base}/pulls/{key.number}", accept="application/vnd.github.diff")
                closing_keys = self._fetch_closing_keys(key)
                if self.include_review_comments:
                    review_payload = self.client.get_paginated(f"{base}/pulls/{key.number}/comments")
                    comments.extend(
                        _normalize_comment(GithubComment.model_validate(item), key.owner_repo, CommentKind.REVIEW_COMMENT)
                        for item in review_payload
                    )
        except FetchError as exc:
            exc.key = key.canonical
            raise
        except (ValidationError, json.JSONDecodeError) as exc:
            raise FetchError(f"Malformed GitHub payload for {key.canonical}: {exc}", key=key.canonical) from exc

        # Comments without a body carry nothing to render or score.
        comments = [comment for comment in comments if comment.body.strip()]
        logger.debug("Fetched %s (pr=%s comments=%s)", key.canonical, is_pull_request, len(comments))
        return FetchedItem(
            key=key.canonical,
            body=issue.body or "",
            is_pull_request=is_pull_request,
            diff=diff or None,
            comments=comments,
            closing_keys=closing_keys,
        )

    def _fetch_closing_keys(self, key: IdentityKey) -> list[str]:
        """Issues GitHub links as closed by the pull request, including ones linked in the UI."""
        variables: dict[str, str | int] = {"owner": key.org, "name": key.repo, "number": key.number}
        try:
            data = self.client.graphql(CLOSING_ISSUES_QUERY, variables)
            pull = ((data.get("repository") or {}).get("pullRequest")) or {}
            nodes = (pull.get("closingIssuesReferences") or {}).get("nodes") or []
            issues = [GithubClosingIssue.model_validate(item) for item in nodes if isinstance(item, dict)]
        except FetchError as exc:
            logger.warning("Closing issues unavailable for %s: %s", key.canonical, exc)
            return []
        except (ValidationError, json.JSONDecodeError) as exc:
            logger.warning("Malformed closing issues payload for %s: %s", key.canonical, exc)
            return []
        return [f"{issue.repository.nameWithOwner.lower()}/{issue.number}" for issue in issues]

    def fetch_reactions(self, comment: Comment) -> list[Reaction]:
        scope = "pulls" if comment.kind == CommentKind.REVIEW_COMMENT else "issues"
        try:
            payload = self.client.get_paginated(f"repos/{comment.owner_repo}/{scope}/comments/{comment.id}/reactions")
            parsed = [GithubReaction.model_validate(item) for item in payload]
        except (ValidationError, json.JSONDecodeError) as exc:
            raise FetchError(f"Malformed reactions payload for comment {comment.id}: {exc}") from exc
        return [
            Reaction(content=ReactionKind(reaction.content), user=reaction.user.login if reaction.user else None)
            for reaction in parsed
            if reaction.content in _REACTION_VALUES
        ]

    def fetch_edit_history(self, comment: Comment) -> list[CommentEdit]:
        if not comment.node_id:
            return []
        try:
            data = self.client.graphql(COMMENT_EDITS_QUERY, {"nodeId": comment.node_id})
            nodes = ((data.get("node") or {}).get("userContentEdits") or {}).get("nodes") or []
            edits = [GithubContentEdit.model_validate(item) for item in nodes if isinstance(item, dict)]
        except (ValidationError, json.JSONDecodeError) as exc:
            raise FetchError(f"Malformed edit history payload for comment {comment.id}: {exc}") from exc
        return [CommentEdit(body=edit.diff or "", created_at=edit.createdAt, updated_at=edit.updatedAt) for edit in edits]


def _normalize_comment(comment: GithubComment, owner_repo: str, kind: CommentKind) -> Comment:
    user = comment.user
    login = user.login if user else "ghost"
    is_bot = bool(user) and ((user.type or "").lower() == "bot" or login.endswith("[bot]"))
    return Comment(
        id=str(comment.id),
        node_id=comment.node_id,
        author=login,
        author_is_bot=is_bot,
        body=comment.body or "",
        owner_repo=owner_repo,
        source_url=comment.html_url,
        kind=kind,
    )
