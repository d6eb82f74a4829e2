from datetime import UTC, datetime
from types import SimpleNamespace

import pytest

from threadsense.config import CrawlConfig
from threadsense.connectors.base import FetchError, ItemNotFoundError, TransientFetchError
from threadsense.connectors.github_gh import GithubGhClient, GithubGhCommentSource, GithubRateLimitError
from threadsense.crawler import GraphCrawler
from threadsense.models import Comment, CommentKind, IdentityKey, NodeStatus, ReactionKind


class FakeGhClient:
    def __init__(self) -> None:
        self.graphql_calls: list[dict[str, str | int]] = []

    def api_json(self, endpoint: str):
        if endpoint == "repos/acme/repo/issues/5":
            return {
                "number": 5,
                "body": "Fixes #2",
                "html_url": "https://github.com/acme/repo/pull/5",
                "pull_request": {"url": "https://api.github.com/repos/acme/repo/pulls/5"},
            }
        if endpoint == "repos/acme/repo/issues/2":
            return {"number": 2, "body": None, "html_url": "https://github.com/acme/repo/issues/2"}
        if endpoint == "repos/acme/repo/issues/3":
            return {"number": "not-a-number"}
        raise ItemNotFoundError(f"gh api not found: {endpoint}")

    def api_text(self, endpoint: str, *, accept: str) -> str:
        assert endpoint == "repos/acme/repo/pulls/5"
        assert accept == "application/vnd.github.diff"
        return "diff --git a/x b/x\n+new"

    def get_paginated(self, endpoint: str, per_page: int = 100, max_items: int | None = None):
        if endpoint == "repos/acme/repo/issues/5/comments":
            return [
                {
                    "id": 101,
                    "node_id": "IC_101",
                    "body": "Looks good",
                    "html_url": "https://github.com/acme/repo/pull/5#issuecomment-101",
                    "user": {"login": "alice", "type": "User"},
                },
                {
                    "id": 103,
                    "node_id": "IC_103",
                    "body": "   ",
                    "html_url": "https://github.com/acme/repo/pull/5#issuecomment-103",
                    "user": {"login": "alice", "type": "User"},
                },
                {
                    "id": 102,
                    "node_id": "IC_102",
                    "body": "Coverage report",
                    "html_url": "https://github.com/acme/repo/pull/5#issuecomment-102",
                    "user": {"login": "codecov[bot]", "type": "Bot"},
                },
            ]
        if endpoint == "repos/acme/repo/pulls/5/comments":
            return [
                {
                    "id": 201,
                    "node_id": "PRRC_201",
                    "body": "nit: rename",
                    "html_url": "https://github.com/acme/repo/pull/5#discussion_r201",
                    "user": {"login": "bob", "type": "User"},
                }
            ]
        if endpoint == "repos/acme/repo/issues/2/comments":
            return []
        if endpoint == "repos/acme/repo/issues/comments/101/reactions":
            return [
                {"content": "+1", "user": {"login": "carol"}},
                {"content": "heart", "user": {"login": "dave"}},
                {"content": "unknown-new-reaction", "user": {"login": "erin"}},
            ]
        if endpoint == "repos/acme/repo/pulls/comments/201/reactions":
            return [{"content": "-1", "user": {"login": "frank"}}]
        return []

    def graphql(self, query: str, variables: dict[str, str | int]):
        self.graphql_calls.append(variables)
        if "nodeId" not in variables:
            return {
                "repository": {
                    "pullRequest": {
                        "closingIssuesReferences": {
                            "nodes": [{"number": 2, "repository": {"nameWithOwner": "Acme/Repo"}}]
                        }
                    }
                }
            }
        return {
            "node": {
                "userContentEdits": {
                    "nodes": [
                        {"createdAt": "2026-01-02T00:00:00Z", "updatedAt": "2026-01-02T00:00:00Z", "diff": "v2"},
                        {"createdAt": "2026-01-01T00:00:00Z", "updatedAt": "2026-01-01T00:00:00Z", "diff": "v1"},
                    ]
                }
            }
        }


def _source() -> GithubGhCommentSource:
    source = GithubGhCommentSource()
    source.client = FakeGhClient()  # type: ignore[assignment]
    return source


def test_pull_request_fetch_includes_diff_and_review_comments() -> None:
    item = _source().fetch_issue_or_pr(IdentityKey(org="acme", repo="repo", number=5))

    assert item.key == "acme/repo/5"
    assert item.is_pull_request is True
    assert item.diff == "diff --git a/x b/x\n+new"
    assert [comment.id for comment in item.comments] == ["101", "102", "201"]
    assert item.comments[1].author_is_bot is True
    assert item.comments[2].kind == CommentKind.REVIEW_COMMENT
    assert item.comments[0].owner_repo == "acme/repo"
    assert item.closing_keys == ["acme/repo/2"]


def test_pull_request_closing_links_use_typed_graphql_variables() -> None:
    source = _source()
    source.fetch_issue_or_pr(IdentityKey(org="acme", repo="repo", number=5))
    assert {"owner": "acme", "name": "repo", "number": 5} in source.client.graphql_calls


def test_closing_link_failure_leaves_pull_request_intact() -> None:
    class NoClosingLinks(FakeGhClient):
        def graphql(self, query: str, variables: dict[str, str | int]):
            raise FetchError("GraphQL query failed: forbidden")

    source = GithubGhCommentSource()
    source.client = NoClosingLinks()  # type: ignore[assignment]

    item = source.fetch_issue_or_pr(IdentityKey(org="acme", repo="repo", number=5))

    assert item.is_pull_request is True
    assert item.closing_keys == []
    assert item.diff is not None


def test_issue_has_no_closing_lookup() -> None:
    source = _source()
    item = source.fetch_issue_or_pr(IdentityKey(org="acme", repo="repo", number=2))
    assert item.closing_keys == []
    assert source.client.graphql_calls == []


def test_issue_fetch_has_no_diff_and_empty_body() -> None:
    item = _source().fetch_issue_or_pr(IdentityKey(org="acme", repo="repo", number=2))
    assert item.is_pull_request is False
    assert item.diff is None
    assert item.body == ""
    assert item.comments == []


def test_missing_item_raises_not_found_with_key() -> None:
    with pytest.raises(ItemNotFoundError) as exc:
        _source().fetch_issue_or_pr(IdentityKey(org="acme", repo="repo", number=404))
    assert exc.value.key == "acme/repo/404"


def test_malformed_payload_becomes_fetch_error() -> None:
    with pytest.raises(FetchError) as exc:
        _source().fetch_issue_or_pr(IdentityKey(org="acme", repo="repo", number=3))
    assert exc.value.key == "acme/repo/3"


def test_reactions_use_comment_scope_and_skip_unknown_content() -> None:
    source = _source()
    issue_comment = Comment(id="101", author="alice", owner_repo="acme/repo", source_url="u")
    review_comment = Comment(id="201", author="bob", owner_repo="acme/repo", source_url="u", kind=CommentKind.REVIEW_COMMENT)

    assert [r.content for r in source.fetch_reactions(issue_comment)] == [ReactionKind.THUMBS_UP, ReactionKind.HEART]
    assert [r.content for r in source.fetch_reactions(review_comment)] == [ReactionKind.THUMBS_DOWN]


def test_edit_history_uses_node_id() -> None:
    source = _source()
    with_node = Comment(id="101", node_id="IC_101", author="alice", owner_repo="acme/repo", source_url="u")
    without_node = Comment(id="102", author="alice", owner_repo="acme/repo", source_url="u")

    edits = source.fetch_edit_history(with_node)

    assert [edit.body for edit in edits] == ["v2", "v1"]
    assert source.client.graphql_calls == [{"nodeId": "IC_101"}]
    assert source.fetch_edit_history(without_node) == []


def test_github_client_maps_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fake_run(cmd, text=True, capture_output=True, check=False, timeout=None):  # noqa: ANN001,ARG001
        return SimpleNamespace(returncode=1, stdout="", stderr="gh: Not Found (HTTP 404)")

    monkeypatch.setattr("subprocess.run", _fake_run)
    with pytest.raises(ItemNotFoundError):
        GithubGhClient().api_json("repos/acme/repo/issues/999")


def test_github_client_maps_other_failures(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fake_run(cmd, text=True, capture_output=True, check=False, timeout=None):  # noqa: ANN001,ARG001
        return SimpleNamespace(returncode=1, stdout="", stderr="gh: server exploded (HTTP 500)")

    monkeypatch.setattr("subprocess.run", _fake_run)
    with pytest.raises(FetchError) as exc:
        GithubGhClient().api_json("repos/acme/repo/issues/1")
    assert not isinstance(exc.value, ItemNotFoundError)


def test_github_client_timeout_is_transient(monkeypatch: pytest.MonkeyPatch) -> None:
    import subprocess

    def _fake_run(cmd, text=True, capture_output=True, check=False, timeout=None):  # noqa: ANN001,ARG001
        raise subprocess.TimeoutExpired(cmd, timeout)

    monkeypatch.setattr("subprocess.run", _fake_run)
    with pytest.raises(TransientFetchError):
        GithubGhClient(timeout_seconds=0.1).api_json("repos/acme/repo/issues/1")


def test_github_client_raises_rate_limit_error_with_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"api": 0, "rate_limit": 0}

    def _fake_run(cmd, text=True, capture_output=True, check=False, timeout=None):  # noqa: ANN001,ARG001
        endpoint = cmd[2]
        if endpoint.endswith("/issues/1"):
            calls["api"] += 1
            return SimpleNamespace(
                returncode=1,
                stdout="",
                stderr="gh: API rate limit exceeded for user ID 1 (HTTP 403)",
            )
        calls["rate_limit"] += 1
        return SimpleNamespace(
            returncode=0,
            stdout='{"resources":{"core":{"remaining":0,"reset":1700000000}}}',
            stderr="",
        )

    monkeypatch.setattr("subprocess.run", _fake_run)
    client = GithubGhClient(rate_limit_retries=0, rate_limit_max_sleep_seconds=10.0)
    with pytest.raises(GithubRateLimitError) as exc:
        client.api_json("repos/acme/repo/issues/1")
    assert isinstance(exc.value, TransientFetchError)
    assert exc.value.reset_at == datetime.fromtimestamp(1700000000, UTC)
    assert calls == {"api": 1, "rate_limit": 1}


def test_github_client_retries_and_succeeds_after_secondary_rate_limit(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = {"api": 0, "rate_limit": 0}

    def _fake_run(cmd, text=True, capture_output=True, check=False, timeout=None):  # noqa: ANN001,ARG001
        endpoint = cmd[2]
        if endpoint.endswith("/issues/1"):
            calls["api"] += 1
            if calls["api"] == 1:
                return SimpleNamespace(returncode=1, stdout="", stderr="gh: secondary rate limit. please wait")
            return SimpleNamespace(returncode=0, stdout='{"number":1}', stderr="")
        calls["rate_limit"] += 1
        return SimpleNamespace(returncode=1, stdout="", stderr="gh: unavailable")

    monkeypatch.setattr("subprocess.run", _fake_run)
    monkeypatch.setattr("time.sleep", lambda _seconds: None)
    client = GithubGhClient(rate_limit_retries=2, secondary_backoff_base_seconds=1.0)
    assert client.api_json("repos/acme/repo/issues/1") == {"number": 1}
    assert calls == {"api": 2, "rate_limit": 1}


def test_graphql_errors_raise_fetch_error(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: list[list[str]] = []

    def _fake_run(cmd, text=True, capture_output=True, check=False, timeout=None):  # noqa: ANN001,ARG001
        captured.append(cmd)
        return SimpleNamespace(returncode=0, stdout='{"errors":[{"message":"bad node"}]}', stderr="")

    monkeypatch.setattr("subprocess.run", _fake_run)
    with pytest.raises(FetchError):
        GithubGhClient().graphql("query { viewer { login } }", {"nodeId": "X"})
    assert captured[0][:3] == ["gh", "api", "graphql"]
    assert "nodeId=X" in captured[0]


def test_malformed_reaction_rows_become_fetch_error() -> None:
    class BrokenReactions(FakeGhClient):
        def get_paginated(self, endpoint: str, per_page: int = 100, max_items: int | None = None):
            if endpoint.endswith("/reactions"):
                return [{"user": None}]
            return super().get_paginated(endpoint, per_page, max_items)

    source = GithubGhCommentSource()
    source.client = BrokenReactions()  # type: ignore[assignment]
    comment = Comment(id="101", author="alice", owner_repo="acme/repo", source_url="u")

    with pytest.raises(FetchError):
        source.fetch_reactions(comment)


def test_malformed_edit_history_becomes_fetch_error() -> None:
    class BrokenEdits(FakeGhClient):
        def graphql(self, query: str, variables: dict[str, str | int]):
            return {"node": {"userContentEdits": {"nodes": [{"diff": ["not", "text"]}]}}}

    source = GithubGhCommentSource()
    source.client = BrokenEdits()  # type: ignore[assignment]
    comment = Comment(id="101", node_id="IC_101", author="alice", owner_repo="acme/repo", source_url="u")

    with pytest.raises(FetchError):
        source.fetch_edit_history(comment)


def test_malformed_signals_degrade_to_zero_weight_during_crawl() -> None:
    class BrokenSignals(FakeGhClient):
        def get_paginated(self, endpoint: str, per_page: int = 100, max_items: int | None = None):
            if endpoint.endswith("/reactions"):
                return [{"user": None}]
            return super().get_paginated(endpoint, per_page, max_items)

        def graphql(self, query: str, variables: dict[str, str | int]):
            if "nodeId" in variables:
                return {"node": {"userContentEdits": {"nodes": [{"diff": ["not", "text"]}]}}}
            return super().graphql(query, variables)

    source = GithubGhCommentSource()
    source.client = BrokenSignals()  # type: ignore[assignment]

    result = GraphCrawler(source, CrawlConfig(max_depth=0)).crawl("acme/repo/5")

    root = result.nodes["acme/repo/5"]
    assert root.status == NodeStatus.PROCESSED
    assert [comment.weight for comment in root.comments] == [0.0, 0.0]


def test_missing_gh_binary_marks_root_as_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def _fake_run(cmd, text=True, capture_output=True, check=False, timeout=None):  # noqa: ANN001,ARG001
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    monkeypatch.setattr("subprocess.run", _fake_run)

    with pytest.raises(FetchError):
        GithubGhClient(gh_bin="/nonexistent/gh").api_json("repos/acme/repo/issues/1")

    result = GraphCrawler(GithubGhCommentSource(gh_bin="/nonexistent/gh")).crawl("acme/repo/1")
    assert result.statuses() == {"acme/repo/1": NodeStatus.ERROR}
    assert "/nonexistent/gh" in (result.nodes["acme/repo/1"].error or "")
