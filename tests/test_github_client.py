"""Tests for the GitHub client and the activity readers built on it."""
from datetime import timedelta

import httpx
import pytest

from claimguard.activity.readers import GitHubForkReader, GitHubIssueActivityReader
from claimguard.assignments.models import ActivityKind, ActivitySource
from claimguard.errors import (
    PermanentPlatformError, RateLimitedError, ResourceNotFoundError,
    TransientPlatformError
)
from claimguard.tools.github import GitHubClient, raise_for_github_status, split_repository

from conftest import REPO, T0


def _client(handler) -> GitHubClient:
    return GitHubClient(token="t", client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _response(status: int, headers=None) -> httpx.Response:
    return httpx.Response(status, headers=headers, request=httpx.Request("GET", "https://api.github.com/x"))


def test_status_mapping():
    raise_for_github_status(_response(200), "x")

    with pytest.raises(ResourceNotFoundError):
        raise_for_github_status(_response(404), "x")
    with pytest.raises(ResourceNotFoundError):
        raise_for_github_status(_response(410), "x")
    with pytest.raises(PermanentPlatformError):
        raise_for_github_status(_response(401), "x")
    with pytest.raises(PermanentPlatformError):
        raise_for_github_status(_response(403, {"X-RateLimit-Remaining": "12"}), "x")
    with pytest.raises(TransientPlatformError):
        raise_for_github_status(_response(502), "x")


def test_rate_limit_carries_reset_time():
    with pytest.raises(RateLimitedError) as excinfo:
        raise_for_github_status(
            _response(403, {"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(int(T0.timestamp()))}),
            "x",
        )
    assert excinfo.value.reset_at == T0
    assert excinfo.value.status_code == 403

    with pytest.raises(RateLimitedError):
        raise_for_github_status(_response(429, {"Retry-After": "30"}), "x")


def test_split_repository():
    assert split_repository("octo/widgets") == ("octo", "widgets")
    with pytest.raises(ValueError):
        split_repository("widgets")


@pytest.mark.asyncio
async def test_pagination_follows_link_header():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("page") == "2":
            return httpx.Response(200, json=[{"number": 2, "title": "b", "assignees": [{"login": "bob"}]}])
        return httpx.Response(
            200,
            json=[{"number": 1, "title": "a", "assignees": [{"login": "alice"}]}],
            headers={"Link": '<https://api.github.com/repos/octo/widgets/issues?page=2>; rel="next"'},
        )

    issues = await _client(handler).list_assigned_issues(REPO)
    assert [(i.number, i.assignees) for i in issues] == [(1, ["alice"]), (2, ["bob"])]


@pytest.mark.asyncio
async def test_pull_requests_are_excluded():
    def handler(request):
        return httpx.Response(200, json=[
            {"number": 1, "title": "issue", "assignees": [{"login": "alice"}]},
            {"number": 2, "title": "pr", "assignees": [{"login": "alice"}], "pull_request": {}},
        ])

    issues = await _client(handler).list_assigned_issues(REPO)
    assert [i.number for i in issues] == [1]


@pytest.mark.asyncio
async def test_empty_repository_has_no_commits():
    def handler(request):
        return httpx.Response(409, json={"message": "Git Repository is empty."})

    assert await _client(handler).list_commits(REPO) == []


@pytest.mark.asyncio
async def test_connection_errors_are_transient():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientPlatformError):
        await _client(handler).get_issue(REPO, 1)


# =============================================================================
# Readers
# =============================================================================

def _issue_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/repos/octo/widgets/issues/7":
        return httpx.Response(200, json={"number": 7, "title": "Fix parser", "state": "open", "assignees": [{"login": "alice"}]})
    if path == "/repos/octo/widgets/issues/7/comments":
        return httpx.Response(200, json=[
            {"id": 1, "user": {"login": "alice"}, "body": "old", "created_at": "2024-05-01T11:00:00Z"},
            {"id": 2, "user": {"login": "Alice"}, "body": "on it", "created_at": "2024-05-02T09:00:00Z"},
            {"id": 3, "user": {"login": "maintainer"}, "body": "any news?", "created_at": "2024-05-02T10:00:00Z"},
        ])
    if path == "/repos/octo/widgets/commits":
        assert request.url.params["author"] == "alice"
        return httpx.Response(200, json=[{
            "sha": "abc123",
            "commit": {"message": "Fix parser\n\nlong body", "author": {"name": "Alice", "date": "2024-05-03T08:00:00Z"}},
            "author": {"login": "alice"},
        }])
    return httpx.Response(404, json={"message": "Not Found"})


@pytest.mark.asyncio
async def test_issue_reader_collects_assignee_comments_and_commits():
    reader = GitHubIssueActivityReader(_client(_issue_handler))
    events = await reader.list_activity_since(REPO, 7, T0, "alice")

    assert [(e.kind, e.external_id) for e in events] == [
        (ActivityKind.COMMENT, "comment:2"),
        (ActivityKind.COMMIT, "commit:abc123"),
    ]
    assert events[0].payload["body"] == "on it"
    assert events[1].payload["message"] == "Fix parser"


@pytest.mark.asyncio
async def test_issue_reader_missing_issue():
    reader = GitHubIssueActivityReader(_client(_issue_handler))
    with pytest.raises(ResourceNotFoundError):
        await reader.get_issue_state(REPO, 8)


@pytest.mark.asyncio
async def test_issue_reader_reports_state_and_assignees():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/repos/octo/widgets/issues/5":
            return httpx.Response(200, json={"number": 5, "title": "Done", "state": "closed", "assignees": []})
        return _issue_handler(request)

    reader = GitHubIssueActivityReader(_client(handler))

    open_issue = await reader.get_issue_state(REPO, 7)
    assert open_issue.state == "open"
    assert open_issue.assignees == ["alice"]
    assert open_issue.release_reason("ALICE") is None
    assert "no longer assigned" in open_issue.release_reason("bob")

    closed = await reader.get_issue_state(REPO, 5)
    assert "closed" in closed.release_reason("alice")


@pytest.mark.asyncio
async def test_fork_reader_finds_renamed_fork():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/repos/octo/widgets/forks":
            return httpx.Response(200, json=[
                {"name": "gadgets", "full_name": "bob/gadgets", "owner": {"login": "bob"}, "fork": True},
                {"name": "my-widgets", "full_name": "alice/my-widgets", "owner": {"login": "alice"},
                 "fork": True, "default_branch": "dev"},
            ])
        return httpx.Response(404)

    fork = await GitHubForkReader(_client(handler)).find_fork_owned_by(REPO, "alice")
    assert fork.full_name == "alice/my-widgets"
    assert fork.default_branch == "dev"


@pytest.mark.asyncio
async def test_fork_reader_same_name_fork_and_commits():
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/repos/alice/widgets":
            return httpx.Response(200, json={
                "name": "widgets", "full_name": "alice/widgets", "owner": {"login": "alice"},
                "fork": True, "parent": {"full_name": "octo/widgets"}, "default_branch": "main",
            })
        if path == "/repos/alice/widgets/commits":
            assert request.url.params["sha"] == "main"
            return httpx.Response(200, json=[
                {"sha": "f1", "commit": {"message": "wip", "author": {"date": "2024-05-05T08:00:00Z"}}},
                {"sha": "f0", "commit": {"message": "older", "author": {"date": "2024-05-01T12:00:00Z"}}},
            ])
        return httpx.Response(404)

    reader = GitHubForkReader(_client(handler))
    fork = await reader.find_fork_owned_by(REPO, "alice")
    events = await reader.list_commits_since(fork.fork_owner, fork.fork_name, "alice", T0, branch=fork.default_branch)

    assert [(e.external_id, e.source) for e in events] == [("commit:f1", ActivitySource.FORK)]
    assert events[0].timestamp == T0 + timedelta(days=3, hours=20)


@pytest.mark.asyncio
async def test_fork_reader_no_fork():
    def handler(request):
        if request.url.path == "/repos/octo/widgets/forks":
            return httpx.Response(200, json=[])
        return httpx.Response(404)

    assert await GitHubForkReader(_client(handler)).find_fork_owned_by(REPO, "carol") is None
