"""
GitHub REST client used by the activity readers and platform actions.

HTTP failures are mapped onto claimguard's platform error taxonomy so callers
can tell "not found" from "try again later" from "will never work".
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from claimguard.clock import parse_github_datetime
from claimguard.errors import (
    PermanentPlatformError, RateLimitedError, ResourceNotFoundError,
    TransientPlatformError
)

logger = logging.getLogger(__name__)


class GitHubIssue(BaseModel):
    """An issue (pull requests are flagged, not filtered, at this level)."""
    number: int
    title: str
    state: str  # open, closed
    assignees: list[str] = []
    html_url: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    is_pull_request: bool = False


class GitHubComment(BaseModel):
    """An issue comment."""
    id: int
    user: str
    body: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    html_url: str = ""


class GitHubCommit(BaseModel):
    """A commit."""
    sha: str
    message: str
    author_login: Optional[str] = None
    author_name: str = ""
    date: datetime
    html_url: str = ""


class GitHubRepo(BaseModel):
    """A GitHub repository (or fork)."""
    name: str
    full_name: str
    owner: str
    default_branch: str = "main"
    html_url: str = ""
    private: bool = False
    fork: bool = False
    parent_full_name: Optional[str] = None
    pushed_at: Optional[datetime] = None


def split_repository(repository: str) -> tuple[str, str]:
    """'owner/name' -> ('owner', 'name')."""
    owner, _, name = repository.partition("/")
    if not owner or not name:
        raise ValueError(f"Repository must look like 'owner/name', got {repository!r}")
    return owner, name


def _rate_limit_reset(response: httpx.Response) -> Optional[datetime]:
    reset = response.headers.get("X-RateLimit-Reset")
    if reset:
        try:
            return datetime.fromtimestamp(float(reset), tz=timezone.utc)
        except (TypeError, ValueError):
            pass
    retry_after = response.headers.get("Retry-After")
    if retry_after:
        try:
            return datetime.now(timezone.utc) + timedelta(seconds=float(retry_after))
        except (TypeError, ValueError):
            pass
    return None


def raise_for_github_status(response: httpx.Response, what: str) -> None:
    """Translate an error response into the platform error taxonomy."""
    status = response.status_code
    if status < 400:
        return

    detail = response.text[:200] if response.text else ""
    if status in (404, 410):
        raise ResourceNotFoundError(f"{what} not found", status_code=status)

    remaining = response.headers.get("X-RateLimit-Remaining")
    if status == 429 or (status == 403 and remaining == "0"):
        reset_at = _rate_limit_reset(response)
        raise RateLimitedError(f"GitHub rate limit hit while fetching {what}", status_code=status, reset_at=reset_at)

    if status in (401, 403):
        raise PermanentPlatformError(f"GitHub denied access to {what}: {detail}", status_code=status)
    if status >= 500:
        raise TransientPlatformError(f"GitHub error {status} for {what}", status_code=status)
    raise PermanentPlatformError(f"GitHub API error {status} for {what}: {detail}", status_code=status)


class GitHubClient:
    """Thin async wrapper around the parts of the GitHub API claimguard needs."""

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("GITHUB_TOKEN not set; using unauthenticated GitHub API (low rate limit, read-only)")

    async def close(self):
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        what: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        if not url.startswith("http"):
            url = f"{self.base_url}{url}"
        try:
            response = await self._client.request(method, url, headers=self.headers, params=params, json=json)
        except httpx.TimeoutException as e:
            raise TransientPlatformError(f"Timed out talking to GitHub ({what})") from e
        except httpx.RequestError as e:
            raise TransientPlatformError(f"Failed to connect to GitHub ({what}): {str(e)}") from e

        raise_for_github_status(response, what)
        return response

    async def _paginate(
        self,
        path: str,
        what: str,
        params: Optional[Dict[str, Any]] = None,
        max_pages: int = 5,
    ) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        url: Optional[str] = path
        page_params = dict(params or {})
        page_params.setdefault("per_page", 100)
        pages = 0
        while url and pages < max_pages:
            response = await self._request("GET", url, what, params=page_params if pages == 0 else None)
            data = response.json()
            if isinstance(data, list):
                items.extend(data)
            pages += 1
            url = response.links.get("next", {}).get("url")
        return items

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_issue(self, repository: str, issue_number: int) -> GitHubIssue:
        owner, repo = split_repository(repository)
        response = await self._request("GET", f"/repos/{owner}/{repo}/issues/{issue_number}", f"issue {repository}#{issue_number}")
        return _issue_from_json(response.json())

    async def list_issue_comments(self, repository: str, issue_number: int, since: Optional[datetime] = None) -> List[GitHubComment]:
        """Comments on an issue. GitHub's `since` filters on update time, callers re-filter on creation."""
        owner, repo = split_repository(repository)
        params: Dict[str, Any] = {}
        if since:
            params["since"] = since.isoformat().replace("+00:00", "Z")
        data = await self._paginate(
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            f"comments on {repository}#{issue_number}",
            params=params,
        )
        return [
            GitHubComment(
                id=c["id"],
                user=(c.get("user") or {}).get("login", ""),
                body=c.get("body") or "",
                created_at=parse_github_datetime(c.get("created_at")),
                updated_at=parse_github_datetime(c.get("updated_at")),
                html_url=c.get("html_url", ""),
            )
            for c in data
            if c.get("created_at")
        ]

    async def list_commits(
        self,
        repository: str,
        author: Optional[str] = None,
        since: Optional[datetime] = None,
        sha: Optional[str] = None,
        max_pages: int = 3,
    ) -> List[GitHubCommit]:
        owner, repo = split_repository(repository)
        params: Dict[str, Any] = {"per_page": 50}
        if author:
            params["author"] = author
        if since:
            params["since"] = since.isoformat().replace("+00:00", "Z")
        if sha:
            params["sha"] = sha
        try:
            data = await self._paginate(f"/repos/{owner}/{repo}/commits", f"commits in {repository}", params=params, max_pages=max_pages)
        except PermanentPlatformError as e:
            # Empty repositories answer 409 Conflict
            if e.status_code == 409:
                return []
            raise
        commits = []
        for c in data:
            commit = c.get("commit") or {}
            author_info = commit.get("author") or commit.get("committer") or {}
            date = parse_github_datetime(author_info.get("date"))
            if date is None:
                continue
            commits.append(GitHubCommit(
                sha=c["sha"],
                message=(commit.get("message") or "").split("\n")[0],  # First line only
                author_login=(c.get("author") or {}).get("login"),
                author_name=author_info.get("name", ""),
                date=date,
                html_url=c.get("html_url", ""),
            ))
        return commits

    async def get_repo(self, owner: str, repo: str) -> GitHubRepo:
        response = await self._request("GET", f"/repos/{owner}/{repo}", f"repository {owner}/{repo}")
        return _repo_from_json(response.json())

    async def list_forks(self, repository: str, max_pages: int = 10) -> List[GitHubRepo]:
        owner, repo = split_repository(repository)
        data = await self._paginate(
            f"/repos/{owner}/{repo}/forks",
            f"forks of {repository}",
            params={"sort": "newest"},
            max_pages=max_pages,
        )
        return [_repo_from_json(f) for f in data]

    async def list_assigned_issues(self, repository: str, max_pages: int = 10) -> List[GitHubIssue]:
        """Open issues that have at least one assignee (pull requests excluded)."""
        owner, repo = split_repository(repository)
        data = await self._paginate(
            f"/repos/{owner}/{repo}/issues",
            f"issues in {repository}",
            params={"state": "open", "assignee": "*"},
            max_pages=max_pages,
        )
        issues = [_issue_from_json(i) for i in data]
        return [i for i in issues if not i.is_pull_request]

    async def list_issue_events(self, repository: str, issue_number: int) -> List[Dict[str, Any]]:
        owner, repo = split_repository(repository)
        return await self._paginate(
            f"/repos/{owner}/{repo}/issues/{issue_number}/events",
            f"events on {repository}#{issue_number}",
        )

    # =========================================================================
    # Mutations
    # =========================================================================

    async def create_comment(self, repository: str, issue_number: int, body: str) -> GitHubComment:
        owner, repo = split_repository(repository)
        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/issues/{issue_number}/comments",
            f"comment on {repository}#{issue_number}",
            json={"body": body},
        )
        c = response.json()
        return GitHubComment(
            id=c["id"],
            user=(c.get("user") or {}).get("login", ""),
            body=c.get("body") or body,
            created_at=parse_github_datetime(c.get("created_at")) or datetime.now(timezone.utc),
            html_url=c.get("html_url", ""),
        )

    async def remove_assignees(self, repository: str, issue_number: int, assignees: List[str]) -> GitHubIssue:
        owner, repo = split_repository(repository)
        response = await self._request(
            "DELETE",
            f"/repos/{owner}/{repo}/issues/{issue_number}/assignees",
            f"assignees of {repository}#{issue_number}",
            json={"assignees": assignees},
        )
        return _issue_from_json(response.json())


def _issue_from_json(data: Dict[str, Any]) -> GitHubIssue:
    return GitHubIssue(
        number=data["number"],
        title=data.get("title", ""),
        state=data.get("state", "open"),
        assignees=[a.get("login", "") for a in data.get("assignees") or []],
        html_url=data.get("html_url", ""),
        created_at=parse_github_datetime(data.get("created_at")),
        updated_at=parse_github_datetime(data.get("updated_at")),
        is_pull_request="pull_request" in data,
    )


def _repo_from_json(data: Dict[str, Any]) -> GitHubRepo:
    parent = data.get("parent") or data.get("source") or {}
    return GitHubRepo(
        name=data["name"],
        full_name=data["full_name"],
        owner=(data.get("owner") or {}).get("login", data["full_name"].split("/")[0]),
        default_branch=data.get("default_branch") or "main",
        html_url=data.get("html_url", ""),
        private=data.get("private", False),
        fork=data.get("fork", False),
        parent_full_name=parent.get("full_name"),
        pushed_at=parse_github_datetime(data.get("pushed_at")),
    )
