"""
Source activity readers.

Two readers share one contract: return the assignee's activity strictly newer
than a watermark, already normalized into ActivityEvents. The main-repo
reader looks at the issue itself and the shared repository; the fork reader
looks at the assignee's personal fork.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Protocol

from pydantic import BaseModel

from claimguard.assignments.models import ActivityEvent, ActivityKind, ActivitySource, ForkReference
from claimguard.clock import ensure_utc
from claimguard.errors import ResourceNotFoundError
from claimguard.tools.github import GitHubClient, GitHubIssue, GitHubRepo, split_repository

logger = logging.getLogger(__name__)


def _same_login(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and a.lower() == b.lower()


class IssueState(BaseModel):
    """Where the issue stands on the platform right now."""
    number: int
    state: str = "open"
    assignees: List[str] = []

    @classmethod
    def from_issue(cls, issue: GitHubIssue) -> "IssueState":
        return cls(number=issue.number, state=issue.state, assignees=issue.assignees)

    def release_reason(self, assignee: str) -> Optional[str]:
        """Why the claim is over without our help, or None while it still stands."""
        if self.state != "open":
            return f"Issue #{self.number} was closed"
        if not any(_same_login(login, assignee) for login in self.assignees):
            return f"{assignee} is no longer assigned to issue #{self.number}"
        return None


class MainRepoReader(Protocol):
    async def get_issue_state(self, repository: str, issue_number: int) -> IssueState:
        """Current state and assignees. A missing or inaccessible issue raises ResourceNotFoundError."""
        ...

    async def list_activity_since(
        self, repository: str, issue_number: int, since: datetime, author: str
    ) -> List[ActivityEvent]:
        """Activity by `author` on the issue/repository strictly after `since`."""
        ...


class ForkReader(Protocol):
    async def find_fork_owned_by(self, repository: str, username: str) -> Optional[ForkReference]:
        """The user's fork of `repository`, or None when they have none."""
        ...

    async def list_commits_since(
        self,
        fork_owner: str,
        fork_repo: str,
        author: str,
        since: datetime,
        branch: Optional[str] = None,
    ) -> List[ActivityEvent]:
        ...


class GitHubIssueActivityReader:
    """Comments by the assignee on the issue, plus their commits in the shared repository."""

    def __init__(self, github: GitHubClient, include_commits: bool = True):
        self.github = github
        self.include_commits = include_commits

    async def get_issue_state(self, repository: str, issue_number: int) -> IssueState:
        # Raises ResourceNotFoundError for deleted/hidden issues
        issue = await self.github.get_issue(repository, issue_number)
        return IssueState.from_issue(issue)

    async def list_activity_since(
        self, repository: str, issue_number: int, since: datetime, author: str
    ) -> List[ActivityEvent]:
        since = ensure_utc(since)
        events: List[ActivityEvent] = []
        comments = await self.github.list_issue_comments(repository, issue_number, since=since)
        for comment in comments:
            if not _same_login(comment.user, author) or comment.created_at <= since:
                continue
            events.append(ActivityEvent(
                timestamp=comment.created_at,
                kind=ActivityKind.COMMENT,
                source=ActivitySource.MAIN_REPO,
                external_id=f"comment:{comment.id}",
                payload={
                    "comment_id": comment.id,
                    "body": comment.body,
                    "url": comment.html_url,
                    "author": comment.user,
                },
            ))

        if self.include_commits:
            commits = await self.github.list_commits(repository, author=author, since=since)
            for commit in commits:
                if commit.date <= since:
                    continue
                events.append(ActivityEvent(
                    timestamp=commit.date,
                    kind=ActivityKind.COMMIT,
                    source=ActivitySource.MAIN_REPO,
                    external_id=f"commit:{commit.sha}",
                    payload={
                        "sha": commit.sha,
                        "message": commit.message,
                        "url": commit.html_url,
                        "repository": repository,
                    },
                ))

        logger.debug(f"{repository}#{issue_number}: {len(events)} new main-repo events for {author} since {since.isoformat()}")
        return events


class GitHubForkReader:
    """Finds the assignee's fork and lists their commits in it."""

    def __init__(self, github: GitHubClient, max_fork_pages: int = 10):
        self.github = github
        self.max_fork_pages = max_fork_pages

    async def find_fork_owned_by(self, repository: str, username: str) -> Optional[ForkReference]:
        # Cheap path: forks usually keep the upstream name
        _, name = split_repository(repository)
        try:
            candidate = await self.github.get_repo(username, name)
            if candidate.fork and (candidate.parent_full_name or "").lower() == repository.lower():
                return self._reference(repository, candidate)
        except ResourceNotFoundError:
            pass

        # Renamed forks: scan the fork list
        forks = await self.github.list_forks(repository, max_pages=self.max_fork_pages)
        for fork in forks:
            if _same_login(fork.owner, username):
                return self._reference(repository, fork)

        logger.info(f"No fork of {repository} owned by {username}")
        return None

    async def list_commits_since(
        self,
        fork_owner: str,
        fork_repo: str,
        author: str,
        since: datetime,
        branch: Optional[str] = None,
    ) -> List[ActivityEvent]:
        since = ensure_utc(since)
        # GitHub's `since` is inclusive; ask from one second later
        commits = await self.github.list_commits(
            f"{fork_owner}/{fork_repo}",
            author=author,
            since=since + timedelta(seconds=1),
            sha=branch,
        )
        return [
            ActivityEvent(
                timestamp=commit.date,
                kind=ActivityKind.FORK_COMMIT,
                source=ActivitySource.FORK,
                external_id=f"commit:{commit.sha}",
                payload={
                    "sha": commit.sha,
                    "message": commit.message,
                    "url": commit.html_url,
                    "fork": f"{fork_owner}/{fork_repo}",
                    "branch": branch,
                },
            )
            for commit in commits
            if commit.date > since
        ]

    @staticmethod
    def _reference(repository: str, fork: GitHubRepo) -> ForkReference:
        return ForkReference(
            repository=repository,
            fork_owner=fork.owner,
            fork_name=fork.name,
            default_branch=fork.default_branch,
            html_url=fork.html_url,
            is_private=fork.private,
        )
