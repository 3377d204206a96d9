"""
Platform side effects: reminder/alert comments and unassignment.

Both actions are safe to repeat. Comments carry a hidden marker derived from
the transition's idempotency key and are not posted again if a comment with
that marker already exists; removing an assignee that is already gone is a
no-op on GitHub.
"""

import logging
from datetime import datetime
from typing import Protocol

from claimguard.assignments.models import AssignmentStatus
from claimguard.clock import ensure_utc
from claimguard.tools.github import GitHubClient

logger = logging.getLogger(__name__)


def idempotency_key(assignment_id: str, status: AssignmentStatus, watermark: datetime) -> str:
    """Same transition from the same watermark -> same key."""
    return f"claimguard:{assignment_id}:{status.value}:{ensure_utc(watermark).isoformat()}"


def comment_marker(key: str) -> str:
    return f"<!-- {key} -->"


class PlatformActions(Protocol):
    async def post_comment(self, repository: str, issue_number: int, body: str, idempotency_key: str) -> bool:
        """Post unless already posted. True when a comment was created."""
        ...

    async def unassign(self, repository: str, issue_number: int, username: str) -> None:
        ...


class GitHubPlatformActions:
    """Mutations through the GitHub API. `dry_run` only logs them."""

    def __init__(self, github: GitHubClient, dry_run: bool = False):
        self.github = github
        self.dry_run = dry_run

    async def post_comment(self, repository: str, issue_number: int, body: str, idempotency_key: str) -> bool:
        marker = comment_marker(idempotency_key)
        comments = await self.github.list_issue_comments(repository, issue_number)
        if any(marker in comment.body for comment in comments):
            logger.info(f"{repository}#{issue_number}: comment {idempotency_key} already posted, skipping")
            return False

        if self.dry_run:
            logger.info(f"[dry run] Would comment on {repository}#{issue_number}: {body[:80]!r}")
            return False

        await self.github.create_comment(repository, issue_number, f"{body}\n\n{marker}")
        logger.info(f"Commented on {repository}#{issue_number} ({idempotency_key})")
        return True

    async def unassign(self, repository: str, issue_number: int, username: str) -> None:
        if self.dry_run:
            logger.info(f"[dry run] Would unassign {username} from {repository}#{issue_number}")
            return
        await self.github.remove_assignees(repository, issue_number, [username])
        logger.info(f"Unassigned {username} from {repository}#{issue_number}")
