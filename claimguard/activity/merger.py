"""
Activity merger.

Combines the main-repository stream and the fork stream into one ordered,
deduplicated list of new events and the advanced watermark. The merge itself
is a pure function; `ActivityMerger` only does the I/O around it.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from pydantic import BaseModel

from claimguard.activity.forks import ForkResolver
from claimguard.activity.readers import ForkReader, IssueState, MainRepoReader
from claimguard.assignments.models import ActivityEvent, ActivityKind, Assignment, ForkReference
from claimguard.clock import ensure_utc, utcnow
from claimguard.errors import PlatformError, RateLimitedError, ResourceNotFoundError

logger = logging.getLogger(__name__)


class MergeResult(BaseModel):
    """New activity for one assignment since its watermark."""
    previous_watermark: datetime
    watermark: datetime
    events: List[ActivityEvent] = []
    had_new_activity: bool = False
    fork_reference: Optional[ForkReference] = None
    fork_error: Optional[str] = None  # Fork side degraded to main-repo-only
    rate_limited_until: Optional[datetime] = None
    issue: Optional[IssueState] = None
    release_reason: Optional[str] = None  # Issue closed or assignee removed on the platform

    def classification_text(self) -> str:
        """Bodies of the new comments, oldest first."""
        bodies = [
            (event.payload.get("body") or "").strip()
            for event in self.events
            if event.kind == ActivityKind.COMMENT
        ]
        return "\n\n".join(b for b in bodies if b)


def merge_events(
    assignment_id: str,
    watermark: datetime,
    *streams: Iterable[ActivityEvent],
) -> MergeResult:
    """
    Merge activity streams against a watermark.

    Streams are consumed in the order given, so when two sources report the
    same external id (a commit pushed to both the fork and the main repo) the
    earlier stream wins. Only events strictly newer than the watermark are
    kept, and the watermark never moves backward.
    """
    watermark = ensure_utc(watermark)
    seen = set()
    merged: List[ActivityEvent] = []

    for stream in streams:
        for event in stream:
            timestamp = ensure_utc(event.timestamp)
            if timestamp <= watermark:
                continue
            if event.external_id:
                if event.external_id in seen:
                    continue
                seen.add(event.external_id)
            merged.append(event.model_copy(update={"timestamp": timestamp, "assignment_id": assignment_id}))

    # sorted() is stable: ties keep source order
    merged = sorted(merged, key=lambda e: e.timestamp)

    new_watermark = watermark
    for event in merged:
        if event.is_genuine and event.timestamp > new_watermark:
            new_watermark = event.timestamp

    return MergeResult(
        previous_watermark=watermark,
        watermark=new_watermark,
        events=merged,
        had_new_activity=any(e.is_genuine for e in merged),
    )


class ActivityMerger:
    """Reads both sources for an assignment and merges them."""

    def __init__(
        self,
        main_reader: MainRepoReader,
        fork_resolver: ForkResolver,
        fork_reader: ForkReader,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.main_reader = main_reader
        self.fork_resolver = fork_resolver
        self.fork_reader = fork_reader
        self.clock = clock

    async def collect(self, assignment: Assignment) -> MergeResult:
        since = assignment.last_activity_at

        # Main repo errors decide the outcome of the whole check
        issue = await self.main_reader.get_issue_state(assignment.repository, assignment.issue_number)
        release_reason = issue.release_reason(assignment.assignee)
        if release_reason is not None:
            logger.info(f"{assignment.label}: claim already over on GitHub: {release_reason}")
            result = merge_events(assignment.id, since)
            result.issue = issue
            result.release_reason = release_reason
            return result

        main_events = await self.main_reader.list_activity_since(
            assignment.repository, assignment.issue_number, since, assignment.assignee
        )

        fork_events: List[ActivityEvent] = []
        fork_reference: Optional[ForkReference] = None
        fork_error: Optional[str] = None
        rate_limited_until: Optional[datetime] = None
        try:
            fork_reference = await self.fork_resolver.resolve(assignment.repository, assignment.assignee)
            if fork_reference is not None:
                fork_events = await self.fork_reader.list_commits_since(
                    fork_reference.fork_owner,
                    fork_reference.fork_name,
                    assignment.assignee,
                    since,
                    branch=fork_reference.default_branch,
                )
        except ResourceNotFoundError as e:
            # Fork deleted or renamed since it was cached
            self.fork_resolver.invalidate(assignment.repository, assignment.assignee)
            fork_reference = None
            fork_error = str(e)
            logger.warning(f"{assignment.label}: fork lookup failed, using main repo only: {e}")
        except RateLimitedError as e:
            fork_error = str(e)
            rate_limited_until = e.reset_at
            logger.warning(f"{assignment.label}: rate limited while reading fork, using main repo only")
        except PlatformError as e:
            fork_error = str(e)
            logger.warning(f"{assignment.label}: fork read failed, using main repo only: {e}")

        result = merge_events(assignment.id, since, main_events, fork_events)
        result.issue = issue
        result.fork_reference = fork_reference
        result.fork_error = fork_error
        result.rate_limited_until = rate_limited_until

        if result.events:
            fork_count = sum(1 for e in result.events if e.kind == ActivityKind.FORK_COMMIT)
            logger.info(
                f"{assignment.label}: {len(result.events)} new events ({fork_count} from fork), "
                f"watermark {result.previous_watermark.isoformat()} -> {result.watermark.isoformat()}"
            )
        return result
