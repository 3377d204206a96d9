"""
Assignment intake and maintainer actions.

Intake records who is assigned to what (explicitly or by polling a
repository). Manual actions are direct overrides: they bypass the policy,
leave a `manual_action` event on the trail and set `manual_override` until
the assignee shows genuine activity again.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from claimguard.activity.readers import IssueState
from claimguard.assignments.models import (
    ActivityEvent, ActivityKind, ActivitySource, Assignment, AssignmentStatus,
    Notification
)
from claimguard.clock import ensure_utc, parse_github_datetime, utcnow
from claimguard.db.store import AssignmentStore, new_assignment_id
from claimguard.errors import (
    AssignmentBusyError, AssignmentExistsError, InvalidTransitionError, ResourceNotFoundError
)
from claimguard.monitor.leases import AssignmentLeases
from claimguard.tools.github import GitHubClient

logger = logging.getLogger(__name__)


class AssignmentDetail(BaseModel):
    """An assignment with its trail, for the API."""
    assignment: Assignment
    activity: List[ActivityEvent] = []
    notifications: List[Notification] = []


class AssignmentService:
    """Records assignments and applies maintainer overrides."""

    def __init__(
        self,
        store: AssignmentStore,
        leases: AssignmentLeases,
        github: Optional[GitHubClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.leases = leases
        self.github = github
        self.clock = clock

    # =========================================================================
    # Intake
    # =========================================================================

    def record_assignment(
        self,
        repository: str,
        issue_number: int,
        assignee: str,
        assigned_at: Optional[datetime] = None,
    ) -> Assignment:
        """
        Start tracking an assignment.

        Idempotent for an assignment that is already tracked. A terminal
        (auto-unassigned) record for the same triple is reactivated as a fresh
        assignment instead of creating a second row.
        """
        assigned_at = ensure_utc(assigned_at) or self.clock()
        existing = self.store.find(repository, issue_number, assignee)

        if existing is not None and existing.status != AssignmentStatus.AUTO_UNASSIGNED:
            return existing

        if existing is not None:
            if assigned_at <= existing.assigned_at:
                assigned_at = self.clock()
            result = self.store.apply_transition(
                existing.id,
                AssignmentStatus.ACTIVE,
                expected_version=existing.version,
                assigned_at=assigned_at,
                watermark=assigned_at,
                manual_override=False,
                override_until=None,
                consecutive_failures=0,
                last_error=None,
                status_reason="Re-assigned",
            )
            logger.info(f"Reactivated assignment {existing.id}: {existing.label}")
            return result.assignment

        assignment = Assignment(
            id=new_assignment_id(),
            repository=repository,
            issue_number=issue_number,
            assignee=assignee,
            assigned_at=assigned_at,
            last_activity_at=assigned_at,
            status_reason="Assigned",
        )
        try:
            return self.store.create(assignment)
        except AssignmentExistsError:
            # Someone recorded it between find() and create()
            return self.store.find(repository, issue_number, assignee)

    async def sync_repository(self, repository: str) -> List[Assignment]:
        """
        Record every assignee of the repository's open issues.

        Tracked assignments missing from the listing are looked up one by one
        and retired when the issue was closed or the assignee removed.
        """
        if self.github is None:
            raise ValueError("GitHub client not configured")

        issues = await self.github.list_assigned_issues(repository)
        recorded: List[Assignment] = []
        for issue in issues:
            for assignee in issue.assignees:
                existing = self.store.find(repository, issue.number, assignee)
                if existing is not None and existing.status != AssignmentStatus.AUTO_UNASSIGNED:
                    recorded.append(existing)
                    continue

                events = await self.github.list_issue_events(repository, issue.number)
                assigned_at = _assigned_at(events, assignee) or issue.created_at or self.clock()

                # Still assigned from before the auto-unassign, not a new assignment
                if existing is not None and assigned_at <= existing.assigned_at:
                    continue

                recorded.append(self.record_assignment(repository, issue.number, assignee, assigned_at))

        listed = {(issue.number, login.lower()) for issue in issues for login in issue.assignees}
        released = 0
        for assignment in self.store.list_assignments(repository=repository):
            if assignment.status == AssignmentStatus.AUTO_UNASSIGNED:
                continue
            if (assignment.issue_number, assignment.assignee.lower()) in listed:
                continue
            if await self._release_if_over(assignment) is not None:
                released += 1

        logger.info(
            f"Synced {repository}: {len(recorded)} assignments across {len(issues)} open issues, {released} released"
        )
        return recorded

    async def _release_if_over(self, assignment: Assignment) -> Optional[Assignment]:
        try:
            issue = await self.github.get_issue(assignment.repository, assignment.issue_number)
        except ResourceNotFoundError:
            # The monitor counts this toward UNKNOWN
            return None

        reason = IssueState.from_issue(issue).release_reason(assignment.assignee)
        if reason is None:
            return None

        try:
            async with self.leases.hold(assignment.id):
                current = self.store.get(assignment.id)
                if current.status == AssignmentStatus.AUTO_UNASSIGNED:
                    return None
                result = self.store.apply_transition(
                    current.id,
                    AssignmentStatus.AUTO_UNASSIGNED,
                    expected_version=current.version,
                    manual_override=False,
                    override_until=None,
                    status_reason=reason,
                )
        except AssignmentBusyError as e:
            logger.info(f"Not releasing {assignment.label} now: {e}")
            return None

        logger.info(f"Released {assignment.label}: {reason}")
        return result.assignment

    # =========================================================================
    # Manual actions
    # =========================================================================

    async def mark_active(self, assignment_id: str, actor: Optional[str] = None) -> Assignment:
        """Treat the assignee as active as of now."""
        async with self.leases.hold(assignment_id):
            assignment = self._get_actionable(assignment_id, "mark_active")
            now = self.clock()
            result = self.store.apply_transition(
                assignment_id,
                AssignmentStatus.ACTIVE,
                expected_version=assignment.version,
                events=[self._manual_event(now, "mark_active", actor)],
                watermark=now,
                manual_override=True,
                override_until=None,
                consecutive_failures=0,
                last_error=None,
                status_reason="Marked active by a maintainer",
            )
            return result.assignment

    async def extend_deadline(self, assignment_id: str, days: float, actor: Optional[str] = None) -> Assignment:
        """Suspend escalation for `days`, or until new activity arrives."""
        if days <= 0:
            raise ValueError("days must be positive")

        async with self.leases.hold(assignment_id):
            assignment = self._get_actionable(assignment_id, "extend_deadline")
            now = self.clock()
            until = now + timedelta(days=days)
            result = self.store.apply_transition(
                assignment_id,
                AssignmentStatus.MANUAL_OVERRIDE,
                expected_version=assignment.version,
                events=[self._manual_event(now, "extend_deadline", actor, days=days, until=until.isoformat())],
                manual_override=True,
                override_until=until,
                status_reason=f"Deadline extended by {days:g} days until {until.date().isoformat()}",
            )
            return result.assignment

    async def whitelist(self, assignment_id: str, actor: Optional[str] = None) -> Assignment:
        """Exempt the assignment from automation."""
        async with self.leases.hold(assignment_id):
            assignment = self._get_actionable(assignment_id, "whitelist")
            now = self.clock()
            result = self.store.apply_transition(
                assignment_id,
                AssignmentStatus.MANUAL_OVERRIDE,
                expected_version=assignment.version,
                events=[self._manual_event(now, "whitelist", actor)],
                is_whitelisted=True,
                manual_override=True,
                status_reason="Whitelisted by a maintainer",
            )
            return result.assignment

    def get_detail(self, assignment_id: str) -> AssignmentDetail:
        return AssignmentDetail(
            assignment=self.store.get(assignment_id),
            activity=self.store.list_activity(assignment_id),
            notifications=self.store.list_notifications(assignment_id),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_actionable(self, assignment_id: str, action: str) -> Assignment:
        assignment = self.store.get(assignment_id)
        if assignment.status == AssignmentStatus.AUTO_UNASSIGNED:
            raise InvalidTransitionError(
                f"Cannot {action} assignment {assignment_id}: it was auto-unassigned; re-assign the issue instead"
            )
        return assignment

    @staticmethod
    def _manual_event(now: datetime, action: str, actor: Optional[str], **details: Any) -> ActivityEvent:
        payload: Dict[str, Any] = {"action": action, "actor": actor}
        payload.update(details)
        return ActivityEvent(
            timestamp=now,
            kind=ActivityKind.MANUAL_ACTION,
            source=ActivitySource.SYSTEM,
            external_id=f"manual:{action}:{now.isoformat()}",
            payload=payload,
        )


def _assigned_at(events: List[Dict[str, Any]], assignee: str) -> Optional[datetime]:
    """Time of the latest `assigned` event for this user."""
    latest = None
    for event in events:
        if event.get("event") != "assigned":
            continue
        login = (event.get("assignee") or {}).get("login", "")
        if login.lower() != assignee.lower():
            continue
        created = parse_github_datetime(event.get("created_at"))
        if created and (latest is None or created > latest):
            latest = created
    return latest
