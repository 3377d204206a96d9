"""Comment bodies and notification texts for each escalation tier."""

from typing import Optional

from claimguard.assignments.models import (
    AIContext, Assignment, AssignmentStatus, Notification, NotificationPriority,
    NotificationType
)
from claimguard.policy.models import PolicyDecision, SideEffect

_TIER_NOTIFICATIONS = {
    AssignmentStatus.WARNING: (NotificationType.WARNING, "Assignment Warning", NotificationPriority.NORMAL),
    AssignmentStatus.ALERT: (NotificationType.ALERT, "Assignment Alert", NotificationPriority.HIGH),
    AssignmentStatus.AUTO_UNASSIGNED: (NotificationType.AUTO_UNASSIGNED, "Auto-Unassigned", NotificationPriority.URGENT),
}


def _inactive_for(decision: PolicyDecision) -> str:
    units = decision.factors.get("elapsed", 0)
    unit_name = decision.factors.get("unit", "days")
    whole = int(units)
    if whole == 1:
        unit_name = unit_name.rstrip("s")
    return f"{whole} {unit_name}"


def comment_for(assignment: Assignment, decision: PolicyDecision) -> Optional[str]:
    """Issue comment that goes with the decision's side effect, if any."""
    inactive = _inactive_for(decision)
    mention = f"@{assignment.assignee}"
    if decision.side_effect == SideEffect.REMINDER:
        return (
            f"⚠️ **Gentle Reminder**\n\n"
            f"{mention}, this issue has been inactive for {inactive}. "
            f"Please provide an update on your progress."
        )
    if decision.side_effect == SideEffect.ALERT_COMMENT:
        return (
            f"🚨 **Alert: Extended Inactivity**\n\n"
            f"{mention}, this issue has been inactive for {inactive}. "
            f"Please provide an immediate update or consider unassigning yourself."
        )
    if decision.side_effect == SideEffect.UNASSIGN:
        return (
            f"🚨 **Auto-unassigned due to inactivity**\n\n"
            f"{mention} has been automatically unassigned after {inactive} of inactivity. "
            f"If you're still working on this, please ask to be re-assigned."
        )
    return None


def notification_for(assignment: Assignment, decision: PolicyDecision, dedupe_key: str) -> Optional[Notification]:
    """Notification for an escalation; None for tiers that notify nobody."""
    if decision.side_effect == SideEffect.NONE:
        return None
    tier = _TIER_NOTIFICATIONS.get(decision.status)
    if tier is None:
        return None
    notification_type, title, priority = tier

    inactive = _inactive_for(decision)
    if decision.status == AssignmentStatus.WARNING:
        message = f"Issue #{assignment.issue_number} has been inactive for {inactive}. Please provide an update."
    elif decision.status == AssignmentStatus.ALERT:
        message = f"Issue #{assignment.issue_number} has been inactive for {inactive}. Immediate attention required."
    else:
        message = (
            f"Issue #{assignment.issue_number} has been automatically unassigned from "
            f"{assignment.assignee} after {inactive} of inactivity."
        )

    return Notification(
        assignment_id=assignment.id,
        type=notification_type,
        title=title,
        message=message,
        priority=priority,
        dedupe_key=dedupe_key,
        metadata={
            "repository": assignment.repository,
            "issue_number": assignment.issue_number,
            "assignee": assignment.assignee,
            "url": assignment.issue_url,
            "reason": decision.reason,
            "context_key": decision.context_key,
        },
    )


def diagnostic_notification(assignment: Assignment, reason: str, dedupe_key: str) -> Notification:
    """Raised when automation gives up on an assignment."""
    return Notification(
        assignment_id=assignment.id,
        type=NotificationType.DIAGNOSTIC,
        title="Assignment could not be evaluated",
        message=(
            f"Automation could not evaluate {assignment.repository}#{assignment.issue_number} "
            f"({assignment.assignee}): {reason}. A maintainer should check it manually."
        ),
        priority=NotificationPriority.HIGH,
        dedupe_key=dedupe_key,
        metadata={
            "repository": assignment.repository,
            "issue_number": assignment.issue_number,
            "assignee": assignment.assignee,
            "url": assignment.issue_url,
            "reason": reason,
        },
    )


def ai_update_notification(
    assignment: Assignment,
    previous: AIContext,
    current: AIContext,
    dedupe_key: str,
) -> Notification:
    """Raised when the classifier changes its mind about the work."""
    if current.is_blocked and not previous.is_blocked:
        summary = f"{assignment.assignee} appears to be blocked"
    elif previous.is_blocked and not current.is_blocked:
        summary = f"{assignment.assignee} no longer appears to be blocked"
    else:
        summary = f"Work type changed from {previous.work_type.value} to {current.work_type.value}"

    return Notification(
        assignment_id=assignment.id,
        type=NotificationType.AI_UPDATE,
        title="AI Analysis Update",
        message=f"Issue #{assignment.issue_number}: {summary}. {current.reasoning}".strip(),
        priority=NotificationPriority.NORMAL,
        dedupe_key=dedupe_key,
        metadata={
            "repository": assignment.repository,
            "issue_number": assignment.issue_number,
            "previous_work_type": previous.work_type.value,
            "work_type": current.work_type.value,
            "is_blocked": current.is_blocked,
            "confidence": current.confidence,
        },
    )
