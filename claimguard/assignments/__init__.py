"""Assignment data model and maintainer-facing operations."""

from claimguard.assignments.models import (
    Assignment, AssignmentStatus, ActivityEvent, ActivityKind, ActivitySource,
    AIContext, ForkReference, Notification, NotificationPriority,
    NotificationType, WorkType
)

__all__ = [
    "Assignment",
    "AssignmentStatus",
    "ActivityEvent",
    "ActivityKind",
    "ActivitySource",
    "AIContext",
    "ForkReference",
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "WorkType",
]
