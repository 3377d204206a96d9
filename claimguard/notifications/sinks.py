"""Notification sinks and fire-and-forget delivery."""

import logging
from typing import Protocol

from claimguard.assignments.models import Assignment, Notification
from claimguard.db.store import AssignmentStore

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def send(self, notification: Notification, assignment: Assignment) -> bool:
        """Deliver one notification; True when the receiver accepted it."""
        ...


class LoggingNotificationSink:
    """Writes notifications to the log. Used when Slack is not configured."""

    async def send(self, notification: Notification, assignment: Assignment) -> bool:
        logger.info(
            f"[{notification.priority.value.upper()}] {notification.title} - "
            f"{assignment.label}: {notification.message}"
        )
        return True


async def dispatch_notification(
    sink: NotificationSink,
    store: AssignmentStore,
    notification: Notification,
    assignment: Assignment,
) -> bool:
    """
    Deliver a stored notification and mark it delivered.

    Never raises: the notification is already committed, so a delivery
    failure only leaves `delivered_at` empty.
    """
    try:
        delivered = await sink.send(notification, assignment)
    except Exception as e:
        logger.error(f"Failed to deliver notification {notification.id} for {assignment.label}: {e}", exc_info=True)
        return False

    if delivered and notification.id is not None:
        try:
            store.mark_delivered(notification.id)
        except Exception as e:
            logger.error(f"Delivered notification {notification.id} but could not mark it: {e}", exc_info=True)
    return delivered
