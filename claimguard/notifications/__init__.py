"""Delivery of assignment notifications."""

from claimguard.config import Settings
from claimguard.notifications.sinks import (
    LoggingNotificationSink, NotificationSink, dispatch_notification
)
from claimguard.notifications.slack import SlackNotificationSink


def build_sink(settings: Settings, client=None) -> NotificationSink:
    """Slack when a token and channel are configured, the log otherwise."""
    if settings.slack_bot_token and settings.slack_notification_channel:
        return SlackNotificationSink(settings.slack_bot_token, settings.slack_notification_channel, client=client)
    return LoggingNotificationSink()


__all__ = [
    "LoggingNotificationSink",
    "NotificationSink",
    "SlackNotificationSink",
    "build_sink",
    "dispatch_notification",
]
