"""
Slack notification sink.

Posts assignment notifications to a channel with chat.postMessage, using
Block Kit for the rich version and plain text as the fallback.
"""

import logging
from typing import Optional

import httpx

from claimguard.assignments.models import Assignment, Notification, NotificationPriority

logger = logging.getLogger(__name__)

SLACK_POST_MESSAGE_URL = "https://slack.com/api/chat.postMessage"

_PRIORITY_EMOJI = {
    NotificationPriority.URGENT: "🔴",
    NotificationPriority.HIGH: "🟡",
    NotificationPriority.NORMAL: "🟢",
}


class SlackNotificationSink:
    """Delivers notifications to one Slack channel."""

    def __init__(
        self,
        token: str,
        channel: str,
        client: Optional[httpx.AsyncClient] = None,
        api_url: str = SLACK_POST_MESSAGE_URL,
    ):
        if not token:
            raise ValueError("SLACK_BOT_TOKEN not configured")
        if not channel:
            raise ValueError("SLACK_NOTIFICATION_CHANNEL not configured")
        self.channel = channel
        self.api_url = api_url
        self._client = client
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    async def send(self, notification: Notification, assignment: Assignment) -> bool:
        payload = {
            "channel": self.channel,
            "text": build_message(notification, assignment),
            "blocks": build_blocks(notification, assignment),
        }

        if self._client is not None:
            response = await self._client.post(self.api_url, headers=self.headers, json=payload)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(self.api_url, headers=self.headers, json=payload)
        response.raise_for_status()
        result = response.json()

        if not result.get("ok"):
            error = result.get("error", "unknown_error")
            logger.error(f"Slack API error: {error}")
            return False

        logger.info(f"Notification '{notification.title}' for {assignment.label} sent to Slack")
        return True


def build_message(notification: Notification, assignment: Assignment) -> str:
    """Plain text version, shown in push notifications and old clients."""
    emoji = _PRIORITY_EMOJI.get(notification.priority, "⚪")
    lines = [
        f"{emoji} *{notification.title}*",
        "",
        f"*Issue:* {assignment.repository}#{assignment.issue_number}",
        f"*Assignee:* {assignment.assignee}",
        f"*Priority:* {notification.priority.value.upper()}",
        "",
        notification.message,
        f"• Link: {assignment.issue_url}",
    ]
    return "\n".join(lines)


def build_blocks(notification: Notification, assignment: Assignment) -> list[dict]:
    """Block Kit layout."""
    emoji = _PRIORITY_EMOJI.get(notification.priority, "⚪")
    blocks = [
        {
            "type": "header",
            "text": {
                "type": "plain_text",
                "text": f"{emoji} {notification.title}",
            },
        },
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": notification.message,
            },
        },
        {
            "type": "section",
            "fields": [
                {
                    "type": "mrkdwn",
                    "text": f"*Issue:*\n<{assignment.issue_url}|{assignment.repository}#{assignment.issue_number}>",
                },
                {
                    "type": "mrkdwn",
                    "text": f"*Assignee:*\n{assignment.assignee}",
                },
            ],
        },
    ]

    reason = notification.metadata.get("reason")
    if reason:
        blocks.append({
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"*Why:* {reason}"}],
        })

    blocks.append({"type": "divider"})
    return blocks
