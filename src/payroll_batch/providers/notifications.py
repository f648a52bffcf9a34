"""Notification senders."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class LoggingNotificationSender:
    """Writes notifications to the log instead of Slack or email."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, batch_id: str, subject: str, body: str) -> None:
        logger.info("Notification for batch %s: %s | %s", batch_id, subject, body)
        self.sent.append((batch_id, subject, body))
