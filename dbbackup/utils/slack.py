"""
Slack incoming-webhook notifications.

Notifications are fire-and-forget: delivery failures are logged and never
propagated to the backup/restore pipeline.
"""

import logging
from typing import Optional

import httpx


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class SlackNotifier:
    """Posts plain-text messages to a Slack incoming webhook."""

    def __init__(self, webhook_url: Optional[str], timeout: float = DEFAULT_TIMEOUT):
        self.webhook_url = webhook_url
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def notify(self, message: str) -> bool:
        """
        Send a message to the configured webhook.

        Args:
            message: Text to post

        Returns:
            True if Slack accepted the message, False otherwise
        """
        if not self.enabled:
            logger.debug(f"Slack webhook not configured, skipping notification: {message}")
            return False

        try:
            response = httpx.post(self.webhook_url, json={'text': message}, timeout=self.timeout)
            response.raise_for_status()
            return True
        except httpx.HTTPStatusError as e:
            logger.error(f"Slack notification rejected (HTTP {e.response.status_code})")
        except httpx.HTTPError as e:
            # The webhook URL is a credential; only the error type is logged
            logger.error(f"Slack notification failed: {type(e).__name__}")
        return False
