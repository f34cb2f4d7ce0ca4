"""Chat webhook sinks."""

import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

import requests

from drift_reconciler.config.models import WebhookConfig
from drift_reconciler.notifications.models import NotificationSeverity
from drift_reconciler.utils.errors import ConfigurationError


class ChatSink(ABC):
    """Best-effort outbound chat channel."""

    name = "chat"

    @abstractmethod
    def post_message(
        self,
        text: str,
        severity: NotificationSeverity = NotificationSeverity.INFO
    ) -> bool:
        """Post a message.

        Returns:
            True if the channel accepted the message

        Raises:
            Exception: Transport errors propagate to the caller
        """
        pass


def _webhook_url(channel: str, config: WebhookConfig, url: Optional[str]) -> str:
    resolved = url or (os.getenv(config.webhook_url_env) if config.webhook_url_env else None)
    if not resolved:
        raise ConfigurationError(
            f"{channel} webhook URL not found in environment variable {config.webhook_url_env}"
        )
    return resolved


class SlackWebhookSink(ChatSink):
    """Slack incoming webhook."""

    name = "slack"

    COLORS = {
        NotificationSeverity.INFO: '#4CAF50',
        NotificationSeverity.WARNING: '#FF9800',
        NotificationSeverity.ERROR: '#F44336',
        NotificationSeverity.CRITICAL: '#B71C1C',
    }

    def __init__(self, config: WebhookConfig, url: Optional[str] = None, timeout: float = 10.0):
        self.webhook_url = _webhook_url("Slack", config, url)
        self.timeout = timeout

    def post_message(
        self,
        text: str,
        severity: NotificationSeverity = NotificationSeverity.INFO
    ) -> bool:
        title, _, body = text.partition("\n")
        if severity == NotificationSeverity.CRITICAL:
            title = f"<!channel> :rotating_light: {title}"

        payload = {
            'attachments': [{
                'color': self.COLORS[severity],
                'title': title,
                'text': body,
                'footer': 'Drift Reconciler',
                'ts': int(datetime.now(timezone.utc).timestamp())
            }]
        }

        response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return True


class DiscordWebhookSink(ChatSink):
    """Discord webhook."""

    name = "discord"

    COLORS = {
        NotificationSeverity.INFO: 0x4CAF50,
        NotificationSeverity.WARNING: 0xFF9800,
        NotificationSeverity.ERROR: 0xF44336,
        NotificationSeverity.CRITICAL: 0xB71C1C,
    }

    def __init__(self, config: WebhookConfig, url: Optional[str] = None, timeout: float = 10.0):
        self.webhook_url = _webhook_url("Discord", config, url)
        self.timeout = timeout

    def post_message(
        self,
        text: str,
        severity: NotificationSeverity = NotificationSeverity.INFO
    ) -> bool:
        title, _, body = text.partition("\n")
        payload = {
            'embeds': [{
                'title': title,
                'description': body,
                'color': self.COLORS[severity],
                'footer': {'text': 'Drift Reconciler'},
                'timestamp': datetime.now(timezone.utc).isoformat()
            }]
        }
        if severity == NotificationSeverity.CRITICAL:
            payload['content'] = '@here'

        response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        return True
