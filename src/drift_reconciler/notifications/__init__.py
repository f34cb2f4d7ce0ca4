"""Operator notifications."""

from drift_reconciler.notifications.dispatcher import NotificationDispatcher
from drift_reconciler.notifications.models import (
    NotificationEvent,
    NotificationKind,
    NotificationSeverity,
)
from drift_reconciler.notifications.sinks import ChatSink, DiscordWebhookSink, SlackWebhookSink

__all__ = [
    "ChatSink",
    "DiscordWebhookSink",
    "NotificationDispatcher",
    "NotificationEvent",
    "NotificationKind",
    "NotificationSeverity",
    "SlackWebhookSink",
]
