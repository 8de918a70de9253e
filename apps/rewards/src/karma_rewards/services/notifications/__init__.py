"""Notification service package."""

from .backend import (
    InMemoryNotifier,
    NotificationLevel,
    Notifier,
    SentNotification,
    SlackWebhookNotifier,
)

__all__ = [
    "InMemoryNotifier",
    "NotificationLevel",
    "Notifier",
    "SentNotification",
    "SlackWebhookNotifier",
]
