"""Notification service package."""

from .backend import (
    InMemoryPushBackend,
    LoggingPushBackend,
    PushBackend,
    PushDeliveryError,
    WebhookPushBackend,
)
from .dispatch import DetachedNotifier, Notifier, pending_notification_count, wait_for_pending_notifications
from .service import (
    POINTS_ACTIVITY,
    REWARD_CANCELLED,
    REWARD_REDEEMED,
    NotificationEvent,
    NotificationPayload,
    NotificationService,
)

__all__ = [
    "DetachedNotifier",
    "InMemoryPushBackend",
    "LoggingPushBackend",
    "NotificationEvent",
    "NotificationPayload",
    "NotificationService",
    "Notifier",
    "POINTS_ACTIVITY",
    "PushBackend",
    "PushDeliveryError",
    "REWARD_CANCELLED",
    "REWARD_REDEEMED",
    "pending_notification_count",
    "wait_for_pending_notifications",
    "WebhookPushBackend",
]
