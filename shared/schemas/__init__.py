"""Pydantic schemas shared by the notification services."""

from shared.schemas.notifications import (
    Notification,
    NotificationContent,
    NotificationPriority,
)

__all__ = [
    "Notification",
    "NotificationContent",
    "NotificationPriority",
]
