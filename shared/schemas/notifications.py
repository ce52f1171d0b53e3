"""Notification schemas: scheduled content and the delivery envelope published via Redis pub/sub."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class NotificationPriority(str, Enum):
    """Delivery priority, mapped by the device onto its own importance levels."""

    MIN = "min"
    LOW = "low"
    DEFAULT = "default"
    HIGH = "high"
    MAX = "max"


class NotificationContent(BaseModel):
    """What the user sees when a notification fires."""

    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)  # always carries "type" and "screen"
    sound: bool = True
    priority: NotificationPriority = NotificationPriority.DEFAULT
    channel_id: str = "default"  # "default" | "streaks" | "motivation"


class Notification(BaseModel):
    """A fired notification, published for the device to display."""

    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
    sound: bool = True
    priority: NotificationPriority = NotificationPriority.DEFAULT
    channel_id: str = "default"
    type: str | None = None  # notification type tag copied from data["type"]
    handle: str | None = None  # None for immediate sends
    fired_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_content(
        cls,
        content: NotificationContent,
        *,
        handle: str | None = None,
        priority: NotificationPriority | None = None,
        fired_at: datetime | None = None,
    ) -> Notification:
        fields = content.model_dump()
        if priority is not None:
            fields["priority"] = priority
        if fired_at is not None:
            fields["fired_at"] = fired_at
        return cls(**fields, type=content.data.get("type"), handle=handle)
