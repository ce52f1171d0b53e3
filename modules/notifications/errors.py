"""Exceptions raised by the notification scheduling core."""

from __future__ import annotations


class NotificationError(Exception):
    """Base class for notification scheduling failures."""


class PermissionDenied(NotificationError):
    """Notification permission was never granted on the device."""


class PlatformSchedulingError(NotificationError):
    """The platform gateway rejected an install, cancel or send."""


class PersistenceError(NotificationError):
    """The registry's key-value store failed to read or write."""


class InvalidTriggerError(NotificationError, ValueError):
    """A trigger or schedule request is outside its contract (bad hour, minute, weekday or type).

    Range errors from constructing trigger models directly surface as pydantic
    ``ValidationError``; the scheduler converts those raised by a plan factory.
    """
