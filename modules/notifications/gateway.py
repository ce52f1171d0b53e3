"""Platform notification gateway: the port the scheduler depends on, and its Redis adapter.

The Redis adapter keeps one JSON record per installed schedule under
``<prefix>:schedule:<handle>`` and indexes handles in the set ``<prefix>:handles``.
Fired notifications are published as ``Notification`` envelopes on the
configured pub/sub channel; the delivery worker drives the firing.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Callable, Protocol

import structlog
from pydantic import BaseModel, Field, ValidationError
from redis.exceptions import RedisError

from modules.notifications.errors import PermissionDenied, PlatformSchedulingError
from modules.notifications.triggers import Immediate, RelativeDelay, Trigger, next_fire
from shared.schemas.notifications import (
    Notification,
    NotificationContent,
    NotificationPriority,
)

logger = structlog.get_logger()

PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"


class InstalledSchedule(BaseModel):
    """Gateway-side record of an installed schedule."""

    handle: str
    trigger: Trigger
    content: NotificationContent
    next_fire_at: datetime
    installed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationGateway(Protocol):
    """Port for installing, cancelling and sending platform notifications."""

    async def install(self, trigger: Trigger, content: NotificationContent) -> str:
        """Install a schedule and return its opaque handle."""

    async def cancel(self, handle: str) -> None:
        """Cancel one schedule. Unknown handles are ignored."""

    async def cancel_all(self) -> None:
        """Cancel every schedule."""

    async def send_now(
        self,
        content: NotificationContent,
        priority: NotificationPriority | None = None,
    ) -> None:
        """Deliver a notification immediately."""

    async def request_permission(self) -> bool:
        """Return whether the user allows notifications."""

    async def list_scheduled(self) -> list[InstalledSchedule]:
        """Schedules the platform currently holds."""


class RedisNotificationGateway:
    """Gateway backed by Redis keys for schedules and pub/sub for delivery."""

    def __init__(
        self,
        redis_client,
        *,
        key_prefix: str = "notifications",
        channel: str = "notifications:mobile",
        grant_permission_by_default: bool = False,
        clock: Callable[[], datetime] | None = None,
    ):
        self._redis = redis_client
        self._prefix = key_prefix
        self._channel = channel
        self._grant_by_default = grant_permission_by_default
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def channel(self) -> str:
        return self._channel

    def now(self) -> datetime:
        return self._clock()

    def _schedule_key(self, handle: str) -> str:
        return f"{self._prefix}:schedule:{handle}"

    @property
    def _handles_key(self) -> str:
        return f"{self._prefix}:handles"

    @property
    def _permission_key(self) -> str:
        return f"{self._prefix}:permission"

    # ------------------------------------------------------------------
    # Permission
    # ------------------------------------------------------------------

    async def request_permission(self) -> bool:
        try:
            status = await self._redis.get(self._permission_key)
            if status is None and self._grant_by_default:
                await self._redis.set(self._permission_key, PERMISSION_GRANTED)
                status = PERMISSION_GRANTED
                logger.info("notification_permission_granted_by_default")
        except RedisError as e:
            raise PlatformSchedulingError(f"Permission lookup failed: {e}") from e
        return status == PERMISSION_GRANTED

    async def set_permission(self, granted: bool) -> None:
        """Record the user's answer to the permission prompt."""
        value = PERMISSION_GRANTED if granted else PERMISSION_DENIED
        try:
            await self._redis.set(self._permission_key, value)
        except RedisError as e:
            raise PlatformSchedulingError(f"Failed to store permission: {e}") from e

    async def _require_permission(self) -> None:
        if not await self.request_permission():
            raise PermissionDenied("Notification permission has not been granted")

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def install(self, trigger: Trigger, content: NotificationContent) -> str:
        if isinstance(trigger, Immediate):
            raise PlatformSchedulingError("Immediate notifications are delivered with send_now")

        await self._require_permission()

        now = self.now()
        fire_at = next_fire(trigger, now)
        if fire_at is None:
            raise PlatformSchedulingError(f"Trigger already passed: {trigger!r}")

        handle = str(uuid.uuid4())
        record = InstalledSchedule(
            handle=handle,
            trigger=trigger,
            content=content,
            next_fire_at=fire_at,
            installed_at=now,
        )
        try:
            await self._redis.set(self._schedule_key(handle), record.model_dump_json())
            await self._redis.sadd(self._handles_key, handle)
        except RedisError as e:
            raise PlatformSchedulingError(f"Failed to install schedule: {e}") from e

        logger.info(
            "schedule_installed",
            handle=handle,
            trigger=trigger.kind,
            notification_type=content.data.get("type"),
            next_fire_at=fire_at.isoformat(),
        )
        return handle

    async def cancel(self, handle: str) -> None:
        try:
            await self._redis.delete(self._schedule_key(handle))
            await self._redis.srem(self._handles_key, handle)
        except RedisError as e:
            raise PlatformSchedulingError(f"Failed to cancel {handle}: {e}") from e
        logger.debug("schedule_cancelled", handle=handle)

    async def cancel_all(self) -> None:
        try:
            handles = await self._redis.smembers(self._handles_key)
            keys = [self._schedule_key(h) for h in handles]
            await self._redis.delete(self._handles_key, *keys)
        except RedisError as e:
            raise PlatformSchedulingError(f"Failed to cancel all schedules: {e}") from e
        logger.info("all_schedules_cancelled", count=len(keys))

    async def list_scheduled(self) -> list[InstalledSchedule]:
        try:
            handles = sorted(await self._redis.smembers(self._handles_key))
            if not handles:
                return []
            raws = await self._redis.mget([self._schedule_key(h) for h in handles])
        except RedisError as e:
            raise PlatformSchedulingError(f"Failed to list schedules: {e}") from e

        schedules: list[InstalledSchedule] = []
        for handle, raw in zip(handles, raws):
            if raw is None:
                # Index entry left behind by an interrupted cancel
                continue
            try:
                schedules.append(InstalledSchedule.model_validate_json(raw))
            except ValidationError as e:
                logger.warning("schedule_record_invalid", handle=handle, error=str(e))
        return schedules

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def send_now(
        self,
        content: NotificationContent,
        priority: NotificationPriority | None = None,
    ) -> None:
        await self._require_permission()
        await self.publish(Notification.from_content(content, priority=priority, fired_at=self.now()))

    async def publish(self, notification: Notification) -> None:
        try:
            await self._redis.publish(self._channel, notification.model_dump_json())
        except RedisError as e:
            raise PlatformSchedulingError(f"Failed to publish notification: {e}") from e
        logger.info(
            "notification_published",
            channel=self._channel,
            handle=notification.handle,
            notification_type=notification.type,
        )

    async def claim_one_shot(self, handle: str) -> bool:
        """Remove a one-shot schedule; True only for the caller that actually removed it."""
        removed = await self._redis.delete(self._schedule_key(handle))
        await self._redis.srem(self._handles_key, handle)
        return bool(removed)

    async def advance(self, schedule: InstalledSchedule, next_fire_at: datetime) -> bool:
        """Move a recurring schedule forward; False if it was cancelled meanwhile."""
        updated = schedule.model_copy(update={"next_fire_at": next_fire_at})
        stored = await self._redis.set(
            self._schedule_key(schedule.handle),
            updated.model_dump_json(),
            xx=True,
        )
        return bool(stored)


def is_one_shot(schedule: InstalledSchedule) -> bool:
    return isinstance(schedule.trigger, RelativeDelay)
