"""Notification service lifecycle — restore, enable defaults, run the delivery worker."""

from __future__ import annotations

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

import structlog

from modules.notifications.gateway import RedisNotificationGateway
from modules.notifications.registry import ScheduleRegistry
from modules.notifications.scheduler import NotificationScheduler
from modules.notifications.worker import delivery_loop
from shared.config import Settings, get_settings, parse_list
from shared.redis import close_redis, get_redis

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()

scheduler: NotificationScheduler | None = None
_worker_task: asyncio.Task | None = None


def build_scheduler(
    settings: Settings,
    redis_client,
) -> tuple[NotificationScheduler, RedisNotificationGateway]:
    """Wire registry, gateway and scheduler against one Redis client."""
    tz = ZoneInfo(settings.notification_timezone)

    def clock() -> datetime:
        return datetime.now(tz)

    gateway = RedisNotificationGateway(
        redis_client,
        key_prefix=settings.notification_key_prefix,
        channel=settings.notification_channel,
        grant_permission_by_default=settings.grant_permission_by_default,
        clock=clock,
    )
    registry = ScheduleRegistry(redis_client, key=settings.registry_key)
    return (
        NotificationScheduler(
            registry,
            gateway,
            clock=clock,
            streak_warning_hours=settings.streak_warning_hours,
        ),
        gateway,
    )


async def startup(settings: Settings | None = None) -> NotificationScheduler:
    global scheduler, _worker_task
    settings = settings or get_settings()
    redis_client = await get_redis(settings)
    scheduler, gateway = build_scheduler(settings, redis_client)

    await scheduler.restore_on_launch()

    if await scheduler.request_permission():
        result = await scheduler.enable(parse_list(settings.enabled_notification_types))
        for ntype, error in result.failed.items():
            logger.error("default_notification_failed", notification_type=ntype, error=str(error))
    else:
        logger.warning("notification_permission_missing")

    _worker_task = asyncio.create_task(
        delivery_loop(gateway, settings.delivery_interval_seconds)
    )
    logger.info("notification_service_ready")
    return scheduler


async def shutdown() -> None:
    global _worker_task
    if _worker_task and not _worker_task.done():
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass
    _worker_task = None
    await close_redis()
    logger.info("notification_service_shutdown")


async def run() -> None:
    await startup()
    try:
        await asyncio.Event().wait()
    finally:
        await shutdown()


if __name__ == "__main__":
    asyncio.run(run())
