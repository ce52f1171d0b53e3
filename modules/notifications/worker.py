"""Delivery worker: fires due schedules held by the Redis gateway."""

from __future__ import annotations

import asyncio
from datetime import datetime

import structlog
from croniter import croniter

from modules.notifications.gateway import InstalledSchedule, RedisNotificationGateway, is_one_shot
from modules.notifications.triggers import cron_expr
from shared.schemas.notifications import Notification

logger = structlog.get_logger()

# How often the loop wakes up to look for due schedules
LOOP_INTERVAL_SECONDS = 10


async def delivery_loop(
    gateway: RedisNotificationGateway,
    interval_seconds: int = LOOP_INTERVAL_SECONDS,
) -> None:
    """Background loop that delivers due notifications."""
    logger.info("delivery_worker_started", channel=gateway.channel)

    while True:
        try:
            await deliver_due(gateway)
        except Exception as e:
            logger.error("delivery_loop_error", error=str(e))

        await asyncio.sleep(interval_seconds)


async def deliver_due(gateway: RedisNotificationGateway, now: datetime | None = None) -> int:
    """Fire every schedule whose time has come. Returns the number delivered."""
    now = now or gateway.now()
    due = [s for s in await gateway.list_scheduled() if s.next_fire_at <= now]
    if not due:
        return 0

    logger.info("delivering_due_schedules", count=len(due))

    delivered = 0
    for schedule in due:
        try:
            if await _fire(gateway, schedule, now):
                delivered += 1
        except Exception as e:
            logger.error("schedule_delivery_error", handle=schedule.handle, error=str(e))
    return delivered


async def _fire(gateway: RedisNotificationGateway, schedule: InstalledSchedule, now: datetime) -> bool:
    if is_one_shot(schedule):
        # Claim before publishing so a second worker pass cannot fire it again
        if not await gateway.claim_one_shot(schedule.handle):
            return False
    else:
        next_dt = croniter(cron_expr(schedule.trigger), now).get_next(datetime)
        if not await gateway.advance(schedule, next_dt):
            logger.info("schedule_cancelled_before_delivery", handle=schedule.handle)
            return False

    await gateway.publish(
        Notification.from_content(schedule.content, handle=schedule.handle, fired_at=now)
    )
    return True
