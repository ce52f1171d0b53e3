"""Tests for notification service wiring and startup."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from modules.notifications import main
from modules.notifications.catalog import NotificationType
from shared.config import Settings, parse_list


def _settings(**overrides) -> Settings:
    defaults = dict(
        redis_url="redis://localhost:6379",
        notification_timezone="Europe/London",
        grant_permission_by_default=True,
        enabled_notification_types="daily-checkin,motivational",
    )
    defaults.update(overrides)
    return Settings(**defaults)


def test_parse_list():
    assert parse_list("daily-checkin, motivational,") == ["daily-checkin", "motivational"]
    assert parse_list('["weekly-report"]') == ["weekly-report"]
    assert parse_list("") == []


def test_build_scheduler_uses_configured_zone_and_keys(fake_redis):
    scheduler, gateway = main.build_scheduler(
        _settings(registry_key="custom:registry", notification_channel="custom:channel"),
        fake_redis,
    )

    assert scheduler.registry.key == "custom:registry"
    assert gateway.channel == "custom:channel"
    assert str(gateway.now().tzinfo) == "Europe/London"


@pytest.mark.asyncio
async def test_startup_restores_and_enables_defaults(fake_redis):
    loop = AsyncMock()
    with (
        patch("modules.notifications.main.get_redis", AsyncMock(return_value=fake_redis)),
        patch("modules.notifications.main.delivery_loop", loop),
        patch("modules.notifications.main.close_redis", AsyncMock()) as close,
    ):
        scheduler = await main.startup(_settings())
        await main.shutdown()

    assert len(scheduler.registry.entries(NotificationType.DAILY_CHECKIN)) == 1
    assert len(scheduler.registry.entries(NotificationType.MOTIVATIONAL)) == 4
    assert len(await scheduler.list_scheduled()) == 5
    loop.assert_called_once()
    close.assert_awaited_once()


@pytest.mark.asyncio
async def test_restart_replaces_instead_of_duplicating(fake_redis):
    with (
        patch("modules.notifications.main.get_redis", AsyncMock(return_value=fake_redis)),
        patch("modules.notifications.main.delivery_loop", AsyncMock()),
        patch("modules.notifications.main.close_redis", AsyncMock()),
    ):
        await main.startup(_settings())
        await main.shutdown()
        scheduler = await main.startup(_settings())
        await main.shutdown()

    assert len(await scheduler.list_scheduled()) == 5


@pytest.mark.asyncio
async def test_startup_without_permission_schedules_nothing(fake_redis):
    with (
        patch("modules.notifications.main.get_redis", AsyncMock(return_value=fake_redis)),
        patch("modules.notifications.main.delivery_loop", AsyncMock()),
        patch("modules.notifications.main.close_redis", AsyncMock()),
    ):
        scheduler = await main.startup(_settings(grant_permission_by_default=False))
        await main.shutdown()

    assert scheduler.registry.snapshot() == {}
    assert await scheduler.list_scheduled() == []
