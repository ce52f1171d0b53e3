"""Shared test fixtures for the notification test suite.

Provides an in-memory async Redis stand-in and a scriptable gateway so the
scheduler can be exercised without Docker infrastructure. Every fake call
yields to the event loop once, which lets concurrently started operations
interleave the way they would against real I/O.
"""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime, timezone

import pytest

from modules.notifications.gateway import InstalledSchedule
from modules.notifications.registry import ScheduleRegistry
from modules.notifications.scheduler import NotificationScheduler
from modules.notifications.triggers import next_fire
from modules.notifications.errors import PermissionDenied, PlatformSchedulingError

# Wednesday 2026-03-04 10:00 UTC
FIXED_NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Redis fake
# ---------------------------------------------------------------------------


class FakeRedis:
    """Dict-backed subset of ``redis.asyncio.Redis`` with ``decode_responses=True``.

    ``failures`` maps a command name to the exception it should raise.
    """

    def __init__(self):
        self.data: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.published: list[tuple[str, str]] = []
        self.failures: dict[str, Exception] = {}

    async def _call(self, command: str) -> None:
        await asyncio.sleep(0)
        if command in self.failures:
            raise self.failures[command]

    async def get(self, key):
        await self._call("get")
        return self.data.get(key)

    async def set(self, key, value, ex=None, xx=False):
        await self._call("set")
        if xx and key not in self.data:
            return None
        self.data[key] = value
        return True

    async def delete(self, *keys):
        await self._call("delete")
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            elif self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    async def mget(self, keys):
        await self._call("mget")
        return [self.data.get(k) for k in keys]

    async def sadd(self, key, *members):
        await self._call("sadd")
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def srem(self, key, *members):
        await self._call("srem")
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        return removed

    async def smembers(self, key):
        await self._call("smembers")
        return set(self.sets.get(key, set()))

    async def publish(self, channel, message):
        await self._call("publish")
        self.published.append((channel, message))
        return 1


# ---------------------------------------------------------------------------
# Gateway fake
# ---------------------------------------------------------------------------


class FakeGateway:
    """Scriptable ``NotificationGateway`` that remembers what it holds."""

    def __init__(self, clock=lambda: FIXED_NOW):
        self._clock = clock
        self._ids = itertools.count(1)
        self.active: dict[str, InstalledSchedule] = {}
        self.cancelled: list[str] = []
        self.sent: list[tuple] = []
        self.permission = True
        # Exceptions raised by successive install calls; None means succeed
        self.install_errors: list[Exception | None] = []
        self.cancel_error: Exception | None = None
        # Exceptions raised when cancelling specific handles
        self.cancel_errors: dict[str, Exception] = {}
        self.cancel_all_error: Exception | None = None

    async def install(self, trigger, content):
        await asyncio.sleep(0)
        if not self.permission:
            raise PermissionDenied("not granted")
        if self.install_errors:
            error = self.install_errors.pop(0)
            if error is not None:
                raise error
        handle = f"h{next(self._ids)}"
        now = self._clock()
        self.active[handle] = InstalledSchedule(
            handle=handle,
            trigger=trigger,
            content=content,
            next_fire_at=next_fire(trigger, now) or now,
            installed_at=now,
        )
        return handle

    async def cancel(self, handle):
        await asyncio.sleep(0)
        if self.cancel_error is not None:
            raise self.cancel_error
        if handle in self.cancel_errors:
            raise self.cancel_errors[handle]
        self.active.pop(handle, None)
        self.cancelled.append(handle)

    async def cancel_all(self):
        await asyncio.sleep(0)
        if self.cancel_all_error is not None:
            raise self.cancel_all_error
        self.cancelled.extend(self.active)
        self.active.clear()

    async def send_now(self, content, priority=None):
        await asyncio.sleep(0)
        if not self.permission:
            raise PermissionDenied("not granted")
        self.sent.append((content, priority))

    async def request_permission(self):
        return self.permission

    async def list_scheduled(self):
        await asyncio.sleep(0)
        return list(self.active.values())

    def handles_for(self, ntype) -> set[str]:
        value = getattr(ntype, "value", ntype)
        return {h for h, s in self.active.items() if s.content.data.get("type") == value}


def platform_error(message: str = "rejected") -> PlatformSchedulingError:
    return PlatformSchedulingError(message)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def registry(fake_redis):
    return ScheduleRegistry(fake_redis)


@pytest.fixture
def scheduler(registry, fake_gateway):
    return NotificationScheduler(registry, fake_gateway, clock=lambda: FIXED_NOW)
