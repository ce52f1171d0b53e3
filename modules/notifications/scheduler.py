"""Notification scheduler — keeps the registry and the platform gateway in step.

Every persisted notification type has at most one active schedule set. Replacing
a type always goes remove-from-registry, cancel-at-gateway, install, persist, so
repeated app launches never stack duplicate reminders. Operations on the same
type are serialized in call order; operations on different types interleave
freely because the registry mutates one type at a time.
"""

from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Iterable

import structlog
from pydantic import ValidationError

from modules.notifications import catalog
from modules.notifications.catalog import NotificationType, PlannedNotification
from modules.notifications.errors import (
    InvalidTriggerError,
    NotificationError,
    PermissionDenied,
    PlatformSchedulingError,
    PersistenceError,
)
from modules.notifications.gateway import InstalledSchedule, NotificationGateway
from modules.notifications.registry import RegistryMapping, ScheduledEntry, ScheduleRegistry
from modules.notifications.triggers import Immediate, RelativeDelay
from shared.schemas.notifications import NotificationContent, NotificationPriority

logger = structlog.get_logger()

PlanFactory = Callable[[datetime], Iterable[PlannedNotification]]


@dataclass
class BatchResult:
    """Outcome of ``enable``/``disable``: per-type handles and per-type failures."""

    succeeded: dict[str, list[str]] = field(default_factory=dict)
    failed: dict[str, Exception] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class ReconcileReport:
    """What ``reconcile`` changed."""

    dropped: dict[str, list[str]] = field(default_factory=dict)  # registry entries the gateway lost
    orphans_cancelled: list[str] = field(default_factory=list)  # gateway schedules nobody owned


def _coerce_type(value: NotificationType | str) -> NotificationType:
    try:
        return NotificationType(value)
    except ValueError:
        raise InvalidTriggerError(f"Unknown notification type: {value!r}") from None


def _as_notification_error(error: Exception) -> NotificationError:
    if isinstance(error, NotificationError):
        return error
    wrapped = PlatformSchedulingError(f"{type(error).__name__}: {error}")
    wrapped.__cause__ = error
    return wrapped


class NotificationScheduler:
    """Schedule, replace, cancel and restore notifications by type."""

    def __init__(
        self,
        registry: ScheduleRegistry,
        gateway: NotificationGateway,
        clock: Callable[[], datetime] | None = None,
        streak_warning_hours: int = catalog.DEFAULT_STREAK_WARNING_HOURS,
    ):
        self.registry = registry
        self.gateway = gateway
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._streak_warning_hours = streak_warning_hours
        self._locks: dict[NotificationType, asyncio.Lock] = {}

    def _lock_for(self, ntype: NotificationType) -> asyncio.Lock:
        return self._locks.setdefault(ntype, asyncio.Lock())

    async def _lock_all(self, stack: AsyncExitStack) -> None:
        # Fixed enum order; single-type operations hold one lock, so no deadlock.
        for ntype in catalog.PERSISTED_TYPES_ORDERED:
            await stack.enter_async_context(self._lock_for(ntype))

    # ------------------------------------------------------------------
    # Core protocol
    # ------------------------------------------------------------------

    async def schedule_or_replace(
        self,
        notification_type: NotificationType | str,
        plan_factory: PlanFactory | None = None,
    ) -> list[str]:
        """Replace whatever is scheduled for the type with a fresh schedule set.

        Returns the installed handles (empty when every trigger had already
        passed). Raises ``PermissionDenied``/``PlatformSchedulingError`` when no
        install succeeded; the registry then holds nothing for the type.
        """
        ntype = _coerce_type(notification_type)
        if not ntype.persisted:
            raise InvalidTriggerError(f"{ntype.value!r} is delivered immediately; use send_immediate")
        if plan_factory is None:
            plan_factory = partial(
                catalog.default_plan,
                ntype,
                streak_warning_hours=self._streak_warning_hours,
            )

        async with self._lock_for(ntype):
            now = self._clock()
            try:
                planned = self._filter_plan(ntype, plan_factory(now), now)
            except ValidationError as e:
                raise InvalidTriggerError(f"Invalid trigger for {ntype.value!r}: {e}") from e

            prior = await self.registry.remove_type(ntype)
            await self._cancel_handles(ntype, [e.handle for e in prior])

            if not planned:
                logger.info("notification_skipped", notification_type=ntype.value, reason="trigger_passed")
                return []

            installed: list[ScheduledEntry] = []
            errors: list[NotificationError] = []
            for item in planned:
                try:
                    handle = await self.gateway.install(item.trigger, item.content)
                except (PermissionDenied, PlatformSchedulingError) as e:
                    logger.warning(
                        "notification_install_failed",
                        notification_type=ntype.value,
                        trigger=item.trigger.kind,
                        error=str(e),
                    )
                    errors.append(e)
                    continue
                except Exception:
                    # Nothing is recorded yet, so earlier installs would be orphaned
                    await self._cancel_handles(ntype, [entry.handle for entry in installed])
                    raise
                installed.append(ScheduledEntry(handle=handle, type=ntype, created_at=now))

            if not installed:
                raise errors[0]

            try:
                await self.registry.replace_type(ntype, installed)
            except PersistenceError:
                # Unrecorded schedules could never be cancelled again
                await self._cancel_handles(ntype, [e.handle for e in installed])
                raise

        handles = [e.handle for e in installed]
        logger.info(
            "notification_scheduled",
            notification_type=ntype.value,
            handles=len(handles),
            replaced=len(prior),
            failed=len(errors),
        )
        return handles

    def _filter_plan(
        self,
        ntype: NotificationType,
        planned: Iterable[PlannedNotification],
        now: datetime,
    ) -> list[PlannedNotification]:
        kept: list[PlannedNotification] = []
        for item in planned:
            if isinstance(item.trigger, Immediate):
                raise InvalidTriggerError(f"Immediate trigger cannot be scheduled for {ntype.value!r}")
            if isinstance(item.trigger, RelativeDelay) and item.trigger.fire_at <= now:
                continue
            kept.append(item)
        return kept

    async def cancel_type(self, notification_type: NotificationType | str) -> list[str]:
        """Cancel everything recorded for the type. Returns the cancelled handles."""
        ntype = _coerce_type(notification_type)
        async with self._lock_for(ntype):
            prior = await self.registry.remove_type(ntype)
            handles = [e.handle for e in prior]
            await self._cancel_handles(ntype, handles)
        if handles:
            logger.info("notification_type_cancelled", notification_type=ntype.value, handles=len(handles))
        return handles

    async def cancel_all(self) -> None:
        """Wipe every schedule at the gateway and empty the registry."""
        async with AsyncExitStack() as stack:
            await self._lock_all(stack)
            try:
                await self.gateway.cancel_all()
            except Exception as e:
                logger.warning("gateway_cancel_all_failed", error=str(e))
                await self._cancel_recorded()
            finally:
                await self.registry.clear()
        logger.info("all_notifications_cancelled")

    async def _cancel_recorded(self) -> None:
        try:
            mapping = await self.registry.fetch()
        except PersistenceError as e:
            logger.warning("registry_fetch_failed", error=str(e))
            mapping = self.registry.snapshot()
        for ntype, entries in mapping.items():
            await self._cancel_handles(ntype, [entry.handle for entry in entries])

    async def _cancel_handles(self, ntype: NotificationType, handles: list[str]) -> None:
        for handle in handles:
            try:
                await self.gateway.cancel(handle)
            except Exception as e:
                logger.warning(
                    "notification_cancel_failed",
                    notification_type=ntype.value,
                    handle=handle,
                    error=str(e),
                )

    async def send_immediate(
        self,
        content: NotificationContent,
        priority: NotificationPriority | None = None,
    ) -> None:
        """Deliver right away. Never touches the registry."""
        await self.gateway.send_now(content, priority or content.priority)

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    async def enable(self, types: Iterable[NotificationType | str]) -> BatchResult:
        """Schedule each type with its default triggers. Failures are collected, not raised."""
        result = BatchResult()
        for requested in types:
            key = requested.value if isinstance(requested, NotificationType) else str(requested)
            try:
                result.succeeded[key] = await self.schedule_or_replace(requested)
            except Exception as e:
                result.failed[key] = _as_notification_error(e)
        if result.failed:
            logger.warning(
                "notification_enable_partial",
                failed={k: str(v) for k, v in result.failed.items()},
            )
        return result

    async def disable(self, types: Iterable[NotificationType | str]) -> BatchResult:
        """Cancel each type. Failures are collected, not raised."""
        result = BatchResult()
        for requested in types:
            key = requested.value if isinstance(requested, NotificationType) else str(requested)
            try:
                result.succeeded[key] = await self.cancel_type(requested)
            except Exception as e:
                result.failed[key] = _as_notification_error(e)
        if result.failed:
            logger.warning(
                "notification_disable_partial",
                failed={k: str(v) for k, v in result.failed.items()},
            )
        return result

    async def restore_on_launch(self) -> RegistryMapping:
        """Reload the persisted registry. The platform still holds the schedules themselves."""
        mapping = await self.registry.load()
        logger.info(
            "notifications_restored",
            types=sorted(t.value for t in mapping),
            handles=sum(len(v) for v in mapping.values()),
        )
        return mapping

    # ------------------------------------------------------------------
    # App-level helpers
    # ------------------------------------------------------------------

    async def record_check_in(self, habit_name: str, checked_in_at: datetime) -> list[str]:
        """Reset the streak warning so it counts from this check-in."""
        return await self.schedule_or_replace(
            NotificationType.STREAK_WARNING,
            partial(
                self._streak_plan,
                habit_name,
                checked_in_at,
            ),
        )

    def _streak_plan(self, habit_name: str, checked_in_at: datetime, now: datetime) -> list[PlannedNotification]:
        return catalog.streak_warning_plan(
            habit_name,
            checked_in_at,
            now,
            hours=self._streak_warning_hours,
        )

    async def send_achievement(self, title: str, description: str) -> None:
        await self.send_immediate(catalog.achievement_content(title, description))

    async def send_milestone(self, days: int, habit_name: str) -> None:
        await self.send_immediate(catalog.milestone_content(days, habit_name))

    async def send_urge_warning(self, trigger_type: str) -> None:
        await self.send_immediate(catalog.urge_warning_content(trigger_type))

    async def send_game_invitation(self) -> None:
        await self.send_immediate(catalog.game_invitation_content())

    async def request_permission(self) -> bool:
        return await self.gateway.request_permission()

    async def list_scheduled(self) -> list[InstalledSchedule]:
        return await self.gateway.list_scheduled()

    async def reconcile(self) -> ReconcileReport:
        """Bring the registry and the gateway back in line.

        Registry entries whose handle the gateway no longer holds are dropped;
        gateway schedules no registry entry owns are cancelled. Only meaningful
        where the gateway can enumerate what it holds.
        """
        report = ReconcileReport()
        async with AsyncExitStack() as stack:
            await self._lock_all(stack)
            active = {s.handle for s in await self.gateway.list_scheduled()}
            known: set[str] = set()

            for ntype, entries in (await self.registry.fetch()).items():
                kept = [e for e in entries if e.handle in active]
                known.update(e.handle for e in kept)
                if len(kept) != len(entries):
                    report.dropped[ntype.value] = [e.handle for e in entries if e.handle not in active]
                    await self.registry.replace_type(ntype, kept)

            for handle in sorted(active - known):
                try:
                    await self.gateway.cancel(handle)
                except Exception as e:
                    logger.warning("orphan_cancel_failed", handle=handle, error=str(e))
                    continue
                report.orphans_cancelled.append(handle)

        logger.info(
            "notifications_reconciled",
            dropped=sum(len(v) for v in report.dropped.values()),
            orphans_cancelled=len(report.orphans_cancelled),
        )
        return report
