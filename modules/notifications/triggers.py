"""Trigger models and fire-time calculators.

Weekdays use cron numbering throughout: 0=Sunday, 1=Monday ... 6=Saturday.
Python's ``datetime.weekday()`` counts from Monday, so every conversion goes
through ``_cron_weekday``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from modules.notifications.errors import InvalidTriggerError

SUNDAY, MONDAY, TUESDAY, WEDNESDAY, THURSDAY, FRIDAY, SATURDAY = range(7)


class DailyAt(BaseModel):
    """Fire every day at hour:minute (local wall clock)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["daily"] = "daily"
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)


class WeeklyAt(BaseModel):
    """Fire every week on ``weekday`` (0=Sunday) at hour:minute."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["weekly"] = "weekly"
    weekday: int = Field(ge=0, le=6)
    hour: int = Field(ge=0, le=23)
    minute: int = Field(ge=0, le=59)


class RelativeDelay(BaseModel):
    """Fire once at an absolute instant computed from a base event plus an offset."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["at"] = "at"
    fire_at: datetime


class Immediate(BaseModel):
    """Fire right away. Never installed as a schedule."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["immediate"] = "immediate"


Trigger = Annotated[
    Union[DailyAt, WeeklyAt, RelativeDelay, Immediate],
    Field(discriminator="kind"),
]


def _check_time(hour: int, minute: int) -> None:
    if not 0 <= hour <= 23:
        raise InvalidTriggerError(f"hour must be in 0..23, got {hour!r}")
    if not 0 <= minute <= 59:
        raise InvalidTriggerError(f"minute must be in 0..59, got {minute!r}")


def _check_weekday(weekday: int) -> None:
    if not 0 <= weekday <= 6:
        raise InvalidTriggerError(f"weekday must be in 0..6 (0=Sunday), got {weekday!r}")


def _cron_weekday(moment: datetime) -> int:
    return (moment.weekday() + 1) % 7


def next_daily_fire(hour: int, minute: int, now: datetime) -> datetime:
    """Next occurrence of hour:minute at or after ``now``, in ``now``'s timezone."""
    _check_time(hour, minute)
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate < now:
        candidate += timedelta(days=1)
    return candidate


def next_weekly_fire(weekday: int, hour: int, minute: int, now: datetime) -> datetime:
    """Next ``weekday`` (0=Sunday) at hour:minute at or after ``now``."""
    _check_weekday(weekday)
    _check_time(hour, minute)
    days_ahead = (weekday - _cron_weekday(now)) % 7
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    candidate += timedelta(days=days_ahead)
    if candidate < now:
        candidate += timedelta(days=7)
    return candidate


def relative_fire(
    base_event: datetime,
    offset: timedelta,
    now: datetime | None = None,
) -> datetime | None:
    """Return ``base_event + offset`` if still in the future, else None (skip)."""
    if offset < timedelta(0):
        raise InvalidTriggerError(f"offset must not be negative, got {offset!r}")
    if now is None:
        now = datetime.now(base_event.tzinfo)
    fire_at = base_event + offset
    if fire_at <= now:
        return None
    return fire_at


def next_fire(trigger: DailyAt | WeeklyAt | RelativeDelay | Immediate, now: datetime) -> datetime | None:
    """First fire time of ``trigger`` as seen from ``now``; None when it has already passed."""
    if isinstance(trigger, DailyAt):
        return next_daily_fire(trigger.hour, trigger.minute, now)
    if isinstance(trigger, WeeklyAt):
        return next_weekly_fire(trigger.weekday, trigger.hour, trigger.minute, now)
    if isinstance(trigger, RelativeDelay):
        return trigger.fire_at if trigger.fire_at > now else None
    return now


def cron_expr(trigger: DailyAt | WeeklyAt) -> str:
    """Render a recurring trigger as a five-field cron expression."""
    if isinstance(trigger, DailyAt):
        return f"{trigger.minute} {trigger.hour} * * *"
    if isinstance(trigger, WeeklyAt):
        return f"{trigger.minute} {trigger.hour} * * {trigger.weekday}"
    raise InvalidTriggerError(f"{trigger.kind!r} triggers do not recur")
