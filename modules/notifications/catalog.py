"""Notification types, their default triggers and canned content."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from modules.notifications.errors import InvalidTriggerError
from modules.notifications.triggers import (
    MONDAY,
    SUNDAY,
    DailyAt,
    Immediate,
    RelativeDelay,
    WeeklyAt,
    relative_fire,
)
from shared.schemas.notifications import NotificationContent, NotificationPriority


class NotificationType(str, Enum):
    """Purpose of a notification; the registry is keyed by it."""

    DAILY_CHECKIN = "daily-checkin"
    MOTIVATIONAL = "motivational"
    SELFIE_REMINDER = "selfie-reminder"
    STREAK_WARNING = "streak-warning"
    WEEKLY_REPORT = "weekly-report"
    DAILY_TIP = "daily-tip"
    # Fire-and-forget, never persisted
    ACHIEVEMENT = "achievement"
    MILESTONE = "milestone"
    URGE_WARNING = "urge-warning"
    GAME_INVITATION = "game-invitation"

    @property
    def persisted(self) -> bool:
        return self in PERSISTED_TYPES


PERSISTED_TYPES = frozenset({
    NotificationType.DAILY_CHECKIN,
    NotificationType.MOTIVATIONAL,
    NotificationType.SELFIE_REMINDER,
    NotificationType.STREAK_WARNING,
    NotificationType.WEEKLY_REPORT,
    NotificationType.DAILY_TIP,
})
PERSISTED_TYPES_ORDERED = tuple(t for t in NotificationType if t in PERSISTED_TYPES)

DEFAULT_STREAK_WARNING_HOURS = 18


@dataclass(frozen=True)
class PlannedNotification:
    """One concrete schedule to install: when it fires and what it shows."""

    trigger: DailyAt | WeeklyAt | RelativeDelay | Immediate
    content: NotificationContent


def _content(
    ntype: NotificationType,
    title: str,
    body: str,
    screen: str,
    *,
    sound: bool = True,
    priority: NotificationPriority = NotificationPriority.DEFAULT,
    channel_id: str = "default",
    **extra,
) -> NotificationContent:
    return NotificationContent(
        title=title,
        body=body,
        data={"type": ntype.value, "screen": screen, **extra},
        sound=sound,
        priority=priority,
        channel_id=channel_id,
    )


# (hour, minute, title, body) for each motivational slot
MOTIVATIONAL_SLOTS = (
    (8, 0, "Good Morning!", "Today is a new opportunity to stay strong!"),
    (12, 0, "Midday Check", "You're doing great! Keep pushing forward."),
    (18, 0, "Evening Motivation", "Another day closer to your goals. Proud of you!"),
    (22, 0, "Bedtime Reminder", "Reflect on today's wins. Tomorrow is a fresh start!"),
)

DAILY_TIPS = (
    "Take 5 deep breaths when you feel an urge coming.",
    "Exercise releases natural dopamine. Try a quick workout!",
    "Stay hydrated. Dehydration can trigger cravings.",
    "Connect with someone you trust when struggling.",
    "Remember why you started this journey.",
)


# ---------------------------------------------------------------------------
# Recurring / delayed plans
# ---------------------------------------------------------------------------


def daily_checkin_plan(hour: int = 20, minute: int = 0) -> list[PlannedNotification]:
    return [
        PlannedNotification(
            trigger=DailyAt(hour=hour, minute=minute),
            content=_content(
                NotificationType.DAILY_CHECKIN,
                "Daily Check-in",
                "How are you feeling today? Log your progress!",
                "logUrge",
            ),
        )
    ]


def motivational_plan() -> list[PlannedNotification]:
    return [
        PlannedNotification(
            trigger=DailyAt(hour=hour, minute=minute),
            content=_content(
                NotificationType.MOTIVATIONAL,
                title,
                body,
                "dashboard",
                sound=False,
                priority=NotificationPriority.LOW,
                channel_id="motivation",
            ),
        )
        for hour, minute, title, body in MOTIVATIONAL_SLOTS
    ]


def selfie_reminder_plan() -> list[PlannedNotification]:
    return [
        PlannedNotification(
            trigger=WeeklyAt(weekday=SUNDAY, hour=10, minute=0),
            content=_content(
                NotificationType.SELFIE_REMINDER,
                "Progress Photo Time!",
                "Take your weekly progress photo and track your transformation!",
                "selfies",
            ),
        )
    ]


def weekly_report_plan() -> list[PlannedNotification]:
    return [
        PlannedNotification(
            trigger=WeeklyAt(weekday=MONDAY, hour=9, minute=0),
            content=_content(
                NotificationType.WEEKLY_REPORT,
                "Your Weekly Report",
                "Check out your progress from last week!",
                "stats",
            ),
        )
    ]


def daily_tip_plan(rng: random.Random | None = None) -> list[PlannedNotification]:
    tip = (rng or random).choice(DAILY_TIPS)
    return [
        PlannedNotification(
            trigger=DailyAt(hour=7, minute=0),
            content=_content(
                NotificationType.DAILY_TIP,
                "Daily Tip",
                tip,
                "dashboard",
                sound=False,
            ),
        )
    ]


def streak_warning_plan(
    habit_name: str | None,
    last_check_in: datetime,
    now: datetime,
    hours: int = DEFAULT_STREAK_WARNING_HOURS,
) -> list[PlannedNotification]:
    """Warn ``hours`` after the last check-in; empty when that moment has passed.

    Without a ``habit_name`` the body speaks of the streak in general.
    """
    fire_at = relative_fire(last_check_in, timedelta(hours=hours), now=now)
    if fire_at is None:
        return []
    return [
        PlannedNotification(
            trigger=RelativeDelay(fire_at=fire_at),
            content=_content(
                NotificationType.STREAK_WARNING,
                "Streak at Risk!",
                f"Your {habit_name} streak is about to break! Check in now."
                if habit_name
                else "Your streak is about to break! Check in now.",
                "dashboard",
                priority=NotificationPriority.HIGH,
                channel_id="streaks",
            ),
        )
    ]


def default_plan(
    ntype: NotificationType,
    now: datetime,
    streak_warning_hours: int = DEFAULT_STREAK_WARNING_HOURS,
) -> list[PlannedNotification]:
    """Canonical schedule set for a persisted type.

    The streak warning has no stored base event here, so enabling it counts
    ``now`` as the latest check-in.
    """
    if ntype is NotificationType.DAILY_CHECKIN:
        return daily_checkin_plan()
    if ntype is NotificationType.MOTIVATIONAL:
        return motivational_plan()
    if ntype is NotificationType.SELFIE_REMINDER:
        return selfie_reminder_plan()
    if ntype is NotificationType.WEEKLY_REPORT:
        return weekly_report_plan()
    if ntype is NotificationType.DAILY_TIP:
        return daily_tip_plan()
    if ntype is NotificationType.STREAK_WARNING:
        return streak_warning_plan(None, now, now, hours=streak_warning_hours)
    raise InvalidTriggerError(f"{ntype.value!r} is delivered immediately and has no schedule")


# ---------------------------------------------------------------------------
# Immediate content
# ---------------------------------------------------------------------------


def achievement_content(title: str, description: str) -> NotificationContent:
    return _content(
        NotificationType.ACHIEVEMENT,
        f"Achievement: {title}",
        description,
        "achievements",
        priority=NotificationPriority.HIGH,
    )


def milestone_content(days: int, habit_name: str) -> NotificationContent:
    return _content(
        NotificationType.MILESTONE,
        "Milestone Achieved!",
        f"{days} days clean from {habit_name}! You're amazing!",
        "achievements",
        priority=NotificationPriority.HIGH,
        days=days,
    )


def urge_warning_content(trigger_type: str) -> NotificationContent:
    return _content(
        NotificationType.URGE_WARNING,
        "Urge Warning",
        "You often feel urges around this time. Stay strong!",
        "panic",
        priority=NotificationPriority.MAX,
        trigger=trigger_type,
    )


def game_invitation_content() -> NotificationContent:
    return _content(
        NotificationType.GAME_INVITATION,
        "Feeling Urges?",
        "Try a game to distract and refocus your mind!",
        "games",
    )
