"""Notification preferences and daily reminder scheduling.

Preferences are stored per user under ``notifications_{userId}`` in the
local key-value store, in the mobile client's camelCase JSON shape:

    {"notifications": {"workoutReminder": false, ...},
     "reminderTimes": {"workout": "...", "goal": "...", "restDay": "..."}}
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Any, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError

from thefit.services.local_cache import LocalCacheStore

logger = logging.getLogger(__name__)

DEFAULT_REMINDER_TIME = time(9, 0)


def notifications_key(user_id: int) -> str:
    return f"notifications_{user_id}"


class ReminderKind(str, Enum):
    WORKOUT = "workout"
    GOAL = "goal"
    REST_DAY = "rest_day"


class NotificationToggles(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    workout_reminder: bool = False
    goal_reminder: bool = False
    rest_day_reminder: bool = False
    achievement_notification: bool = True
    weekly_report: bool = True


class ReminderTimes(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    workout: time = DEFAULT_REMINDER_TIME
    goal: time = DEFAULT_REMINDER_TIME
    rest_day: time = DEFAULT_REMINDER_TIME

    @field_validator("workout", "goal", "rest_day", mode="before")
    @classmethod
    def _accept_datetimes(cls, value: Any) -> Any:
        # 모바일 클라이언트는 Date.toISOString() 값을 저장함
        if isinstance(value, str) and "T" in value:
            moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if moment.tzinfo is not None:
                moment = moment.astimezone()
            return moment.time().replace(second=0, microsecond=0, tzinfo=None)
        if isinstance(value, datetime):
            return value.time()
        return value


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    notifications: NotificationToggles = Field(default_factory=NotificationToggles)
    reminder_times: ReminderTimes = Field(default_factory=ReminderTimes)

    def is_enabled(self, kind: ReminderKind) -> bool:
        return getattr(self.notifications, f"{kind.value}_reminder")

    def reminder_time(self, kind: ReminderKind) -> time:
        return getattr(self.reminder_times, kind.value)


@dataclass(frozen=True)
class ReminderTemplate:
    title: str
    message: str
    actions: tuple[str, ...]


REMINDER_TEMPLATES = {
    ReminderKind.WORKOUT: ReminderTemplate(
        "🏋️ 운동 시간입니다!",
        "오늘의 운동을 시작해보세요. 건강한 하루를 만들어보세요!",
        ("운동 시작", "나중에"),
    ),
    ReminderKind.GOAL: ReminderTemplate(
        "🎯 목표 달성 체크!",
        "오늘의 운동 목표를 확인하고 달성해보세요!",
        ("목표 확인", "나중에"),
    ),
    ReminderKind.REST_DAY: ReminderTemplate(
        "😴 휴식일 알림",
        "오늘은 휴식일입니다. 충분한 휴식을 취하세요!",
        ("확인", "나중에"),
    ),
}


@dataclass(frozen=True)
class ScheduledReminder:
    kind: ReminderKind
    title: str
    message: str
    fire_at: datetime
    actions: tuple[str, ...]
    repeat: str = "day"


class ReminderScheduler(Protocol):
    """Local notification scheduler of the host platform."""

    async def schedule(self, reminder: ScheduledReminder) -> None:
        ...


def next_reminder_at(at: time, now: datetime) -> datetime:
    """Today at ``at``, or tomorrow if that moment is not in the future."""
    candidate = now.replace(
        hour=at.hour,
        minute=at.minute,
        second=at.second,
        microsecond=0,
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


async def schedule_reminders(
    preferences: NotificationPreferences,
    scheduler: ReminderScheduler,
    now: Optional[datetime] = None,
) -> list[ScheduledReminder]:
    """Hand every enabled reminder to ``scheduler`` with a daily repeat."""
    now = now or datetime.now()
    scheduled: list[ScheduledReminder] = []
    for kind in ReminderKind:
        if not preferences.is_enabled(kind):
            continue
        template = REMINDER_TEMPLATES[kind]
        reminder = ScheduledReminder(
            kind=kind,
            title=template.title,
            message=template.message,
            fire_at=next_reminder_at(preferences.reminder_time(kind), now),
            actions=template.actions,
        )
        await scheduler.schedule(reminder)
        scheduled.append(reminder)
        logger.info("Scheduled %s reminder at %s", kind.value, reminder.fire_at.isoformat())
    return scheduled


class NotificationSettingsStore:
    """Per-user notification preferences in the local key-value store."""

    def __init__(self, store: LocalCacheStore):
        self.store = store

    async def load(self, user_id: int) -> NotificationPreferences:
        """Saved preferences, or defaults when missing or unreadable."""
        key = notifications_key(user_id)
        try:
            raw = await self.store.get_item(key)
        except SQLAlchemyError as e:
            logger.error("알림 설정 불러오기 실패 (%s): %s", key, e)
            return NotificationPreferences()
        if raw is None:
            return NotificationPreferences()

        try:
            return NotificationPreferences.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error("알림 설정 불러오기 실패 (%s): %s", key, e)
            return NotificationPreferences()

    async def save(self, user_id: int, preferences: NotificationPreferences) -> None:
        """Persist preferences.

        Raises:
            SQLAlchemyError: If the store write fails.
        """
        await self.store.set_item(
            notifications_key(user_id),
            preferences.model_dump_json(by_alias=True),
        )
        logger.info("Saved notification preferences for user %s", user_id)
