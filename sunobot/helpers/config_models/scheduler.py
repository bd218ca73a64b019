from enum import Enum
from functools import cached_property
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator
from pytz import UnknownTimeZoneError, timezone
from pytz.tzinfo import BaseTzInfo

if TYPE_CHECKING:
    from sunobot.helpers.reminder_scheduler import ReminderScheduler


class PastOneOffEnum(str, Enum):
    FIRE_NOW = "fire_now"
    """Notify right away, as the reminder is already due."""
    SKIP = "skip"
    """Do not arm the reminder, it stays in the store until deleted."""


class SchedulerModel(BaseModel, frozen=True):
    close_timeout_sec: float = Field(default=5, ge=0)
    past_one_off: PastOneOffEnum = PastOneOffEnum.SKIP
    timezone: str = "UTC"  # Wall clock used to read the reminders "HH:mm" and dates

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            timezone(value)
        except UnknownTimeZoneError as e:
            raise ValueError(f'Unknown time zone "{value}"') from e
        return value

    def tz(self) -> BaseTzInfo:
        return timezone(self.timezone)

    @cached_property
    def instance(self) -> "ReminderScheduler":
        from sunobot.helpers.config import CONFIG
        from sunobot.helpers.reminder_scheduler import (
            ReminderScheduler,
        )

        return ReminderScheduler(
            config=self,
            default_permission=CONFIG.notification.default_permission,
            notifier=CONFIG.notification.instance,
            store=CONFIG.database.instance,
        )
