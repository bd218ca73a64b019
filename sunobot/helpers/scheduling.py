"""
Time arithmetic of the reminders.

Pure functions, the clock is always passed in. Instants are aware datetimes; reminder times are wall-clock times in the time zone of `now`.
"""

from datetime import date, datetime, time, timedelta, tzinfo

from sunobot.helpers.config_models.scheduler import PastOneOffEnum
from sunobot.models.reminder import (
    OneOffReminderModel,
    ReminderModel,
    normalize_time,
)


def parse_time(value: str) -> tuple[int, int]:
    """
    Split a "HH:mm" time into hour and minute.

    Raises a `ValueError` if the value is not a time of day.
    """
    hour, minute = normalize_time(value).split(":")
    return int(hour), int(minute)


def at(day: date, value: str, tz: tzinfo) -> datetime:
    """
    Instant of a wall-clock time on a calendar day, seconds and microseconds zeroed.
    """
    hour, minute = parse_time(value)
    naive = datetime.combine(day, time(hour=hour, minute=minute))
    # pytz zones need localize to pick the right UTC offset, replace would use the LMT one
    localize = getattr(tz, "localize", None)
    if localize:
        return localize(naive)
    return naive.replace(tzinfo=tz)


def next_fire_at(
    reminder: ReminderModel,
    now: datetime,
    past_one_off: PastOneOffEnum = PastOneOffEnum.SKIP,
) -> datetime | None:
    """
    Next instant a reminder is due, from `now`.

    Daily reminders are due today, or tomorrow if today's slot passed. One-off reminders are due at their date; if already passed, `None` is returned, or `now` with the `FIRE_NOW` policy.
    """
    tz = now.tzinfo
    if not tz:
        raise ValueError("Clock must be time zone aware")

    # One-off, at its own date
    if isinstance(reminder, OneOffReminderModel):
        target = at(reminder.date, reminder.time, tz)
        if target >= now:
            return target
        if past_one_off == PastOneOffEnum.FIRE_NOW:
            return now
        return None

    # Daily, today or tomorrow
    today = now.date()
    target = at(today, reminder.time, tz)
    if target < now:
        target = at(today + timedelta(days=1), reminder.time, tz)
    return target


def next_daily_after(reminder: ReminderModel, fired_at: datetime) -> datetime:
    """
    Same wall-clock time, on the day after the instant that just fired.
    """
    tz = fired_at.tzinfo
    if not tz:
        raise ValueError("Clock must be time zone aware")
    # Read the calendar day in the zone, a pytz datetime keeps a fixed offset
    local = fired_at.astimezone(tz)
    return at(local.date() + timedelta(days=1), reminder.time, tz)


def delay_seconds(target: datetime, now: datetime) -> float:
    """
    Seconds to wait until `target`, negative if already passed.

    Computed on absolute instants, so a DST change between both is accounted for.
    """
    return (target - now).total_seconds()
