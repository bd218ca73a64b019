import asyncio
from collections.abc import Callable
from datetime import datetime
from uuid import UUID

from aiojobs import Job, Scheduler

from sunobot.helpers.config_models.scheduler import SchedulerModel
from sunobot.helpers.logging import logger
from sunobot.helpers.monitoring import (
    SpanAttributeEnum,
    counter_add,
    reminder_armed,
    reminder_fired,
    reminder_retired,
    start_as_current_span,
)
from sunobot.helpers.scheduling import delay_seconds, next_daily_after, next_fire_at
from sunobot.models.notification import PermissionEnum, ReminderNotificationModel
from sunobot.models.reminder import DailyReminderModel, ReminderModel
from sunobot.persistence.inotifier import INotifier
from sunobot.persistence.istore import IStore


class ReminderScheduler:
    """
    In-process timers of the reminders.

    One background job per armed reminder, sleeping until the reminder is due. When it fires, the owner is notified, then a daily reminder is armed again for the next day and a one-off reminder is deleted from the store.

    Timers are never persisted. The store is the source of truth: `init` arms every stored reminder again, from the current wall clock.
    """

    _armed: dict[UUID, tuple[Job, datetime, str]]  # Job, due instant, owner
    _clock: Callable[[], datetime]
    _config: SchedulerModel
    _default_permission: PermissionEnum
    _jobs: Scheduler | None = None
    _notifier: INotifier
    _store: IStore

    def __init__(
        self,
        config: SchedulerModel,
        notifier: INotifier,
        store: IStore,
        clock: Callable[[], datetime] | None = None,
        default_permission: PermissionEnum = PermissionEnum.DEFAULT,
    ):
        self._armed = {}
        self._clock = clock or (lambda: datetime.now(config.tz()))
        self._config = config
        self._default_permission = default_permission
        self._notifier = notifier
        self._store = store

    @start_as_current_span("scheduler_init")
    async def init(self) -> int:
        """
        Start the timers, arming every stored reminder.

        Returns the number of armed reminders.
        """
        if self._jobs is None:
            self._jobs = Scheduler(
                close_timeout=self._config.close_timeout_sec,
                limit=None,  # One job per reminder, all sleeping
            )
        return await self.rearm_all()

    @start_as_current_span("scheduler_shutdown")
    async def shutdown(self) -> None:
        """
        Stop all the timers, pending notifications are lost.
        """
        if self._jobs is None:
            return
        logger.info("Stopping %i reminder timers", len(self._armed))
        jobs = self._jobs
        self._jobs = None
        self._armed.clear()
        await jobs.close()

    @start_as_current_span("scheduler_rearm_all")
    async def rearm_all(self, owner: str | None = None) -> int:
        """
        Arm every stored reminder, of all owners if `owner` is `None`.

        Reminders of owners who did not grant the notifications are skipped. Returns the number of armed reminders.
        """
        reminders = await self._store.reminder_search_all(owner=owner)
        count = 0
        for reminder in reminders:
            if await self.schedule(reminder):
                count += 1
        logger.info("Armed %i of %i stored reminders", count, len(reminders))
        return count

    @start_as_current_span("scheduler_schedule")
    async def schedule(self, reminder: ReminderModel) -> datetime | None:
        """
        Arm the timer of a reminder, replacing the one already armed for it.

        Returns the instant the reminder is due, or `None` if it is not armed: notifications are not granted, or a one-off reminder is already past.
        """
        # Enrich span
        SpanAttributeEnum.REMINDER_ID.attribute(str(reminder.reminder_id))
        SpanAttributeEnum.REMINDER_KIND.attribute(reminder.kind)
        SpanAttributeEnum.REMINDER_OWNER.attribute(reminder.owner)

        if await self.permission(reminder.owner) != PermissionEnum.GRANTED:
            logger.debug("Notifications not granted, reminder not armed")
            return None

        fire_at = next_fire_at(
            now=self._clock(),
            past_one_off=self._config.past_one_off,
            reminder=reminder,
        )
        if not fire_at:
            logger.debug("Reminder is past, not armed")
            return None

        await self.cancel(reminder.reminder_id)
        await self._arm(reminder, fire_at)
        return fire_at

    @start_as_current_span("scheduler_cancel")
    async def cancel(self, reminder_id: UUID) -> bool:
        """
        Disarm the timer of a reminder.

        Returns `False` if no timer was armed.
        """
        armed = self._armed.pop(reminder_id, None)
        if not armed:
            return False
        job, _, _ = armed
        logger.debug("Disarming reminder %s", reminder_id)
        await job.close()
        return True

    @start_as_current_span("scheduler_disarm_all")
    async def disarm_all(self, owner: str | None = None) -> int:
        """
        Disarm every timer, of all owners if `owner` is `None`. Reminders stay in the store.

        Returns the number of disarmed reminders.
        """
        reminder_ids = [
            reminder_id
            for reminder_id, (_, _, armed_owner) in self._armed.items()
            if not owner or armed_owner == owner
        ]
        for reminder_id in reminder_ids:
            await self.cancel(reminder_id)
        logger.info("Disarmed %i reminders", len(reminder_ids))
        return len(reminder_ids)

    async def permission(self, owner: str) -> PermissionEnum:
        """
        Notification permission of a user.

        Users who never answered get the configured default.
        """
        return await self._store.permission_get(owner) or self._default_permission

    def now(self) -> datetime:
        """
        Current instant, in the time zone of the reminders.
        """
        return self._clock()

    def next_fire_at(self, reminder_id: UUID) -> datetime | None:
        """
        Instant the reminder is armed for, `None` if not armed.
        """
        armed = self._armed.get(reminder_id)
        return armed[1] if armed else None

    def armed(self) -> dict[UUID, datetime]:
        """
        Snapshot of the armed reminders and the instant they are due.
        """
        return {reminder_id: fire_at for reminder_id, (_, fire_at, _) in self._armed.items()}

    async def _arm(self, reminder: ReminderModel, fire_at: datetime) -> None:
        if self._jobs is None:
            raise RuntimeError("Scheduler not started, call init() first")

        # Enrich span
        SpanAttributeEnum.REMINDER_FIRE_AT.attribute(fire_at.isoformat())

        delay = delay_seconds(target=fire_at, now=self._clock())
        logger.info(
            "Arming reminder %s for %s, in %.0f secs",
            reminder.reminder_id,
            fire_at.isoformat(),
            delay,
        )
        job = await self._jobs.spawn(self._wait_and_fire(reminder, fire_at, delay))

        # A concurrent schedule may have armed the same reminder meanwhile
        previous = self._armed.get(reminder.reminder_id)
        self._armed[reminder.reminder_id] = (job, fire_at, reminder.owner)
        if previous:
            await previous[0].close()

        counter_add(
            metric=reminder_armed,
            value=1,
        )

    async def _wait_and_fire(
        self,
        reminder: ReminderModel,
        fire_at: datetime,
        delay: float,
    ) -> None:
        await asyncio.sleep(max(delay, 0))
        await self._fire(reminder, fire_at)

    @start_as_current_span("scheduler_fire")
    async def _fire(self, reminder: ReminderModel, fire_at: datetime) -> None:
        """
        Notify the owner, then arm the next day or retire the reminder.

        Never raises, delivery is best-effort.
        """
        # Notify
        notification = ReminderNotificationModel.from_reminder(reminder)
        try:
            if await self._notifier.send(notification):
                counter_add(
                    metric=reminder_fired,
                    value=1,
                )
            else:
                logger.warning("Notification not delivered for %s", reminder.reminder_id)
        except Exception:
            logger.exception("Error sending notification for %s", reminder.reminder_id)

        # Fired, unregister the job
        armed = self._armed.get(reminder.reminder_id)
        if armed and armed[1] == fire_at:
            self._armed.pop(reminder.reminder_id)

        # Daily, arm the next day
        if isinstance(reminder, DailyReminderModel):
            try:
                await self._rearm_daily(reminder, fire_at)
            except Exception:
                logger.exception("Error arming reminder %s again", reminder.reminder_id)
            return

        # One-off, retire
        try:
            if await self._store.reminder_delete(reminder.reminder_id):
                logger.info("Reminder %s retired", reminder.reminder_id)
                counter_add(
                    metric=reminder_retired,
                    value=1,
                )
            else:
                logger.debug("Reminder %s already deleted", reminder.reminder_id)
        except Exception:
            logger.exception("Error retiring reminder %s", reminder.reminder_id)

    async def _rearm_daily(self, reminder: DailyReminderModel, fired_at: datetime) -> None:
        if await self.permission(reminder.owner) != PermissionEnum.GRANTED:
            logger.info("Notifications not granted anymore, reminder not armed again")
            return

        fire_at: datetime | None = next_daily_after(reminder, fired_at)
        # Fired late, skip the missed days
        now = self._clock()
        if fire_at < now:
            fire_at = next_fire_at(reminder=reminder, now=now)
        if not fire_at:
            logger.error("No next instant for daily reminder %s", reminder.reminder_id)
            return

        try:
            await self._arm(reminder, fire_at)
        except RuntimeError:
            logger.warning("Scheduler stopped, reminder %s not armed again", reminder.reminder_id)
