import json
import random
import string
import tempfile
from collections.abc import AsyncGenerator, Callable
from datetime import datetime
from os import environ, path
from uuid import UUID

# Isolated config, must be set before the application loads it
environ["CONFIG_JSON"] = json.dumps(
    {
        "database": {
            "mode": "sqlite",
            "sqlite": {
                "path": path.join(tempfile.mkdtemp(prefix="sunobot-"), "reminders"),
            },
        },
        "notification": {
            "default_permission": "granted",
            "mode": "console",
        },
        "scheduler": {
            "timezone": "Asia/Karachi",
        },
    }
)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from sunobot.helpers.config import CONFIG  # noqa: E402
from sunobot.helpers.config_models.scheduler import (  # noqa: E402
    PastOneOffEnum,
    SchedulerModel,
)
from sunobot.helpers.reminder_scheduler import ReminderScheduler  # noqa: E402
from sunobot.models.notification import (  # noqa: E402
    PermissionEnum,
    ReminderNotificationModel,
)
from sunobot.models.readiness import ReadinessEnum  # noqa: E402
from sunobot.models.reminder import ReminderModel  # noqa: E402
from sunobot.persistence.inotifier import INotifier  # noqa: E402
from sunobot.persistence.istore import IStore  # noqa: E402


class StoreMock(IStore):
    """
    Reminders and permissions kept in dicts, with a trace of the deletions.
    """

    deleted: list[UUID]
    permissions: dict[str, PermissionEnum]
    reminders: dict[UUID, ReminderModel]

    def __init__(self) -> None:
        super().__init__(CONFIG.cache.instance)
        self.deleted = []
        self.permissions = {}
        self.reminders = {}

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def reminder_get(self, reminder_id: UUID) -> ReminderModel | None:
        return self.reminders.get(reminder_id)

    async def reminder_create(self, reminder: ReminderModel) -> ReminderModel:
        self.reminders[reminder.reminder_id] = reminder
        return reminder

    async def reminder_delete(self, reminder_id: UUID) -> bool:
        if reminder_id not in self.reminders:
            return False
        del self.reminders[reminder_id]
        self.deleted.append(reminder_id)
        return True

    async def reminder_search_all(
        self,
        owner: str | None = None,
    ) -> list[ReminderModel]:
        return sorted(
            [
                reminder
                for reminder in self.reminders.values()
                if not owner or reminder.owner == owner
            ],
            key=lambda reminder: reminder.created_at,
            reverse=True,
        )

    async def permission_get(self, owner: str) -> PermissionEnum | None:
        return self.permissions.get(owner)

    async def permission_set(self, owner: str, permission: PermissionEnum) -> None:
        self.permissions[owner] = permission


class NotifierMock(INotifier):
    """
    Notifications kept in a list, optionally failing.
    """

    error: Exception | None = None
    sent: list[ReminderNotificationModel]

    def __init__(self) -> None:
        self.sent = []

    async def readiness(self) -> ReadinessEnum:
        return ReadinessEnum.OK

    async def send(self, notification: ReminderNotificationModel) -> bool:
        if self.error:
            raise self.error
        self.sent.append(notification)
        return True


class ClockMock:
    """
    Frozen wall clock, moved by hand.
    """

    now: datetime

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def random_text() -> str:
    text = "".join(random.choice(string.ascii_letters) for _ in range(32))
    return text


@pytest.fixture
def store() -> StoreMock:
    return StoreMock()


@pytest.fixture
def notifier() -> NotifierMock:
    return NotifierMock()


@pytest.fixture
def clock() -> ClockMock:
    tz = CONFIG.scheduler.tz()
    return ClockMock(tz.localize(datetime(2024, 1, 1, 9, 0)))


@pytest.fixture
def scheduler_factory(
    clock: ClockMock,
    notifier: NotifierMock,
    store: StoreMock,
) -> Callable[..., ReminderScheduler]:
    def _factory(
        past_one_off: PastOneOffEnum = PastOneOffEnum.SKIP,
        default_permission: PermissionEnum = PermissionEnum.GRANTED,
    ) -> ReminderScheduler:
        return ReminderScheduler(
            clock=clock,
            default_permission=default_permission,
            config=SchedulerModel(
                close_timeout_sec=0.1,
                past_one_off=past_one_off,
                timezone=CONFIG.scheduler.timezone,
            ),
            notifier=notifier,
            store=store,
        )

    return _factory


@pytest_asyncio.fixture
async def scheduler(
    scheduler_factory: Callable[..., ReminderScheduler],
) -> AsyncGenerator[ReminderScheduler]:
    scheduler = scheduler_factory()
    await scheduler.init()
    yield scheduler
    await scheduler.shutdown()
