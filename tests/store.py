from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import date

import pytest
from azure.cosmos.exceptions import CosmosHttpResponseError
from pytest_assume.plugin import assume

from sunobot.helpers.config import CONFIG
from sunobot.helpers.config_models.cache import CacheModel
from sunobot.helpers.config_models.database import CosmosDbModel
from sunobot.models.notification import PermissionEnum
from sunobot.models.readiness import ReadinessEnum
from sunobot.models.reminder import DailyReminderModel, OneOffReminderModel
from sunobot.persistence.cosmos_db import CosmosDbStore
from sunobot.persistence.istore import StoreError
from sunobot.persistence.memory import MemoryCache
from sunobot.persistence.sqlite import SqliteStore


@pytest.mark.asyncio(loop_scope="session")
@pytest.mark.repeat(10)  # Catch multi-threading and concurrency issues
async def test_acid(random_text: str) -> None:
    """
    Test ACID properties of the database backend.

    Steps:
    1. Create a mock data
    2. Test not exists
    3. Insert test data
    4. Check it exists
    5. Delete it, once

    Test is repeated 10 times to catch multi-threading and concurrency issues.
    """
    db = CONFIG.database.instance
    reminder = DailyReminderModel(
        dosage="1 tablet",
        medicine_name="Panadol",
        owner=random_text,
        time="08:00",
    )

    # Check not exists
    assume(not await db.reminder_get(reminder.reminder_id))
    assume(not await db.reminder_search_all(owner=random_text))

    # Insert test reminder
    await db.reminder_create(reminder)

    # Check point read
    assume(await db.reminder_get(reminder.reminder_id) == reminder)
    # Check search by owner, cached list must be invalidated
    assume(await db.reminder_search_all(owner=random_text) == [reminder])
    # Check search all owners
    assume(reminder in await db.reminder_search_all())

    # Delete, only once
    assume(await db.reminder_delete(reminder.reminder_id))
    assume(not await db.reminder_delete(reminder.reminder_id))

    # Check not exists, cache must be invalidated
    assume(not await db.reminder_get(reminder.reminder_id))
    assume(not await db.reminder_search_all(owner=random_text))


@pytest.mark.asyncio(loop_scope="session")
async def test_search_newest_first(random_text: str) -> None:
    db = CONFIG.database.instance
    first = await db.reminder_create(
        OneOffReminderModel(
            date=date(2024, 6, 1),
            medicine_name="Aspirin",
            owner=random_text,
            time="21:30",
        )
    )
    second = await db.reminder_create(
        DailyReminderModel(
            medicine_name="Vitamin C",
            owner=random_text,
            time="10:00",
        )
    )
    other_owner = await db.reminder_create(
        DailyReminderModel(
            medicine_name="Vitamin C",
            owner=random_text + "-other",
            time="10:00",
        )
    )

    reminders = await db.reminder_search_all(owner=random_text)

    # Variants are kept, other owners are hidden
    assume(reminders == [second, first])
    assume(isinstance(reminders[1], OneOffReminderModel))
    assume(other_owner not in reminders)


@pytest.mark.asyncio(loop_scope="session")
async def test_readiness() -> None:
    db = CONFIG.database.instance

    assert await db.readiness() == ReadinessEnum.OK


@pytest.mark.asyncio(loop_scope="session")
async def test_create_twice(random_text: str) -> None:
    db = CONFIG.database.instance
    reminder = await db.reminder_create(
        DailyReminderModel(
            medicine_name="Panadol",
            owner=random_text,
            time="08:00",
        )
    )

    with pytest.raises(StoreError):
        await db.reminder_create(reminder)
    assume(await db.reminder_search_all(owner=random_text) == [reminder])


@pytest.mark.asyncio(loop_scope="session")
async def test_permission(random_text: str) -> None:
    """
    Test the notification permission is stored per user, and survives a restart.

    Steps:
    1. Check a new user never answered
    2. Deny, then grant
    3. Check another user is untouched
    4. Read it from a new store, with an empty cache
    """
    db = CONFIG.database.instance
    other = random_text + "-other"

    # Never answered
    assume(await db.permission_get(random_text) is None)

    # Deny then grant, last answer wins
    await db.permission_set(random_text, PermissionEnum.DENIED)
    assume(await db.permission_get(random_text) == PermissionEnum.DENIED)
    await db.permission_set(random_text, PermissionEnum.GRANTED)
    assume(await db.permission_get(random_text) == PermissionEnum.GRANTED)

    # Other users untouched
    assume(await db.permission_get(other) is None)

    # Restart
    assert CONFIG.database.sqlite
    restarted = SqliteStore(
        cache=MemoryCache(CacheModel()),
        config=CONFIG.database.sqlite,
    )
    assume(await restarted.permission_get(random_text) == PermissionEnum.GRANTED)
    assume(await restarted.permission_get(other) is None)
    # Permissions are not listed as reminders
    assume(not await restarted.reminder_search_all(owner=random_text))


class CosmosContainerMock:
    """
    Container rejecting all the writes.
    """

    async def create_item(self, body: dict) -> dict:  # noqa: ARG002
        raise CosmosHttpResponseError(status_code=503, message="Service unavailable")

    async def upsert_item(self, body: dict) -> dict:  # noqa: ARG002
        raise CosmosHttpResponseError(status_code=503, message="Service unavailable")


@pytest.mark.asyncio(loop_scope="session")
async def test_cosmos_write_error(
    monkeypatch: pytest.MonkeyPatch,
    random_text: str,
) -> None:
    """
    Test a reminder refused by Cosmos DB is reported, and never cached.
    """
    cache = MemoryCache(CacheModel())
    db = CosmosDbStore(
        cache=cache,
        config=CosmosDbModel(
            container="reminders",
            database="sunobot",
            endpoint="https://localhost:8081",
        ),
    )

    @asynccontextmanager
    async def _use_client() -> AsyncGenerator[CosmosContainerMock]:
        yield CosmosContainerMock()

    monkeypatch.setattr(db, "_use_client", _use_client)
    reminder = DailyReminderModel(
        medicine_name="Panadol",
        owner=random_text,
        time="08:00",
    )

    with pytest.raises(StoreError):
        await db.reminder_create(reminder)
    assume(not await cache.get(db._cache_key_reminder_id(reminder.reminder_id)))  # noqa: SLF001

    with pytest.raises(StoreError):
        await db.permission_set(random_text, PermissionEnum.DENIED)
    assume(not await cache.get(db._cache_key_permission(random_text)))  # noqa: SLF001
