from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any
from uuid import UUID, uuid4

from azure.cosmos import ConsistencyLevel
from azure.cosmos.aio import ContainerProxy, CosmosClient
from azure.cosmos.exceptions import CosmosHttpResponseError, CosmosResourceNotFoundError
from pydantic import ValidationError

from sunobot.helpers.cache import lru_acache
from sunobot.helpers.config_models.database import CosmosDbModel
from sunobot.helpers.http import azure_credential, azure_transport
from sunobot.helpers.logging import logger
from sunobot.helpers.monitoring import suppress
from sunobot.models.notification import PermissionEnum
from sunobot.models.readiness import ReadinessEnum
from sunobot.models.reminder import (
    ReminderModel,
    reminder_adapter,
    reminders_adapter,
)
from sunobot.persistence.icache import ICache
from sunobot.persistence.istore import IStore, StoreError


class CosmosDbStore(IStore):
    """
    Reminders as documents in a Cosmos DB container.

    Container partition key is `/owner`, a user only reads its own partition. The notification permission of a user is one more document in its partition, with a fixed ID.
    """

    _config: CosmosDbModel
    _permission_id = "permission"

    def __init__(self, cache: ICache, config: CosmosDbModel):
        super().__init__(cache)
        logger.info("Using Cosmos DB %s/%s", config.database, config.container)
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Cosmos DB service.

        This will validate the ACID properties of the database: Create, Read, Update, Delete.
        """
        test_id = str(uuid4())
        test_partition = "readiness"
        test_dict = {
            "id": test_id,  # unique id
            "owner": test_partition,  # partition key
            "test": "test",
        }
        try:
            # Test the item does not exist
            if await self._item_exists(test_id, test_partition):
                return ReadinessEnum.FAIL
            async with self._use_client() as db:
                # Create a new item
                await db.upsert_item(body=test_dict)
                # Test the item is the same
                read_item = await db.read_item(
                    item=test_id, partition_key=test_partition
                )
                assert (
                    {k: v for k, v in read_item.items() if k in test_dict} == test_dict
                )  # Check only the relevant fields, Cosmos DB adds metadata
                # Delete the item
                await db.delete_item(item=test_id, partition_key=test_partition)
            # Test the item does not exist
            if await self._item_exists(test_id, test_partition):
                return ReadinessEnum.FAIL
            return ReadinessEnum.OK
        except AssertionError:
            logger.exception("Readiness test failed")
        except CosmosHttpResponseError:
            logger.exception("Error requesting CosmosDB")
        except Exception:
            logger.exception("Unknown error while checking Cosmos DB readiness")
        return ReadinessEnum.FAIL

    async def _item_exists(self, test_id: str, partition_key: str) -> bool:
        exist = False
        async with self._use_client() as db:
            with suppress(CosmosResourceNotFoundError):
                await db.read_item(item=test_id, partition_key=partition_key)
                exist = True
        return exist

    async def reminder_get(self, reminder_id: UUID) -> ReminderModel | None:
        logger.debug("Loading reminder %s", reminder_id)

        # Try cache
        cache_key = self._cache_key_reminder_id(reminder_id)
        cached = await self._cache.get(cache_key)
        if cached:
            try:
                return reminder_adapter.validate_json(cached)
            except ValidationError as e:
                logger.debug("Parsing error: %s", e.errors())

        # Try live, owner is unknown so the query spans all partitions
        reminder = None
        try:
            with suppress(StopAsyncIteration):
                async with self._use_client() as db:
                    items = db.query_items(
                        query="SELECT * FROM c WHERE STRINGEQUALS(c.id, @id)",
                        parameters=[{"name": "@id", "value": str(reminder_id)}],
                    )
                    raw = await anext(items)
                    try:
                        reminder = reminder_adapter.validate_python(raw)
                    except ValidationError as e:
                        logger.debug("Parsing error: %s", e.errors())
        except CosmosHttpResponseError as e:
            logger.error("Error accessing CosmosDB: %s", e)

        # Update cache
        if reminder:
            await self._cache.set(
                key=cache_key,
                value=reminder_adapter.dump_json(reminder),
            )

        return reminder

    async def reminder_create(self, reminder: ReminderModel) -> ReminderModel:
        logger.debug("Creating new reminder %s", reminder.reminder_id)

        # Serialize
        data: dict[str, Any] = reminder_adapter.dump_python(
            reminder, exclude_none=True, mode="json"
        )
        data["id"] = str(reminder.reminder_id)

        # Persist, the cache is only updated once written
        try:
            async with self._use_client() as db:
                await db.create_item(body=data)
        except CosmosHttpResponseError as e:
            logger.exception("Error accessing CosmosDB")
            raise StoreError(f"Reminder {reminder.reminder_id} not saved") from e

        # Update cache
        await self._cache.set(
            key=self._cache_key_reminder_id(reminder.reminder_id),
            value=reminder_adapter.dump_json(reminder),
        )
        await self._cache.delete(self._cache_key_owner(reminder.owner))

        return reminder

    async def reminder_delete(self, reminder_id: UUID) -> bool:
        logger.debug("Deleting reminder %s", reminder_id)

        # Partition key is required to delete
        reminder = await self.reminder_get(reminder_id)
        if not reminder:
            return False

        deleted = False
        try:
            async with self._use_client() as db:
                await db.delete_item(
                    item=str(reminder_id),
                    partition_key=reminder.owner,
                )
                deleted = True
        except CosmosResourceNotFoundError:
            logger.debug("Reminder %s already deleted", reminder_id)
        except CosmosHttpResponseError:
            logger.exception("Error accessing CosmosDB")

        # Update cache
        await self._cache_invalidate(reminder)

        return deleted

    async def reminder_search_all(
        self,
        owner: str | None = None,
    ) -> list[ReminderModel]:
        logger.debug("Searching reminders, for %s", owner or "all owners")

        # Try cache, only lists of an owner are cached
        cache_key = self._cache_key_owner(owner) if owner else None
        if cache_key:
            cached = await self._cache.get(cache_key)
            if cached:
                try:
                    return reminders_adapter.validate_json(cached)
                except ValidationError as e:
                    logger.debug("Parsing error: %s", e.errors())

        # Try live
        reminders: list[ReminderModel] = []
        try:
            async with self._use_client() as db:
                # Without owner, the query spans all partitions
                kwargs = {"partition_key": owner} if owner else {}
                # Permission documents have no reminder ID
                items = db.query_items(
                    query="SELECT * FROM c WHERE IS_DEFINED(c.reminder_id) ORDER BY c.created_at DESC",
                    **kwargs,
                )
                async for raw in items:
                    if not raw:
                        continue
                    try:
                        reminders.append(reminder_adapter.validate_python(raw))
                    except ValidationError as e:
                        logger.debug("Parsing error: %s", e.errors())
        except CosmosHttpResponseError:
            logger.exception("Error accessing CosmosDB")
            return reminders  # Do not cache a partial list

        # Update cache
        if cache_key:
            await self._cache.set(
                key=cache_key,
                value=reminders_adapter.dump_json(reminders, exclude_none=True),
            )

        return reminders

    async def permission_get(self, owner: str) -> PermissionEnum | None:
        logger.debug("Loading notification permission of %s", owner)

        # Try cache
        cache_key = self._cache_key_permission(owner)
        cached = await self._cache.get(cache_key)
        if cached:
            try:
                return PermissionEnum(cached.decode())
            except ValueError:
                logger.debug("Unknown cached permission: %s", cached)

        # Try live
        permission = None
        try:
            async with self._use_client() as db:
                raw = await db.read_item(
                    item=self._permission_id,
                    partition_key=owner,
                )
                permission = PermissionEnum(raw["permission"])
        except CosmosResourceNotFoundError:
            logger.debug("No notification permission for %s", owner)
        except (KeyError, ValueError):
            logger.debug("Unknown stored permission for %s", owner)
        except CosmosHttpResponseError as e:
            logger.error("Error accessing CosmosDB: %s", e)

        # Update cache
        if permission:
            await self._cache.set(
                key=cache_key,
                value=permission.value,
            )

        return permission

    async def permission_set(self, owner: str, permission: PermissionEnum) -> None:
        logger.debug("Saving notification permission of %s: %s", owner, permission.value)

        # Persist
        try:
            async with self._use_client() as db:
                await db.upsert_item(
                    body={
                        "id": self._permission_id,  # unique id in the partition
                        "owner": owner,  # partition key
                        "permission": permission.value,
                    }
                )
        except CosmosHttpResponseError as e:
            logger.exception("Error accessing CosmosDB")
            raise StoreError(f"Notification permission of {owner} not saved") from e

        # Update cache
        await self._cache.set(
            key=self._cache_key_permission(owner),
            value=permission.value,
        )

    @lru_acache()
    async def _use_service_client(self) -> CosmosClient:
        """
        Generate the Cosmos DB client.
        """
        logger.debug("Using Cosmos DB service client for %s", self._config.endpoint)

        return CosmosClient(
            # Usage
            consistency_level=ConsistencyLevel.Strong,
            # Reliability
            connection_timeout=10,  # 10 secs
            retry_backoff_factor=0.8,
            retry_backoff_max=8,
            retry_total=3,
            # Performance
            transport=await azure_transport(),
            # Deployment
            url=self._config.endpoint,
            # Authentication
            credential=await azure_credential(),
        )

    @asynccontextmanager
    async def _use_client(self) -> AsyncGenerator[ContainerProxy]:
        """
        Generate the container client.
        """
        async with await self._use_service_client() as client:
            database = client.get_database_client(self._config.database)
            yield database.get_container_client(self._config.container)
