import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from uuid import UUID

from aiosqlite import Connection, Error as SqliteError, connect as sqlite_connect
from opentelemetry.instrumentation.sqlite3 import SQLite3Instrumentor
from pydantic import ValidationError

from sunobot.helpers.config_models.database import SqliteModel
from sunobot.helpers.logging import logger
from sunobot.models.notification import PermissionEnum
from sunobot.models.readiness import ReadinessEnum
from sunobot.models.reminder import (
    ReminderModel,
    reminder_adapter,
    reminders_adapter,
)
from sunobot.persistence.icache import ICache
from sunobot.persistence.istore import IStore, StoreError

# Instrument sqlite
SQLite3Instrumentor().instrument()


class SqliteStore(IStore):
    """
    Reminders as JSON documents in a local SQLite file.

    One row per reminder, the owner is duplicated in its own column for indexed listing. Notification permissions live in a side table, one row per user.
    """

    _config: SqliteModel
    _db_path: str
    _init_needed: bool

    def __init__(self, cache: ICache, config: SqliteModel):
        super().__init__(cache)
        logger.info("Using SQLite database at %s", config.full_path())
        self._config = config
        self._db_path = config.full_path()

        # Create folder and schema on first run
        self._init_needed = not os.path.isfile(self._db_path)
        if self._init_needed and config.folder():
            os.makedirs(name=config.folder(), exist_ok=True)

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the SQLite database.

        This checks if the database is reachable and can be queried.
        """
        try:
            async with self._use_db() as db:
                await db.execute("SELECT 1")
            return ReadinessEnum.OK
        except Exception:
            logger.exception("Unknown error while checking SQLite readiness")
        return ReadinessEnum.FAIL

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

        # Try live
        reminder = None
        async with self._use_db() as db:
            cursor = await db.execute(
                f"SELECT data FROM {self._config.table} WHERE id = ?",
                (str(reminder_id),),
            )
            row = await cursor.fetchone()
            if row:
                try:
                    reminder = reminder_adapter.validate_json(row[0])
                except ValidationError as e:
                    logger.debug("Parsing error: %s", e.errors())

        # Update cache
        if reminder:
            await self._cache.set(
                key=cache_key,
                value=reminder_adapter.dump_json(reminder),
            )

        return reminder

    async def reminder_create(self, reminder: ReminderModel) -> ReminderModel:
        data = reminder_adapter.dump_json(reminder, exclude_none=True).decode()
        logger.debug("Saving reminder %s: %s", reminder.reminder_id, data)

        # Update live
        try:
            async with self._use_db() as db:
                await db.execute(
                    f"INSERT INTO {self._config.table} VALUES (?, ?, ?)",
                    (
                        str(reminder.reminder_id),  # id
                        reminder.owner,  # owner
                        data,  # data
                    ),
                )
                await db.commit()
        except SqliteError as e:
            logger.exception("Error saving reminder %s", reminder.reminder_id)
            raise StoreError(f"Reminder {reminder.reminder_id} not saved") from e

        # Update cache
        await self._cache.set(
            key=self._cache_key_reminder_id(reminder.reminder_id),
            value=data,
        )
        await self._cache.delete(
            self._cache_key_owner(reminder.owner)
        )  # Invalidate the list, it misses the new reminder

        return reminder

    async def reminder_delete(self, reminder_id: UUID) -> bool:
        logger.debug("Deleting reminder %s", reminder_id)

        # Read the owner before, to invalidate its list
        async with self._use_db() as db:
            cursor = await db.execute(
                f"SELECT data FROM {self._config.table} WHERE id = ?",
                (str(reminder_id),),
            )
            row = await cursor.fetchone()
            cursor = await db.execute(
                f"DELETE FROM {self._config.table} WHERE id = ?",
                (str(reminder_id),),
            )
            deleted = cursor.rowcount > 0
            await db.commit()

        # Update cache
        await self._cache.delete(self._cache_key_reminder_id(reminder_id))
        if row:
            try:
                await self._cache_invalidate(reminder_adapter.validate_json(row[0]))
            except ValidationError as e:
                logger.debug("Parsing error: %s", e.errors())

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
        async with self._use_db() as db:
            where_clause = "WHERE owner = ?" if owner else ""
            cursor = await db.execute(
                f"SELECT data FROM {self._config.table} {where_clause} ORDER BY JSON_EXTRACT(data, '$.created_at') DESC",
                (owner,) if owner else (),
            )
            rows = await cursor.fetchall()
            for row in rows:
                if not row:
                    continue
                try:
                    reminders.append(reminder_adapter.validate_json(row[0]))
                except ValidationError as e:
                    logger.debug("Parsing error: %s", e.errors())

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
        async with self._use_db() as db:
            cursor = await db.execute(
                f"SELECT permission FROM {self._config.table}_permissions WHERE owner = ?",
                (owner,),
            )
            row = await cursor.fetchone()
            if row:
                try:
                    permission = PermissionEnum(row[0])
                except ValueError:
                    logger.debug("Unknown stored permission: %s", row[0])

        # Update cache
        if permission:
            await self._cache.set(
                key=cache_key,
                value=permission.value,
            )

        return permission

    async def permission_set(self, owner: str, permission: PermissionEnum) -> None:
        logger.debug("Saving notification permission of %s: %s", owner, permission.value)

        # Update live
        try:
            async with self._use_db() as db:
                await db.execute(
                    f"INSERT OR REPLACE INTO {self._config.table}_permissions VALUES (?, ?)",
                    (
                        owner,  # owner
                        permission.value,  # permission
                    ),
                )
                await db.commit()
        except SqliteError as e:
            logger.exception("Error saving notification permission of %s", owner)
            raise StoreError(f"Notification permission of {owner} not saved") from e

        # Update cache
        await self._cache.set(
            key=self._cache_key_permission(owner),
            value=permission.value,
        )

    async def _init_db(self, db: Connection) -> None:
        """
        Initialize the database.

        See: https://sqlite.org/cgi/src/doc/wal2/doc/wal2.md
        """
        logger.info("First run, init database")
        # Optimize performance for concurrent writes
        await db.execute("PRAGMA journal_mode=WAL")
        # Create table
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {self._config.table} (id VARCHAR(36) PRIMARY KEY, owner TEXT NOT NULL, data TEXT NOT NULL)"
        )
        # Create indexes
        await db.execute(
            f"CREATE INDEX IF NOT EXISTS {self._config.table}_owner ON {self._config.table} (owner)"
        )
        await db.execute(
            f"CREATE INDEX IF NOT EXISTS {self._config.table}_data_created_at ON {self._config.table} (JSON_EXTRACT(data, '$.created_at'))"
        )
        # Notification permission answered by each user
        await db.execute(
            f"CREATE TABLE IF NOT EXISTS {self._config.table}_permissions (owner TEXT PRIMARY KEY, permission TEXT NOT NULL)"
        )
        # Write changes to disk
        await db.commit()

    @asynccontextmanager
    async def _use_db(self) -> AsyncGenerator[Connection]:
        """
        Generate the SQLite client and close it after use.
        """
        async with sqlite_connect(
            database=self._db_path,
        ) as client:
            if self._init_needed:
                await self._init_db(client)
                self._init_needed = False
            yield client
