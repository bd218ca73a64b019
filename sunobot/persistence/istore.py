from abc import ABC, abstractmethod
from uuid import UUID

from sunobot.helpers.monitoring import start_as_current_span
from sunobot.models.notification import PermissionEnum
from sunobot.models.readiness import ReadinessEnum
from sunobot.models.reminder import ReminderModel
from sunobot.persistence.icache import ICache


class StoreError(Exception):
    """
    A change could not be persisted.
    """


class IStore(ABC):
    """
    Source of truth for the reminders, and for the notification permission of each user.

    Reminders are created and deleted, never updated.
    """

    _cache: ICache

    def __init__(self, cache: ICache):
        self._cache = cache

    @abstractmethod
    @start_as_current_span("store_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_get")
    async def reminder_get(
        self,
        reminder_id: UUID,
    ) -> ReminderModel | None:
        pass

    @abstractmethod
    @start_as_current_span("store_reminder_create")
    async def reminder_create(
        self,
        reminder: ReminderModel,
    ) -> ReminderModel:
        """
        Persist a new reminder.

        Raises `StoreError` if it is not persisted.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_delete")
    async def reminder_delete(
        self,
        reminder_id: UUID,
    ) -> bool:
        """
        Delete a reminder.

        Returns `False` if the reminder does not exist.
        """

    @abstractmethod
    @start_as_current_span("store_reminder_search_all")
    async def reminder_search_all(
        self,
        owner: str | None = None,
    ) -> list[ReminderModel]:
        """
        List reminders, newest first.

        All owners are listed if `owner` is `None`.
        """

    @abstractmethod
    @start_as_current_span("store_permission_get")
    async def permission_get(
        self,
        owner: str,
    ) -> PermissionEnum | None:
        """
        Notification permission answered by a user.

        Returns `None` if the user never answered.
        """

    @abstractmethod
    @start_as_current_span("store_permission_set")
    async def permission_set(
        self,
        owner: str,
        permission: PermissionEnum,
    ) -> None:
        """
        Persist the notification permission of a user, replacing the previous answer.

        Raises `StoreError` if it is not persisted.
        """

    def _cache_key_reminder_id(self, reminder_id: UUID) -> str:
        return f"{self.__class__.__name__}-reminder_id-{reminder_id}"

    def _cache_key_owner(self, owner: str) -> str:
        return f"{self.__class__.__name__}-owner-{owner}"

    def _cache_key_permission(self, owner: str) -> str:
        return f"{self.__class__.__name__}-permission-{owner}"

    async def _cache_invalidate(self, reminder: ReminderModel) -> None:
        """
        Forget the cached point read and the cached list of the owner.
        """
        await self._cache.delete(self._cache_key_reminder_id(reminder.reminder_id))
        await self._cache.delete(self._cache_key_owner(reminder.owner))
