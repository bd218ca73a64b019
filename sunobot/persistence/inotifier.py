from abc import ABC, abstractmethod

from sunobot.helpers.monitoring import start_as_current_span
from sunobot.models.notification import ReminderNotificationModel
from sunobot.models.readiness import ReadinessEnum


class INotifier(ABC):
    @abstractmethod
    @start_as_current_span("notifier_readiness")
    async def readiness(self) -> ReadinessEnum:
        pass

    @abstractmethod
    @start_as_current_span("notifier_send")
    async def send(self, notification: ReminderNotificationModel) -> bool:
        """
        Deliver a notification to the owner of the reminder.

        Returns `False` if the notification was not delivered.
        """
