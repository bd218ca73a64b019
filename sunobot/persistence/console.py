from sunobot.helpers.config_models.notification import ConsoleModel
from sunobot.helpers.logging import logger
from sunobot.models.notification import ReminderNotificationModel
from sunobot.models.readiness import ReadinessEnum
from sunobot.persistence.inotifier import INotifier


class ConsoleNotifier(INotifier):
    _config: ConsoleModel

    def __init__(self, config: ConsoleModel):
        logger.warning("Using console notifications, nothing will reach the users")
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the console notifications.
        """
        return ReadinessEnum.OK  # Always ready, it's the logs :)

    async def send(self, notification: ReminderNotificationModel) -> bool:
        logger.info(
            "🔔 %s (%s) to %s",
            notification.title,
            notification.body,
            notification.owner,
        )
        return True
