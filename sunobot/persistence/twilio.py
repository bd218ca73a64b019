from pydantic import ValidationError
from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from sunobot.helpers.cache import lru_acache
from sunobot.helpers.config_models.notification import TwilioModel
from sunobot.helpers.http import twilio_http
from sunobot.helpers.logging import logger
from sunobot.helpers.pydantic_types.phone_numbers import to_phone_number
from sunobot.models.notification import ReminderNotificationModel
from sunobot.models.readiness import ReadinessEnum
from sunobot.persistence.inotifier import INotifier


class TwilioNotifier(INotifier):
    """
    Notifications as SMS.

    The reminder owner is the recipient, it must be a phone number.
    """

    _config: TwilioModel

    def __init__(self, config: TwilioModel):
        logger.info("Using Twilio from number %s", config.phone_number)
        self._config = config

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the Twilio SMS service.

        This only check if the Twilio API is reachable and the account has remaining balance.
        """
        account_sid = self._config.account_sid
        client = await self._use_client()
        try:
            account = await client.api.accounts(account_sid).fetch_async()
            balance = await account.balance.fetch_async()
            assert balance.balance and float(balance.balance) > 0
            return ReadinessEnum.OK
        except AssertionError:
            logger.exception("Readiness test failed")
        except Exception:
            logger.exception("Unknown error while checking Twilio readiness")
        return ReadinessEnum.FAIL

    async def send(self, notification: ReminderNotificationModel) -> bool:
        try:
            phone_number = to_phone_number(notification.owner)
        except ValidationError:
            logger.warning(
                "Owner %s is not a phone number, cannot send SMS", notification.owner
            )
            return False

        logger.info("Sending reminder SMS to %s", phone_number)
        client = await self._use_client()
        success = False
        try:
            res = await client.messages.create_async(
                body=notification.to_text(),
                from_=str(self._config.phone_number),
                to=phone_number,
            )
            if res.error_message:
                logger.warning(
                    "Failed SMS to %s, status %s, error %s",
                    phone_number,
                    res.error_code,
                    res.error_message,
                )
            else:
                logger.debug("SMS sent to %s", phone_number)
                success = True
        except TwilioRestException:
            logger.exception("Error sending SMS to %s", phone_number)
        return success

    @lru_acache()
    async def _use_client(self) -> Client:
        logger.debug("Using Twilio client for %s", self._config.account_sid)

        return Client(
            # Performance
            http_client=await twilio_http(),
            # Authentication
            password=self._config.auth_token.get_secret_value(),
            username=self._config.account_sid,
        )
