from uuid import uuid4

import pytest
from pytest_assume.plugin import assume

from sunobot.helpers.config_models.notification import (
    ConsoleModel,
    NotificationModel,
    TwilioModel,
)
from sunobot.models.notification import ReminderNotificationModel
from sunobot.models.readiness import ReadinessEnum
from sunobot.persistence.console import ConsoleNotifier
from sunobot.persistence.twilio import TwilioNotifier


def _notification(owner: str) -> ReminderNotificationModel:
    return ReminderNotificationModel(
        body="Dosage: 2 tablets.",
        owner=owner,
        reminder_id=uuid4(),
        title="Time for your medicine: Panadol",
    )


@pytest.mark.asyncio
async def test_console() -> None:
    notifier = ConsoleModel().instance

    assume(isinstance(notifier, ConsoleNotifier))
    assume(await notifier.readiness() == ReadinessEnum.OK)
    assume(await notifier.send(_notification("abc")))


@pytest.mark.asyncio
async def test_twilio_owner_not_a_phone_number() -> None:
    """
    Test a reminder of a user without phone number is not sent.
    """
    notifier = TwilioNotifier(
        TwilioModel(
            account_sid="AC00000000000000000000000000000000",
            auth_token="dummy",  # pyright: ignore
            phone_number="+14155552671",  # pyright: ignore
        )
    )

    assume(not await notifier.send(_notification("not-a-phone-number")))


def test_mode_requires_config() -> None:
    with pytest.raises(ValueError):
        NotificationModel(mode="twilio")  # pyright: ignore
