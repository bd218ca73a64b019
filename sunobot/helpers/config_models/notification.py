from enum import Enum
from functools import cached_property

from pydantic import BaseModel, SecretStr, model_validator

from sunobot.helpers.pydantic_types.phone_numbers import PhoneNumber
from sunobot.models.notification import PermissionEnum
from sunobot.persistence.inotifier import INotifier


class ModeEnum(str, Enum):
    CONSOLE = "console"
    """Write notifications to the logs."""
    TWILIO = "twilio"
    """Send notifications as SMS with Twilio."""


class ConsoleModel(BaseModel, frozen=True):
    """
    Represents the configuration for console notifications.

    Model is purely empty to fit to the `INotifier` interface and the "mode" enum code organization.
    """

    @cached_property
    def instance(self) -> INotifier:
        from sunobot.persistence.console import (
            ConsoleNotifier,
        )

        return ConsoleNotifier(self)


class TwilioModel(BaseModel, frozen=True):
    account_sid: str
    auth_token: SecretStr
    phone_number: PhoneNumber

    @cached_property
    def instance(self) -> INotifier:
        from sunobot.persistence.twilio import (
            TwilioNotifier,
        )

        return TwilioNotifier(self)


class NotificationModel(BaseModel):
    console: ConsoleModel | None = ConsoleModel()  # Object is fully defined by default
    mode: ModeEnum = ModeEnum.CONSOLE
    default_permission: PermissionEnum = PermissionEnum.DEFAULT  # Until the user answers, answers are stored per user
    twilio: TwilioModel | None = None

    @model_validator(mode="after")
    def _validate_mode(self) -> "NotificationModel":
        # Selected backend must be configured
        if self.mode == ModeEnum.CONSOLE and not self.console:
            raise ValueError("Console config required")
        if self.mode == ModeEnum.TWILIO and not self.twilio:
            raise ValueError("Twilio config required")
        return self

    @cached_property
    def instance(self) -> INotifier:
        if self.mode == ModeEnum.CONSOLE:
            assert self.console
            return self.console.instance

        assert self.twilio
        return self.twilio.instance
