import re
from datetime import UTC, date as date_type, datetime
from typing import Annotated, Literal
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    Field,
    TypeAdapter,
    field_validator,
    model_validator,
)

TIME_PATTERN = r"([0-1]?[0-9]|2[0-3]):[0-5][0-9]"
"""Time of day, 24-hour clock, minute resolution. Leading zero of the hour is optional."""


def normalize_time(value: str) -> str:
    """
    Validate a "HH:mm" time and pad the hour with a zero.

    Raises a `ValueError` if the value is not a time of day.
    """
    if not re.fullmatch(TIME_PATTERN, value):
        raise ValueError(f'Invalid time format "{value}", expected HH:mm')
    hour, minute = value.split(":")
    return f"{int(hour):02d}:{minute}"


def _empty_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class BaseReminderModel(BaseModel, frozen=True, str_strip_whitespace=True):
    # Immutable fields, reminders are never edited, only deleted
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    dosage: str | None = None
    medicine_name: str = Field(min_length=1)
    owner: str = Field(min_length=1)
    reminder_id: UUID = Field(default_factory=uuid4)
    time: str

    @field_validator("time")
    @classmethod
    def _validate_time(cls, time: str) -> str:
        return normalize_time(time)

    @field_validator("dosage")
    @classmethod
    def _validate_dosage(cls, dosage: str | None) -> str | None:
        return _empty_to_none(dosage)


class DailyReminderModel(BaseReminderModel, frozen=True):
    kind: Literal["daily"] = "daily"

    @property
    def repeat_daily(self) -> bool:
        return True


class OneOffReminderModel(BaseReminderModel, frozen=True):
    date: date_type
    kind: Literal["one_off"] = "one_off"

    @property
    def repeat_daily(self) -> bool:
        return False


ReminderModel = Annotated[
    DailyReminderModel | OneOffReminderModel,
    Field(discriminator="kind"),
]
"""A reminder is either daily or dated, never both and never none."""

reminder_adapter: TypeAdapter[ReminderModel] = TypeAdapter(ReminderModel)
reminders_adapter: TypeAdapter[list[ReminderModel]] = TypeAdapter(list[ReminderModel])


class ReminderCreateModel(BaseModel, str_strip_whitespace=True):
    """
    Reminder form, as filled by the user or by the parsing flows.
    """

    date: date_type | None = None
    dosage: str | None = None
    medicine_name: str = Field(min_length=1)
    repeat_daily: bool = False
    time: str

    @field_validator("date", mode="before")
    @classmethod
    def _validate_date(cls, date: date_type | str | None) -> date_type | str | None:
        # HTML date inputs send an empty string when left blank
        if isinstance(date, str):
            return _empty_to_none(date)
        return date

    @field_validator("dosage")
    @classmethod
    def _validate_dosage(cls, dosage: str | None) -> str | None:
        return _empty_to_none(dosage)

    @field_validator("time")
    @classmethod
    def _validate_time(cls, time: str) -> str:
        return normalize_time(time)

    @model_validator(mode="after")
    def _validate_schedule(self) -> "ReminderCreateModel":
        if self.repeat_daily and self.date:
            raise ValueError("A daily reminder cannot have a date")
        if not self.repeat_daily and not self.date:
            raise ValueError("Either select a date or check repeat daily")
        return self

    def to_reminder(self, owner: str) -> ReminderModel:
        if self.repeat_daily:
            return DailyReminderModel(
                dosage=self.dosage,
                medicine_name=self.medicine_name,
                owner=owner,
                time=self.time,
            )
        if not self.date:
            raise ValueError("Either select a date or check repeat daily")
        return OneOffReminderModel(
            date=self.date,
            dosage=self.dosage,
            medicine_name=self.medicine_name,
            owner=owner,
            time=self.time,
        )


class ReminderParsedModel(BaseModel, str_strip_whitespace=True):
    """
    Reminder understood from a sentence, as answered by the LLM.
    """

    date: date_type | None = Field(
        default=None,
        description="Date of the reminder, in yyyy-MM-dd format. Empty for daily reminders.",
    )
    dosage: str | None = Field(
        default=None,
        description="Dosage of the medicine. Empty if not mentioned.",
    )
    is_daily: bool = Field(
        description="True if the reminder repeats every day.",
    )
    medicine: str = Field(
        description="Name of the medicine.",
        min_length=1,
    )
    time: str = Field(
        description="Time of the reminder, in HH:mm 24-hour format.",
    )

    @field_validator("date", mode="before")
    @classmethod
    def _validate_date(cls, date: date_type | str | None) -> date_type | str | None:
        if isinstance(date, str):
            return _empty_to_none(date)
        return date

    @field_validator("time")
    @classmethod
    def _validate_time(cls, time: str) -> str:
        return normalize_time(time)

    def to_create(self) -> ReminderCreateModel:
        # Without a specific date, the reminder is daily
        is_daily = self.is_daily or not self.date
        return ReminderCreateModel(
            date=None if is_daily else self.date,
            dosage=self.dosage,
            medicine_name=self.medicine,
            repeat_daily=is_daily,
            time=self.time,
        )


class ReminderExtractedModel(BaseModel, str_strip_whitespace=True):
    """
    Reminder extracted from a prescription analysis.

    One object per medicine and per time of the day.
    """

    dosage: str | None = None
    medicine_name: str = Field(min_length=1)
    repeat_daily: bool = False
    time: str

    @field_validator("time")
    @classmethod
    def _validate_time(cls, time: str) -> str:
        return normalize_time(time)

    def to_create(self, today: date_type) -> ReminderCreateModel:
        # Prescriptions do not carry a date, a non-daily intake is for today
        return ReminderCreateModel(
            date=None if self.repeat_daily else today,
            dosage=self.dosage,
            medicine_name=self.medicine_name,
            repeat_daily=self.repeat_daily,
            time=self.time,
        )


class ReminderGetModel(BaseModel):
    """
    Reminder as displayed to the user, with the instant its timer is armed for.
    """

    created_at: datetime
    date: date_type | None = None
    dosage: str | None = None
    medicine_name: str
    next_fire_at: datetime | None = None
    owner: str
    reminder_id: UUID
    repeat_daily: bool
    time: str

    @classmethod
    def from_reminder(
        cls,
        reminder: ReminderModel,
        next_fire_at: datetime | None,
    ) -> "ReminderGetModel":
        return cls(
            created_at=reminder.created_at,
            date=reminder.date if isinstance(reminder, OneOffReminderModel) else None,
            dosage=reminder.dosage,
            medicine_name=reminder.medicine_name,
            next_fire_at=next_fire_at,
            owner=reminder.owner,
            reminder_id=reminder.reminder_id,
            repeat_daily=reminder.repeat_daily,
            time=reminder.time,
        )


class ReminderQueryModel(BaseModel):
    """
    Sentence to turn into a reminder form, typed or transcribed from the voice.
    """

    query: str = Field(min_length=1)
