from datetime import date

import pytest
from pydantic import ValidationError
from pytest_assume.plugin import assume

from sunobot.models.notification import ReminderNotificationModel
from sunobot.models.reminder import (
    DailyReminderModel,
    OneOffReminderModel,
    ReminderCreateModel,
    ReminderExtractedModel,
    ReminderParsedModel,
    reminder_adapter,
)


def test_create_daily() -> None:
    form = ReminderCreateModel(
        dosage="  ",
        medicine_name=" Panadol ",
        repeat_daily=True,
        time="8:00",
    )

    reminder = form.to_reminder("+923001234567")

    assert isinstance(reminder, DailyReminderModel)
    assume(reminder.repeat_daily)
    assume(reminder.medicine_name == "Panadol")
    assume(reminder.dosage is None)
    assume(reminder.time == "08:00")
    assume(reminder.owner == "+923001234567")


def test_create_one_off() -> None:
    form = ReminderCreateModel.model_validate(
        {
            "date": "2024-06-01",
            "dosage": "2 tablets",
            "medicine_name": "Aspirin",
            "time": "21:30",
        }
    )

    reminder = form.to_reminder("+923001234567")

    assert isinstance(reminder, OneOffReminderModel)
    assume(not reminder.repeat_daily)
    assume(reminder.date == date(2024, 6, 1))
    assume(reminder.dosage == "2 tablets")


@pytest.mark.parametrize(
    "body",
    [
        pytest.param(
            {"date": "2024-06-01", "medicine_name": "Aspirin", "repeat_daily": True, "time": "08:00"},
            id="daily_with_date",
        ),
        pytest.param(
            {"medicine_name": "Aspirin", "time": "08:00"},
            id="neither_daily_nor_date",
        ),
        pytest.param(
            {"date": "", "medicine_name": "Aspirin", "time": "08:00"},
            id="empty_date",
        ),
        pytest.param(
            {"medicine_name": "Aspirin", "repeat_daily": True, "time": "24:00"},
            id="malformed_time",
        ),
        pytest.param(
            {"medicine_name": "  ", "repeat_daily": True, "time": "08:00"},
            id="blank_medicine",
        ),
    ],
)
def test_create_invalid(body: dict) -> None:
    with pytest.raises(ValidationError):
        ReminderCreateModel.model_validate(body)


def test_create_unvalidated_without_date() -> None:
    form = ReminderCreateModel.model_construct(
        date=None,
        medicine_name="Aspirin",
        repeat_daily=False,
        time="08:00",
    )

    with pytest.raises(ValueError, match="Either select a date"):
        form.to_reminder("+923001234567")


def test_variant_from_storage() -> None:
    """
    Test stored JSON is read back as the right variant.
    """
    daily = reminder_adapter.validate_json(
        '{"kind": "daily", "medicine_name": "Panadol", "owner": "abc", "time": "08:00"}'
    )
    one_off = reminder_adapter.validate_json(
        '{"kind": "one_off", "date": "2024-06-01", "medicine_name": "Panadol", "owner": "abc", "time": "08:00"}'
    )

    assume(isinstance(daily, DailyReminderModel))
    assume(isinstance(one_off, OneOffReminderModel))

    # A one-off without date cannot exist
    with pytest.raises(ValidationError):
        reminder_adapter.validate_json(
            '{"kind": "one_off", "medicine_name": "Panadol", "owner": "abc", "time": "08:00"}'
        )


def test_reminder_immutable() -> None:
    reminder = DailyReminderModel(medicine_name="Panadol", owner="abc", time="08:00")

    with pytest.raises(ValidationError):
        reminder.time = "09:00"  # pyright: ignore


def test_parsed_daily_drops_date() -> None:
    form = ReminderParsedModel(
        date=date(2024, 6, 1),
        is_daily=True,
        medicine="panadol",
        time="08:00",
    ).to_create()

    assume(form.repeat_daily)
    assume(form.date is None)


def test_parsed_without_date_is_daily() -> None:
    form = ReminderParsedModel.model_validate_json(
        '{"medicine": "vitamin C", "time": "10:00", "is_daily": false, "date": ""}'
    ).to_create()

    assume(form.repeat_daily)
    assume(form.medicine_name == "vitamin C")


def test_parsed_dated() -> None:
    form = ReminderParsedModel.model_validate_json(
        '{"medicine": "aspirin", "dosage": "2 tablets", "time": "21:30", "date": "2024-01-02", "is_daily": false}'
    ).to_create()

    assume(not form.repeat_daily)
    assume(form.date == date(2024, 1, 2))
    assume(form.dosage == "2 tablets")


def test_extracted_anchored_to_today() -> None:
    today = date(2024, 1, 1)

    once = ReminderExtractedModel(medicine_name="Augmentin", time="14:00").to_create(today)
    daily = ReminderExtractedModel(
        dosage="500mg",
        medicine_name="Augmentin",
        repeat_daily=True,
        time="20:00",
    ).to_create(today)

    assume(once.date == today)
    assume(not once.repeat_daily)
    assume(daily.date is None)
    assume(daily.repeat_daily)


def test_notification_text() -> None:
    with_dosage = ReminderNotificationModel.from_reminder(
        DailyReminderModel(
            dosage="2 tablets",
            medicine_name="دوا",
            owner="abc",
            time="08:00",
        )
    )
    without_dosage = ReminderNotificationModel.from_reminder(
        DailyReminderModel(medicine_name="Panadol", owner="abc", time="08:00")
    )

    assume(with_dosage.title == "Time for your medicine: دوا")
    assume(with_dosage.body == "Dosage: 2 tablets.")
    assume(without_dosage.body == "Dosage: Not specified.")
    assume(without_dosage.to_text() == "Time for your medicine: Panadol\nDosage: Not specified.")
