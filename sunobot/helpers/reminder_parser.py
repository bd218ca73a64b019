import json
from datetime import datetime, timedelta
from textwrap import dedent

from azure.ai.inference.models import SystemMessage, UserMessage
from azure.core.exceptions import AzureError
from pydantic import ValidationError

from sunobot.helpers.llm_worker import (
    MaximumTokensReachedError,
    SafetyCheckError,
    completion_sync,
)
from sunobot.helpers.logging import logger
from sunobot.helpers.monitoring import start_as_current_span
from sunobot.models.reminder import ReminderCreateModel, ReminderParsedModel

_system_tpl = """
    Assistant helps parse information for setting a medicine reminder. Extract the medicine name, dosage, time and date from the user's query. Determine if the reminder is daily. Query can be in English, in Urdu or a mix of both.

    # Context
    - The current date is {date}
    - The current time is {time}

    # Rules
    - The "time" field MUST be in HH:mm 24-hour format (e.g. 09:00, 17:30)
    - The "date" field MUST be in yyyy-MM-dd format; if the user says "tomorrow", calculate the date
    - If the query mentions "daily" or "every day", OR if no specific date is mentioned, "is_daily" is true and "date" is empty
    - If a specific date (like "tomorrow" or "June 1st") is mentioned, "is_daily" is false and "date" is set
    - If the dosage is not mentioned, do not include it
    - Keep the medicine name as written by the user

    # Response format
    A JSON object, following this schema:
    {format}

    # Examples

    ## Daily
    Query: remind me to take panadol every day at 8am
    Response: {{"medicine": "panadol", "time": "08:00", "is_daily": true}}

    ## Tomorrow, with a dosage
    Query: remind me to take 2 tablets of aspirin tomorrow at 9:30 pm
    Response: {{"medicine": "aspirin", "dosage": "2 tablets", "time": "21:30", "date": "{tomorrow}", "is_daily": false}}

    ## No date
    Query: set a reminder for vitamin C at 10:00
    Response: {{"medicine": "vitamin C", "time": "10:00", "is_daily": true}}
"""


def _system(now: datetime) -> str:
    return dedent(
        _system_tpl.format(
            date=now.strftime("%Y-%m-%d"),
            format=json.dumps(ReminderParsedModel.model_json_schema()),
            time=now.strftime("%H:%M"),
            tomorrow=(now + timedelta(days=1)).strftime("%Y-%m-%d"),
        )
    ).strip()


@start_as_current_span("reminder_parse")
async def parse_reminder(query: str, now: datetime) -> ReminderCreateModel | None:
    """
    Turn a sentence into a reminder form, without saving it.

    `now` gives the meaning of relative dates (e.g. "tomorrow"). Returns `None` if the LLM never answers a valid reminder, or refuses to answer. Raises `LlmNotConfiguredError` if no LLM is configured.
    """
    logger.debug("Parsing reminder from query: %s", query)

    def _validate(
        req: str | None,
    ) -> tuple[bool, str | None, ReminderCreateModel | None]:
        if not req:
            return False, "Empty response", None
        try:
            return True, None, ReminderParsedModel.model_validate_json(req).to_create()
        except ValidationError as e:
            return False, str(e), None

    try:
        form = await completion_sync(
            messages=[
                SystemMessage(content=_system(now)),
                UserMessage(content=query),
            ],
            validate_json=True,
            validation_callback=_validate,
        )
    except SafetyCheckError as e:
        logger.warning("Safety Check error: %s", e)
        return None
    except MaximumTokensReachedError:
        logger.warning("Maximum tokens reached for this completion")
        return None
    except AzureError as e:
        logger.warning("LLM request failed: %s", e)
        return None

    if not form:
        logger.warning("Error parsing reminder")
        return None

    logger.info("Parsed reminder: %s", form)
    return form
