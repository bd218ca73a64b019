from datetime import date, datetime

import pytest
from azure.ai.inference.models import ChatRequestMessage, UserMessage
from azure.core.exceptions import HttpResponseError, ServiceRequestError
from pytest_assume.plugin import assume
from pytz import utc

from sunobot.helpers import llm_worker
from sunobot.helpers.llm_worker import (
    LlmNotConfiguredError,
    MaximumTokensReachedError,
    SafetyCheckError,
)
from sunobot.helpers.reminder_parser import _system, parse_reminder

_NOW = utc.localize(datetime(2024, 1, 1, 9, 0))


class LlmMock:
    """
    Answers the given responses in order, then the last one forever. Exceptions are raised.
    """

    calls: list[list[ChatRequestMessage]]
    responses: list[str | Exception | None]

    def __init__(self, *responses: str | Exception | None) -> None:
        self.calls = []
        self.responses = list(responses)

    async def __call__(
        self,
        messages: list[ChatRequestMessage],
        json_output: bool = False,
        max_tokens: int | None = None,  # noqa: ARG002
    ) -> str | None:
        assert json_output
        self.calls.append(messages)
        res = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(res, Exception):
            raise res
        return res


def test_prompt_has_context() -> None:
    prompt = _system(_NOW)

    assume("2024-01-01" in prompt)
    assume("09:00" in prompt)
    assume('"date": "2024-01-02"' in prompt)  # Tomorrow, in the examples
    assume('"is_daily"' in prompt)


@pytest.mark.asyncio
async def test_daily(monkeypatch: pytest.MonkeyPatch) -> None:
    llm = LlmMock('{"medicine": "panadol", "time": "8:00", "is_daily": true,}')
    monkeypatch.setattr(llm_worker, "_completion_sync_worker", llm)

    form = await parse_reminder(
        query="remind me to take panadol every day at 8am", now=_NOW
    )

    assert form
    assume(form.medicine_name == "panadol")
    assume(form.time == "08:00")
    assume(form.repeat_daily)
    assume(form.date is None)
    assume(form.dosage is None)
    assume(len(llm.calls) == 1)


@pytest.mark.asyncio
async def test_dated(monkeypatch: pytest.MonkeyPatch) -> None:
    llm = LlmMock(
        '{"medicine": "aspirin", "dosage": "2 tablets", "time": "21:30", "date": "2024-01-02", "is_daily": false}'
    )
    monkeypatch.setattr(llm_worker, "_completion_sync_worker", llm)

    form = await parse_reminder(
        query="kal raat 9:30 baje aspirin ki 2 goliyan yaad dilana", now=_NOW
    )

    assert form
    assume(not form.repeat_daily)
    assume(form.date == date(2024, 1, 2))
    assume(form.dosage == "2 tablets")


@pytest.mark.asyncio
async def test_retry_on_validation_error(monkeypatch: pytest.MonkeyPatch) -> None:
    llm = LlmMock(
        '{"medicine": "panadol", "time": "25:00", "is_daily": true}',
        '{"medicine": "panadol", "time": "08:00", "is_daily": true}',
    )
    monkeypatch.setattr(llm_worker, "_completion_sync_worker", llm)

    form = await parse_reminder(query="panadol at 8", now=_NOW)

    assert form
    assume(form.time == "08:00")
    assume(len(llm.calls) == 2)
    # Error is given back to the LLM
    last = llm.calls[1][-1]
    assume(isinstance(last, UserMessage))
    assume("validation error" in str(last.content))


@pytest.mark.asyncio
async def test_never_valid(monkeypatch: pytest.MonkeyPatch) -> None:
    llm = LlmMock(None)
    monkeypatch.setattr(llm_worker, "_completion_sync_worker", llm)

    form = await parse_reminder(query="hello", now=_NOW)

    assume(form is None)
    assume(len(llm.calls) == 4)  # First try, then 3 retries


@pytest.mark.asyncio
async def test_not_configured() -> None:
    with pytest.raises(LlmNotConfiguredError):
        await parse_reminder(query="panadol at 8", now=_NOW)


@pytest.mark.parametrize(
    "error",
    [
        pytest.param(SafetyCheckError("Content filtered: violence"), id="safety_check"),
        pytest.param(MaximumTokensReachedError("Maximum tokens reached 100"), id="max_tokens"),
        pytest.param(HttpResponseError(message="Too many requests"), id="http_error"),
        pytest.param(ServiceRequestError("Connection refused"), id="unreachable"),
    ],
)
@pytest.mark.asyncio
async def test_llm_error(monkeypatch: pytest.MonkeyPatch, error: Exception) -> None:
    """
    Test a refused or failed completion is not understood, instead of raising.
    """
    llm = LlmMock(error)
    monkeypatch.setattr(llm_worker, "_completion_sync_worker", llm)

    form = await parse_reminder(query="remind me to take panadol every day at 8am", now=_NOW)

    assume(form is None)
    assume(len(llm.calls) == 1)  # Errors are not retried as validation errors
