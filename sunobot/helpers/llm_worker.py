from collections.abc import Callable
from typing import TypeVar

from azure.ai.inference.aio import ChatCompletionsClient
from azure.ai.inference.models import (
    AssistantMessage,
    ChatRequestMessage,
    UserMessage,
)
from azure.core.exceptions import (
    ServiceRequestError,
    ServiceResponseError,
)
from json_repair import repair_json
from tenacity import (
    AsyncRetrying,
    retry_any,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from sunobot.helpers.config import CONFIG
from sunobot.helpers.config_models.llm import DeploymentModel as LlmDeploymentModel
from sunobot.helpers.logging import logger
from sunobot.helpers.monitoring import start_as_current_span

T = TypeVar("T")


class LlmNotConfiguredError(Exception):
    pass


class SafetyCheckError(Exception):
    pass


class MaximumTokensReachedError(Exception):
    pass


_retried_exceptions = [
    ServiceRequestError,
    ServiceResponseError,
]


@start_as_current_span("llm_completion_sync")
async def completion_sync(
    messages: list[ChatRequestMessage],
    validation_callback: Callable[[str | None], tuple[bool, str | None, T | None]],
    max_tokens: int | None = None,
    validate_json: bool = False,
    _previous_result: str | None = None,
    _retries_remaining: int = 3,
    _validation_error: str | None = None,
) -> T | None:
    """
    Returns a validated completion, `None` if it never validates.

    The validation error is given back to the LLM, for a maximum of 3 retries.
    """
    # Initialize prompts, without editing the caller list
    prompt = list(messages)
    if _validation_error:
        prompt += [
            AssistantMessage(
                content=_previous_result or "",
            ),
            UserMessage(
                content=f"A validation error occurred, please retry: {_validation_error}",
            ),
        ]

    # Generate
    res_content = await _completion_sync_worker(
        json_output=validate_json,
        max_tokens=max_tokens,
        messages=prompt,
    )
    if validate_json and res_content:
        # Try to fix JSON to catch LLM hallucinations (e.g. trailing commas, Markdown fences)
        res_content = repair_json(json_str=res_content)  # pyright: ignore

    # Validate
    is_valid, validation_error, res_object = validation_callback(res_content)
    # Retry if validation failed
    if not is_valid:
        if _retries_remaining == 0:
            logger.error("LLM validation error: %s", validation_error)
            return None
        logger.warning(
            "LLM validation error, retrying (%s retries left)",
            _retries_remaining,
        )
        return await completion_sync(
            max_tokens=max_tokens,
            messages=messages,
            validate_json=validate_json,
            validation_callback=validation_callback,
            _previous_result=res_content,
            _retries_remaining=_retries_remaining - 1,
            _validation_error=validation_error,
        )

    return res_object


async def _completion_sync_worker(
    messages: list[ChatRequestMessage],
    json_output: bool = False,
    max_tokens: int | None = None,
) -> str | None:
    """
    Returns a completion.

    Completion is first made with the fast LLM, then the slow LLM if the previous fails.
    """
    try:
        return await _completion_sync_attempts(
            is_fast=True,
            json_output=json_output,
            max_tokens=max_tokens,
            messages=messages,
        )
    except tuple(_retried_exceptions):
        logger.warning("Fast LLM unavailable, using the slow one")
    return await _completion_sync_attempts(
        is_fast=False,
        json_output=json_output,
        max_tokens=max_tokens,
        messages=messages,
    )


async def _completion_sync_attempts(
    is_fast: bool,
    messages: list[ChatRequestMessage],
    json_output: bool,
    max_tokens: int | None,
) -> str | None:
    # Init client
    client, platform = await _use_llm(is_fast)

    # Try more times, if it fails again, raise the error
    retryed = AsyncRetrying(
        reraise=True,
        retry=retry_any(
            *[retry_if_exception_type(exception) for exception in _retried_exceptions]
        ),
        stop=stop_after_attempt(3),  # A user is waiting for the answer
        wait=wait_random_exponential(multiplier=0.8, max=8),
    )
    choice = None
    async for attempt in retryed:
        with attempt:
            # Start completion
            choice = (
                await client.complete(
                    max_tokens=max_tokens,
                    messages=messages,
                    model=platform.model,
                    response_format="json_object" if json_output else None,
                    seed=platform.seed,
                    temperature=platform.temperature,
                )
            ).choices[0]
            # Azure OpenAI content filter
            if choice.finish_reason == "content_filter":
                raise SafetyCheckError(
                    f"Issue detected in generation: {choice.message.content}"
                )
            if choice.finish_reason == "length":
                raise MaximumTokensReachedError(f"Maximum tokens reached {max_tokens}")

    return choice.message.content if choice else None


async def _use_llm(
    is_fast: bool,
) -> tuple[ChatCompletionsClient, LlmDeploymentModel]:
    """
    Returns an LLM client and platform model.
    """
    if not CONFIG.llm:
        raise LlmNotConfiguredError("LLM is not configured, set the \"llm\" section")
    return await CONFIG.llm.selected(is_fast).client()
