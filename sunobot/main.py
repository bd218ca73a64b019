import asyncio
from contextlib import asynccontextmanager
from http import HTTPStatus
from typing import Annotated
from uuid import UUID

from fastapi import (
    FastAPI,
    HTTPException,
    Query,
    Request,
    Response,
)
from fastapi.exceptions import RequestValidationError, ValidationException
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from sunobot.helpers.config import CONFIG
from sunobot.helpers.http import aiohttp_session
from sunobot.helpers.llm_worker import LlmNotConfiguredError
from sunobot.helpers.logging import logger
from sunobot.helpers.monitoring import SpanAttributeEnum, start_as_current_span
from sunobot.helpers.reminder_parser import parse_reminder
from sunobot.models.error import ErrorInnerModel, ErrorModel
from sunobot.models.notification import PermissionEnum, PermissionModel
from sunobot.models.readiness import ReadinessCheckModel, ReadinessEnum, ReadinessModel
from sunobot.models.reminder import (
    ReminderCreateModel,
    ReminderExtractedModel,
    ReminderGetModel,
    ReminderModel,
    ReminderQueryModel,
)
from sunobot.persistence.istore import StoreError

# First log
logger.info(
    "sunobot-reminders v%s",
    CONFIG.version,
)

# Persistences
_cache = CONFIG.cache.instance
_db = CONFIG.database.instance
_notifier = CONFIG.notification.instance
_scheduler = CONFIG.scheduler.instance

Owner = Annotated[str, Query(min_length=1)]


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    # Arm the stored reminders, timers do not survive a restart
    await _scheduler.init()

    try:
        yield

    # Stop timers
    finally:
        await _scheduler.shutdown()

    # Close HTTP session
    await (await aiohttp_session()).close()


# FastAPI
api = FastAPI(
    description="Medicine reminders of a bilingual (Urdu/English) assistant. Reminders are stored per user, notified when due, repeated daily or retired once fired.",
    lifespan=lifespan,
    title="sunobot-reminders",
    version=CONFIG.version,
)


@api.get("/health/liveness")
@start_as_current_span("health_liveness_get")
async def health_liveness_get() -> None:
    """
    Check if the service is running.

    No parameters are expected.

    Returns a 200 OK if the service is technically running.
    """
    return


@api.get(
    "/health/readiness",
    status_code=HTTPStatus.OK,
)
@start_as_current_span("health_readiness_get")
async def health_readiness_get() -> JSONResponse:
    """
    Check if the service is ready to serve requests.

    No parameters are expected. Services tested are: cache, store, notifier.

    Returns a 200 OK if the service is ready to serve requests. If the service is not ready, it should return a 503 Service Unavailable.
    """
    # Check all components in parallel
    (
        cache_check,
        store_check,
        notifier_check,
    ) = await asyncio.gather(
        _cache.readiness(),
        _db.readiness(),
        _notifier.readiness(),
    )
    readiness = ReadinessModel(
        status=ReadinessEnum.OK,
        checks=[
            ReadinessCheckModel(id="cache", status=cache_check),
            ReadinessCheckModel(id="store", status=store_check),
            ReadinessCheckModel(id="notifier", status=notifier_check),
        ],
    )
    # If one of the checks fails, the whole readiness fails
    status_code = HTTPStatus.OK
    for check in readiness.checks:
        if check.status != ReadinessEnum.OK:
            readiness.status = ReadinessEnum.FAIL
            status_code = HTTPStatus.SERVICE_UNAVAILABLE
            break
    return JSONResponse(
        content=readiness.model_dump(mode="json"),
        status_code=status_code,
    )


@api.get("/reminders")
@start_as_current_span("reminder_list_get")
async def reminder_list_get(owner: Owner) -> list[ReminderGetModel]:
    """
    REST API to list the reminders of a user.

    Parameters:
    - owner: User account owning the reminders

    Returns a list of reminder objects `ReminderGetModel`, newest first, in JSON format.
    """
    # Enrich span
    SpanAttributeEnum.REMINDER_OWNER.attribute(owner)

    reminders = await _db.reminder_search_all(owner=owner)
    return [_to_get(reminder) for reminder in reminders]


@api.get("/reminders/{reminder_id}")
@start_as_current_span("reminder_get")
async def reminder_get(reminder_id: UUID) -> ReminderGetModel:
    """
    REST API to get a reminder.

    Parameters:
    - reminder_id: Reminder ID

    Returns a single reminder object `ReminderGetModel`, in JSON format.
    """
    # Enrich span
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))

    reminder = await _db.reminder_get(reminder_id)
    if not reminder:
        raise HTTPException(
            detail=f"Reminder {reminder_id} not found",
            status_code=HTTPStatus.NOT_FOUND,
        )
    return _to_get(reminder)


@api.post(
    "/reminders",
    status_code=HTTPStatus.CREATED,
)
@start_as_current_span("reminder_post")
async def reminder_post(owner: Owner, request: Request) -> ReminderGetModel:
    """
    REST API to create a reminder, and arm it.

    Parameters:
    - owner: User account owning the reminder

    Required body parameters is a JSON object `ReminderCreateModel`.

    Returns a single reminder object `ReminderGetModel`, in JSON format. Reminder is not armed if notifications are not granted, or if a one-off reminder is already past.
    """
    try:
        body = await request.json()
        form = ReminderCreateModel.model_validate(body)
    except ValidationError as e:
        raise RequestValidationError([str(e)]) from e

    # Enrich span
    SpanAttributeEnum.REMINDER_OWNER.attribute(owner)

    reminder = await _create_and_schedule(form.to_reminder(owner))
    return _to_get(reminder)


@api.post(
    "/reminders/batch",
    status_code=HTTPStatus.CREATED,
)
@start_as_current_span("reminder_batch_post")
async def reminder_batch_post(owner: Owner, request: Request) -> list[ReminderGetModel]:
    """
    REST API to create many reminders at once, as extracted from a prescription.

    Parameters:
    - owner: User account owning the reminders

    Required body parameters is a JSON array of `ReminderExtractedModel`. Reminders not repeating daily are set for today.

    Returns a list of reminder objects `ReminderGetModel`, in JSON format.
    """
    try:
        body = await request.json()
        extracted = TypeAdapter(list[ReminderExtractedModel]).validate_python(body)
        today = _scheduler.now().date()
        forms = [item.to_create(today) for item in extracted]
    except ValidationError as e:
        raise RequestValidationError([str(e)]) from e

    # Enrich span
    SpanAttributeEnum.REMINDER_OWNER.attribute(owner)

    reminders = [
        await _create_and_schedule(form.to_reminder(owner)) for form in forms
    ]
    logger.info("Created %i reminders from a prescription", len(reminders))
    return [_to_get(reminder) for reminder in reminders]


@api.delete(
    "/reminders/{reminder_id}",
    status_code=HTTPStatus.NO_CONTENT,
)
@start_as_current_span("reminder_delete")
async def reminder_delete(reminder_id: UUID) -> Response:
    """
    REST API to delete a reminder, disarming its timer.

    Parameters:
    - reminder_id: Reminder ID

    Returns a 204 No Content if the reminder was deleted, a 404 Not Found otherwise.
    """
    # Enrich span
    SpanAttributeEnum.REMINDER_ID.attribute(str(reminder_id))

    # Disarm first, a timer must never fire on a deleted reminder
    await _scheduler.cancel(reminder_id)
    if not await _db.reminder_delete(reminder_id):
        raise HTTPException(
            detail=f"Reminder {reminder_id} not found",
            status_code=HTTPStatus.NOT_FOUND,
        )
    return Response(status_code=HTTPStatus.NO_CONTENT)


@api.post("/reminders/parse")
@start_as_current_span("reminder_parse_post")
async def reminder_parse_post(request: Request) -> ReminderCreateModel:
    """
    REST API to understand a sentence as a reminder, typed or transcribed from the voice.

    Required body parameters is a JSON object `ReminderQueryModel`.

    Returns a single form object `ReminderCreateModel`, not saved, in JSON format. Returns a 422 Unprocessable Entity if the sentence is not understood, a 503 Service Unavailable if no LLM is configured.
    """
    try:
        body = await request.json()
        query = ReminderQueryModel.model_validate(body)
    except ValidationError as e:
        raise RequestValidationError([str(e)]) from e

    try:
        form = await parse_reminder(query=query.query, now=_scheduler.now())
    except LlmNotConfiguredError as e:
        raise HTTPException(
            detail="Natural language parsing is not available",
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
        ) from e

    if not form:
        raise HTTPException(
            detail="Cannot understand the reminder, please fill the form",
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
        )
    return form


@api.get("/notifications/permission")
@start_as_current_span("notification_permission_get")
async def notification_permission_get(owner: Owner) -> PermissionModel:
    """
    REST API to get the notification permission of a user.

    Parameters:
    - owner: User account answering the permission

    Returns a single permission object `PermissionModel`, in JSON format. Users who never answered get the configured default.
    """
    # Enrich span
    SpanAttributeEnum.REMINDER_OWNER.attribute(owner)

    return PermissionModel(permission=await _scheduler.permission(owner))


@api.put("/notifications/permission")
@start_as_current_span("notification_permission_put")
async def notification_permission_put(owner: Owner, request: Request) -> PermissionModel:
    """
    REST API to grant or deny the notifications of a user.

    Parameters:
    - owner: User account answering the permission

    Required body parameters is a JSON object `PermissionModel`. Granting arms all the stored reminders of the user, denying disarms them. Reminders of other users are untouched.

    Returns a single permission object `PermissionModel`, in JSON format.
    """
    try:
        body = await request.json()
        model = PermissionModel.model_validate(body)
    except ValidationError as e:
        raise RequestValidationError([str(e)]) from e

    # Enrich span
    SpanAttributeEnum.REMINDER_OWNER.attribute(owner)

    previous = await _scheduler.permission(owner)
    await _db.permission_set(owner, model.permission)
    logger.info(
        "Notification permission of %s changed from %s to %s",
        owner,
        previous.value,
        model.permission.value,
    )

    if model.permission == PermissionEnum.GRANTED:
        await _scheduler.rearm_all(owner=owner)
    else:
        await _scheduler.disarm_all(owner=owner)

    return model


@api.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handle HTTP exceptions and return the error in a standard format.
    """
    return _standard_error(
        message=exc.detail,
        status_code=HTTPStatus(exc.status_code),
    )


@api.exception_handler(StoreError)
async def store_exception_handler(
    request: Request,  # noqa: ARG001
    exc: StoreError,  # noqa: ARG001
) -> JSONResponse:
    """
    Handle store write failures and return the error in a standard format.
    """
    return _standard_error(
        message="Reminders storage is not available, please retry later",
        status_code=HTTPStatus.SERVICE_UNAVAILABLE,
    )


@api.exception_handler(RequestValidationError)
@api.exception_handler(ValueError)
async def validation_exception_handler(
    request: Request,  # noqa: ARG001
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle validation exceptions and return the error in a standard format.
    """
    return _validation_error(exc)


async def _create_and_schedule(reminder: ReminderModel) -> ReminderModel:
    """
    Persist a reminder, then arm it.
    """
    reminder = await _db.reminder_create(reminder)
    await _scheduler.schedule(reminder)
    return reminder


def _to_get(reminder: ReminderModel) -> ReminderGetModel:
    return ReminderGetModel.from_reminder(
        next_fire_at=_scheduler.next_fire_at(reminder.reminder_id),
        reminder=reminder,
    )


def _validation_error(e: ValidationError | Exception) -> JSONResponse:
    """
    Generate a standard validation error response.
    """
    messages = []
    if isinstance(e, ValidationError) or isinstance(e, ValidationException):
        messages = [
            str(x) for x in e.errors()
        ]  # Pydantic returns well formatted errors, use them
    elif isinstance(e, ValueError):
        messages = [str(e)]
    return _standard_error(
        details=messages,
        message="Validation error",
        status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
    )


def _standard_error(
    message: str,
    status_code,
    details: list[str] | None = None,
) -> JSONResponse:
    """
    Generate a standard error response.
    """
    model = ErrorModel(
        error=ErrorInnerModel(
            details=details or [],
            message=message,
        )
    )
    return JSONResponse(
        content=model.model_dump(mode="json"),
        status_code=status_code,
    )
