from asyncio import iscoroutinefunction
from contextlib import contextmanager
from enum import Enum
from functools import wraps
from os import environ

from azure.monitor.opentelemetry import configure_azure_monitor
from opentelemetry import metrics, trace
from opentelemetry.instrumentation.aiohttp_client import AioHttpClientInstrumentor
from opentelemetry.metrics._internal.instrument import Counter
from opentelemetry.semconv.attributes import service_attributes
from opentelemetry.trace import Status, StatusCode
from opentelemetry.trace.span import INVALID_SPAN
from opentelemetry.util.types import Attributes, AttributeValue
from structlog.contextvars import bind_contextvars, get_contextvars

MODULE_NAME = "sunobot-reminders"
VERSION = environ.get("VERSION", "0.0.0-unknown")


class SpanAttributeEnum(str, Enum):
    """
    OpenTelemetry attributes.

    These attributes are used to track a reminder in the logs and traces.
    """

    NOTIFICATION_MODE = "notification.mode"
    """Notification backend (e.g. console, twilio, ...)."""
    REMINDER_FIRE_AT = "reminder.fire_at"
    """Next instant the reminder is due, ISO format."""
    REMINDER_ID = "reminder.id"
    """Technical reminder identifier."""
    REMINDER_KIND = "reminder.kind"
    """Daily or one-off."""
    REMINDER_OWNER = "reminder.owner"
    """User account owning the reminder."""

    def attribute(
        self,
        value: AttributeValue,
    ) -> None:
        """
        Set an attribute on the current span, and on the log context.
        """
        bind_contextvars(**{self.value: value})

        span = trace.get_current_span()
        if span == INVALID_SPAN:
            return
        span.set_attribute(self.value, value)


class SpanMeterEnum(str, Enum):
    REMINDER_ARMED = "reminder.armed"
    """Timers armed, including daily re-arms."""
    REMINDER_FIRED = "reminder.fired"
    """Notifications sent for due reminders."""
    REMINDER_RETIRED = "reminder.retired"
    """One-off reminders deleted after they fired."""

    def counter(
        self,
        unit: str,
    ) -> Counter:
        """
        Create a counter metric.
        """
        return meter.create_counter(
            description=self.__doc__ or "",
            name=self.value,
            unit=unit,
        )


try:
    # Export traces and metrics to Application Insights
    configure_azure_monitor()
    # Instrument aiohttp
    AioHttpClientInstrumentor().instrument()
except ValueError as e:
    print(  # noqa: T201
        "Azure Application Insights instrumentation failed, likely due to a missing APPLICATIONINSIGHTS_CONNECTION_STRING environment variable.",
        e,
    )

# Attributes
_default_attributes = {
    service_attributes.SERVICE_NAME: MODULE_NAME,
    service_attributes.SERVICE_VERSION: VERSION,
}

# Create a tracer and meter that will be used across the application
tracer = trace.get_tracer(
    attributes=_default_attributes,
    instrumenting_module_name=MODULE_NAME,
)
meter = metrics.get_meter(
    name=MODULE_NAME,
)

# Init metrics
reminder_armed = SpanMeterEnum.REMINDER_ARMED.counter("reminders")
reminder_fired = SpanMeterEnum.REMINDER_FIRED.counter("reminders")
reminder_retired = SpanMeterEnum.REMINDER_RETIRED.counter("reminders")


def counter_add(
    metric: Counter,
    value: float | int,
):
    """
    Add a counter metric value with context attributes.
    """
    metric.add(
        amount=value,
        attributes={
            # First, set default attributes
            **_default_attributes,
            # Then, set context attributes, they can override default attributes
            **get_contextvars(),
        },
    )


def start_as_current_span(
    name: str,
    attributes: Attributes = None,
):
    """
    Decorator to start an OTEL span for the function and set it as the current.
    """

    def _wrapper(func):
        @wraps(func)
        def _inner(*args, **kwargs):
            with tracer.start_as_current_span(
                attributes=attributes,
                name=name,
            ):
                return func(*args, **kwargs)

        @wraps(func)
        async def _async_inner(*args, **kwargs):
            with tracer.start_as_current_span(
                attributes=attributes,
                name=name,
            ):
                return await func(*args, **kwargs)

        return _async_inner if iscoroutinefunction(func) else _inner

    return _wrapper


@contextmanager
def suppress(*exceptions):
    """
    Context manager to suppress exceptions, while also logging them properly in OTEL.

    OTEL span will always be set to OK status, even if an exception occurs. But exception will still be recorded.
    """
    try:
        yield
    except exceptions as e:
        span = trace.get_current_span()
        span.set_status(Status(StatusCode.OK))
        span.record_exception(e)
