from logging import Logger, _nameToLevel, basicConfig

from structlog import (
    configure_once,
    get_logger as structlog_get_logger,
    make_filtering_bound_logger,
)
from structlog.contextvars import merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import (
    StackInfoRenderer,
    TimeStamper,
    UnicodeDecoder,
    add_log_level,
)
from structlog.stdlib import PositionalArgumentsFormatter

from sunobot.helpers.config import CONFIG

# Dependencies log through the standard library
basicConfig(level=CONFIG.monitoring.logging.sys_level.value)

# Application logs through structlog
configure_once(
    cache_logger_on_first_use=True,
    context_class=dict,
    wrapper_class=make_filtering_bound_logger(
        _nameToLevel[CONFIG.monitoring.logging.app_level.value]
    ),
    processors=[
        # Reminder and owner ids bound by the monitoring helpers
        merge_contextvars,
        add_log_level,
        # %s-style formatting
        PositionalArgumentsFormatter(),
        TimeStamper(fmt="iso", utc=True),
        StackInfoRenderer(),
        UnicodeDecoder(),
        # Urdu medicine names must render as-is in the terminal
        ConsoleRenderer(),
    ],
)

# Framework does not exactly expose Logger, but that's easier to work with
logger: Logger = structlog_get_logger("sunobot-reminders")
