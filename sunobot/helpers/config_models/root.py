from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from sunobot.helpers.config_models.cache import CacheModel
from sunobot.helpers.config_models.database import DatabaseModel
from sunobot.helpers.config_models.llm import LlmModel
from sunobot.helpers.config_models.monitoring import MonitoringModel
from sunobot.helpers.config_models.notification import NotificationModel
from sunobot.helpers.config_models.scheduler import SchedulerModel


class RootModel(BaseSettings):
    # Pydantic settings
    model_config = SettingsConfigDict(
        env_ignore_empty=True,
        env_nested_delimiter="__",
        env_prefix="",
    )

    # Immutable fields
    version: str = Field(default="0.0.0-unknown", frozen=True)
    # Editable fields
    cache: CacheModel = CacheModel()  # Object is fully defined by default
    database: DatabaseModel = DatabaseModel()  # Object is fully defined by default
    llm: LlmModel | None = None  # Natural language parsing is disabled without it
    monitoring: MonitoringModel = (
        MonitoringModel()
    )  # Object is fully defined by default
    notification: NotificationModel = (
        NotificationModel()
    )  # Object is fully defined by default
    scheduler: SchedulerModel = SchedulerModel()  # Object is fully defined by default

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],  # noqa: ARG003
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """
        Customise the order of the settings sources.

        Order is now:
        1. Environment variables
        2. .env file
        3. Docker secrets
        4. Initial settings

        See: https://docs.pydantic.dev/latest/concepts/pydantic_settings/#changing-priority
        """
        return env_settings, dotenv_settings, file_secret_settings, init_settings
