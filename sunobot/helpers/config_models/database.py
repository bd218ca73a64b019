from enum import Enum
from functools import cached_property
from os.path import dirname

from pydantic import BaseModel, model_validator

from sunobot.persistence.istore import IStore


class ModeEnum(str, Enum):
    COSMOS_DB = "cosmos_db"
    """Use Cosmos DB, partitioned by reminder owner."""
    SQLITE = "sqlite"
    """Use a local SQLite file."""


class CosmosDbModel(BaseModel, frozen=True):
    container: str
    database: str
    endpoint: str

    @cached_property
    def instance(self) -> IStore:
        from sunobot.helpers.config import CONFIG
        from sunobot.persistence.cosmos_db import (
            CosmosDbStore,
        )

        return CosmosDbStore(
            cache=CONFIG.cache.instance,
            config=self,
        )


class SqliteModel(BaseModel, frozen=True):
    path: str = ".local/reminders"
    schema_version: int = 2
    table: str = "reminders"

    def full_path(self) -> str:
        """
        Returns the full path to the SQLite database file.

        Formatted as: `{path}-v{schema_version}.sqlite`.
        """
        return f"{self.path}-v{self.schema_version}.sqlite"

    def folder(self) -> str:
        return dirname(self.full_path())

    @cached_property
    def instance(self) -> IStore:
        from sunobot.helpers.config import CONFIG
        from sunobot.persistence.sqlite import (
            SqliteStore,
        )

        return SqliteStore(
            cache=CONFIG.cache.instance,
            config=self,
        )


class DatabaseModel(BaseModel):
    cosmos_db: CosmosDbModel | None = None
    mode: ModeEnum = ModeEnum.SQLITE
    sqlite: SqliteModel | None = SqliteModel()  # Object is fully defined by default

    @model_validator(mode="after")
    def _validate_mode(self) -> "DatabaseModel":
        # Selected backend must be configured
        if self.mode == ModeEnum.COSMOS_DB and not self.cosmos_db:
            raise ValueError("Cosmos DB config required")
        if self.mode == ModeEnum.SQLITE and not self.sqlite:
            raise ValueError("SQLite config required")
        return self

    @cached_property
    def instance(self) -> IStore:
        if self.mode == ModeEnum.SQLITE:
            assert self.sqlite
            return self.sqlite.instance

        assert self.cosmos_db
        return self.cosmos_db.instance
