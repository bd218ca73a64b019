from enum import Enum

from pydantic import BaseModel


class ReadinessEnum(str, Enum):
    FAIL = "fail"
    """The backend cannot serve requests."""
    OK = "ok"
    """The backend can serve requests."""


class ReadinessCheckModel(BaseModel):
    id: str
    status: ReadinessEnum


class ReadinessModel(BaseModel):
    checks: list[ReadinessCheckModel]
    status: ReadinessEnum
