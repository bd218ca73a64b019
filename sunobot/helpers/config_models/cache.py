from functools import cached_property

from pydantic import BaseModel, Field

from sunobot.persistence.icache import ICache


class CacheModel(BaseModel, frozen=True):
    """
    In-process cache in front of the store.

    Timers are armed by a single process, so there is no shared cache to configure.
    """

    max_size: int = Field(default=512, ge=10)
    ttl_sec: int = Field(default=60 * 60, ge=1)  # 1 hour

    @cached_property
    def instance(self) -> ICache:
        from sunobot.persistence.memory import (
            MemoryCache,
        )

        return MemoryCache(self)
