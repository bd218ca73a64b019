import hashlib
from collections import OrderedDict
from datetime import UTC, datetime, timedelta

from sunobot.helpers.config_models.cache import CacheModel
from sunobot.models.readiness import ReadinessEnum
from sunobot.persistence.icache import ICache


class MemoryCache(ICache):
    """
    In-process cache, with a time-to-live per entry.

    When full, the least recently used (LRU) entry is evicted.

    See: https://en.wikipedia.org/wiki/Cache_replacement_policies#Least_recently_used_(LRU)
    """

    _config: CacheModel
    _entries: OrderedDict[str, tuple[datetime, bytes]]

    def __init__(self, config: CacheModel):
        self._config = config
        self._entries = OrderedDict()

    async def readiness(self) -> ReadinessEnum:
        """
        Check the readiness of the memory cache.
        """
        return ReadinessEnum.OK  # Lives as long as the process

    async def get(self, key: str) -> bytes | None:
        """
        Get a value from the cache.

        Returns `None` if the key is unknown or expired.
        """
        sha_key = self._key_to_hash(key)
        entry = self._entries.get(sha_key)
        if not entry:
            return None

        # Expired, forget it
        expires_at, value = entry
        if expires_at < datetime.now(UTC):
            del self._entries[sha_key]
            return None

        # Most recently used goes last
        self._entries.move_to_end(sha_key)
        return value

    async def set(
        self,
        key: str,
        value: str | bytes,
        ttl_sec: int | None = None,
    ) -> bool:
        """
        Set a value in the cache.

        Default TTL comes from the config.
        """
        sha_key = self._key_to_hash(key)
        expires_at = datetime.now(UTC) + timedelta(
            seconds=ttl_sec or self._config.ttl_sec
        )
        self._entries[sha_key] = (
            expires_at,
            value.encode() if isinstance(value, str) else value,
        )
        self._entries.move_to_end(sha_key)

        # Evict the least recently used
        while len(self._entries) > self._config.max_size:
            self._entries.popitem(last=False)

        return True

    async def delete(self, key: str) -> bool:
        """
        Delete a value from the cache.

        Returns `False` if the key was not cached.
        """
        return self._entries.pop(self._key_to_hash(key), None) is not None

    @staticmethod
    def _key_to_hash(key: str) -> str:
        """
        Hash the key, to bound the memory used by long keys.
        """
        return hashlib.sha256(key.encode(), usedforsecurity=False).hexdigest()
