import pytest
from pytest_assume.plugin import assume

from sunobot.helpers.config import CONFIG
from sunobot.helpers.config_models.cache import CacheModel
from sunobot.persistence.memory import MemoryCache


@pytest.mark.asyncio(loop_scope="session")
@pytest.mark.repeat(10)  # Catch multi-threading and concurrency issues
async def test_acid(random_text: str) -> None:
    """
    Test ACID properties of the cache backend.

    Steps:
    1. Create a mock data
    2. Test not exists
    3. Insert test data
    4. Check it exists
    5. Delete it

    Test is repeated 10 times to catch multi-threading and concurrency issues.
    """
    cache = CONFIG.cache.instance

    # Init values
    test_key = random_text
    test_value = "lorem ipsum"

    # Check not exists
    assume(not await cache.get(test_key))

    # Insert test value
    await cache.set(
        key=test_key,
        ttl_sec=60,
        value=test_value,
    )

    # Check point read
    assume(await cache.get(test_key) == test_value.encode())

    # Delete
    assume(await cache.delete(test_key))
    assume(not await cache.delete(test_key))
    assume(not await cache.get(test_key))


@pytest.mark.asyncio(loop_scope="session")
async def test_lru_eviction() -> None:
    cache = MemoryCache(CacheModel(max_size=10))

    for i in range(10):
        await cache.set(key=f"key-{i}", value=str(i))
    # Mark the oldest as recently used
    assume(await cache.get("key-0") == b"0")
    # Overflow
    await cache.set(key="key-10", value="10")

    assume(await cache.get("key-0") == b"0")
    assume(not await cache.get("key-1"))
    assume(await cache.get("key-10") == b"10")


@pytest.mark.asyncio(loop_scope="session")
async def test_ttl() -> None:
    cache = MemoryCache(CacheModel())
    await cache.set(key="key", ttl_sec=1, value="value")
    assume(await cache.get("key") == b"value")

    # Expire all entries
    for key, (expires_at, value) in list(cache._entries.items()):  # noqa: SLF001
        cache._entries[key] = (expires_at.replace(year=2000), value)  # noqa: SLF001

    assume(not await cache.get("key"))
