import asyncio
from collections import OrderedDict
from collections.abc import Awaitable
from functools import wraps


def lru_acache(maxsize: int = 128):
    """
    Memoize an async function, keeping the `maxsize` most recently used results.

    Results are scoped to the running event loop: clients bound to a closed loop (e.g. between two test sessions) are never reused.
    """

    def decorator(func):
        cache: OrderedDict[tuple, Awaitable] = OrderedDict()

        @wraps(func)
        async def wrapper(*args, **kwargs) -> Awaitable:
            # Kwargs order does not matter, frozenset keeps the key hashable
            key = (
                id(asyncio.get_running_loop()),
                args,
                frozenset(kwargs.items()),
            )

            # Hit, mark as most recently used
            if key in cache:
                cache.move_to_end(key)
                return cache[key]

            # Miss, compute and store
            value = await func(*args, **kwargs)
            cache[key] = value

            # Evict the least recently used
            if len(cache) > maxsize:
                cache.popitem(last=False)

            return value

        return wrapper

    return decorator
