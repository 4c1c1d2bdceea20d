"""
Cache decorator for function result caching.

Provides:
- SWRCache: stale-while-revalidate caching of sync or async functions
"""

from __future__ import annotations

import functools
from typing import Awaitable, Callable, TypeVar

from .cache import Cache

T = TypeVar("T")


def _build_key(key: str | Callable[..., str], args: tuple, kwargs: dict) -> str:
    if callable(key):
        return key(*args, **kwargs)
    if "{" not in key:
        return key
    # Simple format string with first arg
    if args:
        return key.format(args[0])
    return key.format(**kwargs)


# ============================================================================
# SWRCache - Stale-While-Revalidate pattern
# ============================================================================


class StaleWhileRevalidateCache:
    """
    SWR cache decorator on top of Cache.get_or_else.
    Serves stale data while one background refresh per key runs.

    Example:
        @SWRCache.cached("product:{}", fresh_for=60)
        async def get_product(product_id: int):
            return await db.fetch_product(product_id)

        # Shared Redis-backed cache
        products = Cache(name="products", backend={"type": "redis"})

        @SWRCache.cached("product:{}", fresh_for=60, expire=3600, cache=products)
        def get_product(product_id: int):
            return db.fetch_product(product_id)
    """

    @classmethod
    def cached(
        cls,
        key: str | Callable[..., str],
        *,
        fresh_for: float | None = None,
        expire: int | None = None,
        timeout: float | None = None,
        cache: Cache | None = None,
    ) -> Callable[[Callable[..., T]], Callable[..., Awaitable[T]]]:
        """
        SWR cache decorator.

        Args:
            key: Cache key template or generator function.
            fresh_for: Seconds a result stays fresh; None uses the cache default.
            expire: Seconds until the backend drops a result; None uses the cache default.
            timeout: Milliseconds allowed per backend operation.
            cache: Optional Cache; defaults to a memory-backed one per function.

        The decorated function always becomes a coroutine function.
        """

        def decorator(func: Callable[..., T]) -> Callable[..., Awaitable[T]]:
            # Each decorated function gets its own cache instance
            function_cache = (
                cache if cache is not None else Cache(name=func.__name__, backend="memory")
            )

            @functools.wraps(func)
            async def wrapper(*args, **kwargs) -> T:
                cache_key = _build_key(key, args, kwargs)
                return await function_cache.get_or_else(
                    cache_key,
                    functools.partial(func, *args, **kwargs),
                    fresh_for=fresh_for,
                    expire=expire,
                    timeout=timeout,
                )

            wrapper._cache = function_cache  # type: ignore
            return wrapper

        return decorator


# Alias for shorter usage
SWRCache = StaleWhileRevalidateCache
