"""
Process-wide named caches and the callback-to-awaitable adapter.

Example:
    users = cached("users", backend="memory", defaults={"fresh_for": 60})
    assert cached("users") is users

    def legacy_fetch(callback):
        client.fetch("/users", callback)

    value = await users.get_or_else("all", deferred(legacy_fetch))
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, ClassVar

from .cache import Cache

logger = logging.getLogger(__name__)


class _NamedCaches:
    """Registry of caches by name, shared by the whole process."""

    _caches: ClassVar[dict[str, Cache]] = {}
    _lock: ClassVar[threading.RLock] = threading.RLock()

    @classmethod
    def get_or_create(cls, name: str, **cache_kwargs: Any) -> Cache:
        with cls._lock:
            cache = cls._caches.get(name)
            if cache is None:
                cache = Cache(name=name, **cache_kwargs)
                cls._caches[name] = cache
                logger.info(f"Created named cache {name!r}")
            return cache

    @classmethod
    def names(cls) -> list[str]:
        with cls._lock:
            return list(cls._caches)

    @classmethod
    def drop(cls, name: str) -> None:
        with cls._lock:
            cls._caches.pop(name, None)

    @classmethod
    def drop_all(cls) -> None:
        with cls._lock:
            cls._caches.clear()


def cached(name: str = "default", **cache_kwargs: Any) -> Cache:
    """
    Return the cache named `name`, creating it on first use.

    Args:
        name: cache name; also the key prefix
        cache_kwargs: Cache arguments (backend, defaults), only used on creation
    """
    return _NamedCaches.get_or_create(name, **cache_kwargs)


def known_caches() -> list[str]:
    """Names of all registered caches, in creation order."""
    return _NamedCaches.names()


def drop_named_cache(name: str) -> None:
    """Forget one named cache. Its backend is left running."""
    _NamedCaches.drop(name)


def drop_named_caches() -> None:
    """Forget every named cache."""
    _NamedCaches.drop_all()


def deferred(fn: Callable[[Callable[..., None]], Any]) -> Callable[[], asyncio.Future[Any]]:
    """
    Adapt a callback-style producer into one returning a future.

    `fn` is called with `callback(error, value)`. The returned zero-argument
    function can be passed to get_or_else/set as a value producer. The
    callback may be invoked from another thread.
    """

    def run() -> asyncio.Future[Any]:
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def settle(error: BaseException | None, value: Any) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(value)

        def callback(error: BaseException | None = None, value: Any = None) -> None:
            loop.call_soon_threadsafe(settle, error, value)

        fn(callback)
        return future

    run.__name__ = getattr(fn, "__name__", "deferred")
    run.__wrapped__ = fn  # type: ignore
    return run
