"""
Cache facade: prefixed keys, default options, and the get/set/unset and
get_or_else operations on top of a pluggable backend.

Example:
    cache = Cache(name="users", backend="memory", defaults={"fresh_for": 60})

    async def load_user():
        return await db.fetch_user(123)

    user = await cache.get_or_else("user:123", load_user)
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Mapping

from .options import CacheOptions
from .refresh import RefreshCoordinator, resolve_value
from .storage import CacheBackend, CacheEntry, create_backend, unwrap
from .timeout import with_timeout

logger = logging.getLogger(__name__)

Callback = Callable[[BaseException | None, Any], Any]


async def _deliver(operation: Awaitable[Any], callback: Callback | None) -> Any:
    """Hand the outcome to `callback(error, value)` instead of raising, if given."""
    if callback is None:
        return await operation
    try:
        value = await operation
    except Exception as e:
        callback(e, None)
        return None
    callback(None, value)
    return value


class Cache:
    """
    Stale-while-revalidate cache in front of a backend.

    Every public operation is a coroutine and also accepts a keyword-only
    `callback(error, value)`; with a callback, errors are passed to it
    instead of being raised.

    Attributes:
        name: cache name, also the key namespace
        prefix: string prepended to every key
        defaults: CacheOptions merged into every call
        backend: the storage backend
        refresher: coordinator owning the pending-refresh registry
    """

    def __init__(
        self,
        name: str = "default",
        backend: Any = None,
        defaults: Mapping[str, Any] | None = None,
    ):
        self.name = name
        self.prefix = f"{name}:"
        self.defaults = CacheOptions()
        self.refresher = RefreshCoordinator(self)

        self.set_defaults(**(defaults or {}))
        self.set_backend(backend)

    def apply_prefix(self, key: str) -> str:
        return f"{self.prefix}{key}"

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_defaults(self, **options: Any) -> CacheOptions:
        """Merge `options` into the instance defaults."""
        self.defaults = self.prepare_options(**options)
        return self.defaults

    def prepare_options(self, **overrides: Any) -> CacheOptions:
        """Defaults with per-call overrides applied; defaults stay untouched."""
        return self.defaults.merged(**overrides)

    def set_backend(self, backend: Any = None) -> CacheBackend:
        """
        Install a new backend built from `backend` (see create_backend).

        The previous backend is not ended; await end() first if it holds
        connections.
        """
        self.backend = create_backend(backend)
        logger.debug(f"Cache {self.name!r} using {type(self.backend).__name__}")
        return self.backend

    async def end(self) -> None:
        """Let running refreshes finish, then tear down the backend if it supports it."""
        await self.refresher.join()
        end = getattr(self.backend, "end", None)
        if end is None:
            return
        result = end()
        if inspect.isawaitable(result):
            await result

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def get(self, key: str, *, callback: Callback | None = None) -> Any:
        """Return the cached value (stale or not) or None on a miss."""
        return await _deliver(self._get(self.apply_prefix(key)), callback)

    async def get_or_else(
        self,
        key: str,
        value: Any,
        *,
        fresh_for: float | None = None,
        expire: int | None = None,
        timeout: float | None = None,
        callback: Callback | None = None,
    ) -> Any:
        """
        Return the cached value, producing it from `value` when missing or stale.

        Args:
            key: cache key (prefixed with the cache name)
            value: plain value, or sync/async callable producing it
            fresh_for: seconds the produced value stays fresh
            expire: seconds until the backend removes it
            timeout: milliseconds allowed per backend read/write
        """
        options = self.prepare_options(
            fresh_for=fresh_for, expire=expire, timeout=timeout
        )
        operation = self.refresher.get_or_else(self.apply_prefix(key), value, options)
        return await _deliver(operation, callback)

    async def set(
        self,
        key: str,
        value: Any,
        *,
        fresh_for: float | None = None,
        expire: int | None = None,
        timeout: float | None = None,
        callback: Callback | None = None,
    ) -> None:
        """Store `value` (or what the callable `value` produces) under `key`."""
        options = self.prepare_options(
            fresh_for=fresh_for, expire=expire, timeout=timeout
        )
        return await _deliver(self._set(self.apply_prefix(key), value, options), callback)

    async def unset(self, key: str, *, callback: Callback | None = None) -> None:
        """Delete `key` from the backend. A running refresh may store it again."""
        operation = with_timeout(
            self.backend.unset(self.apply_prefix(key)), self.defaults.timeout
        )
        return await _deliver(operation, callback)

    # ------------------------------------------------------------------
    # Prefixed-key access, used by the refresh coordinator
    # ------------------------------------------------------------------

    async def get_wrapped(
        self, key: str, timeout: float | None = None
    ) -> CacheEntry | None:
        """Raw entry for an already prefixed key; timeout defaults to the instance one."""
        if timeout is None:
            timeout = self.defaults.timeout
        return await with_timeout(self.backend.get(key), timeout)

    async def write(self, key: str, value: Any, options: CacheOptions) -> None:
        """Wrap an already resolved value and store it under a prefixed key."""
        entry = CacheEntry.wrap(value, options.fresh_for)
        await with_timeout(
            self.backend.set(key, entry, options.expire), options.timeout
        )

    async def _get(self, key: str) -> Any:
        return unwrap(await self.get_wrapped(key))

    async def _set(self, key: str, value: Any, options: CacheOptions) -> None:
        resolved = await resolve_value(value)
        await self.write(key, resolved, options)

    def __repr__(self) -> str:
        return f"Cache(name={self.name!r}, backend={type(self.backend).__name__})"
