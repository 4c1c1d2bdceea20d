"""
Stale-while-revalidate refresh coordination.

RefreshCoordinator decides, per read, whether to serve the cached entry,
start a refresh, or wait on one, and keeps at most one refresh per key
running in this process.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from functools import partial
from typing import Any, Protocol

from .options import CacheOptions
from .storage import CacheEntry

logger = logging.getLogger(__name__)


class EntryStore(Protocol):
    """What the coordinator needs from its owner: raw reads and writes."""

    async def get_wrapped(
        self, key: str, timeout: float | None = None
    ) -> CacheEntry | None: ...

    async def write(self, key: str, value: Any, options: CacheOptions) -> None: ...


async def resolve_value(value: Any) -> Any:
    """Call `value` if it is callable and await the result if needed."""
    if callable(value):
        value = value()
    if inspect.isawaitable(value):
        value = await value
    return value


class RefreshCoordinator:
    """
    Single-flight refresh of stale or missing entries.

    Attributes:
        pending: key -> running refresh task; one entry per key at most
        _tasks: strong references to refresh tasks until they finish
    """

    def __init__(
        self,
        store: EntryStore,
        pending: dict[str, asyncio.Task[Any]] | None = None,
    ):
        self.store = store
        self.pending = pending if pending is not None else {}
        self._tasks: set[asyncio.Task[Any]] = set()

    async def get_or_else(self, key: str, value: Any, options: CacheOptions) -> Any:
        """
        Return the cached value for `key`, refreshing it from `value` as needed.

        A fresh entry is returned as-is. A stale entry is returned at once
        while a refresh runs in the background. With nothing cached the call
        waits for the refresh and returns its value or raises its error.
        """
        entry = await self._read(key, options)

        if entry is not None and entry.is_fresh():
            logger.debug(f"Cache HIT (fresh): {key}")
            return entry.value

        refresh = self.pending.get(key)
        if refresh is None:
            refresh = self._start_refresh(key, value, options)
        else:
            logger.debug(f"Refresh already running for {key}, attaching")

        if entry is not None:
            logger.debug(
                f"Cache HIT (stale): {key}, age={entry.age():.1f}s, refreshing in background"
            )
            return entry.value

        logger.debug(f"Cache MISS: {key}, waiting for refresh")
        return await asyncio.shield(refresh)

    async def _read(self, key: str, options: CacheOptions) -> CacheEntry | None:
        try:
            return await self.store.get_wrapped(key, options.timeout)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e!r}")
            return None

    async def join(self) -> None:
        """Wait for every running refresh to finish, ignoring their outcome."""
        while self._tasks:
            await asyncio.shield(asyncio.gather(*self._tasks, return_exceptions=True))

    def _start_refresh(
        self, key: str, value: Any, options: CacheOptions
    ) -> asyncio.Task[Any]:
        # Registered before the first await so concurrent readers attach to it.
        task = asyncio.ensure_future(self._refresh(key, value, options))
        self.pending[key] = task
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_refresh_done, key))
        return task

    async def _refresh(self, key: str, value: Any, options: CacheOptions) -> Any:
        try:
            result = await resolve_value(value)
        finally:
            self._release(key)

        try:
            await self.store.write(key, result, options)
        except Exception as e:
            logger.warning(f"Refreshed value for {key} could not be stored: {e!r}")
        else:
            logger.debug(f"Background refresh complete: {key}")
        return result

    def _release(self, key: str) -> None:
        if self.pending.get(key) is asyncio.current_task():
            del self.pending[key]

    def _on_refresh_done(self, key: str, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            # Cancelled before it first ran, so it never released its own entry.
            if self.pending.get(key) is task:
                del self.pending[key]
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background refresh failed for {key}: {exc!r}")
