"""
Storage backends for caching.

Provides the CacheEntry envelope, the CacheBackend protocol, and the
NoopBackend, MemoryBackend and RedisBackend implementations.
Backends are looked up by type name through create_backend().
"""

from __future__ import annotations

import logging
import math
import pickle
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Protocol

import redis.asyncio as redis

from .exceptions import BackendError, UnknownBackendError

logger = logging.getLogger(__name__)

NEVER_STALE = float("inf")


# ============================================================================
# Cache Entry - the envelope persisted in every backend
# ============================================================================


@dataclass
class CacheEntry:
    """Cached value paired with the time it stops being fresh."""

    value: Any
    fresh_until: float = NEVER_STALE  # Unix timestamp
    created_at: float = field(default_factory=time.time)

    @classmethod
    def wrap(cls, value: Any, fresh_for: float = 0) -> CacheEntry:
        """Envelope `value`; fresh_for=0 means it never goes stale."""
        now = time.time()
        fresh_until = now + fresh_for if fresh_for > 0 else NEVER_STALE
        return cls(value=value, fresh_until=fresh_until, created_at=now)

    def is_stale(self, now: float | None = None) -> bool:
        """Check if the freshness window has passed."""
        if now is None:
            now = time.time()
        return self.fresh_until < now

    def is_fresh(self) -> bool:
        return not self.is_stale()

    def age(self) -> float:
        """Get age of entry in seconds."""
        return time.time() - self.created_at

    def to_record(self) -> dict[str, Any]:
        return {
            "fresh_until": self.fresh_until,
            "value": self.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> CacheEntry:
        return cls(
            value=record.get("value"),
            fresh_until=record.get("fresh_until", NEVER_STALE),
            created_at=record.get("created_at", 0.0),
        )


def unwrap(entry: CacheEntry | None) -> Any:
    """Payload of an entry, or None when nothing is cached."""
    if entry is None:
        return None
    return entry.value


# ============================================================================
# Backend Protocol - Common interface for all backends
# ============================================================================


class CacheBackend(Protocol):
    """
    Protocol for cache storage backends.

    Any object with these coroutine methods can be handed to Cache as a
    backend. `end` is optional and may be sync or async.

    Example:
        class MyBackend:
            async def get(self, key: str) -> CacheEntry | None: ...
            async def set(self, key: str, entry: CacheEntry, expire: int = 0) -> None: ...
            async def unset(self, key: str) -> None: ...
    """

    async def get(self, key: str) -> CacheEntry | None:
        """Return the stored entry, or None if absent or expired."""
        ...

    async def set(self, key: str, entry: CacheEntry, expire: int = 0) -> None:
        """Store entry; expire is seconds until removal, 0 means never."""
        ...

    async def unset(self, key: str) -> None:
        """Delete key from the backend."""
        ...


def validate_backend(backend: Any) -> bool:
    """
    Validate that an object implements the CacheBackend protocol.
    Useful for debugging custom backends.

    Returns:
        True if valid, False otherwise
    """
    required_methods = ["get", "set", "unset"]
    return all(
        hasattr(backend, method) and callable(getattr(backend, method))
        for method in required_methods
    )


# ============================================================================
# NoopBackend - stores nothing
# ============================================================================


class NoopBackend:
    """Backend that forgets everything. Every read is a miss."""

    type: ClassVar[str] = "noop"

    async def get(self, key: str) -> CacheEntry | None:
        return None

    async def set(self, key: str, entry: CacheEntry, expire: int = 0) -> None:
        return None

    async def unset(self, key: str) -> None:
        return None


# ============================================================================
# MemoryBackend - In-memory storage with expiry
# ============================================================================


class MemoryBackend:
    """
    In-memory backend with per-key expiry.

    Attributes:
        _data: key -> (entry, expires_at) map; expires_at=inf never expires
        _lock: re-entrant lock so one instance can be shared across threads
    """

    type: ClassVar[str] = "memory"

    def __init__(self):
        self._data: dict[str, tuple[CacheEntry, float]] = {}
        self._lock = threading.RLock()

    async def get(self, key: str) -> CacheEntry | None:
        """Return the entry unless its expire time has passed, then drop it."""
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None

            entry, expires_at = item
            if expires_at < time.time():
                del self._data[key]
                return None

            return entry

    async def set(self, key: str, entry: CacheEntry, expire: int = 0) -> None:
        expires_at = time.time() + expire if expire > 0 else float("inf")
        with self._lock:
            self._data[key] = (entry, expires_at)

    async def unset(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def clear(self) -> None:
        """Clear all cached data."""
        with self._lock:
            self._data.clear()


# ============================================================================
# RedisBackend - Redis-backed storage
# ============================================================================


class RedisBackend:
    """
    Redis-backed storage using the asyncio client.
    Entries are pickled records; `expire` maps to the key's TTL.

    Example:
        import redis.asyncio as redis
        client = redis.Redis(host='localhost', port=6379)
        cache = Cache(name="app", backend=RedisBackend(client))
        # or
        cache = Cache(name="app", backend={"type": "redis", "url": "redis://localhost:6379/0"})
    """

    type: ClassVar[str] = "redis"

    def __init__(
        self,
        client: Any | None = None,
        url: str = "redis://localhost:6379/0",
        **client_kwargs: Any,
    ):
        """
        Initialize Redis backend.

        Args:
            client: redis.asyncio client instance; built from `url` if omitted
            url: connection URL used when no client is given
            client_kwargs: extra options for redis.asyncio.Redis.from_url
        """
        self._owns_client = client is None
        if client is None:
            client = redis.Redis.from_url(url, **client_kwargs)
        self.client = client

    async def get(self, key: str) -> CacheEntry | None:
        try:
            data = await self.client.get(key)
            if data is None:
                return None
            return CacheEntry.from_record(pickle.loads(data))
        except Exception as e:
            raise BackendError(f"Redis get failed: {e}") from e

    async def set(self, key: str, entry: CacheEntry, expire: int = 0) -> None:
        try:
            data = pickle.dumps(entry.to_record())
            if expire > 0:
                await self.client.set(key, data, ex=math.ceil(expire))
            else:
                await self.client.set(key, data)
        except Exception as e:
            raise BackendError(f"Redis set failed: {e}") from e

    async def unset(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except Exception as e:
            raise BackendError(f"Redis delete failed: {e}") from e

    async def end(self) -> None:
        """Close the client if this backend created it."""
        if self._owns_client:
            await self.client.aclose()
            logger.info("Redis backend connection closed")


# ============================================================================
# Backend registry
# ============================================================================

BackendFactory = Callable[..., CacheBackend]

_BACKENDS: dict[str, BackendFactory] = {
    NoopBackend.type: NoopBackend,
    MemoryBackend.type: MemoryBackend,
    RedisBackend.type: RedisBackend,
}


def register_backend(type_name: str, factory: BackendFactory) -> None:
    """Make a backend available to create_backend() under `type_name`."""
    _BACKENDS[type_name] = factory


def create_backend(spec: Any = None) -> CacheBackend:
    """
    Build a backend from a spec.

    Args:
        spec: None (noop), a type name, a mapping with "type" plus
            constructor kwargs, or a ready backend object

    Raises:
        UnknownBackendError: if the type is not registered
    """
    if spec is None:
        spec = {}
    if isinstance(spec, str):
        spec = {"type": spec}

    if isinstance(spec, Mapping):
        options = dict(spec)
        type_name = options.pop("type", NoopBackend.type)
        factory = _BACKENDS.get(type_name)
        if factory is None:
            raise UnknownBackendError(f"{type_name!r} is not a supported backend")
        backend = factory(**options)
        logger.info(f"Created {type_name} backend")
        return backend

    if validate_backend(spec):
        return spec

    raise UnknownBackendError(f"{spec!r} does not implement the backend interface")
