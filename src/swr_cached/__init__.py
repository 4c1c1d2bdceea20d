"""
Stale-while-revalidate caching in front of pluggable async backends.

Expose the Cache facade, named caches, backends and the SWR decorator under `swr_cached`.
"""

from .exceptions import (
    CacheError,
    BackendError,
    OperationTimeoutError,
    UnknownBackendError,
)
from .options import CacheOptions
from .storage import (
    CacheEntry,
    CacheBackend,
    NoopBackend,
    MemoryBackend,
    RedisBackend,
    create_backend,
    register_backend,
    unwrap,
    validate_backend,
)
from .timeout import with_timeout
from .refresh import RefreshCoordinator
from .cache import Cache
from .named import (
    cached,
    known_caches,
    drop_named_cache,
    drop_named_caches,
    deferred,
)
from .decorators import SWRCache, StaleWhileRevalidateCache

__all__ = [
    "CacheError",
    "BackendError",
    "OperationTimeoutError",
    "UnknownBackendError",
    "CacheOptions",
    "CacheEntry",
    "CacheBackend",
    "NoopBackend",
    "MemoryBackend",
    "RedisBackend",
    "create_backend",
    "register_backend",
    "unwrap",
    "validate_backend",
    "with_timeout",
    "RefreshCoordinator",
    "Cache",
    "cached",
    "known_caches",
    "drop_named_cache",
    "drop_named_caches",
    "deferred",
    "SWRCache",
    "StaleWhileRevalidateCache",
]
