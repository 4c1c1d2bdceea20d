"""
Exception types raised by the cache and its backends.

Errors raised by value producers are never wrapped; they reach the caller as-is.
"""


class CacheError(Exception):
    """Base class for all cache errors."""


class BackendError(CacheError):
    """A storage backend failed (connectivity, serialization, protocol)."""


class OperationTimeoutError(CacheError, TimeoutError):
    """A backend operation took longer than the configured timeout."""

    def __init__(self, message: str = "operation timed out"):
        super().__init__(message)


class UnknownBackendError(CacheError, ValueError):
    """No backend is registered under the requested type."""
