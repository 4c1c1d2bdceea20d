"""
Timeout behaviour against a deliberately slow backend.
"""

import asyncio
import time

import pytest

from swr_cached import Cache, CacheEntry, OperationTimeoutError, with_timeout
from swr_cached import timeout as timeout_module

BACKEND_DELAY = 0.15


class SlowBackend:
    """Backend whose every operation takes BACKEND_DELAY seconds."""

    def __init__(self):
        self.writes = []

    async def get(self, key):
        await asyncio.sleep(BACKEND_DELAY)
        return CacheEntry.wrap("get result")

    async def set(self, key, entry, expire=0):
        await asyncio.sleep(BACKEND_DELAY)
        self.writes.append((key, entry.value))

    async def unset(self, key):
        await asyncio.sleep(BACKEND_DELAY)


def make_cache(timeout):
    return Cache(name="awesome-name", backend=SlowBackend(), defaults={"timeout": timeout})


class TestWithTimeout:
    """with_timeout wrapper tests."""

    @pytest.mark.asyncio
    async def test_no_timeout_passes_through(self):
        async def operation():
            await asyncio.sleep(0.01)
            return "done"

        assert await with_timeout(operation(), 0) == "done"
        assert await with_timeout(operation(), None) == "done"

    @pytest.mark.asyncio
    async def test_failure_before_deadline_propagates(self):
        """Test a genuine failure is not turned into a timeout."""

        async def operation():
            raise ValueError("broken backend")

        with pytest.raises(ValueError, match="broken backend"):
            await with_timeout(operation(), 100)

    @pytest.mark.asyncio
    async def test_timeout_error_kind(self):
        async def operation():
            await asyncio.sleep(1)

        with pytest.raises(OperationTimeoutError) as exc_info:
            await with_timeout(operation(), 10)
        assert isinstance(exc_info.value, TimeoutError)
        assert str(exc_info.value) == "operation timed out"

    @pytest.mark.asyncio
    async def test_abandoned_operation_keeps_running(self):
        """Test a timed out operation is not cancelled."""
        finished = asyncio.Event()

        async def operation():
            await asyncio.sleep(0.05)
            finished.set()
            raise RuntimeError("late failure is discarded")

        with pytest.raises(OperationTimeoutError):
            await with_timeout(operation(), 10)
        await asyncio.wait_for(finished.wait(), 1)

    @pytest.mark.asyncio
    async def test_cancelled_caller_leaves_operation_running(self):
        """Test cancelling the waiting caller neither cancels nor loses the operation."""
        finished = asyncio.Event()

        async def operation():
            await asyncio.sleep(0.05)
            finished.set()
            raise RuntimeError("late failure is discarded")

        before = set(timeout_module._abandoned)
        caller = asyncio.ensure_future(with_timeout(operation(), 1000))
        await asyncio.sleep(0.01)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        tracked = timeout_module._abandoned - before
        assert len(tracked) == 1

        await asyncio.wait_for(finished.wait(), 1)
        await asyncio.sleep(0.01)
        assert not tracked & timeout_module._abandoned


class TestShortTimeout:
    """A timeout below the backend delay fails fast."""

    @pytest.mark.asyncio
    async def test_get_fails_fast(self):
        cache = make_cache(50)
        start = time.perf_counter()
        with pytest.raises(OperationTimeoutError):
            await cache.get("my-key")
        assert time.perf_counter() - start < 0.1

    @pytest.mark.asyncio
    async def test_set_fails_fast(self):
        cache = make_cache(50)
        start = time.perf_counter()
        with pytest.raises(OperationTimeoutError):
            await cache.set("my-key", "my-value")
        assert time.perf_counter() - start < 0.1

    @pytest.mark.asyncio
    async def test_unset_fails_fast(self):
        cache = make_cache(50)
        with pytest.raises(OperationTimeoutError):
            await cache.unset("my-key")

    @pytest.mark.asyncio
    async def test_timed_out_write_still_lands(self):
        """Test the abandoned backend write completes in the background."""
        cache = make_cache(50)
        with pytest.raises(OperationTimeoutError):
            await cache.set("my-key", "my-value")
        assert cache.backend.writes == []

        await asyncio.sleep(BACKEND_DELAY)
        assert cache.backend.writes == [("awesome-name:my-key", "my-value")]

    @pytest.mark.asyncio
    async def test_get_or_else_fails_fast(self):
        """Test get_or_else degrades to the producer when read and write time out."""
        cache = make_cache(50)
        start = time.perf_counter()
        # Both the read and the write-back run into the timeout
        assert await cache.get_or_else("my-key", "my-value") == "my-value"
        assert time.perf_counter() - start < BACKEND_DELAY

        # The abandoned write still lands and leaves no refresh registered
        await asyncio.sleep(BACKEND_DELAY)
        await cache.refresher.join()
        assert cache.refresher.pending == {}
        assert cache.backend.writes == [("awesome-name:my-key", "my-value")]

    @pytest.mark.asyncio
    async def test_per_call_timeout(self):
        """Test a call-level timeout applies without touching the defaults."""
        cache = make_cache(0)
        start = time.perf_counter()
        assert await cache.get_or_else("my-key", "my-value", timeout=50) == "my-value"
        assert time.perf_counter() - start < BACKEND_DELAY
        assert cache.defaults.timeout == 0

    @pytest.mark.asyncio
    async def test_get_timeout_via_callback(self):
        cache = make_cache(50)
        results = []
        await cache.get("my-key", callback=lambda e, v: results.append((e, v)))
        assert isinstance(results[0][0], OperationTimeoutError)


class TestLongTimeout:
    """A timeout above the backend delay lets operations finish."""

    @pytest.mark.asyncio
    async def test_receives_the_value(self):
        cache = make_cache(250)
        assert await cache.get("my-key") == "get result"

    @pytest.mark.asyncio
    async def test_sets_the_value(self):
        cache = make_cache(250)
        await cache.set("my-key", "my-value")
        assert cache.backend.writes == [("awesome-name:my-key", "my-value")]

    @pytest.mark.asyncio
    async def test_get_or_else_can_retrieve_a_value(self):
        cache = make_cache(250)
        assert await cache.get_or_else("my-key", "my-value") == "get result"
