"""
Timeout wrapper for backend operations.

A timed out operation is abandoned, not cancelled: it keeps running in the
background and whatever it eventually produces is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, TypeVar

from .exceptions import OperationTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Abandoned operations stay referenced until they finish.
_abandoned: set[asyncio.Future[Any]] = set()


def _discard_outcome(task: asyncio.Future[Any]) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug(f"Abandoned operation failed after timeout: {exc!r}")
    else:
        logger.debug("Abandoned operation finished after timeout")


def _abandon(task: asyncio.Future[Any]) -> None:
    _abandoned.add(task)
    task.add_done_callback(_discard_outcome)


async def with_timeout(operation: Awaitable[T], timeout_ms: float | None) -> T:
    """
    Await `operation`, failing with OperationTimeoutError after timeout_ms.

    Args:
        operation: coroutine or future to run
        timeout_ms: limit in milliseconds; 0 or None waits indefinitely

    Raises:
        OperationTimeoutError: if the limit passes first
    """
    if not timeout_ms:
        return await operation

    task = asyncio.ensure_future(operation)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout_ms / 1000)
    except asyncio.TimeoutError:
        if task.done():
            # Finished in the same tick the timer fired; keep its outcome.
            return task.result()
        _abandon(task)
        raise OperationTimeoutError() from None
    except asyncio.CancelledError:
        # The caller stopped waiting; the operation itself keeps running.
        if not task.done():
            _abandon(task)
        raise
