"""Timeouts and backoff for remote calls.

This module provides:
- call_with_timeout: Await a remote call with a timeout and an abort signal
- backoff_delays: Exponential backoff schedule

A timed-out call is treated exactly like a network failure.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Every mobile-originated call uses the same timeout
DEFAULT_REQUEST_TIMEOUT = 5.0  # seconds

# Default backoff configuration
DEFAULT_INITIAL_BACKOFF = 5.0  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0


class DrainAborted(Exception):
    """Connectivity dropped while a remote call was in flight."""


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
    abort: asyncio.Event | None = None,
) -> T:
    """Await `awaitable`, giving up after `timeout` seconds or on `abort`.

    Raises:
        TimeoutError: The call did not finish in time.
        DrainAborted: `abort` was set before the call finished.
    """
    if abort is None:
        return await asyncio.wait_for(awaitable, timeout)

    task: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await task
    if abort.is_set():
        raise DrainAborted("connectivity lost during call")
    raise TimeoutError(f"call timed out after {timeout:.1f}s")


def backoff_delays(
    initial: float = DEFAULT_INITIAL_BACKOFF,
    maximum: float = DEFAULT_MAX_BACKOFF,
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
) -> Iterator[float]:
    """Yield an endless exponential backoff schedule capped at `maximum`."""
    delay = initial
    while True:
        yield delay
        delay = min(delay * multiplier, maximum)
