"""
Caller-supplied abort signals.

An abort signal is a plain asyncio.Event. Cancelling the calling task works
too; the event exists for callers that want to stop a request from elsewhere
without owning the task.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, TypeVar

from .errors import AbortedError

T = TypeVar("T")


async def abortable(awaitable: Awaitable[T], abort: Optional[asyncio.Event]) -> T:
    """
    Await `awaitable`, cancelling it if `abort` fires first.
    Raises AbortedError when the abort wins.
    """
    if abort is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if abort.is_set():
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise AbortedError("request aborted before it was sent")

    waiter = asyncio.ensure_future(abort.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise AbortedError("request aborted by caller")
