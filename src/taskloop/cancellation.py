"""Racing awaitables against an abort signal and a timeout."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable
from typing import TypeVar

from taskloop.errors import LoopCancelledError

R = TypeVar("R")


def check_cancelled(cancel_event: asyncio.Event | None, where: str = "") -> None:
    """Raise ``LoopCancelledError`` if the abort signal is set."""
    if cancel_event is not None and cancel_event.is_set():
        suffix = f" ({where})" if where else ""
        raise LoopCancelledError(f"Task was cancelled{suffix}")


async def run_cancellable(
    awaitable: Awaitable[R],
    cancel_event: asyncio.Event | None = None,
    timeout: float | None = None,
    where: str = "",
) -> R:
    """Await ``awaitable`` unless the abort signal fires or ``timeout`` passes.

    Raises:
        LoopCancelledError: ``cancel_event`` was set before or during the call.
        asyncio.TimeoutError: The call exceeded ``timeout`` seconds.
    """
    if cancel_event is not None and cancel_event.is_set():
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        check_cancelled(cancel_event, where)
    task = asyncio.ensure_future(awaitable)
    if cancel_event is None:
        return await asyncio.wait_for(task, timeout=timeout)

    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        # The caller itself was cancelled: take the work down with it.
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task in done:
        return task.result()

    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, Exception):
        pass
    if waiter in done:
        suffix = f" ({where})" if where else ""
        raise LoopCancelledError(f"Task was cancelled{suffix}")
    raise asyncio.TimeoutError(f"Timed out after {timeout}s")
