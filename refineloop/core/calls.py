"""Calling external collaborators that may be sync or async."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional


def _is_async(fn: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(fn) or inspect.iscoroutinefunction(
        getattr(fn, "__call__", None)
    )


async def call_external(
    fn: Callable[..., Any],
    *args: Any,
    timeout: Optional[float] = None,
) -> Any:
    """Await fn(*args), bounded by timeout seconds.

    Coroutine functions are awaited directly. Plain functions run in a
    worker thread via asyncio.to_thread so the event loop stays free while
    other scorers run. A timed-out thread cannot be interrupted; its result
    is discarded.

    Raises:
        asyncio.TimeoutError: if the call exceeds timeout.
    """

    async def _call() -> Any:
        if _is_async(fn):
            return await fn(*args)
        result = await asyncio.to_thread(fn, *args)
        # Plain callables wrapping a coroutine (lambdas, partials)
        if inspect.isawaitable(result):
            result = await result
        return result

    if timeout is None:
        return await _call()
    return await asyncio.wait_for(_call(), timeout)
