from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class PerfTimeoutError(TimeoutError):
    """Raised when an external call exceeds its time allowance."""


async def enforce_timeout(
    coro_fn: Callable[[], Awaitable[T]],
    timeout_ms: int,
    *,
    operation: str = "operation",
) -> T:
    if timeout_ms <= 0:
        return await coro_fn()
    try:
        return await asyncio.wait_for(coro_fn(), timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as exc:  # noqa: PERF203
        raise PerfTimeoutError(f"{operation} exceeded {timeout_ms} ms") from exc


__all__ = ["PerfTimeoutError", "enforce_timeout"]
