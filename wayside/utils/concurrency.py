"""Bounded-concurrency async map used for corridor fan-out."""

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from ..errors import UpstreamTimeoutError

T = TypeVar("T")
R = TypeVar("R")


async def with_deadline(
    awaitable: Awaitable[R],
    timeout_s: Optional[float],
    label: str = "upstream call",
) -> R:
    """Await with an optional deadline; a timeout becomes UpstreamTimeoutError."""
    if not timeout_s:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise UpstreamTimeoutError(f"{label} exceeded {timeout_s:.2f}s") from exc


async def map_with_concurrency(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> List[R]:
    """
    Run worker(item, index) for every item with at most `limit` in flight.

    Results come back in input order regardless of completion order. The
    first worker exception propagates after the remaining workers settle.
    """
    if not items:
        return []
    semaphore = asyncio.Semaphore(max(1, int(limit)))

    async def _run(item: T, index: int) -> R:
        async with semaphore:
            return await worker(item, index)

    results = await asyncio.gather(
        *(_run(item, idx) for idx, item in enumerate(items)),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return list(results)
