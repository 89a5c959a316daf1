"""Fixed-size batch runner for rate-limited upstream APIs."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

T = TypeVar("T")


async def run_in_batches(
    items: Sequence[T],
    batch_size: int,
    fn: Callable[[T], Awaitable[Any]],
    delay: float = 0.0,
) -> list[Any]:
    """Run ``fn`` over ``items`` at most ``batch_size`` at a time.

    Each batch runs concurrently and must fully settle before the next one
    starts. Exceptions are returned in place of results, never raised.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    results: list[Any] = []
    for start in range(0, len(items), batch_size):
        batch = items[start : start + batch_size]
        results.extend(
            await asyncio.gather(*(fn(item) for item in batch), return_exceptions=True)
        )
        if delay and start + batch_size < len(items):
            await asyncio.sleep(delay)
    return results
