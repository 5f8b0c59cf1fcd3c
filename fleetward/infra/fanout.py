"""Semaphore-gated parallel dispatch."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable

DEFAULT_FANOUT_LIMIT = 10


async def bounded_gather[I, O](
    fn: Callable[[I], Awaitable[O]],
    items: Iterable[I],
    limit: int = DEFAULT_FANOUT_LIMIT,
) -> list[O]:
    """Apply ``fn`` to every item with at most ``limit`` calls in flight.

    Results keep input order. The first failure cancels the outstanding
    calls and is re-raised.

    Example:
        >>> sizes = await bounded_gather(fetch_group_size, urls, limit=10)
    """
    items_list = list(items)
    if not items_list:
        return []
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    sem = asyncio.Semaphore(limit)

    async def _one(item: I) -> O:
        async with sem:
            return await fn(item)

    tasks = [asyncio.create_task(_one(item)) for item in items_list]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


__all__ = ["DEFAULT_FANOUT_LIMIT", "bounded_gather"]
