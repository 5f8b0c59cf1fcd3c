"""Paginated API walking with bounded retries and a page ceiling.

Every provider lists things the same way: fetch a page, read a continuation
token, repeat. ``walk_pages`` owns the loop so each call site only has to
say how one page is fetched.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass

from loguru import logger

from fleetward.infra.retry import (
    DEFAULT_ATTEMPTS,
    DEFAULT_BASE_DELAY,
    RetryPredicate,
    call_with_retry,
    transient,
)


@dataclass(frozen=True, slots=True)
class Page[T]:
    items: Sequence[T]
    next_token: str | None = None


type PageFetcher[T] = Callable[[str | None], Awaitable[Page[T]]]


async def walk_pages[T](
    fetch: PageFetcher[T],
    *,
    max_pages: int,
    provider: str,
    operation: str,
    region: str = "",
    retry_on: RetryPredicate = transient,
    max_attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> AsyncIterator[Page[T]]:
    """Yield pages until the continuation token runs out or ``max_pages``.

    Each page fetch is retried on ``retry_on`` failures with exponential
    backoff (``Retry-After`` honored). Anything else propagates immediately.
    Hitting the ceiling is logged, since the result is then incomplete.
    """
    log = logger.bind(provider=provider, region=region, operation=operation)
    token: str | None = None

    for page_number in range(max_pages):
        current = token
        page = await call_with_retry(
            lambda: fetch(current),
            on=retry_on,
            max_attempts=max_attempts,
            base_delay=base_delay,
            context=f"{provider}:{operation}",
        )
        yield page

        token = page.next_token or None
        if token is None:
            return
        if page_number == max_pages - 1:
            log.warning(
                "{provider}: {operation} pagination hit safety limit of {max_pages} pages "
                "in {region}, data may be incomplete",
                provider=provider, operation=operation,
                max_pages=max_pages, region=region or "-",
            )


async def collect_pages[T](
    fetch: PageFetcher[T],
    *,
    max_pages: int,
    provider: str,
    operation: str,
    region: str = "",
    retry_on: RetryPredicate = transient,
    max_attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
) -> list[T]:
    """All items from :func:`walk_pages`, flattened."""
    items: list[T] = []
    async for page in walk_pages(
        fetch,
        max_pages=max_pages,
        provider=provider,
        operation=operation,
        region=region,
        retry_on=retry_on,
        max_attempts=max_attempts,
        base_delay=base_delay,
    ):
        items.extend(page.items)
    return items


__all__ = ["Page", "PageFetcher", "collect_pages", "walk_pages"]
