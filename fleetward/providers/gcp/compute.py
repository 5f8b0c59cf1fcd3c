"""Compute Engine access through the sync ``compute_v1`` clients.

Every call is dispatched to a dedicated thread pool and retried on 429 and
5xx with exponential backoff. List calls stop after ``max_pages`` pages.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Final

from google.api_core import exceptions as google_exceptions
from loguru import logger
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = logger.bind(provider="gcp")

# One try plus three retries.
COMPUTE_MAX_ATTEMPTS: Final = 4
MACHINE_TYPES_MAX_PAGES: Final = 20
COMMITMENTS_MAX_PAGES: Final = 50

_RETRYABLE = (google_exceptions.TooManyRequests, google_exceptions.ServerError)


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    log.warning(
        "gcp: retry {n}/{total} {call} after {kind}: {err}",
        n=state.attempt_number, total=COMPUTE_MAX_ATTEMPTS,
        call=getattr(state.fn, "__name__", "call"), kind=type(error).__name__, err=error,
    )


_compute_retry = retry(
    stop=stop_after_attempt(COMPUTE_MAX_ATTEMPTS),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type(_RETRYABLE),
    before_sleep=_log_retry,
    reraise=True,
)


@_compute_retry
def _call(fn: Callable[..., Any], **kwargs: Any) -> Any:
    return fn(**kwargs)


@_compute_retry
def _collect(list_fn: Callable[..., Any], max_pages: int, **kwargs: Any) -> tuple[list[Any], bool]:
    """Items from at most ``max_pages`` pages, and whether more remained."""
    items: list[Any] = []
    for number, page in enumerate(list_fn(**kwargs).pages, start=1):
        items.extend(page.items)
        if number >= max_pages:
            return items, bool(page.next_page_token)
    return items, False


def zone_name(zone_url: str) -> str:
    """Last path segment of a zone URL."""
    return zone_url.rstrip("/").rsplit("/", 1)[-1]


class ComputeEngine:
    """Sync Compute Engine clients dispatched to a dedicated thread pool."""

    def __init__(
        self,
        project: str,
        *,
        machine_types: Any,
        regions: Any,
        commitments: Any,
        thread_pool: ThreadPoolExecutor,
    ) -> None:
        self.project = project
        self._machine_types = machine_types
        self._regions = regions
        self._commitments = commitments
        self._pool = thread_pool

    async def _run[T](self, fn: Callable[..., T], *args: object, **kwargs: object) -> T:
        loop = asyncio.get_running_loop()
        if kwargs:
            return await loop.run_in_executor(
                self._pool, lambda: fn(*args, **kwargs),
            )
        return await loop.run_in_executor(self._pool, fn, *args)

    @classmethod
    def create(cls, project: str, *, thread_pool: ThreadPoolExecutor) -> ComputeEngine:
        from google.cloud import compute_v1  # type: ignore[reportMissingImports]

        return cls(
            project,
            machine_types=compute_v1.MachineTypesClient(),
            regions=compute_v1.RegionsClient(),
            commitments=compute_v1.RegionCommitmentsClient(),
            thread_pool=thread_pool,
        )

    def _truncated(self, operation: str, region: str, max_pages: int) -> None:
        log.warning(
            "gcp: {operation} pagination hit safety limit of {max_pages} pages "
            "in {region}, data may be incomplete",
            operation=operation, max_pages=max_pages, region=region,
        )

    async def region_zones(self, region: str) -> list[str]:
        from google.cloud import compute_v1  # type: ignore[reportMissingImports]

        found = await self._run(
            _call,
            self._regions.get,
            request=compute_v1.GetRegionRequest(project=self.project, region=region),
        )
        return [zone_name(z) for z in found.zones]

    async def machine_types(
        self, zone: str, *, max_pages: int = MACHINE_TYPES_MAX_PAGES,
    ) -> list[Any]:
        from google.cloud import compute_v1  # type: ignore[reportMissingImports]

        items, truncated = await self._run(
            _collect,
            self._machine_types.list,
            max_pages,
            request=compute_v1.ListMachineTypesRequest(project=self.project, zone=zone),
        )
        if truncated:
            self._truncated("list_machine_types", zone, max_pages)
        return items

    async def commitments(
        self, region: str, *, max_pages: int = COMMITMENTS_MAX_PAGES,
    ) -> list[Any]:
        from google.cloud import compute_v1  # type: ignore[reportMissingImports]

        items, truncated = await self._run(
            _collect,
            self._commitments.list,
            max_pages,
            request=compute_v1.ListRegionCommitmentsRequest(
                project=self.project, region=region, filter="status=ACTIVE",
            ),
        )
        if truncated:
            self._truncated("list_commitments", region, max_pages)
        return items

    def close(self) -> None:
        self._pool.shutdown(wait=False)


__all__ = [
    "COMMITMENTS_MAX_PAGES",
    "COMPUTE_MAX_ATTEMPTS",
    "MACHINE_TYPES_MAX_PAGES",
    "ComputeEngine",
    "zone_name",
]
