"""Thin Azure Resource Manager client on top of :class:`HttpClient`.

Every call is retried on network errors, 429 and 5xx with exponential
backoff (``Retry-After`` honored). A 401 drops the cached token and is
retried once by the underlying client.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping
from typing import Any

from fleetward.infra.http import Auth, HttpClient
from fleetward.infra.pagination import Page, walk_pages
from fleetward.infra.retry import call_with_retry, transient

ARM_BASE_URL = "https://management.azure.com"
COMPUTE_API_VERSION = "2024-03-01"
# One try plus three retries at 1s, 2s, 4s.
ARM_MAX_ATTEMPTS = 4


class ArmClient:
    def __init__(self, auth: Auth, *, timeout: float = 30, base_url: str = ARM_BASE_URL) -> None:
        self._http = HttpClient(base_url, auth, timeout=timeout)

    async def _call(
        self,
        method: str,
        path: str,
        api_version: str | None,
        *,
        json: dict[str, Any] | None = None,
        operation: str,
    ) -> Any:
        params = {"api-version": api_version} if api_version else None
        return await call_with_retry(
            lambda: self._http.request(method, path, json=json, params=params),
            on=transient,
            max_attempts=ARM_MAX_ATTEMPTS,
            context=f"azure:{operation}",
        )

    async def get(self, path: str, api_version: str, *, operation: str) -> Any:
        return await self._call("GET", path, api_version, operation=operation)

    async def patch(
        self, path: str, api_version: str, body: dict[str, Any], *, operation: str,
    ) -> Any:
        return await self._call("PATCH", path, api_version, json=body, operation=operation)

    async def put(
        self, path: str, api_version: str, body: dict[str, Any], *, operation: str,
    ) -> Any:
        return await self._call("PUT", path, api_version, json=body, operation=operation)

    async def list(
        self,
        path: str,
        api_version: str,
        *,
        operation: str,
        max_pages: int,
        region: str = "",
    ) -> AsyncIterator[Mapping[str, Any]]:
        """Yield every ``value`` item, following ``nextLink``.

        ``nextLink`` is an absolute URL that already carries the api-version.
        """

        async def fetch(token: str | None) -> Page[Mapping[str, Any]]:
            params = None if token else {"api-version": api_version}
            data = await self._http.request("GET", token or path, params=params) or {}
            return Page(data.get("value") or [], data.get("nextLink"))

        async for page in walk_pages(
            fetch,
            max_pages=max_pages,
            provider="azure",
            operation=operation,
            region=region,
            max_attempts=ARM_MAX_ATTEMPTS,
        ):
            for item in page.items:
                yield item

    async def close(self) -> None:
        await self._http.close()


__all__ = ["ARM_BASE_URL", "ARM_MAX_ATTEMPTS", "COMPUTE_API_VERSION", "ArmClient"]
