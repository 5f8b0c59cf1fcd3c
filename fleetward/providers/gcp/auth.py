"""Application Default Credentials for the GCP REST APIs.

The sync Compute Engine clients pick credentials up on their own. The
aiohttp-based calls (GKE, Cloud Billing) go through :class:`GoogleAuth`,
which refreshes the ADC token in the thread pool.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Mapping
from concurrent.futures import Executor
from typing import Any

from loguru import logger

from fleetward.config import first_env
from fleetward.errors import ConfigError

log = logger.bind(provider="gcp")

SCOPES = (
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/compute",
)


def resolve_project(explicit: str | None, env: Mapping[str, str] | None = None) -> str:
    """Resolve GCP project: explicit > env > ADC."""
    if explicit:
        return explicit

    env = os.environ if env is None else env
    if project := first_env(env, "GOOGLE_CLOUD_PROJECT", "GCP_PROJECT", "GCLOUD_PROJECT"):
        return project

    import google.auth  # type: ignore[reportMissingImports]
    from google.auth.exceptions import DefaultCredentialsError

    try:
        _, project = google.auth.default()
    except DefaultCredentialsError as e:
        raise ConfigError(f"GCP project not configured: {e}") from e
    if not project:
        raise ConfigError("GCP project not configured: set GOOGLE_CLOUD_PROJECT or GCP_PROJECT")
    return project


class GoogleAuth:
    """:class:`~fleetward.infra.http.Auth` over google-auth credentials."""

    def __init__(self, credentials: Any, *, executor: Executor | None = None) -> None:
        self._credentials = credentials
        self._executor = executor
        self._stale = False
        self._lock = asyncio.Lock()

    @classmethod
    def default(cls, *, executor: Executor | None = None) -> GoogleAuth:
        import google.auth  # type: ignore[reportMissingImports]
        from google.auth.exceptions import DefaultCredentialsError

        try:
            credentials, _ = google.auth.default(scopes=list(SCOPES))
        except DefaultCredentialsError as e:
            raise ConfigError(f"no GCP credentials available: {e}") from e
        return cls(credentials, executor=executor)

    async def _refresh(self) -> None:
        from google.auth.exceptions import RefreshError
        from google.auth.transport.requests import Request

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(self._executor, self._credentials.refresh, Request())
        except RefreshError as e:
            log.error("gcp: token refresh failed operation=auth: {err}", err=e)
            raise ConfigError(f"GCP credentials could not be refreshed: {e}") from e

    async def headers(self) -> dict[str, str]:
        async with self._lock:
            if self._stale or not self._credentials.valid:
                await self._refresh()
                self._stale = False
        return {
            "Authorization": f"Bearer {self._credentials.token}",
            "Accept": "application/json",
        }

    async def on_401(self) -> None:
        async with self._lock:
            self._stale = True


__all__ = ["SCOPES", "GoogleAuth", "resolve_project"]
