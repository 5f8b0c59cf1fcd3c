"""Azure Resource Manager credentials.

Two token sources, tried in order: a service principal (client credentials
against Entra ID) and the instance metadata service of the VM the process
runs on (managed identity).
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence

import aiohttp
from loguru import logger

from fleetward.errors import ConfigError
from fleetward.infra.http import Auth, HttpError, OAuth2Auth

from .config import Azure

log = logger.bind(provider="azure")

ARM_RESOURCE = "https://management.azure.com/"
ARM_SCOPE = "https://management.azure.com/.default"
IMDS_TOKEN_URL = "http://169.254.169.254/metadata/identity/oauth2/token"
IMDS_API_VERSION = "2018-02-01"
IMDS_TIMEOUT = 10.0
TOKEN_SKEW = 120.0

_TOKEN_ERRORS = (HttpError, aiohttp.ClientError, asyncio.TimeoutError, KeyError, ValueError)


def service_principal_token_url(tenant_id: str) -> str:
    return f"https://login.microsoftonline.com/{tenant_id}/oauth2/v2.0/token"


class ManagedIdentityAuth:
    """Token source backed by the Azure instance metadata service.

    IMDS reports ``expires_on`` as unix seconds; tokens are reused until
    ``skew`` seconds before that.
    """

    def __init__(
        self,
        *,
        client_id: str = "",
        token_url: str = IMDS_TOKEN_URL,
        skew: float = TOKEN_SKEW,
    ) -> None:
        self._client_id = client_id
        self._token_url = token_url
        self._skew = skew
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def _fetch_token(self) -> tuple[str, float]:
        params = {"api-version": IMDS_API_VERSION, "resource": ARM_RESOURCE}
        if self._client_id:
            params["client_id"] = self._client_id
        timeout = aiohttp.ClientTimeout(total=IMDS_TIMEOUT)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session, session.get(
                self._token_url, params=params, headers={"Metadata": "true"},
            ) as resp:
                if resp.status >= 400:
                    raise HttpError(status=resp.status, body=await resp.text())
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HttpError(status=0, body=str(e) or type(e).__name__) from e

        expires_on = float(data.get("expires_on") or 0)
        lifetime = expires_on - time.time() if expires_on else 3600.0
        return data["access_token"], lifetime

    async def headers(self) -> dict[str, str]:
        async with self._lock:
            if self._token is None or time.monotonic() >= self._expires_at:
                token, lifetime = await self._fetch_token()
                self._token = token
                self._expires_at = time.monotonic() + max(lifetime - self._skew, 0.0)
                log.debug("azure: acquired managed identity token")
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }

    async def on_401(self) -> None:
        async with self._lock:
            self._token = None


class ChainedAuth:
    """First source that yields a token wins; later ones are fallbacks.

    The winning source is remembered until it fails, at which point the
    chain is walked again from the top.
    """

    def __init__(self, sources: Sequence[Auth]) -> None:
        if not sources:
            raise ValueError("ChainedAuth needs at least one source")
        self._sources = list(sources)
        self._active: Auth | None = None

    async def headers(self) -> dict[str, str]:
        if self._active is not None:
            try:
                return await self._active.headers()
            except _TOKEN_ERRORS as e:
                log.warning(
                    "azure: {source} token refresh failed operation=auth: {err}",
                    source=type(self._active).__name__, err=e,
                )
                self._active = None

        errors: list[str] = []
        for source in self._sources:
            try:
                headers = await source.headers()
            except _TOKEN_ERRORS as e:
                log.warning(
                    "azure: {source} unavailable operation=auth: {err}",
                    source=type(source).__name__, err=e,
                )
                errors.append(f"{type(source).__name__}: {e}")
                continue
            self._active = source
            return headers
        raise ConfigError(f"no Azure credentials available ({'; '.join(errors)})")

    async def on_401(self) -> None:
        if self._active is not None:
            await self._active.on_401()


def azure_auth(config: Azure) -> Auth:
    """Service principal falling back to managed identity, or IMDS alone."""
    imds = ManagedIdentityAuth(client_id="" if config.has_service_principal else config.client_id)
    if not config.has_service_principal:
        return imds
    principal = OAuth2Auth(
        config.client_id,
        config.client_secret,
        service_principal_token_url(config.tenant_id),
        scope=ARM_SCOPE,
        skew=TOKEN_SKEW,
    )
    return ChainedAuth([principal, imds])


__all__ = [
    "ARM_RESOURCE",
    "ARM_SCOPE",
    "ChainedAuth",
    "ManagedIdentityAuth",
    "azure_auth",
    "service_principal_token_url",
]
