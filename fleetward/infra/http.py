from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, overload, runtime_checkable

import aiohttp
from loguru import logger

# ─── Errors ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True, eq=False)
class HttpError(Exception):
    status: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"HTTP {self.status}: {self.body}"

    @property
    def retry_after(self) -> float | None:
        """Seconds requested by a ``Retry-After`` header, if any."""
        raw = next(
            (v for k, v in self.headers.items() if k.lower() == "retry-after"),
            None,
        )
        if raw is None:
            return None
        try:
            seconds = float(raw.strip())
        except ValueError:
            return None
        return seconds if seconds > 0 else None

    @property
    def transient(self) -> bool:
        return is_transient_status(self.status)


def is_transient_status(status: int) -> bool:
    """Network failures (0), rate limiting (429) and server errors (5xx)."""
    return status == 0 or status == 429 or status >= 500


# ─── Response ────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Response[T]:
    status: int
    data: T
    headers: dict[str, str]


# ─── Auth ────────────────────────────────────────────────────────────


@runtime_checkable
class Auth(Protocol):
    async def headers(self) -> dict[str, str]: ...
    async def on_401(self) -> None: ...


class BearerAuth:
    def __init__(self, token: str) -> None:
        self._token = token

    async def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }

    async def on_401(self) -> None:
        pass


class OAuth2Auth:
    """Client-credentials OAuth2 token source.

    Tokens are reused until ``expires_in`` minus ``skew`` seconds, and
    dropped on a 401 so the next request fetches a fresh one.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        *,
        scope: str | None = None,
        skew: float = 120.0,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._scope = scope
        self._skew = skew
        self._token: str | None = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def _fetch_token(self) -> tuple[str, float]:
        logger.bind(component="http").debug("Fetching OAuth2 token")
        form = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        if self._scope:
            form["scope"] = self._scope
        timeout = aiohttp.ClientTimeout(total=30)
        async with aiohttp.ClientSession(timeout=timeout) as session, session.post(
            self._token_url, data=form,
        ) as resp:
            if resp.status >= 400:
                body = await resp.text()
                logger.bind(component="http").error(
                    "OAuth2 token fetch failed: status={status} body={body}",
                    status=resp.status, body=body[:200],
                )
                raise HttpError(status=resp.status, body=body)
            data = await resp.json()
            return data["access_token"], float(data.get("expires_in", 3600))

    async def headers(self) -> dict[str, str]:
        async with self._lock:
            if self._token is None or time.monotonic() >= self._expires_at:
                token, expires_in = await self._fetch_token()
                self._token = token
                self._expires_at = time.monotonic() + max(expires_in - self._skew, 0.0)
        return {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/json",
        }

    async def on_401(self) -> None:
        async with self._lock:
            self._token = None


# ─── Client ──────────────────────────────────────────────────────────


class HttpClient:
    def __init__(
        self,
        base_url: str = "",
        auth: Auth | None = None,
        *,
        timeout: float = 30,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._default_headers = default_headers or {}
        self._session: aiohttp.ClientSession | None = None
        self._log = logger.bind(component="http")

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}{path}"

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _build_headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = dict(self._default_headers)
        if self._auth:
            headers.update(await self._auth.headers())
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        format: Literal["json", "text"] = "json",
    ) -> tuple[int, Any, dict[str, str]]:
        session = await self._ensure_session()
        request_headers = await self._build_headers(headers)
        url = self._url(path)
        self._log.debug("{method} {url}", method=method, url=url)

        try:
            async with session.request(
                method, url, headers=request_headers, json=json, params=params
            ) as resp:
                if resp.status == 401 and self._auth:
                    self._log.debug("401 received, refreshing auth and retrying")
                    await self._auth.on_401()
                    retry_headers = await self._build_headers(headers)
                    async with session.request(
                        method,
                        url,
                        headers=retry_headers,
                        json=json,
                        params=params,
                    ) as retry_resp:
                        return await self._parse(retry_resp, format)

                return await self._parse(resp, format)
        except aiohttp.ClientResponseError as e:
            raise HttpError(status=e.status, body=e.message) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise HttpError(status=0, body=str(e) or type(e).__name__) from e

    async def _parse(
        self, resp: aiohttp.ClientResponse, format: Literal["json", "text"]
    ) -> tuple[int, Any, dict[str, str]]:
        resp_headers = dict(resp.headers)
        if resp.status >= 400:
            body = await resp.text()
            self._log.warning(
                "HTTP {status} from {url}: {body}",
                status=resp.status, url=str(resp.url), body=body[:500],
            )
            raise HttpError(status=resp.status, body=body, headers=resp_headers)
        match format:
            case "json":
                body = await resp.read()
                data = await resp.json(content_type=None) if body else None
                return resp.status, data, resp_headers
            case "text":
                return resp.status, await resp.text(), resp_headers

    # ─── Untyped low-level ───────────────────────────────────────────

    @overload
    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        format: Literal["json"] = "json",
    ) -> Any: ...

    @overload
    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        format: Literal["text"],
    ) -> str: ...

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        format: Literal["json", "text"] = "json",
    ) -> Any:
        _, data, _ = await self._send(
            method, path, json=json, params=params, headers=headers, format=format,
        )
        return data

    # ─── Typed convenience ───────────────────────────────────────────

    async def _typed[T](
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        response_type: type[T],
    ) -> Response[T]:
        _ = response_type
        status, data, headers = await self._send(method, path, json=json, params=params)
        return Response(status=status, data=data, headers=headers)

    async def get[T](
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        response_type: type[T],
    ) -> Response[T]:
        return await self._typed("GET", path, params=params, response_type=response_type)

    async def post[T](
        self,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        response_type: type[T],
    ) -> Response[T]:
        return await self._typed(
            "POST", path, json=json, params=params,
            response_type=response_type,
        )

    async def put[T](
        self,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        response_type: type[T],
    ) -> Response[T]:
        return await self._typed("PUT", path, json=json, params=params, response_type=response_type)

    async def patch[T](
        self,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        response_type: type[T],
    ) -> Response[T]:
        return await self._typed(
            "PATCH", path, json=json, params=params,
            response_type=response_type,
        )

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def close(self) -> None:
        if self._session and not self._session.closed:
            self._log.debug("Closing HTTP session")
            await self._session.close()

    async def __aenter__(self) -> HttpClient:
        await self._ensure_session()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
