from __future__ import annotations

import time

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from fleetward.errors import ConfigError, TransientError
from fleetward.infra.http import BearerAuth, HttpError, OAuth2Auth
from fleetward.providers.azure.arm import ARM_MAX_ATTEMPTS, ArmClient
from fleetward.providers.azure.auth import ChainedAuth, ManagedIdentityAuth, azure_auth
from fleetward.providers.azure.config import Azure

pytestmark = [pytest.mark.unit]

CALLS = web.AppKey("calls", dict[str, int])


def make_app() -> web.Application:
    app = web.Application()
    calls = {"imds": 0, "flaky": 0, "down": 0}
    app[CALLS] = calls

    async def imds_token(request: web.Request) -> web.Response:
        if request.headers.get("Metadata") != "true":
            return web.Response(status=400, text="missing Metadata header")
        calls["imds"] += 1
        return web.json_response({
            "access_token": f"imds-{request.query.get('client_id', 'system')}",
            "expires_on": str(int(time.time()) + 3600),
        })

    async def vm(request: web.Request) -> web.Response:
        return web.json_response({
            "name": "vm-1",
            "api": request.query.get("api-version"),
            "auth": request.headers.get("Authorization"),
        })

    async def scale_sets(request: web.Request) -> web.Response:
        if request.query.get("page") == "2":
            return web.json_response({"value": [{"name": "c"}]})
        assert request.query.get("api-version") == "2024-03-01"
        next_link = str(request.url.with_query({"page": "2", "api-version": "2024-03-01"}))
        return web.json_response({"value": [{"name": "a"}, {"name": "b"}], "nextLink": next_link})

    async def flaky(_: web.Request) -> web.Response:
        calls["flaky"] += 1
        if calls["flaky"] < 3:
            return web.Response(status=503, text="busy")
        return web.json_response({"ok": True})

    async def down(_: web.Request) -> web.Response:
        calls["down"] += 1
        return web.Response(status=500, text="boom")

    async def missing(_: web.Request) -> web.Response:
        return web.json_response({"error": {"code": "ResourceNotFound"}}, status=404)

    async def capacity(request: web.Request) -> web.Response:
        return web.json_response({"method": request.method, "body": await request.json()})

    app.router.add_get("/metadata/identity/oauth2/token", imds_token)
    app.router.add_get("/vm", vm)
    app.router.add_get("/scaleSets", scale_sets)
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/down", down)
    app.router.add_get("/missing", missing)
    app.router.add_route("*", "/capacity", capacity)
    return app


@pytest.fixture
async def server():
    srv = TestServer(make_app())
    await srv.start_server()
    yield srv
    await srv.close()


@pytest.fixture
def base_url(server: TestServer) -> str:
    return f"http://{server.host}:{server.port}"


@pytest.fixture
async def arm(base_url: str):
    client = ArmClient(BearerAuth("arm-token"), base_url=base_url)
    yield client
    await client.close()


class TestManagedIdentity:
    async def test_token_is_cached(self, server: TestServer, base_url: str):
        auth = ManagedIdentityAuth(token_url=f"{base_url}/metadata/identity/oauth2/token")
        first = await auth.headers()
        second = await auth.headers()
        assert first["Authorization"] == "Bearer imds-system"
        assert first == second
        assert server.app[CALLS]["imds"] == 1

    async def test_user_assigned_identity(self, base_url: str):
        auth = ManagedIdentityAuth(
            client_id="uami", token_url=f"{base_url}/metadata/identity/oauth2/token",
        )
        assert (await auth.headers())["Authorization"] == "Bearer imds-uami"

    async def test_on_401_refetches(self, server: TestServer, base_url: str):
        auth = ManagedIdentityAuth(token_url=f"{base_url}/metadata/identity/oauth2/token")
        await auth.headers()
        await auth.on_401()
        await auth.headers()
        assert server.app[CALLS]["imds"] == 2

    async def test_unreachable_endpoint(self, base_url: str):
        auth = ManagedIdentityAuth(token_url=f"{base_url}/nowhere")
        with pytest.raises(HttpError) as exc:
            await auth.headers()
        assert exc.value.status == 404


class FailingSource:
    def __init__(self) -> None:
        self.calls = 0

    async def headers(self) -> dict[str, str]:
        self.calls += 1
        raise HttpError(401, "invalid_client")

    async def on_401(self) -> None:
        pass


class CountingSource(BearerAuth):
    def __init__(self, token: str) -> None:
        super().__init__(token)
        self.calls = 0

    async def headers(self) -> dict[str, str]:
        self.calls += 1
        return await super().headers()


class TestChainedAuth:
    async def test_first_working_source_wins(self):
        failing, working = FailingSource(), CountingSource("second")
        chain = ChainedAuth([failing, working])
        assert (await chain.headers())["Authorization"] == "Bearer second"
        await chain.headers()
        assert failing.calls == 1
        assert working.calls == 2

    async def test_all_sources_failing(self):
        with pytest.raises(ConfigError, match="no Azure credentials available"):
            await ChainedAuth([FailingSource(), FailingSource()]).headers()

    def test_needs_a_source(self):
        with pytest.raises(ValueError):
            ChainedAuth([])

    def test_service_principal_chain(self):
        config = Azure(
            subscription_id="sub", resource_group="rg",
            tenant_id="t", client_id="c", client_secret="s",
        )
        assert isinstance(azure_auth(config), ChainedAuth)

    def test_managed_identity_alone(self):
        auth = azure_auth(Azure(subscription_id="sub", resource_group="rg"))
        assert isinstance(auth, ManagedIdentityAuth)
        assert not isinstance(auth, OAuth2Auth)


class TestArmClient:
    async def test_get_sends_api_version_and_token(self, arm: ArmClient):
        result = await arm.get("/vm", "2024-03-01", operation="get_vm")
        assert result == {"name": "vm-1", "api": "2024-03-01", "auth": "Bearer arm-token"}

    async def test_list_follows_next_link(self, arm: ArmClient):
        names = [
            item["name"]
            async for item in arm.list(
                "/scaleSets", "2024-03-01", operation="list_vmss", max_pages=5,
            )
        ]
        assert names == ["a", "b", "c"]

    async def test_list_respects_page_ceiling(self, arm: ArmClient):
        names = [
            item["name"]
            async for item in arm.list(
                "/scaleSets", "2024-03-01", operation="list_vmss", max_pages=1,
            )
        ]
        assert names == ["a", "b"]

    async def test_retries_server_errors(self, arm: ArmClient, server: TestServer, no_backoff):
        assert await arm.get("/flaky", "v", operation="flaky") == {"ok": True}
        assert server.app[CALLS]["flaky"] == 3

    async def test_exhausted_retries(self, arm: ArmClient, server: TestServer, no_backoff):
        with pytest.raises(TransientError) as exc:
            await arm.get("/down", "v", operation="get_down")
        assert exc.value.attempts == ARM_MAX_ATTEMPTS
        assert "azure:get_down" in str(exc.value)
        assert server.app[CALLS]["down"] == ARM_MAX_ATTEMPTS

    async def test_not_found_is_not_retried(self, arm: ArmClient):
        with pytest.raises(HttpError) as exc:
            await arm.get("/missing", "v", operation="get_missing")
        assert exc.value.status == 404

    async def test_patch_and_put_send_body(self, arm: ArmClient):
        patched = await arm.patch("/capacity", "v", {"sku": {"capacity": 3}}, operation="scale")
        put = await arm.put("/capacity", "v", {"properties": {}}, operation="bounds")
        assert patched == {"method": "PATCH", "body": {"sku": {"capacity": 3}}}
        assert put == {"method": "PUT", "body": {"properties": {}}}
