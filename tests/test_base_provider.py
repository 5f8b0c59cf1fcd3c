from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from conftest import make_group, make_type

from fleetward.errors import NodeError, PricingError, ScaleBoundsError
from fleetward.pricing import PricingResolver
from fleetward.providers.base import BaseProvider, filter_family, validate_scale
from fleetward.store.pricing_cache import PricingCache
from fleetward.types import HOURS_PER_MONTH, InstanceType, Node, NodeGroup

pytestmark = [pytest.mark.unit]

CATALOG = [
    make_type("m5.large", 2, 8192),
    make_type("m5.xlarge", 4, 16384),
    make_type("c5.large", 2, 4096),
    make_type("p3.2xlarge", 8, 62464, gpus=1, gpu_type="V100"),
]


class StubProvider(BaseProvider):
    name = "stub"

    def __init__(self, resolver: PricingResolver, groups: list[NodeGroup]) -> None:
        super().__init__("us-east-1", resolver)
        self.groups = {g.id: g for g in groups}
        self.describe_calls = 0
        self.scaled: list[tuple[str, int]] = []

    async def _describe_instance_types(self, region: str) -> list[InstanceType]:
        self.describe_calls += 1
        return list(CATALOG)

    def _static_price(self, it: InstanceType, region: str) -> float:
        return round(it.cpu_cores * 0.05, 4)

    def _gpu_memory_mib(self, it: InstanceType) -> int:
        return 16384 * it.gpus

    def estimate_spot_discount(self, instance_type: str) -> float:
        return 0.7

    async def get_node_group(self, group_id: str) -> NodeGroup:
        return self.groups[group_id]

    async def _set_desired(self, group: NodeGroup, desired: int) -> None:
        self.scaled.append((group.id, desired))


@pytest.fixture
def live() -> AsyncMock:
    return AsyncMock(return_value={"m5.large": 0.096, "m5.xlarge": 0.192})


@pytest.fixture
def provider(cache: PricingCache, live: AsyncMock) -> StubProvider:
    holder: list[StubProvider] = []

    async def fallback(region: str) -> dict[str, float]:
        return await holder[0].static_prices(region)

    resolver = PricingResolver("stub", cache=cache, fetch_live=live, build_fallback=fallback)
    stub = StubProvider(resolver, [make_group("workers", "m5.xlarge", min_count=1, max_count=5)])
    holder.append(stub)
    return stub


def node(instance_type: str = "m5.large", **labels: str) -> Node:
    return Node(
        name="ip-10-0-0-1",
        labels={"node.kubernetes.io/instance-type": instance_type, **labels},
    )


class TestValidateScale:
    def test_within_bounds(self):
        validate_scale(make_group(min_count=1, max_count=5), 5)

    def test_below_min(self):
        with pytest.raises(ScaleBoundsError, match="below min 2"):
            validate_scale(make_group(min_count=2, max_count=5), 1)

    def test_above_max(self):
        with pytest.raises(ScaleBoundsError, match="exceeds max 5"):
            validate_scale(make_group(min_count=1, max_count=5), 6)


def test_filter_family():
    assert [t.name for t in filter_family(CATALOG, "m5.2xlarge")] == ["m5.large", "m5.xlarge"]


class TestCatalog:
    async def test_catalog_is_cached(self, provider: StubProvider):
        await provider.catalog("us-east-1")
        await provider.catalog("us-east-1")
        assert provider.describe_calls == 1

    async def test_instance_types_use_live_then_static_prices(self, provider: StubProvider):
        types = {t.name: t for t in await provider.get_instance_types("us-east-1")}
        assert types["m5.large"].price_per_hour == 0.096
        assert types["c5.large"].price_per_hour == 0.1

    async def test_gpu_instance_types(self, provider: StubProvider):
        gpus = await provider.get_gpu_instance_types("us-east-1")
        assert [g.name for g in gpus] == ["p3.2xlarge"]
        assert gpus[0].gpu_memory_mib == 16384
        assert gpus[0].gpu_model == "V100"

    async def test_family_sizes(self, provider: StubProvider):
        sizes = await provider.get_family_sizes("m5.large")
        assert [t.name for t in sizes] == ["m5.large", "m5.xlarge"]

    async def test_static_prices(self, provider: StubProvider):
        prices = await provider.static_prices("us-east-1")
        assert prices["p3.2xlarge"] == 0.4

    async def test_static_prices_without_catalog(self, provider: StubProvider):
        provider._describe_instance_types = AsyncMock(side_effect=RuntimeError("denied"))  # type: ignore[method-assign]
        with pytest.raises(PricingError, match="no instance catalogue"):
            await provider.static_prices("eu-west-1")


class TestNodeCost:
    async def test_on_demand(self, provider: StubProvider):
        cost = await provider.get_node_cost(node())
        assert cost.hourly_cost_usd == 0.096
        assert cost.monthly_cost_usd == pytest.approx(0.096 * HOURS_PER_MONTH)
        assert not cost.is_spot
        assert cost.spot_discount == 0.0

    async def test_spot_discount_applied(self, provider: StubProvider):
        cost = await provider.get_node_cost(node(**{"eks.amazonaws.com/capacityType": "SPOT"}))
        assert cost.is_spot
        assert cost.spot_discount == pytest.approx(70.0)
        assert cost.hourly_cost_usd == pytest.approx(0.096 * 0.3)

    async def test_unknown_price(self, provider: StubProvider):
        with pytest.raises(PricingError, match="no pricing found for r5.large"):
            await provider.get_node_cost(node("r5.large"))

    async def test_node_without_type_label(self, provider: StubProvider):
        with pytest.raises(NodeError):
            await provider.get_node_cost(Node(name="bare"))

    async def test_fallback_prices_cover_all_types(self, provider: StubProvider, live: AsyncMock):
        live.side_effect = RuntimeError("pricing API down")
        cost = await provider.get_node_cost(node("c5.large"))
        assert cost.hourly_cost_usd == 0.1
        assert provider.resolver.fallback_active("us-east-1")


class TestScale:
    async def test_scale_within_bounds(self, provider: StubProvider):
        await provider.scale_node_group("workers", 4)
        assert provider.scaled == [("workers", 4)]

    async def test_scale_out_of_bounds(self, provider: StubProvider):
        with pytest.raises(ScaleBoundsError):
            await provider.scale_node_group("workers", 6)
        assert provider.scaled == []

    async def test_negative_count(self, provider: StubProvider):
        with pytest.raises(ScaleBoundsError, match="must be >= 0"):
            await provider.scale_node_group("workers", -1)


class TestLifecycle:
    async def test_default_commitments_are_empty(self, provider: StubProvider):
        assert await provider.get_reserved_instances() == []
        assert await provider.get_savings_plans() == []
        assert await provider.get_committed_use_discounts() == []
        assert await provider.get_reservations() == []

    async def test_close_stops_refresh_and_closes_owned_cache(self, provider: StubProvider):
        owned = AsyncMock(spec=PricingCache)
        provider.own_cache(owned)
        await provider.start()
        assert provider.resolver.running
        await provider.close()
        assert not provider.resolver.running
        owned.close.assert_awaited_once()
