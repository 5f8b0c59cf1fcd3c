from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_type
from google.api_core import exceptions as google_exceptions

from fleetward.errors import SourceError
from fleetward.pricing import ComponentRates
from fleetward.providers.gcp.pricing import (
    BILLING_SKUS_URL,
    catalog_zones,
    component_rates,
    describe_machine_types,
    family_from_resource_group,
    fallback_zones,
    fetch_component_rates,
    live_price,
    live_prices,
    machine_type_to_instance_type,
    resource_kind,
    sku_price,
    static_price,
)
from fleetward.providers.gcp.rates import RATES, series

pytestmark = [pytest.mark.unit]


def sku(
    description: str,
    group: str,
    nanos: int,
    *,
    usage: str = "OnDemand",
    regions: tuple[str, ...] = ("us-central1",),
    unit: str = "h",
) -> dict[str, Any]:
    return {
        "description": description,
        "category": {"resourceFamily": "Compute", "resourceGroup": group, "usageType": usage},
        "serviceRegions": list(regions),
        "pricingInfo": [{"pricingExpression": {
            "usageUnit": unit,
            "tieredRates": [{"unitPrice": {"units": "0", "nanos": nanos}}],
        }}],
    }


SKUS = [
    sku("N2 Instance Core running in Americas", "N2Standard", 31_611_000),
    sku("N2 Instance Ram running in Americas", "N2Standard", 4_237_000),
    sku("N2D AMD Instance Core running in Americas", "N2DStandard", 27_502_000),
    sku("N2D AMD Instance Ram running in Americas", "N2DStandard", 3_686_000),
    sku("N2 Custom Instance Core running in Americas", "N2Standard", 1_000),
    sku("Spot Preemptible N2 Instance Core running in Americas", "N2Standard", 7_650_000,
        usage="Preemptible"),
    sku("Spot Preemptible N2 Instance Ram running in Americas", "N2Standard", 1_025_000,
        usage="Preemptible"),
    sku("E2 Instance Core running in Belgium", "E2", 24_000_000, regions=("europe-west1",)),
    sku("C3 Instance Core running in Americas", "C3", 36_160_000),
]


class TestBillingCatalog:
    @pytest.mark.parametrize(
        ("group", "family"),
        [("N2DStandard", "n2d"), ("N2Standard", "n2"), ("C3D", "c3d"), ("G1Small", "")],
    )
    def test_family_from_resource_group(self, group: str, family: str):
        assert family_from_resource_group(group) == family

    @pytest.mark.parametrize(
        ("description", "kind"),
        [
            ("N2 Instance Core running in Americas", "cpu"),
            ("E2 Instance Ram running in Iowa", "ram"),
            ("N2 Custom Instance Core running in Americas", ""),
            ("Commitment v1: N2 Cpu in Americas for 1 Year", ""),
            ("N2 Sole Tenancy Instance Ram running in Americas", ""),
            ("Network Internet Egress", ""),
        ],
    )
    def test_resource_kind(self, description: str, kind: str):
        assert resource_kind(description) == kind

    def test_sku_price(self):
        assert sku_price(SKUS[0]) == pytest.approx(0.031611)
        assert sku_price(sku("x", "N2Standard", 5, unit="GiBy.mo")) == 0.0
        assert sku_price({"pricingInfo": []}) == 0.0

    def test_component_rates_need_both_components(self):
        rates = component_rates(SKUS, "us-central1")
        assert set(rates) == {"n2", "n2d"}
        assert rates["n2"].cpu_per_hour == pytest.approx(0.031611)
        assert rates["n2d"].mem_per_gib_hour == pytest.approx(0.003686)

    def test_preemptible_rates(self):
        rates = component_rates(SKUS, "us-central1", "Preemptible")
        assert rates["n2"].cpu_per_hour == pytest.approx(0.00765)

    def test_lowest_duplicate_wins(self):
        cheaper = sku("N2 Instance Core running in Iowa", "N2Standard", 30_000_000)
        rates = component_rates([*SKUS, cheaper], "us-central1")
        assert rates["n2"].cpu_per_hour == pytest.approx(0.03)

    async def test_fetch_follows_page_tokens(self):
        http = MagicMock()
        http.request = AsyncMock(side_effect=[
            {"skus": SKUS[:2], "nextPageToken": "t2"},
            {"skus": SKUS[2:], "nextPageToken": ""},
        ])
        rates = await fetch_component_rates(http, "us-central1")
        assert set(rates) == {"n2", "n2d"}
        first, second = http.request.await_args_list
        assert first.args == ("GET", BILLING_SKUS_URL)
        assert "pageToken" not in first.kwargs["params"]
        assert second.kwargs["params"]["pageToken"] == "t2"


class TestPrices:
    def test_static_price_with_region_multiplier(self):
        it = make_type("n2-standard-4", 4, 16384)
        base = 4 * 0.031611 + 16 * 0.004237
        assert static_price(it, "us-central1") == round(base, 4)
        assert static_price(it, "europe-west1") == round(base * 1.10, 4)

    def test_static_gpu_price(self):
        it = make_type("a2-highgpu-1g", 12, 87040, gpus=1, gpu_type="nvidia-tesla-a100")
        base = 12 * 0.031611 + 85 * 0.004237 + 2.934
        assert static_price(it, "us-central1") == round(base, 4)

    def test_unmapped_gpu_uses_default_rate(self):
        def priced(gpus: int) -> float:
            it = make_type("n1-standard-8", 8, 30720, gpus=gpus, gpu_type="nvidia-tesla-p4")
            return static_price(it, "us-central1")

        base = priced(0)
        assert priced(2) - base == pytest.approx(2 * RATES.default_gpu_rate, abs=1e-3)
        assert priced(4) - base == pytest.approx(2 * (priced(2) - base), abs=1e-3)
        assert RATES.default_gpu_rate > 0

    def test_h100_machine_types(self):
        it = machine_type_to_instance_type(machine_type("a3-highgpu-8g", 208, 1916928))
        assert it is not None
        assert (it.gpus, it.gpu_type) == (8, "nvidia-h100-80gb")
        without = make_type("a3-highgpu-8g", 208, 1916928)
        assert static_price(it, "us-central1") > static_price(without, "us-central1")

    def test_live_price_uses_live_rates(self):
        rates = {"n2": ComponentRates(0.03, 0.004)}
        assert live_price(make_type("n2-standard-4", 4, 16384), "europe-west1", rates) == 0.184

    def test_live_price_falls_back_per_series(self):
        it = make_type("e2-standard-2", 2, 8192)
        rates = {"n2": ComponentRates(0.03, 0.004)}
        assert live_price(it, "us-central1", rates) == static_price(it, "us-central1")

    def test_no_live_rates_is_an_error(self):
        with pytest.raises(SourceError):
            live_prices([make_type("n2-standard-4", 4, 16384)], "us-central1", {})

    def test_series(self):
        assert series("n2d-highmem-8") == "n2d"
        assert series("e2-medium") == "e2"
        assert RATES.has_family("c3d")


def machine_type(name: str, cpus: int, memory_mb: int, accelerators: list[Any] | None = None):
    return SimpleNamespace(
        name=name, guest_cpus=cpus, memory_mb=memory_mb, accelerators=accelerators or [],
    )


class TestMachineTypes:
    def test_plain(self):
        it = machine_type_to_instance_type(machine_type("n2-standard-4", 4, 16384))
        assert it is not None
        assert (it.cpu_cores, it.memory_mib, it.gpus) == (4, 16384, 0)
        assert it.architecture == "amd64"

    def test_builtin_accelerators(self):
        it = machine_type_to_instance_type(machine_type("a2-highgpu-2g", 24, 174080))
        assert it is not None
        assert (it.gpus, it.gpu_type) == (2, "nvidia-tesla-a100")

    def test_reported_accelerators(self):
        acc = SimpleNamespace(guest_accelerator_type="nvidia-tesla-t4", guest_accelerator_count=1)
        it = machine_type_to_instance_type(machine_type("n1-standard-4", 4, 15360, [acc]))
        assert it is not None
        assert (it.gpus, it.gpu_type) == (1, "nvidia-tesla-t4")

    def test_arm(self):
        it = machine_type_to_instance_type(machine_type("t2a-standard-4", 4, 16384))
        assert it is not None
        assert it.architecture == "arm64"

    def test_custom_shapes_skipped(self):
        assert machine_type_to_instance_type(machine_type("custom-4-16384", 4, 16384)) is None
        assert machine_type_to_instance_type(machine_type("zz-custom-2-4096", 2, 4096)) is None


class TestDescribe:
    async def test_first_zone_of_region(self):
        compute = MagicMock()
        compute.region_zones = AsyncMock(return_value=["us-central1-a", "us-central1-b"])
        compute.machine_types = AsyncMock(return_value=[
            machine_type("n2-standard-4", 4, 16384), machine_type("custom-2-4096", 2, 4096),
        ])
        types = await describe_machine_types(compute, "us-central1")
        assert [t.name for t in types] == ["n2-standard-4"]
        compute.machine_types.assert_awaited_once_with("us-central1-a")

    async def test_guessed_zones_when_region_unknown(self):
        compute = MagicMock()
        compute.region_zones = AsyncMock(side_effect=google_exceptions.Forbidden("denied"))
        assert await catalog_zones(compute, "europe-west4") == fallback_zones("europe-west4")

    async def test_tries_next_zone(self):
        compute = MagicMock()
        compute.region_zones = AsyncMock(side_effect=google_exceptions.Forbidden("denied"))
        compute.machine_types = AsyncMock(side_effect=[
            google_exceptions.NotFound("no zone"), [machine_type("e2-medium", 2, 4096)],
        ])
        types = await describe_machine_types(compute, "us-east1")
        assert [t.name for t in types] == ["e2-medium"]
        assert compute.machine_types.await_args.args == ("us-east1-b",)

    async def test_no_zone_answers(self):
        compute = MagicMock()
        compute.region_zones = AsyncMock(return_value=["us-east1-b"])
        compute.machine_types = AsyncMock(side_effect=google_exceptions.NotFound("no zone"))
        with pytest.raises(SourceError):
            await describe_machine_types(compute, "us-east1")
