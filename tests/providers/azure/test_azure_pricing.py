from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import make_type

from fleetward.infra.http import HttpError
from fleetward.providers.azure.pricing import (
    RETAIL_PRICES_URL,
    describe_vm_sizes,
    detect_gpu,
    fallback_vm_sizes,
    fetch_retail_prices,
    is_arm64,
    is_spot_item,
    on_demand_records,
    retail_filter,
    static_price,
    vm_size_to_instance_type,
)
from fleetward.providers.azure.rates import gpu_model_rate, series_key

pytestmark = [pytest.mark.unit]


def item(sku: str, price: float, **extra: Any) -> dict[str, Any]:
    return {
        "armSkuName": sku,
        "retailPrice": price,
        "unitOfMeasure": "1 Hour",
        "meterName": sku.removeprefix("Standard_").replace("_", " "),
        "skuName": sku.removeprefix("Standard_").replace("_", " "),
        "productName": "Virtual Machines DSv5 Series",
        **extra,
    }


class TestRetailRecords:
    def test_filter(self):
        f = retail_filter("westeurope")
        assert "armRegionName eq 'westeurope'" in f
        assert "priceType eq 'Consumption'" in f

    def test_spot_markers(self):
        assert is_spot_item({"meterName": "D4s v5 Spot"})
        assert is_spot_item({"skuName": "D4s v5 Low Priority"})
        assert not is_spot_item({"meterName": "D4s v5"})

    def test_on_demand_records(self):
        items = [
            item("Standard_D4s_v5", 0.192),
            item("Standard_D4s_v5", 0.038, meterName="D4s v5 Spot"),
            item("Standard_D4s_v5", 0.376, productName="Virtual Machines DSv5 Series Windows"),
            item("Standard_D4s_v5", 4.6, unitOfMeasure="1/Month"),
            item("", 1.0),
            item("Standard_E4s_v5", "n/a"),
        ]
        assert list(on_demand_records(items)) == [("Standard_D4s_v5", 0.192)]


class TestFetchRetailPrices:
    async def test_follows_next_page_link(self):
        http = MagicMock()
        http.request = AsyncMock(side_effect=[
            {"Items": [item("Standard_D4s_v5", 0.2)], "NextPageLink": "https://prices/next"},
            {"Items": [item("Standard_D4s_v5", 0.192), item("Standard_E4s_v5", 0.252)]},
        ])
        prices = await fetch_retail_prices(http, "eastus")
        assert prices == {"Standard_D4s_v5": 0.192, "Standard_E4s_v5": 0.252}

        first, second = http.request.await_args_list
        assert first.args == ("GET", RETAIL_PRICES_URL)
        assert "eastus" in first.kwargs["params"]["$filter"]
        assert second.args == ("GET", "https://prices/next")


class TestGpuDetection:
    @pytest.mark.parametrize(
        ("vm_size", "expected"),
        [
            ("Standard_NC6s_v3", (1, "NVIDIA Tesla V100")),
            ("Standard_NC24s_v3", (4, "NVIDIA Tesla V100")),
            ("Standard_NC4as_T4_v3", (1, "NVIDIA T4")),
            ("Standard_NC64as_T4_v3", (4, "NVIDIA T4")),
            ("Standard_NC24ads_A100_v4", (1, "NVIDIA A100")),
            ("Standard_NC12", (2, "NVIDIA Tesla K80")),
            ("Standard_ND96isr_H100_v5", (8, "NVIDIA H100")),
            ("Standard_ND96asr_v4", (8, "NVIDIA A100")),
            ("Standard_ND12s", (2, "NVIDIA Tesla P40")),
            ("Standard_NV24s_v3", (2, "NVIDIA Tesla M60")),
            ("Standard_NV36ads_A10_v5", (1, "NVIDIA A10")),
        ],
    )
    def test_detect(self, vm_size: str, expected: tuple[int, str]):
        assert detect_gpu(vm_size) == expected

    @pytest.mark.parametrize(
        ("vm_size", "arm"),
        [
            ("Standard_D4ps_v5", True),
            ("Standard_E8pds_v5", True),
            ("Standard_D4s_v5", False),
            ("Standard_NC24ads_A100_v4", False),
            ("Standard", False),
        ],
    )
    def test_is_arm64(self, vm_size: str, arm: bool):
        assert is_arm64(vm_size) is arm


class TestVmSizes:
    def test_vm_size_to_instance_type(self):
        it = vm_size_to_instance_type(
            {"name": "Standard_NC6s_v3", "numberOfCores": 6, "memoryInMB": 114688},
        )
        assert it.family == "Standard_NC_v3"
        assert (it.cpu_cores, it.memory_mib, it.gpus) == (6, 114688, 1)

    def test_cpu_only(self):
        it = vm_size_to_instance_type(
            {"name": "Standard_D4ps_v5", "numberOfCores": 4, "memoryInMB": 16384},
        )
        assert it.gpus == 0
        assert it.architecture == "arm64"

    async def test_describe_from_arm(self):
        arm = MagicMock()
        arm.get = AsyncMock(return_value={"value": [
            {"name": "Standard_D4s_v5", "numberOfCores": 4, "memoryInMB": 16384},
            {"numberOfCores": 2},
        ]})
        types = await describe_vm_sizes(arm, "sub", "eastus")
        assert [t.name for t in types] == ["Standard_D4s_v5"]
        path = arm.get.await_args.args[0]
        assert path == "/subscriptions/sub/providers/Microsoft.Compute/locations/eastus/vmSizes"

    async def test_describe_falls_back_to_builtin(self):
        arm = MagicMock()
        arm.get = AsyncMock(side_effect=HttpError(403, "AuthorizationFailed"))
        types = await describe_vm_sizes(arm, "sub", "eastus")
        assert len(types) == len(fallback_vm_sizes())

    async def test_describe_empty_falls_back(self):
        arm = MagicMock()
        arm.get = AsyncMock(return_value={"value": []})
        assert await describe_vm_sizes(arm, "sub", "eastus")

    def test_builtin_catalogue(self):
        by_name = {t.name: t for t in fallback_vm_sizes()}
        assert by_name["Standard_D4s_v5"].memory_mib == 16384
        assert by_name["Standard_ND96isr_H100_v5"].gpus == 8
        assert by_name["Standard_D8ps_v5"].architecture == "arm64"


class TestRates:
    @pytest.mark.parametrize(
        ("vm_size", "key"),
        [
            ("Standard_NC6s_v3", "NC"),
            ("Standard_ND96asr_v4", "ND"),
            ("Standard_D4s_v5", "D"),
            ("Standard_B2s", "B"),
            ("Standard_E64as_v5", "E"),
        ],
    )
    def test_series_key(self, vm_size: str, key: str):
        assert series_key(vm_size) == key

    def test_gpu_model_rate_prefers_longest_match(self):
        assert gpu_model_rate("NVIDIA A100 80GB") == 3.67
        assert gpu_model_rate("NVIDIA A10") == 0.454
        assert gpu_model_rate("Mystery GPU") == 1.0

    def test_static_price(self):
        assert static_price(make_type("Standard_D4s_v5", 4, 16384)) == round(4 * 0.0336 + 16 * 0.0036, 4)

    def test_static_gpu_price(self):
        it = make_type("Standard_NC6s_v3", 6, 114688, gpus=1, gpu_type="NVIDIA Tesla V100")
        base = round(6 * 0.0336 + 112 * 0.0036, 4)
        assert static_price(it) == pytest.approx(base + 3.06, abs=1e-4)
