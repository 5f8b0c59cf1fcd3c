"""Azure list prices and the VM size catalogue.

Live prices come from the public Retail Prices API (no auth). VM sizes come
from the ARM ``vmSizes`` endpoint, with a built-in catalogue of common sizes
when ARM is unreachable.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from fleetward.family import try_extract_family
from fleetward.infra.http import HttpClient
from fleetward.infra.pagination import Page, PageFetcher, collect_pages
from fleetward.pricing import component_price, lowest_prices
from fleetward.types import Architecture, InstanceType

from .arm import COMPUTE_API_VERSION, ArmClient
from .rates import RATES, gpu_model_rate, series_key

log = logger.bind(provider="azure")

RETAIL_PRICES_URL = "https://prices.azure.com/api/retail/prices"
RETAIL_MAX_PAGES = 100
HOURLY_UNIT = "1 Hour"

_SPOT_MARKERS = ("Spot", "Low Priority")


def retail_filter(region: str) -> str:
    return (
        "serviceName eq 'Virtual Machines' "
        f"and armRegionName eq '{region}' "
        "and priceType eq 'Consumption' "
        "and currencyCode eq 'USD'"
    )


def is_spot_item(item: Mapping[str, Any]) -> bool:
    meter = item.get("meterName") or ""
    sku = item.get("skuName") or ""
    return any(m in meter or m in sku for m in _SPOT_MARKERS)


def is_linux_hourly(item: Mapping[str, Any]) -> bool:
    return (
        item.get("unitOfMeasure") == HOURLY_UNIT
        and "Windows" not in (item.get("productName") or "")
        and bool(item.get("armSkuName"))
    )


def on_demand_records(items: Iterable[Mapping[str, Any]]) -> Iterable[tuple[str, float]]:
    """``(armSkuName, retailPrice)`` for Linux pay-as-you-go meters."""
    for item in items:
        if not is_linux_hourly(item) or is_spot_item(item):
            continue
        try:
            yield item["armSkuName"], float(item.get("retailPrice") or 0)
        except (TypeError, ValueError):
            log.debug("azure: unparseable retail price for {sku}", sku=item.get("armSkuName"))


def retail_page_fetcher(http: HttpClient, region: str) -> PageFetcher[Mapping[str, Any]]:
    """Fetch one Retail Prices page; the continuation token is ``NextPageLink``."""

    async def fetch(token: str | None) -> Page[Mapping[str, Any]]:
        if token:
            data = await http.request("GET", token)
        else:
            params = {"$filter": retail_filter(region)}
            data = await http.request("GET", RETAIL_PRICES_URL, params=params)
        data = data or {}
        return Page(data.get("Items") or [], data.get("NextPageLink"))

    return fetch


async def retail_items(
    http: HttpClient,
    region: str,
    *,
    max_pages: int = RETAIL_MAX_PAGES,
    operation: str = "retail_prices",
) -> list[Mapping[str, Any]]:
    return await collect_pages(
        retail_page_fetcher(http, region),
        max_pages=max_pages,
        provider="azure",
        operation=operation,
        region=region,
    )


async def fetch_retail_prices(http: HttpClient, region: str) -> dict[str, float]:
    """Lowest Linux on-demand hourly price per ARM SKU name."""
    items = await retail_items(http, region)
    prices = lowest_prices(on_demand_records(items))
    log.info("azure: fetched {n} retail prices for {region}", n=len(prices), region=region)
    return prices


# =============================================================================
# VM sizes
# =============================================================================


def detect_gpu(vm_size: str) -> tuple[int, str]:
    """GPU count and model of an N-series size, from its name."""
    name = vm_size.lower()

    def by_size(table: Iterable[tuple[str, int, str]]) -> tuple[int, str] | None:
        for marker, count, model in table:
            if marker in name:
                return count, model
        return None

    if "standard_nc" in name:
        if "v3" in name and (hit := by_size((
            ("nc6", 1, "NVIDIA Tesla V100"),
            ("nc12", 2, "NVIDIA Tesla V100"),
            ("nc24", 4, "NVIDIA Tesla V100"),
        ))) and "t4" not in name:
            return hit
        if "a100" in name and (hit := by_size((
            ("nc24", 1, "NVIDIA A100"),
            ("nc48", 2, "NVIDIA A100"),
            ("nc96", 4, "NVIDIA A100"),
        ))):
            return hit
        if "t4" in name:
            return (4 if "nc64" in name else 1), "NVIDIA T4"
        return by_size((
            ("nc6", 1, "NVIDIA Tesla K80"),
            ("nc12", 2, "NVIDIA Tesla K80"),
            ("nc24", 4, "NVIDIA Tesla K80"),
        )) or (1, "NVIDIA GPU")

    if "standard_nd" in name:
        if "h100" in name or "v5" in name:
            return (8 if "nd96" in name else 1), "NVIDIA H100"
        if "a100" in name or "v4" in name:
            return (8 if "nd96" in name else 1), "NVIDIA A100"
        return by_size((
            ("nd6", 1, "NVIDIA Tesla P40"),
            ("nd12", 2, "NVIDIA Tesla P40"),
            ("nd24", 4, "NVIDIA Tesla P40"),
        )) or (1, "NVIDIA GPU")

    if "standard_nv" in name:
        if "v3" in name and (hit := by_size((
            ("nv12", 1, "NVIDIA Tesla M60"),
            ("nv24", 2, "NVIDIA Tesla M60"),
            ("nv48", 4, "NVIDIA Tesla M60"),
        ))):
            return hit
        if "a10" in name or "v5" in name:
            return (2 if "nv72" in name else 1), "NVIDIA A10"
        return by_size((
            ("nv6", 1, "NVIDIA Tesla M60"),
            ("nv12", 2, "NVIDIA Tesla M60"),
            ("nv24", 4, "NVIDIA Tesla M60"),
        )) or (1, "NVIDIA GPU")

    return 1, "NVIDIA GPU"


def is_arm64(vm_size: str) -> bool:
    """Ampere sizes carry ``p`` in the series letters (``D4ps_v5``, ``E8pds_v5``)."""
    parts = vm_size.split("_")
    if len(parts) < 2:
        return False
    letters = re.sub(r"[^A-Za-z]", "", parts[1])
    return "p" in letters.lower()


def vm_size_to_instance_type(size: Mapping[str, Any]) -> InstanceType:
    name = size["name"]
    gpus, gpu_type = (0, "")
    if name.lower().startswith("standard_n"):
        gpus, gpu_type = detect_gpu(name)
    arch: Architecture = "arm64" if is_arm64(name) else "amd64"
    return InstanceType(
        name=name,
        family=try_extract_family(name),
        cpu_cores=int(size.get("numberOfCores") or 0),
        memory_mib=int(size.get("memoryInMB") or 0),
        gpus=gpus,
        gpu_type=gpu_type,
        architecture=arch,
    )


async def fetch_vm_sizes(arm: ArmClient, subscription_id: str, region: str) -> list[InstanceType]:
    data = await arm.get(
        f"/subscriptions/{subscription_id}/providers/Microsoft.Compute/locations/{region}/vmSizes",
        COMPUTE_API_VERSION,
        operation="list_vm_sizes",
    )
    types: list[InstanceType] = []
    for size in (data or {}).get("value") or []:
        try:
            types.append(vm_size_to_instance_type(size))
        except (KeyError, TypeError, ValueError) as e:
            log.debug("azure: skipping malformed VM size in {region}: {err}", region=region, err=e)
    return types


async def describe_vm_sizes(arm: ArmClient, subscription_id: str, region: str) -> list[InstanceType]:
    """VM sizes from ARM, else the built-in catalogue."""
    try:
        types = await fetch_vm_sizes(arm, subscription_id, region)
    except Exception as e:
        log.warning(
            "azure: using built-in VM size catalogue region={region} operation=list_vm_sizes: {err}",
            region=region, err=e,
        )
        return fallback_vm_sizes()
    if not types:
        log.warning(
            "azure: ARM returned no VM sizes, using built-in catalogue region={region} "
            "operation=list_vm_sizes",
            region=region,
        )
        return fallback_vm_sizes()
    return types


def static_price(it: InstanceType) -> float:
    rates = RATES.rates_for(series_key(it.name))
    return component_price(
        it.cpu_cores, it.memory_mib, rates,
        gpus=it.gpus, gpu_rate=gpu_model_rate(it.gpu_type),
    )


# ─── Built-in catalogue ──────────────────────────────────────────────

# (name, vCPUs, memory MiB[, gpus, gpu model])
_FALLBACK_SIZES: tuple[tuple[Any, ...], ...] = (
    # B (burstable)
    ("Standard_B1s", 1, 1024), ("Standard_B1ms", 1, 2048),
    ("Standard_B2s", 2, 4096), ("Standard_B2ms", 2, 8192),
    ("Standard_B4ms", 4, 16384), ("Standard_B8ms", 8, 32768),
    ("Standard_B12ms", 12, 49152), ("Standard_B16ms", 16, 65536),
    ("Standard_B20ms", 20, 81920),
    # D v2
    ("Standard_D2_v2", 2, 7168), ("Standard_D3_v2", 4, 14336),
    ("Standard_D4_v2", 8, 28672), ("Standard_D5_v2", 16, 57344),
    # D v3 / v4 / v5
    *(
        (f"Standard_D{n}s_{gen}", n, n * 4096)
        for gen in ("v3", "v4")
        for n in (2, 4, 8, 16, 32, 48, 64)
    ),
    *((f"Standard_D{n}s_v5", n, n * 4096) for n in (2, 4, 8, 16, 32, 48, 64, 96)),
    # Dps v5 (Ampere)
    *((f"Standard_D{n}ps_v5", n, n * 4096) for n in (2, 4, 8, 16, 32, 48, 64)),
    # Das v5 (AMD)
    *((f"Standard_D{n}as_v5", n, n * 4096) for n in (2, 4, 8, 16, 32, 48, 64, 96)),
    # E v3
    *((f"Standard_E{n}s_v3", n, n * 8192) for n in (2, 4, 8, 16, 32, 48)),
    ("Standard_E64s_v3", 64, 442368),
    # E v4 / v5
    *((f"Standard_E{n}s_v4", n, n * 8192) for n in (2, 4, 8, 16, 32, 48)),
    ("Standard_E64s_v4", 64, 516096),
    *((f"Standard_E{n}s_v5", n, n * 8192) for n in (2, 4, 8, 16, 32, 48)),
    ("Standard_E64s_v5", 64, 516096), ("Standard_E96s_v5", 96, 688128),
    # Eps v5 (Ampere)
    *((f"Standard_E{n}ps_v5", n, n * 8192) for n in (2, 4, 8, 16, 32)),
    # Eas v5 (AMD)
    *((f"Standard_E{n}as_v5", n, n * 8192) for n in (2, 4, 8, 16, 32, 48)),
    ("Standard_E64as_v5", 64, 516096), ("Standard_E96as_v5", 96, 688128),
    # Fs v2
    *((f"Standard_F{n}s_v2", n, n * 2048) for n in (2, 4, 8, 16, 32, 48, 64, 72)),
    # Ls v2 / v3
    *(
        (f"Standard_L{n}s_{gen}", n, n * 8192)
        for gen in ("v2", "v3")
        for n in (8, 16, 32, 48, 64, 80)
    ),
    # M
    ("Standard_M8ms", 8, 224256), ("Standard_M16ms", 16, 448512),
    ("Standard_M32ms", 32, 901120), ("Standard_M64ms", 64, 1802240),
    ("Standard_M128ms", 128, 3891200),
    # A v2
    ("Standard_A1_v2", 1, 2048), ("Standard_A2_v2", 2, 4096),
    ("Standard_A4_v2", 4, 8192), ("Standard_A8_v2", 8, 16384),
    ("Standard_A2m_v2", 2, 16384), ("Standard_A4m_v2", 4, 32768),
    ("Standard_A8m_v2", 8, 65536),
    # NC
    ("Standard_NC6", 6, 57344, 1, "NVIDIA Tesla K80"),
    ("Standard_NC12", 12, 114688, 2, "NVIDIA Tesla K80"),
    ("Standard_NC24", 24, 229376, 4, "NVIDIA Tesla K80"),
    ("Standard_NC6s_v3", 6, 114688, 1, "NVIDIA Tesla V100"),
    ("Standard_NC12s_v3", 12, 229376, 2, "NVIDIA Tesla V100"),
    ("Standard_NC24s_v3", 24, 458752, 4, "NVIDIA Tesla V100"),
    ("Standard_NC24ads_A100_v4", 24, 229376, 1, "NVIDIA A100 80GB"),
    ("Standard_NC48ads_A100_v4", 48, 458752, 2, "NVIDIA A100 80GB"),
    ("Standard_NC96ads_A100_v4", 96, 917504, 4, "NVIDIA A100 80GB"),
    ("Standard_NC4as_T4_v3", 4, 28672, 1, "NVIDIA T4"),
    ("Standard_NC8as_T4_v3", 8, 57344, 1, "NVIDIA T4"),
    ("Standard_NC16as_T4_v3", 16, 114688, 1, "NVIDIA T4"),
    ("Standard_NC64as_T4_v3", 64, 458752, 4, "NVIDIA T4"),
    # ND
    ("Standard_ND96asr_A100_v4", 96, 917504, 8, "NVIDIA A100 80GB"),
    ("Standard_ND96isr_H100_v5", 96, 1884160, 8, "NVIDIA H100 80GB"),
    # NV
    ("Standard_NV12s_v3", 12, 114688, 1, "NVIDIA Tesla M60"),
    ("Standard_NV24s_v3", 24, 229376, 2, "NVIDIA Tesla M60"),
    ("Standard_NV48s_v3", 48, 458752, 4, "NVIDIA Tesla M60"),
    ("Standard_NV6ads_A10_v5", 6, 57344, 1, "NVIDIA A10"),
    ("Standard_NV12ads_A10_v5", 12, 114688, 1, "NVIDIA A10"),
    ("Standard_NV18ads_A10_v5", 18, 229376, 1, "NVIDIA A10"),
    ("Standard_NV36ads_A10_v5", 36, 458752, 1, "NVIDIA A10"),
    ("Standard_NV36adms_A10_v5", 36, 917504, 1, "NVIDIA A10"),
    ("Standard_NV72ads_A10_v5", 72, 917504, 2, "NVIDIA A10"),
)


def fallback_vm_sizes() -> list[InstanceType]:
    types: list[InstanceType] = []
    for name, cores, memory, *gpu in _FALLBACK_SIZES:
        gpus, gpu_type = gpu if gpu else (0, "")
        types.append(InstanceType(
            name=name,
            family=try_extract_family(name),
            cpu_cores=cores,
            memory_mib=memory,
            gpus=gpus,
            gpu_type=gpu_type,
            architecture="arm64" if is_arm64(name) else "amd64",
        ))
    return types


__all__ = [
    "COMPUTE_API_VERSION",
    "RETAIL_PRICES_URL",
    "describe_vm_sizes",
    "detect_gpu",
    "fallback_vm_sizes",
    "fetch_retail_prices",
    "fetch_vm_sizes",
    "is_arm64",
    "is_spot_item",
    "on_demand_records",
    "retail_filter",
    "retail_items",
    "retail_page_fetcher",
    "static_price",
    "vm_size_to_instance_type",
]
