"""GCP list prices and the machine type catalogue.

The Cloud Billing Catalog only publishes per-vCPU and per-GiB rates, so a
machine type's price is always computed from its shape. Series the catalog
does not cover are priced from the static table times the region
multiplier.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Final, Literal

from google.api_core import exceptions as google_exceptions
from loguru import logger

from fleetward.errors import SourceError
from fleetward.family import try_extract_family
from fleetward.infra.http import HttpClient
from fleetward.infra.pagination import Page, PageFetcher, collect_pages
from fleetward.pricing import ComponentRates, component_price
from fleetward.types import InstanceType

from .compute import ComputeEngine
from .rates import GPU_MACHINE_TYPES, RATES, series

log = logger.bind(provider="gcp")

COMPUTE_ENGINE_SERVICE_ID: Final = "6F81-5844-456A"
BILLING_SKUS_URL: Final = (
    f"https://cloudbilling.googleapis.com/v1/services/{COMPUTE_ENGINE_SERVICE_ID}/skus"
)
BILLING_MAX_PAGES: Final = 50
BILLING_PAGE_SIZE: Final = 5000
FALLBACK_ZONE_SUFFIXES: Final = ("a", "b", "c", "d", "f")

type UsageType = Literal["OnDemand", "Preemptible"]

# Longest prefix first so N2D wins over N2.
_RESOURCE_GROUP_PREFIXES: Final = (
    "N2D", "C2D", "C3D", "T2A", "T2D",
    "N1", "N2", "N4", "E2",
    "C2", "C3", "C4",
    "M1", "M2", "M3",
    "A2", "A3", "G2", "H3",
)
_SKIPPED_DESCRIPTIONS: Final = ("custom", "sole tenancy", "commitment")


# =============================================================================
# Billing catalog
# =============================================================================


def family_from_resource_group(resource_group: str) -> str:
    """``N2DStandard`` -> ``n2d``; ``""`` for groups outside the known series."""
    for prefix in _RESOURCE_GROUP_PREFIXES:
        if resource_group.startswith(prefix):
            return prefix.lower()
    return ""


def resource_kind(description: str) -> Literal["cpu", "ram", ""]:
    lower = description.lower()
    if "instance" not in lower or any(s in lower for s in _SKIPPED_DESCRIPTIONS):
        return ""
    if "core" in lower or "cpu" in lower:
        return "cpu"
    if "ram" in lower:
        return "ram"
    return ""


def sku_price(sku: Mapping[str, Any]) -> float:
    """Hourly unit price of the first tier, ``0.0`` when not hourly."""
    infos = sku.get("pricingInfo") or []
    if not infos:
        return 0.0
    expression = infos[0].get("pricingExpression") or {}
    if expression.get("usageUnit") != "h":
        return 0.0
    tiers = expression.get("tieredRates") or []
    if not tiers:
        return 0.0
    unit = tiers[0].get("unitPrice") or {}
    try:
        return float(unit.get("units") or 0) + int(unit.get("nanos") or 0) / 1e9
    except (TypeError, ValueError):
        return 0.0


def component_rates(
    skus: Iterable[Mapping[str, Any]], region: str, usage_type: UsageType = "OnDemand",
) -> dict[str, ComponentRates]:
    """Per-series rates; series lacking either the vCPU or the RAM rate are dropped."""
    cpu: dict[str, float] = {}
    ram: dict[str, float] = {}
    for sku in skus:
        category = sku.get("category") or {}
        if category.get("resourceFamily") != "Compute" or category.get("usageType") != usage_type:
            continue
        if region not in (sku.get("serviceRegions") or []):
            continue
        family = family_from_resource_group(category.get("resourceGroup") or "")
        kind = resource_kind(sku.get("description") or "")
        price = sku_price(sku)
        if not family or not kind or price <= 0:
            continue
        target = cpu if kind == "cpu" else ram
        target[family] = min(price, target.get(family, price))
    return {
        family: ComponentRates(cpu_per_hour=cpu[family], mem_per_gib_hour=ram[family])
        for family in cpu.keys() & ram.keys()
    }


def billing_page_fetcher(http: HttpClient) -> PageFetcher[Mapping[str, Any]]:
    async def fetch(token: str | None) -> Page[Mapping[str, Any]]:
        params = {"currencyCode": "USD", "pageSize": str(BILLING_PAGE_SIZE)}
        if token:
            params["pageToken"] = token
        data = await http.request("GET", BILLING_SKUS_URL, params=params) or {}
        return Page(data.get("skus") or [], data.get("nextPageToken"))

    return fetch


async def fetch_component_rates(
    http: HttpClient, region: str, usage_type: UsageType = "OnDemand",
) -> dict[str, ComponentRates]:
    skus = await collect_pages(
        billing_page_fetcher(http),
        max_pages=BILLING_MAX_PAGES,
        provider="gcp",
        operation="list_billing_skus",
        region=region,
    )
    rates = component_rates(skus, region, usage_type)
    log.debug(
        "gcp: {n} {usage} component rates from {skus} SKUs for {region}",
        n=len(rates), usage=usage_type, skus=len(skus), region=region,
    )
    return rates


# =============================================================================
# Prices
# =============================================================================


def _gpu_cost(it: InstanceType) -> float:
    return it.gpus * RATES.gpu_rate(it.gpu_type) if it.gpus and it.gpu_type else 0.0


def static_price(it: InstanceType, region: str) -> float:
    """Static series rates times the region multiplier, GPUs included."""
    return component_price(
        it.cpu_cores,
        it.memory_mib,
        RATES.rates_for(series(it.name)),
        gpus=it.gpus,
        gpu_rate=RATES.gpu_rate(it.gpu_type),
        multiplier=RATES.region_multiplier(region),
    )


def live_price(it: InstanceType, region: str, rates: Mapping[str, ComponentRates]) -> float:
    """Price from live series rates; static pricing for series without them.

    Live rates are already regional, so no multiplier applies.
    """
    live = rates.get(series(it.name))
    if live is None:
        return static_price(it, region)
    return round(component_price(it.cpu_cores, it.memory_mib, live) + _gpu_cost(it), 4)


def live_prices(
    types: Iterable[InstanceType], region: str, rates: Mapping[str, ComponentRates],
) -> dict[str, float]:
    if not rates:
        raise SourceError(f"billing catalog returned no compute rates for {region}")
    return {it.name: live_price(it, region, rates) for it in types}


# =============================================================================
# Machine types
# =============================================================================


def _accelerator(machine_type: Any) -> tuple[str, int]:
    if known := GPU_MACHINE_TYPES.get(machine_type.name):
        return known
    for acc in getattr(machine_type, "accelerators", None) or []:
        count = int(getattr(acc, "guest_accelerator_count", 0) or 0)
        if count > 0:
            return str(acc.guest_accelerator_type), count
    return "", 0


def machine_type_to_instance_type(machine_type: Any) -> InstanceType | None:
    """``None`` for custom shapes that cannot be priced by component."""
    name: str = machine_type.name
    prefix = series(name)
    if name.startswith("custom-"):
        return None
    if "custom" in name and not RATES.has_family(prefix):
        return None
    gpu_type, gpus = _accelerator(machine_type)
    return InstanceType(
        name=name,
        family=try_extract_family(name),
        cpu_cores=int(machine_type.guest_cpus),
        memory_mib=int(machine_type.memory_mb),
        gpus=gpus,
        gpu_type=gpu_type,
        architecture="arm64" if prefix == "t2a" else "amd64",
    )


def fallback_zones(region: str) -> list[str]:
    return [f"{region}-{suffix}" for suffix in FALLBACK_ZONE_SUFFIXES]


async def catalog_zones(compute: ComputeEngine, region: str) -> list[str]:
    """The first zone of the region, or the usual zone names when unknown."""
    try:
        zones = await compute.region_zones(region)
    except google_exceptions.GoogleAPICallError as e:
        log.warning(
            "gcp: zones unavailable, guessing region={region} operation=get_region: {err}",
            region=region, err=e,
        )
        return fallback_zones(region)
    return zones[:1] or fallback_zones(region)


async def describe_machine_types(compute: ComputeEngine, region: str) -> list[InstanceType]:
    error: Exception | None = None
    for zone in await catalog_zones(compute, region):
        try:
            raw = await compute.machine_types(zone)
        except google_exceptions.GoogleAPICallError as e:
            log.debug("gcp: no machine types in {zone}: {err}", zone=zone, err=e)
            error = e
            continue
        return [it for mt in raw if (it := machine_type_to_instance_type(mt)) is not None]
    raise SourceError(f"no machine types available in {region}: {error}")


__all__ = [
    "BILLING_MAX_PAGES",
    "BILLING_SKUS_URL",
    "billing_page_fetcher",
    "catalog_zones",
    "component_rates",
    "describe_machine_types",
    "family_from_resource_group",
    "fallback_zones",
    "fetch_component_rates",
    "live_price",
    "live_prices",
    "machine_type_to_instance_type",
    "resource_kind",
    "sku_price",
    "static_price",
]
