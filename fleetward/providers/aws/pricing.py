"""AWS list prices and the EC2 instance catalogue.

Live prices come from the Pricing API (``get_products``), which returns each
product as a JSON document. The catalogue comes from
``describe_instance_types``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from loguru import logger

from fleetward.family import try_extract_family
from fleetward.infra.pagination import Page, collect_pages
from fleetward.pricing import component_price, lowest_prices
from fleetward.types import InstanceType

from .clients import Client
from .rates import RATES

log = logger.bind(provider="aws")

PRICING_MAX_PAGES = 200
INSTANCE_TYPES_MAX_PAGES = 50


def pricing_filters(region: str) -> list[dict[str, str]]:
    terms = {
        "ServiceCode": "AmazonEC2",
        "regionCode": region,
        "operatingSystem": "Linux",
        "tenancy": "Shared",
        "preInstalledSw": "NA",
        "capacitystatus": "Used",
    }
    return [{"Type": "TERM_MATCH", "Field": k, "Value": v} for k, v in terms.items()]


def parse_price_item(raw: str | Mapping[str, Any]) -> tuple[str, float] | None:
    """Extract ``(instance_type, hourly_usd)`` from one price-list document.

    Returns None when the document is malformed or has no positive hourly
    on-demand dimension.
    """
    try:
        item = json.loads(raw) if isinstance(raw, str) else raw
        instance_type = item["product"]["attributes"].get("instanceType", "")
        offers = item.get("terms", {}).get("OnDemand", {})
    except (ValueError, KeyError, TypeError, AttributeError):
        return None
    if not instance_type or not isinstance(offers, Mapping):
        return None

    for offer in offers.values():
        dims = offer.get("priceDimensions") if isinstance(offer, Mapping) else None
        if not isinstance(dims, Mapping):
            continue
        for dim in dims.values():
            if not isinstance(dim, Mapping) or dim.get("unit") != "Hrs":
                continue
            try:
                price = float(dim["pricePerUnit"]["USD"])
            except (KeyError, TypeError, ValueError):
                continue
            if price > 0:
                return instance_type, price
    return None


async def fetch_live_prices(pricing: Client[Any], region: str) -> dict[str, float]:
    """Lowest on-demand Linux price per instance type in ``region``."""
    async with pricing() as client:

        async def fetch(token: str | None) -> Page[tuple[str, float]]:
            params: dict[str, Any] = {
                "ServiceCode": "AmazonEC2",
                "Filters": pricing_filters(region),
                "MaxResults": 100,
            }
            if token:
                params["NextToken"] = token
            resp = await client.get_products(**params)
            records: list[tuple[str, float]] = []
            for raw in resp.get("PriceList", []):
                if (parsed := parse_price_item(raw)) is None:
                    log.debug("aws: skipping unparseable price list entry region={region}", region=region)
                    continue
                records.append(parsed)
            return Page(records, resp.get("NextToken"))

        records = await collect_pages(
            fetch,
            max_pages=PRICING_MAX_PAGES,
            provider="aws",
            operation="get_products",
            region=region,
        )
    return lowest_prices(records)


# =============================================================================
# Instance catalogue
# =============================================================================


def instance_type_from_description(desc: Mapping[str, Any]) -> tuple[InstanceType, int]:
    """Build an unpriced ``InstanceType`` and its total GPU memory (MiB)."""
    name = desc["InstanceType"]
    gpu_info = desc.get("GpuInfo") or {}
    gpus = 0
    gpu_type = ""
    for gpu in gpu_info.get("Gpus", []):
        gpus += int(gpu.get("Count", 0))
        gpu_type = gpu.get("Name", gpu_type)

    architectures = (desc.get("ProcessorInfo") or {}).get("SupportedArchitectures", [])
    it = InstanceType(
        name=name,
        family=try_extract_family(name) or name,
        cpu_cores=int((desc.get("VCpuInfo") or {}).get("DefaultVCpus", 0)),
        memory_mib=int((desc.get("MemoryInfo") or {}).get("SizeInMiB", 0)),
        gpus=gpus,
        gpu_type=gpu_type,
        architecture="arm64" if "arm64" in architectures else "amd64",
    )
    return it, int(gpu_info.get("TotalGpuMemoryInMiB", 0))


async def describe_instance_types(
    ec2: Client[Any], region: str,
) -> tuple[list[InstanceType], dict[str, int]]:
    gpu_memory: dict[str, int] = {}
    async with ec2() as client:

        async def fetch(token: str | None) -> Page[InstanceType]:
            params: dict[str, Any] = {"MaxResults": 100}
            if token:
                params["NextToken"] = token
            resp = await client.describe_instance_types(**params)
            types: list[InstanceType] = []
            for desc in resp.get("InstanceTypes", []):
                try:
                    it, memory = instance_type_from_description(desc)
                except (KeyError, TypeError, ValueError) as e:
                    log.debug(
                        "aws: skipping instance type region={region} "
                        "operation=describe_instance_types: {err}",
                        region=region, err=e,
                    )
                    continue
                if memory:
                    gpu_memory[it.name] = memory
                types.append(it)
            return Page(types, resp.get("NextToken"))

        types = await collect_pages(
            fetch,
            max_pages=INSTANCE_TYPES_MAX_PAGES,
            provider="aws",
            operation="describe_instance_types",
            region=region,
        )
    return types, gpu_memory


def static_price(it: InstanceType) -> float:
    return component_price(
        it.cpu_cores,
        it.memory_mib,
        RATES.rates_for(it.family),
        gpus=it.gpus,
        gpu_rate=RATES.gpu_rate(it.gpu_type),
    )


__all__ = [
    "describe_instance_types",
    "fetch_live_prices",
    "instance_type_from_description",
    "parse_price_item",
    "pricing_filters",
    "static_price",
]
