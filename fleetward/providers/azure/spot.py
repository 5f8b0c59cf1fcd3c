"""Azure Spot VM prices from the Retail Prices API, and eviction estimates."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from contextlib import aclosing
from typing import Any

from loguru import logger

from fleetward.infra.http import HttpClient
from fleetward.infra.pagination import walk_pages
from fleetward.types import SpotInstanceInfo

from .pricing import is_linux_hourly, retail_page_fetcher
from .rates import RATES, series_key

log = logger.bind(provider="azure")

SPOT_MAX_PAGES = 50


def estimate_spot_discount(vm_size: str) -> float:
    return RATES.spot_discount(series_key(vm_size))


def estimate_eviction_rate(vm_size: str) -> float:
    """Monthly eviction estimate from Azure's published ranges."""
    key = series_key(vm_size)
    if key in RATES.interruption_rates:
        return RATES.interruption_rate(key)
    name = vm_size.lower()
    if key == "D" and ("v2" in name or "v3" in name):
        return 10.0
    if "v5" in name or "v6" in name:
        return 5.0
    return RATES.default_interruption_rate


def spot_records(items: Iterable[Mapping[str, Any]]) -> Iterable[tuple[str, float]]:
    for item in items:
        if not is_linux_hourly(item) or "Spot" not in (item.get("meterName") or ""):
            continue
        try:
            yield item["armSkuName"], float(item.get("retailPrice") or 0)
        except (TypeError, ValueError):
            log.debug("azure: unparseable spot price for {sku}", sku=item.get("armSkuName"))


def spot_rows(
    spot_prices: Mapping[str, float],
    instance_types: Sequence[str],
    on_demand: Mapping[str, float],
    region: str,
) -> list[SpotInstanceInfo]:
    """One regional row per requested size.

    ``spot_prices`` is keyed by lower-cased SKU. Sizes without a usable
    Spot price are estimated from the discount table.
    """
    rows: list[SpotInstanceInfo] = []
    for it in instance_types:
        od = on_demand.get(it, 0.0)
        spot_price = spot_prices.get(it.lower())
        if spot_price is not None and spot_price > 0 and od > 0:
            savings = (od - spot_price) / od * 100
        else:
            discount = estimate_spot_discount(it)
            spot_price = round(od * (1 - discount), 4)
            savings = discount * 100
        rows.append(SpotInstanceInfo(
            instance_type=it,
            availability_zone=region,
            spot_price=spot_price,
            on_demand_price=od,
            savings_percent=savings,
            interruption_freq_pct=estimate_eviction_rate(it),
        ))
    return rows


async def fetch_spot_prices(
    http: HttpClient, region: str, instance_types: Sequence[str],
) -> dict[str, float]:
    """Lowest spot price per requested SKU, keyed by lower-cased SKU name.

    Stops paging once every requested SKU has a price.
    """
    wanted = {it.lower() for it in instance_types}
    prices: dict[str, float] = {}

    pages = walk_pages(
        retail_page_fetcher(http, region),
        max_pages=SPOT_MAX_PAGES,
        provider="azure",
        operation="spot_prices",
        region=region,
    )
    async with aclosing(pages):
        async for page in pages:
            for sku, price in spot_records(page.items):
                key = sku.lower()
                if wanted and key not in wanted:
                    continue
                if key not in prices or price < prices[key]:
                    prices[key] = price
            if wanted and wanted <= prices.keys():
                break
    return prices


__all__ = [
    "estimate_eviction_rate",
    "estimate_spot_discount",
    "fetch_spot_prices",
    "spot_records",
    "spot_rows",
]
