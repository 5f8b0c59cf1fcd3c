"""GCP Spot VM prices and preemption estimates."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from fleetward.pricing import ComponentRates, component_price
from fleetward.types import InstanceType, SpotInstanceInfo

from .rates import RATES, series

SPOT_FALLBACK_ZONE_SUFFIXES = ("b", "c", "a")


def spot_fallback_zones(region: str) -> list[str]:
    return [f"{region}-{suffix}" for suffix in SPOT_FALLBACK_ZONE_SUFFIXES]


def estimate_spot_discount(machine_type: str) -> float:
    return RATES.spot_discount(series(machine_type))


def estimate_preemption_rate(machine_type: str) -> float:
    return RATES.interruption_rate(series(machine_type))


def spot_price(
    machine_type: str,
    on_demand: float,
    preemptible_rates: Mapping[str, ComponentRates],
    catalog: Mapping[str, InstanceType],
) -> float:
    """Component price from preemptible rates, else the discount table.

    GPU shapes always use the discount table: the catalog's preemptible
    rates cover vCPU and memory only.
    """
    rates = preemptible_rates.get(series(machine_type))
    it = catalog.get(machine_type)
    if rates is not None and it is not None and it.gpus == 0:
        price = component_price(it.cpu_cores, it.memory_mib, rates)
        if price > 0:
            return price
    return round(on_demand * (1 - estimate_spot_discount(machine_type)), 4)


def spot_rows(
    instance_types: Sequence[str],
    on_demand: Mapping[str, float],
    preemptible_rates: Mapping[str, ComponentRates],
    catalog: Mapping[str, InstanceType],
    zones: Sequence[str],
) -> list[SpotInstanceInfo]:
    """One row per (type, zone) for every requested type with an on-demand price."""
    rows: list[SpotInstanceInfo] = []
    for it in instance_types:
        od = on_demand.get(it, 0.0)
        if od <= 0:
            continue
        price = spot_price(it, od, preemptible_rates, catalog)
        savings = (od - price) / od * 100
        rows.extend(
            SpotInstanceInfo(
                instance_type=it,
                availability_zone=zone,
                spot_price=price,
                on_demand_price=od,
                savings_percent=savings,
                interruption_freq_pct=estimate_preemption_rate(it),
            )
            for zone in zones
        )
    return rows


__all__ = [
    "estimate_preemption_rate",
    "estimate_spot_discount",
    "spot_fallback_zones",
    "spot_price",
    "spot_rows",
]
