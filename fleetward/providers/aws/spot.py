"""Spot prices from EC2 spot price history, with table estimates as fallback."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from fleetward.errors import TransientError
from fleetward.family import try_extract_family
from fleetward.infra.http import HttpError
from fleetward.infra.pagination import Page, collect_pages
from fleetward.types import SpotInstanceInfo

from .clients import Client
from .rates import RATES

log = logger.bind(provider="aws")

SPOT_HISTORY_MAX_PAGES = 50
SPOT_HISTORY_WINDOW = timedelta(hours=1)


def estimate_spot_discount(instance_type: str) -> float:
    return RATES.spot_discount(try_extract_family(instance_type))


def estimate_interruption_rate(instance_type: str) -> float:
    return RATES.interruption_rate(try_extract_family(instance_type))


def latest_observations(
    history: Sequence[Mapping[str, Any]],
) -> dict[tuple[str, str], Mapping[str, Any]]:
    """Keep the newest observation per (instance type, availability zone)."""
    latest: dict[tuple[str, str], Mapping[str, Any]] = {}
    for obs in history:
        key = (obs.get("InstanceType", ""), obs.get("AvailabilityZone", ""))
        if not all(key):
            continue
        current = latest.get(key)
        if current is None or obs["Timestamp"] > current["Timestamp"]:
            latest[key] = obs
    return latest


def savings_percent(spot: float, on_demand: float) -> float:
    if on_demand <= 0:
        return 0.0
    return (on_demand - spot) / on_demand * 100


def spot_rows(
    latest: Mapping[tuple[str, str], Mapping[str, Any]],
    instance_types: Sequence[str],
    on_demand: Mapping[str, float],
    region: str,
) -> list[SpotInstanceInfo]:
    rows: list[SpotInstanceInfo] = []
    observed: set[str] = set()
    for (instance_type, zone), obs in sorted(latest.items()):
        try:
            spot_price = float(obs.get("SpotPrice", 0))
        except (TypeError, ValueError):
            log.debug("aws: unparseable spot price for {it} in {zone}", it=instance_type, zone=zone)
            continue
        od = on_demand.get(instance_type, 0.0)
        observed.add(instance_type)
        rows.append(SpotInstanceInfo(
            instance_type=instance_type,
            availability_zone=zone,
            spot_price=spot_price,
            on_demand_price=od,
            savings_percent=savings_percent(spot_price, od),
            interruption_freq_pct=estimate_interruption_rate(instance_type),
        ))

    for instance_type in instance_types:
        if instance_type in observed:
            continue
        od = on_demand.get(instance_type, 0.0)
        discount = estimate_spot_discount(instance_type)
        rows.append(SpotInstanceInfo(
            instance_type=instance_type,
            availability_zone=region,
            spot_price=round(od * (1 - discount), 4),
            on_demand_price=od,
            savings_percent=discount * 100,
            interruption_freq_pct=estimate_interruption_rate(instance_type),
        ))
    return rows


async def get_spot_pricing(
    ec2: Client[Any],
    region: str,
    instance_types: Sequence[str],
    on_demand: Mapping[str, float],
) -> list[SpotInstanceInfo]:
    """Latest spot price per (type, zone), estimated for unobserved types.

    When the history cannot be fetched every requested type is estimated.
    """
    try:
        history = await fetch_spot_history(ec2, region, instance_types)
    except (ClientError, BotoCoreError, HttpError, TransientError) as e:
        log.warning(
            "aws: spot history unavailable, using discount table region={region} "
            "operation=describe_spot_price_history: {err}",
            region=region, err=e,
        )
        history = []
    return spot_rows(latest_observations(history), instance_types, on_demand, region)


async def fetch_spot_history(
    ec2: Client[Any], region: str, instance_types: Sequence[str],
) -> list[Mapping[str, Any]]:
    start = datetime.now(UTC) - SPOT_HISTORY_WINDOW
    async with ec2() as client:

        async def fetch(token: str | None) -> Page[Mapping[str, Any]]:
            params: dict[str, Any] = {
                "InstanceTypes": list(instance_types),
                "ProductDescriptions": ["Linux/UNIX"],
                "StartTime": start,
            }
            if token:
                params["NextToken"] = token
            resp = await client.describe_spot_price_history(**params)
            return Page(resp.get("SpotPriceHistory", []), resp.get("NextToken"))

        return await collect_pages(
            fetch,
            max_pages=SPOT_HISTORY_MAX_PAGES,
            provider="aws",
            operation="describe_spot_price_history",
            region=region,
        )


__all__ = [
    "estimate_interruption_rate",
    "estimate_spot_discount",
    "fetch_spot_history",
    "get_spot_pricing",
    "latest_observations",
    "savings_percent",
    "spot_rows",
]
